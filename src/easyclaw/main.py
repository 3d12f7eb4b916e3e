"""EasyClaw entry point."""

import logging
import sys

from dotenv import find_dotenv, load_dotenv

from .rules.cli import run_rules_cli

USAGE = "usage: easyclaw rules <command> [args]"


def main() -> None:
    """Main entry point."""
    load_dotenv(find_dotenv(usecwd=True))
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")

    if len(sys.argv) > 1 and sys.argv[1] == "rules":
        # Pass remaining args (after 'rules') to rules CLI
        sys.exit(run_rules_cli(sys.argv[2:]))

    print(USAGE)
    sys.exit(1 if len(sys.argv) > 1 else 0)


if __name__ == "__main__":
    main()
