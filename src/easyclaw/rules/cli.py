"""CLI commands for rule management.

Provides subcommands for adding, editing, deleting and compiling rules,
and for inspecting the compiled policy view and active guards.
"""

import argparse
import asyncio
import sys

from ..config import RulesConfig, load_config
from ..logging import configure_logger, get_logger
from ..storage import Storage
from .base import Artifact, PersistenceError, Rule
from .lifecycle import cleanup_skills_for_deleted_rule, sync_skills_for_rule
from .llm_client import create_llm_client
from .pipeline import ArtifactPipeline
from .skill_writer import FilesystemError, NameExtractionError
from .strategy import LLMCompileStrategy

SYNC_ERRORS = (NameExtractionError, FilesystemError, PersistenceError)


def _open(config: RulesConfig) -> tuple[Storage, ArtifactPipeline]:
    """Open storage and build a pipeline from config."""
    storage = Storage(config.db_path)
    storage.init_db()

    strategy = None
    llm = create_llm_client(config.llm)
    if llm is not None:
        strategy = LLMCompileStrategy(
            llm,
            max_retries=config.llm.max_retries,
            retry_base_delay=config.llm.retry_base_delay,
            timeout=config.llm.timeout,
        )

    pipeline = ArtifactPipeline(
        storage,
        strategy=strategy,
        max_policy_length=config.max_policy_length,
    )
    configure_logger(config.log_dir).attach(pipeline)
    return storage, pipeline


def _format_status(artifact: Artifact | None) -> str:
    """Format artifact status for display."""
    if artifact is None:
        return "\033[33muncompiled\033[0m"
    if artifact.is_ok:
        return "\033[32mok\033[0m"
    return "\033[31mfailed\033[0m"


def _print_artifact(rule: Rule, artifact: Artifact) -> None:
    print(f"Rule {rule.id}: {artifact.kind.value} ({artifact.status.value})")
    if artifact.output_path is not None:
        print(f"  Skill: {artifact.output_path}")


async def _sync(pipeline: ArtifactPipeline, rule: Rule, config: RulesConfig) -> int:
    """Sync one rule, printing the outcome. Returns an exit code."""
    try:
        artifact = await sync_skills_for_rule(pipeline, rule, config.skills_dir)
    except SYNC_ERRORS as e:
        print(f"Error: Skill sync failed for rule {rule.id}: {e}")
        return 1

    if artifact.is_ok:
        get_logger().log_skill_synced(artifact)
    _print_artifact(rule, artifact)
    return 0 if artifact.is_ok else 1


async def _sync_all(pipeline: ArtifactPipeline, rules: list[Rule], config: RulesConfig) -> int:
    """Sync rules one by one. Returns the number of failures."""
    failures = 0
    for rule in rules:
        failures += await _sync(pipeline, rule, config)
    return failures


def cmd_list(args: argparse.Namespace) -> int:
    """List all rules with their artifact state."""
    config = load_config()
    storage, pipeline = _open(config)
    try:
        rules = storage.rules.get_all()
        if not rules:
            print("No rules found.")
            return 0

        print(f"\n{'Id':<38} {'Kind':<16} {'Status':<20} Text")
        print("-" * 100)

        for rule in rules:
            artifact = pipeline.get_artifact(rule.id)
            kind = artifact.kind.value if artifact else "-"
            status = _format_status(artifact)

            text = rule.text
            if len(text) > 40:
                text = text[:37] + "..."

            print(f"{rule.id:<38} {kind:<16} {status:<29} {text}")

        print(f"\nTotal: {len(rules)} rule(s)")
        return 0
    finally:
        storage.close()


def cmd_add(args: argparse.Namespace) -> int:
    """Add a rule and compile it."""
    text = args.text.strip()
    if not text:
        print("Error: Rule text cannot be empty.")
        return 1

    config = load_config()
    storage, pipeline = _open(config)
    try:
        try:
            rule = storage.rules.create(text)
        except PersistenceError as e:
            print(f"Error: Cannot save rule: {e}")
            return 1
        print(f"Added rule: {rule.id}")
        return asyncio.run(_sync(pipeline, rule, config))
    finally:
        storage.close()


def cmd_edit(args: argparse.Namespace) -> int:
    """Change a rule's text and recompile it."""
    text = args.text.strip()
    if not text:
        print("Error: Rule text cannot be empty.")
        return 1

    config = load_config()
    storage, pipeline = _open(config)
    try:
        try:
            rule = storage.rules.update(args.id, text)
        except PersistenceError as e:
            print(f"Error: Cannot save rule: {e}")
            return 1
        if rule is None:
            print(f"Error: Rule '{args.id}' not found.")
            return 1
        return asyncio.run(_sync(pipeline, rule, config))
    finally:
        storage.close()


def cmd_delete(args: argparse.Namespace) -> int:
    """Delete a rule, its artifact and its skill file."""
    config = load_config()
    storage, pipeline = _open(config)
    try:
        if storage.rules.get(args.id) is None:
            print(f"Error: Rule '{args.id}' not found.")
            return 1

        try:
            cleanup_skills_for_deleted_rule(pipeline, args.id)
        except (FilesystemError, PersistenceError) as e:
            print(f"Error: Cannot clean up rule '{args.id}': {e}")
            return 1

        try:
            storage.rules.delete(args.id)
        except PersistenceError as e:
            print(f"Error: Cannot delete rule: {e}")
            return 1
        print(f"Deleted rule: {args.id}")
        return 0
    finally:
        storage.close()


def cmd_show(args: argparse.Namespace) -> int:
    """Show a rule and its compiled artifact."""
    config = load_config()
    storage, pipeline = _open(config)
    try:
        rule = storage.rules.get(args.id)
        if rule is None:
            print(f"Error: Rule '{args.id}' not found.")
            return 1

        print(f"\nRule: {rule.id}")
        print(f"Text: {rule.text}")
        print(f"Updated: {rule.updated_at}")

        artifact = pipeline.get_artifact(rule.id)
        if artifact is None:
            print("\nNot compiled yet.")
            return 0

        print(f"\nArtifact: {artifact.id}")
        print(f"Kind: {artifact.kind.value}")
        print(f"Status: {_format_status(artifact)}")
        print(f"Compiled: {artifact.compiled_at}")
        if artifact.output_path is not None:
            print(f"Skill file: {artifact.output_path}")
        print(f"\n--- Content ---\n{artifact.content}")
        return 0
    finally:
        storage.close()


def cmd_compile(args: argparse.Namespace) -> int:
    """Compile one rule, or every rule, syncing skill files."""
    config = load_config()
    storage, pipeline = _open(config)
    try:
        if args.id:
            rule = storage.rules.get(args.id)
            if rule is None:
                print(f"Error: Rule '{args.id}' not found.")
                return 1
            return asyncio.run(_sync(pipeline, rule, config))

        rules = storage.rules.get_all()
        failures = asyncio.run(_sync_all(pipeline, rules, config))
        print(f"\nCompiled {len(rules) - failures} rule(s), {failures} failed")
        return 1 if failures else 0
    finally:
        storage.close()


def cmd_policy(args: argparse.Namespace) -> int:
    """Print the compiled policy view."""
    config = load_config()
    storage, pipeline = _open(config)
    try:
        view = pipeline.get_compiled_policy_view(args.max_length)
        if not view:
            print("No active policy fragments.")
            return 0
        print(view)
        return 0
    finally:
        storage.close()


def cmd_guards(args: argparse.Namespace) -> int:
    """Print all active guards."""
    config = load_config()
    storage, pipeline = _open(config)
    try:
        guards = pipeline.get_active_guards()
        if not guards:
            print("No active guards.")
            return 0

        for guard in guards:
            print(f"\n# Rule {guard.rule_id}")
            print(guard.content)
        print(f"\nTotal: {len(guards)} guard(s)")
        return 0
    finally:
        storage.close()


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for rules CLI."""
    parser = argparse.ArgumentParser(
        prog="easyclaw rules",
        description="Manage EasyClaw rules",
    )

    subparsers = parser.add_subparsers(dest="command", help="Sub-command help")

    subparsers.add_parser("list", help="List rules and their artifacts")

    add_parser = subparsers.add_parser("add", help="Add and compile a rule")
    add_parser.add_argument("text", help="Rule text")

    edit_parser = subparsers.add_parser("edit", help="Change a rule's text")
    edit_parser.add_argument("id", help="Rule id")
    edit_parser.add_argument("text", help="New rule text")

    delete_parser = subparsers.add_parser("delete", help="Delete a rule")
    delete_parser.add_argument("id", help="Rule id")

    show_parser = subparsers.add_parser("show", help="Show a rule and its artifact")
    show_parser.add_argument("id", help="Rule id")

    compile_parser = subparsers.add_parser("compile", help="Recompile rules")
    compile_parser.add_argument("id", nargs="?", help="Rule id (all rules if omitted)")

    policy_parser = subparsers.add_parser("policy", help="Print the compiled policy view")
    policy_parser.add_argument(
        "-n", "--max-length",
        type=int,
        default=None,
        help="Maximum length of the view",
    )

    subparsers.add_parser("guards", help="Print active guards")

    return parser


def run_rules_cli(argv: list[str] | None = None) -> int:
    """Run the rules CLI with given arguments.

    Args:
        argv: Command-line arguments. Uses sys.argv[1:] if None.

    Returns:
        Exit code (0 for success, non-zero for error).
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "list": cmd_list,
        "add": cmd_add,
        "edit": cmd_edit,
        "delete": cmd_delete,
        "show": cmd_show,
        "compile": cmd_compile,
        "policy": cmd_policy,
        "guards": cmd_guards,
    }

    handler = commands.get(args.command)
    if handler is None:
        parser.print_help()
        return 1

    return handler(args)


if __name__ == "__main__":
    sys.exit(run_rules_cli())
