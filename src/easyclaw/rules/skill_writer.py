"""Filesystem side of skill materialization.

Writes SKILL.md files under the managed skills directory and removes them
again, cleaning up the per-skill directory when it becomes empty. The
skills directory is also scanned by the agent runtime, which discovers
every <skills_dir>/<name>/SKILL.md it finds there.
"""

import logging
import os
from pathlib import Path

import frontmatter

from .base import RulesError

logger = logging.getLogger(__name__)

DEFAULT_SKILLS_DIR = Path.home() / ".easyclaw" / "openclaw" / "skills"
SKILL_FILENAME = "SKILL.md"


class NameExtractionError(RulesError):
    """Raised when action-bundle content has no usable skill name."""

    pass


class FilesystemError(RulesError):
    """Raised when a skill file or directory cannot be written or removed."""

    pass


def resolve_skills_dir(skills_dir: Path | str | None = None) -> Path:
    """Return the skills directory, defaulting to ~/.easyclaw/openclaw/skills."""
    if skills_dir is None:
        return DEFAULT_SKILLS_DIR
    return Path(skills_dir).expanduser()


def extract_skill_name(content: str) -> str:
    """Extract the skill name from SKILL.md YAML frontmatter.

    Args:
        content: Full SKILL.md content (frontmatter + body).

    Returns:
        The stripped skill name.

    Raises:
        NameExtractionError: If the frontmatter is missing or malformed,
            has no name field, or the name is empty or not usable as a
            directory name.
    """
    if not frontmatter.checks(content):
        raise NameExtractionError("No YAML frontmatter found in artifact content")

    try:
        post = frontmatter.loads(content)
    except Exception as e:
        raise NameExtractionError(f"Failed to parse frontmatter: {e}") from e

    if "name" not in post.metadata:
        raise NameExtractionError("No 'name' field found in YAML frontmatter")

    raw_name = post.metadata["name"]
    if raw_name is None:
        raise NameExtractionError("Empty skill name in frontmatter")
    if not isinstance(raw_name, (str, int, float)):
        raise NameExtractionError(
            f"Field 'name' must be a string, got {type(raw_name).__name__}"
        )

    name = str(raw_name).strip()
    if not name:
        raise NameExtractionError("Empty skill name in frontmatter")
    if name in (".", "..") or "/" in name or "\\" in name:
        raise NameExtractionError(f"Skill name is not a valid directory name: {name!r}")

    return name


def skill_file_path(skill_name: str, skills_dir: Path | str | None = None) -> Path:
    """Absolute path of the SKILL.md for a skill name."""
    return (resolve_skills_dir(skills_dir) / skill_name / SKILL_FILENAME).absolute()


def write_skill_file(
    skill_name: str,
    content: str,
    skills_dir: Path | str | None = None,
) -> Path:
    """Write a SKILL.md file, creating its directory if needed.

    An existing file is overwritten.

    Args:
        skill_name: Skill name, used as the directory name.
        content: Full SKILL.md content.
        skills_dir: Skills directory. Uses DEFAULT_SKILLS_DIR if None.

    Returns:
        Absolute path to the written SKILL.md.

    Raises:
        FilesystemError: If the directory or file cannot be written.
    """
    path = skill_file_path(skill_name, skills_dir)

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    except OSError as e:
        raise FilesystemError(f"Cannot write skill file {path}: {e}") from e

    logger.info("Wrote SKILL.md -> %s", path)
    return path


def remove_skill_file(output_path: Path | str) -> bool:
    """Remove a SKILL.md file and its directory if that is left empty.

    Args:
        output_path: Path to the SKILL.md file.

    Returns:
        True if the file was removed, False if it did not exist.

    Raises:
        FilesystemError: If the file exists but cannot be removed.
    """
    path = Path(output_path)

    if not path.is_file():
        logger.info("Skill file not found, nothing to remove: %s", path)
        return False

    try:
        path.unlink()
    except FileNotFoundError:
        logger.info("Skill file disappeared before removal: %s", path)
        return False
    except OSError as e:
        raise FilesystemError(f"Cannot remove skill file {path}: {e}") from e

    logger.info("Removed skill file: %s", path)

    parent = path.parent
    try:
        if not any(parent.iterdir()):
            os.rmdir(parent)
            logger.info("Removed empty skill directory: %s", parent)
    except OSError as e:
        logger.warning("Cannot clean up skill directory %s: %s", parent, e)

    return True
