"""Keeps skill files on disk in lockstep with action-bundle artifacts.

An artifact whose kind is ACTION_BUNDLE and whose status is OK has its
content materialized at <skills_dir>/<name>/SKILL.md, with the path cached
on the artifact as output_path. When the kind moves away from
ACTION_BUNDLE, or the rule is deleted, the file is removed again.
"""

import logging
from pathlib import Path

from .base import Artifact, ArtifactKind, PersistenceError, Rule
from .pipeline import ArtifactPipeline
from .skill_writer import (
    FilesystemError,
    NameExtractionError,
    extract_skill_name,
    remove_skill_file,
    skill_file_path,
    write_skill_file,
)

logger = logging.getLogger(__name__)


def materialize_skill(
    artifact: Artifact,
    skills_dir: Path | str | None = None,
) -> Path | None:
    """Write an action-bundle artifact as a SKILL.md file.

    Args:
        artifact: The artifact to materialize.
        skills_dir: Skills directory. Uses the default if None.

    Returns:
        Absolute path of the written file, or None if the artifact is not
        an action bundle.

    Raises:
        NameExtractionError: If the content has no usable skill name.
        FilesystemError: If the file cannot be written.
    """
    if artifact.kind is not ArtifactKind.ACTION_BUNDLE:
        logger.debug(
            "Skipping materialize for artifact %s: kind is %s",
            artifact.id, artifact.kind.value,
        )
        return None

    skill_name = extract_skill_name(artifact.content)
    output_path = write_skill_file(skill_name, artifact.content, skills_dir)
    logger.info(
        "Materialized skill %r for artifact %s at %s", skill_name, artifact.id, output_path
    )
    return output_path


def dematerialize_skill(artifact: Artifact) -> bool:
    """Remove the SKILL.md file of an artifact.

    Returns:
        True if a file was removed, False if the artifact has no
        output_path or the file is already gone.

    Raises:
        FilesystemError: If the file exists but cannot be removed.
    """
    if artifact.output_path is None:
        logger.debug("No output_path on artifact %s; nothing to dematerialize", artifact.id)
        return False

    removed = remove_skill_file(artifact.output_path)
    if removed:
        logger.info("Dematerialized skill for artifact %s at %s", artifact.id, artifact.output_path)
    else:
        logger.warning(
            "Skill file for artifact %s already missing at %s", artifact.id, artifact.output_path
        )
    return removed


def _discard_unrecorded(path: Path) -> None:
    """Remove a skill file whose path never reached the artifact store."""
    try:
        remove_skill_file(path)
    except FilesystemError as e:
        logger.warning("Cannot remove unrecorded skill file %s: %s", path, e)


async def sync_skills_for_rule(
    pipeline: ArtifactPipeline,
    rule: Rule,
    skills_dir: Path | str | None = None,
) -> Artifact:
    """Compile a rule and bring its skill file in line with the result.

    - Kind left ACTION_BUNDLE: the old file is removed, output_path cleared.
    - Kind is ACTION_BUNDLE: a stale file under another name is removed,
      the new content is written, output_path is persisted.
    - Compilation failed: the last-known-good file is left alone.

    If a file or store operation fails, the artifact is marked FAILED
    (output_path untouched) and the error is raised, so a retry can redo
    the whole sequence. A file written under a new path that could not be
    recorded is removed again.

    Args:
        pipeline: Pipeline that owns the artifact store.
        rule: The rule to compile.
        skills_dir: Skills directory. Uses the default if None.

    Returns:
        The artifact after syncing.

    Raises:
        NameExtractionError: If the skill content has no usable name.
        FilesystemError: If the skill file cannot be written or removed.
        PersistenceError: If output_path cannot be stored.
    """
    previous = pipeline.get_artifact(rule.id)
    previous_path = previous.output_path if previous is not None else None

    artifact = await pipeline.compile_rule(rule)

    if not artifact.is_ok:
        logger.warning("Compilation failed for rule %s; skipping skill sync", rule.id)
        return artifact

    written: Path | None = None

    try:
        if artifact.kind is not ArtifactKind.ACTION_BUNDLE:
            if previous is not None and previous_path is not None:
                dematerialize_skill(previous)
            if artifact.output_path is not None:
                artifact = pipeline.record_output_path(artifact, None)
            return artifact

        target = skill_file_path(extract_skill_name(artifact.content), skills_dir)
        if previous is not None and previous_path is not None and Path(previous_path) != target:
            dematerialize_skill(previous)

        written = materialize_skill(artifact, skills_dir)
        artifact = pipeline.record_output_path(artifact, written)
    except (NameExtractionError, FilesystemError, PersistenceError) as e:
        logger.warning("Skill sync failed for rule %s: %s", rule.id, e)
        if written is not None and (previous_path is None or Path(previous_path) != written):
            _discard_unrecorded(written)
        pipeline.mark_failed(artifact, e)
        raise

    return artifact


def cleanup_skills_for_deleted_rule(pipeline: ArtifactPipeline, rule_id: str) -> None:
    """Remove skill files and artifacts of a deleted rule.

    Safe to call when the rule has no artifacts.

    Raises:
        FilesystemError: If an existing skill file cannot be removed.
    """
    for artifact in pipeline.get_artifacts(rule_id):
        if artifact.output_path is not None:
            dematerialize_skill(artifact)
            logger.info(
                "Cleaned up skill file for deleted rule %s, artifact %s", rule_id, artifact.id
            )

    pipeline.remove_artifacts(rule_id)
