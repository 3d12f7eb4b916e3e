"""ArtifactPipeline: compiles rules into stored artifacts.

The pipeline handles:
- Compilation: strategy first (if configured), heuristic compiler as fallback
- Persistence: exactly one artifact per rule, updated in place
- Failure semantics: last-known-good content survives a failed recompile
- Events: compiled/failed notifications for the surrounding application
- Views: the agent-facing policy text and the list of active guards
"""

import asyncio
import inspect
import logging
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable

from .base import (
    Artifact,
    ArtifactKind,
    ArtifactStatus,
    CompileResult,
    PersistenceError,
    Rule,
    RulesStorage,
)
from .compiler import compile_rule_text
from .strategy import CompileStrategy, validate_result

logger = logging.getLogger(__name__)

DEFAULT_MAX_POLICY_LENGTH = 4000

EventHandler = Callable[[str, Any], None]


class PipelineEvent(Enum):
    """Events emitted by the pipeline.

    - COMPILED: handler(rule_id, artifact)
    - FAILED: handler(rule_id, error)
    """

    COMPILED = "compiled"
    FAILED = "failed"


@dataclass(frozen=True)
class RecompileSummary:
    """Outcome of recompiling every rule."""

    succeeded: int
    failed: int

    @property
    def total(self) -> int:
        return self.succeeded + self.failed


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ArtifactPipeline:
    """Compile rules into artifacts and keep them in the artifact store.

    Callers must not compile the same rule concurrently; the lookup and
    upsert of a rule's artifact are not atomic. Distinct rules are
    independent.

    Example:
        storage = Storage(db_path)
        storage.init_db()
        pipeline = ArtifactPipeline(storage)

        unsubscribe = pipeline.subscribe(PipelineEvent.FAILED, on_failed)
        artifact = await pipeline.compile_rule(rule)
        policy = pipeline.get_compiled_policy_view()
    """

    def __init__(
        self,
        storage: RulesStorage,
        strategy: CompileStrategy | None = None,
        max_policy_length: int = DEFAULT_MAX_POLICY_LENGTH,
    ) -> None:
        """Initialize the pipeline.

        Args:
            storage: Object exposing `rules` and `artifacts` stores.
            strategy: Optional enhanced compile strategy (e.g. LLM-backed).
            max_policy_length: Default bound for the policy view.
        """
        self.storage = storage
        self.strategy = strategy
        self.max_policy_length = max_policy_length
        self._handlers: dict[PipelineEvent, list[EventHandler]] = {
            event: [] for event in PipelineEvent
        }

    def subscribe(self, event: PipelineEvent, handler: EventHandler) -> Callable[[], None]:
        """Register a handler for an event.

        Returns:
            A callable that unsubscribes the handler.
        """
        self._handlers[event].append(handler)
        return lambda: self.unsubscribe(event, handler)

    def unsubscribe(self, event: PipelineEvent, handler: EventHandler) -> bool:
        """Remove a handler. Returns False if it was not subscribed."""
        try:
            self._handlers[event].remove(handler)
        except ValueError:
            return False
        return True

    def _emit(self, event: PipelineEvent, rule_id: str, payload: Any) -> None:
        for handler in list(self._handlers[event]):
            try:
                handler(rule_id, payload)
            except Exception:
                logger.exception("Handler for %s event failed (rule %s)", event.value, rule_id)

    def get_artifacts(self, rule_id: str) -> list[Artifact]:
        """All stored artifacts for a rule (normally zero or one)."""
        return self.storage.artifacts.get_by_rule_id(rule_id)

    def get_artifact(self, rule_id: str) -> Artifact | None:
        """The rule's artifact, or None if the rule was never compiled."""
        artifacts = self.get_artifacts(rule_id)
        return artifacts[0] if artifacts else None

    def record_output_path(self, artifact: Artifact, output_path: Path | None) -> Artifact:
        """Persist (or clear) the materialized skill path of an artifact.

        Raises:
            PersistenceError: If the artifact row cannot be updated.
        """
        updated = self.storage.artifacts.update(artifact.id, output_path=output_path)
        if updated is None:
            raise PersistenceError(f"Artifact {artifact.id} not found while recording output path")
        return updated

    def mark_failed(self, artifact: Artifact, error: Exception) -> Artifact:
        """Set an artifact's status to FAILED and emit a failed event.

        Content and kind are left untouched.
        """
        failed = self._persist_failed_status(artifact)
        self._emit(PipelineEvent.FAILED, artifact.rule_id, error)
        return failed

    def _persist_failed_status(self, artifact: Artifact) -> Artifact:
        try:
            updated = self.storage.artifacts.update(
                artifact.id,
                status=ArtifactStatus.FAILED,
                compiled_at=_now(),
            )
        except Exception as e:
            logger.warning("Cannot persist failed status for artifact %s: %s", artifact.id, e)
            updated = None
        return updated or replace(artifact, status=ArtifactStatus.FAILED)

    async def _compile_text(self, text: str) -> CompileResult:
        if self.strategy is None:
            return compile_rule_text(text)

        try:
            result = self.strategy(text)
            if inspect.isawaitable(result):
                result = await result
            return validate_result(result)
        except Exception as e:
            logger.warning("Compile strategy failed, using heuristic compiler: %s", e)
            return compile_rule_text(text)

    async def compile_rule(self, rule: Rule) -> Artifact:
        """Compile (or recompile) a rule into its artifact.

        Each rule has exactly ONE artifact. An existing artifact is updated
        in place and keeps its id, even when the kind changes.

        Never raises. On failure the previous artifact (if any) keeps its
        content and kind and only its status becomes FAILED. Without a
        previous artifact nothing is stored and an unsaved FAILED artifact
        is returned. A failed event is emitted in both cases.

        Args:
            rule: The rule to compile.

        Returns:
            The stored artifact, or a FAILED artifact on failure.
        """
        existing: Artifact | None = None

        try:
            existing = self.get_artifact(rule.id)
            result = await self._compile_text(rule.text)
            now = _now()

            if existing is not None:
                artifact = self.storage.artifacts.update(
                    existing.id,
                    kind=result.kind,
                    content=result.content,
                    status=ArtifactStatus.OK,
                    compiled_at=now,
                )
                if artifact is None:
                    raise PersistenceError(
                        f"Failed to update artifact {existing.id} for rule {rule.id}"
                    )
            else:
                artifact = self.storage.artifacts.create(
                    Artifact(
                        id=str(uuid.uuid4()),
                        rule_id=rule.id,
                        kind=result.kind,
                        content=result.content,
                        status=ArtifactStatus.OK,
                        compiled_at=now,
                        created_at=now,
                    )
                )
        except Exception as e:
            return self._fail(rule.id, existing, e)

        logger.info(
            "Compiled rule %s -> %s artifact %s", rule.id, artifact.kind.value, artifact.id
        )
        self._emit(PipelineEvent.COMPILED, rule.id, artifact)
        return artifact

    def _fail(self, rule_id: str, existing: Artifact | None, error: Exception) -> Artifact:
        logger.warning("Failed to compile rule %s: %s", rule_id, error)

        if existing is not None:
            failed = self._persist_failed_status(existing)
        else:
            failed = Artifact(
                id=str(uuid.uuid4()),
                rule_id=rule_id,
                kind=ArtifactKind.POLICY_FRAGMENT,
                content="",
                status=ArtifactStatus.FAILED,
                compiled_at=_now(),
            )

        self._emit(PipelineEvent.FAILED, rule_id, error)
        return failed

    async def recompile_all(self) -> RecompileSummary:
        """Recompile every rule in the rule store.

        Rules are compiled concurrently; one rule failing never stops the
        others.

        Returns:
            Counts of succeeded and failed rules.
        """
        rules = self.storage.rules.get_all()
        results = await asyncio.gather(
            *(self.compile_rule(rule) for rule in rules),
            return_exceptions=True,
        )

        succeeded = sum(1 for r in results if isinstance(r, Artifact) and r.is_ok)
        summary = RecompileSummary(succeeded=succeeded, failed=len(results) - succeeded)
        logger.info(
            "Recompiled all rules: %d succeeded, %d failed", summary.succeeded, summary.failed
        )
        return summary

    def remove_artifacts(self, rule_id: str) -> int:
        """Delete all artifacts of a rule.

        Returns:
            Number of artifacts removed (0 if there were none).
        """
        count = self.storage.artifacts.delete_by_rule_id(rule_id)
        logger.info("Removed %d artifact(s) for rule %s", count, rule_id)
        return count

    def get_compiled_policy_view(self, max_length: int | None = None) -> str:
        """Concatenate OK policy fragments, bounded to max_length.

        Fragments are newline-joined in creation order. Only whole
        fragments are included; the view stops at the first fragment that
        would push it over the bound.

        Args:
            max_length: Maximum length of the result. Defaults to the
                pipeline's max_policy_length.
        """
        limit = self.max_policy_length if max_length is None else max_length

        fragments: list[str] = []
        total = 0
        for artifact in self.storage.artifacts.get_all():
            if artifact.kind is not ArtifactKind.POLICY_FRAGMENT or not artifact.is_ok:
                continue
            next_total = total + (1 if fragments else 0) + len(artifact.content)
            if next_total > limit:
                break
            fragments.append(artifact.content)
            total = next_total

        return "\n".join(fragments)

    def get_active_guards(self) -> list[Artifact]:
        """All guard artifacts whose last compilation succeeded."""
        return [
            artifact
            for artifact in self.storage.artifacts.get_all()
            if artifact.kind is ArtifactKind.GUARD and artifact.is_ok
        ]
