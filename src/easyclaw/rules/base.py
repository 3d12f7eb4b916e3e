"""Base interfaces for the rules system.

This module defines the core abstractions:
- ArtifactKind: What a rule compiles into (policy fragment, guard, action bundle)
- ArtifactStatus: Outcome of the last compilation attempt
- Rule: User-authored instruction text
- Artifact: Persisted compiled output of a rule
- CompileResult: Output of any compile strategy
- RuleStore / ArtifactStore: Storage protocols the pipeline depends on
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Protocol


class RulesError(Exception):
    """Base class for all rules pipeline errors."""

    pass


class PersistenceError(RulesError):
    """Raised when the rule or artifact store cannot be written."""

    pass


class ArtifactKind(Enum):
    """What a rule compiles into.

    - POLICY_FRAGMENT: Soft guideline injected into the system prompt
    - GUARD: Hard restriction enforced by intercepting tool calls
    - ACTION_BUNDLE: Installable skill materialized as SKILL.md
    """

    POLICY_FRAGMENT = "policy-fragment"
    GUARD = "guard"
    ACTION_BUNDLE = "action-bundle"


class ArtifactStatus(Enum):
    """Status of the last compilation of an artifact."""

    OK = "ok"
    FAILED = "failed"


@dataclass(frozen=True)
class Rule:
    """A user-authored rule.

    Attributes:
        id: Stable identifier assigned by the rule store.
        text: Natural-language rule text.
        created_at: ISO timestamp when created.
        updated_at: ISO timestamp when last edited.
    """

    id: str
    text: str
    created_at: str | None = None
    updated_at: str | None = None


@dataclass(frozen=True)
class Artifact:
    """Compiled output of a rule.

    There is exactly one artifact per rule. Its id never changes once
    created, even when the kind does.

    Attributes:
        id: Stable artifact id (UUID).
        rule_id: Id of the owning rule.
        kind: What the rule compiled into.
        content: Generated payload (text, JSON or SKILL.md).
        status: OK, or FAILED when the last recompile did not succeed.
        compiled_at: ISO timestamp of the last compilation attempt.
        output_path: SKILL.md path while the artifact is materialized.
        created_at: ISO timestamp of first creation, used for ordering.
    """

    id: str
    rule_id: str
    kind: ArtifactKind
    content: str
    status: ArtifactStatus
    compiled_at: str
    output_path: Path | None = None
    created_at: str | None = None

    @property
    def is_ok(self) -> bool:
        """Check if the last compilation succeeded."""
        return self.status is ArtifactStatus.OK


@dataclass(frozen=True)
class CompileResult:
    """Result of compiling rule text."""

    kind: ArtifactKind
    content: str


class RuleStore(Protocol):
    """Read access to rules needed by the pipeline."""

    def get(self, rule_id: str) -> Rule | None: ...

    def get_all(self) -> list[Rule]: ...


class ArtifactStore(Protocol):
    """Artifact persistence used by the pipeline.

    Write methods raise PersistenceError on failure.
    """

    def get_by_rule_id(self, rule_id: str) -> list[Artifact]: ...

    def get_all(self) -> list[Artifact]: ...

    def create(self, artifact: Artifact) -> Artifact: ...

    def update(self, artifact_id: str, **fields: Any) -> Artifact | None: ...

    def delete_by_rule_id(self, rule_id: str) -> int: ...


class RulesStorage(Protocol):
    """Anything exposing a rule store and an artifact store."""

    rules: RuleStore
    artifacts: ArtifactStore
