"""Storage module for rules and artifacts."""

from .store import ArtifactRepository, RuleRepository, Storage

__all__ = [
    "ArtifactRepository",
    "RuleRepository",
    "Storage",
]
