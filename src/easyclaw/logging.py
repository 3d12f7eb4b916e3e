"""JSONL logging of pipeline events for observability."""

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable

if TYPE_CHECKING:
    from .rules.base import Artifact
    from .rules.pipeline import ArtifactPipeline


@dataclass
class LogEntry:
    """A single log entry."""

    timestamp: str
    event: str
    rule_id: str | None = None
    artifact_id: str | None = None
    kind: str | None = None
    status: str | None = None
    output_path: str | None = None
    error: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict, excluding None values."""
        data = asdict(self)
        return {k: v for k, v in data.items() if v is not None and v != {} and v != []}


class JSONLLogger:
    """Logger that writes structured logs in JSONL format."""

    def __init__(
        self,
        log_dir: str | Path | None = None,
        filename: str = "rules.jsonl",
        max_size_mb: float = 10.0,
    ) -> None:
        if log_dir is None:
            log_dir = Path.home() / ".easyclaw" / "logs"
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.filename = filename
        self.max_size_bytes = int(max_size_mb * 1024 * 1024)

    @property
    def log_path(self) -> Path:
        """Current log file path."""
        return self.log_dir / self.filename

    def _rotate_if_needed(self) -> None:
        """Rotate log file if it exceeds max size."""
        if not self.log_path.exists():
            return

        if self.log_path.stat().st_size >= self.max_size_bytes:
            timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
            rotated_name = f"{self.log_path.stem}_{timestamp}.jsonl"
            self.log_path.rename(self.log_dir / rotated_name)

    def _write(self, entry: LogEntry) -> None:
        """Write a log entry to the file."""
        self._rotate_if_needed()

        with open(self.log_path, "a", encoding="utf-8") as f:
            f.write(json.dumps(entry.to_dict(), ensure_ascii=False) + "\n")

    def log(
        self,
        event: str,
        *,
        rule_id: str | None = None,
        artifact_id: str | None = None,
        kind: str | None = None,
        status: str | None = None,
        output_path: str | None = None,
        error: str | None = None,
        **extra: Any,
    ) -> None:
        """Log an event."""
        entry = LogEntry(
            timestamp=datetime.now(timezone.utc).isoformat(),
            event=event,
            rule_id=rule_id,
            artifact_id=artifact_id,
            kind=kind,
            status=status,
            output_path=output_path,
            error=error,
            extra=extra if extra else {},
        )
        self._write(entry)

    def log_compiled(self, rule_id: str, artifact: "Artifact") -> None:
        """Log a successful compilation."""
        self.log(
            "compiled",
            rule_id=rule_id,
            artifact_id=artifact.id,
            kind=artifact.kind.value,
            status=artifact.status.value,
        )

    def log_failed(self, rule_id: str, error: BaseException) -> None:
        """Log a failed compilation or skill sync."""
        self.log(
            "failed",
            rule_id=rule_id,
            error=str(error),
            error_type=type(error).__name__,
        )

    def log_skill_synced(self, artifact: "Artifact") -> None:
        """Log the filesystem state of an artifact after a skill sync."""
        self.log(
            "skill_synced",
            rule_id=artifact.rule_id,
            artifact_id=artifact.id,
            kind=artifact.kind.value,
            status=artifact.status.value,
            output_path=str(artifact.output_path) if artifact.output_path else None,
        )

    def attach(self, pipeline: "ArtifactPipeline") -> list[Callable[[], None]]:
        """Subscribe to a pipeline's compiled and failed events.

        Returns:
            Unsubscribe callables, one per event.
        """
        from .rules.pipeline import PipelineEvent

        return [
            pipeline.subscribe(PipelineEvent.COMPILED, self.log_compiled),
            pipeline.subscribe(PipelineEvent.FAILED, self.log_failed),
        ]


# Global logger instance
_logger: JSONLLogger | None = None


def get_logger() -> JSONLLogger:
    """Get the global logger instance."""
    global _logger
    if _logger is None:
        _logger = JSONLLogger()
    return _logger


def configure_logger(log_dir: str | Path | None = None, max_size_mb: float = 10.0) -> JSONLLogger:
    """Configure and return the global logger."""
    global _logger
    _logger = JSONLLogger(log_dir=log_dir, max_size_mb=max_size_mb)
    return _logger
