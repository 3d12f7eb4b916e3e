"""SQLite storage for rules and their artifacts."""

import sqlite3
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from ..rules.base import Artifact, ArtifactKind, ArtifactStatus, PersistenceError, Rule

_ARTIFACT_FIELDS = ("kind", "content", "status", "compiled_at", "output_path")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class Storage:
    """Persistent storage for rules and artifacts using SQLite.

    Exposes two repositories sharing one connection:
    - rules: RuleRepository
    - artifacts: ArtifactRepository
    """

    def __init__(self, db_path: Path) -> None:
        """Initialize the store with a database path.

        Args:
            db_path: Path to the SQLite database file.
        """
        self.db_path = Path(db_path)
        self._conn: sqlite3.Connection | None = None
        self.rules = RuleRepository(self)
        self.artifacts = ArtifactRepository(self)

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create the database connection."""
        if self._conn is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self.db_path)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
        return self._conn

    def init_db(self) -> None:
        """Create the rules and artifacts tables if they don't exist."""
        conn = self._get_connection()
        conn.execute("""
            CREATE TABLE IF NOT EXISTS rules (
                id          TEXT PRIMARY KEY,
                text        TEXT NOT NULL,
                created_at  TEXT NOT NULL,
                updated_at  TEXT NOT NULL
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS artifacts (
                id           TEXT PRIMARY KEY,
                rule_id      TEXT NOT NULL REFERENCES rules(id) ON DELETE CASCADE,
                kind         TEXT NOT NULL,
                content      TEXT NOT NULL,
                output_path  TEXT,
                status       TEXT NOT NULL,
                compiled_at  TEXT NOT NULL,
                created_at   TEXT NOT NULL
            )
        """)
        conn.execute("CREATE INDEX IF NOT EXISTS idx_artifacts_rule_id ON artifacts(rule_id)")
        conn.commit()

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def _write(self, sql: str, params: tuple[Any, ...]) -> sqlite3.Cursor:
        """Execute a write statement and commit.

        Raises:
            PersistenceError: If SQLite rejects the statement.
        """
        conn = self._get_connection()
        try:
            cursor = conn.execute(sql, params)
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise PersistenceError(f"Database write failed: {e}") from e
        return cursor


class RuleRepository:
    """CRUD access to rules."""

    def __init__(self, storage: Storage) -> None:
        self._storage = storage

    def create(self, text: str, rule_id: str | None = None) -> Rule:
        """Insert a new rule.

        Args:
            text: The rule text.
            rule_id: Id for the new rule. A UUID is generated if None.

        Returns:
            The stored rule with timestamps.
        """
        rule_id = rule_id or str(uuid.uuid4())
        now = _now()
        self._storage._write(
            "INSERT INTO rules (id, text, created_at, updated_at) VALUES (?, ?, ?, ?)",
            (rule_id, text, now, now),
        )
        return Rule(id=rule_id, text=text, created_at=now, updated_at=now)

    def get(self, rule_id: str) -> Rule | None:
        conn = self._storage._get_connection()
        row = conn.execute("SELECT * FROM rules WHERE id = ?", (rule_id,)).fetchone()
        return self._row_to_rule(row) if row else None

    def get_all(self) -> list[Rule]:
        conn = self._storage._get_connection()
        cursor = conn.execute("SELECT * FROM rules ORDER BY created_at ASC, rowid ASC")
        return [self._row_to_rule(row) for row in cursor.fetchall()]

    def update(self, rule_id: str, text: str) -> Rule | None:
        """Change a rule's text.

        Returns:
            The updated rule, or None if it does not exist.
        """
        existing = self.get(rule_id)
        if existing is None:
            return None

        updated_at = _now()
        self._storage._write(
            "UPDATE rules SET text = ?, updated_at = ? WHERE id = ?",
            (text, updated_at, rule_id),
        )
        return Rule(id=rule_id, text=text, created_at=existing.created_at, updated_at=updated_at)

    def delete(self, rule_id: str) -> bool:
        """Delete a rule. Artifacts rows cascade.

        Returns:
            True if a rule was deleted, False otherwise.
        """
        cursor = self._storage._write("DELETE FROM rules WHERE id = ?", (rule_id,))
        return cursor.rowcount > 0

    def _row_to_rule(self, row: sqlite3.Row) -> Rule:
        return Rule(
            id=row["id"],
            text=row["text"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


class ArtifactRepository:
    """Persistence for compiled artifacts.

    The artifact pipeline is the only writer.
    """

    def __init__(self, storage: Storage) -> None:
        self._storage = storage

    def create(self, artifact: Artifact) -> Artifact:
        """Insert a new artifact.

        Raises:
            PersistenceError: If the row cannot be inserted.
        """
        created_at = artifact.created_at or artifact.compiled_at
        self._storage._write(
            """
            INSERT INTO artifacts
                (id, rule_id, kind, content, output_path, status, compiled_at, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                artifact.id,
                artifact.rule_id,
                artifact.kind.value,
                artifact.content,
                str(artifact.output_path) if artifact.output_path is not None else None,
                artifact.status.value,
                artifact.compiled_at,
                created_at,
            ),
        )
        return self.get(artifact.id) or artifact

    def get(self, artifact_id: str) -> Artifact | None:
        conn = self._storage._get_connection()
        row = conn.execute("SELECT * FROM artifacts WHERE id = ?", (artifact_id,)).fetchone()
        return self._row_to_artifact(row) if row else None

    def get_by_rule_id(self, rule_id: str) -> list[Artifact]:
        conn = self._storage._get_connection()
        cursor = conn.execute(
            "SELECT * FROM artifacts WHERE rule_id = ? ORDER BY created_at ASC, rowid ASC",
            (rule_id,),
        )
        return [self._row_to_artifact(row) for row in cursor.fetchall()]

    def get_all(self) -> list[Artifact]:
        """All artifacts in creation order."""
        conn = self._storage._get_connection()
        cursor = conn.execute("SELECT * FROM artifacts ORDER BY created_at ASC, rowid ASC")
        return [self._row_to_artifact(row) for row in cursor.fetchall()]

    def update(self, artifact_id: str, **fields: Any) -> Artifact | None:
        """Update selected fields of an artifact.

        Only the given fields change; passing output_path=None clears it.

        Args:
            artifact_id: Id of the artifact.
            **fields: Any of kind, content, status, compiled_at, output_path.

        Returns:
            The updated artifact, or None if it does not exist.

        Raises:
            ValueError: If an unknown field is given.
            PersistenceError: If the row cannot be written.
        """
        unknown = set(fields) - set(_ARTIFACT_FIELDS)
        if unknown:
            raise ValueError(f"Unknown artifact fields: {', '.join(sorted(unknown))}")

        if self.get(artifact_id) is None:
            return None

        if fields:
            assignments = ", ".join(f"{name} = ?" for name in fields)
            values = tuple(self._to_column(name, value) for name, value in fields.items())
            self._storage._write(
                f"UPDATE artifacts SET {assignments} WHERE id = ?",
                (*values, artifact_id),
            )

        return self.get(artifact_id)

    def delete_by_rule_id(self, rule_id: str) -> int:
        """Delete all artifacts of a rule.

        Returns:
            Number of artifacts deleted.
        """
        cursor = self._storage._write("DELETE FROM artifacts WHERE rule_id = ?", (rule_id,))
        return cursor.rowcount

    def _to_column(self, name: str, value: Any) -> Any:
        if isinstance(value, (ArtifactKind, ArtifactStatus)):
            return value.value
        if name == "output_path" and value is not None:
            return str(value)
        return value

    def _row_to_artifact(self, row: sqlite3.Row) -> Artifact:
        return Artifact(
            id=row["id"],
            rule_id=row["rule_id"],
            kind=ArtifactKind(row["kind"]),
            content=row["content"],
            status=ArtifactStatus(row["status"]),
            compiled_at=row["compiled_at"],
            output_path=Path(row["output_path"]) if row["output_path"] else None,
            created_at=row["created_at"],
        )
