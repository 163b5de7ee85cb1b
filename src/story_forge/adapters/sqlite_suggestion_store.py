"""SQLite persistence for assistant output a user chose to keep."""

from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any
from uuid import uuid4

_COLUMNS = (
    "suggestion_id, user_id, story_id, node_id, suggestion_type, original_content, "
    "suggestions, example_edits_json, choices_json, content, note, created_at_utc"
)


@dataclass(frozen=True)
class StoredSuggestion:
    """One saved assistant artifact plus the author's note."""

    suggestion_id: str
    user_id: str
    story_id: str | None
    node_id: str | None
    suggestion_type: str
    original_content: str
    suggestions: str | None
    example_edits: dict[str, str] | None
    choices: list[dict[str, Any]] | None
    content: str | None
    note: str | None
    created_at_utc: str


class SQLiteSuggestionStore:
    """Owner-scoped saved suggestions."""

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize_schema()

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(str(self._db_path))
        connection.row_factory = sqlite3.Row
        return connection

    def _initialize_schema(self) -> None:
        with self._connect() as connection:
            connection.execute(
                """
                CREATE TABLE IF NOT EXISTS saved_suggestions (
                    suggestion_id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    story_id TEXT,
                    node_id TEXT,
                    suggestion_type TEXT NOT NULL,
                    original_content TEXT NOT NULL,
                    suggestions TEXT,
                    example_edits_json TEXT,
                    choices_json TEXT,
                    content TEXT,
                    note TEXT,
                    created_at_utc TEXT NOT NULL
                )
                """
            )
            connection.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_saved_suggestions_user
                ON saved_suggestions(user_id, created_at_utc DESC)
                """
            )
            connection.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_saved_suggestions_user_story
                ON saved_suggestions(user_id, story_id)
                """
            )

    def save_suggestion(
        self,
        *,
        user_id: str,
        suggestion_type: str,
        original_content: str,
        story_id: str | None = None,
        node_id: str | None = None,
        suggestions: str | None = None,
        example_edits: dict[str, str] | None = None,
        choices: list[dict[str, Any]] | None = None,
        content: str | None = None,
        note: str | None = None,
    ) -> StoredSuggestion:
        """Persist one assistant artifact."""
        suggestion_id = uuid4().hex
        with self._connect() as connection:
            connection.execute(
                f"""
                INSERT INTO saved_suggestions ({_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    suggestion_id,
                    user_id,
                    story_id,
                    node_id,
                    suggestion_type,
                    original_content,
                    suggestions,
                    json.dumps(example_edits, ensure_ascii=False) if example_edits else None,
                    json.dumps(choices, ensure_ascii=False) if choices is not None else None,
                    content,
                    note,
                    datetime.now(UTC).isoformat(),
                ),
            )
        stored = self.get_suggestion(suggestion_id=suggestion_id)
        if stored is None:
            raise RuntimeError("Saved suggestion could not be loaded.")
        return stored

    def get_suggestion(self, *, suggestion_id: str) -> StoredSuggestion | None:
        """Load one saved suggestion by id."""
        with self._connect() as connection:
            row = connection.execute(
                f"SELECT {_COLUMNS} FROM saved_suggestions WHERE suggestion_id = ?",
                (suggestion_id,),
            ).fetchone()
        if row is None:
            return None
        return self._from_row(row)

    def list_suggestions(
        self,
        *,
        user_id: str,
        story_id: str | None = None,
        node_id: str | None = None,
        suggestion_type: str | None = None,
    ) -> list[StoredSuggestion]:
        """Return a user's saved suggestions, newest first, with optional filters."""
        clauses = ["user_id = ?"]
        values: list[str] = [user_id]
        if story_id:
            clauses.append("story_id = ?")
            values.append(story_id)
        if node_id:
            clauses.append("node_id = ?")
            values.append(node_id)
        if suggestion_type:
            clauses.append("suggestion_type = ?")
            values.append(suggestion_type)
        with self._connect() as connection:
            rows = connection.execute(
                f"""
                SELECT {_COLUMNS} FROM saved_suggestions
                WHERE {" AND ".join(clauses)}
                ORDER BY created_at_utc DESC, rowid DESC
                """,
                values,
            ).fetchall()
        return [self._from_row(row) for row in rows]

    def update_note(self, *, suggestion_id: str, note: str) -> StoredSuggestion | None:
        """Replace the author note."""
        with self._connect() as connection:
            cursor = connection.execute(
                "UPDATE saved_suggestions SET note = ? WHERE suggestion_id = ?",
                (note, suggestion_id),
            )
            updated_rows = cursor.rowcount
        if updated_rows == 0:
            return None
        return self.get_suggestion(suggestion_id=suggestion_id)

    def delete_suggestion(self, *, suggestion_id: str) -> bool:
        with self._connect() as connection:
            cursor = connection.execute(
                "DELETE FROM saved_suggestions WHERE suggestion_id = ?", (suggestion_id,)
            )
            deleted_rows = cursor.rowcount
        return deleted_rows > 0

    def delete_for_story(self, *, story_id: str) -> int:
        """Drop every saved suggestion tied to a deleted story."""
        with self._connect() as connection:
            cursor = connection.execute(
                "DELETE FROM saved_suggestions WHERE story_id = ?", (story_id,)
            )
            deleted_rows = cursor.rowcount
        return deleted_rows

    @staticmethod
    def _from_row(row: sqlite3.Row) -> StoredSuggestion:
        example_edits_json = row["example_edits_json"]
        choices_json = row["choices_json"]
        return StoredSuggestion(
            suggestion_id=str(row["suggestion_id"]),
            user_id=str(row["user_id"]),
            story_id=row["story_id"],
            node_id=row["node_id"],
            suggestion_type=str(row["suggestion_type"]),
            original_content=str(row["original_content"]),
            suggestions=row["suggestions"],
            example_edits=json.loads(example_edits_json) if example_edits_json else None,
            choices=json.loads(choices_json) if choices_json else None,
            content=row["content"],
            note=row["note"],
            created_at_utc=str(row["created_at_utc"]),
        )
