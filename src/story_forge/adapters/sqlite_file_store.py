"""SQLite blob storage with single-use upload slots."""

from __future__ import annotations

import hashlib
import secrets
import sqlite3
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path
from uuid import uuid4


@dataclass(frozen=True)
class StoredFileMeta:
    """Metadata for one stored blob."""

    storage_id: str
    uploaded_by: str
    content_type: str | None
    size: int
    sha256: str
    created_at_utc: str


class SQLiteFileStore:
    """Keep uploaded files next to the graph tables."""

    def __init__(self, db_path: Path, *, slot_ttl_seconds: int = 3600) -> None:
        self._db_path = db_path
        self._slot_ttl_seconds = slot_ttl_seconds
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
                CREATE TABLE IF NOT EXISTS upload_slots (
                    upload_token TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    expires_at_utc TEXT NOT NULL
                )
                """
            )
            connection.execute(
                """
                CREATE TABLE IF NOT EXISTS stored_files (
                    storage_id TEXT PRIMARY KEY,
                    uploaded_by TEXT NOT NULL,
                    content_type TEXT,
                    size INTEGER NOT NULL,
                    sha256 TEXT NOT NULL,
                    data BLOB NOT NULL,
                    created_at_utc TEXT NOT NULL
                )
                """
            )

    def create_upload_slot(self, *, user_id: str) -> str:
        """Reserve a one-time upload token."""
        token = secrets.token_urlsafe(24)
        expires_at = datetime.now(UTC) + timedelta(seconds=self._slot_ttl_seconds)
        with self._connect() as connection:
            connection.execute(
                """
                INSERT INTO upload_slots (upload_token, user_id, expires_at_utc)
                VALUES (?, ?, ?)
                """,
                (token, user_id, expires_at.isoformat()),
            )
        return token

    def consume_upload_slot(
        self, *, upload_token: str, content_type: str | None, data: bytes
    ) -> StoredFileMeta | None:
        """Store bytes against a valid slot and burn the slot; None if invalid or expired."""
        storage_id = uuid4().hex
        now = datetime.now(UTC).isoformat()
        digest = hashlib.sha256(data).hexdigest()
        with self._connect() as connection:
            row = connection.execute(
                "SELECT user_id FROM upload_slots WHERE upload_token = ? AND expires_at_utc > ?",
                (upload_token, now),
            ).fetchone()
            if row is None:
                return None
            burned = connection.execute(
                "DELETE FROM upload_slots WHERE upload_token = ?", (upload_token,)
            ).rowcount
            if burned == 0:
                return None
            connection.execute(
                """
                INSERT INTO stored_files (
                    storage_id, uploaded_by, content_type, size, sha256, data, created_at_utc
                )
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (storage_id, str(row["user_id"]), content_type, len(data), digest, data, now),
            )
        return StoredFileMeta(
            storage_id=storage_id,
            uploaded_by=str(row["user_id"]),
            content_type=content_type,
            size=len(data),
            sha256=digest,
            created_at_utc=now,
        )

    def get_metadata(self, *, storage_id: str) -> StoredFileMeta | None:
        with self._connect() as connection:
            row = connection.execute(
                """
                SELECT storage_id, uploaded_by, content_type, size, sha256, created_at_utc
                FROM stored_files WHERE storage_id = ?
                """,
                (storage_id,),
            ).fetchone()
        if row is None:
            return None
        return StoredFileMeta(
            storage_id=str(row["storage_id"]),
            uploaded_by=str(row["uploaded_by"]),
            content_type=row["content_type"],
            size=int(row["size"]),
            sha256=str(row["sha256"]),
            created_at_utc=str(row["created_at_utc"]),
        )

    def read_file(self, *, storage_id: str) -> tuple[StoredFileMeta, bytes] | None:
        """Load metadata and bytes for one blob."""
        meta = self.get_metadata(storage_id=storage_id)
        if meta is None:
            return None
        with self._connect() as connection:
            row = connection.execute(
                "SELECT data FROM stored_files WHERE storage_id = ?", (storage_id,)
            ).fetchone()
        if row is None:
            return None
        return meta, bytes(row["data"])

    def delete_file(self, *, storage_id: str) -> bool:
        with self._connect() as connection:
            cursor = connection.execute(
                "DELETE FROM stored_files WHERE storage_id = ?", (storage_id,)
            )
            deleted_rows = cursor.rowcount
        return deleted_rows > 0
