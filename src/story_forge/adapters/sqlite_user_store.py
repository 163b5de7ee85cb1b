"""SQLite-backed persistence for player accounts and bearer tokens."""

from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from uuid import uuid4

_USER_COLUMNS = (
    "user_id, email, display_name, password_hash, external_id, avatar_url, roles_json, "
    "created_at_utc"
)


@dataclass(frozen=True)
class StoredUser:
    """Stored user account data."""

    user_id: str
    email: str | None
    display_name: str
    password_hash: str | None
    external_id: str | None
    avatar_url: str | None
    roles: tuple[str, ...]
    created_at_utc: str

    @property
    def is_admin(self) -> bool:
        return "admin" in self.roles


@dataclass(frozen=True)
class StoredToken:
    """Stored bearer-token session."""

    token_id: str
    user_id: str
    token_value: str
    expires_at_utc: str
    created_at_utc: str


class SQLiteUserStore:
    """Persist users from local registration or an external identity provider."""

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
                CREATE TABLE IF NOT EXISTS users (
                    user_id TEXT PRIMARY KEY,
                    email TEXT UNIQUE,
                    display_name TEXT NOT NULL,
                    password_hash TEXT,
                    external_id TEXT UNIQUE,
                    avatar_url TEXT,
                    roles_json TEXT NOT NULL,
                    created_at_utc TEXT NOT NULL
                )
                """
            )
            connection.execute(
                """
                CREATE TABLE IF NOT EXISTS access_tokens (
                    token_id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    token_value TEXT NOT NULL UNIQUE,
                    expires_at_utc TEXT NOT NULL,
                    created_at_utc TEXT NOT NULL,
                    FOREIGN KEY (user_id) REFERENCES users(user_id)
                )
                """
            )
            connection.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_tokens_user
                ON access_tokens(user_id, expires_at_utc DESC)
                """
            )

    def create_user(
        self,
        *,
        email: str,
        display_name: str,
        password_hash: str,
        roles: list[str] | None = None,
    ) -> StoredUser | None:
        """Create a local account; return None when email is already taken."""
        user_id = uuid4().hex
        try:
            with self._connect() as connection:
                connection.execute(
                    f"""
                    INSERT INTO users ({_USER_COLUMNS})
                    VALUES (?, ?, ?, ?, NULL, NULL, ?, ?)
                    """,
                    (
                        user_id,
                        email.lower(),
                        display_name,
                        password_hash,
                        json.dumps(roles or ["player"]),
                        datetime.now(UTC).isoformat(),
                    ),
                )
        except sqlite3.IntegrityError:
            return None
        return self.get_user_by_id(user_id=user_id)

    def get_or_create_external_user(
        self,
        *,
        external_id: str,
        display_name: str,
        email: str | None = None,
        avatar_url: str | None = None,
        roles: list[str] | None = None,
    ) -> StoredUser:
        """Resolve an identity-provider subject to a user, seeding it on first sight."""
        existing = self.get_user_by_external_id(external_id=external_id)
        if existing is not None:
            return existing
        user_id = uuid4().hex
        normalized_email = email.lower() if email else None
        with self._connect() as connection:
            if normalized_email is not None:
                taken = connection.execute(
                    "SELECT 1 FROM users WHERE email = ?", (normalized_email,)
                ).fetchone()
                if taken is not None:
                    normalized_email = None
            connection.execute(
                f"""
                INSERT OR IGNORE INTO users ({_USER_COLUMNS})
                VALUES (?, ?, ?, NULL, ?, ?, ?, ?)
                """,
                (
                    user_id,
                    normalized_email,
                    display_name,
                    external_id,
                    avatar_url,
                    json.dumps(roles or ["player"]),
                    datetime.now(UTC).isoformat(),
                ),
            )
        user = self.get_user_by_external_id(external_id=external_id)
        if user is None:
            raise RuntimeError("External user could not be loaded.")
        return user

    def get_user_by_email(self, *, email: str) -> StoredUser | None:
        """Load one user by normalized email."""
        return self._get_one("email = ?", email.lower())

    def get_user_by_id(self, *, user_id: str) -> StoredUser | None:
        """Load one user by id."""
        return self._get_one("user_id = ?", user_id)

    def get_user_by_external_id(self, *, external_id: str) -> StoredUser | None:
        """Load one user by identity-provider subject."""
        return self._get_one("external_id = ?", external_id)

    def display_names(self, *, user_ids: list[str]) -> dict[str, str]:
        """Map user ids to display names for timeline decoration."""
        unique_ids = sorted(set(user_ids))
        if not unique_ids:
            return {}
        placeholders = ", ".join("?" for _ in unique_ids)
        with self._connect() as connection:
            rows = connection.execute(
                f"SELECT user_id, display_name FROM users WHERE user_id IN ({placeholders})",
                unique_ids,
            ).fetchall()
        return {str(row["user_id"]): str(row["display_name"]) for row in rows}

    def create_token(self, *, user_id: str, token_value: str, expires_at_utc: str) -> StoredToken:
        """Create and store a bearer token."""
        token_id = uuid4().hex
        now = datetime.now(UTC).isoformat()
        with self._connect() as connection:
            connection.execute(
                """
                INSERT INTO access_tokens (
                    token_id, user_id, token_value, expires_at_utc, created_at_utc
                )
                VALUES (?, ?, ?, ?, ?)
                """,
                (token_id, user_id, token_value, expires_at_utc, now),
            )
        return StoredToken(
            token_id=token_id,
            user_id=user_id,
            token_value=token_value,
            expires_at_utc=expires_at_utc,
            created_at_utc=now,
        )

    def get_user_by_token(self, *, token_value: str, now_utc: str) -> StoredUser | None:
        """Resolve a bearer token into a user if it is still valid."""
        columns = ", ".join(f"u.{column.strip()}" for column in _USER_COLUMNS.split(","))
        with self._connect() as connection:
            row = connection.execute(
                f"""
                SELECT {columns}
                FROM access_tokens t
                JOIN users u ON u.user_id = t.user_id
                WHERE t.token_value = ? AND t.expires_at_utc > ?
                """,
                (token_value, now_utc),
            ).fetchone()
        if row is None:
            return None
        return self._user_from_row(row)

    def _get_one(self, where: str, value: str) -> StoredUser | None:
        with self._connect() as connection:
            row = connection.execute(
                f"SELECT {_USER_COLUMNS} FROM users WHERE {where}",
                (value,),
            ).fetchone()
        if row is None:
            return None
        return self._user_from_row(row)

    @staticmethod
    def _user_from_row(row: sqlite3.Row) -> StoredUser:
        return StoredUser(
            user_id=str(row["user_id"]),
            email=row["email"],
            display_name=str(row["display_name"]),
            password_hash=row["password_hash"],
            external_id=row["external_id"],
            avatar_url=row["avatar_url"],
            roles=tuple(json.loads(row["roles_json"])),
            created_at_utc=str(row["created_at_utc"]),
        )
