"""SQLite-backed persistence for story graphs, play sessions, and drafts."""

from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any
from uuid import uuid4

from story_forge.domain.models import (
    Draft,
    Edge,
    EdgeConditions,
    EdgeEffects,
    Message,
    Node,
    NodeMetadata,
    PlaySession,
    ProposedEdge,
    ProposedNode,
    Story,
    StoryGraph,
)
from story_forge.domain.ports import SessionTransition

_STORY_COLUMNS = (
    "story_id, title, summary, created_by, public, root_node_id, tags_json, status, "
    "created_at_utc, updated_at_utc"
)
_NODE_COLUMNS = (
    "node_id, story_id, role, title, content, metadata_json, version, image_storage_id, "
    "created_by, created_at_utc"
)
_EDGE_COLUMNS = (
    "edge_id, story_id, from_node_id, to_node_id, label, conditions_json, effects_json, "
    "order_index, created_at_utc"
)
_SESSION_COLUMNS = (
    "session_id, story_id, created_by, title, current_node_id, flags_json, score, is_group, "
    "created_at_utc"
)
_JOINED_SESSION_COLUMNS = ", ".join(
    f"s.{column.strip()} AS {column.strip()}" for column in _SESSION_COLUMNS.split(",")
)
_MESSAGE_COLUMNS = (
    "message_id, session_id, seq, role, content, node_id, author_user_id, chosen_edge_id, "
    "edge_label, read_by_json, created_at_utc"
)
_DRAFT_COLUMNS = (
    "draft_id, story_id, base_node_id, proposed_by, proposed_nodes_json, proposed_edges_json, "
    "status, reviewer_id, reviewer_notes, created_at_utc"
)


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _dump_optional(payload: dict[str, Any] | None) -> str | None:
    if payload is None:
        return None
    return json.dumps(payload, ensure_ascii=False, sort_keys=True)


@dataclass(frozen=True)
class DeletedStory:
    """Counts of records removed by a cascading story delete."""

    story_id: str
    nodes: int
    edges: int
    sessions: int
    messages: int
    drafts: int
    image_storage_ids: tuple[str, ...]


class SQLiteGraphStore:
    """Persist and query stories, nodes, edges, sessions, and messages."""

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
                CREATE TABLE IF NOT EXISTS stories (
                    story_id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    summary TEXT,
                    created_by TEXT NOT NULL,
                    public INTEGER NOT NULL,
                    root_node_id TEXT,
                    tags_json TEXT NOT NULL,
                    status TEXT,
                    created_at_utc TEXT NOT NULL,
                    updated_at_utc TEXT NOT NULL
                )
                """
            )
            connection.execute(
                """
                CREATE TABLE IF NOT EXISTS nodes (
                    node_id TEXT PRIMARY KEY,
                    story_id TEXT NOT NULL,
                    role TEXT NOT NULL,
                    title TEXT,
                    content TEXT NOT NULL,
                    metadata_json TEXT NOT NULL,
                    version INTEGER NOT NULL,
                    image_storage_id TEXT,
                    created_by TEXT NOT NULL,
                    created_at_utc TEXT NOT NULL,
                    FOREIGN KEY (story_id) REFERENCES stories(story_id)
                )
                """
            )
            connection.execute(
                """
                CREATE TABLE IF NOT EXISTS edges (
                    edge_id TEXT PRIMARY KEY,
                    story_id TEXT NOT NULL,
                    from_node_id TEXT NOT NULL,
                    to_node_id TEXT NOT NULL,
                    label TEXT NOT NULL,
                    conditions_json TEXT,
                    effects_json TEXT,
                    order_index INTEGER NOT NULL,
                    created_at_utc TEXT NOT NULL,
                    FOREIGN KEY (story_id) REFERENCES stories(story_id)
                )
                """
            )
            connection.execute(
                """
                CREATE TABLE IF NOT EXISTS sessions (
                    session_id TEXT PRIMARY KEY,
                    story_id TEXT NOT NULL,
                    created_by TEXT NOT NULL,
                    title TEXT,
                    current_node_id TEXT NOT NULL,
                    flags_json TEXT NOT NULL,
                    score REAL NOT NULL,
                    is_group INTEGER NOT NULL,
                    created_at_utc TEXT NOT NULL,
                    FOREIGN KEY (story_id) REFERENCES stories(story_id)
                )
                """
            )
            connection.execute(
                """
                CREATE TABLE IF NOT EXISTS session_participants (
                    session_id TEXT NOT NULL,
                    user_id TEXT NOT NULL,
                    position INTEGER NOT NULL,
                    PRIMARY KEY (session_id, user_id),
                    FOREIGN KEY (session_id) REFERENCES sessions(session_id)
                )
                """
            )
            connection.execute(
                """
                CREATE TABLE IF NOT EXISTS messages (
                    message_id TEXT PRIMARY KEY,
                    session_id TEXT NOT NULL,
                    seq INTEGER NOT NULL,
                    role TEXT NOT NULL,
                    content TEXT NOT NULL,
                    node_id TEXT,
                    author_user_id TEXT,
                    chosen_edge_id TEXT,
                    edge_label TEXT,
                    read_by_json TEXT NOT NULL,
                    created_at_utc TEXT NOT NULL,
                    UNIQUE (session_id, seq),
                    FOREIGN KEY (session_id) REFERENCES sessions(session_id)
                )
                """
            )
            connection.execute(
                """
                CREATE TABLE IF NOT EXISTS drafts (
                    draft_id TEXT PRIMARY KEY,
                    story_id TEXT NOT NULL,
                    base_node_id TEXT NOT NULL,
                    proposed_by TEXT NOT NULL,
                    proposed_nodes_json TEXT NOT NULL,
                    proposed_edges_json TEXT NOT NULL,
                    status TEXT NOT NULL,
                    reviewer_id TEXT,
                    reviewer_notes TEXT,
                    created_at_utc TEXT NOT NULL,
                    FOREIGN KEY (story_id) REFERENCES stories(story_id)
                )
                """
            )
            for statement in (
                "CREATE INDEX IF NOT EXISTS idx_stories_creator ON stories(created_by)",
                "CREATE INDEX IF NOT EXISTS idx_stories_public ON stories(public)",
                "CREATE INDEX IF NOT EXISTS idx_nodes_story ON nodes(story_id)",
                "CREATE INDEX IF NOT EXISTS idx_nodes_story_role ON nodes(story_id, role)",
                "CREATE INDEX IF NOT EXISTS idx_edges_story_from "
                "ON edges(story_id, from_node_id, order_index)",
                "CREATE INDEX IF NOT EXISTS idx_edges_story_to ON edges(story_id, to_node_id)",
                "CREATE INDEX IF NOT EXISTS idx_sessions_story ON sessions(story_id)",
                "CREATE INDEX IF NOT EXISTS idx_sessions_creator ON sessions(created_by)",
                "CREATE INDEX IF NOT EXISTS idx_participants_user "
                "ON session_participants(user_id)",
                "CREATE INDEX IF NOT EXISTS idx_drafts_story ON drafts(story_id)",
                "CREATE INDEX IF NOT EXISTS idx_drafts_proposer ON drafts(proposed_by)",
            ):
                connection.execute(statement)

    # Stories

    def create_story(
        self,
        *,
        created_by: str,
        title: str,
        summary: str | None,
        public: bool,
        root_content: str,
        root_title: str | None,
        tags: list[str] | None = None,
        status: str = "published",
    ) -> Story:
        """Create a story and seed its root narrator node in one transaction."""
        now = _now()
        story_id = uuid4().hex
        root_node_id = uuid4().hex
        with self._connect() as connection:
            connection.execute(
                f"""
                INSERT INTO stories ({_STORY_COLUMNS})
                VALUES (?, ?, ?, ?, ?, NULL, ?, ?, ?, ?)
                """,
                (
                    story_id,
                    title,
                    summary,
                    created_by,
                    int(public),
                    json.dumps(tags or []),
                    status,
                    now,
                    now,
                ),
            )
            connection.execute(
                f"""
                INSERT INTO nodes ({_NODE_COLUMNS})
                VALUES (?, ?, 'narrator', ?, ?, '{{}}', 1, NULL, ?, ?)
                """,
                (
                    root_node_id,
                    story_id,
                    root_title or "Opening Scene",
                    root_content,
                    created_by,
                    now,
                ),
            )
            connection.execute(
                "UPDATE stories SET root_node_id = ? WHERE story_id = ?",
                (root_node_id, story_id),
            )
        story = self.get_story(story_id=story_id)
        if story is None:
            raise RuntimeError("Created story could not be loaded.")
        return story

    def get_story(self, *, story_id: str) -> Story | None:
        """Load one story by id."""
        with self._connect() as connection:
            row = connection.execute(
                f"SELECT {_STORY_COLUMNS} FROM stories WHERE story_id = ?",
                (story_id,),
            ).fetchone()
        if row is None:
            return None
        return self._story_from_row(row)

    def list_visible_stories(self, *, user_id: str, query: str | None = None) -> list[Story]:
        """Return public stories plus the user's own, optionally filtered by text."""
        with self._connect() as connection:
            rows = connection.execute(
                f"""
                SELECT {_STORY_COLUMNS}
                FROM stories
                WHERE public = 1 OR created_by = ?
                ORDER BY created_at_utc DESC, rowid DESC
                """,
                (user_id,),
            ).fetchall()
        stories = [self._story_from_row(row) for row in rows]
        needle = (query or "").strip().lower()
        if not needle:
            return stories
        return [
            story
            for story in stories
            if needle in story.title.lower() or needle in (story.summary or "").lower()
        ]

    def update_story_title(self, *, story_id: str, title: str) -> Story | None:
        """Rename a story and return the new stored value."""
        with self._connect() as connection:
            cursor = connection.execute(
                "UPDATE stories SET title = ?, updated_at_utc = ? WHERE story_id = ?",
                (title, _now(), story_id),
            )
            updated_rows = cursor.rowcount
        if updated_rows == 0:
            return None
        return self.get_story(story_id=story_id)

    def delete_story(self, *, story_id: str) -> DeletedStory | None:
        """Remove a story and every record keyed by it in one transaction."""
        with self._connect() as connection:
            exists = connection.execute(
                "SELECT 1 FROM stories WHERE story_id = ?", (story_id,)
            ).fetchone()
            if exists is None:
                return None
            image_rows = connection.execute(
                """
                SELECT image_storage_id FROM nodes
                WHERE story_id = ? AND image_storage_id IS NOT NULL
                """,
                (story_id,),
            ).fetchall()
            session_ids = [
                str(row["session_id"])
                for row in connection.execute(
                    "SELECT session_id FROM sessions WHERE story_id = ?", (story_id,)
                ).fetchall()
            ]
            messages = 0
            for session_id in session_ids:
                messages += connection.execute(
                    "DELETE FROM messages WHERE session_id = ?", (session_id,)
                ).rowcount
                connection.execute(
                    "DELETE FROM session_participants WHERE session_id = ?", (session_id,)
                )
            sessions = connection.execute(
                "DELETE FROM sessions WHERE story_id = ?", (story_id,)
            ).rowcount
            edges = connection.execute("DELETE FROM edges WHERE story_id = ?", (story_id,)).rowcount
            nodes = connection.execute("DELETE FROM nodes WHERE story_id = ?", (story_id,)).rowcount
            drafts = connection.execute(
                "DELETE FROM drafts WHERE story_id = ?", (story_id,)
            ).rowcount
            connection.execute("DELETE FROM stories WHERE story_id = ?", (story_id,))
        return DeletedStory(
            story_id=story_id,
            nodes=nodes,
            edges=edges,
            sessions=sessions,
            messages=messages,
            drafts=drafts,
            image_storage_ids=tuple(str(row["image_storage_id"]) for row in image_rows),
        )

    def get_story_graph(self, *, story_id: str) -> StoryGraph | None:
        """Load a story with all of its nodes and edges."""
        story = self.get_story(story_id=story_id)
        if story is None:
            return None
        with self._connect() as connection:
            node_rows = connection.execute(
                f"""
                SELECT {_NODE_COLUMNS} FROM nodes
                WHERE story_id = ?
                ORDER BY created_at_utc ASC, rowid ASC
                """,
                (story_id,),
            ).fetchall()
            edge_rows = connection.execute(
                f"""
                SELECT {_EDGE_COLUMNS} FROM edges
                WHERE story_id = ?
                ORDER BY from_node_id, order_index ASC, created_at_utc ASC, rowid ASC
                """,
                (story_id,),
            ).fetchall()
        return StoryGraph(
            story=story,
            nodes=tuple(self._node_from_row(row) for row in node_rows),
            edges=tuple(self._edge_from_row(row) for row in edge_rows),
        )

    # Nodes

    def create_node(
        self,
        *,
        story_id: str,
        role: str,
        content: str,
        created_by: str,
        title: str | None = None,
        metadata: NodeMetadata | None = None,
    ) -> Node:
        """Insert one node into a story."""
        node_id = uuid4().hex
        with self._connect() as connection:
            connection.execute(
                f"""
                INSERT INTO nodes ({_NODE_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, 1, NULL, ?, ?)
                """,
                (
                    node_id,
                    story_id,
                    role,
                    title,
                    content,
                    json.dumps((metadata or NodeMetadata()).to_payload(), sort_keys=True),
                    created_by,
                    _now(),
                ),
            )
        node = self.get_node(node_id=node_id)
        if node is None:
            raise RuntimeError("Created node could not be loaded.")
        return node

    def create_node_with_edge(
        self,
        *,
        story_id: str,
        from_node_id: str,
        label: str,
        content: str,
        title: str | None,
        created_by: str,
        role: str = "narrator",
    ) -> tuple[Node, Edge]:
        """Insert a node plus the edge leading to it from an existing node."""
        node_id = uuid4().hex
        edge_id = uuid4().hex
        now = _now()
        with self._connect() as connection:
            connection.execute(
                f"""
                INSERT INTO nodes ({_NODE_COLUMNS})
                VALUES (?, ?, ?, ?, ?, '{{}}', 1, NULL, ?, ?)
                """,
                (node_id, story_id, role, title, content, created_by, now),
            )
            order_index = self._next_order(
                connection, story_id=story_id, from_node_id=from_node_id
            )
            connection.execute(
                f"""
                INSERT INTO edges ({_EDGE_COLUMNS})
                VALUES (?, ?, ?, ?, ?, NULL, NULL, ?, ?)
                """,
                (edge_id, story_id, from_node_id, node_id, label, order_index, now),
            )
        node = self.get_node(node_id=node_id)
        edge = self.get_edge(edge_id=edge_id)
        if node is None or edge is None:
            raise RuntimeError("Created node or edge could not be loaded.")
        return node, edge

    def get_node(self, *, node_id: str) -> Node | None:
        """Load one node by id."""
        with self._connect() as connection:
            row = connection.execute(
                f"SELECT {_NODE_COLUMNS} FROM nodes WHERE node_id = ?",
                (node_id,),
            ).fetchone()
        if row is None:
            return None
        return self._node_from_row(row)

    def update_node(
        self,
        *,
        node_id: str,
        content: str | None = None,
        title: str | None = None,
        metadata: NodeMetadata | None = None,
    ) -> Node | None:
        """Overwrite node fields in place and bump the version counter."""
        assignments: list[str] = []
        values: list[object] = []
        if content is not None:
            assignments.append("content = ?")
            values.append(content)
        if title is not None:
            assignments.append("title = ?")
            values.append(title)
        if metadata is not None:
            assignments.append("metadata_json = ?")
            values.append(json.dumps(metadata.to_payload(), sort_keys=True))
        if not assignments:
            return self.get_node(node_id=node_id)
        assignments.append("version = version + 1")
        with self._connect() as connection:
            cursor = connection.execute(
                f"UPDATE nodes SET {', '.join(assignments)} WHERE node_id = ?",
                (*values, node_id),
            )
            updated_rows = cursor.rowcount
        if updated_rows == 0:
            return None
        return self.get_node(node_id=node_id)

    def set_node_image(self, *, node_id: str, storage_id: str | None) -> Node | None:
        """Link or unlink a stored image on a node."""
        with self._connect() as connection:
            cursor = connection.execute(
                "UPDATE nodes SET image_storage_id = ? WHERE node_id = ?",
                (storage_id, node_id),
            )
            updated_rows = cursor.rowcount
        if updated_rows == 0:
            return None
        return self.get_node(node_id=node_id)

    def list_nodes_with_image(self, *, storage_id: str) -> list[str]:
        with self._connect() as connection:
            rows = connection.execute(
                "SELECT node_id FROM nodes WHERE image_storage_id = ? ORDER BY node_id",
                (storage_id,),
            ).fetchall()
        return [str(row["node_id"]) for row in rows]

    # Edges

    def create_edge(
        self,
        *,
        story_id: str,
        from_node_id: str,
        to_node_id: str,
        label: str,
        conditions: EdgeConditions | None = None,
        effects: EdgeEffects | None = None,
        order: int | None = None,
    ) -> Edge:
        """Insert one edge; without an explicit order it sorts after its siblings."""
        edge_id = uuid4().hex
        with self._connect() as connection:
            order_index = (
                order
                if order is not None
                else self._next_order(connection, story_id=story_id, from_node_id=from_node_id)
            )
            connection.execute(
                f"""
                INSERT INTO edges ({_EDGE_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    edge_id,
                    story_id,
                    from_node_id,
                    to_node_id,
                    label,
                    _dump_optional(conditions.to_payload() if conditions else None),
                    _dump_optional(effects.to_payload() if effects else None),
                    order_index,
                    _now(),
                ),
            )
        edge = self.get_edge(edge_id=edge_id)
        if edge is None:
            raise RuntimeError("Created edge could not be loaded.")
        return edge

    def get_edge(self, *, edge_id: str) -> Edge | None:
        """Load one edge by id."""
        with self._connect() as connection:
            row = connection.execute(
                f"SELECT {_EDGE_COLUMNS} FROM edges WHERE edge_id = ?",
                (edge_id,),
            ).fetchone()
        if row is None:
            return None
        return self._edge_from_row(row)

    def delete_edge(self, *, edge_id: str) -> bool:
        """Delete one edge; return False when it did not exist."""
        with self._connect() as connection:
            cursor = connection.execute("DELETE FROM edges WHERE edge_id = ?", (edge_id,))
            deleted_rows = cursor.rowcount
        return deleted_rows > 0

    def list_outgoing_edges(self, *, story_id: str, from_node_id: str) -> list[Edge]:
        """Return edges leaving a node in ascending stable order."""
        with self._connect() as connection:
            rows = connection.execute(
                f"""
                SELECT {_EDGE_COLUMNS} FROM edges
                WHERE story_id = ? AND from_node_id = ?
                ORDER BY order_index ASC, created_at_utc ASC, rowid ASC
                """,
                (story_id, from_node_id),
            ).fetchall()
        return [self._edge_from_row(row) for row in rows]

    # Sessions

    def create_session(
        self,
        *,
        story_id: str,
        created_by: str,
        title: str | None,
        current_node_id: str,
        opening_node: Node | None,
    ) -> PlaySession:
        """Create a solo session and put the opening node into its timeline."""
        session_id = uuid4().hex
        now = _now()
        with self._connect() as connection:
            connection.execute(
                f"""
                INSERT INTO sessions ({_SESSION_COLUMNS})
                VALUES (?, ?, ?, ?, ?, '{{}}', 0, 0, ?)
                """,
                (session_id, story_id, created_by, title, current_node_id, now),
            )
            connection.execute(
                """
                INSERT INTO session_participants (session_id, user_id, position)
                VALUES (?, ?, 0)
                """,
                (session_id, created_by),
            )
            if opening_node is not None:
                self._insert_message(
                    connection,
                    session_id=session_id,
                    role=opening_node.role,
                    content=opening_node.content,
                    node_id=opening_node.node_id,
                    author_user_id=None,
                    chosen_edge_id=None,
                    edge_label=None,
                    read_by=[created_by],
                )
        session = self.get_session(session_id=session_id)
        if session is None:
            raise RuntimeError("Created session could not be loaded.")
        return session

    def get_session(self, *, session_id: str) -> PlaySession | None:
        """Load one session with its ordered participant list."""
        with self._connect() as connection:
            row = connection.execute(
                f"SELECT {_SESSION_COLUMNS} FROM sessions WHERE session_id = ?",
                (session_id,),
            ).fetchone()
            if row is None:
                return None
            participants = self._participants(connection, session_id=session_id)
        return self._session_from_row(row, participants)

    def list_sessions_for_participant(self, *, user_id: str) -> list[PlaySession]:
        """Return sessions a user takes part in, newest first."""
        with self._connect() as connection:
            rows = connection.execute(
                f"""
                SELECT {_JOINED_SESSION_COLUMNS}
                FROM sessions s
                JOIN session_participants p ON p.session_id = s.session_id
                WHERE p.user_id = ?
                ORDER BY s.created_at_utc DESC, s.rowid DESC
                """,
                (user_id,),
            ).fetchall()
            sessions = [
                self._session_from_row(
                    row, self._participants(connection, session_id=str(row["session_id"]))
                )
                for row in rows
            ]
        return sessions

    def list_sessions_for_story(self, *, story_id: str) -> list[PlaySession]:
        """Return every session played on a story."""
        with self._connect() as connection:
            rows = connection.execute(
                f"""
                SELECT {_SESSION_COLUMNS} FROM sessions
                WHERE story_id = ?
                ORDER BY created_at_utc ASC, rowid ASC
                """,
                (story_id,),
            ).fetchall()
            sessions = [
                self._session_from_row(
                    row, self._participants(connection, session_id=str(row["session_id"]))
                )
                for row in rows
            ]
        return sessions

    def add_participant(self, *, session_id: str, user_id: str) -> PlaySession | None:
        """Add a participant once and mark the session as a group session."""
        with self._connect() as connection:
            cursor = connection.execute(
                "UPDATE sessions SET is_group = 1 WHERE session_id = ?", (session_id,)
            )
            if cursor.rowcount == 0:
                return None
            connection.execute(
                """
                INSERT OR IGNORE INTO session_participants (session_id, user_id, position)
                SELECT ?, ?, COALESCE(MAX(position), -1) + 1
                FROM session_participants WHERE session_id = ?
                """,
                (session_id, user_id, session_id),
            )
        return self.get_session(session_id=session_id)

    def move_session(
        self,
        *,
        session_id: str,
        edge: Edge,
        destination: Node | None,
        reader_id: str,
        transition: SessionTransition | None = None,
    ) -> Message | None:
        """Relocate the pointer along an edge and append the destination message.

        ``transition`` receives the flags/score read under the write lock; an
        exception raised from it rolls the whole move back.
        """
        with self._connect() as connection:
            connection.execute("BEGIN IMMEDIATE")
            if transition is None:
                connection.execute(
                    "UPDATE sessions SET current_node_id = ? WHERE session_id = ?",
                    (edge.to_node_id, session_id),
                )
            else:
                row = connection.execute(
                    "SELECT flags_json, score FROM sessions WHERE session_id = ?",
                    (session_id,),
                ).fetchone()
                if row is None:
                    raise RuntimeError("Session could not be loaded.")
                flags, score = transition(dict(json.loads(row["flags_json"])), float(row["score"]))
                connection.execute(
                    """
                    UPDATE sessions
                    SET current_node_id = ?, flags_json = ?, score = ?
                    WHERE session_id = ?
                    """,
                    (edge.to_node_id, json.dumps(flags, sort_keys=True), score, session_id),
                )
            if destination is None:
                return None
            message_id = self._insert_message(
                connection,
                session_id=session_id,
                role=destination.role,
                content=destination.content,
                node_id=destination.node_id,
                author_user_id=None,
                chosen_edge_id=edge.edge_id,
                edge_label=edge.label,
                read_by=[reader_id],
            )
            row = connection.execute(
                f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE message_id = ?",
                (message_id,),
            ).fetchone()
        return self._message_from_row(row)

    def append_user_message(self, *, session_id: str, author_id: str, content: str) -> Message:
        """Append a free-form user message without touching the pointer."""
        with self._connect() as connection:
            message_id = self._insert_message(
                connection,
                session_id=session_id,
                role="user",
                content=content,
                node_id=None,
                author_user_id=author_id,
                chosen_edge_id=None,
                edge_label=None,
                read_by=[author_id],
            )
            row = connection.execute(
                f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE message_id = ?",
                (message_id,),
            ).fetchone()
        return self._message_from_row(row)

    def list_messages(self, *, session_id: str) -> list[Message]:
        """Return a session timeline in append order."""
        with self._connect() as connection:
            rows = connection.execute(
                f"""
                SELECT {_MESSAGE_COLUMNS} FROM messages
                WHERE session_id = ?
                ORDER BY seq ASC
                """,
                (session_id,),
            ).fetchall()
        return [self._message_from_row(row) for row in rows]

    # Drafts

    def create_draft(
        self,
        *,
        story_id: str,
        base_node_id: str,
        proposed_by: str,
        proposed_nodes: list[ProposedNode],
        proposed_edges: list[ProposedEdge],
    ) -> Draft:
        """Store a pending branch proposal."""
        draft_id = uuid4().hex
        nodes_json = json.dumps(
            [
                {
                    "temp_id": node.temp_id,
                    "role": node.role,
                    "content": node.content,
                    "order": node.order,
                    "metadata": node.metadata,
                }
                for node in proposed_nodes
            ],
            ensure_ascii=False,
        )
        edges_json = json.dumps(
            [
                {
                    "from_ref": edge.from_ref,
                    "to_ref": edge.to_ref,
                    "label": edge.label,
                    "order": edge.order,
                    "conditions": edge.conditions,
                    "effects": edge.effects,
                }
                for edge in proposed_edges
            ],
            ensure_ascii=False,
        )
        with self._connect() as connection:
            connection.execute(
                f"""
                INSERT INTO drafts ({_DRAFT_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, 'pending', NULL, NULL, ?)
                """,
                (draft_id, story_id, base_node_id, proposed_by, nodes_json, edges_json, _now()),
            )
        draft = self.get_draft(draft_id=draft_id)
        if draft is None:
            raise RuntimeError("Created draft could not be loaded.")
        return draft

    def get_draft(self, *, draft_id: str) -> Draft | None:
        """Load one draft proposal by id."""
        with self._connect() as connection:
            row = connection.execute(
                f"SELECT {_DRAFT_COLUMNS} FROM drafts WHERE draft_id = ?",
                (draft_id,),
            ).fetchone()
        if row is None:
            return None
        return self._draft_from_row(row)

    def list_drafts(self, *, story_id: str) -> list[Draft]:
        """Return draft proposals for a story, newest first."""
        with self._connect() as connection:
            rows = connection.execute(
                f"""
                SELECT {_DRAFT_COLUMNS}
                FROM drafts
                WHERE story_id = ?
                ORDER BY created_at_utc DESC, rowid DESC
                """,
                (story_id,),
            ).fetchall()
        return [self._draft_from_row(row) for row in rows]

    # Internals

    @staticmethod
    def _next_order(connection: sqlite3.Connection, *, story_id: str, from_node_id: str) -> int:
        row = connection.execute(
            """
            SELECT COALESCE(MAX(order_index), -1) + 1 AS next_order
            FROM edges
            WHERE story_id = ? AND from_node_id = ?
            """,
            (story_id, from_node_id),
        ).fetchone()
        return int(row["next_order"])

    @staticmethod
    def _participants(connection: sqlite3.Connection, *, session_id: str) -> tuple[str, ...]:
        rows = connection.execute(
            """
            SELECT user_id FROM session_participants
            WHERE session_id = ?
            ORDER BY position ASC
            """,
            (session_id,),
        ).fetchall()
        return tuple(str(row["user_id"]) for row in rows)

    @staticmethod
    def _insert_message(
        connection: sqlite3.Connection,
        *,
        session_id: str,
        role: str,
        content: str,
        node_id: str | None,
        author_user_id: str | None,
        chosen_edge_id: str | None,
        edge_label: str | None,
        read_by: list[str],
    ) -> str:
        message_id = uuid4().hex
        connection.execute(
            f"""
            INSERT INTO messages ({_MESSAGE_COLUMNS})
            SELECT ?, ?, COALESCE(MAX(seq), 0) + 1, ?, ?, ?, ?, ?, ?, ?, ?
            FROM messages WHERE session_id = ?
            """,
            (
                message_id,
                session_id,
                role,
                content,
                node_id,
                author_user_id,
                chosen_edge_id,
                edge_label,
                json.dumps(read_by),
                _now(),
                session_id,
            ),
        )
        return message_id

    @staticmethod
    def _story_from_row(row: sqlite3.Row) -> Story:
        return Story(
            story_id=str(row["story_id"]),
            title=str(row["title"]),
            summary=row["summary"],
            created_by=str(row["created_by"]),
            public=bool(row["public"]),
            root_node_id=row["root_node_id"],
            tags=tuple(json.loads(row["tags_json"])),
            status=row["status"],
            created_at_utc=str(row["created_at_utc"]),
            updated_at_utc=str(row["updated_at_utc"]),
        )

    @staticmethod
    def _node_from_row(row: sqlite3.Row) -> Node:
        return Node(
            node_id=str(row["node_id"]),
            story_id=str(row["story_id"]),
            role=str(row["role"]),
            title=row["title"],
            content=str(row["content"]),
            metadata=NodeMetadata.from_payload(json.loads(row["metadata_json"])),
            version=int(row["version"]),
            image_storage_id=row["image_storage_id"],
            created_by=str(row["created_by"]),
            created_at_utc=str(row["created_at_utc"]),
        )

    @staticmethod
    def _edge_from_row(row: sqlite3.Row) -> Edge:
        conditions_json = row["conditions_json"]
        effects_json = row["effects_json"]
        return Edge(
            edge_id=str(row["edge_id"]),
            story_id=str(row["story_id"]),
            from_node_id=str(row["from_node_id"]),
            to_node_id=str(row["to_node_id"]),
            label=str(row["label"]),
            conditions=EdgeConditions.from_payload(json.loads(conditions_json))
            if conditions_json
            else None,
            effects=EdgeEffects.from_payload(json.loads(effects_json)) if effects_json else None,
            order=int(row["order_index"]),
            created_at_utc=str(row["created_at_utc"]),
        )

    @staticmethod
    def _session_from_row(row: sqlite3.Row, participants: tuple[str, ...]) -> PlaySession:
        return PlaySession(
            session_id=str(row["session_id"]),
            story_id=str(row["story_id"]),
            created_by=str(row["created_by"]),
            title=row["title"],
            participants=participants,
            current_node_id=str(row["current_node_id"]),
            flags=dict(json.loads(row["flags_json"])),
            score=float(row["score"]),
            is_group=bool(row["is_group"]),
            created_at_utc=str(row["created_at_utc"]),
        )

    @staticmethod
    def _message_from_row(row: sqlite3.Row) -> Message:
        return Message(
            message_id=str(row["message_id"]),
            session_id=str(row["session_id"]),
            seq=int(row["seq"]),
            role=str(row["role"]),
            content=str(row["content"]),
            node_id=row["node_id"],
            author_user_id=row["author_user_id"],
            chosen_edge_id=row["chosen_edge_id"],
            edge_label=row["edge_label"],
            read_by=tuple(json.loads(row["read_by_json"])),
            created_at_utc=str(row["created_at_utc"]),
        )

    @staticmethod
    def _draft_from_row(row: sqlite3.Row) -> Draft:
        return Draft(
            draft_id=str(row["draft_id"]),
            story_id=str(row["story_id"]),
            base_node_id=str(row["base_node_id"]),
            proposed_by=str(row["proposed_by"]),
            proposed_nodes=tuple(
                ProposedNode(
                    temp_id=str(item["temp_id"]),
                    role=str(item["role"]),
                    content=str(item["content"]),
                    order=int(item["order"]),
                    metadata=dict(item.get("metadata") or {}),
                )
                for item in json.loads(row["proposed_nodes_json"])
            ),
            proposed_edges=tuple(
                ProposedEdge(
                    from_ref=str(item["from_ref"]),
                    to_ref=str(item["to_ref"]),
                    label=str(item["label"]),
                    order=int(item["order"]),
                    conditions=item.get("conditions"),
                    effects=item.get("effects"),
                )
                for item in json.loads(row["proposed_edges_json"])
            ),
            status=str(row["status"]),
            reviewer_id=row["reviewer_id"],
            reviewer_notes=row["reviewer_notes"],
            created_at_utc=str(row["created_at_utc"]),
        )
