"""Ports for graph persistence used by the traversal engine."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol

from story_forge.domain.models import Edge, Message, Node, PlaySession, Story

SessionTransition = Callable[[dict[str, Any], float], tuple[dict[str, Any], float]]
"""Maps the stored (flags, score) to the values written with a pointer move."""


class GraphStorePort(Protocol):
    """Read/write operations the traversal engine and session tracker need."""

    def get_story(self, *, story_id: str) -> Story | None: ...

    def get_node(self, *, node_id: str) -> Node | None: ...

    def get_edge(self, *, edge_id: str) -> Edge | None: ...

    def list_outgoing_edges(self, *, story_id: str, from_node_id: str) -> list[Edge]: ...

    def get_session(self, *, session_id: str) -> PlaySession | None: ...

    def create_session(
        self,
        *,
        story_id: str,
        created_by: str,
        title: str | None,
        current_node_id: str,
        opening_node: Node | None,
    ) -> PlaySession: ...

    def list_sessions_for_participant(self, *, user_id: str) -> list[PlaySession]: ...

    def add_participant(self, *, session_id: str, user_id: str) -> PlaySession | None: ...

    def move_session(
        self,
        *,
        session_id: str,
        edge: Edge,
        destination: Node | None,
        reader_id: str,
        transition: SessionTransition | None = None,
    ) -> Message | None: ...

    def append_user_message(self, *, session_id: str, author_id: str, content: str) -> Message: ...

    def list_messages(self, *, session_id: str) -> list[Message]: ...
