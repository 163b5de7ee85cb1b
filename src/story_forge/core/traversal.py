"""Session pointer movement along a story graph.

Every state change of a playthrough goes through :class:`TraversalEngine`:
choosing an edge, auto-advancing along the first choice, and posting a
free-form chat line. Each operation checks participant membership first and
performs at most one pointer move plus one message append, both inside a
single store transaction.

Edge ``conditions``/``effects`` are only evaluated when the engine is built
with ``enforce_edge_rules=True``; otherwise every edge of the session's story
is selectable and flags/score are left untouched.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from story_forge.core.edge_rules import RuleCheck, apply_effects, check_conditions
from story_forge.core.errors import (
    AuthorizationError,
    ChoiceLockedError,
    IntegrityError,
    NotFoundError,
)
from story_forge.domain.models import Edge, Message, PlaySession
from story_forge.domain.ports import GraphStorePort, SessionTransition

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChoiceView:
    """One outgoing edge with its availability for a given session."""

    edge: Edge
    available: bool
    locked_reasons: tuple[str, ...] = ()


@dataclass(frozen=True)
class TraversalStep:
    """Result of moving a session along one edge."""

    session_id: str
    edge_id: str
    from_node_id: str
    to_node_id: str
    message: Message | None


class TraversalEngine:
    """Validate access, resolve destinations, and relocate session pointers."""

    def __init__(self, store: GraphStorePort, *, enforce_edge_rules: bool = False) -> None:
        self._store = store
        self._enforce_edge_rules = enforce_edge_rules

    @property
    def enforce_edge_rules(self) -> bool:
        return self._enforce_edge_rules

    def participant_session(self, *, session_id: str, user_id: str | None) -> PlaySession:
        """Load a session the caller takes part in, or raise."""
        if not user_id:
            raise AuthorizationError("Unauthorized")
        session = self._store.get_session(session_id=session_id)
        if session is None:
            raise NotFoundError("Session not found")
        if not session.has_participant(user_id):
            raise AuthorizationError("No access")
        return session

    def list_choices(self, *, node_id: str) -> list[Edge]:
        """Edges leaving a node in stable order; empty for an unknown node."""
        node = self._store.get_node(node_id=node_id)
        if node is None:
            return []
        return self._store.list_outgoing_edges(story_id=node.story_id, from_node_id=node_id)

    def session_choices(self, session: PlaySession) -> list[ChoiceView]:
        """Choices leaving the session's current node, marked with availability."""
        edges = self._store.list_outgoing_edges(
            story_id=session.story_id, from_node_id=session.current_node_id
        )
        views: list[ChoiceView] = []
        for edge in edges:
            check = self._check(edge, session)
            views.append(
                ChoiceView(edge=edge, available=check.available, locked_reasons=check.reasons)
            )
        return views

    def choose_edge(self, *, session_id: str, edge_id: str, user_id: str | None) -> TraversalStep:
        """Move the pointer along ``edge_id`` and append the destination message."""
        session = self.participant_session(session_id=session_id, user_id=user_id)
        edge = self._store.get_edge(edge_id=edge_id)
        if edge is None:
            raise NotFoundError("Edge not found")
        if edge.story_id != session.story_id:
            raise IntegrityError("Edge not in session story")
        return self._take(session=session, edge=edge, user_id=str(user_id))

    def advance(self, *, session_id: str, user_id: str | None) -> str | None:
        """Take the first available choice; None when the current node is a dead end."""
        session = self.participant_session(session_id=session_id, user_id=user_id)
        for choice in self.session_choices(session):
            if choice.available:
                step = self._take(session=session, edge=choice.edge, user_id=str(user_id))
                return step.edge_id
        logger.info(
            "traversal.advance_exhausted session_id=%s node_id=%s",
            session.session_id,
            session.current_node_id,
        )
        return None

    def send_message(self, *, session_id: str, user_id: str | None, content: str) -> Message:
        """Append a free-form user line; the pointer does not move."""
        session = self.participant_session(session_id=session_id, user_id=user_id)
        return self._store.append_user_message(
            session_id=session.session_id, author_id=str(user_id), content=content
        )

    def _check(self, edge: Edge, session: PlaySession) -> RuleCheck:
        if not self._enforce_edge_rules:
            return RuleCheck(available=True)
        return check_conditions(edge.conditions, flags=session.flags, score=session.score)

    def _transition(self, edge: Edge) -> SessionTransition | None:
        if not self._enforce_edge_rules:
            return None

        def transition(flags: dict[str, Any], score: float) -> tuple[dict[str, Any], float]:
            check = check_conditions(edge.conditions, flags=flags, score=score)
            if not check.available:
                raise ChoiceLockedError(
                    "Locked choice", edge_id=edge.edge_id, reasons=list(check.reasons)
                )
            return apply_effects(edge.effects, flags=flags, score=score)

        return transition

    def _take(self, *, session: PlaySession, edge: Edge, user_id: str) -> TraversalStep:
        destination = self._store.get_node(node_id=edge.to_node_id)
        if destination is not None and destination.story_id != session.story_id:
            raise IntegrityError("Edge destination not in session story")
        message = self._store.move_session(
            session_id=session.session_id,
            edge=edge,
            destination=destination,
            reader_id=user_id,
            transition=self._transition(edge),
        )
        logger.info(
            "traversal.move session_id=%s edge_id=%s from=%s to=%s",
            session.session_id,
            edge.edge_id,
            session.current_node_id,
            edge.to_node_id,
        )
        return TraversalStep(
            session_id=session.session_id,
            edge_id=edge.edge_id,
            from_node_id=session.current_node_id,
            to_node_id=edge.to_node_id,
            message=message,
        )
