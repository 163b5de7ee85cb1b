"""Session creation, listing, and timeline read models."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from story_forge.core.errors import AuthorizationError, IntegrityError, NotFoundError
from story_forge.core.traversal import ChoiceView, TraversalEngine
from story_forge.domain.models import Message, PlaySession
from story_forge.domain.ports import GraphStorePort

logger = logging.getLogger(__name__)

DisplayNameLookup = Callable[[list[str]], dict[str, str]]


@dataclass(frozen=True)
class SessionSummary:
    """Session tile with its story title."""

    session: PlaySession
    story_title: str


@dataclass(frozen=True)
class TimelineEntry:
    """Message decorated with the label the playback view shows as author."""

    message: Message
    author: str


@dataclass(frozen=True)
class SessionState:
    """Everything the playback view needs for one session."""

    session: PlaySession
    messages: list[TimelineEntry]
    choices: list[ChoiceView]


class SessionTracker:
    """Own session creation plus participant bookkeeping."""

    def __init__(
        self,
        store: GraphStorePort,
        engine: TraversalEngine,
        *,
        display_names: DisplayNameLookup,
    ) -> None:
        self._store = store
        self._engine = engine
        self._display_names = display_names

    def start_session(self, *, story_id: str, user_id: str | None) -> PlaySession:
        """Open a solo playthrough positioned at the story root."""
        if not user_id:
            raise AuthorizationError("Unauthorized")
        story = self._store.get_story(story_id=story_id)
        if story is None:
            raise NotFoundError("Story not found")
        if not story.root_node_id:
            raise IntegrityError("Story not seeded")
        root = self._store.get_node(node_id=story.root_node_id)
        if root is None or root.story_id != story.story_id:
            raise IntegrityError("Story root node is missing")
        session = self._store.create_session(
            story_id=story.story_id,
            created_by=user_id,
            title=story.title,
            current_node_id=root.node_id,
            opening_node=root,
        )
        logger.info(
            "session.start session_id=%s story_id=%s user_id=%s",
            session.session_id,
            story.story_id,
            user_id,
        )
        return session

    def list_sessions(self, *, user_id: str) -> list[SessionSummary]:
        summaries: list[SessionSummary] = []
        titles: dict[str, str] = {}
        for session in self._store.list_sessions_for_participant(user_id=user_id):
            if session.story_id not in titles:
                story = self._store.get_story(story_id=session.story_id)
                titles[session.story_id] = story.title if story is not None else "Story"
            summaries.append(SessionSummary(session=session, story_title=titles[session.story_id]))
        return summaries

    def session_state(self, *, session_id: str, user_id: str | None) -> SessionState:
        """Timeline plus current choices; participants only."""
        session = self._engine.participant_session(session_id=session_id, user_id=user_id)
        messages = self._store.list_messages(session_id=session.session_id)
        names = self._display_names(
            [message.author_user_id for message in messages if message.author_user_id]
        )
        entries = [
            TimelineEntry(message=message, author=self._author_label(message, names))
            for message in messages
        ]
        return SessionState(
            session=session,
            messages=entries,
            choices=self._engine.session_choices(session),
        )

    def add_participant(
        self, *, session_id: str, user_id: str | None, new_participant_id: str
    ) -> PlaySession:
        """Invite another user; the session becomes a group session."""
        session = self._engine.participant_session(session_id=session_id, user_id=user_id)
        updated = self._store.add_participant(
            session_id=session.session_id, user_id=new_participant_id
        )
        if updated is None:
            raise NotFoundError("Session not found")
        return updated

    def message_author(self, message: Message) -> str:
        """Author label for a single message, as the timeline shows it."""
        names = self._display_names([message.author_user_id] if message.author_user_id else [])
        return self._author_label(message, names)

    def _author_label(self, message: Message, names: dict[str, str]) -> str:
        if message.author_user_id:
            return names.get(message.author_user_id, "You")
        if message.role == "character" and message.node_id:
            node = self._store.get_node(node_id=message.node_id)
            if node is not None and node.metadata.name:
                return node.metadata.name
            return "Character"
        return message.role
