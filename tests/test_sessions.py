from __future__ import annotations

from pathlib import Path

import pytest

from story_forge.adapters.sqlite_graph_store import SQLiteGraphStore
from story_forge.core.errors import AuthorizationError, NotFoundError
from story_forge.core.sessions import SessionTracker
from story_forge.core.traversal import TraversalEngine
from story_forge.domain.models import NodeMetadata


def _tracker(store: SQLiteGraphStore) -> SessionTracker:
    names = {"player-1": "Mara", "player-2": "Theo"}
    return SessionTracker(
        store,
        TraversalEngine(store),
        display_names=lambda user_ids: {uid: names[uid] for uid in user_ids if uid in names},
    )


def test_start_session_positions_at_root_with_opening_message(tmp_path: Path) -> None:
    store = SQLiteGraphStore(db_path=tmp_path / "graph.db")
    story = store.create_story(
        created_by="author-1",
        title="Station",
        summary=None,
        public=True,
        root_content="The last train is late.",
        root_title=None,
    )
    tracker = _tracker(store)

    session = tracker.start_session(story_id=story.story_id, user_id="player-1")
    assert session.current_node_id == story.root_node_id
    assert session.title == "Station"
    assert session.participants == ("player-1",)

    summaries = tracker.list_sessions(user_id="player-1")
    assert [item.story_title for item in summaries] == ["Station"]

    with pytest.raises(AuthorizationError):
        tracker.start_session(story_id=story.story_id, user_id=None)
    with pytest.raises(NotFoundError):
        tracker.start_session(story_id="missing", user_id="player-1")


def test_session_state_labels_authors(tmp_path: Path) -> None:
    store = SQLiteGraphStore(db_path=tmp_path / "graph.db")
    story = store.create_story(
        created_by="author-1",
        title="Tavern",
        summary=None,
        public=True,
        root_content="Smoke and song.",
        root_title=None,
    )
    barkeep = store.create_node(
        story_id=story.story_id,
        role="character",
        content="What'll it be?",
        created_by="author-1",
        metadata=NodeMetadata(name="Barkeep"),
    )
    stranger = store.create_node(
        story_id=story.story_id,
        role="character",
        content="...",
        created_by="author-1",
    )
    to_barkeep = store.create_edge(
        story_id=story.story_id,
        from_node_id=str(story.root_node_id),
        to_node_id=barkeep.node_id,
        label="Approach the bar",
    )
    to_stranger = store.create_edge(
        story_id=story.story_id,
        from_node_id=barkeep.node_id,
        to_node_id=stranger.node_id,
        label="Look around",
    )
    tracker = _tracker(store)
    engine = TraversalEngine(store)
    session = tracker.start_session(story_id=story.story_id, user_id="player-1")
    tracker.add_participant(
        session_id=session.session_id, user_id="player-1", new_participant_id="player-2"
    )
    engine.choose_edge(
        session_id=session.session_id, edge_id=to_barkeep.edge_id, user_id="player-1"
    )
    engine.send_message(session_id=session.session_id, user_id="player-2", content="Ale!")
    engine.choose_edge(
        session_id=session.session_id, edge_id=to_stranger.edge_id, user_id="player-2"
    )

    state = tracker.session_state(session_id=session.session_id, user_id="player-2")
    assert state.session.is_group is True
    assert [entry.author for entry in state.messages] == [
        "narrator",
        "Barkeep",
        "Theo",
        "Character",
    ]
    assert state.choices == []

    with pytest.raises(AuthorizationError):
        tracker.session_state(session_id=session.session_id, user_id="outsider")


def test_add_participant_requires_existing_member(tmp_path: Path) -> None:
    store = SQLiteGraphStore(db_path=tmp_path / "graph.db")
    story = store.create_story(
        created_by="author-1",
        title="Duo",
        summary=None,
        public=True,
        root_content="Two chairs.",
        root_title=None,
    )
    tracker = _tracker(store)
    session = tracker.start_session(story_id=story.story_id, user_id="player-1")

    with pytest.raises(AuthorizationError):
        tracker.add_participant(
            session_id=session.session_id, user_id="player-2", new_participant_id="player-2"
        )
