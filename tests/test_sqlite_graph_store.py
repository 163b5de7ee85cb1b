from __future__ import annotations

from pathlib import Path

import pytest

from story_forge.adapters.sqlite_graph_store import SQLiteGraphStore
from story_forge.domain.models import EdgeConditions, EdgeEffects, NodeMetadata, ProposedNode


def _store(tmp_path: Path) -> SQLiteGraphStore:
    return SQLiteGraphStore(db_path=tmp_path / "graph.db")


def test_create_story_seeds_root_narrator_node(tmp_path: Path) -> None:
    store = _store(tmp_path)
    story = store.create_story(
        created_by="author-1",
        title="The Lighthouse",
        summary="A keeper and a storm.",
        public=True,
        root_content="Waves hammer the rocks below.",
        root_title=None,
        tags=["mystery"],
    )
    assert story.root_node_id is not None
    assert story.tags == ("mystery",)
    assert story.status == "published"

    root = store.get_node(node_id=story.root_node_id)
    assert root is not None
    assert root.story_id == story.story_id
    assert root.role == "narrator"
    assert root.title == "Opening Scene"
    assert root.content == "Waves hammer the rocks below."
    assert root.version == 1


def test_visible_stories_include_public_and_own_and_filter_by_text(tmp_path: Path) -> None:
    store = _store(tmp_path)
    public = store.create_story(
        created_by="author-1",
        title="Harbor Lights",
        summary="Smugglers at dawn.",
        public=True,
        root_content="Fog.",
        root_title=None,
    )
    private = store.create_story(
        created_by="author-1",
        title="Private Notes",
        summary=None,
        public=False,
        root_content="Ink.",
        root_title=None,
    )

    own_view = [story.story_id for story in store.list_visible_stories(user_id="author-1")]
    other_view = [story.story_id for story in store.list_visible_stories(user_id="reader-2")]
    assert set(own_view) == {public.story_id, private.story_id}
    assert other_view == [public.story_id]

    by_summary = store.list_visible_stories(user_id="reader-2", query="smugglers")
    assert [story.story_id for story in by_summary] == [public.story_id]
    assert store.list_visible_stories(user_id="reader-2", query="notes") == []


def test_outgoing_edges_follow_order_then_insertion(tmp_path: Path) -> None:
    store = _store(tmp_path)
    story = store.create_story(
        created_by="author-1",
        title="Crossroads",
        summary=None,
        public=True,
        root_content="Three paths.",
        root_title=None,
    )
    root_id = str(story.root_node_id)
    left = store.create_node(
        story_id=story.story_id, role="narrator", content="Left.", created_by="author-1"
    )
    right = store.create_node(
        story_id=story.story_id, role="narrator", content="Right.", created_by="author-1"
    )
    first = store.create_edge(
        story_id=story.story_id, from_node_id=root_id, to_node_id=left.node_id, label="Left"
    )
    second = store.create_edge(
        story_id=story.story_id, from_node_id=root_id, to_node_id=right.node_id, label="Right"
    )
    pinned = store.create_edge(
        story_id=story.story_id,
        from_node_id=root_id,
        to_node_id=right.node_id,
        label="Straight",
        order=0,
    )

    assert first.order == 0
    assert second.order == 1
    edges = store.list_outgoing_edges(story_id=story.story_id, from_node_id=root_id)
    assert [edge.edge_id for edge in edges] == [first.edge_id, pinned.edge_id, second.edge_id]
    assert store.list_outgoing_edges(story_id="other-story", from_node_id=root_id) == []


def test_edge_rules_round_trip_through_storage(tmp_path: Path) -> None:
    store = _store(tmp_path)
    story = store.create_story(
        created_by="author-1",
        title="Vault",
        summary=None,
        public=False,
        root_content="A locked door.",
        root_title=None,
    )
    inside = store.create_node(
        story_id=story.story_id, role="narrator", content="Gold.", created_by="author-1"
    )
    edge = store.create_edge(
        story_id=story.story_id,
        from_node_id=str(story.root_node_id),
        to_node_id=inside.node_id,
        label="Open it",
        conditions=EdgeConditions(requires_flags=("has_key",), min_score=2),
        effects=EdgeEffects(set_flags={"opened": True}, score_delta=1.5),
    )
    loaded = store.get_edge(edge_id=edge.edge_id)
    assert loaded is not None
    assert loaded.conditions == EdgeConditions(requires_flags=("has_key",), min_score=2.0)
    assert loaded.effects == EdgeEffects(set_flags={"opened": True}, score_delta=1.5)

    assert store.delete_edge(edge_id=edge.edge_id) is True
    assert store.delete_edge(edge_id=edge.edge_id) is False


def test_branch_insert_and_node_update_bump_version(tmp_path: Path) -> None:
    store = _store(tmp_path)
    story = store.create_story(
        created_by="author-1",
        title="Branches",
        summary=None,
        public=True,
        root_content="Start.",
        root_title="Gate",
    )
    node, edge = store.create_node_with_edge(
        story_id=story.story_id,
        from_node_id=str(story.root_node_id),
        label="Go on",
        content="The path narrows.",
        title="Path",
        created_by="author-1",
    )
    assert edge.to_node_id == node.node_id
    assert edge.from_node_id == story.root_node_id

    updated = store.update_node(
        node_id=node.node_id,
        content="The path widens.",
        metadata=NodeMetadata(name="Guide", mood="calm"),
    )
    assert updated is not None
    assert updated.content == "The path widens."
    assert updated.title == "Path"
    assert updated.metadata.name == "Guide"
    assert updated.version == 2
    assert store.update_node(node_id="missing", content="x") is None

    graph = store.get_story_graph(story_id=story.story_id)
    assert graph is not None
    assert graph.root_node_id == story.root_node_id
    assert len(graph.nodes) == 2
    assert [item.edge_id for item in graph.edges] == [edge.edge_id]


def test_session_move_updates_pointer_and_appends_message(tmp_path: Path) -> None:
    store = _store(tmp_path)
    story = store.create_story(
        created_by="author-1",
        title="Forest",
        summary=None,
        public=True,
        root_content="Trees everywhere.",
        root_title=None,
    )
    root = store.get_node(node_id=str(story.root_node_id))
    assert root is not None
    clearing, edge = store.create_node_with_edge(
        story_id=story.story_id,
        from_node_id=root.node_id,
        label="Walk north",
        content="A clearing opens.",
        title=None,
        created_by="author-1",
    )
    session = store.create_session(
        story_id=story.story_id,
        created_by="player-1",
        title=story.title,
        current_node_id=root.node_id,
        opening_node=root,
    )
    assert session.participants == ("player-1",)
    assert session.is_group is False

    message = store.move_session(
        session_id=session.session_id,
        edge=edge,
        destination=clearing,
        reader_id="player-1",
        transition=lambda flags, score: ({**flags, "walked": True}, score + 3.0),
    )
    assert message is not None
    assert message.seq == 2
    assert message.chosen_edge_id == edge.edge_id
    assert message.edge_label == "Walk north"
    assert message.node_id == clearing.node_id

    moved = store.get_session(session_id=session.session_id)
    assert moved is not None
    assert moved.current_node_id == clearing.node_id
    assert moved.flags == {"walked": True}
    assert moved.score == 3.0

    chat = store.append_user_message(
        session_id=session.session_id, author_id="player-1", content="Anyone here?"
    )
    assert chat.seq == 3
    assert chat.author_user_id == "player-1"
    timeline = store.list_messages(session_id=session.session_id)
    assert [item.seq for item in timeline] == [1, 2, 3]
    assert timeline[0].node_id == root.node_id


def test_add_participant_marks_group_and_is_idempotent(tmp_path: Path) -> None:
    store = _store(tmp_path)
    story = store.create_story(
        created_by="author-1",
        title="Party",
        summary=None,
        public=True,
        root_content="Music.",
        root_title=None,
    )
    session = store.create_session(
        story_id=story.story_id,
        created_by="player-1",
        title=None,
        current_node_id=str(story.root_node_id),
        opening_node=None,
    )
    store.add_participant(session_id=session.session_id, user_id="player-2")
    again = store.add_participant(session_id=session.session_id, user_id="player-2")
    assert again is not None
    assert again.is_group is True
    assert again.participants == ("player-1", "player-2")
    assert store.add_participant(session_id="missing", user_id="player-2") is None

    listed = store.list_sessions_for_participant(user_id="player-2")
    assert [item.session_id for item in listed] == [session.session_id]


def test_delete_story_cascades_every_dependent_record(tmp_path: Path) -> None:
    store = _store(tmp_path)
    story = store.create_story(
        created_by="author-1",
        title="Doomed",
        summary=None,
        public=True,
        root_content="Begin.",
        root_title=None,
    )
    root = store.get_node(node_id=str(story.root_node_id))
    assert root is not None
    node, edge = store.create_node_with_edge(
        story_id=story.story_id,
        from_node_id=root.node_id,
        label="Next",
        content="End.",
        title=None,
        created_by="author-1",
    )
    store.set_node_image(node_id=node.node_id, storage_id="blob-1")
    session = store.create_session(
        story_id=story.story_id,
        created_by="player-1",
        title=None,
        current_node_id=root.node_id,
        opening_node=root,
    )
    store.move_session(
        session_id=session.session_id, edge=edge, destination=node, reader_id="player-1"
    )
    store.create_draft(
        story_id=story.story_id,
        base_node_id=root.node_id,
        proposed_by="player-1",
        proposed_nodes=[ProposedNode(temp_id="t1", role="narrator", content="Alt.", order=0)],
        proposed_edges=[],
    )

    deleted = store.delete_story(story_id=story.story_id)
    assert deleted is not None
    assert deleted.nodes == 2
    assert deleted.edges == 1
    assert deleted.sessions == 1
    assert deleted.messages == 2
    assert deleted.drafts == 1
    assert deleted.image_storage_ids == ("blob-1",)

    assert store.get_story(story_id=story.story_id) is None
    assert store.get_node(node_id=node.node_id) is None
    assert store.get_edge(edge_id=edge.edge_id) is None
    assert store.get_session(session_id=session.session_id) is None
    assert store.list_messages(session_id=session.session_id) == []
    assert store.list_drafts(story_id=story.story_id) == []
    assert store.delete_story(story_id=story.story_id) is None


def test_failed_transition_rolls_back_the_move(tmp_path: Path) -> None:
    store = _store(tmp_path)
    story = store.create_story(
        created_by="author-1",
        title="Bridge",
        summary=None,
        public=True,
        root_content="A rope bridge.",
        root_title=None,
    )
    root = store.get_node(node_id=str(story.root_node_id))
    assert root is not None
    far_side, edge = store.create_node_with_edge(
        story_id=story.story_id,
        from_node_id=root.node_id,
        label="Cross",
        content="The far side.",
        title=None,
        created_by="author-1",
    )
    session = store.create_session(
        story_id=story.story_id,
        created_by="player-1",
        title=None,
        current_node_id=root.node_id,
        opening_node=root,
    )

    def refuse(flags: dict[str, object], score: float) -> tuple[dict[str, object], float]:
        raise ValueError("bridge is out")

    with pytest.raises(ValueError, match="bridge is out"):
        store.move_session(
            session_id=session.session_id,
            edge=edge,
            destination=far_side,
            reader_id="player-1",
            transition=refuse,
        )

    unchanged = store.get_session(session_id=session.session_id)
    assert unchanged is not None
    assert unchanged.current_node_id == root.node_id
    assert [item.seq for item in store.list_messages(session_id=session.session_id)] == [1]


def test_list_nodes_with_image_tracks_links(tmp_path: Path) -> None:
    store = _store(tmp_path)
    story = store.create_story(
        created_by="author-1",
        title="Gallery",
        summary=None,
        public=True,
        root_content="Frames on the wall.",
        root_title=None,
    )
    root_id = str(story.root_node_id)
    assert store.list_nodes_with_image(storage_id="blob-1") == []
    store.set_node_image(node_id=root_id, storage_id="blob-1")
    assert store.list_nodes_with_image(storage_id="blob-1") == [root_id]
    store.set_node_image(node_id=root_id, storage_id=None)
    assert store.list_nodes_with_image(storage_id="blob-1") == []
