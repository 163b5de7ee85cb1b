from __future__ import annotations

from pathlib import Path

from story_forge.adapters.sqlite_suggestion_store import SQLiteSuggestionStore


def test_saved_suggestions_filter_and_order_newest_first(tmp_path: Path) -> None:
    store = SQLiteSuggestionStore(db_path=tmp_path / "suggestions.db")
    improvement = store.save_suggestion(
        user_id="user-1",
        suggestion_type="improvement",
        original_content="The door creaked.",
        story_id="story-1",
        node_id="node-1",
        suggestions="Add sensory detail.",
        example_edits={"dialogue": "\"Who's there?\" she whispered."},
    )
    choices = store.save_suggestion(
        user_id="user-1",
        suggestion_type="choices",
        original_content="The door creaked.",
        story_id="story-1",
        choices=[{"label": "Open it", "title": "Inside", "description": "Dark room."}],
    )
    store.save_suggestion(
        user_id="user-2",
        suggestion_type="rewrite",
        original_content="Other.",
        content="Rewritten.",
    )

    mine = store.list_suggestions(user_id="user-1")
    assert [item.suggestion_id for item in mine] == [
        choices.suggestion_id,
        improvement.suggestion_id,
    ]
    by_node = store.list_suggestions(user_id="user-1", node_id="node-1")
    assert [item.suggestion_id for item in by_node] == [improvement.suggestion_id]
    by_type = store.list_suggestions(user_id="user-1", suggestion_type="choices")
    assert by_type[0].choices == [
        {"label": "Open it", "title": "Inside", "description": "Dark room."}
    ]
    assert improvement.example_edits == {"dialogue": "\"Who's there?\" she whispered."}
    assert improvement.choices is None


def test_note_update_delete_and_story_cleanup(tmp_path: Path) -> None:
    store = SQLiteSuggestionStore(db_path=tmp_path / "suggestions.db")
    first = store.save_suggestion(
        user_id="user-1",
        suggestion_type="enhance",
        original_content="Short.",
        story_id="story-1",
        content="Longer and richer.",
    )
    second = store.save_suggestion(
        user_id="user-1",
        suggestion_type="rewrite",
        original_content="Plain.",
        story_id="story-1",
        content="Ornate.",
    )
    noted = store.update_note(suggestion_id=first.suggestion_id, note="use in chapter 2")
    assert noted is not None
    assert noted.note == "use in chapter 2"
    assert store.update_note(suggestion_id="missing", note="x") is None

    assert store.delete_suggestion(suggestion_id=first.suggestion_id) is True
    assert store.delete_suggestion(suggestion_id=first.suggestion_id) is False
    assert store.delete_for_story(story_id="story-1") == 1
    assert store.get_suggestion(suggestion_id=second.suggestion_id) is None
