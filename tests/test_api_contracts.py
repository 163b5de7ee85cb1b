from __future__ import annotations

import pytest
from pydantic import ValidationError

from story_forge.api.contracts import (
    AuthRegisterRequest,
    DraftCreateRequest,
    EdgeConditionsBlock,
    EdgeEffectsBlock,
    NodeMetadataBlock,
    NodeUpdateRequest,
    SavedSuggestionCreateRequest,
    StoryCreateRequest,
)


def test_register_request_normalizes_email_and_checks_password() -> None:
    request = AuthRegisterRequest.model_validate(
        {"email": "  Alice@Example.COM ", "password": "password123", "display_name": " Alice "}
    )
    assert request.email == "alice@example.com"
    assert request.display_name == "Alice"
    assert request.password.get_secret_value() == "password123"
    assert "password123" not in repr(request)

    with pytest.raises(ValidationError):
        AuthRegisterRequest.model_validate(
            {"email": "not-an-email", "password": "password123", "display_name": "A"}
        )
    with pytest.raises(ValidationError):
        AuthRegisterRequest.model_validate(
            {"email": "a@example.com", "password": "12345678", "display_name": "A"}
        )


def test_story_request_dedupes_tags_and_forbids_unknown_fields() -> None:
    request = StoryCreateRequest.model_validate(
        {"title": " Tide ", "root_content": "Waves.", "tags": ["Sea", "sea ", "", "Storm"]}
    )
    assert request.title == "Tide"
    assert request.tags == ["sea", "storm"]
    assert request.public is False
    assert request.status == "published"

    with pytest.raises(ValidationError):
        StoryCreateRequest.model_validate(
            {"title": "Tide", "root_content": "Waves.", "owner": "someone"}
        )
    with pytest.raises(ValidationError):
        StoryCreateRequest.model_validate(
            {"title": "Tide", "root_content": "Waves.", "status": "deleted"}
        )


def test_edge_blocks_dedupe_flags_and_reject_overlap() -> None:
    conditions = EdgeConditionsBlock.model_validate(
        {"requires_flags": [" key ", "key", ""], "forbids_flags": ["alarm"], "min_score": 2}
    )
    assert conditions.requires_flags == ["key"]
    assert conditions.min_score == 2.0

    with pytest.raises(ValidationError, match="both required and forbidden"):
        EdgeConditionsBlock.model_validate({"requires_flags": ["key"], "forbids_flags": ["key"]})

    effects = EdgeEffectsBlock.model_validate({"clear_flags": ["torch", "torch"]})
    assert effects.clear_flags == ["torch"]
    assert effects.score_delta == 0.0


def test_node_metadata_keeps_extra_keys() -> None:
    block = NodeMetadataBlock.model_validate({"name": "Keeper", "accent": "northern"})
    assert block.name == "Keeper"
    assert block.model_dump(exclude_none=True) == {
        "name": "Keeper",
        "variables": {},
        "accent": "northern",
    }


def test_node_update_requires_some_change() -> None:
    assert NodeUpdateRequest.model_validate({"title": "New"}).title == "New"
    with pytest.raises(ValidationError, match="at least one"):
        NodeUpdateRequest.model_validate({})


def test_draft_request_requires_unique_temp_ids() -> None:
    draft = DraftCreateRequest.model_validate(
        {
            "base_node_id": "node-1",
            "proposed_nodes": [{"temp_id": "t1", "content": "A."}],
            "proposed_edges": [{"from_ref": "node-1", "to_ref": "t1", "label": "Go"}],
        }
    )
    assert draft.proposed_nodes[0].role == "narrator"
    assert draft.proposed_edges[0].order == 0

    with pytest.raises(ValidationError, match="unique"):
        DraftCreateRequest.model_validate(
            {
                "base_node_id": "node-1",
                "proposed_nodes": [
                    {"temp_id": "t1", "content": "A."},
                    {"temp_id": "t1", "content": "B."},
                ],
            }
        )
    with pytest.raises(ValidationError):
        DraftCreateRequest.model_validate({"base_node_id": "node-1", "proposed_nodes": []})


def test_saved_suggestion_type_is_constrained() -> None:
    request = SavedSuggestionCreateRequest.model_validate(
        {"type": "enhance", "original_content": "Short.", "content": "Longer."}
    )
    assert request.type == "enhance"
    with pytest.raises(ValidationError):
        SavedSuggestionCreateRequest.model_validate({"type": "poem", "original_content": "x"})
