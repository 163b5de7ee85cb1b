"""Typed contracts shared by API handlers and Python interfaces."""

from __future__ import annotations

import re
from typing import Any, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    field_validator,
    model_validator,
)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

NodeRoleName = Literal["system", "narrator", "character", "user", "ai"]
StoryStatusName = Literal["draft", "published", "archived"]
SuggestionType = Literal["improvement", "rewrite", "enhance", "choices"]


class ContractModel(BaseModel):
    """Base model config used by all API contracts."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


def _normalize_email(value: str) -> str:
    normalized = value.strip().lower()
    if not EMAIL_PATTERN.match(normalized):
        raise ValueError("Email must be a valid address.")
    return normalized


def _dedupe_flags(values: list[str]) -> list[str]:
    normalized = [value.strip() for value in values if value.strip()]
    return list(dict.fromkeys(normalized))


class NodeMetadataBlock(BaseModel):
    """Author hints on a node; unknown keys are kept as-is."""

    model_config = ConfigDict(extra="allow", str_strip_whitespace=True)

    name: str | None = Field(default=None, max_length=120)
    mood: str | None = Field(default=None, max_length=120)
    variables: dict[str, Any] = Field(default_factory=dict)


class EdgeConditionsBlock(ContractModel):
    """Flags and score a session needs before an edge can be taken."""

    requires_flags: list[str] = Field(default_factory=list)
    forbids_flags: list[str] = Field(default_factory=list)
    min_score: float | None = None

    @field_validator("requires_flags", "forbids_flags")
    @classmethod
    def _normalize_flags(cls, values: list[str]) -> list[str]:
        return _dedupe_flags(values)

    @model_validator(mode="after")
    def _validate_disjoint(self) -> EdgeConditionsBlock:
        overlap = set(self.requires_flags) & set(self.forbids_flags)
        if overlap:
            raise ValueError(
                f"Flags cannot be both required and forbidden: {sorted(overlap)}."
            )
        return self


class EdgeEffectsBlock(ContractModel):
    """Session changes applied when an edge is taken."""

    set_flags: dict[str, Any] = Field(default_factory=dict)
    clear_flags: list[str] = Field(default_factory=list)
    score_delta: float = 0.0

    @field_validator("clear_flags")
    @classmethod
    def _normalize_flags(cls, values: list[str]) -> list[str]:
        return _dedupe_flags(values)


# Auth


class AuthRegisterRequest(ContractModel):
    """Register a local account."""

    email: str = Field(min_length=5, max_length=320)
    password: SecretStr = Field(min_length=8, max_length=200)
    display_name: str = Field(min_length=1, max_length=120)

    @field_validator("email")
    @classmethod
    def _validate_email(cls, value: str) -> str:
        return _normalize_email(value)

    @field_validator("password")
    @classmethod
    def _validate_password(cls, value: SecretStr) -> SecretStr:
        raw = value.get_secret_value()
        if raw.strip() != raw:
            raise ValueError("Password must not start or end with whitespace.")
        if not any(char.isalpha() for char in raw) or not any(char.isdigit() for char in raw):
            raise ValueError("Password must include at least one letter and one number.")
        return value


class AuthLoginRequest(ContractModel):
    """Authenticate and request an access token."""

    email: str = Field(min_length=5, max_length=320)
    password: SecretStr = Field(min_length=8, max_length=200)

    @field_validator("email")
    @classmethod
    def _validate_email(cls, value: str) -> str:
        return _normalize_email(value)


class AuthTokenResponse(ContractModel):
    """Bearer token payload used by web and Python clients."""

    access_token: str
    token_type: str = Field(default="bearer", pattern=r"^bearer$")
    expires_at_utc: str


class UserResponse(ContractModel):
    """Public user profile returned from authenticated endpoints."""

    user_id: str
    email: str | None
    display_name: str
    avatar_url: str | None = None
    roles: list[str]
    created_at_utc: str


# Stories and graph


class StoryCreateRequest(ContractModel):
    """Create a story and its opening scene."""

    title: str = Field(min_length=1, max_length=300)
    summary: str | None = Field(default=None, max_length=4000)
    root_content: str = Field(min_length=1, max_length=20000)
    root_title: str | None = Field(default=None, max_length=300)
    public: bool = False
    tags: list[str] = Field(default_factory=list)
    status: StoryStatusName = "published"

    @field_validator("tags")
    @classmethod
    def _normalize_tags(cls, values: list[str]) -> list[str]:
        normalized = [value.strip().lower() for value in values if value.strip()]
        return list(dict.fromkeys(normalized))


class StoryTitleUpdateRequest(ContractModel):
    title: str = Field(min_length=1, max_length=300)


class StoryResponse(ContractModel):
    """Story payload returned by the API."""

    story_id: str
    title: str
    summary: str | None
    created_by: str
    public: bool
    root_node_id: str | None
    tags: list[str]
    status: str | None
    created_at_utc: str
    updated_at_utc: str


class StoryDeleteResponse(ContractModel):
    """Counts of records removed with a story."""

    story_id: str
    nodes: int
    edges: int
    sessions: int
    messages: int
    drafts: int
    saved_suggestions: int
    files: int


class NodeCreateRequest(ContractModel):
    role: NodeRoleName = "narrator"
    title: str | None = Field(default=None, max_length=300)
    content: str = Field(min_length=1, max_length=20000)
    metadata: NodeMetadataBlock | None = None


class NodeUpdateRequest(ContractModel):
    """In-place edit; every change bumps the node version."""

    title: str | None = Field(default=None, max_length=300)
    content: str | None = Field(default=None, min_length=1, max_length=20000)
    metadata: NodeMetadataBlock | None = None

    @model_validator(mode="after")
    def _validate_has_change(self) -> NodeUpdateRequest:
        if self.title is None and self.content is None and self.metadata is None:
            raise ValueError("Provide at least one of title, content, or metadata.")
        return self


class BranchCreateRequest(ContractModel):
    """Create a narrator scene plus the choice leading to it."""

    from_node_id: str = Field(min_length=1, max_length=64)
    label: str = Field(min_length=1, max_length=300)
    content: str = Field(min_length=1, max_length=20000)
    title: str | None = Field(default=None, max_length=300)


class EdgeCreateRequest(ContractModel):
    from_node_id: str = Field(min_length=1, max_length=64)
    to_node_id: str = Field(min_length=1, max_length=64)
    label: str = Field(min_length=1, max_length=300)
    conditions: EdgeConditionsBlock | None = None
    effects: EdgeEffectsBlock | None = None
    order: int | None = Field(default=None, ge=0)


class NodeResponse(ContractModel):
    node_id: str
    story_id: str
    role: str
    title: str | None
    content: str
    metadata: dict[str, Any]
    version: int
    image_storage_id: str | None
    created_by: str
    created_at_utc: str


class EdgeResponse(ContractModel):
    edge_id: str
    story_id: str
    from_node_id: str
    to_node_id: str
    label: str
    conditions: EdgeConditionsBlock | None
    effects: EdgeEffectsBlock | None
    order: int
    created_at_utc: str


class BranchResponse(ContractModel):
    node: NodeResponse
    edge: EdgeResponse


class StoryGraphResponse(ContractModel):
    """Every node and edge of one story."""

    story_id: str
    root_node_id: str | None
    nodes: list[NodeResponse]
    edges: list[EdgeResponse]


class StoryMermaidResponse(ContractModel):
    """Flowchart text for the graph viewer."""

    story_id: str
    title: str
    mermaid: str
    node_count: int
    edge_count: int


# Sessions


class SessionCreateRequest(ContractModel):
    story_id: str = Field(min_length=1, max_length=64)


class SessionResponse(ContractModel):
    session_id: str
    story_id: str
    created_by: str
    title: str | None
    participants: list[str]
    current_node_id: str
    flags: dict[str, Any]
    score: float
    is_group: bool
    created_at_utc: str


class SessionSummaryResponse(SessionResponse):
    story_title: str


class MessageResponse(ContractModel):
    message_id: str
    session_id: str
    seq: int
    role: str
    content: str
    author: str
    node_id: str | None
    author_user_id: str | None
    chosen_edge_id: str | None
    edge_label: str | None
    read_by: list[str]
    created_at_utc: str


class ChoiceResponse(EdgeResponse):
    """Outgoing edge annotated with availability for one session."""

    available: bool = True
    locked_reasons: list[str] = Field(default_factory=list)


class SessionStateResponse(ContractModel):
    """Playback view payload: pointer, timeline, and current choices."""

    session: SessionResponse
    messages: list[MessageResponse]
    choices: list[ChoiceResponse]


class ChooseEdgeRequest(ContractModel):
    edge_id: str = Field(min_length=1, max_length=64)


class ChooseEdgeResponse(ContractModel):
    session_id: str
    edge_id: str
    from_node_id: str
    to_node_id: str
    message: MessageResponse | None


class AdvanceResponse(ContractModel):
    """``edge_id`` is null when the current scene has no outgoing choices."""

    session_id: str
    edge_id: str | None


class SendMessageRequest(ContractModel):
    content: str = Field(min_length=1, max_length=4000)


class ParticipantAddRequest(ContractModel):
    user_id: str = Field(min_length=1, max_length=64)


# Assistant


class AssistantSuggestRequest(ContractModel):
    content: str = Field(min_length=1, max_length=20000)
    aspects: list[str] | None = Field(default=None, max_length=10)


class ExampleEditsBlock(ContractModel):
    scene_title: str = ""
    revised_text: str = ""
    analysis: str = ""


class AssistantSuggestResponse(ContractModel):
    suggestions: str
    example_edits: ExampleEditsBlock
    aspects: list[str]


class AssistantRewriteRequest(ContractModel):
    content: str = Field(min_length=1, max_length=20000)
    tone: str | None = Field(default=None, max_length=200)
    feedback: str | None = Field(default=None, max_length=4000)


class AssistantEnhanceRequest(ContractModel):
    content: str = Field(min_length=1, max_length=20000)
    target_length: str | None = Field(default=None, max_length=40)


class AssistantTextResponse(ContractModel):
    content: str


class AssistantChoicesRequest(ContractModel):
    content: str = Field(min_length=1, max_length=20000)
    count: int = Field(default=3, ge=1, le=10)


class ChoiceSuggestionBlock(ContractModel):
    label: str = Field(min_length=1, max_length=300)
    title: str | None = Field(default=None, max_length=300)
    description: str = Field(default="", max_length=4000)


class AssistantChoicesResponse(ContractModel):
    choices: list[ChoiceSuggestionBlock]


# Saved suggestions


class SavedSuggestionCreateRequest(ContractModel):
    """Keep one assistant artifact for later reference."""

    story_id: str | None = Field(default=None, max_length=64)
    node_id: str | None = Field(default=None, max_length=64)
    type: SuggestionType
    original_content: str = Field(min_length=1, max_length=20000)
    suggestions: str | None = Field(default=None, max_length=20000)
    example_edits: ExampleEditsBlock | None = None
    choices: list[ChoiceSuggestionBlock] | None = None
    content: str | None = Field(default=None, max_length=40000)
    note: str | None = Field(default=None, max_length=4000)


class SavedSuggestionNoteRequest(ContractModel):
    note: str = Field(max_length=4000)


class SavedSuggestionResponse(ContractModel):
    suggestion_id: str
    user_id: str
    story_id: str | None
    node_id: str | None
    type: str
    original_content: str
    suggestions: str | None
    example_edits: ExampleEditsBlock | None
    choices: list[ChoiceSuggestionBlock] | None
    content: str | None
    note: str | None
    created_at_utc: str


# Images


class UploadSlotResponse(ContractModel):
    upload_url: str
    upload_token: str


class StoredFileResponse(ContractModel):
    storage_id: str
    content_type: str | None
    size: int
    sha256: str
    created_at_utc: str


class NodeImageAttachRequest(ContractModel):
    storage_id: str = Field(min_length=1, max_length=64)


class NodeImageResponse(ContractModel):
    """Image link plus stored-file metadata for one node."""

    node_id: str
    url: str
    metadata: StoredFileResponse


# Drafts


class ProposedNodeBlock(ContractModel):
    temp_id: str = Field(min_length=1, max_length=64)
    role: NodeRoleName = "narrator"
    content: str = Field(min_length=1, max_length=20000)
    order: int = Field(default=0, ge=0)
    metadata: dict[str, Any] = Field(default_factory=dict)


class ProposedEdgeBlock(ContractModel):
    from_ref: str = Field(min_length=1, max_length=64)
    to_ref: str = Field(min_length=1, max_length=64)
    label: str = Field(min_length=1, max_length=300)
    order: int = Field(default=0, ge=0)
    conditions: EdgeConditionsBlock | None = None
    effects: EdgeEffectsBlock | None = None


class DraftCreateRequest(ContractModel):
    """Branch proposal; edge refs name proposed temp ids or existing node ids."""

    base_node_id: str = Field(min_length=1, max_length=64)
    proposed_nodes: list[ProposedNodeBlock] = Field(min_length=1, max_length=50)
    proposed_edges: list[ProposedEdgeBlock] = Field(default_factory=list, max_length=100)

    @model_validator(mode="after")
    def _validate_temp_ids(self) -> DraftCreateRequest:
        temp_ids = [node.temp_id for node in self.proposed_nodes]
        if len(temp_ids) != len(set(temp_ids)):
            raise ValueError("Proposed node temp ids must be unique.")
        return self


class DraftResponse(ContractModel):
    draft_id: str
    story_id: str
    base_node_id: str
    proposed_by: str
    proposed_nodes: list[ProposedNodeBlock]
    proposed_edges: list[ProposedEdgeBlock]
    status: str
    reviewer_id: str | None
    reviewer_notes: str | None
    created_at_utc: str
