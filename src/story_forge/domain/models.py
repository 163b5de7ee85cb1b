"""Core story graph and playthrough records."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

NodeRole = Literal["system", "narrator", "character", "user", "ai"]
StoryStatus = Literal["draft", "published", "archived"]

NODE_ROLES: tuple[str, ...] = ("system", "narrator", "character", "user", "ai")
STORY_STATUSES: tuple[str, ...] = ("draft", "published", "archived")


@dataclass(frozen=True)
class NodeMetadata:
    """Author-facing hints attached to a scene node."""

    name: str | None = None
    mood: str | None = None
    variables: dict[str, Any] = field(default_factory=dict)
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: object) -> NodeMetadata:
        if not isinstance(payload, dict):
            return cls()
        name = payload.get("name")
        mood = payload.get("mood")
        variables = payload.get("variables")
        extra = {
            str(key): value
            for key, value in payload.items()
            if key not in {"name", "mood", "variables"}
        }
        return cls(
            name=name if isinstance(name, str) and name.strip() else None,
            mood=mood if isinstance(mood, str) and mood.strip() else None,
            variables=dict(variables) if isinstance(variables, dict) else {},
            extra=extra,
        )

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = dict(self.extra)
        if self.name is not None:
            payload["name"] = self.name
        if self.mood is not None:
            payload["mood"] = self.mood
        if self.variables:
            payload["variables"] = dict(self.variables)
        return payload


@dataclass(frozen=True)
class EdgeConditions:
    """Gating requirements a session must meet to take an edge."""

    requires_flags: tuple[str, ...] = ()
    forbids_flags: tuple[str, ...] = ()
    min_score: float | None = None

    @classmethod
    def from_payload(cls, payload: object) -> EdgeConditions | None:
        if not isinstance(payload, dict) or not payload:
            return None
        min_score = payload.get("min_score")
        return cls(
            requires_flags=tuple(str(flag) for flag in payload.get("requires_flags") or ()),
            forbids_flags=tuple(str(flag) for flag in payload.get("forbids_flags") or ()),
            min_score=float(min_score) if isinstance(min_score, (int, float)) else None,
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "requires_flags": list(self.requires_flags),
            "forbids_flags": list(self.forbids_flags),
            "min_score": self.min_score,
        }


@dataclass(frozen=True)
class EdgeEffects:
    """State changes applied to a session when an edge is taken."""

    set_flags: dict[str, Any] = field(default_factory=dict)
    clear_flags: tuple[str, ...] = ()
    score_delta: float = 0.0

    @classmethod
    def from_payload(cls, payload: object) -> EdgeEffects | None:
        if not isinstance(payload, dict) or not payload:
            return None
        set_flags = payload.get("set_flags")
        score_delta = payload.get("score_delta")
        return cls(
            set_flags=dict(set_flags) if isinstance(set_flags, dict) else {},
            clear_flags=tuple(str(flag) for flag in payload.get("clear_flags") or ()),
            score_delta=float(score_delta) if isinstance(score_delta, (int, float)) else 0.0,
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "set_flags": dict(self.set_flags),
            "clear_flags": list(self.clear_flags),
            "score_delta": self.score_delta,
        }


@dataclass(frozen=True)
class Story:
    """A directed graph of scenes owned by one author."""

    story_id: str
    title: str
    summary: str | None
    created_by: str
    public: bool
    root_node_id: str | None
    tags: tuple[str, ...]
    status: str | None
    created_at_utc: str
    updated_at_utc: str


@dataclass(frozen=True)
class Node:
    """One scene or message unit within a story."""

    node_id: str
    story_id: str
    role: str
    title: str | None
    content: str
    metadata: NodeMetadata
    version: int
    image_storage_id: str | None
    created_by: str
    created_at_utc: str


@dataclass(frozen=True)
class Edge:
    """A labeled, ordered choice connecting two nodes of the same story."""

    edge_id: str
    story_id: str
    from_node_id: str
    to_node_id: str
    label: str
    conditions: EdgeConditions | None
    effects: EdgeEffects | None
    order: int
    created_at_utc: str


@dataclass(frozen=True)
class PlaySession:
    """One playthrough with a single pointer into the story graph."""

    session_id: str
    story_id: str
    created_by: str
    title: str | None
    participants: tuple[str, ...]
    current_node_id: str
    flags: dict[str, Any]
    score: float
    is_group: bool
    created_at_utc: str

    def has_participant(self, user_id: str) -> bool:
        return user_id in self.participants


@dataclass(frozen=True)
class Message:
    """Append-only timeline entry in a session."""

    message_id: str
    session_id: str
    seq: int
    role: str
    content: str
    node_id: str | None
    author_user_id: str | None
    chosen_edge_id: str | None
    edge_label: str | None
    read_by: tuple[str, ...]
    created_at_utc: str


@dataclass(frozen=True)
class ProposedNode:
    """Node proposed in a draft branch, wired by a client temp id."""

    temp_id: str
    role: str
    content: str
    order: int
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ProposedEdge:
    """Edge proposed in a draft branch; endpoints are temp ids or node ids."""

    from_ref: str
    to_ref: str
    label: str
    order: int
    conditions: dict[str, Any] | None = None
    effects: dict[str, Any] | None = None


@dataclass(frozen=True)
class Draft:
    """Unpublished branch proposal anchored at an existing node."""

    draft_id: str
    story_id: str
    base_node_id: str
    proposed_by: str
    proposed_nodes: tuple[ProposedNode, ...]
    proposed_edges: tuple[ProposedEdge, ...]
    status: str
    reviewer_id: str | None
    reviewer_notes: str | None
    created_at_utc: str


@dataclass(frozen=True)
class StoryGraph:
    """All nodes and edges of a story plus its root pointer."""

    story: Story
    nodes: tuple[Node, ...]
    edges: tuple[Edge, ...]

    @property
    def root_node_id(self) -> str | None:
        return self.story.root_node_id
