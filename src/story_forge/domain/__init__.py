"""Domain records and ports for story graphs and playthroughs."""

from story_forge.domain.models import (
    Draft,
    Edge,
    EdgeConditions,
    EdgeEffects,
    Message,
    Node,
    NodeMetadata,
    PlaySession,
    Story,
    StoryGraph,
)
from story_forge.domain.ports import GraphStorePort

__all__ = [
    "Draft",
    "Edge",
    "EdgeConditions",
    "EdgeEffects",
    "GraphStorePort",
    "Message",
    "Node",
    "NodeMetadata",
    "PlaySession",
    "Story",
    "StoryGraph",
]
