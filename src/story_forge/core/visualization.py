"""Mermaid flowchart rendering for story graphs."""

from __future__ import annotations

import re
from dataclasses import dataclass

from story_forge.domain.models import Edge, Node, Story

NODE_TEXT_LIMIT = 40
EDGE_LABEL_LIMIT = 30
ROOT_STYLE = "fill:#90EE90,stroke:#2E8B57,stroke-width:3px"

_NON_ALNUM_RE = re.compile(r"[^a-zA-Z0-9]")
_WHITESPACE_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class StoryDiagram:
    story_id: str
    title: str
    mermaid: str
    node_count: int
    edge_count: int


def sanitize_id(raw_id: str) -> str:
    """Mermaid-safe node identifier: ``n`` plus the id's alphanumerics."""
    return "n" + _NON_ALNUM_RE.sub("", raw_id)


def truncate(text: str, limit: int) -> str:
    """Cut ``text`` to ``limit`` characters, the ``...`` suffix included."""
    if len(text) <= limit:
        return text
    return text[: max(0, limit - 3)] + "..."


def _label(text: str, limit: int) -> str:
    flattened = _WHITESPACE_RE.sub(" ", text).strip()
    return truncate(flattened, limit).replace('"', "#quot;")


def _node_line(node: Node, *, is_root: bool) -> str:
    node_id = sanitize_id(node.node_id)
    text = _label(node.content, NODE_TEXT_LIMIT)
    if is_root:
        return f'  {node_id}[["🏁 {text}"]]'
    if node.role == "narrator":
        return f'  {node_id}["📖 {text}"]'
    if node.role == "character":
        name = _label(node.metadata.name or "Character", NODE_TEXT_LIMIT)
        return f'  {node_id}["💬 {name}: {text}"]'
    return f'  {node_id}["{text}"]'


def _edge_line(edge: Edge) -> str:
    suffix = ""
    if edge.conditions is not None:
        suffix += " 🔒"
    if edge.effects is not None:
        suffix += " ⚡"
    label = _label(edge.label, EDGE_LABEL_LIMIT)
    return (
        f'  {sanitize_id(edge.from_node_id)} -->|"{label}{suffix}"| '
        f"{sanitize_id(edge.to_node_id)}"
    )


def build_story_mermaid(story: Story, nodes: list[Node], edges: list[Edge]) -> StoryDiagram:
    """Render every node and edge of one story as a ``graph TD`` flowchart."""
    lines = ["graph TD"]
    lines.extend(_node_line(node, is_root=node.node_id == story.root_node_id) for node in nodes)
    lines.append("")
    lines.extend(_edge_line(edge) for edge in edges)
    if story.root_node_id:
        lines.append("")
        lines.append(f"  style {sanitize_id(story.root_node_id)} {ROOT_STYLE}")
    return StoryDiagram(
        story_id=story.story_id,
        title=story.title,
        mermaid="\n".join(lines) + "\n",
        node_count=len(nodes),
        edge_count=len(edges),
    )
