from __future__ import annotations

from story_forge.core.visualization import (
    ROOT_STYLE,
    build_story_mermaid,
    sanitize_id,
    truncate,
)
from story_forge.domain.models import Edge, EdgeConditions, EdgeEffects, Node, NodeMetadata, Story


def _story(root_node_id: str | None) -> Story:
    return Story(
        story_id="story-1",
        title="Mill",
        summary=None,
        created_by="author-1",
        public=True,
        root_node_id=root_node_id,
        tags=(),
        status="published",
        created_at_utc="2024-01-01T00:00:00+00:00",
        updated_at_utc="2024-01-01T00:00:00+00:00",
    )


def _node(node_id: str, role: str, content: str, name: str | None = None) -> Node:
    return Node(
        node_id=node_id,
        story_id="story-1",
        role=role,
        title=None,
        content=content,
        metadata=NodeMetadata(name=name),
        version=1,
        image_storage_id=None,
        created_by="author-1",
        created_at_utc="2024-01-01T00:00:00+00:00",
    )


def _edge(
    edge_id: str,
    from_node_id: str,
    to_node_id: str,
    label: str,
    *,
    conditions: EdgeConditions | None = None,
    effects: EdgeEffects | None = None,
) -> Edge:
    return Edge(
        edge_id=edge_id,
        story_id="story-1",
        from_node_id=from_node_id,
        to_node_id=to_node_id,
        label=label,
        conditions=conditions,
        effects=effects,
        order=0,
        created_at_utc="2024-01-01T00:00:00+00:00",
    )


def test_sanitize_and_truncate() -> None:
    assert sanitize_id("ab-12_cd") == "nab12cd"
    assert truncate("short", 10) == "short"
    assert truncate("abcdefghijkl", 8) == "abcde..."
    assert len(truncate("x" * 100, 40)) == 40


def test_mermaid_marks_root_roles_and_gated_edges() -> None:
    nodes = [
        _node("root-1", "narrator", "The mill wheel turns."),
        _node("node-2", "narrator", 'A "ghost" drifts\nover the water.'),
        _node("node-3", "character", "Who goes there?", name="Miller"),
        _node("node-4", "character", "Hm."),
    ]
    edges = [
        _edge("e1", "root-1", "node-2", "Follow the sound"),
        _edge(
            "e2",
            "node-2",
            "node-3",
            "Knock on the door of the old stone house",
            conditions=EdgeConditions(requires_flags=("lantern",)),
            effects=EdgeEffects(score_delta=1),
        ),
    ]

    diagram = build_story_mermaid(_story("root-1"), nodes, edges)
    lines = diagram.mermaid.splitlines()
    assert lines[0] == "graph TD"
    assert '  nroot1[["🏁 The mill wheel turns."]]' in lines
    assert '  nnode2["📖 A #quot;ghost#quot; drifts over the water."]' in lines
    assert '  nnode3["💬 Miller: Who goes there?"]' in lines
    assert '  nnode4["💬 Character: Hm."]' in lines
    assert '  nroot1 -->|"Follow the sound"| nnode2' in lines
    assert '  nnode2 -->|"Knock on the door of the ol... 🔒 ⚡"| nnode3' in lines
    assert lines[-1] == f"  style nroot1 {ROOT_STYLE}"
    assert diagram.node_count == 4
    assert diagram.edge_count == 2


def test_mermaid_without_root_has_no_style_line() -> None:
    diagram = build_story_mermaid(_story(None), [_node("n1", "user", "Hi")], [])
    assert "style" not in diagram.mermaid
    assert '  nn1["Hi"]' in diagram.mermaid.splitlines()
