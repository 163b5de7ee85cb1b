from __future__ import annotations

from pathlib import Path

import httpx
import pytest
from fastapi.testclient import TestClient

from story_forge.api.app import create_app
from story_forge.api.python_interface import AuthSession, StoryForgeClient
from story_forge.core.errors import ImageValidationError


def _client(tmp_path: Path) -> StoryForgeClient:
    http_client = TestClient(create_app(db_path=tmp_path / "stories.db"))
    return StoryForgeClient(api_base_url="http://testserver/", http_client=http_client)


def test_login_parses_token_without_shared_client(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: list[str] = []

    def fake_request(
        method: str,
        url: str,
        *,
        json: object,
        content: bytes | None,
        headers: dict[str, str],
        timeout: float,
    ) -> httpx.Response:
        seen.append(f"{method} {url}")
        request = httpx.Request(method, url)
        return httpx.Response(
            status_code=200,
            request=request,
            json={"access_token": "token-123", "token_type": "bearer", "expires_at_utc": "x"},
        )

    monkeypatch.setattr("story_forge.api.python_interface.httpx.request", fake_request)
    client = StoryForgeClient(api_base_url="http://127.0.0.1:8000/")
    session = client.login(email="Alice@Example.com", password="password123")
    assert session == AuthSession(access_token="token-123", api_base_url="http://127.0.0.1:8000")
    assert seen == ["POST http://127.0.0.1:8000/api/v1/auth/login"]


def test_client_authors_and_plays_a_story(tmp_path: Path) -> None:
    client = _client(tmp_path)
    assert client.api_base_url == "http://testserver"
    client.register(email="alice@example.com", password="password123", display_name="Alice")
    session = client.login(email="alice@example.com", password="password123")
    assert client.me(session=session).display_name == "Alice"

    story = client.create_story(
        session=session, title="Lantern", root_content="A flicker in the dark.", public=True
    )
    assert story.root_node_id is not None
    branch = client.create_branch(
        session=session,
        story_id=story.story_id,
        from_node_id=story.root_node_id,
        label="Approach",
        content="The flame steadies.",
    )
    assert [item.story_id for item in client.list_stories(session=session, query="lantern")] == [
        story.story_id
    ]

    play = client.start_session(session=session, story_id=story.story_id)
    state = client.session_state(session=session, session_id=play.session_id)
    assert [choice.edge_id for choice in state.choices] == [branch.edge.edge_id]

    chosen = client.choose_edge(
        session=session, session_id=play.session_id, edge_id=branch.edge.edge_id
    )
    assert chosen.to_node_id == branch.node.node_id
    assert client.advance(session=session, session_id=play.session_id) is None
    message = client.send_message(session=session, session_id=play.session_id, content="Hi")
    assert message.author == "Alice"
    assert message.seq == 3


def test_upload_node_image_checks_then_attaches(tmp_path: Path) -> None:
    client = _client(tmp_path)
    client.register(email="alice@example.com", password="password123", display_name="Alice")
    session = client.login(email="alice@example.com", password="password123")
    story = client.create_story(session=session, title="Gallery", root_content="Frames.")
    assert story.root_node_id is not None

    with pytest.raises(ImageValidationError):
        client.upload_node_image(
            session=session, node_id=story.root_node_id, data=b"text", content_type="text/plain"
        )
    attached = client.upload_node_image(
        session=session, node_id=story.root_node_id, data=b"\x89PNG", content_type="image/png"
    )
    assert attached.node_id == story.root_node_id
    assert attached.metadata.content_type == "image/png"
    assert attached.url.endswith(f"/api/v1/files/{attached.metadata.storage_id}")


def test_http_errors_raise_status_errors(tmp_path: Path) -> None:
    client = _client(tmp_path)
    with pytest.raises(httpx.HTTPStatusError) as excinfo:
        client.login(email="ghost@example.com", password="password123")
    assert excinfo.value.response.status_code == 401
