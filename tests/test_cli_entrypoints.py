from __future__ import annotations

import os
from typing import Any

import httpx
import pytest

from story_forge.api.autoplay import AutoplayResult
from story_forge.api.python_interface import AuthSession
from story_forge.cli import api as api_cli
from story_forge.cli import autoplay as autoplay_cli


def test_api_main_sets_db_path_and_runs_uvicorn(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: dict[str, Any] = {}

    def fake_run(app: str, host: str, port: int, reload: bool) -> None:
        seen.update({"app": app, "host": host, "port": port, "reload": reload})

    monkeypatch.setenv("STORY_FORGE_DB_PATH", "")
    monkeypatch.setattr("story_forge.cli.api.uvicorn.run", fake_run)
    api_cli.main(["--host", "0.0.0.0", "--port", "9000", "--db-path", "/tmp/forge.db"])
    assert seen == {
        "app": "story_forge.api.app:app",
        "host": "0.0.0.0",
        "port": 9000,
        "reload": False,
    }
    assert os.environ["STORY_FORGE_DB_PATH"] == "/tmp/forge.db"


class _FakeClient:
    started: list[str] = []

    def __init__(self, api_base_url: str) -> None:
        self.api_base_url = api_base_url

    def login(self, *, email: str, password: str) -> AuthSession:
        return AuthSession(access_token=f"{email}:{password}", api_base_url=self.api_base_url)

    def start_session(self, *, session: AuthSession, story_id: str) -> Any:
        self.started.append(story_id)
        return type("Started", (), {"session_id": "new-session"})()


def test_autoplay_main_starts_session_and_prints_result(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    seen: dict[str, Any] = {}

    def fake_autoplay(client: Any, **kwargs: Any) -> AutoplayResult:
        seen.update(kwargs)
        return AutoplayResult(
            session_id=kwargs["session_id"], edge_ids=("e1", "e2"), stop_reason="end_of_story"
        )

    _FakeClient.started = []
    monkeypatch.setattr("story_forge.cli.autoplay.StoryForgeClient", _FakeClient)
    monkeypatch.setattr("story_forge.cli.autoplay.autoplay_session", fake_autoplay)
    monkeypatch.setenv("STORY_FORGE_PASSWORD", "password123")
    autoplay_cli.main(
        ["--email", "alice@example.com", "--story-id", "story-1", "--step-delay", "-3"]
    )

    assert _FakeClient.started == ["story-1"]
    assert seen["session_id"] == "new-session"
    assert seen["session"].access_token == "alice@example.com:password123"
    assert seen["step_delay_seconds"] == 0.0
    assert seen["max_steps"] == 200
    output = capsys.readouterr().out
    assert "Session id: new-session" in output
    assert "Steps taken: 2" in output
    assert "Stop reason: end_of_story" in output


def test_autoplay_main_requires_password(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("STORY_FORGE_PASSWORD", raising=False)
    with pytest.raises(SystemExit, match="Password required"):
        autoplay_cli.main(["--email", "alice@example.com", "--session-id", "s1"])


def test_autoplay_main_reports_api_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    class _RejectingClient(_FakeClient):
        def login(self, *, email: str, password: str) -> AuthSession:
            request = httpx.Request("POST", f"{self.api_base_url}/api/v1/auth/login")
            response = httpx.Response(401, request=request, text="Invalid credentials")
            raise httpx.HTTPStatusError("rejected", request=request, response=response)

    monkeypatch.setattr("story_forge.cli.autoplay.StoryForgeClient", _RejectingClient)
    with pytest.raises(SystemExit, match=r"API request failed \(401\)"):
        autoplay_cli.main(
            ["--email", "alice@example.com", "--password", "wrong", "--session-id", "s1"]
        )
