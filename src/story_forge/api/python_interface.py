"""Python-first interface for Story Forge API interactions."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx

from story_forge.api.contracts import (
    AdvanceResponse,
    AuthLoginRequest,
    AuthRegisterRequest,
    AuthTokenResponse,
    BranchCreateRequest,
    BranchResponse,
    ChooseEdgeRequest,
    ChooseEdgeResponse,
    MessageResponse,
    NodeImageAttachRequest,
    NodeImageResponse,
    SendMessageRequest,
    SessionCreateRequest,
    SessionResponse,
    SessionStateResponse,
    StoredFileResponse,
    StoryCreateRequest,
    StoryResponse,
    UploadSlotResponse,
    UserResponse,
)
from story_forge.core.images import validate_image


@dataclass(frozen=True)
class AuthSession:
    """Authenticated client session."""

    access_token: str
    api_base_url: str


class StoryForgeClient:
    """Typed API client for scripting authoring and playthroughs."""

    def __init__(
        self,
        api_base_url: str = "http://127.0.0.1:8000",
        *,
        http_client: httpx.Client | None = None,
    ) -> None:
        """Initialize client with an API base URL and optional shared HTTP client."""
        self._api_base_url = api_base_url.rstrip("/")
        self._http_client = http_client

    @property
    def api_base_url(self) -> str:
        """Return normalized API base URL."""
        return self._api_base_url

    def _send(
        self,
        method: str,
        url: str,
        *,
        session: AuthSession | None = None,
        json: Any = None,
        content: bytes | None = None,
        headers: dict[str, str] | None = None,
        timeout: float = 30.0,
    ) -> httpx.Response:
        request_headers = dict(headers or {})
        if session is not None:
            request_headers["Authorization"] = f"Bearer {session.access_token}"
        if self._http_client is not None:
            response = self._http_client.request(
                method, url, json=json, content=content, headers=request_headers, timeout=timeout
            )
        else:
            response = httpx.request(
                method, url, json=json, content=content, headers=request_headers, timeout=timeout
            )
        response.raise_for_status()
        return response

    def register(self, *, email: str, password: str, display_name: str) -> UserResponse:
        """Create a local account for bearer-token authentication."""
        request = AuthRegisterRequest.model_validate(
            {"email": email, "password": password, "display_name": display_name}
        )
        response = self._send(
            "POST",
            f"{self._api_base_url}/api/v1/auth/register",
            json={
                "email": request.email,
                "password": request.password.get_secret_value(),
                "display_name": request.display_name,
            },
        )
        return UserResponse.model_validate(response.json())

    def login(self, *, email: str, password: str) -> AuthSession:
        """Authenticate and return a reusable auth session."""
        request = AuthLoginRequest.model_validate({"email": email, "password": password})
        response = self._send(
            "POST",
            f"{self._api_base_url}/api/v1/auth/login",
            json={"email": request.email, "password": request.password.get_secret_value()},
        )
        token = AuthTokenResponse.model_validate(response.json())
        return AuthSession(access_token=token.access_token, api_base_url=self._api_base_url)

    def me(self, *, session: AuthSession) -> UserResponse:
        response = self._send("GET", f"{session.api_base_url}/api/v1/me", session=session)
        return UserResponse.model_validate(response.json())

    def create_story(
        self,
        *,
        session: AuthSession,
        title: str,
        root_content: str,
        summary: str | None = None,
        public: bool = False,
        root_title: str | None = None,
    ) -> StoryResponse:
        """Create a story seeded with its opening scene."""
        request = StoryCreateRequest(
            title=title,
            summary=summary,
            root_content=root_content,
            root_title=root_title,
            public=public,
        )
        response = self._send(
            "POST",
            f"{session.api_base_url}/api/v1/stories",
            session=session,
            json=request.model_dump(mode="json"),
        )
        return StoryResponse.model_validate(response.json())

    def list_stories(
        self, *, session: AuthSession, query: str | None = None
    ) -> list[StoryResponse]:
        url = f"{session.api_base_url}/api/v1/stories"
        if query:
            url = str(httpx.URL(url, params={"q": query}))
        response = self._send("GET", url, session=session)
        return [StoryResponse.model_validate(item) for item in response.json()]

    def create_branch(
        self,
        *,
        session: AuthSession,
        story_id: str,
        from_node_id: str,
        label: str,
        content: str,
        title: str | None = None,
    ) -> BranchResponse:
        """Add a scene plus the choice that leads to it."""
        request = BranchCreateRequest(
            from_node_id=from_node_id, label=label, content=content, title=title
        )
        response = self._send(
            "POST",
            f"{session.api_base_url}/api/v1/stories/{story_id}/branches",
            session=session,
            json=request.model_dump(mode="json"),
        )
        return BranchResponse.model_validate(response.json())

    def start_session(self, *, session: AuthSession, story_id: str) -> SessionResponse:
        """Begin a solo playthrough at the story root."""
        request = SessionCreateRequest(story_id=story_id)
        response = self._send(
            "POST",
            f"{session.api_base_url}/api/v1/sessions",
            session=session,
            json=request.model_dump(mode="json"),
        )
        return SessionResponse.model_validate(response.json())

    def session_state(self, *, session: AuthSession, session_id: str) -> SessionStateResponse:
        response = self._send(
            "GET", f"{session.api_base_url}/api/v1/sessions/{session_id}", session=session
        )
        return SessionStateResponse.model_validate(response.json())

    def choose_edge(
        self, *, session: AuthSession, session_id: str, edge_id: str
    ) -> ChooseEdgeResponse:
        request = ChooseEdgeRequest(edge_id=edge_id)
        response = self._send(
            "POST",
            f"{session.api_base_url}/api/v1/sessions/{session_id}/choose",
            session=session,
            json=request.model_dump(mode="json"),
        )
        return ChooseEdgeResponse.model_validate(response.json())

    def advance(self, *, session: AuthSession, session_id: str) -> str | None:
        """Take the first choice; None when the playthrough reached a dead end."""
        response = self._send(
            "POST",
            f"{session.api_base_url}/api/v1/sessions/{session_id}/advance",
            session=session,
        )
        return AdvanceResponse.model_validate(response.json()).edge_id

    def send_message(
        self, *, session: AuthSession, session_id: str, content: str
    ) -> MessageResponse:
        request = SendMessageRequest(content=content)
        response = self._send(
            "POST",
            f"{session.api_base_url}/api/v1/sessions/{session_id}/messages",
            session=session,
            json=request.model_dump(mode="json"),
        )
        return MessageResponse.model_validate(response.json())

    def upload_node_image(
        self,
        *,
        session: AuthSession,
        node_id: str,
        data: bytes,
        content_type: str,
    ) -> NodeImageResponse:
        """Check, upload, and attach an image to a node in three requests."""
        validate_image(size=len(data), content_type=content_type)
        slot_response = self._send(
            "POST", f"{session.api_base_url}/api/v1/uploads", session=session
        )
        slot = UploadSlotResponse.model_validate(slot_response.json())
        upload_response = self._send(
            "POST",
            slot.upload_url,
            content=data,
            headers={"Content-Type": content_type},
            timeout=60.0,
        )
        stored = StoredFileResponse.model_validate(upload_response.json())
        request = NodeImageAttachRequest(storage_id=stored.storage_id)
        attach_response = self._send(
            "POST",
            f"{session.api_base_url}/api/v1/nodes/{node_id}/image",
            session=session,
            json=request.model_dump(mode="json"),
        )
        return NodeImageResponse.model_validate(attach_response.json())


__all__ = [
    "AuthSession",
    "StoryForgeClient",
]
