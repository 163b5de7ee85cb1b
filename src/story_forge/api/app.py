"""FastAPI application for story authoring, playback, and writing assistance."""

from __future__ import annotations

import hashlib
import hmac
import logging
import os
import secrets
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Literal

import httpx
import jwt
from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, Field

from story_forge.adapters.sqlite_file_store import SQLiteFileStore, StoredFileMeta
from story_forge.adapters.sqlite_graph_store import SQLiteGraphStore
from story_forge.adapters.sqlite_suggestion_store import SQLiteSuggestionStore, StoredSuggestion
from story_forge.adapters.sqlite_user_store import SQLiteUserStore, StoredUser
from story_forge.api.contracts import (
    AdvanceResponse,
    AssistantChoicesRequest,
    AssistantChoicesResponse,
    AssistantEnhanceRequest,
    AssistantRewriteRequest,
    AssistantSuggestRequest,
    AssistantSuggestResponse,
    AssistantTextResponse,
    AuthLoginRequest,
    AuthRegisterRequest,
    AuthTokenResponse,
    BranchCreateRequest,
    BranchResponse,
    ChoiceResponse,
    ChoiceSuggestionBlock,
    ChooseEdgeRequest,
    ChooseEdgeResponse,
    DraftCreateRequest,
    DraftResponse,
    EdgeConditionsBlock,
    EdgeCreateRequest,
    EdgeEffectsBlock,
    EdgeResponse,
    ExampleEditsBlock,
    MessageResponse,
    NodeCreateRequest,
    NodeImageAttachRequest,
    NodeImageResponse,
    NodeMetadataBlock,
    NodeResponse,
    NodeUpdateRequest,
    ParticipantAddRequest,
    ProposedEdgeBlock,
    ProposedNodeBlock,
    SavedSuggestionCreateRequest,
    SavedSuggestionNoteRequest,
    SavedSuggestionResponse,
    SendMessageRequest,
    SessionCreateRequest,
    SessionResponse,
    SessionStateResponse,
    SessionSummaryResponse,
    StoredFileResponse,
    StoryCreateRequest,
    StoryDeleteResponse,
    StoryGraphResponse,
    StoryMermaidResponse,
    StoryResponse,
    StoryTitleUpdateRequest,
    UploadSlotResponse,
    UserResponse,
)
from story_forge.api.oidc import validate_oidc_token
from story_forge.core.assistant import AssistantGateway
from story_forge.core.errors import (
    AssistantConfigError,
    AssistantProviderError,
    AuthorizationError,
    ChoiceLockedError,
    ImageValidationError,
    IntegrityError,
    NotFoundError,
    StoryForgeError,
)
from story_forge.core.images import validate_image
from story_forge.core.sessions import SessionTracker
from story_forge.core.traversal import ChoiceView, TraversalEngine
from story_forge.core.visualization import build_story_mermaid
from story_forge.domain.models import (
    Draft,
    Edge,
    EdgeConditions,
    EdgeEffects,
    Message,
    Node,
    NodeMetadata,
    PlaySession,
    ProposedEdge,
    ProposedNode,
    Story,
)

DEFAULT_DB_PATH = Path("work/local/story_forge.db")
TOKEN_TTL_HOURS = 24
PBKDF2_ITERATIONS = 310_000
UPLOAD_SLOT_TTL_SECONDS = 3600
AuthMode = Literal["local", "oidc"]

logger = logging.getLogger(__name__)

_ERROR_STATUS: tuple[tuple[type[StoryForgeError], int], ...] = (
    (ChoiceLockedError, status.HTTP_409_CONFLICT),
    (AuthorizationError, status.HTTP_403_FORBIDDEN),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (IntegrityError, status.HTTP_409_CONFLICT),
    (ImageValidationError, 422),
    (AssistantConfigError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (AssistantProviderError, status.HTTP_502_BAD_GATEWAY),
)


class HealthResponse(BaseModel):
    """Simple health payload used by probes."""

    status: Literal["ok"] = "ok"
    service: str = "story_forge"


class ApiRootResponse(BaseModel):
    """Describes currently available API capabilities and runtime mode."""

    name: str = "story_forge"
    persistence: Literal["sqlite"] = "sqlite"
    auth: AuthMode = "local"
    enforce_edge_rules: bool = False
    endpoints: list[str] = Field(
        default_factory=lambda: [
            "/healthz",
            "/api/v1",
            "/api/v1/auth/register",
            "/api/v1/auth/login",
            "/api/v1/me",
            "/api/v1/stories",
            "/api/v1/stories/{story_id}",
            "/api/v1/stories/{story_id}/graph",
            "/api/v1/stories/{story_id}/mermaid",
            "/api/v1/stories/{story_id}/nodes",
            "/api/v1/stories/{story_id}/branches",
            "/api/v1/stories/{story_id}/edges",
            "/api/v1/stories/{story_id}/drafts",
            "/api/v1/nodes/{node_id}",
            "/api/v1/nodes/{node_id}/choices",
            "/api/v1/nodes/{node_id}/image",
            "/api/v1/edges/{edge_id}",
            "/api/v1/sessions",
            "/api/v1/sessions/{session_id}",
            "/api/v1/sessions/{session_id}/choose",
            "/api/v1/sessions/{session_id}/advance",
            "/api/v1/sessions/{session_id}/messages",
            "/api/v1/sessions/{session_id}/participants",
            "/api/v1/assistant/suggest",
            "/api/v1/assistant/rewrite",
            "/api/v1/assistant/enhance",
            "/api/v1/assistant/choices",
            "/api/v1/suggestions",
            "/api/v1/suggestions/{suggestion_id}",
            "/api/v1/uploads",
            "/api/v1/uploads/{upload_token}",
            "/api/v1/files/{storage_id}",
        ]
    )


def _resolve_db_path(db_path: Path | None) -> Path:
    """Resolve DB path from explicit arg, env var, then default path."""
    if db_path is not None:
        return db_path
    env_value = os.environ.get("STORY_FORGE_DB_PATH", "").strip()
    if env_value:
        return Path(env_value)
    return DEFAULT_DB_PATH


def _cors_origins() -> list[str]:
    raw = os.environ.get("STORY_FORGE_CORS_ORIGINS", "").strip()
    if raw:
        return [origin.strip() for origin in raw.split(",") if origin.strip()]
    return ["http://127.0.0.1:5173", "http://localhost:5173"]


def _truthy_env(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in {"1", "true", "yes", "on"}


def _auth_mode() -> AuthMode:
    raw = os.environ.get("STORY_FORGE_AUTH_MODE", "").strip().lower()
    return "oidc" if raw == "oidc" else "local"


def _admin_emails() -> frozenset[str]:
    raw = os.environ.get("STORY_FORGE_ADMIN_EMAILS", "")
    return frozenset(email.strip().lower() for email in raw.split(",") if email.strip())


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _hash_password(password: str) -> str:
    salt = secrets.token_bytes(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, PBKDF2_ITERATIONS)
    return f"pbkdf2_sha256${PBKDF2_ITERATIONS}${salt.hex()}${digest.hex()}"


def _verify_password(password: str, password_hash: str | None) -> bool:
    if not password_hash:
        return False
    try:
        algorithm, iterations, salt_hex, digest_hex = password_hash.split("$", maxsplit=3)
    except ValueError:
        return False
    if algorithm != "pbkdf2_sha256":
        return False
    recomputed = hashlib.pbkdf2_hmac(
        "sha256",
        password.encode("utf-8"),
        bytes.fromhex(salt_hex),
        int(iterations),
    )
    return hmac.compare_digest(recomputed.hex(), digest_hex)


def _error_status(exc: StoryForgeError) -> int:
    for error_type, status_code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_400_BAD_REQUEST


def _user_response(user: StoredUser) -> UserResponse:
    return UserResponse(
        user_id=user.user_id,
        email=user.email,
        display_name=user.display_name,
        avatar_url=user.avatar_url,
        roles=list(user.roles),
        created_at_utc=user.created_at_utc,
    )


def _story_response(story: Story) -> StoryResponse:
    return StoryResponse(
        story_id=story.story_id,
        title=story.title,
        summary=story.summary,
        created_by=story.created_by,
        public=story.public,
        root_node_id=story.root_node_id,
        tags=list(story.tags),
        status=story.status,
        created_at_utc=story.created_at_utc,
        updated_at_utc=story.updated_at_utc,
    )


def _node_response(node: Node) -> NodeResponse:
    return NodeResponse(
        node_id=node.node_id,
        story_id=node.story_id,
        role=node.role,
        title=node.title,
        content=node.content,
        metadata=node.metadata.to_payload(),
        version=node.version,
        image_storage_id=node.image_storage_id,
        created_by=node.created_by,
        created_at_utc=node.created_at_utc,
    )


def _conditions_block(conditions: EdgeConditions | None) -> EdgeConditionsBlock | None:
    if conditions is None:
        return None
    return EdgeConditionsBlock.model_validate(conditions.to_payload())


def _effects_block(effects: EdgeEffects | None) -> EdgeEffectsBlock | None:
    if effects is None:
        return None
    return EdgeEffectsBlock.model_validate(effects.to_payload())


def _edge_response(edge: Edge) -> EdgeResponse:
    return EdgeResponse(
        edge_id=edge.edge_id,
        story_id=edge.story_id,
        from_node_id=edge.from_node_id,
        to_node_id=edge.to_node_id,
        label=edge.label,
        conditions=_conditions_block(edge.conditions),
        effects=_effects_block(edge.effects),
        order=edge.order,
        created_at_utc=edge.created_at_utc,
    )


def _choice_response(choice: ChoiceView) -> ChoiceResponse:
    edge = choice.edge
    return ChoiceResponse(
        edge_id=edge.edge_id,
        story_id=edge.story_id,
        from_node_id=edge.from_node_id,
        to_node_id=edge.to_node_id,
        label=edge.label,
        conditions=_conditions_block(edge.conditions),
        effects=_effects_block(edge.effects),
        order=edge.order,
        created_at_utc=edge.created_at_utc,
        available=choice.available,
        locked_reasons=list(choice.locked_reasons),
    )


def _session_response(session: PlaySession) -> SessionResponse:
    return SessionResponse(
        session_id=session.session_id,
        story_id=session.story_id,
        created_by=session.created_by,
        title=session.title,
        participants=list(session.participants),
        current_node_id=session.current_node_id,
        flags=dict(session.flags),
        score=session.score,
        is_group=session.is_group,
        created_at_utc=session.created_at_utc,
    )


def _message_response(message: Message, *, author: str) -> MessageResponse:
    return MessageResponse(
        message_id=message.message_id,
        session_id=message.session_id,
        seq=message.seq,
        role=message.role,
        content=message.content,
        author=author,
        node_id=message.node_id,
        author_user_id=message.author_user_id,
        chosen_edge_id=message.chosen_edge_id,
        edge_label=message.edge_label,
        read_by=list(message.read_by),
        created_at_utc=message.created_at_utc,
    )


def _suggestion_response(suggestion: StoredSuggestion) -> SavedSuggestionResponse:
    return SavedSuggestionResponse(
        suggestion_id=suggestion.suggestion_id,
        user_id=suggestion.user_id,
        story_id=suggestion.story_id,
        node_id=suggestion.node_id,
        type=suggestion.suggestion_type,
        original_content=suggestion.original_content,
        suggestions=suggestion.suggestions,
        example_edits=ExampleEditsBlock.model_validate(suggestion.example_edits)
        if suggestion.example_edits
        else None,
        choices=[ChoiceSuggestionBlock.model_validate(choice) for choice in suggestion.choices]
        if suggestion.choices is not None
        else None,
        content=suggestion.content,
        note=suggestion.note,
        created_at_utc=suggestion.created_at_utc,
    )


def _file_response(meta: StoredFileMeta) -> StoredFileResponse:
    return StoredFileResponse(
        storage_id=meta.storage_id,
        content_type=meta.content_type,
        size=meta.size,
        sha256=meta.sha256,
        created_at_utc=meta.created_at_utc,
    )


def _draft_response(draft: Draft) -> DraftResponse:
    return DraftResponse(
        draft_id=draft.draft_id,
        story_id=draft.story_id,
        base_node_id=draft.base_node_id,
        proposed_by=draft.proposed_by,
        proposed_nodes=[
            ProposedNodeBlock.model_validate(
                {
                    "temp_id": node.temp_id,
                    "role": node.role,
                    "content": node.content,
                    "order": node.order,
                    "metadata": dict(node.metadata),
                }
            )
            for node in draft.proposed_nodes
        ],
        proposed_edges=[
            ProposedEdgeBlock(
                from_ref=edge.from_ref,
                to_ref=edge.to_ref,
                label=edge.label,
                order=edge.order,
                conditions=EdgeConditionsBlock.model_validate(edge.conditions)
                if edge.conditions
                else None,
                effects=EdgeEffectsBlock.model_validate(edge.effects) if edge.effects else None,
            )
            for edge in draft.proposed_edges
        ],
        status=draft.status,
        reviewer_id=draft.reviewer_id,
        reviewer_notes=draft.reviewer_notes,
        created_at_utc=draft.created_at_utc,
    )


def _node_metadata(block: NodeMetadataBlock | None) -> NodeMetadata | None:
    if block is None:
        return None
    return NodeMetadata.from_payload(block.model_dump(exclude_none=True))


def create_app(
    db_path: Path | None = None,
    *,
    assistant: AssistantGateway | None = None,
    enforce_edge_rules: bool | None = None,
) -> FastAPI:
    """Create the API application."""
    effective_db_path = _resolve_db_path(db_path)
    user_store = SQLiteUserStore(db_path=effective_db_path)
    graph_store = SQLiteGraphStore(db_path=effective_db_path)
    suggestion_store = SQLiteSuggestionStore(db_path=effective_db_path)
    file_store = SQLiteFileStore(
        db_path=effective_db_path, slot_ttl_seconds=UPLOAD_SLOT_TTL_SECONDS
    )
    auth_mode = _auth_mode()
    admin_emails = _admin_emails()
    enforce_rules = (
        _truthy_env("STORY_FORGE_ENFORCE_EDGE_RULES")
        if enforce_edge_rules is None
        else enforce_edge_rules
    )
    public_base_url = os.environ.get("STORY_FORGE_PUBLIC_BASE_URL", "").strip().rstrip("/")
    gateway = assistant or AssistantGateway()
    engine = TraversalEngine(graph_store, enforce_edge_rules=enforce_rules)
    tracker = SessionTracker(
        graph_store,
        engine,
        display_names=lambda user_ids: user_store.display_names(user_ids=user_ids),
    )
    bearer = HTTPBearer(auto_error=False)

    app = FastAPI(
        title="story_forge API",
        version="0.1.0",
        description=(
            "Branching interactive-fiction graphs, chat-style playthroughs, "
            "and an AI writing assistant."
        ),
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        openapi_tags=[
            {"name": "system", "description": "Service health and runtime metadata."},
            {"name": "api", "description": "API discovery and root-level capability listing."},
            {"name": "auth", "description": "Registration, login, and profile lookups."},
            {"name": "stories", "description": "Story graph authoring and visualization."},
            {"name": "sessions", "description": "Playthrough sessions and traversal."},
            {"name": "assistant", "description": "AI writing help for scene text."},
            {"name": "suggestions", "description": "Saved assistant output."},
            {"name": "images", "description": "Node image uploads and file reads."},
        ],
        swagger_ui_parameters={
            "displayRequestDuration": True,
            "defaultModelsExpandDepth": -1,
        },
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    logger.info(
        "api.start db_path=%s auth_mode=%s enforce_edge_rules=%s",
        effective_db_path,
        auth_mode,
        enforce_rules,
    )

    @app.exception_handler(StoryForgeError)
    async def story_forge_error_handler(request: Request, exc: StoryForgeError) -> JSONResponse:
        status_code = _error_status(exc)
        content: dict[str, object] = {"detail": str(exc)}
        if isinstance(exc, ChoiceLockedError):
            content["edge_id"] = exc.edge_id
            content["reasons"] = exc.reasons
        if isinstance(exc, AssistantProviderError):
            logger.error(
                "assistant.failed path=%s provider_status=%s body=%s",
                request.url.path,
                exc.status_code,
                exc.body,
            )
        elif status_code >= 500:
            logger.error("api.error path=%s detail=%s", request.url.path, exc)
        return JSONResponse(status_code=status_code, content=content)

    def roles_for(email: str | None) -> list[str]:
        if email and email.lower() in admin_emails:
            return ["player", "admin"]
        return ["player"]

    def is_admin(user: StoredUser) -> bool:
        return user.is_admin or bool(user.email and user.email.lower() in admin_emails)

    def user_from_oidc(token: str) -> StoredUser:
        try:
            claims = validate_oidc_token(token)
        except (jwt.PyJWTError, httpx.HTTPError, RuntimeError, ValueError) as exc:
            logger.info("auth.oidc_rejected reason=%s", exc)
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid or expired token",
            ) from exc
        return user_store.get_or_create_external_user(
            external_id=claims.subject,
            display_name=claims.display_name,
            email=claims.email,
            avatar_url=claims.picture,
            roles=roles_for(claims.email),
        )

    def current_user(
        credentials: HTTPAuthorizationCredentials | None = Depends(bearer),
    ) -> StoredUser:
        if credentials is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Missing bearer token",
            )
        if auth_mode == "oidc":
            return user_from_oidc(credentials.credentials)
        user = user_store.get_user_by_token(
            token_value=credentials.credentials, now_utc=_utc_now().isoformat()
        )
        if user is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid or expired token",
            )
        return user

    def require_local_auth() -> None:
        if auth_mode != "local":
            raise HTTPException(
                status_code=status.HTTP_501_NOT_IMPLEMENTED,
                detail="Local accounts are disabled; sign in with the identity provider.",
            )

    def story_or_404(story_id: str) -> Story:
        story = graph_store.get_story(story_id=story_id)
        if story is None:
            raise NotFoundError("Story not found")
        return story

    def can_read(story: Story, user: StoredUser) -> bool:
        if story.public or story.created_by == user.user_id or is_admin(user):
            return True
        return any(
            session.story_id == story.story_id
            for session in graph_store.list_sessions_for_participant(user_id=user.user_id)
        )

    def readable_story_or_404(story_id: str, user: StoredUser) -> Story:
        story = story_or_404(story_id)
        if not can_read(story, user):
            raise NotFoundError("Story not found")
        return story

    def editable_story(story_id: str, user: StoredUser) -> Story:
        story = readable_story_or_404(story_id, user)
        if story.created_by != user.user_id and not is_admin(user):
            raise AuthorizationError("Only the story author can edit this story.")
        return story

    def editable_node(node_id: str, user: StoredUser) -> Node:
        node = graph_store.get_node(node_id=node_id)
        if node is None:
            raise NotFoundError("Node not found")
        editable_story(node.story_id, user)
        return node

    def node_in_story(node_id: str, story_id: str) -> Node:
        node = graph_store.get_node(node_id=node_id)
        if node is None:
            raise NotFoundError("Node not found")
        if node.story_id != story_id:
            raise IntegrityError("Node not in story")
        return node

    def owned_suggestion(suggestion_id: str, user: StoredUser) -> StoredSuggestion:
        suggestion = suggestion_store.get_suggestion(suggestion_id=suggestion_id)
        if suggestion is None:
            raise NotFoundError("Suggestion not found")
        if suggestion.user_id != user.user_id:
            raise AuthorizationError("Unauthorized")
        return suggestion

    def file_url(request: Request, storage_id: str) -> str:
        base = public_base_url or str(request.base_url).rstrip("/")
        return f"{base}/api/v1/files/{storage_id}"

    @app.get("/healthz", response_model=HealthResponse, tags=["system"])
    def healthz() -> HealthResponse:
        return HealthResponse()

    @app.get("/api/v1", response_model=ApiRootResponse, tags=["api"])
    def api_v1_root() -> ApiRootResponse:
        return ApiRootResponse(auth=auth_mode, enforce_edge_rules=enforce_rules)

    # Auth

    @app.post("/api/v1/auth/register", response_model=UserResponse, tags=["auth"], status_code=201)
    def register(payload: AuthRegisterRequest) -> UserResponse:
        require_local_auth()
        created = user_store.create_user(
            email=payload.email,
            display_name=payload.display_name,
            password_hash=_hash_password(payload.password.get_secret_value()),
            roles=roles_for(payload.email),
        )
        if created is None:
            raise HTTPException(status_code=409, detail="Email already registered")
        return _user_response(created)

    @app.post("/api/v1/auth/login", response_model=AuthTokenResponse, tags=["auth"])
    def login(payload: AuthLoginRequest) -> AuthTokenResponse:
        require_local_auth()
        user = user_store.get_user_by_email(email=payload.email)
        if user is None or not _verify_password(
            payload.password.get_secret_value(), user.password_hash
        ):
            raise HTTPException(status_code=401, detail="Invalid credentials")
        expires_at = _utc_now() + timedelta(hours=TOKEN_TTL_HOURS)
        token = user_store.create_token(
            user_id=user.user_id,
            token_value=secrets.token_urlsafe(32),
            expires_at_utc=expires_at.isoformat(),
        )
        return AuthTokenResponse(
            access_token=token.token_value, expires_at_utc=token.expires_at_utc
        )

    @app.get("/api/v1/me", response_model=UserResponse, tags=["auth"])
    def me(user: StoredUser = Depends(current_user)) -> UserResponse:
        return _user_response(user)

    # Stories

    @app.get("/api/v1/stories", response_model=list[StoryResponse], tags=["stories"])
    def list_stories(
        q: str | None = Query(default=None, max_length=200),
        user: StoredUser = Depends(current_user),
    ) -> list[StoryResponse]:
        return [
            _story_response(story)
            for story in graph_store.list_visible_stories(user_id=user.user_id, query=q)
        ]

    @app.post("/api/v1/stories", response_model=StoryResponse, tags=["stories"], status_code=201)
    def create_story(
        payload: StoryCreateRequest,
        user: StoredUser = Depends(current_user),
    ) -> StoryResponse:
        story = graph_store.create_story(
            created_by=user.user_id,
            title=payload.title,
            summary=payload.summary or None,
            public=payload.public,
            root_content=payload.root_content,
            root_title=payload.root_title or None,
            tags=payload.tags,
            status=payload.status,
        )
        logger.info("story.create story_id=%s user_id=%s", story.story_id, user.user_id)
        return _story_response(story)

    @app.get("/api/v1/stories/{story_id}", response_model=StoryResponse, tags=["stories"])
    def get_story(story_id: str, user: StoredUser = Depends(current_user)) -> StoryResponse:
        return _story_response(readable_story_or_404(story_id, user))

    @app.patch("/api/v1/stories/{story_id}", response_model=StoryResponse, tags=["stories"])
    def change_story_title(
        story_id: str,
        payload: StoryTitleUpdateRequest,
        user: StoredUser = Depends(current_user),
    ) -> StoryResponse:
        editable_story(story_id, user)
        story = graph_store.update_story_title(story_id=story_id, title=payload.title)
        if story is None:
            raise NotFoundError("Story not found")
        return _story_response(story)

    @app.delete(
        "/api/v1/stories/{story_id}", response_model=StoryDeleteResponse, tags=["stories"]
    )
    def delete_story(
        story_id: str, user: StoredUser = Depends(current_user)
    ) -> StoryDeleteResponse:
        story = readable_story_or_404(story_id, user)
        if story.created_by != user.user_id and not is_admin(user):
            raise AuthorizationError("You do not have permission to delete this story.")
        deleted = graph_store.delete_story(story_id=story_id)
        if deleted is None:
            raise NotFoundError("Story not found")
        saved_suggestions = suggestion_store.delete_for_story(story_id=story_id)
        files = sum(
            1
            for storage_id in deleted.image_storage_ids
            if file_store.delete_file(storage_id=storage_id)
        )
        logger.info(
            "story.delete story_id=%s user_id=%s nodes=%s edges=%s sessions=%s messages=%s",
            story_id,
            user.user_id,
            deleted.nodes,
            deleted.edges,
            deleted.sessions,
            deleted.messages,
        )
        return StoryDeleteResponse(
            story_id=story_id,
            nodes=deleted.nodes,
            edges=deleted.edges,
            sessions=deleted.sessions,
            messages=deleted.messages,
            drafts=deleted.drafts,
            saved_suggestions=saved_suggestions,
            files=files,
        )

    @app.get(
        "/api/v1/stories/{story_id}/graph",
        response_model=StoryGraphResponse,
        tags=["stories"],
    )
    def get_story_graph(
        story_id: str, user: StoredUser = Depends(current_user)
    ) -> StoryGraphResponse:
        readable_story_or_404(story_id, user)
        graph = graph_store.get_story_graph(story_id=story_id)
        if graph is None:
            raise NotFoundError("Story not found")
        return StoryGraphResponse(
            story_id=graph.story.story_id,
            root_node_id=graph.root_node_id,
            nodes=[_node_response(node) for node in graph.nodes],
            edges=[_edge_response(edge) for edge in graph.edges],
        )

    @app.get(
        "/api/v1/stories/{story_id}/mermaid",
        response_model=StoryMermaidResponse,
        tags=["stories"],
    )
    def get_story_mermaid(
        story_id: str, user: StoredUser = Depends(current_user)
    ) -> StoryMermaidResponse:
        readable_story_or_404(story_id, user)
        graph = graph_store.get_story_graph(story_id=story_id)
        if graph is None:
            raise NotFoundError("Story not found")
        diagram = build_story_mermaid(graph.story, list(graph.nodes), list(graph.edges))
        return StoryMermaidResponse(
            story_id=diagram.story_id,
            title=diagram.title,
            mermaid=diagram.mermaid,
            node_count=diagram.node_count,
            edge_count=diagram.edge_count,
        )

    @app.post(
        "/api/v1/stories/{story_id}/nodes",
        response_model=NodeResponse,
        tags=["stories"],
        status_code=201,
    )
    def create_node(
        story_id: str,
        payload: NodeCreateRequest,
        user: StoredUser = Depends(current_user),
    ) -> NodeResponse:
        editable_story(story_id, user)
        node = graph_store.create_node(
            story_id=story_id,
            role=payload.role,
            content=payload.content,
            created_by=user.user_id,
            title=payload.title or None,
            metadata=_node_metadata(payload.metadata),
        )
        return _node_response(node)

    @app.post(
        "/api/v1/stories/{story_id}/branches",
        response_model=BranchResponse,
        tags=["stories"],
        status_code=201,
    )
    def create_branch(
        story_id: str,
        payload: BranchCreateRequest,
        user: StoredUser = Depends(current_user),
    ) -> BranchResponse:
        editable_story(story_id, user)
        source = node_in_story(payload.from_node_id, story_id)
        node, edge = graph_store.create_node_with_edge(
            story_id=story_id,
            from_node_id=source.node_id,
            label=payload.label,
            content=payload.content,
            title=payload.title if payload.title is not None else "Untitled Scene",
            created_by=source.created_by,
        )
        return BranchResponse(node=_node_response(node), edge=_edge_response(edge))

    @app.post(
        "/api/v1/stories/{story_id}/edges",
        response_model=EdgeResponse,
        tags=["stories"],
        status_code=201,
    )
    def create_edge(
        story_id: str,
        payload: EdgeCreateRequest,
        user: StoredUser = Depends(current_user),
    ) -> EdgeResponse:
        editable_story(story_id, user)
        source = node_in_story(payload.from_node_id, story_id)
        target = node_in_story(payload.to_node_id, story_id)
        edge = graph_store.create_edge(
            story_id=story_id,
            from_node_id=source.node_id,
            to_node_id=target.node_id,
            label=payload.label,
            conditions=EdgeConditions.from_payload(payload.conditions.model_dump())
            if payload.conditions
            else None,
            effects=EdgeEffects.from_payload(payload.effects.model_dump())
            if payload.effects
            else None,
            order=payload.order,
        )
        return _edge_response(edge)

    @app.delete("/api/v1/edges/{edge_id}", status_code=204, tags=["stories"])
    def delete_edge(edge_id: str, user: StoredUser = Depends(current_user)) -> Response:
        edge = graph_store.get_edge(edge_id=edge_id)
        if edge is None:
            raise NotFoundError("Edge not found")
        editable_story(edge.story_id, user)
        graph_store.delete_edge(edge_id=edge_id)
        return Response(status_code=204)

    @app.patch("/api/v1/nodes/{node_id}", response_model=NodeResponse, tags=["stories"])
    def update_node(
        node_id: str,
        payload: NodeUpdateRequest,
        user: StoredUser = Depends(current_user),
    ) -> NodeResponse:
        editable_node(node_id, user)
        node = graph_store.update_node(
            node_id=node_id,
            content=payload.content,
            title=payload.title,
            metadata=_node_metadata(payload.metadata),
        )
        if node is None:
            raise NotFoundError("Node not found")
        return _node_response(node)

    @app.get(
        "/api/v1/nodes/{node_id}/choices",
        response_model=list[EdgeResponse],
        tags=["stories"],
    )
    def list_node_choices(
        node_id: str, user: StoredUser = Depends(current_user)
    ) -> list[EdgeResponse]:
        node = graph_store.get_node(node_id=node_id)
        if node is None:
            return []
        readable_story_or_404(node.story_id, user)
        return [_edge_response(edge) for edge in engine.list_choices(node_id=node_id)]

    @app.post(
        "/api/v1/stories/{story_id}/drafts",
        response_model=DraftResponse,
        tags=["stories"],
        status_code=201,
    )
    def create_draft(
        story_id: str,
        payload: DraftCreateRequest,
        user: StoredUser = Depends(current_user),
    ) -> DraftResponse:
        readable_story_or_404(story_id, user)
        base = node_in_story(payload.base_node_id, story_id)
        temp_ids = {node.temp_id for node in payload.proposed_nodes}
        for proposed in payload.proposed_edges:
            for ref in (proposed.from_ref, proposed.to_ref):
                if ref in temp_ids:
                    continue
                node_in_story(ref, story_id)
        draft = graph_store.create_draft(
            story_id=story_id,
            base_node_id=base.node_id,
            proposed_by=user.user_id,
            proposed_nodes=[
                ProposedNode(
                    temp_id=node.temp_id,
                    role=node.role,
                    content=node.content,
                    order=node.order,
                    metadata=dict(node.metadata),
                )
                for node in payload.proposed_nodes
            ],
            proposed_edges=[
                ProposedEdge(
                    from_ref=edge.from_ref,
                    to_ref=edge.to_ref,
                    label=edge.label,
                    order=edge.order,
                    conditions=edge.conditions.model_dump() if edge.conditions else None,
                    effects=edge.effects.model_dump() if edge.effects else None,
                )
                for edge in payload.proposed_edges
            ],
        )
        logger.info("draft.create draft_id=%s story_id=%s", draft.draft_id, story_id)
        return _draft_response(draft)

    @app.get(
        "/api/v1/stories/{story_id}/drafts",
        response_model=list[DraftResponse],
        tags=["stories"],
    )
    def list_drafts(story_id: str, user: StoredUser = Depends(current_user)) -> list[DraftResponse]:
        editable_story(story_id, user)
        return [_draft_response(draft) for draft in graph_store.list_drafts(story_id=story_id)]

    # Sessions

    @app.post(
        "/api/v1/sessions", response_model=SessionResponse, tags=["sessions"], status_code=201
    )
    def start_session(
        payload: SessionCreateRequest,
        user: StoredUser = Depends(current_user),
    ) -> SessionResponse:
        readable_story_or_404(payload.story_id, user)
        session = tracker.start_session(story_id=payload.story_id, user_id=user.user_id)
        return _session_response(session)

    @app.get("/api/v1/sessions", response_model=list[SessionSummaryResponse], tags=["sessions"])
    def list_my_sessions(user: StoredUser = Depends(current_user)) -> list[SessionSummaryResponse]:
        return [
            SessionSummaryResponse(
                **_session_response(summary.session).model_dump(),
                story_title=summary.story_title,
            )
            for summary in tracker.list_sessions(user_id=user.user_id)
        ]

    @app.get(
        "/api/v1/sessions/{session_id}",
        response_model=SessionStateResponse,
        tags=["sessions"],
    )
    def get_session_state(
        session_id: str, user: StoredUser = Depends(current_user)
    ) -> SessionStateResponse:
        state = tracker.session_state(session_id=session_id, user_id=user.user_id)
        return SessionStateResponse(
            session=_session_response(state.session),
            messages=[
                _message_response(entry.message, author=entry.author) for entry in state.messages
            ],
            choices=[_choice_response(choice) for choice in state.choices],
        )

    @app.post(
        "/api/v1/sessions/{session_id}/choose",
        response_model=ChooseEdgeResponse,
        tags=["sessions"],
    )
    def choose_edge(
        session_id: str,
        payload: ChooseEdgeRequest,
        user: StoredUser = Depends(current_user),
    ) -> ChooseEdgeResponse:
        step = engine.choose_edge(
            session_id=session_id, edge_id=payload.edge_id, user_id=user.user_id
        )
        return ChooseEdgeResponse(
            session_id=step.session_id,
            edge_id=step.edge_id,
            from_node_id=step.from_node_id,
            to_node_id=step.to_node_id,
            message=_message_response(step.message, author=tracker.message_author(step.message))
            if step.message is not None
            else None,
        )

    @app.post(
        "/api/v1/sessions/{session_id}/advance",
        response_model=AdvanceResponse,
        tags=["sessions"],
    )
    def advance_session(
        session_id: str, user: StoredUser = Depends(current_user)
    ) -> AdvanceResponse:
        edge_id = engine.advance(session_id=session_id, user_id=user.user_id)
        return AdvanceResponse(session_id=session_id, edge_id=edge_id)

    @app.post(
        "/api/v1/sessions/{session_id}/messages",
        response_model=MessageResponse,
        tags=["sessions"],
        status_code=201,
    )
    def send_message(
        session_id: str,
        payload: SendMessageRequest,
        user: StoredUser = Depends(current_user),
    ) -> MessageResponse:
        message = engine.send_message(
            session_id=session_id, user_id=user.user_id, content=payload.content
        )
        return _message_response(message, author=user.display_name)

    @app.post(
        "/api/v1/sessions/{session_id}/participants",
        response_model=SessionResponse,
        tags=["sessions"],
    )
    def add_participant(
        session_id: str,
        payload: ParticipantAddRequest,
        user: StoredUser = Depends(current_user),
    ) -> SessionResponse:
        if user_store.get_user_by_id(user_id=payload.user_id) is None:
            raise NotFoundError("User not found")
        session = tracker.add_participant(
            session_id=session_id, user_id=user.user_id, new_participant_id=payload.user_id
        )
        return _session_response(session)

    # Assistant

    @app.post(
        "/api/v1/assistant/suggest",
        response_model=AssistantSuggestResponse,
        tags=["assistant"],
    )
    def suggest_improvements(
        payload: AssistantSuggestRequest,
        user: StoredUser = Depends(current_user),
    ) -> AssistantSuggestResponse:
        result = gateway.suggest_improvements(payload.content, aspects=payload.aspects)
        return AssistantSuggestResponse(
            suggestions=result.suggestions,
            example_edits=ExampleEditsBlock(
                scene_title=result.example_edits.scene_title,
                revised_text=result.example_edits.revised_text,
                analysis=result.example_edits.analysis,
            ),
            aspects=list(result.aspects),
        )

    @app.post(
        "/api/v1/assistant/rewrite",
        response_model=AssistantTextResponse,
        tags=["assistant"],
    )
    def rewrite_text(
        payload: AssistantRewriteRequest,
        user: StoredUser = Depends(current_user),
    ) -> AssistantTextResponse:
        content = gateway.rewrite(payload.content, tone=payload.tone, feedback=payload.feedback)
        return AssistantTextResponse(content=content)

    @app.post(
        "/api/v1/assistant/enhance",
        response_model=AssistantTextResponse,
        tags=["assistant"],
    )
    def enhance_text(
        payload: AssistantEnhanceRequest,
        user: StoredUser = Depends(current_user),
    ) -> AssistantTextResponse:
        content = gateway.enhance(payload.content, target_length=payload.target_length)
        return AssistantTextResponse(content=content)

    @app.post(
        "/api/v1/assistant/choices",
        response_model=AssistantChoicesResponse,
        tags=["assistant"],
    )
    def generate_choices(
        payload: AssistantChoicesRequest,
        user: StoredUser = Depends(current_user),
    ) -> AssistantChoicesResponse:
        choices = gateway.generate_choices(payload.content, count=payload.count)
        return AssistantChoicesResponse(
            choices=[
                ChoiceSuggestionBlock(
                    label=choice.label,
                    title=choice.title or None,
                    description=choice.description,
                )
                for choice in choices
            ]
        )

    # Saved suggestions

    @app.post(
        "/api/v1/suggestions",
        response_model=SavedSuggestionResponse,
        tags=["suggestions"],
        status_code=201,
    )
    def save_suggestion(
        payload: SavedSuggestionCreateRequest,
        user: StoredUser = Depends(current_user),
    ) -> SavedSuggestionResponse:
        if payload.story_id:
            readable_story_or_404(payload.story_id, user)
        if payload.node_id and graph_store.get_node(node_id=payload.node_id) is None:
            raise NotFoundError("Node not found")
        saved = suggestion_store.save_suggestion(
            user_id=user.user_id,
            suggestion_type=payload.type,
            original_content=payload.original_content,
            story_id=payload.story_id,
            node_id=payload.node_id,
            suggestions=payload.suggestions,
            example_edits=payload.example_edits.model_dump() if payload.example_edits else None,
            choices=[choice.model_dump() for choice in payload.choices]
            if payload.choices is not None
            else None,
            content=payload.content,
            note=payload.note,
        )
        return _suggestion_response(saved)

    @app.get(
        "/api/v1/suggestions",
        response_model=list[SavedSuggestionResponse],
        tags=["suggestions"],
    )
    def list_suggestions(
        story_id: str | None = Query(default=None),
        node_id: str | None = Query(default=None),
        suggestion_type: str | None = Query(default=None, alias="type"),
        user: StoredUser = Depends(current_user),
    ) -> list[SavedSuggestionResponse]:
        return [
            _suggestion_response(suggestion)
            for suggestion in suggestion_store.list_suggestions(
                user_id=user.user_id,
                story_id=story_id,
                node_id=node_id,
                suggestion_type=suggestion_type,
            )
        ]

    @app.get(
        "/api/v1/suggestions/{suggestion_id}",
        response_model=SavedSuggestionResponse,
        tags=["suggestions"],
    )
    def get_suggestion(
        suggestion_id: str, user: StoredUser = Depends(current_user)
    ) -> SavedSuggestionResponse:
        return _suggestion_response(owned_suggestion(suggestion_id, user))

    @app.patch(
        "/api/v1/suggestions/{suggestion_id}",
        response_model=SavedSuggestionResponse,
        tags=["suggestions"],
    )
    def update_suggestion_note(
        suggestion_id: str,
        payload: SavedSuggestionNoteRequest,
        user: StoredUser = Depends(current_user),
    ) -> SavedSuggestionResponse:
        owned_suggestion(suggestion_id, user)
        updated = suggestion_store.update_note(suggestion_id=suggestion_id, note=payload.note)
        if updated is None:
            raise NotFoundError("Suggestion not found")
        return _suggestion_response(updated)

    @app.delete("/api/v1/suggestions/{suggestion_id}", status_code=204, tags=["suggestions"])
    def delete_suggestion(suggestion_id: str, user: StoredUser = Depends(current_user)) -> Response:
        owned_suggestion(suggestion_id, user)
        suggestion_store.delete_suggestion(suggestion_id=suggestion_id)
        return Response(status_code=204)

    # Images

    @app.post(
        "/api/v1/uploads", response_model=UploadSlotResponse, tags=["images"], status_code=201
    )
    def create_upload_url(
        request: Request, user: StoredUser = Depends(current_user)
    ) -> UploadSlotResponse:
        token = file_store.create_upload_slot(user_id=user.user_id)
        base = public_base_url or str(request.base_url).rstrip("/")
        return UploadSlotResponse(
            upload_url=f"{base}/api/v1/uploads/{token}", upload_token=token
        )

    @app.post(
        "/api/v1/uploads/{upload_token}",
        response_model=StoredFileResponse,
        tags=["images"],
        status_code=201,
    )
    async def upload_file(upload_token: str, request: Request) -> StoredFileResponse:
        data = await request.body()
        meta = file_store.consume_upload_slot(
            upload_token=upload_token,
            content_type=request.headers.get("content-type"),
            data=data,
        )
        if meta is None:
            raise NotFoundError("Upload URL is invalid or expired")
        logger.info("file.upload storage_id=%s size=%s", meta.storage_id, meta.size)
        return _file_response(meta)

    @app.post(
        "/api/v1/nodes/{node_id}/image",
        response_model=NodeImageResponse,
        tags=["images"],
    )
    def attach_node_image(
        node_id: str,
        payload: NodeImageAttachRequest,
        request: Request,
        user: StoredUser = Depends(current_user),
    ) -> NodeImageResponse:
        node = editable_node(node_id, user)
        meta = file_store.get_metadata(storage_id=payload.storage_id)
        if meta is None:
            raise NotFoundError("File not found")
        if meta.uploaded_by != user.user_id:
            raise AuthorizationError("Only the uploader can attach this file.")
        linked = graph_store.list_nodes_with_image(storage_id=meta.storage_id)
        if any(linked_id != node_id for linked_id in linked):
            raise IntegrityError("File is already attached to another node")
        try:
            validate_image(size=meta.size, content_type=meta.content_type)
        except ImageValidationError as exc:
            file_store.delete_file(storage_id=meta.storage_id)
            logger.info(
                "image.rejected node_id=%s storage_id=%s reason=%s",
                node_id,
                meta.storage_id,
                exc,
            )
            raise
        if node.image_storage_id and node.image_storage_id != meta.storage_id:
            file_store.delete_file(storage_id=node.image_storage_id)
        graph_store.set_node_image(node_id=node_id, storage_id=meta.storage_id)
        return NodeImageResponse(
            node_id=node_id,
            url=file_url(request, meta.storage_id),
            metadata=_file_response(meta),
        )

    @app.delete("/api/v1/nodes/{node_id}/image", status_code=204, tags=["images"])
    def remove_node_image(node_id: str, user: StoredUser = Depends(current_user)) -> Response:
        node = editable_node(node_id, user)
        if node.image_storage_id:
            file_store.delete_file(storage_id=node.image_storage_id)
        graph_store.set_node_image(node_id=node_id, storage_id=None)
        return Response(status_code=204)

    @app.get(
        "/api/v1/nodes/{node_id}/image",
        response_model=NodeImageResponse | None,
        tags=["images"],
    )
    def get_node_image(
        node_id: str, request: Request, user: StoredUser = Depends(current_user)
    ) -> NodeImageResponse | None:
        node = graph_store.get_node(node_id=node_id)
        if node is None:
            return None
        readable_story_or_404(node.story_id, user)
        if not node.image_storage_id:
            return None
        meta = file_store.get_metadata(storage_id=node.image_storage_id)
        if meta is None:
            return None
        return NodeImageResponse(
            node_id=node_id,
            url=file_url(request, meta.storage_id),
            metadata=_file_response(meta),
        )

    @app.get("/api/v1/files/{storage_id}", tags=["images"])
    def read_file(storage_id: str) -> Response:
        stored = file_store.read_file(storage_id=storage_id)
        if stored is None:
            raise NotFoundError("File not found")
        meta, data = stored
        return Response(
            content=data,
            media_type=meta.content_type or "application/octet-stream",
            headers={"ETag": f'"{meta.sha256}"'},
        )

    return app


app = create_app()
