"""Error taxonomy shared by the traversal, assistant, and upload flows."""

from __future__ import annotations


class StoryForgeError(RuntimeError):
    """Base error for one failed request; never fatal to the process."""


class AuthorizationError(StoryForgeError):
    """Caller identity is missing or lacks access to the record."""


class NotFoundError(StoryForgeError):
    """Referenced story, node, edge, session, or file does not exist."""


class IntegrityError(StoryForgeError):
    """Records exist but violate a cross-record ownership invariant."""


class ChoiceLockedError(StoryForgeError):
    """Edge conditions are not met by the session state."""

    def __init__(self, message: str, *, edge_id: str, reasons: list[str]) -> None:
        super().__init__(message)
        self.edge_id = edge_id
        self.reasons = reasons


class ImageValidationError(StoryForgeError):
    """Uploaded file is too large or is not an image."""


class AssistantConfigError(StoryForgeError):
    """Provider credential is not configured."""


class AssistantProviderError(StoryForgeError):
    """Provider returned a non-success status or an unusable payload."""

    def __init__(self, message: str, *, status_code: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body
