"""Node image acceptance rules."""

from __future__ import annotations

from story_forge.core.errors import ImageValidationError

MAX_IMAGE_BYTES = 10 * 1024 * 1024
IMAGE_CONTENT_PREFIX = "image/"


def validate_image(*, size: int, content_type: str | None) -> None:
    """Raise ImageValidationError unless the file is an image of at most 10 MB."""
    if size > MAX_IMAGE_BYTES:
        raise ImageValidationError("Image must be smaller than 10MB")
    if not (content_type or "").lower().startswith(IMAGE_CONTENT_PREFIX):
        raise ImageValidationError("File must be an image")
