from __future__ import annotations

import pytest

from story_forge.core.errors import ImageValidationError
from story_forge.core.images import MAX_IMAGE_BYTES, validate_image


def test_accepts_images_up_to_limit() -> None:
    validate_image(size=MAX_IMAGE_BYTES, content_type="image/png")
    validate_image(size=1, content_type="IMAGE/JPEG")


def test_rejects_oversized_and_non_image_files() -> None:
    with pytest.raises(ImageValidationError, match="smaller than 10MB"):
        validate_image(size=MAX_IMAGE_BYTES + 1, content_type="image/png")
    with pytest.raises(ImageValidationError, match="must be an image"):
        validate_image(size=10, content_type="application/pdf")
    with pytest.raises(ImageValidationError, match="must be an image"):
        validate_image(size=10, content_type=None)
