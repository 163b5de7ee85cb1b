"""Public API surface for HTTP serving and Python-first interfaces."""

from story_forge.api.app import create_app
from story_forge.api.autoplay import AutoplayResult, autoplay_session
from story_forge.api.python_interface import AuthSession, StoryForgeClient

__all__ = [
    "AuthSession",
    "AutoplayResult",
    "StoryForgeClient",
    "autoplay_session",
    "create_app",
]
