"""Client-side auto-play loop for a playthrough session.

One ``advance`` request is in flight at a time. The loop waits
``initial_delay_seconds`` before the first step and ``step_delay_seconds``
between steps, and stops when the server reports no further choices, when
``max_steps`` is reached, or when ``stop_event`` is set. Waiting happens on
the event, so setting it interrupts a pending delay.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Literal, Protocol

from story_forge.api.python_interface import AuthSession

DEFAULT_INITIAL_DELAY_SECONDS = 0.6
DEFAULT_STEP_DELAY_SECONDS = 1.2
DEFAULT_MAX_STEPS = 200

StopReason = Literal["end_of_story", "max_steps", "stopped"]

logger = logging.getLogger(__name__)


class AdvancingClient(Protocol):
    def advance(self, *, session: AuthSession, session_id: str) -> str | None: ...


@dataclass(frozen=True)
class AutoplayResult:
    """Edges taken in order and why the loop ended."""

    session_id: str
    edge_ids: tuple[str, ...]
    stop_reason: StopReason


def autoplay_session(
    client: AdvancingClient,
    *,
    session: AuthSession,
    session_id: str,
    initial_delay_seconds: float = DEFAULT_INITIAL_DELAY_SECONDS,
    step_delay_seconds: float = DEFAULT_STEP_DELAY_SECONDS,
    max_steps: int = DEFAULT_MAX_STEPS,
    stop_event: threading.Event | None = None,
) -> AutoplayResult:
    """Advance a session repeatedly until it ends or the caller stops it."""
    if max_steps < 1:
        raise ValueError("max_steps must be at least 1.")
    stop = stop_event or threading.Event()
    taken: list[str] = []

    def finish(reason: StopReason) -> AutoplayResult:
        logger.info(
            "autoplay.stop session_id=%s steps=%s reason=%s", session_id, len(taken), reason
        )
        return AutoplayResult(session_id=session_id, edge_ids=tuple(taken), stop_reason=reason)

    if stop.wait(initial_delay_seconds):
        return finish("stopped")
    while True:
        edge_id = client.advance(session=session, session_id=session_id)
        if edge_id is None:
            return finish("end_of_story")
        taken.append(edge_id)
        if len(taken) >= max_steps:
            return finish("max_steps")
        if stop.wait(step_delay_seconds):
            return finish("stopped")
