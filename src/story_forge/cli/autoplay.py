"""CLI for auto-playing a session against a running story_forge API."""

from __future__ import annotations

import argparse
import os

import httpx

from story_forge.adapters.observability import configure_runtime_logging
from story_forge.api.autoplay import (
    DEFAULT_INITIAL_DELAY_SECONDS,
    DEFAULT_MAX_STEPS,
    DEFAULT_STEP_DELAY_SECONDS,
    autoplay_session,
)
from story_forge.api.python_interface import StoryForgeClient


def build_arg_parser() -> argparse.ArgumentParser:
    """Define CLI flags for one auto-play run."""
    parser = argparse.ArgumentParser(description="Auto-play a story session until it ends.")
    parser.add_argument("--api-base-url", default="http://127.0.0.1:8000")
    parser.add_argument("--email", required=True)
    parser.add_argument(
        "--password",
        default="",
        help="Account password (default: STORY_FORGE_PASSWORD env var).",
    )
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--session-id", help="Continue an existing session.")
    target.add_argument("--story-id", help="Start a new session for this story.")
    parser.add_argument("--initial-delay", type=float, default=DEFAULT_INITIAL_DELAY_SECONDS)
    parser.add_argument("--step-delay", type=float, default=DEFAULT_STEP_DELAY_SECONDS)
    parser.add_argument("--max-steps", type=int, default=DEFAULT_MAX_STEPS)
    return parser


def main(argv: list[str] | None = None) -> None:
    """Log in, resolve the session, and step it until the story runs out of choices."""
    configure_runtime_logging()
    parser = build_arg_parser()
    parsed = parser.parse_args(argv)
    password = str(parsed.password) or os.environ.get("STORY_FORGE_PASSWORD", "")
    if not password:
        raise SystemExit("Password required: pass --password or set STORY_FORGE_PASSWORD.")

    client = StoryForgeClient(api_base_url=str(parsed.api_base_url))
    try:
        auth = client.login(email=str(parsed.email), password=password)
        if parsed.story_id:
            session_id = client.start_session(
                session=auth, story_id=str(parsed.story_id)
            ).session_id
        else:
            session_id = str(parsed.session_id)
        result = autoplay_session(
            client,
            session=auth,
            session_id=session_id,
            initial_delay_seconds=max(0.0, float(parsed.initial_delay)),
            step_delay_seconds=max(0.0, float(parsed.step_delay)),
            max_steps=max(1, int(parsed.max_steps)),
        )
    except httpx.HTTPStatusError as exc:
        raise SystemExit(
            f"API request failed ({exc.response.status_code}): {exc.response.text}"
        ) from exc

    print(f"Session id: {result.session_id}")
    print(f"Steps taken: {len(result.edge_ids)}")
    print(f"Stop reason: {result.stop_reason}")
    for edge_id in result.edge_ids:
        print(f"  {edge_id}")


if __name__ == "__main__":
    main()
