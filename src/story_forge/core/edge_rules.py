"""Evaluation of edge gating conditions and session effects."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from story_forge.domain.models import EdgeConditions, EdgeEffects


@dataclass(frozen=True)
class RuleCheck:
    """Outcome of checking one edge against session state."""

    available: bool
    reasons: tuple[str, ...] = ()


def _flag_is_set(flags: dict[str, Any], flag: str) -> bool:
    value = flags.get(flag)
    return value is not None and value is not False


def check_conditions(
    conditions: EdgeConditions | None, *, flags: dict[str, Any], score: float
) -> RuleCheck:
    """Return whether a session with these flags/score may take the edge."""
    if conditions is None:
        return RuleCheck(available=True)
    reasons: list[str] = []
    for flag in conditions.requires_flags:
        if not _flag_is_set(flags, flag):
            reasons.append(f"requires flag `{flag}`")
    for flag in conditions.forbids_flags:
        if _flag_is_set(flags, flag):
            reasons.append(f"blocked by flag `{flag}`")
    if conditions.min_score is not None and score < conditions.min_score:
        reasons.append(f"requires score >= {conditions.min_score:g}")
    return RuleCheck(available=not reasons, reasons=tuple(reasons))


def apply_effects(
    effects: EdgeEffects | None, *, flags: dict[str, Any], score: float
) -> tuple[dict[str, Any], float]:
    """Return new flags/score after taking an edge; inputs are not mutated."""
    updated = dict(flags)
    if effects is None:
        return updated, score
    for flag in effects.clear_flags:
        updated.pop(flag, None)
    updated.update(effects.set_flags)
    return updated, score + effects.score_delta
