"""
agora.engine.conditions — Badge / Task / Tag Condition Evaluator
=================================================================

Stored conditions (``{"type": "post_count", "target": 10, "period": "week"}``)
are parsed **once** into a tagged union of frozen dataclasses.  Evaluation is
pure: the service layer gathers the aggregate counts a condition needs into a
:class:`ConditionContext`, then the handler registry decides eligibility.

This module is pure calculation — no database I/O.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Union

from agora.engine.clock import PERIODS

logger = logging.getLogger(__name__)

COUNT_KINDS = ("post_count", "reply_count", "like_count")


class ConditionError(ValueError):
    """A stored or submitted condition payload is malformed."""


# ---------------------------------------------------------------------------
# Condition variants
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class CountCondition:
    kind: str
    target: int
    period: str = "all_time"


@dataclass(frozen=True, slots=True)
class LevelCondition:
    target: int
    kind: str = "level"


@dataclass(frozen=True, slots=True)
class ConsecutiveCheckinCondition:
    target: int
    kind: str = "consecutive_checkin"


@dataclass(frozen=True, slots=True)
class CourseCompleteCondition:
    target: int
    kind: str = "course_complete"


@dataclass(frozen=True, slots=True)
class BadgeCountCondition:
    target: int
    kind: str = "badge_count"


@dataclass(frozen=True, slots=True)
class ManualCondition:
    """Granted by an admin only; never auto-awarded."""

    kind: str = "manual"


Condition = Union[
    CountCondition,
    LevelCondition,
    ConsecutiveCheckinCondition,
    CourseCompleteCondition,
    BadgeCountCondition,
    ManualCondition,
]

_TARGETED: dict[str, type] = {
    "level": LevelCondition,
    "consecutive_checkin": ConsecutiveCheckinCondition,
    "course_complete": CourseCompleteCondition,
    "badge_count": BadgeCountCondition,
}

CONDITION_TYPES = COUNT_KINDS + tuple(_TARGETED) + ("manual",)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------
def _target(raw: dict[str, Any]) -> int:
    value = raw.get("target")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConditionError(f"Condition {raw.get('type')!r} needs a numeric target")
    if value < 0 or int(value) != value:
        raise ConditionError(f"Condition target must be a non-negative integer, got {value!r}")
    return int(value)


def parse_condition(raw: dict[str, Any] | str | None) -> Condition:
    """Validate a stored condition payload and return its variant.

    ``None`` (or an empty mapping) means the badge/tag is manual.

    Raises
    ------
    ConditionError
        Unknown type, missing/negative target, or an unknown period.
    """
    if raw is None or raw == {}:
        return ManualCondition()
    if isinstance(raw, str):
        # Bare type name, e.g. "manual" on a special tag.
        raw = {"type": raw}
    if not isinstance(raw, dict):
        raise ConditionError(f"Condition must be an object, got {type(raw).__name__}")

    kind = raw.get("type")
    if kind == "manual":
        return ManualCondition()
    if kind in COUNT_KINDS:
        period = raw.get("period") or "all_time"
        if period not in PERIODS:
            raise ConditionError(f"Unknown period {period!r} (expected one of {PERIODS})")
        return CountCondition(kind=kind, target=_target(raw), period=period)
    if kind in _TARGETED:
        return _TARGETED[kind](target=_target(raw))
    raise ConditionError(f"Unknown condition type {kind!r}")


def condition_to_dict(cond: Condition) -> dict[str, Any]:
    if isinstance(cond, ManualCondition):
        return {"type": "manual"}
    out: dict[str, Any] = {"type": cond.kind, "target": cond.target}
    if isinstance(cond, CountCondition) and cond.period != "all_time":
        out["period"] = cond.period
    return out


_PERIOD_LABEL = {"all_time": "", "day": " today", "week": " this week", "month": " this month"}


def describe_condition(cond: Condition) -> str:
    """Human-readable requirement shown next to a badge or tag."""
    if isinstance(cond, CountCondition):
        noun = {"post_count": "topics", "reply_count": "replies", "like_count": "likes received"}[cond.kind]
        return f"{cond.target} {noun}{_PERIOD_LABEL[cond.period]}"
    if isinstance(cond, LevelCondition):
        return f"Reach level {cond.target}"
    if isinstance(cond, ConsecutiveCheckinCondition):
        return f"Check in {cond.target} days in a row"
    if isinstance(cond, CourseCompleteCondition):
        return f"Complete {cond.target} courses"
    if isinstance(cond, BadgeCountCondition):
        return f"Earn {cond.target} badges"
    return "Granted by staff"


# ---------------------------------------------------------------------------
# Streak helper
# ---------------------------------------------------------------------------
def consecutive_run(dates: Iterable[date], today: date, *, allow_yesterday: bool = False) -> int:
    """Number of calendar-consecutive days in *dates* ending on *today*.

    *dates* may be unordered and contain duplicates.  Day ``i`` of the run
    must be ``today - i``, so a run that ended earlier counts as 0.  With
    *allow_yesterday* a run ending yesterday is still live (today's
    check-in may not have happened yet).
    """
    days = set(dates)
    anchor = today
    if anchor not in days and allow_yesterday:
        anchor = today - timedelta(days=1)
    run = 0
    while anchor - timedelta(days=run) in days:
        run += 1
    return run


# ---------------------------------------------------------------------------
# Evaluation context + handler registry
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class ConditionContext:
    """Aggregates for one user at evaluation time.

    ``counts`` is keyed by ``(kind, period)`` for count conditions, e.g.
    ``{("post_count", "all_time"): 12, ("like_count", "week"): 3}``.
    """

    level: int = 1
    consecutive_checkins: int = 0
    courses_completed: int = 0
    badge_count: int = 0
    counts: dict[tuple[str, str], int] = field(default_factory=dict)


def _check_count(cond: CountCondition, ctx: ConditionContext) -> bool:
    return ctx.counts.get((cond.kind, cond.period), 0) >= cond.target


def _check_level(cond: LevelCondition, ctx: ConditionContext) -> bool:
    return ctx.level >= cond.target


def _check_consecutive(cond: ConsecutiveCheckinCondition, ctx: ConditionContext) -> bool:
    return ctx.consecutive_checkins >= cond.target


def _check_courses(cond: CourseCompleteCondition, ctx: ConditionContext) -> bool:
    return ctx.courses_completed >= cond.target


def _check_badge_count(cond: BadgeCountCondition, ctx: ConditionContext) -> bool:
    return ctx.badge_count >= cond.target


CONDITION_HANDLERS: dict[type, Callable[[Any, ConditionContext], bool]] = {
    CountCondition: _check_count,
    LevelCondition: _check_level,
    ConsecutiveCheckinCondition: _check_consecutive,
    CourseCompleteCondition: _check_courses,
    BadgeCountCondition: _check_badge_count,
    # ManualCondition intentionally omitted — never auto-granted
}


def is_satisfied(cond: Condition, ctx: ConditionContext) -> bool:
    handler = CONDITION_HANDLERS.get(type(cond))
    if handler is None:
        return False
    return handler(cond, ctx)


def required_counts(conditions: Iterable[Condition]) -> set[tuple[str, str]]:
    """The ``(kind, period)`` aggregates a batch of conditions needs."""
    return {
        (c.kind, c.period) for c in conditions if isinstance(c, CountCondition)
    }
