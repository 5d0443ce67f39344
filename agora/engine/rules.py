"""
agora.engine.rules — Level Table & Point Rule Table
====================================================

The two static rule tables of the economy, frozen into a :class:`RuleBook`
that is built once at startup and handed to every service call.

Pure data + lookups.  No DB I/O.

Level lookup walks the table from the highest threshold down and returns
the first level whose ``required_exp`` is reached.  The default table has
gaps (16–19, 21–24, ...); experience inside a gap resolves to the nearest
lower defined level.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, tzinfo
from types import MappingProxyType
from typing import TYPE_CHECKING, Any
from zoneinfo import ZoneInfo

if TYPE_CHECKING:
    from agora.config import AgoraConfig

logger = logging.getLogger(__name__)

__all__ = [
    "DEFAULT_LEVELS",
    "DEFAULT_POINT_RULES",
    "LevelConfig",
    "PointRule",
    "RuleBook",
    "build_rulebook",
    "resolve_timezone",
]


# ---------------------------------------------------------------------------
# Table row types
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class LevelConfig:
    """One row of the level table."""

    level: int
    required_exp: int
    title: str
    badge: str = "\U0001f331"  # 🌱
    privileges: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class PointRule:
    """Reward attached to one action key."""

    type: str
    points: int
    experience: int
    description: str
    daily_limit: int | None = None


# ---------------------------------------------------------------------------
# Default tables
# ---------------------------------------------------------------------------
_BASIC = ("post", "reply")
_AVATAR = _BASIC + ("upload_avatar",)
_COURSE = _AVATAR + ("create_course",)
_MODERATE = _COURSE + ("moderate",)
_MANAGE = _MODERATE + ("manage",)

DEFAULT_LEVELS: tuple[LevelConfig, ...] = (
    LevelConfig(1, 0, "Newcomer", "\U0001f331", _BASIC),
    LevelConfig(2, 100, "Apprentice", "\U0001f33f", _BASIC),
    LevelConfig(3, 300, "Regular", "\U0001f343", _AVATAR),
    LevelConfig(4, 600, "Known Face", "\U0001f33e", _AVATAR),
    LevelConfig(5, 1000, "Rising Star", "\U0001f33a", _COURSE),
    LevelConfig(6, 1500, "Voice", "\U0001f338", _COURSE),
    LevelConfig(7, 2100, "Local Name", "\U0001f33c", _COURSE),
    LevelConfig(8, 2800, "Respected", "\U0001f33b", _COURSE),
    LevelConfig(9, 3600, "Elder", "\U0001f339", _COURSE),
    LevelConfig(10, 4500, "Master", "\U0001f451", _MODERATE),
    LevelConfig(11, 5500, "Legend", "\U0001f48e", _MODERATE),
    LevelConfig(12, 6600, "Virtuoso", "⭐", _MODERATE),
    LevelConfig(13, 7800, "Champion", "\U0001f3c6", _MODERATE),
    LevelConfig(14, 9100, "Paragon", "\U0001f396️", _MODERATE),
    LevelConfig(15, 10500, "Transcendent", "\U0001f525", _MANAGE),
    LevelConfig(20, 20000, "Mentor", "\U0001f4ab", _MANAGE),
    LevelConfig(25, 35000, "Grand Mentor", "\U0001f31f", _MANAGE),
    LevelConfig(30, 55000, "Life Mentor", "✨", _MANAGE),
    LevelConfig(40, 100000, "Supreme Mentor", "\U0001f3ad", _MANAGE),
    LevelConfig(50, 200000, "Living Legend", "\U0001f468‍\U0001f3eb", _MANAGE),
)

DEFAULT_POINT_RULES: dict[str, PointRule] = {
    # Basic activity
    "login": PointRule("login", 5, 2, "Daily check-in", daily_limit=1),
    "post": PointRule("post", 10, 15, "Create a topic"),
    "reply": PointRule("reply", 5, 8, "Post a reply"),
    # Interaction
    "like_received": PointRule("like_received", 3, 5, "Receive a like"),
    "favorite_received": PointRule("favorite_received", 5, 8, "Receive a favorite"),
    "give_like": PointRule("give_like", 1, 2, "Like someone else's topic", daily_limit=20),
    "give_favorite": PointRule("give_favorite", 2, 3, "Favorite someone else's topic", daily_limit=10),
    # Courses
    "create_course": PointRule("create_course", 50, 100, "Create a course"),
    "complete_lesson": PointRule("complete_lesson", 5, 10, "Complete a lesson"),
    "complete_course": PointRule("complete_course", 30, 50, "Complete a course"),
    "course_comment": PointRule("course_comment", 3, 5, "Comment on a course"),
    # Specials
    "first_post": PointRule("first_post", 20, 30, "First topic bonus"),
    "consecutive_login_7": PointRule("consecutive_login_7", 50, 30, "7-day check-in streak"),
    "consecutive_login_30": PointRule("consecutive_login_30", 200, 100, "30-day check-in streak"),
}

# Check-in streak bonus tiers: (min_days, points, experience).  Cumulative.
CHECKIN_BONUS_TIERS: tuple[tuple[int, int, int], ...] = (
    (7, 20, 15),
    (30, 50, 30),
)


# ---------------------------------------------------------------------------
# Timezone helper
# ---------------------------------------------------------------------------
def resolve_timezone(name: str | None) -> tzinfo:
    """Return a tzinfo for *name*; ``UTC`` / blank skip the zoneinfo lookup."""
    if not name or name.upper() == "UTC":
        return UTC
    return ZoneInfo(name)


# ---------------------------------------------------------------------------
# RuleBook — immutable, injected into services
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class RuleBook:
    """Frozen level and point-rule tables plus calendar settings.

    Usage::

        rules = RuleBook()                    # defaults
        rules.level_for(450).level            # 3
        rules.progress(450, 3)                # 50.0
        rules.rule("login").daily_limit       # 1
    """

    levels: tuple[LevelConfig, ...] = DEFAULT_LEVELS
    point_rules: Mapping[str, PointRule] = field(
        default_factory=lambda: MappingProxyType(dict(DEFAULT_POINT_RULES))
    )
    level_up_bonus_per_level: int = 10
    tz: tzinfo = UTC

    def __post_init__(self) -> None:
        ordered = tuple(sorted(self.levels, key=lambda c: c.required_exp))
        if not ordered:
            raise ValueError("Level table must not be empty")
        seen: set[int] = set()
        prev_level = 0
        for cfg in ordered:
            if cfg.level in seen or cfg.level <= prev_level:
                raise ValueError(
                    f"Level table must be strictly ascending in both level and "
                    f"required_exp (offending level {cfg.level})"
                )
            seen.add(cfg.level)
            prev_level = cfg.level
        object.__setattr__(self, "levels", ordered)
        if not isinstance(self.point_rules, MappingProxyType):
            object.__setattr__(
                self, "point_rules", MappingProxyType(dict(self.point_rules))
            )

    # -- Levels -------------------------------------------------------------
    def level_for(self, experience: int) -> LevelConfig:
        """Highest level whose threshold is ``<= experience`` (default level 1)."""
        for cfg in reversed(self.levels):
            if experience >= cfg.required_exp:
                return cfg
        return self.levels[0]

    def get_level(self, level: int) -> LevelConfig | None:
        for cfg in self.levels:
            if cfg.level == level:
                return cfg
        return None

    def next_level_exp(self, level: int) -> int | None:
        """Threshold of ``level + 1``, or ``None`` if it isn't defined."""
        nxt = self.get_level(level + 1)
        return nxt.required_exp if nxt else None

    def progress(self, experience: int, level: int) -> float:
        """Percent progress from the current level toward the next one.

        Returns 100 when the next level is not defined (top of the table,
        or a level that sits just below a gap).
        """
        current = self.get_level(level)
        nxt = self.get_level(level + 1)
        if current is None or nxt is None:
            return 100.0
        span = nxt.required_exp - current.required_exp
        return min(100.0, (experience - current.required_exp) / span * 100)

    def level_info(self, level: int) -> dict[str, Any]:
        cfg = self.get_level(level) or self.levels[0]
        return {
            "title": cfg.title,
            "badge": cfg.badge,
            "privileges": list(cfg.privileges),
        }

    def has_privilege(self, level: int, privilege: str) -> bool:
        cfg = self.get_level(level)
        return cfg is not None and privilege in cfg.privileges

    def level_up_bonus(self, new_level: int) -> int:
        return int(new_level * self.level_up_bonus_per_level)

    # -- Point rules --------------------------------------------------------
    def rule(self, action_type: str) -> PointRule | None:
        return self.point_rules.get(action_type)

    @staticmethod
    def checkin_bonus(consecutive_days: int) -> tuple[int, int]:
        """Extra ``(points, experience)`` for a check-in streak of *consecutive_days*."""
        points = experience = 0
        for min_days, p, e in CHECKIN_BONUS_TIERS:
            if consecutive_days >= min_days:
                points += p
                experience += e
        return points, experience


# ---------------------------------------------------------------------------
# Construction from config
# ---------------------------------------------------------------------------
def _levels_from_raw(rows: Iterable[dict[str, Any]]) -> tuple[LevelConfig, ...]:
    return tuple(
        LevelConfig(
            level=int(r["level"]),
            required_exp=int(r["required_exp"]),
            title=str(r.get("title", f"Level {r['level']}")),
            badge=str(r.get("badge", "\U0001f331")),
            privileges=tuple(r.get("privileges", ())),
        )
        for r in rows
    )


def _rules_from_raw(raw: dict[str, dict[str, Any]]) -> dict[str, PointRule]:
    rules = dict(DEFAULT_POINT_RULES)
    for key, r in raw.items():
        limit = r.get("daily_limit")
        rules[key] = PointRule(
            type=key,
            points=int(r.get("points", 0)),
            experience=int(r.get("experience", 0)),
            description=str(r.get("description", key)),
            daily_limit=int(limit) if limit is not None else None,
        )
    return rules


def build_rulebook(cfg: AgoraConfig | None = None) -> RuleBook:
    """Freeze the rule tables for this process.

    Point-rule overrides are merged over the defaults key by key; a level
    table override replaces the default table entirely.
    """
    if cfg is None:
        return RuleBook()

    levels = _levels_from_raw(cfg.levels) if cfg.levels else DEFAULT_LEVELS
    rules = _rules_from_raw(cfg.point_rules or {})
    book = RuleBook(
        levels=levels,
        point_rules=MappingProxyType(rules),
        level_up_bonus_per_level=cfg.level_up_bonus_per_level,
        tz=resolve_timezone(cfg.timezone),
    )
    logger.info(
        "RuleBook built: %d levels (max %d), %d point rules, tz=%s",
        len(book.levels), book.levels[-1].level, len(book.point_rules), cfg.timezone,
    )
    return book
