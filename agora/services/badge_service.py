"""
agora.services.badge_service — Condition Evaluation & Badge Awards
===================================================================

DB half of the condition evaluator.  Gathers the aggregates a set of
conditions needs into a :class:`ConditionContext`, then lets the pure
handler registry in :mod:`agora.engine.conditions` decide.

Awarding is idempotent: the ``(user_id, badge_id)`` unique constraint is
enforced with a SAVEPOINT, so a concurrent or repeated award is a no-op.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime
from typing import Any

from sqlalchemy import Engine, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from agora.database.models import (
    Badge,
    CourseEnrollment,
    Reply,
    Topic,
    TopicLike,
    User,
    UserBadge,
)
from agora.engine.clock import as_utc, period_start
from agora.engine.conditions import (
    BadgeCountCondition,
    Condition,
    ConditionContext,
    ConditionError,
    ConsecutiveCheckinCondition,
    CourseCompleteCondition,
    ManualCondition,
    describe_condition,
    is_satisfied,
    parse_condition,
    required_counts,
)
from agora.engine.rules import RuleBook
from agora.services.notification_service import notify
from agora.services.point_service import LEDGER_BADGE, apply_credit, consecutive_checkin_days

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Aggregates
# ---------------------------------------------------------------------------
def _count_activity(
    session: Session,
    rules: RuleBook,
    user_id: int,
    kind: str,
    period: str,
    now: datetime,
) -> int:
    since = period_start(period, now, rules.tz)
    if kind == "post_count":
        stmt = select(func.count()).select_from(Topic).where(Topic.author_id == user_id)
        if since is not None:
            stmt = stmt.where(Topic.created_at >= since)
    elif kind == "reply_count":
        stmt = select(func.count()).select_from(Reply).where(Reply.author_id == user_id)
        if since is not None:
            stmt = stmt.where(Reply.created_at >= since)
    elif kind == "like_count":
        # Likes received on the user's own topics
        stmt = (
            select(func.count())
            .select_from(TopicLike)
            .join(Topic, Topic.id == TopicLike.topic_id)
            .where(Topic.author_id == user_id)
        )
        if since is not None:
            stmt = stmt.where(TopicLike.created_at >= since)
    else:
        raise ValueError(f"Unknown count kind: {kind!r}")
    return session.scalar(stmt) or 0


def build_context(
    session: Session,
    rules: RuleBook,
    user_id: int,
    conditions: Sequence[Condition],
    now: datetime,
) -> ConditionContext:
    """Query only the aggregates *conditions* actually reference."""
    level = session.scalar(select(User.level).where(User.id == user_id)) or 1
    kinds = {type(c) for c in conditions}

    counts = {
        key: _count_activity(session, rules, user_id, key[0], key[1], now)
        for key in required_counts(conditions)
    }
    streak = (
        consecutive_checkin_days(session, rules, user_id, now)
        if ConsecutiveCheckinCondition in kinds else 0
    )
    courses = 0
    if CourseCompleteCondition in kinds:
        courses = session.scalar(
            select(func.count()).select_from(CourseEnrollment).where(
                CourseEnrollment.user_id == user_id,
                CourseEnrollment.completed.is_(True),
            )
        ) or 0
    badge_count = 0
    if BadgeCountCondition in kinds:
        badge_count = session.scalar(
            select(func.count()).select_from(UserBadge).where(UserBadge.user_id == user_id)
        ) or 0

    return ConditionContext(
        level=level,
        consecutive_checkins=streak,
        courses_completed=courses,
        badge_count=badge_count,
        counts=counts,
    )


def is_eligible(
    engine: Engine,
    rules: RuleBook,
    user_id: int,
    condition: Condition | dict[str, Any],
    *,
    now: datetime | None = None,
) -> bool:
    """Whether *user_id* currently satisfies *condition*."""
    if isinstance(condition, dict):
        condition = parse_condition(condition)
    now = as_utc(now)
    with Session(engine) as session:
        ctx = build_context(session, rules, user_id, [condition], now)
        return is_satisfied(condition, ctx)


# ---------------------------------------------------------------------------
# Catalogue
# ---------------------------------------------------------------------------
def load_active_badges(session: Session) -> list[tuple[Badge, Condition]]:
    """Active badges with parsed conditions.  Malformed rows are skipped."""
    out: list[tuple[Badge, Condition]] = []
    badges = session.scalars(
        select(Badge).where(Badge.active.is_(True)).order_by(Badge.sort_order, Badge.id)
    ).all()
    for badge in badges:
        try:
            out.append((badge, parse_condition(badge.condition)))
        except ConditionError as exc:
            logger.warning("Skipping badge %s (id=%d): %s", badge.name, badge.id, exc)
    return out


def badge_to_dict(badge: Badge) -> dict[str, Any]:
    try:
        condition_text = describe_condition(parse_condition(badge.condition))
    except ConditionError:
        condition_text = ""
    return {
        "id": badge.id,
        "name": badge.name,
        "title": badge.title,
        "description": badge.description,
        "icon": badge.icon,
        "category": badge.category,
        "rarity": badge.rarity,
        "condition": badge.condition,
        "condition_text": condition_text,
        "points": badge.points,
        "experience": badge.experience,
        "sort_order": badge.sort_order,
    }


# ---------------------------------------------------------------------------
# Awarding
# ---------------------------------------------------------------------------
def award_badge(
    session: Session,
    rules: RuleBook,
    user_id: int,
    badge: Badge,
    *,
    now: datetime | None = None,
) -> bool:
    """Grant *badge* inside the caller's transaction.  False if already held."""
    now = as_utc(now)
    try:
        with session.begin_nested():   # SAVEPOINT
            session.add(UserBadge(user_id=user_id, badge_id=badge.id, earned_at=now))
            session.flush()
    except IntegrityError:
        return False

    if badge.points or badge.experience:
        apply_credit(
            session, rules, user_id,
            points=badge.points,
            experience=badge.experience,
            type=LEDGER_BADGE,
            reason=f"Badge earned: {badge.title}",
            related_id=badge.id,
            related_type="badge",
            now=now,
        )
    notify(
        session,
        user_id=user_id,
        type="badge",
        title=f"New badge: {badge.icon} {badge.title}",
        content=badge.description or "",
        data={"badge_id": badge.id, "points": badge.points, "experience": badge.experience},
    )
    logger.info("Badge awarded: %s (id=%d) to user %d", badge.name, badge.id, user_id)
    return True


def check_and_award_badges(
    engine: Engine,
    rules: RuleBook,
    user_id: int,
    *,
    now: datetime | None = None,
) -> list[int]:
    """Award every active badge the user newly qualifies for.

    Badge rewards can raise the user's level, which can unlock a level
    badge, so evaluation repeats until a pass awards nothing.  Returns the
    ids of newly awarded badges (empty on a repeat call).
    """
    now = as_utc(now)
    awarded: list[int] = []
    with Session(engine) as session:
        if session.get(User, user_id) is None:
            return []
        candidates = [
            (b, c) for b, c in load_active_badges(session)
            if not isinstance(c, ManualCondition)
        ]
        earned = set(session.scalars(
            select(UserBadge.badge_id).where(UserBadge.user_id == user_id)
        ).all())

        while True:
            pending = [(b, c) for b, c in candidates if b.id not in earned]
            if not pending:
                break
            ctx = build_context(session, rules, user_id, [c for _, c in pending], now)
            qualified = [b for b, c in pending if is_satisfied(c, ctx)]
            if not qualified:
                break
            for badge in qualified:
                if award_badge(session, rules, user_id, badge, now=now):
                    awarded.append(badge.id)
                earned.add(badge.id)

        session.commit()
    return awarded


# ---------------------------------------------------------------------------
# Read side
# ---------------------------------------------------------------------------
def get_all_badges(engine: Engine, user_id: int | None = None) -> list[dict[str, Any]]:
    """Active badges, with ``earned`` / ``earned_at`` when *user_id* is given."""
    with Session(engine) as session:
        badges = session.scalars(
            select(Badge)
            .where(Badge.active.is_(True))
            .order_by(Badge.category, Badge.sort_order, Badge.id)
        ).all()
        earned: dict[int, datetime] = {}
        if user_id is not None:
            earned = dict(session.execute(
                select(UserBadge.badge_id, UserBadge.earned_at).where(UserBadge.user_id == user_id)
            ).all())
        out = []
        for badge in badges:
            row = badge_to_dict(badge)
            if user_id is not None:
                row["earned"] = badge.id in earned
                row["earned_at"] = as_utc(earned[badge.id]).isoformat() if badge.id in earned else None
            out.append(row)
        return out


def get_user_badges(engine: Engine, user_id: int) -> list[dict[str, Any]]:
    with Session(engine) as session:
        rows = session.execute(
            select(UserBadge, Badge)
            .join(Badge, Badge.id == UserBadge.badge_id)
            .where(UserBadge.user_id == user_id)
            .order_by(UserBadge.earned_at.desc())
        ).all()
        return [
            {
                "id": ub.id,
                "badge": badge_to_dict(badge),
                "earned_at": as_utc(ub.earned_at).isoformat(),
            }
            for ub, badge in rows
        ]


def get_badge(engine: Engine, badge_id: int) -> dict[str, Any] | None:
    with Session(engine) as session:
        badge = session.get(Badge, badge_id)
        if badge is None:
            return None
        holders = session.scalar(
            select(func.count()).select_from(UserBadge).where(UserBadge.badge_id == badge_id)
        ) or 0
        row = badge_to_dict(badge)
        row["holder_count"] = holders
        return row
