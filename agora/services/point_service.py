"""
agora.services.point_service — Point Ledger
============================================

Every point or experience movement goes through :func:`apply_credit`:

1. Atomic ``UPDATE users SET balance = balance + p, experience = experience + e``
   (no read-modify-write, so concurrent grants can't lose updates).
2. Append one ``point_history`` row.
3. Re-read experience, recompute the level from the :class:`RuleBook`.
4. On a level increase, credit ``floor(new_level * level_up_bonus)`` points
   as a second ``level_up`` ledger row and notify the user.

Rule grants (:func:`grant_points`) add the daily-limit guard on top; badge,
daily-task, check-in bonus and admin adjustments reuse the same primitive,
so ``users.level == level_for(users.experience)`` after every commit.

The daily-limit check is count-then-insert and is not serialized against
concurrent submissions of the same action.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any

from sqlalchemy import Engine, case, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from agora.database.models import PointHistory, User
from agora.engine.clock import as_utc, local_date, local_day_start
from agora.engine.conditions import consecutive_run
from agora.engine.rules import PointRule, RuleBook
from agora.services.notification_service import notify
from agora.services.paging import clamp_page, pagination

logger = logging.getLogger(__name__)

LEDGER_LEVEL_UP = "level_up"
LEDGER_CONSUME = "consume"
LEDGER_CHECKIN_BONUS = "checkin_bonus"
LEDGER_ADMIN_ADJUST = "admin_adjust"
LEDGER_BADGE = "badge"
LEDGER_DAILY_TASK = "daily_task"


# ---------------------------------------------------------------------------
# Result objects
# ---------------------------------------------------------------------------
@dataclass(slots=True)
class CreditOutcome:
    new_balance: int
    new_experience: int
    old_level: int
    new_level: int
    level_up_bonus: int = 0

    @property
    def leveled_up(self) -> bool:
        return self.new_level > self.old_level


@dataclass(slots=True)
class GrantResult:
    success: bool
    message: str = ""
    points: int = 0
    experience: int = 0
    new_balance: int = 0
    new_level: int = 1
    leveled_up: bool = False


@dataclass(slots=True)
class ConsumeResult:
    success: bool
    message: str = ""
    new_balance: int = 0


@dataclass(slots=True)
class CheckinResult:
    success: bool
    message: str = ""
    points: int = 0
    experience: int = 0
    consecutive_days: int = 0
    bonus_points: int = 0
    bonus_experience: int = 0
    new_balance: int = 0
    new_level: int = 1
    leveled_up: bool = False


# ---------------------------------------------------------------------------
# Credit primitive (runs inside the caller's transaction)
# ---------------------------------------------------------------------------
def apply_credit(
    session: Session,
    rules: RuleBook,
    user_id: int,
    *,
    points: int,
    experience: int,
    type: str,
    reason: str,
    related_id: str | int | None = None,
    related_type: str | None = None,
    now: datetime | None = None,
    clamp_at_zero: bool = False,
) -> CreditOutcome | None:
    """Move points/experience for *user_id* and keep the level consistent.

    Returns ``None`` if the user doesn't exist.  Nothing is committed here.
    With ``clamp_at_zero`` the balance and experience floor at 0 instead of
    going negative.
    """
    now = as_utc(now)
    old_level = session.scalar(select(User.level).where(User.id == user_id))
    if old_level is None:
        return None

    if clamp_at_zero:
        # Ledger records the delta actually applied after flooring at 0.
        cur_balance, cur_exp = session.execute(
            select(User.balance, User.experience).where(User.id == user_id)
        ).one()
        points = max(points, -cur_balance)
        experience = max(experience, -cur_exp)
        new_balance_expr = case((User.balance + points < 0, 0), else_=User.balance + points)
        new_exp_expr = case((User.experience + experience < 0, 0), else_=User.experience + experience)
    else:
        new_balance_expr = User.balance + points
        new_exp_expr = User.experience + experience

    session.execute(
        update(User)
        .where(User.id == user_id)
        .values(balance=new_balance_expr, experience=new_exp_expr)
        .execution_options(synchronize_session=False)
    )
    session.add(PointHistory(
        user_id=user_id,
        amount=points,
        experience=experience,
        type=type,
        reason=reason,
        related_id=str(related_id) if related_id is not None else None,
        related_type=related_type,
        created_at=now,
    ))

    balance, total_exp = session.execute(
        select(User.balance, User.experience).where(User.id == user_id)
    ).one()
    new_level = rules.level_for(total_exp).level
    outcome = CreditOutcome(
        new_balance=balance, new_experience=total_exp,
        old_level=old_level, new_level=new_level,
    )

    if new_level != old_level:
        session.execute(
            update(User)
            .where(User.id == user_id)
            .values(level=new_level)
            .execution_options(synchronize_session=False)
        )

    if outcome.leveled_up:
        bonus = rules.level_up_bonus(new_level)
        if bonus > 0:
            session.execute(
                update(User)
                .where(User.id == user_id)
                .values(balance=User.balance + bonus)
                .execution_options(synchronize_session=False)
            )
            session.add(PointHistory(
                user_id=user_id,
                amount=bonus,
                experience=0,
                type=LEDGER_LEVEL_UP,
                reason=f"Reached level {new_level}",
                created_at=now,
            ))
            outcome.new_balance += bonus
            outcome.level_up_bonus = bonus
        level_cfg = rules.level_for(total_exp)
        notify(
            session,
            user_id=user_id,
            type="level_up",
            title=f"Level up! You are now level {new_level}",
            content=f"{level_cfg.badge} {level_cfg.title}",
            data={"old_level": old_level, "new_level": new_level, "bonus": bonus},
        )
        logger.info("User %d leveled up %d → %d (bonus %d)", user_id, old_level, new_level, bonus)

    # Loaded copies of this user are stale after the bulk UPDATEs.
    cached = session.identity_map.get(Session.identity_key(User, user_id))
    if cached is not None:
        session.expire(cached)

    return outcome


def count_today(
    session: Session,
    rules: RuleBook,
    user_id: int,
    action_type: str,
    now: datetime,
) -> int:
    """Ledger rows of *action_type* for *user_id* since local midnight."""
    return session.scalar(
        select(func.count()).select_from(PointHistory).where(
            PointHistory.user_id == user_id,
            PointHistory.type == action_type,
            PointHistory.created_at >= local_day_start(now, rules.tz),
        )
    ) or 0


def _grant_rule(
    session: Session,
    rules: RuleBook,
    rule: PointRule,
    user_id: int,
    *,
    reason: str | None,
    related_id: str | int | None,
    related_type: str | None,
    now: datetime,
) -> GrantResult:
    if rule.daily_limit is not None:
        used = count_today(session, rules, user_id, rule.type, now)
        if used >= rule.daily_limit:
            return GrantResult(False, message=f"Daily limit reached for {rule.type}")

    outcome = apply_credit(
        session, rules, user_id,
        points=rule.points,
        experience=rule.experience,
        type=rule.type,
        reason=reason or rule.description,
        related_id=related_id,
        related_type=related_type,
        now=now,
    )
    if outcome is None:
        return GrantResult(False, message="User not found")
    return GrantResult(
        True,
        message=f"+{rule.points} points, +{rule.experience} experience",
        points=rule.points,
        experience=rule.experience,
        new_balance=outcome.new_balance,
        new_level=outcome.new_level,
        leveled_up=outcome.leveled_up,
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def grant_points(
    engine: Engine,
    rules: RuleBook,
    *,
    user_id: int,
    type: str,
    reason: str | None = None,
    related_id: str | int | None = None,
    related_type: str | None = None,
    now: datetime | None = None,
) -> GrantResult:
    """Grant the reward of point rule *type* to *user_id*.

    Never raises for expected outcomes: unknown rule, missing user and a
    reached daily limit come back as ``success=False``.  Database errors are
    logged and reported as a generic failure so the triggering action
    (topic, reply, like) is never rolled back by its reward.
    """
    rule = rules.rule(type)
    if rule is None:
        return GrantResult(False, message=f"Unknown point rule: {type}")

    now = as_utc(now)
    try:
        with Session(engine) as session:
            result = _grant_rule(
                session, rules, rule, user_id,
                reason=reason, related_id=related_id, related_type=related_type, now=now,
            )
            if result.success:
                session.commit()
            return result
    except SQLAlchemyError:
        logger.exception(
            "Point grant failed for user %s (%s)", user_id, type,
            extra={"user_id": user_id, "rule": type},
        )
        return GrantResult(False, message="Failed to grant points")


def consume_points(
    engine: Engine,
    *,
    user_id: int,
    amount: int,
    reason: str,
    related_id: str | int | None = None,
    related_type: str | None = None,
    now: datetime | None = None,
) -> ConsumeResult:
    """Debit *amount* points.  Fails without mutation if the balance is short."""
    if amount <= 0:
        return ConsumeResult(False, message="Amount must be positive")

    now = as_utc(now)
    with Session(engine) as session:
        result = session.execute(
            update(User)
            .where(User.id == user_id, User.balance >= amount)
            .values(balance=User.balance - amount)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            balance = session.scalar(select(User.balance).where(User.id == user_id))
            if balance is None:
                return ConsumeResult(False, message="User not found")
            return ConsumeResult(False, message="Insufficient balance", new_balance=balance)

        session.add(PointHistory(
            user_id=user_id,
            amount=-amount,
            experience=0,
            type=LEDGER_CONSUME,
            reason=reason,
            related_id=str(related_id) if related_id is not None else None,
            related_type=related_type,
            created_at=now,
        ))
        new_balance = session.scalar(select(User.balance).where(User.id == user_id))
        session.commit()
        return ConsumeResult(True, message=f"-{amount} points", new_balance=new_balance)


# ---------------------------------------------------------------------------
# Check-in
# ---------------------------------------------------------------------------
def login_dates(session: Session, rules: RuleBook, user_id: int) -> list[date]:
    """Distinct local dates with a ``login`` ledger row, newest first."""
    stamps = session.scalars(
        select(PointHistory.created_at)
        .where(PointHistory.user_id == user_id, PointHistory.type == "login")
        .order_by(PointHistory.created_at.desc())
    ).all()
    seen: list[date] = []
    for ts in stamps:
        d = local_date(ts, rules.tz)
        if not seen or seen[-1] != d:
            seen.append(d)
    return seen


def consecutive_checkin_days(session: Session, rules: RuleBook, user_id: int, now: datetime) -> int:
    """Check-in streak ending today; 0 if the user has not checked in today."""
    return consecutive_run(login_dates(session, rules, user_id), local_date(now, rules.tz))


def daily_checkin(
    engine: Engine,
    rules: RuleBook,
    user_id: int,
    *,
    now: datetime | None = None,
) -> CheckinResult:
    """Grant today's ``login`` reward plus any streak bonus.

    The streak counts today: yesterday's run is extended only if the last
    check-in was yesterday, otherwise it restarts at 1.
    """
    rule = rules.rule("login")
    if rule is None:
        return CheckinResult(False, message="Check-in is disabled")

    now = as_utc(now)
    today = local_date(now, rules.tz)

    with Session(engine) as session:
        dates = login_dates(session, rules, user_id)
        if dates and dates[0] == today:
            return CheckinResult(False, message="Already checked in today")

        prior = consecutive_run(dates, today - timedelta(days=1))
        streak = prior + 1

        grant = _grant_rule(
            session, rules, rule, user_id,
            reason="Daily check-in", related_id=None, related_type=None, now=now,
        )
        if not grant.success:
            return CheckinResult(False, message=grant.message)

        result = CheckinResult(
            True,
            message=f"Checked in, {streak} day streak",
            points=grant.points,
            experience=grant.experience,
            consecutive_days=streak,
            new_balance=grant.new_balance,
            new_level=grant.new_level,
            leveled_up=grant.leveled_up,
        )

        bonus_points, bonus_exp = rules.checkin_bonus(streak)
        if bonus_points or bonus_exp:
            outcome = apply_credit(
                session, rules, user_id,
                points=bonus_points,
                experience=bonus_exp,
                type=LEDGER_CHECKIN_BONUS,
                reason=f"{streak}-day check-in streak bonus",
                now=now,
            )
            result.bonus_points = bonus_points
            result.bonus_experience = bonus_exp
            result.new_balance = outcome.new_balance
            result.new_level = outcome.new_level
            result.leveled_up = result.leveled_up or outcome.leveled_up

        session.commit()

    _after_checkin(engine, rules, user_id, now)
    return result


def _after_checkin(engine: Engine, rules: RuleBook, user_id: int, now: datetime) -> None:
    from agora.services.badge_service import check_and_award_badges
    from agora.services.daily_task_service import update_task_progress

    try:
        update_task_progress(engine, rules, user_id, "checkin", 1, now=now)
        check_and_award_badges(engine, rules, user_id, now=now)
    except SQLAlchemyError:
        logger.exception("Post-checkin hooks failed for user %d", user_id)


# ---------------------------------------------------------------------------
# Read side
# ---------------------------------------------------------------------------
def history_to_dict(row: PointHistory) -> dict[str, Any]:
    return {
        "id": row.id,
        "amount": row.amount,
        "experience": row.experience,
        "type": row.type,
        "reason": row.reason,
        "related_id": row.related_id,
        "related_type": row.related_type,
        "created_at": as_utc(row.created_at).isoformat(),
    }


def get_point_history(
    engine: Engine,
    user_id: int,
    *,
    page: int = 1,
    limit: int = 20,
    type: str | None = None,
) -> dict[str, Any]:
    page, limit = clamp_page(page, limit)
    with Session(engine) as session:
        conditions = [PointHistory.user_id == user_id]
        if type:
            conditions.append(PointHistory.type == type)
        total = session.scalar(
            select(func.count()).select_from(PointHistory).where(*conditions)
        ) or 0
        rows = session.scalars(
            select(PointHistory)
            .where(*conditions)
            .order_by(PointHistory.created_at.desc(), PointHistory.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).all()
        return {
            "history": [history_to_dict(r) for r in rows],
            "pagination": pagination(page, limit, total),
        }


def get_point_info(
    engine: Engine,
    rules: RuleBook,
    user_id: int,
    *,
    now: datetime | None = None,
) -> dict[str, Any] | None:
    now = as_utc(now)
    with Session(engine) as session:
        user = session.get(User, user_id)
        if user is None:
            return None
        earned_today = session.execute(
            select(
                func.coalesce(func.sum(PointHistory.amount), 0),
                func.coalesce(func.sum(PointHistory.experience), 0),
            ).where(
                PointHistory.user_id == user_id,
                PointHistory.amount > 0,
                PointHistory.created_at >= local_day_start(now, rules.tz),
            )
        ).one()
        dates = login_dates(session, rules, user_id)
        today = local_date(now, rules.tz)
        return {
            "balance": user.balance,
            "experience": user.experience,
            "level": user.level,
            "level_info": rules.level_info(user.level),
            "next_level_exp": rules.next_level_exp(user.level),
            "progress": round(rules.progress(user.experience, user.level), 2),
            "today_points": int(earned_today[0]),
            "today_experience": int(earned_today[1]),
            "checked_in_today": bool(dates and dates[0] == today),
            "consecutive_days": consecutive_run(dates, today, allow_yesterday=True),
        }


def get_leaderboard(
    engine: Engine,
    rules: RuleBook,
    *,
    by: str = "experience",
    limit: int = 20,
) -> list[dict[str, Any]]:
    column = User.balance if by == "balance" else User.experience
    with Session(engine) as session:
        users = session.scalars(
            select(User).order_by(column.desc(), User.id).limit(min(max(1, limit), 100))
        ).all()
        return [
            {
                "rank": i,
                "user_id": u.id,
                "username": u.username,
                "avatar": u.avatar,
                "balance": u.balance,
                "experience": u.experience,
                "level": u.level,
                "level_info": rules.level_info(u.level),
            }
            for i, u in enumerate(users, start=1)
        ]
