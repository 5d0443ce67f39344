"""
agora.services.admin_service — Admin Mutation Service Layer
============================================================

Every admin write follows the same pattern:
  1. Begin transaction
  2. Read "before" snapshot
  3. Apply change
  4. Write admin_log with before/after JSON
  5. Commit

The audit helpers are shared with the moderation services so punishments,
revokes, appeal decisions and batch runs land in the same trail.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import Engine, func, select
from sqlalchemy.orm import Session

from agora.database.models import (
    AdminActionType,
    AdminLog,
    Badge,
    DailyTask,
    SpecialTag,
    User,
    UserRole,
    UserStatus,
)
from agora.engine.clock import as_utc
from agora.engine.conditions import condition_to_dict, parse_condition
from agora.engine.rules import RuleBook
from agora.services.notification_service import notify
from agora.services.paging import clamp_page, pagination
from agora.services.point_service import LEDGER_ADMIN_ADJUST, apply_credit

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Generic audit helpers
# ---------------------------------------------------------------------------
def row_to_dict(obj: Any) -> dict | None:
    """Convert a SQLAlchemy model instance to a JSON-serializable dict."""
    if obj is None:
        return None
    result = {}
    for col in obj.__table__.columns:
        val = getattr(obj, col.key, None)
        if isinstance(val, datetime):
            val = as_utc(val).isoformat()
        result[col.name] = val
    return result


def log_admin_action(
    session: Session,
    *,
    actor_id: int,
    action_type: str,
    target_table: str,
    target_id: str | None,
    before: dict | None,
    after: dict | None,
    reason: str | None = None,
) -> None:
    """Insert a row into admin_log within the current transaction."""
    session.add(AdminLog(
        actor_id=actor_id,
        action_type=action_type,
        target_table=target_table,
        target_id=target_id,
        before_snapshot=before,
        after_snapshot=after,
        reason=reason,
    ))


def _audited_create(engine: Engine, row: Any, *, table_name: str, actor_id: int) -> Any:
    """Generic audited CREATE: add -> flush -> log -> commit -> return."""
    with Session(engine, expire_on_commit=False) as session:
        session.add(row)
        session.flush()
        log_admin_action(
            session,
            actor_id=actor_id,
            action_type=AdminActionType.CREATE,
            target_table=table_name,
            target_id=str(row.id),
            before=None,
            after=row_to_dict(row),
        )
        session.commit()
        session.refresh(row)
        session.expunge(row)
        return row


def _audited_update(
    engine: Engine,
    model_cls: type,
    pk: int,
    *,
    table_name: str,
    actor_id: int,
    frozen_keys: tuple[str, ...] = ("id", "name"),
    **kwargs: Any,
) -> Any | None:
    """Generic audited UPDATE.  Returns the updated object, or ``None`` if not found."""
    with Session(engine, expire_on_commit=False) as session:
        obj = session.get(model_cls, pk)
        if obj is None:
            return None
        before = row_to_dict(obj)
        for key, value in kwargs.items():
            if hasattr(obj, key) and key not in frozen_keys:
                setattr(obj, key, value)
        session.flush()
        log_admin_action(
            session,
            actor_id=actor_id,
            action_type=AdminActionType.UPDATE,
            target_table=table_name,
            target_id=str(obj.id),
            before=before,
            after=row_to_dict(obj),
        )
        session.commit()
        session.refresh(obj)
        session.expunge(obj)
        return obj


# ---------------------------------------------------------------------------
# Catalogue management
# ---------------------------------------------------------------------------
def create_badge(engine: Engine, *, actor_id: int, condition: dict, **fields: Any) -> Badge:
    """Create a badge.  Raises :class:`ConditionError` on a malformed condition."""
    cond = condition_to_dict(parse_condition(condition))
    return _audited_create(
        engine, Badge(condition=cond, **fields), table_name="badges", actor_id=actor_id,
    )


def update_badge(engine: Engine, badge_id: int, *, actor_id: int, **fields: Any) -> Badge | None:
    if fields.get("condition") is not None:
        fields["condition"] = condition_to_dict(parse_condition(fields["condition"]))
    return _audited_update(
        engine, Badge, badge_id, table_name="badges", actor_id=actor_id, **fields,
    )


def create_daily_task(engine: Engine, *, actor_id: int, **fields: Any) -> DailyTask:
    return _audited_create(engine, DailyTask(**fields), table_name="daily_tasks", actor_id=actor_id)


def update_daily_task(engine: Engine, task_id: int, *, actor_id: int, **fields: Any) -> DailyTask | None:
    return _audited_update(
        engine, DailyTask, task_id, table_name="daily_tasks", actor_id=actor_id, **fields,
    )


def create_special_tag(
    engine: Engine,
    *,
    actor_id: int,
    condition: dict | None = None,
    **fields: Any,
) -> SpecialTag:
    cond = condition_to_dict(parse_condition(condition)) if condition else None
    return _audited_create(
        engine, SpecialTag(condition=cond, **fields), table_name="special_tags", actor_id=actor_id,
    )


# ---------------------------------------------------------------------------
# Point adjustment
# ---------------------------------------------------------------------------
def admin_adjust_points(
    engine: Engine,
    rules: RuleBook,
    *,
    user_id: int,
    points: int = 0,
    experience: int = 0,
    reason: str,
    actor_id: int,
    now: datetime | None = None,
) -> dict[str, Any] | None:
    """Apply a signed adjustment, flooring balance and experience at 0.

    The level is recomputed through the shared ledger primitive.  Returns
    the user's new aggregates, or ``None`` if the user doesn't exist.
    """
    now = as_utc(now)
    with Session(engine) as session:
        user = session.get(User, user_id)
        if user is None:
            return None
        before = {"balance": user.balance, "experience": user.experience, "level": user.level}

        outcome = apply_credit(
            session, rules, user_id,
            points=points,
            experience=experience,
            type=LEDGER_ADMIN_ADJUST,
            reason=reason,
            related_id=actor_id,
            related_type="admin",
            now=now,
            clamp_at_zero=True,
        )
        after = {
            "balance": outcome.new_balance,
            "experience": outcome.new_experience,
            "level": outcome.new_level,
        }
        log_admin_action(
            session,
            actor_id=actor_id,
            action_type=AdminActionType.ADJUST_POINTS,
            target_table="users",
            target_id=str(user_id),
            before=before,
            after=after,
            reason=reason,
        )
        notify(
            session,
            user_id=user_id,
            type="points",
            title="Your points were adjusted by staff",
            content=reason,
            data={"points": points, "experience": experience},
        )
        session.commit()
        logger.info(
            "Admin %d adjusted user %d by %+d points / %+d exp", actor_id, user_id, points, experience,
        )
        return after


# ---------------------------------------------------------------------------
# Read side
# ---------------------------------------------------------------------------
def list_admin_logs(
    engine: Engine,
    *,
    page: int = 1,
    limit: int = 20,
    action_type: str | None = None,
    actor_id: int | None = None,
    target_table: str | None = None,
) -> dict[str, Any]:
    page, limit = clamp_page(page, limit)
    with Session(engine) as session:
        conditions = []
        if action_type:
            conditions.append(AdminLog.action_type == action_type)
        if actor_id is not None:
            conditions.append(AdminLog.actor_id == actor_id)
        if target_table:
            conditions.append(AdminLog.target_table == target_table)
        total = session.scalar(
            select(func.count()).select_from(AdminLog).where(*conditions)
        ) or 0
        rows = session.scalars(
            select(AdminLog)
            .where(*conditions)
            .order_by(AdminLog.timestamp.desc(), AdminLog.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).all()
        return {
            "logs": [row_to_dict(r) for r in rows],
            "pagination": pagination(page, limit, total),
        }


def get_user_stats(engine: Engine) -> dict[str, Any]:
    """Community overview: counts by status and role, level distribution."""
    with Session(engine) as session:
        by_status = dict(session.execute(
            select(User.status, func.count()).group_by(User.status)
        ).all())
        by_role = dict(session.execute(
            select(User.role, func.count()).group_by(User.role)
        ).all())
        levels = dict(session.execute(
            select(User.level, func.count()).group_by(User.level)
        ).all())
    return {
        "total": sum(by_status.values()),
        "by_status": {s.value: by_status.get(s.value, 0) for s in UserStatus},
        "by_role": {r.value: by_role.get(r.value, 0) for r in UserRole},
        "level_distribution": [
            {"level": lvl, "count": n} for lvl, n in sorted(levels.items())
        ],
    }
