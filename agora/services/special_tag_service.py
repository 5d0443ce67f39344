"""
agora.services.special_tag_service — Special Tags
==================================================

Tags differ from badges in two ways: a grant may expire (``expires_at``)
and may be revoked (``active = false``).  A user "holds" a tag while the
grant is active and unexpired.  Re-granting an existing row reactivates it
and refreshes its expiry rather than inserting a duplicate.

Condition-granted tags reuse the badge evaluator; ``manual`` tags are only
ever granted by staff.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import Engine, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from agora.database.models import AdminActionType, SpecialTag, User, UserSpecialTag
from agora.engine.clock import as_utc
from agora.engine.conditions import (
    ConditionError,
    ManualCondition,
    describe_condition,
    is_satisfied,
    parse_condition,
)
from agora.engine.rules import RuleBook
from agora.services.admin_service import log_admin_action
from agora.services.badge_service import build_context

logger = logging.getLogger(__name__)

EXPIRING_WINDOW = timedelta(days=7)


def _held_clause(now: datetime):
    return (
        UserSpecialTag.active.is_(True),
        or_(UserSpecialTag.expires_at.is_(None), UserSpecialTag.expires_at > now),
    )


def _expiry_for(tag: SpecialTag, duration_days: int | None, now: datetime) -> datetime | None:
    if tag.permanent:
        return None
    days = duration_days or tag.duration_days
    return now + timedelta(days=days) if days else None


def grant_tag_in_session(
    session: Session,
    user_id: int,
    tag: SpecialTag,
    *,
    duration_days: int | None = None,
    granted_by: int | None = None,
    now: datetime,
) -> UserSpecialTag:
    expires_at = _expiry_for(tag, duration_days, now)
    existing = session.scalar(
        select(UserSpecialTag).where(
            UserSpecialTag.user_id == user_id, UserSpecialTag.tag_id == tag.id,
        )
    )
    if existing is not None:
        existing.active = True
        existing.granted_at = now
        existing.expires_at = expires_at
        existing.granted_by = granted_by
        session.flush()
        return existing

    row = UserSpecialTag(
        user_id=user_id, tag_id=tag.id, granted_at=now,
        expires_at=expires_at, granted_by=granted_by,
    )
    session.add(row)
    session.flush()
    return row


def grant_special_tag(
    engine: Engine,
    user_id: int,
    tag_id: int,
    *,
    duration_days: int | None = None,
    granted_by: int | None = None,
    now: datetime | None = None,
) -> tuple[bool, str]:
    """Grant (or refresh) a tag.  Returns ``(success, message)``."""
    now = as_utc(now)
    with Session(engine) as session:
        tag = session.get(SpecialTag, tag_id)
        if tag is None or not tag.active:
            return False, "Special tag not found."
        if session.get(User, user_id) is None:
            return False, "User not found."
        try:
            grant = grant_tag_in_session(
                session, user_id, tag,
                duration_days=duration_days, granted_by=granted_by, now=now,
            )
            if granted_by is not None:
                log_admin_action(
                    session,
                    actor_id=granted_by,
                    action_type=AdminActionType.GRANT_TAG,
                    target_table="user_special_tags",
                    target_id=str(grant.id),
                    before=None,
                    after={
                        "user_id": user_id,
                        "tag_id": tag_id,
                        "expires_at": grant.expires_at.isoformat() if grant.expires_at else None,
                    },
                )
            session.commit()
        except IntegrityError:
            session.rollback()
            return False, "Tag was granted concurrently; try again."
        logger.info("Special tag %s granted to user %d by %s", tag.name, user_id, granted_by)
        return True, f"Special tag '{tag.title}' granted."


def revoke_special_tag(
    engine: Engine,
    user_id: int,
    tag_id: int,
    *,
    revoked_by: int | None = None,
) -> bool:
    """Deactivate a held tag.  False if the user doesn't hold it."""
    with Session(engine) as session:
        result = session.execute(
            update(UserSpecialTag)
            .where(
                UserSpecialTag.user_id == user_id,
                UserSpecialTag.tag_id == tag_id,
                UserSpecialTag.active.is_(True),
            )
            .values(active=False)
        )
        if result.rowcount and revoked_by is not None:
            log_admin_action(
                session,
                actor_id=revoked_by,
                action_type=AdminActionType.REVOKE_TAG,
                target_table="user_special_tags",
                target_id=None,
                before={"user_id": user_id, "tag_id": tag_id, "active": True},
                after={"user_id": user_id, "tag_id": tag_id, "active": False},
            )
        session.commit()
        return bool(result.rowcount)


def check_and_grant_conditional_tags(
    engine: Engine,
    rules: RuleBook,
    user_id: int,
    *,
    now: datetime | None = None,
) -> list[int]:
    """Grant every conditional tag the user qualifies for and doesn't hold."""
    now = as_utc(now)
    granted: list[int] = []
    with Session(engine) as session:
        if session.get(User, user_id) is None:
            return []
        held = set(session.scalars(
            select(UserSpecialTag.tag_id).where(
                UserSpecialTag.user_id == user_id, *_held_clause(now),
            )
        ).all())
        tags = session.scalars(
            select(SpecialTag).where(SpecialTag.active.is_(True), SpecialTag.condition.isnot(None))
        ).all()

        candidates = []
        for tag in tags:
            if tag.id in held:
                continue
            try:
                cond = parse_condition(tag.condition)
            except ConditionError as exc:
                logger.warning("Skipping special tag %s (id=%d): %s", tag.name, tag.id, exc)
                continue
            if isinstance(cond, ManualCondition):
                continue
            candidates.append((tag, cond))

        if candidates:
            ctx = build_context(session, rules, user_id, [c for _, c in candidates], now)
            for tag, cond in candidates:
                if is_satisfied(cond, ctx):
                    grant_tag_in_session(session, user_id, tag, now=now)
                    granted.append(tag.id)
                    logger.info("Special tag %s granted to user %d", tag.name, user_id)
        session.commit()
    return granted


def cleanup_expired_tags(engine: Engine, *, now: datetime | None = None) -> int:
    """Deactivate grants whose expiry has passed.  Returns rows touched."""
    now = as_utc(now)
    with Session(engine) as session:
        result = session.execute(
            update(UserSpecialTag)
            .where(
                UserSpecialTag.active.is_(True),
                UserSpecialTag.expires_at.isnot(None),
                UserSpecialTag.expires_at <= now,
            )
            .values(active=False)
        )
        session.commit()
        count = result.rowcount or 0
    if count:
        logger.info("Deactivated %d expired special tags", count)
    return count


# ---------------------------------------------------------------------------
# Read side
# ---------------------------------------------------------------------------
def tag_to_dict(tag: SpecialTag) -> dict[str, Any]:
    try:
        condition_text = describe_condition(parse_condition(tag.condition))
    except ConditionError:
        condition_text = ""
    return {
        "id": tag.id,
        "name": tag.name,
        "title": tag.title,
        "description": tag.description,
        "icon": tag.icon,
        "color": tag.color,
        "category": tag.category,
        "condition": tag.condition,
        "condition_text": condition_text,
        "permanent": tag.permanent,
        "duration_days": tag.duration_days,
        "sort_order": tag.sort_order,
    }


def get_user_special_tags(
    engine: Engine,
    user_id: int,
    *,
    now: datetime | None = None,
) -> list[dict[str, Any]]:
    now = as_utc(now)
    with Session(engine) as session:
        rows = session.execute(
            select(UserSpecialTag, SpecialTag)
            .join(SpecialTag, SpecialTag.id == UserSpecialTag.tag_id)
            .where(UserSpecialTag.user_id == user_id, *_held_clause(now))
            .order_by(SpecialTag.sort_order, SpecialTag.id)
        ).all()
        out = []
        for grant, tag in rows:
            expires = as_utc(grant.expires_at) if grant.expires_at else None
            out.append({
                "id": grant.id,
                "tag": tag_to_dict(tag),
                "granted_at": as_utc(grant.granted_at).isoformat(),
                "expires_at": expires.isoformat() if expires else None,
                "is_expiring": bool(expires and expires - now < EXPIRING_WINDOW),
            })
        return out


def get_all_special_tags(engine: Engine) -> list[dict[str, Any]]:
    with Session(engine) as session:
        tags = session.scalars(
            select(SpecialTag)
            .where(SpecialTag.active.is_(True))
            .order_by(SpecialTag.category, SpecialTag.sort_order, SpecialTag.id)
        ).all()
        return [tag_to_dict(t) for t in tags]
