"""
agora.services.notification_service — In-App Notifications
============================================================

:func:`notify` writes inside the caller's session so a notification commits
(or rolls back) together with the action that produced it.  The read-side
helpers open their own sessions.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import Engine, func, select, update
from sqlalchemy.orm import Session

from agora.database.models import Notification
from agora.engine.clock import as_utc
from agora.services.paging import clamp_page, pagination

logger = logging.getLogger(__name__)


def notify(
    session: Session,
    *,
    user_id: int,
    type: str,
    title: str,
    content: str = "",
    data: dict | None = None,
) -> Notification:
    note = Notification(user_id=user_id, type=type, title=title, content=content, data=data)
    session.add(note)
    return note


def notification_to_dict(n: Notification) -> dict[str, Any]:
    return {
        "id": n.id,
        "type": n.type,
        "title": n.title,
        "content": n.content,
        "data": n.data,
        "read": n.read,
        "created_at": as_utc(n.created_at).isoformat() if n.created_at else None,
    }


def list_notifications(
    engine: Engine,
    user_id: int,
    *,
    page: int = 1,
    limit: int = 20,
    unread_only: bool = False,
) -> dict[str, Any]:
    page, limit = clamp_page(page, limit)
    with Session(engine) as session:
        conditions = [Notification.user_id == user_id]
        if unread_only:
            conditions.append(Notification.read.is_(False))
        total = session.scalar(
            select(func.count()).select_from(Notification).where(*conditions)
        ) or 0
        rows = session.scalars(
            select(Notification)
            .where(*conditions)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).all()
        return {
            "notifications": [notification_to_dict(n) for n in rows],
            "pagination": pagination(page, limit, total),
        }


def unread_count(engine: Engine, user_id: int) -> int:
    with Session(engine) as session:
        return session.scalar(
            select(func.count()).select_from(Notification).where(
                Notification.user_id == user_id, Notification.read.is_(False),
            )
        ) or 0


def mark_read(engine: Engine, user_id: int, notification_id: int) -> bool:
    """Mark one of the user's notifications read.  False if it isn't theirs."""
    with Session(engine) as session:
        note = session.get(Notification, notification_id)
        if note is None or note.user_id != user_id:
            return False
        note.read = True
        session.commit()
        return True


def mark_all_read(engine: Engine, user_id: int) -> int:
    with Session(engine) as session:
        result = session.execute(
            update(Notification)
            .where(Notification.user_id == user_id, Notification.read.is_(False))
            .values(read=True)
        )
        session.commit()
        return result.rowcount or 0

