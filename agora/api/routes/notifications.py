"""
agora.api.routes.notifications — In-app notifications
======================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query

from agora.api.deps import get_current_user, get_engine, ok
from agora.database.models import User
from agora.services import notification_service

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("")
def list_notifications(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1),
    unread_only: bool = False,
    user: User = Depends(get_current_user),
    engine=Depends(get_engine),
):
    return ok(notification_service.list_notifications(
        engine, user.id, page=page, limit=limit, unread_only=unread_only,
    ))


@router.get("/unread-count")
def unread_count(
    user: User = Depends(get_current_user),
    engine=Depends(get_engine),
):
    return ok({"count": notification_service.unread_count(engine, user.id)})


@router.put("/read-all")
def read_all(
    user: User = Depends(get_current_user),
    engine=Depends(get_engine),
):
    updated = notification_service.mark_all_read(engine, user.id)
    return ok({"updated": updated})


@router.put("/{notification_id}/read")
def read_one(
    notification_id: int,
    user: User = Depends(get_current_user),
    engine=Depends(get_engine),
):
    if not notification_service.mark_read(engine, user.id, notification_id):
        raise HTTPException(404, "Notification not found")
    return ok(message="Marked as read")
