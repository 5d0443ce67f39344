"""
agora.api.routes.daily_tasks — Today's tasks and progress
==========================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from agora.api.deps import fail, get_current_user, get_engine, get_rules, ok, require_not_banned
from agora.database.models import User
from agora.engine.rules import RuleBook
from agora.services import daily_task_service

router = APIRouter(prefix="/daily-tasks", tags=["daily-tasks"])


class ProgressBody(BaseModel):
    action: str
    minutes: int | None = Field(default=None, gt=0, le=1440)


@router.get("/user")
def my_tasks(
    user: User = Depends(get_current_user),
    engine=Depends(get_engine),
    rules: RuleBook = Depends(get_rules),
):
    return ok(daily_task_service.get_user_daily_tasks(engine, rules, user.id))


@router.get("/stats")
def my_task_stats(
    days: int = Query(7, ge=1, le=90),
    user: User = Depends(get_current_user),
    engine=Depends(get_engine),
    rules: RuleBook = Depends(get_rules),
):
    return ok(daily_task_service.get_user_task_stats(engine, rules, user.id, days=days))


@router.get("/all")
def all_tasks(engine=Depends(get_engine)):
    return ok(daily_task_service.get_all_daily_tasks(engine))


@router.post("/progress")
def report_progress(
    body: ProgressBody,
    user: User = Depends(require_not_banned),
    engine=Depends(get_engine),
    rules: RuleBook = Depends(get_rules),
):
    """Report a client-side action (e.g. minutes spent in a course)."""
    if body.action not in daily_task_service.ACTION_TO_TASK:
        return fail(f"Unknown action: {body.action}")
    completed = daily_task_service.handle_user_action(
        engine, rules, user.id, body.action, minutes=body.minutes,
    )
    return ok({"completed": completed})
