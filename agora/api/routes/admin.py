"""
agora.api.routes.admin — Moderation and catalogue endpoints (JWT + admin role)
===============================================================================
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.exc import IntegrityError

from agora.api.deps import fail, get_current_admin, get_engine, get_rules, ok
from agora.database.models import (
    AppealStatus,
    BatchType,
    DailyTaskType,
    PunishmentType,
    User,
)
from agora.engine.conditions import ConditionError
from agora.engine.punishments import MAX_SEVERITY, MIN_SEVERITY
from agora.engine.rules import RuleBook
from agora.services import (
    admin_service,
    badge_service,
    batch_service,
    daily_task_service,
    punishment_service,
    special_tag_service,
)

router = APIRouter(prefix="/admin", tags=["admin"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class PunishBody(BaseModel):
    type: PunishmentType
    severity: int = Field(1, ge=MIN_SEVERITY, le=MAX_SEVERITY)
    reason: str = Field(min_length=1, max_length=2000)
    duration_minutes: int | None = Field(default=None, gt=0)  # None → permanent


class BatchBody(BaseModel):
    type: BatchType
    user_ids: list[int] = Field(min_length=1, max_length=batch_service.MAX_BATCH_TARGETS)
    severity: int = Field(1, ge=MIN_SEVERITY, le=MAX_SEVERITY)
    reason: str = Field(min_length=1, max_length=2000)
    duration_minutes: int | None = Field(default=None, gt=0)


class RevokeBody(BaseModel):
    reason: str | None = None


class HandleAppealBody(BaseModel):
    status: AppealStatus
    admin_note: str | None = None


class AdjustPointsBody(BaseModel):
    user_id: int
    points: int = 0
    experience: int = 0
    reason: str = Field(min_length=1, max_length=255)


class BadgeCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    title: str = Field(min_length=1, max_length=100)
    description: str | None = None
    icon: str = "\U0001f3c5"
    category: str = "general"
    rarity: str = "common"
    condition: dict[str, Any]
    points: int = Field(0, ge=0)
    experience: int = Field(0, ge=0)
    sort_order: int = 0


class BadgeUpdate(BaseModel):
    title: str | None = None
    description: str | None = None
    icon: str | None = None
    category: str | None = None
    rarity: str | None = None
    condition: dict[str, Any] | None = None
    points: int | None = Field(default=None, ge=0)
    experience: int | None = Field(default=None, ge=0)
    sort_order: int | None = None
    active: bool | None = None


class DailyTaskCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    title: str = Field(min_length=1, max_length=100)
    description: str | None = None
    type: DailyTaskType
    target: int = Field(1, ge=1)
    points: int = Field(0, ge=0)
    experience: int = Field(0, ge=0)
    icon: str = "\U0001f4cb"
    sort_order: int = 0


class DailyTaskUpdate(BaseModel):
    title: str | None = None
    description: str | None = None
    target: int | None = Field(default=None, ge=1)
    points: int | None = Field(default=None, ge=0)
    experience: int | None = Field(default=None, ge=0)
    icon: str | None = None
    sort_order: int | None = None
    active: bool | None = None


class SpecialTagCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    title: str = Field(min_length=1, max_length=100)
    description: str | None = None
    icon: str = "\U0001f3f7️"
    color: str = "#3b82f6"
    category: str = "general"
    condition: dict[str, Any] | None = None
    permanent: bool = False
    duration_days: int | None = Field(default=None, gt=0)
    sort_order: int = 0


class GrantTagBody(BaseModel):
    user_id: int
    duration_days: int | None = Field(default=None, gt=0)


class RevokeTagBody(BaseModel):
    user_id: int


# ---------------------------------------------------------------------------
# Users & punishments
# ---------------------------------------------------------------------------
@router.get("/users/stats")
def user_stats(
    admin: User = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    return ok(admin_service.get_user_stats(engine))


@router.post("/users/batch", status_code=202)
def batch_punish(
    body: BatchBody,
    background: BackgroundTasks,
    admin: User = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    """Queue a batch punishment; poll ``/batch-operations/{id}`` for progress."""
    op = batch_service.create_batch_operation(
        engine,
        admin_id=admin.id,
        type=body.type,
        target_ids=body.user_ids,
        params={
            "severity": body.severity,
            "reason": body.reason,
            "duration_minutes": body.duration_minutes,
        },
    )
    background.add_task(batch_service.run_batch_operation, engine, op.id)
    return ok({"operation_id": op.id, "status": op.status}, "Batch operation started")


@router.get("/batch-operations/{operation_id}")
def batch_status(
    operation_id: int,
    admin: User = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    op = batch_service.get_batch_operation(engine, operation_id)
    if op is None:
        raise HTTPException(404, "Batch operation not found")
    return ok(op)


@router.post("/users/{user_id}/punish", status_code=201)
def punish(
    user_id: int,
    body: PunishBody,
    admin: User = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    if user_id == admin.id:
        raise HTTPException(400, "Admins cannot punish themselves")
    result = punishment_service.punish_user(
        engine,
        user_id=user_id,
        admin_id=admin.id,
        type=body.type,
        severity=body.severity,
        reason=body.reason,
        duration_minutes=body.duration_minutes,
    )
    if result.not_found:
        raise HTTPException(404, result.message)
    if not result.success:
        raise HTTPException(400, result.message)
    return ok(
        {"punishment": result.punishment, "user_status": result.user_status},
        result.message,
    )


@router.get("/punishments")
def list_punishments(
    user_id: int | None = None,
    type: str | None = None,
    status: str | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1),
    admin: User = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    return ok(punishment_service.list_punishments(
        engine, user_id=user_id, type=type, status=status, page=page, limit=limit,
    ))


@router.put("/punishments/{punishment_id}/revoke")
def revoke(
    punishment_id: int,
    body: RevokeBody,
    admin: User = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    result = punishment_service.revoke_punishment(
        engine, punishment_id, admin_id=admin.id, reason=body.reason,
    )
    if result is None:
        raise HTTPException(404, "Punishment not found")
    if not result.success:
        return fail(result.message)
    return ok(
        {"punishment": result.punishment, "user_status": result.user_status},
        result.message,
    )


# ---------------------------------------------------------------------------
# Appeals
# ---------------------------------------------------------------------------
@router.get("/appeals")
def list_appeals(
    status: str | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1),
    admin: User = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    return ok(punishment_service.list_appeals(engine, status=status, page=page, limit=limit))


@router.put("/appeals/{appeal_id}/handle")
def handle_appeal(
    appeal_id: int,
    body: HandleAppealBody,
    admin: User = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    if body.status == AppealStatus.PENDING:
        raise HTTPException(400, "Cannot move an appeal back to pending")
    result = punishment_service.handle_appeal(
        engine, appeal_id, admin_id=admin.id, status=body.status, admin_note=body.admin_note,
    )
    if result.not_found:
        raise HTTPException(404, result.message)
    if not result.success:
        raise HTTPException(400, result.message)
    return ok(result.appeal, result.message)


# ---------------------------------------------------------------------------
# Points
# ---------------------------------------------------------------------------
@router.post("/points/adjust")
def adjust_points(
    body: AdjustPointsBody,
    admin: User = Depends(get_current_admin),
    engine=Depends(get_engine),
    rules: RuleBook = Depends(get_rules),
):
    if not body.points and not body.experience:
        raise HTTPException(400, "Nothing to adjust")
    after = admin_service.admin_adjust_points(
        engine, rules,
        user_id=body.user_id,
        points=body.points,
        experience=body.experience,
        reason=body.reason,
        actor_id=admin.id,
    )
    if after is None:
        raise HTTPException(404, "User not found")
    return ok(after, "Points adjusted")


# ---------------------------------------------------------------------------
# Catalogue
# ---------------------------------------------------------------------------
@router.post("/badges", status_code=201)
def create_badge(
    body: BadgeCreate,
    admin: User = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    fields = body.model_dump(exclude={"condition"})
    try:
        badge = admin_service.create_badge(
            engine, actor_id=admin.id, condition=body.condition, **fields,
        )
    except ConditionError as exc:
        raise HTTPException(400, f"Invalid condition: {exc}")
    except IntegrityError:
        raise HTTPException(400, f"Badge '{body.name}' already exists")
    return ok(badge_service.badge_to_dict(badge))


@router.patch("/badges/{badge_id}")
def update_badge(
    badge_id: int,
    body: BadgeUpdate,
    admin: User = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    kwargs = body.model_dump(exclude_none=True)
    if not kwargs:
        raise HTTPException(400, "No fields to update")
    try:
        badge = admin_service.update_badge(engine, badge_id, actor_id=admin.id, **kwargs)
    except ConditionError as exc:
        raise HTTPException(400, f"Invalid condition: {exc}")
    if badge is None:
        raise HTTPException(404, "Badge not found")
    return ok(badge_service.badge_to_dict(badge))


@router.post("/daily-tasks", status_code=201)
def create_daily_task(
    body: DailyTaskCreate,
    admin: User = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    try:
        task = admin_service.create_daily_task(engine, actor_id=admin.id, **body.model_dump())
    except IntegrityError:
        raise HTTPException(400, f"Daily task '{body.name}' already exists")
    return ok(daily_task_service.task_to_dict(task))


@router.patch("/daily-tasks/{task_id}")
def update_daily_task(
    task_id: int,
    body: DailyTaskUpdate,
    admin: User = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    kwargs = body.model_dump(exclude_none=True)
    if not kwargs:
        raise HTTPException(400, "No fields to update")
    task = admin_service.update_daily_task(engine, task_id, actor_id=admin.id, **kwargs)
    if task is None:
        raise HTTPException(404, "Daily task not found")
    return ok(daily_task_service.task_to_dict(task))


@router.post("/special-tags", status_code=201)
def create_special_tag(
    body: SpecialTagCreate,
    admin: User = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    fields = body.model_dump(exclude={"condition"})
    try:
        tag = admin_service.create_special_tag(
            engine, actor_id=admin.id, condition=body.condition, **fields,
        )
    except ConditionError as exc:
        raise HTTPException(400, f"Invalid condition: {exc}")
    except IntegrityError:
        raise HTTPException(400, f"Special tag '{body.name}' already exists")
    return ok(special_tag_service.tag_to_dict(tag))


@router.post("/special-tags/{tag_id}/grant")
def grant_special_tag(
    tag_id: int,
    body: GrantTagBody,
    admin: User = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    success, msg = special_tag_service.grant_special_tag(
        engine, body.user_id, tag_id,
        duration_days=body.duration_days, granted_by=admin.id,
    )
    if not success:
        raise HTTPException(400, msg)
    return ok(message=msg)


@router.post("/special-tags/{tag_id}/revoke")
def revoke_special_tag(
    tag_id: int,
    body: RevokeTagBody,
    admin: User = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    if not special_tag_service.revoke_special_tag(engine, body.user_id, tag_id, revoked_by=admin.id):
        raise HTTPException(404, "User does not hold this tag")
    return ok(message="Special tag revoked")


# ---------------------------------------------------------------------------
# Audit log
# ---------------------------------------------------------------------------
@router.get("/logs")
def audit_logs(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1),
    action_type: str | None = None,
    actor_id: int | None = None,
    target_table: str | None = None,
    admin: User = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    return ok(admin_service.list_admin_logs(
        engine,
        page=page,
        limit=limit,
        action_type=action_type,
        actor_id=actor_id,
        target_table=target_table,
    ))
