"""
agora.api.routes.punishments — User-facing punishments and appeals
===================================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from agora.api.deps import get_current_user, get_engine, ok
from agora.database.models import User
from agora.services import punishment_service

router = APIRouter(prefix="/punishments", tags=["punishments"])


class AppealBody(BaseModel):
    punishment_id: int
    title: str = Field(min_length=1, max_length=200)
    content: str = Field(min_length=1, max_length=5000)
    evidence: list[str] | None = None


# Restricted users must still reach these routes, so only the token is checked.
@router.get("/my-punishments")
def my_punishments(
    user: User = Depends(get_current_user),
    engine=Depends(get_engine),
):
    return ok(punishment_service.get_user_punishment_summary(engine, user.id))


@router.get("/appealable")
def appealable(
    user: User = Depends(get_current_user),
    engine=Depends(get_engine),
):
    return ok(punishment_service.get_appealable_punishments(engine, user.id))


@router.get("/appeals")
def my_appeals(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1),
    user: User = Depends(get_current_user),
    engine=Depends(get_engine),
):
    return ok(punishment_service.list_user_appeals(engine, user.id, page=page, limit=limit))


@router.post("/appeals", status_code=201)
def submit_appeal(
    body: AppealBody,
    user: User = Depends(get_current_user),
    engine=Depends(get_engine),
):
    result = punishment_service.submit_appeal(
        engine,
        user_id=user.id,
        punishment_id=body.punishment_id,
        title=body.title,
        content=body.content,
        evidence=body.evidence,
    )
    if result.not_found:
        raise HTTPException(404, result.message)
    if not result.success:
        raise HTTPException(400, result.message)
    return ok(result.appeal, result.message)
