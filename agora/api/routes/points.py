"""
agora.api.routes.points — Balance, ledger, check-in and levels
===============================================================
"""

from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from agora.api.deps import fail, get_current_user, get_engine, get_rules, ok, require_not_banned
from agora.database.models import User
from agora.engine.rules import RuleBook
from agora.services import point_service

router = APIRouter(prefix="/points", tags=["points"])


class ConsumeBody(BaseModel):
    amount: int = Field(gt=0)
    reason: str = Field(min_length=1, max_length=255)
    related_id: str | None = None
    related_type: str | None = None


@router.get("/info")
def point_info(
    user: User = Depends(get_current_user),
    engine=Depends(get_engine),
    rules: RuleBook = Depends(get_rules),
):
    info = point_service.get_point_info(engine, rules, user.id)
    if info is None:
        raise HTTPException(404, "User not found")
    return ok(info)


@router.get("/history")
def point_history(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1),
    type: str | None = None,
    user: User = Depends(get_current_user),
    engine=Depends(get_engine),
):
    return ok(point_service.get_point_history(engine, user.id, page=page, limit=limit, type=type))


@router.post("/checkin")
def checkin(
    user: User = Depends(require_not_banned),
    engine=Depends(get_engine),
    rules: RuleBook = Depends(get_rules),
):
    result = point_service.daily_checkin(engine, rules, user.id)
    if not result.success:
        return fail(result.message)
    return ok(asdict(result), result.message)


@router.post("/consume")
def consume(
    body: ConsumeBody,
    user: User = Depends(require_not_banned),
    engine=Depends(get_engine),
):
    result = point_service.consume_points(
        engine,
        user_id=user.id,
        amount=body.amount,
        reason=body.reason,
        related_id=body.related_id,
        related_type=body.related_type,
    )
    if not result.success:
        return fail(result.message, data={"new_balance": result.new_balance})
    return ok({"new_balance": result.new_balance}, result.message)


@router.get("/leaderboard")
def leaderboard(
    by: str = Query("experience", pattern="^(experience|balance)$"),
    limit: int = Query(20, ge=1, le=100),
    engine=Depends(get_engine),
    rules: RuleBook = Depends(get_rules),
):
    return ok(point_service.get_leaderboard(engine, rules, by=by, limit=limit))


@router.get("/levels")
def levels(rules: RuleBook = Depends(get_rules)):
    return ok([
        {
            "level": lvl.level,
            "required_exp": lvl.required_exp,
            "title": lvl.title,
            "badge": lvl.badge,
            "privileges": list(lvl.privileges),
        }
        for lvl in rules.levels
    ])


@router.get("/rules")
def point_rules(rules: RuleBook = Depends(get_rules)):
    return ok({
        key: {
            "points": rule.points,
            "experience": rule.experience,
            "description": rule.description,
            "daily_limit": rule.daily_limit,
        }
        for key, rule in rules.point_rules.items()
    })
