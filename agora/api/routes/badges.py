"""
agora.api.routes.badges — Badge catalogue and re-evaluation
============================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from agora.api.deps import get_current_user, get_engine, get_optional_user, get_rules, ok
from agora.database.models import User
from agora.engine.rules import RuleBook
from agora.services import badge_service

router = APIRouter(prefix="/badges", tags=["badges"])


@router.get("/all")
def all_badges(
    user: User | None = Depends(get_optional_user),
    engine=Depends(get_engine),
):
    """Every active badge; carries ``earned`` flags when a token is sent."""
    return ok(badge_service.get_all_badges(engine, user.id if user else None))


@router.get("/user")
def my_badges(
    user: User = Depends(get_current_user),
    engine=Depends(get_engine),
):
    return ok(badge_service.get_user_badges(engine, user.id))


@router.post("/check")
def check_badges(
    user: User = Depends(get_current_user),
    engine=Depends(get_engine),
    rules: RuleBook = Depends(get_rules),
):
    awarded = badge_service.check_and_award_badges(engine, rules, user.id)
    message = f"Earned {len(awarded)} new badge(s)" if awarded else "No new badges"
    return ok({"awarded": awarded}, message)


@router.get("/{badge_id}")
def badge_detail(badge_id: int, engine=Depends(get_engine)):
    badge = badge_service.get_badge(engine, badge_id)
    if badge is None:
        raise HTTPException(404, "Badge not found")
    return ok(badge)
