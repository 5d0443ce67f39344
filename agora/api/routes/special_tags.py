"""
agora.api.routes.special_tags — Tag catalogue and holdings
===========================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from agora.api.deps import get_current_user, get_engine, get_rules, ok
from agora.database.models import User
from agora.engine.rules import RuleBook
from agora.services import special_tag_service

router = APIRouter(prefix="/special-tags", tags=["special-tags"])


@router.get("/all")
def all_tags(engine=Depends(get_engine)):
    return ok(special_tag_service.get_all_special_tags(engine))


@router.get("/user")
def my_tags(
    user: User = Depends(get_current_user),
    engine=Depends(get_engine),
):
    return ok(special_tag_service.get_user_special_tags(engine, user.id))


@router.post("/check")
def check_tags(
    user: User = Depends(get_current_user),
    engine=Depends(get_engine),
    rules: RuleBook = Depends(get_rules),
):
    granted = special_tag_service.check_and_grant_conditional_tags(engine, rules, user.id)
    message = f"Granted {len(granted)} new tag(s)" if granted else "No new tags"
    return ok({"granted": granted}, message)
