"""
agora.api.routes.forum — Topics, replies and likes
===================================================

Posting requires an unrestricted account; rewards are best-effort and
reported alongside the created row.
"""

from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from agora.api.deps import fail, get_engine, get_rules, ok, require_can_post, require_not_banned
from agora.database.models import User
from agora.engine.rules import RuleBook
from agora.services import forum_service

router = APIRouter(prefix="/topics", tags=["forum"])


class TopicBody(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    content: str = Field(min_length=1)


class ReplyBody(BaseModel):
    content: str = Field(min_length=1)


def _action_payload(result: forum_service.ActionResult) -> dict:
    return {
        "item": result.data,
        "rewards": [asdict(r) for r in result.rewards if r.success],
        "badges": result.badges,
    }


@router.get("")
def list_topics(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1),
    engine=Depends(get_engine),
):
    return ok(forum_service.list_topics(engine, page=page, limit=limit))


@router.post("", status_code=201)
def create_topic(
    body: TopicBody,
    user: User = Depends(require_can_post),
    engine=Depends(get_engine),
    rules: RuleBook = Depends(get_rules),
):
    result = forum_service.create_topic(
        engine, rules, author_id=user.id, title=body.title, content=body.content,
    )
    if result.not_found:
        raise HTTPException(404, result.message)
    return ok(_action_payload(result), result.message)


@router.get("/{topic_id}/replies")
def list_replies(
    topic_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1),
    engine=Depends(get_engine),
):
    replies = forum_service.list_replies(engine, topic_id, page=page, limit=limit)
    if replies is None:
        raise HTTPException(404, "Topic not found")
    return ok(replies)


@router.post("/{topic_id}/replies", status_code=201)
def create_reply(
    topic_id: int,
    body: ReplyBody,
    user: User = Depends(require_can_post),
    engine=Depends(get_engine),
    rules: RuleBook = Depends(get_rules),
):
    result = forum_service.create_reply(
        engine, rules, topic_id=topic_id, author_id=user.id, content=body.content,
    )
    if result.not_found:
        raise HTTPException(404, result.message)
    return ok(_action_payload(result), result.message)


@router.post("/{topic_id}/like")
def like_topic(
    topic_id: int,
    user: User = Depends(require_not_banned),
    engine=Depends(get_engine),
    rules: RuleBook = Depends(get_rules),
):
    result = forum_service.like_topic(engine, rules, topic_id=topic_id, user_id=user.id)
    if result.not_found:
        raise HTTPException(404, result.message)
    if not result.success:
        return fail(result.message)
    return ok(_action_payload(result), result.message)
