"""
agora.services.forum_service — Topic, Reply & Like Actions
===========================================================

Thin write paths for forum content.  The content row is committed first;
rewards, daily-task progress and badge checks run afterwards and are
best-effort.  A failing reward is logged and never undoes the post.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import Engine, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from agora.database.models import Reply, Topic, TopicLike, User
from agora.engine.clock import as_utc
from agora.engine.rules import RuleBook
from agora.services.badge_service import check_and_award_badges
from agora.services.daily_task_service import handle_user_action
from agora.services.paging import clamp_page, pagination
from agora.services.point_service import GrantResult, grant_points

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ActionResult:
    success: bool
    message: str = ""
    data: dict[str, Any] | None = None
    rewards: list[GrantResult] = field(default_factory=list)
    badges: list[int] = field(default_factory=list)
    not_found: bool = False


def topic_to_dict(topic: Topic) -> dict[str, Any]:
    return {
        "id": topic.id,
        "author_id": topic.author_id,
        "title": topic.title,
        "content": topic.content,
        "like_count": topic.like_count,
        "reply_count": topic.reply_count,
        "created_at": as_utc(topic.created_at).isoformat(),
    }


def reply_to_dict(reply: Reply) -> dict[str, Any]:
    return {
        "id": reply.id,
        "topic_id": reply.topic_id,
        "author_id": reply.author_id,
        "content": reply.content,
        "created_at": as_utc(reply.created_at).isoformat(),
    }


def _reward(
    engine: Engine,
    rules: RuleBook,
    user_id: int,
    grants: list[tuple[str, str, int]],
    action: str,
    now: datetime,
) -> tuple[list[GrantResult], list[int]]:
    """Run point grants, the daily-task hook and a badge check for one action."""
    results: list[GrantResult] = []
    for rule_type, reason, related_id in grants:
        results.append(grant_points(
            engine, rules,
            user_id=user_id, type=rule_type, reason=reason,
            related_id=related_id, related_type="topic", now=now,
        ))
    badges: list[int] = []
    try:
        badges = check_and_award_badges(engine, rules, user_id, now=now)
        handle_user_action(engine, rules, user_id, action, now=now)
    except SQLAlchemyError:
        logger.exception(
            "Post-action hooks failed for user %d (%s)", user_id, action,
            extra={"user_id": user_id, "action": action},
        )
    return results, badges


def create_topic(
    engine: Engine,
    rules: RuleBook,
    *,
    author_id: int,
    title: str,
    content: str,
    now: datetime | None = None,
) -> ActionResult:
    now = as_utc(now)
    with Session(engine, expire_on_commit=False) as session:
        if session.get(User, author_id) is None:
            return ActionResult(False, message="User not found", not_found=True)
        prior = session.scalar(
            select(func.count()).select_from(Topic).where(Topic.author_id == author_id)
        ) or 0
        topic = Topic(author_id=author_id, title=title, content=content, created_at=now)
        session.add(topic)
        session.commit()

    grants = [("post", f"Posted: {title[:100]}", topic.id)]
    if prior == 0:
        grants.append(("first_post", "First topic", topic.id))
    rewards, badges = _reward(engine, rules, author_id, grants, "post_created", now)
    return ActionResult(
        True, message="Topic created", data=topic_to_dict(topic), rewards=rewards, badges=badges,
    )


def create_reply(
    engine: Engine,
    rules: RuleBook,
    *,
    topic_id: int,
    author_id: int,
    content: str,
    now: datetime | None = None,
) -> ActionResult:
    now = as_utc(now)
    with Session(engine, expire_on_commit=False) as session:
        if session.get(Topic, topic_id) is None:
            return ActionResult(False, message="Topic not found", not_found=True)
        reply = Reply(topic_id=topic_id, author_id=author_id, content=content, created_at=now)
        session.add(reply)
        session.execute(
            update(Topic)
            .where(Topic.id == topic_id)
            .values(reply_count=Topic.reply_count + 1)
            .execution_options(synchronize_session=False)
        )
        session.commit()

    rewards, badges = _reward(
        engine, rules, author_id, [("reply", "Replied to a topic", topic_id)], "reply_created", now,
    )
    return ActionResult(
        True, message="Reply created", data=reply_to_dict(reply), rewards=rewards, badges=badges,
    )


def like_topic(
    engine: Engine,
    rules: RuleBook,
    *,
    topic_id: int,
    user_id: int,
    now: datetime | None = None,
) -> ActionResult:
    """Like a topic once.  Self-likes are accepted but earn nothing."""
    now = as_utc(now)
    with Session(engine) as session:
        topic = session.get(Topic, topic_id)
        if topic is None:
            return ActionResult(False, message="Topic not found", not_found=True)
        author_id = topic.author_id
        try:
            with session.begin_nested():   # SAVEPOINT
                session.add(TopicLike(user_id=user_id, topic_id=topic_id, created_at=now))
                session.flush()
        except IntegrityError:
            return ActionResult(False, message="Already liked")
        session.execute(
            update(Topic)
            .where(Topic.id == topic_id)
            .values(like_count=Topic.like_count + 1)
            .execution_options(synchronize_session=False)
        )
        session.commit()

    if author_id == user_id:
        return ActionResult(True, message="Liked")

    rewards, badges = _reward(
        engine, rules, user_id, [("give_like", "Liked a topic", topic_id)], "like_given", now,
    )
    received = grant_points(
        engine, rules,
        user_id=author_id, type="like_received", reason="Your topic was liked",
        related_id=topic_id, related_type="topic", now=now,
    )
    try:
        check_and_award_badges(engine, rules, author_id, now=now)
    except SQLAlchemyError:
        logger.exception("Badge check failed for topic author %d", author_id)
    return ActionResult(True, message="Liked", rewards=[*rewards, received], badges=badges)


# ---------------------------------------------------------------------------
# Read side
# ---------------------------------------------------------------------------
def list_topics(engine: Engine, *, page: int = 1, limit: int = 20) -> dict[str, Any]:
    page, limit = clamp_page(page, limit)
    with Session(engine) as session:
        total = session.scalar(select(func.count()).select_from(Topic)) or 0
        rows = session.scalars(
            select(Topic)
            .order_by(Topic.created_at.desc(), Topic.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).all()
        return {
            "topics": [topic_to_dict(t) for t in rows],
            "pagination": pagination(page, limit, total),
        }


def list_replies(
    engine: Engine,
    topic_id: int,
    *,
    page: int = 1,
    limit: int = 20,
) -> dict[str, Any] | None:
    page, limit = clamp_page(page, limit)
    with Session(engine) as session:
        if session.get(Topic, topic_id) is None:
            return None
        total = session.scalar(
            select(func.count()).select_from(Reply).where(Reply.topic_id == topic_id)
        ) or 0
        rows = session.scalars(
            select(Reply)
            .where(Reply.topic_id == topic_id)
            .order_by(Reply.created_at, Reply.id)
            .offset((page - 1) * limit)
            .limit(limit)
        ).all()
        return {
            "replies": [reply_to_dict(r) for r in rows],
            "pagination": pagination(page, limit, total),
        }
