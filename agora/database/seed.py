"""
agora.database.seed — Default Badges, Daily Tasks & Special Tags
=================================================================

Baseline catalogue seeded on first startup so a fresh community has
something to earn.  Every condition is validated through
:func:`agora.engine.conditions.parse_condition` before insertion.

Idempotent — rows are matched by ``name`` and never overwritten, so admin
edits survive restarts.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import Engine, select
from sqlalchemy.orm import Session

from agora.database.models import Badge, DailyTask, SpecialTag
from agora.engine.conditions import condition_to_dict, parse_condition

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Catalogue
# ---------------------------------------------------------------------------
def _badge(name, title, description, icon, category, rarity, condition, reward, order):
    return {
        "name": name, "title": title, "description": description, "icon": icon,
        "category": category, "rarity": rarity, "condition": condition,
        "points": reward, "experience": reward, "sort_order": order,
    }


DEFAULT_BADGES: list[dict[str, Any]] = [
    # Posting
    _badge("first_post", "First Steps", "Publish your first topic", "\U0001f4dd",
           "activity", "common", {"type": "post_count", "target": 1}, 50, 1),
    _badge("frequent_poster", "Frequent Poster", "Publish 10 topics", "✍️",
           "activity", "common", {"type": "post_count", "target": 10}, 100, 2),
    _badge("prolific_author", "Prolific Author", "Publish 50 topics", "\U0001f4da",
           "activity", "rare", {"type": "post_count", "target": 50}, 300, 3),
    _badge("discussion_starter", "Discussion Starter", "Publish 100 topics", "\U0001f3af",
           "activity", "epic", {"type": "post_count", "target": 100}, 500, 4),
    # Replying
    _badge("first_reply", "First Reply", "Post your first reply", "\U0001f4ac",
           "activity", "common", {"type": "reply_count", "target": 1}, 25, 10),
    _badge("active_replier", "Active Replier", "Post 50 replies", "\U0001f5e3️",
           "activity", "common", {"type": "reply_count", "target": 50}, 150, 11),
    _badge("comment_master", "Comment Master", "Post 200 replies", "\U0001f4af",
           "activity", "rare", {"type": "reply_count", "target": 200}, 400, 12),
    # Popularity
    _badge("popular_content", "Popular Content", "Receive 100 likes", "❤️",
           "achievement", "rare", {"type": "like_count", "target": 100}, 200, 20),
    _badge("beloved_author", "Beloved Author", "Receive 500 likes", "\U0001f496",
           "achievement", "epic", {"type": "like_count", "target": 500}, 600, 21),
    # Levels
    _badge("level_5", "Rising", "Reach level 5", "⭐",
           "achievement", "common", {"type": "level", "target": 5}, 100, 30),
    _badge("level_10", "Well Known", "Reach level 10", "\U0001f31f",
           "achievement", "rare", {"type": "level", "target": 10}, 250, 31),
    _badge("level_20", "Renowned", "Reach level 20", "\U0001f4ab",
           "achievement", "epic", {"type": "level", "target": 20}, 500, 32),
    # Check-in streaks
    _badge("week_checkin", "Week Streak", "Check in 7 days in a row", "\U0001f4c5",
           "time", "common", {"type": "consecutive_checkin", "target": 7}, 100, 40),
    _badge("month_checkin", "Month Streak", "Check in 30 days in a row", "\U0001f5d3️",
           "time", "rare", {"type": "consecutive_checkin", "target": 30}, 500, 41),
    _badge("persistent_user", "Persistent", "Check in 100 days in a row", "\U0001f3c5",
           "time", "legendary", {"type": "consecutive_checkin", "target": 100}, 1000, 42),
]

DEFAULT_DAILY_TASKS: list[dict[str, Any]] = [
    {"name": "daily_post", "title": "Daily Post", "description": "Publish one topic today",
     "type": "post", "target": 1, "points": 20, "experience": 20, "icon": "\U0001f4dd", "sort_order": 1},
    {"name": "daily_reply", "title": "Join the Conversation", "description": "Post 3 replies today",
     "type": "reply", "target": 3, "points": 15, "experience": 15, "icon": "\U0001f4ac", "sort_order": 2},
    {"name": "daily_like", "title": "Spread the Love", "description": "Like 5 topics today",
     "type": "like", "target": 5, "points": 10, "experience": 10, "icon": "\U0001f44d", "sort_order": 3},
    {"name": "daily_checkin", "title": "Daily Check-in", "description": "Check in today",
     "type": "checkin", "target": 1, "points": 5, "experience": 5, "icon": "✅", "sort_order": 4},
    {"name": "daily_learning", "title": "Study Time", "description": "Spend 30 minutes on courses",
     "type": "course_time", "target": 30, "points": 25, "experience": 25, "icon": "\U0001f4d6", "sort_order": 5},
]

DEFAULT_SPECIAL_TAGS: list[dict[str, Any]] = [
    {"name": "admin", "title": "Administrator", "icon": "\U0001f6e1️", "color": "#dc2626",
     "category": "admin", "condition": {"type": "manual"}, "permanent": True, "sort_order": 1},
    {"name": "moderator", "title": "Moderator", "icon": "⚖️", "color": "#ea580c",
     "category": "admin", "condition": {"type": "manual"}, "permanent": True, "sort_order": 2},
    {"name": "vip", "title": "VIP", "icon": "\U0001f48e", "color": "#a855f7",
     "category": "vip", "condition": {"type": "manual"}, "permanent": False,
     "duration_days": 365, "sort_order": 3},
    {"name": "active_user", "title": "Active Member", "icon": "\U0001f525", "color": "#f59e0b",
     "category": "achievement", "condition": {"type": "level", "target": 10},
     "permanent": True, "sort_order": 10},
    {"name": "badge_collector", "title": "Badge Collector", "icon": "\U0001f3c6", "color": "#10b981",
     "category": "achievement", "condition": {"type": "badge_count", "target": 10},
     "permanent": True, "sort_order": 11},
    {"name": "early_bird", "title": "Early Bird", "icon": "\U0001f426", "color": "#0ea5e9",
     "category": "special", "condition": {"type": "manual"}, "permanent": True, "sort_order": 20},
]


# ---------------------------------------------------------------------------
# Seeder
# ---------------------------------------------------------------------------
def _seed_rows(session: Session, model: type, rows: list[dict[str, Any]]) -> int:
    existing = set(session.scalars(select(model.name)).all())
    inserted = 0
    for row in rows:
        if row["name"] in existing:
            continue
        data = dict(row)
        if "condition" in data:
            data["condition"] = condition_to_dict(parse_condition(data["condition"]))
        session.add(model(**data))
        inserted += 1
    return inserted


def seed_defaults(engine: Engine) -> None:
    """Insert default badges, daily tasks and special tags that don't yet exist."""
    session = Session(engine)
    try:
        counts = {
            "badges": _seed_rows(session, Badge, DEFAULT_BADGES),
            "daily_tasks": _seed_rows(session, DailyTask, DEFAULT_DAILY_TASKS),
            "special_tags": _seed_rows(session, SpecialTag, DEFAULT_SPECIAL_TAGS),
        }
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    for table, n in counts.items():
        if n:
            logger.info("Seeded %d default %s.", n, table)
