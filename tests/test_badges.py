"""
tests/test_badges.py — Badge Awarding & Catalogue
==================================================
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from conftest import NOW, get_user, make_user
from agora.database.models import Badge, PointHistory, UserBadge
from agora.engine.conditions import ConditionError
from agora.services.admin_service import create_badge, update_badge
from agora.services.badge_service import (
    award_badge,
    check_and_award_badges,
    get_all_badges,
    get_badge,
    get_user_badges,
    is_eligible,
)
from agora.services.forum_service import create_topic
from agora.services.point_service import daily_checkin


def _badge_id(engine, name: str) -> int:
    with Session(engine) as session:
        return session.scalar(select(Badge.id).where(Badge.name == name))


def _held(engine, user_id: int) -> set[str]:
    with Session(engine) as session:
        return set(session.scalars(
            select(Badge.name).join(UserBadge, UserBadge.badge_id == Badge.id)
            .where(UserBadge.user_id == user_id)
        ).all())


class TestFirstPost:
    def test_first_topic_awards_badge_and_rewards(self, seeded_engine, rules):
        uid = make_user(seeded_engine)
        result = create_topic(seeded_engine, rules, author_id=uid, title="Hello", content="World", now=NOW)

        assert result.success
        assert _badge_id(seeded_engine, "first_post") in result.badges
        assert "first_post" in _held(seeded_engine, uid)

        # post 10/15 + first_post 20/30 + badge 50/50 + daily_post task 20/20
        # crosses 100 exp → level 2 with a 20 point bonus.
        user = get_user(seeded_engine, uid)
        assert (user.balance, user.experience, user.level) == (120, 115, 2)

    def test_second_topic_has_no_first_post_reward(self, seeded_engine, rules):
        uid = make_user(seeded_engine)
        create_topic(seeded_engine, rules, author_id=uid, title="One", content="x", now=NOW)
        second = create_topic(seeded_engine, rules, author_id=uid, title="Two", content="x", now=NOW)

        assert second.badges == []
        assert [r.points for r in second.rewards] == [10]
        with Session(seeded_engine) as session:
            assert session.scalar(
                select(func.count()).select_from(PointHistory).where(
                    PointHistory.user_id == uid, PointHistory.type == "first_post",
                )
            ) == 1

    def test_repeat_check_is_idempotent(self, seeded_engine, rules):
        uid = make_user(seeded_engine)
        create_topic(seeded_engine, rules, author_id=uid, title="Hello", content="x", now=NOW)
        before = get_user(seeded_engine, uid).balance

        assert check_and_award_badges(seeded_engine, rules, uid, now=NOW) == []
        assert get_user(seeded_engine, uid).balance == before


class TestAwardBadge:
    def test_award_twice_returns_false(self, seeded_engine, rules):
        uid = make_user(seeded_engine)
        with Session(seeded_engine) as session:
            badge = session.scalar(select(Badge).where(Badge.name == "first_reply"))
            assert award_badge(session, rules, uid, badge, now=NOW) is True
            assert award_badge(session, rules, uid, badge, now=NOW) is False
            session.commit()

        with Session(seeded_engine) as session:
            assert session.scalar(
                select(func.count()).select_from(UserBadge).where(UserBadge.user_id == uid)
            ) == 1
        assert get_user(seeded_engine, uid).balance == 25

    def test_missing_user_awards_nothing(self, seeded_engine, rules):
        assert check_and_award_badges(seeded_engine, rules, 9999, now=NOW) == []


class TestConditions:
    def test_level_badges_cascade(self, seeded_engine, rules):
        # Level 10 already reached: both level_5 and level_10 are awarded.
        uid = make_user(seeded_engine, experience=4600, level=10)
        awarded = check_and_award_badges(seeded_engine, rules, uid, now=NOW)
        names = _held(seeded_engine, uid)
        assert {"level_5", "level_10"} <= names
        assert len(awarded) == len(names)

    def test_badge_reward_can_unlock_level_badge(self, seeded_engine, rules):
        # "bump" pushes the user from 950 to 1050 exp, which unlocks level_5.
        admin = make_user(seeded_engine, "root", role="admin")
        create_badge(
            seeded_engine, actor_id=admin, name="bump", title="Bump",
            condition={"type": "level", "target": 4}, points=0, experience=100,
        )
        uid = make_user(seeded_engine, experience=950, level=4)
        check_and_award_badges(seeded_engine, rules, uid, now=NOW)
        assert {"bump", "level_5"} <= _held(seeded_engine, uid)
        assert get_user(seeded_engine, uid).level == 5

    def test_week_streak_badge(self, seeded_engine, rules):
        uid = make_user(seeded_engine)
        for offset in range(6, -1, -1):
            daily_checkin(seeded_engine, rules, uid, now=NOW - timedelta(days=offset))
        assert "week_checkin" in _held(seeded_engine, uid)

    def test_streak_with_gap_not_eligible(self, seeded_engine, rules):
        uid = make_user(seeded_engine)
        for offset in (8, 7, 6, 4, 3, 2, 1, 0):
            daily_checkin(seeded_engine, rules, uid, now=NOW - timedelta(days=offset))
        assert not is_eligible(
            seeded_engine, rules, uid, {"type": "consecutive_checkin", "target": 7}, now=NOW,
        )
        assert "week_checkin" not in _held(seeded_engine, uid)

    def test_old_streak_not_eligible(self, seeded_engine, rules):
        uid = make_user(seeded_engine)
        for offset in (10, 9, 8):
            daily_checkin(seeded_engine, rules, uid, now=NOW - timedelta(days=offset))
        assert not is_eligible(
            seeded_engine, rules, uid, {"type": "consecutive_checkin", "target": 3}, now=NOW,
        )

    def test_period_counts_only_recent_activity(self, seeded_engine, rules):
        uid = make_user(seeded_engine)
        create_topic(seeded_engine, rules, author_id=uid, title="old", content="x", now=NOW - timedelta(days=10))
        create_topic(seeded_engine, rules, author_id=uid, title="new", content="x", now=NOW)
        assert is_eligible(seeded_engine, rules, uid, {"type": "post_count", "target": 2}, now=NOW)
        assert not is_eligible(
            seeded_engine, rules, uid, {"type": "post_count", "target": 2, "period": "week"}, now=NOW,
        )

    def test_manual_badge_never_auto_awarded(self, seeded_engine, rules):
        admin = make_user(seeded_engine, "root", role="admin")
        create_badge(seeded_engine, actor_id=admin, name="staff_pick", title="Staff Pick", condition={"type": "manual"})
        uid = make_user(seeded_engine, experience=100000, level=40)
        check_and_award_badges(seeded_engine, rules, uid, now=NOW)
        assert "staff_pick" not in _held(seeded_engine, uid)


class TestCatalogue:
    def test_all_badges_flags_earned(self, seeded_engine, rules):
        uid = make_user(seeded_engine)
        create_topic(seeded_engine, rules, author_id=uid, title="Hello", content="x", now=NOW)
        rows = {b["name"]: b for b in get_all_badges(seeded_engine, uid)}
        assert rows["first_post"]["earned"] is True
        assert rows["frequent_poster"]["earned"] is False
        assert rows["first_post"]["condition_text"] == "1 topics"

    def test_user_badges_and_lookup(self, seeded_engine, rules):
        uid = make_user(seeded_engine)
        create_topic(seeded_engine, rules, author_id=uid, title="Hello", content="x", now=NOW)
        held = get_user_badges(seeded_engine, uid)
        assert [b["badge"]["name"] for b in held] == ["first_post"]
        assert get_badge(seeded_engine, _badge_id(seeded_engine, "first_post"))["title"] == "First Steps"
        assert get_badge(seeded_engine, 99999) is None

    def test_invalid_condition_rejected(self, seeded_engine):
        admin = make_user(seeded_engine, "root", role="admin")
        with pytest.raises(ConditionError):
            create_badge(seeded_engine, actor_id=admin, name="bad", title="Bad", condition={"type": "karma"})

    def test_deactivated_badge_not_awarded(self, seeded_engine, rules):
        admin = make_user(seeded_engine, "root", role="admin")
        update_badge(seeded_engine, _badge_id(seeded_engine, "first_post"), actor_id=admin, active=False)
        uid = make_user(seeded_engine)
        create_topic(seeded_engine, rules, author_id=uid, title="Hello", content="x", now=NOW)
        assert "first_post" not in _held(seeded_engine, uid)
