"""
tests/test_daily_tasks.py — Daily Task Progress
================================================
"""

from __future__ import annotations

from datetime import timedelta

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from conftest import NOW, get_user, make_user
from agora.database.models import DailyTask, DailyTaskProgress, PointHistory
from agora.services.admin_service import create_daily_task, update_daily_task
from agora.services.daily_task_service import (
    get_all_daily_tasks,
    get_user_daily_tasks,
    get_user_task_stats,
    handle_user_action,
)


def _task_id(engine, name: str) -> int:
    with Session(engine) as session:
        return session.scalar(select(DailyTask.id).where(DailyTask.name == name))


class TestInitialisation:
    def test_first_read_creates_rows(self, seeded_engine, rules):
        uid = make_user(seeded_engine)
        data = get_user_daily_tasks(seeded_engine, rules, uid, now=NOW)

        assert data["date"] == "2026-03-10"
        assert data["stats"] == {"total": 5, "completed": 0, "completion_rate": 0, "points_earned": 0}
        assert all(t["progress"] == 0 for t in data["tasks"])

    def test_second_read_does_not_duplicate(self, seeded_engine, rules):
        uid = make_user(seeded_engine)
        get_user_daily_tasks(seeded_engine, rules, uid, now=NOW)
        get_user_daily_tasks(seeded_engine, rules, uid, now=NOW + timedelta(hours=1))
        with Session(seeded_engine) as session:
            assert session.scalar(
                select(func.count()).select_from(DailyTaskProgress).where(DailyTaskProgress.user_id == uid)
            ) == 5

    def test_new_day_gets_fresh_rows(self, seeded_engine, rules):
        uid = make_user(seeded_engine)
        handle_user_action(seeded_engine, rules, uid, "checkin", now=NOW)
        tomorrow = get_user_daily_tasks(seeded_engine, rules, uid, now=NOW + timedelta(days=1))
        assert tomorrow["date"] == "2026-03-11"
        assert tomorrow["stats"]["completed"] == 0


class TestProgress:
    def test_reply_task_completes_on_third_reply(self, seeded_engine, rules):
        uid = make_user(seeded_engine)
        task_id = _task_id(seeded_engine, "daily_reply")

        assert handle_user_action(seeded_engine, rules, uid, "reply_created", now=NOW) == []
        assert handle_user_action(seeded_engine, rules, uid, "reply_created", now=NOW) == []
        assert handle_user_action(seeded_engine, rules, uid, "reply_created", now=NOW) == [task_id]

        user = get_user(seeded_engine, uid)
        assert (user.balance, user.experience) == (15, 15)

    def test_completed_task_is_not_rewarded_twice(self, seeded_engine, rules):
        uid = make_user(seeded_engine)
        for _ in range(6):
            handle_user_action(seeded_engine, rules, uid, "reply_created", now=NOW)

        with Session(seeded_engine) as session:
            rows = session.scalars(
                select(PointHistory).where(PointHistory.user_id == uid, PointHistory.type == "daily_task")
            ).all()
        assert len(rows) == 1

    def test_progress_capped_at_target(self, seeded_engine, rules):
        uid = make_user(seeded_engine)
        completed = handle_user_action(seeded_engine, rules, uid, "course_time", minutes=45, now=NOW)
        assert completed == [_task_id(seeded_engine, "daily_learning")]

        data = get_user_daily_tasks(seeded_engine, rules, uid, now=NOW)
        learning = next(t for t in data["tasks"] if t["task"]["name"] == "daily_learning")
        assert learning["progress"] == 30
        assert learning["progress_percent"] == 100
        assert learning["completed"] is True

    def test_course_time_without_minutes_is_ignored(self, seeded_engine, rules):
        uid = make_user(seeded_engine)
        assert handle_user_action(seeded_engine, rules, uid, "course_time", now=NOW) == []

    def test_unknown_action_is_ignored(self, seeded_engine, rules):
        uid = make_user(seeded_engine)
        assert handle_user_action(seeded_engine, rules, uid, "teleported", now=NOW) == []

    def test_inactive_task_not_advanced(self, seeded_engine, rules):
        admin = make_user(seeded_engine, "root", role="admin")
        update_daily_task(seeded_engine, _task_id(seeded_engine, "daily_checkin"), actor_id=admin, active=False)
        uid = make_user(seeded_engine)
        assert handle_user_action(seeded_engine, rules, uid, "checkin", now=NOW) == []
        assert get_user_daily_tasks(seeded_engine, rules, uid, now=NOW)["stats"]["total"] == 4

    def test_custom_task(self, seeded_engine, rules):
        admin = make_user(seeded_engine, "root", role="admin")
        task = create_daily_task(
            seeded_engine, actor_id=admin, name="two_likes", title="Two Likes",
            type="like", target=2, points=7, experience=3,
        )
        uid = make_user(seeded_engine)
        handle_user_action(seeded_engine, rules, uid, "like_given", now=NOW)
        completed = handle_user_action(seeded_engine, rules, uid, "like_given", now=NOW)
        assert completed == [task.id]
        assert get_user(seeded_engine, uid).balance == 7


class TestStats:
    def test_summary_after_completion(self, seeded_engine, rules):
        uid = make_user(seeded_engine)
        handle_user_action(seeded_engine, rules, uid, "checkin", now=NOW)
        stats = get_user_daily_tasks(seeded_engine, rules, uid, now=NOW)["stats"]
        assert stats["completed"] == 1
        assert stats["completion_rate"] == 20
        assert stats["points_earned"] == 5

    def test_history_by_date(self, seeded_engine, rules):
        uid = make_user(seeded_engine)
        handle_user_action(seeded_engine, rules, uid, "checkin", now=NOW - timedelta(days=1))
        get_user_daily_tasks(seeded_engine, rules, uid, now=NOW)

        stats = get_user_task_stats(seeded_engine, rules, uid, days=7, now=NOW)
        assert [s["date"] for s in stats] == ["2026-03-10", "2026-03-09"]
        assert stats[1]["completed_tasks"] == 1
        assert stats[1]["completion_rate"] == 20
        assert stats[0]["completed_tasks"] == 0

    def test_catalogue(self, seeded_engine):
        names = [t["name"] for t in get_all_daily_tasks(seeded_engine)]
        assert names == ["daily_post", "daily_reply", "daily_like", "daily_checkin", "daily_learning"]
