"""
tests/test_point_service.py — Ledger, Daily Limits, Check-in & Level-ups
=========================================================================

Uses an unseeded database so no badge or daily-task rewards leak into the
balances being asserted.
"""

from __future__ import annotations

from datetime import timedelta

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from conftest import NOW, get_user, make_user
from agora.database.models import Notification, PointHistory, User
from agora.services.admin_service import admin_adjust_points
from agora.services.point_service import (
    apply_credit,
    consume_points,
    daily_checkin,
    get_leaderboard,
    get_point_history,
    get_point_info,
    grant_points,
)


def _ledger(engine, user_id, type=None):
    with Session(engine) as session:
        stmt = select(PointHistory).where(PointHistory.user_id == user_id)
        if type:
            stmt = stmt.where(PointHistory.type == type)
        return session.scalars(stmt.order_by(PointHistory.id)).all()


class TestApplyCredit:
    def test_loaded_user_sees_new_totals(self, db_engine, rules):
        uid = make_user(db_engine)
        with Session(db_engine) as session:
            user = session.get(User, uid)
            assert user.balance == 0
            outcome = apply_credit(
                session, rules, uid, points=40, experience=120, type="post", reason="r", now=NOW,
            )
            assert user.balance == outcome.new_balance
            assert (user.experience, user.level) == (120, 2)


class TestGrantPoints:
    def test_grant_credits_balance_and_ledger(self, db_engine, rules):
        uid = make_user(db_engine)
        result = grant_points(db_engine, rules, user_id=uid, type="post", related_id=7, now=NOW)

        assert result.success
        assert (result.points, result.experience) == (10, 15)
        user = get_user(db_engine, uid)
        assert (user.balance, user.experience, user.level) == (10, 15, 1)
        rows = _ledger(db_engine, uid)
        assert len(rows) == 1
        assert rows[0].related_id == "7"

    def test_unknown_rule(self, db_engine, rules):
        uid = make_user(db_engine)
        result = grant_points(db_engine, rules, user_id=uid, type="teleport", now=NOW)
        assert not result.success
        assert _ledger(db_engine, uid) == []

    def test_missing_user(self, db_engine, rules):
        result = grant_points(db_engine, rules, user_id=404, type="post", now=NOW)
        assert not result.success
        assert result.message == "User not found"

    def test_daily_limit(self, db_engine, rules):
        uid = make_user(db_engine)
        for _ in range(20):
            assert grant_points(db_engine, rules, user_id=uid, type="give_like", now=NOW).success

        blocked = grant_points(db_engine, rules, user_id=uid, type="give_like", now=NOW)
        assert not blocked.success
        assert "Daily limit" in blocked.message

        user = get_user(db_engine, uid)
        assert (user.balance, user.experience) == (20, 40)
        assert len(_ledger(db_engine, uid, "give_like")) == 20

    def test_daily_limit_resets_next_local_day(self, db_engine, rules):
        uid = make_user(db_engine)
        for _ in range(20):
            grant_points(db_engine, rules, user_id=uid, type="give_like", now=NOW)
        tomorrow = NOW + timedelta(days=1)
        assert grant_points(db_engine, rules, user_id=uid, type="give_like", now=tomorrow).success

    def test_unlimited_rule_never_blocks(self, db_engine, rules):
        uid = make_user(db_engine)
        for _ in range(30):
            assert grant_points(db_engine, rules, user_id=uid, type="reply", now=NOW).success


class TestLevelUp:
    def test_crossing_threshold_awards_bonus(self, db_engine, rules):
        uid = make_user(db_engine)
        result = grant_points(db_engine, rules, user_id=uid, type="create_course", now=NOW)

        assert result.leveled_up
        assert result.new_level == 2
        user = get_user(db_engine, uid)
        # 50 from the rule + floor(2 * 10) level-up bonus
        assert (user.balance, user.experience, user.level) == (70, 100, 2)

        bonus_rows = _ledger(db_engine, uid, "level_up")
        assert len(bonus_rows) == 1
        assert bonus_rows[0].amount == 20

    def test_level_up_notifies(self, db_engine, rules):
        uid = make_user(db_engine)
        grant_points(db_engine, rules, user_id=uid, type="create_course", now=NOW)
        with Session(db_engine) as session:
            types = session.scalars(
                select(Notification.type).where(Notification.user_id == uid)
            ).all()
        assert types == ["level_up"]

    def test_no_bonus_without_level_change(self, db_engine, rules):
        uid = make_user(db_engine)
        grant_points(db_engine, rules, user_id=uid, type="post", now=NOW)
        assert _ledger(db_engine, uid, "level_up") == []


class TestConsume:
    def test_insufficient_balance_leaves_state_untouched(self, db_engine):
        uid = make_user(db_engine, balance=5)
        result = consume_points(db_engine, user_id=uid, amount=10, reason="Buy hat", now=NOW)

        assert not result.success
        assert result.message == "Insufficient balance"
        assert result.new_balance == 5
        assert get_user(db_engine, uid).balance == 5
        assert _ledger(db_engine, uid) == []

    def test_consume_debits(self, db_engine):
        uid = make_user(db_engine, balance=50, experience=30)
        result = consume_points(db_engine, user_id=uid, amount=20, reason="Buy hat", now=NOW)

        assert result.success
        assert result.new_balance == 30
        user = get_user(db_engine, uid)
        assert (user.balance, user.experience) == (30, 30)
        (row,) = _ledger(db_engine, uid)
        assert (row.amount, row.type) == (-20, "consume")

    def test_exact_balance(self, db_engine):
        uid = make_user(db_engine, balance=20)
        assert consume_points(db_engine, user_id=uid, amount=20, reason="All in", now=NOW).success
        assert get_user(db_engine, uid).balance == 0

    def test_non_positive_amount(self, db_engine):
        uid = make_user(db_engine, balance=20)
        assert not consume_points(db_engine, user_id=uid, amount=0, reason="x", now=NOW).success

    def test_missing_user(self, db_engine):
        result = consume_points(db_engine, user_id=999, amount=1, reason="x", now=NOW)
        assert result.message == "User not found"


class TestCheckin:
    def test_three_consecutive_days(self, db_engine, rules):
        uid = make_user(db_engine)
        streaks = []
        for offset in (2, 1, 0):
            result = daily_checkin(db_engine, rules, uid, now=NOW - timedelta(days=offset))
            assert result.success
            streaks.append(result.consecutive_days)

        assert streaks == [1, 2, 3]
        assert len(_ledger(db_engine, uid, "login")) == 3
        user = get_user(db_engine, uid)
        assert (user.balance, user.experience) == (15, 6)

    def test_second_checkin_same_day_rejected(self, db_engine, rules):
        uid = make_user(db_engine)
        assert daily_checkin(db_engine, rules, uid, now=NOW).success
        again = daily_checkin(db_engine, rules, uid, now=NOW + timedelta(hours=3))
        assert not again.success
        assert again.message == "Already checked in today"
        assert get_user(db_engine, uid).balance == 5

    def test_gap_restarts_streak(self, db_engine, rules):
        uid = make_user(db_engine)
        daily_checkin(db_engine, rules, uid, now=NOW - timedelta(days=3))
        daily_checkin(db_engine, rules, uid, now=NOW - timedelta(days=2))
        result = daily_checkin(db_engine, rules, uid, now=NOW)
        assert result.consecutive_days == 1

    def test_seventh_day_bonus(self, db_engine, rules):
        uid = make_user(db_engine)
        for offset in range(6, -1, -1):
            result = daily_checkin(db_engine, rules, uid, now=NOW - timedelta(days=offset))

        assert result.consecutive_days == 7
        assert (result.bonus_points, result.bonus_experience) == (20, 15)
        user = get_user(db_engine, uid)
        assert (user.balance, user.experience) == (7 * 5 + 20, 7 * 2 + 15)
        assert len(_ledger(db_engine, uid, "checkin_bonus")) == 1


class TestReadSide:
    def test_point_info(self, db_engine, rules):
        uid = make_user(db_engine)
        daily_checkin(db_engine, rules, uid, now=NOW - timedelta(days=1))
        daily_checkin(db_engine, rules, uid, now=NOW)
        grant_points(db_engine, rules, user_id=uid, type="post", now=NOW)

        info = get_point_info(db_engine, rules, uid, now=NOW)
        assert info["balance"] == 20
        assert info["today_points"] == 15
        assert info["today_experience"] == 17
        assert info["checked_in_today"] is True
        assert info["consecutive_days"] == 2
        assert info["next_level_exp"] == 100
        assert info["level_info"]["title"] == "Newcomer"

    def test_point_info_streak(self, db_engine, rules):
        uid = make_user(db_engine)
        for offset in (10, 9, 8):
            daily_checkin(db_engine, rules, uid, now=NOW - timedelta(days=offset))
        assert get_point_info(db_engine, rules, uid, now=NOW)["consecutive_days"] == 0

        daily_checkin(db_engine, rules, uid, now=NOW - timedelta(days=1))
        info = get_point_info(db_engine, rules, uid, now=NOW)
        assert info["checked_in_today"] is False
        assert info["consecutive_days"] == 1

    def test_point_info_missing_user(self, db_engine, rules):
        assert get_point_info(db_engine, rules, 12345, now=NOW) is None

    def test_history_paginates_newest_first(self, db_engine, rules):
        uid = make_user(db_engine)
        for i in range(5):
            grant_points(db_engine, rules, user_id=uid, type="reply", now=NOW + timedelta(minutes=i))

        page = get_point_history(db_engine, uid, page=1, limit=2)
        assert page["pagination"] == {"page": 1, "limit": 2, "total": 5, "pages": 3}
        assert [h["amount"] for h in page["history"]] == [5, 5]
        assert page["history"][0]["created_at"] > page["history"][1]["created_at"]

    def test_history_type_filter(self, db_engine, rules):
        uid = make_user(db_engine)
        grant_points(db_engine, rules, user_id=uid, type="reply", now=NOW)
        grant_points(db_engine, rules, user_id=uid, type="post", now=NOW)
        page = get_point_history(db_engine, uid, type="post")
        assert [h["type"] for h in page["history"]] == ["post"]

    def test_leaderboard(self, db_engine, rules):
        make_user(db_engine, "low", experience=10, balance=500)
        make_user(db_engine, "high", experience=900, balance=1)
        by_exp = get_leaderboard(db_engine, rules)
        assert [row["username"] for row in by_exp] == ["high", "low"]
        assert by_exp[0]["rank"] == 1
        by_balance = get_leaderboard(db_engine, rules, by="balance")
        assert by_balance[0]["username"] == "low"


class TestAdminAdjust:
    def test_negative_adjust_clamps_at_zero(self, db_engine, rules):
        admin = make_user(db_engine, "root", role="admin")
        uid = make_user(db_engine, balance=30, experience=150, level=2)

        after = admin_adjust_points(
            db_engine, rules,
            user_id=uid, points=-100, experience=-100, reason="Spam cleanup", actor_id=admin, now=NOW,
        )
        assert after == {"balance": 0, "experience": 50, "level": 1}
        (row,) = _ledger(db_engine, uid, "admin_adjust")
        # Ledger records the delta actually applied.
        assert (row.amount, row.experience) == (-30, -100)

    def test_positive_adjust_levels_up(self, db_engine, rules):
        admin = make_user(db_engine, "root", role="admin")
        uid = make_user(db_engine)
        after = admin_adjust_points(
            db_engine, rules,
            user_id=uid, points=0, experience=300, reason="Event prize", actor_id=admin, now=NOW,
        )
        assert after["level"] == 3
        assert after["balance"] == 30

    def test_missing_user(self, db_engine, rules):
        assert admin_adjust_points(
            db_engine, rules, user_id=999, points=1, reason="x", actor_id=1, now=NOW,
        ) is None

    def test_ledger_row_count_matches(self, db_engine, rules):
        admin = make_user(db_engine, "root", role="admin")
        uid = make_user(db_engine)
        admin_adjust_points(db_engine, rules, user_id=uid, points=5, reason="x", actor_id=admin, now=NOW)
        with Session(db_engine) as session:
            assert session.scalar(
                select(func.count()).select_from(PointHistory).where(PointHistory.user_id == uid)
            ) == 1
