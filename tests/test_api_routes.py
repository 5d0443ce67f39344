"""
tests/test_api_routes.py — HTTP Surface
========================================

Drives the FastAPI app through ``TestClient`` against the in-memory
engine.  Requests use wall-clock time, so tests here avoid asserting on
calendar boundaries.
"""

from __future__ import annotations

import pytest

from conftest import auth, get_user, make_token, make_user
from agora.database.seed import seed_defaults


@pytest.fixture
def admin_headers(db_engine):
    uid = make_user(db_engine, "root", role="admin")
    return auth(make_token(uid, "root", "admin"))


@pytest.fixture
def member(db_engine):
    uid = make_user(db_engine, "bob")
    return uid, auth(make_token(uid, "bob"))


def _punish(client, headers, user_id, **body):
    payload = {"type": "ban", "severity": 3, "reason": "Spam", **body}
    return client.post(f"/api/admin/users/{user_id}/punish", json=payload, headers=headers)


class TestHealthAndAuth:
    def test_health(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json() == {"success": True, "data": {"status": "ok"}}

    def test_missing_token(self, client):
        resp = client.get("/api/points/info")
        assert resp.status_code == 401
        assert resp.json() == {"success": False, "message": "Missing token"}

    def test_garbage_token(self, client):
        resp = client.get("/api/points/info", headers=auth("not-a-jwt"))
        assert resp.status_code == 401

    def test_token_for_deleted_user(self, client):
        resp = client.get("/api/auth/me", headers=auth(make_token(4040)))
        assert resp.status_code == 401

    def test_me(self, client, member):
        uid, headers = member
        body = client.get("/api/auth/me", headers=headers).json()
        assert body["data"]["id"] == uid
        assert body["data"]["is_admin"] is False
        assert body["data"]["level_info"]["title"] == "Newcomer"

    def test_validation_error_envelope(self, client, member):
        _, headers = member
        resp = client.post("/api/points/consume", json={"amount": -1, "reason": "x"}, headers=headers)
        assert resp.status_code == 400
        assert resp.json()["success"] is False
        assert "amount" in resp.json()["message"]


class TestAdminGuard:
    def test_non_admin_forbidden(self, client, member):
        _, headers = member
        resp = client.get("/api/admin/users/stats", headers=headers)
        assert resp.status_code == 403
        assert resp.json()["message"] == "Not admin"

    def test_token_role_is_not_trusted(self, client, member):
        uid, _ = member
        forged = auth(make_token(uid, "bob", role="admin"))
        assert client.get("/api/admin/users/stats", headers=forged).status_code == 403

    def test_restricted_admin_forbidden(self, client, db_engine):
        uid = make_user(db_engine, "fallen", role="admin", status="banned")
        resp = client.get("/api/admin/users/stats", headers=auth(make_token(uid, "fallen", "admin")))
        assert resp.status_code == 403

    def test_admin_stats(self, client, admin_headers, member):
        data = client.get("/api/admin/users/stats", headers=admin_headers).json()["data"]
        assert data["total"] == 2
        assert data["by_role"]["admin"] == 1


class TestPointsRoutes:
    def test_checkin_once_per_day(self, client, member, db_engine):
        uid, headers = member
        first = client.post("/api/points/checkin", headers=headers).json()
        assert first["success"] is True
        assert first["data"]["consecutive_days"] == 1

        second = client.post("/api/points/checkin", headers=headers)
        assert second.status_code == 200
        assert second.json() == {"success": False, "message": "Already checked in today"}
        assert get_user(db_engine, uid).balance == 5

    def test_consume_insufficient_is_business_failure(self, client, member):
        _, headers = member
        resp = client.post("/api/points/consume", json={"amount": 10, "reason": "Hat"}, headers=headers)
        assert resp.status_code == 200
        assert resp.json()["success"] is False
        assert resp.json()["data"] == {"new_balance": 0}

    def test_info_and_history(self, client, member):
        _, headers = member
        client.post("/api/points/checkin", headers=headers)
        info = client.get("/api/points/info", headers=headers).json()["data"]
        assert info["balance"] == 5
        assert info["checked_in_today"] is True
        history = client.get("/api/points/history", headers=headers).json()["data"]
        assert [h["type"] for h in history["history"]] == ["login"]

    def test_public_tables(self, client):
        levels = client.get("/api/points/levels").json()["data"]
        assert levels[0] == {
            "level": 1, "required_exp": 0, "title": "Newcomer", "badge": "\U0001f331",
            "privileges": ["post", "reply"],
        }
        rules = client.get("/api/points/rules").json()["data"]
        assert rules["give_like"]["daily_limit"] == 20

    def test_leaderboard_param_validated(self, client):
        assert client.get("/api/points/leaderboard?by=karma").status_code == 400


class TestForumRoutes:
    def test_create_topic_reports_rewards(self, client, member):
        _, headers = member
        resp = client.post("/api/topics", json={"title": "Hi", "content": "There"}, headers=headers)
        assert resp.status_code == 201
        body = resp.json()["data"]
        assert body["item"]["title"] == "Hi"
        assert {r["points"] for r in body["rewards"]} == {10, 20}

    def test_like_twice(self, client, member, db_engine):
        _, headers = member
        author = make_user(db_engine, "carol")
        topic_id = client.post(
            "/api/topics", json={"title": "t", "content": "c"},
            headers=auth(make_token(author, "carol")),
        ).json()["data"]["item"]["id"]

        assert client.post(f"/api/topics/{topic_id}/like", headers=headers).json()["success"] is True
        again = client.post(f"/api/topics/{topic_id}/like", headers=headers).json()
        assert again == {"success": False, "message": "Already liked"}
        # carol: post 10 + first_post 20 + like_received 3
        assert get_user(db_engine, author).balance == 33

    def test_reply_to_missing_topic(self, client, member):
        _, headers = member
        resp = client.post("/api/topics/999/replies", json={"content": "x"}, headers=headers)
        assert resp.status_code == 404

    def test_list_topics_is_public(self, client, member):
        _, headers = member
        client.post("/api/topics", json={"title": "Hi", "content": "There"}, headers=headers)
        data = client.get("/api/topics").json()["data"]
        assert data["pagination"]["total"] == 1


class TestModerationFlow:
    def test_ban_blocks_posting_and_checkin(self, client, admin_headers, member):
        uid, headers = member
        resp = _punish(client, admin_headers, uid)
        assert resp.status_code == 201
        assert resp.json()["data"]["user_status"] == "banned"

        post = client.post("/api/topics", json={"title": "t", "content": "c"}, headers=headers)
        assert post.status_code == 403
        assert post.json()["code"] == "USER_BANNED"
        assert post.json()["punishment"]["type"] == "ban"

        assert client.post("/api/points/checkin", headers=headers).status_code == 403

    def test_mute_blocks_posting_but_not_likes(self, client, admin_headers, member, db_engine):
        uid, headers = member
        _punish(client, admin_headers, uid, type="mute", severity=2, duration_minutes=60)
        assert client.post(
            "/api/topics", json={"title": "t", "content": "c"}, headers=headers,
        ).json()["code"] == "USER_MUTED"

        author = make_user(db_engine, "carol")
        topic_id = client.post(
            "/api/topics", json={"title": "t", "content": "c"},
            headers=auth(make_token(author, "carol")),
        ).json()["data"]["item"]["id"]
        assert client.post(f"/api/topics/{topic_id}/like", headers=headers).status_code == 200

    def test_self_punish_rejected(self, client, db_engine):
        uid = make_user(db_engine, "root", role="admin")
        resp = _punish(client, auth(make_token(uid, "root", "admin")), uid)
        assert resp.status_code == 400

    def test_punish_unknown_user(self, client, admin_headers):
        assert _punish(client, admin_headers, 9999).status_code == 404

    def test_punish_bad_severity(self, client, admin_headers, member):
        uid, _ = member
        assert _punish(client, admin_headers, uid, severity=9).status_code == 400

    def test_appeal_and_approve(self, client, admin_headers, member, db_engine):
        uid, headers = member
        pid = _punish(client, admin_headers, uid).json()["data"]["punishment"]["id"]

        # Banned users can still see and appeal their punishments.
        summary = client.get("/api/punishments/my-punishments", headers=headers).json()["data"]
        assert summary["user_status"] == "banned"
        appealable = client.get("/api/punishments/appealable", headers=headers).json()["data"]
        assert [p["id"] for p in appealable] == [pid]

        appeal = {"punishment_id": pid, "title": "Mistake", "content": "Not me"}
        created = client.post("/api/punishments/appeals", json=appeal, headers=headers)
        assert created.status_code == 201
        appeal_id = created.json()["data"]["id"]

        dup = client.post("/api/punishments/appeals", json=appeal, headers=headers)
        assert dup.status_code == 400

        queue = client.get("/api/admin/appeals?status=pending", headers=admin_headers).json()["data"]
        assert [a["id"] for a in queue["appeals"]] == [appeal_id]

        handled = client.put(
            f"/api/admin/appeals/{appeal_id}/handle",
            json={"status": "approved", "admin_note": "Verified"},
            headers=admin_headers,
        )
        assert handled.status_code == 200
        assert get_user(db_engine, uid).status == "active"

    def test_appeal_unknown_punishment(self, client, member):
        _, headers = member
        resp = client.post(
            "/api/punishments/appeals",
            json={"punishment_id": 77, "title": "t", "content": "c"},
            headers=headers,
        )
        assert resp.status_code == 404

    def test_handle_back_to_pending_rejected(self, client, admin_headers):
        resp = client.put("/api/admin/appeals/1/handle", json={"status": "pending"}, headers=admin_headers)
        assert resp.status_code == 400

    def test_revoke(self, client, admin_headers, member, db_engine):
        uid, _ = member
        pid = _punish(client, admin_headers, uid).json()["data"]["punishment"]["id"]
        resp = client.put(f"/api/admin/punishments/{pid}/revoke", json={"reason": "Oops"}, headers=admin_headers)
        assert resp.json()["success"] is True
        assert get_user(db_engine, uid).status == "active"

        again = client.put(f"/api/admin/punishments/{pid}/revoke", json={}, headers=admin_headers)
        assert again.status_code == 200
        assert again.json()["success"] is False

        assert client.put("/api/admin/punishments/999/revoke", json={}, headers=admin_headers).status_code == 404

    def test_punishment_listing(self, client, admin_headers, member):
        uid, _ = member
        _punish(client, admin_headers, uid, type="warning", severity=1)
        data = client.get("/api/admin/punishments?type=warning", headers=admin_headers).json()["data"]
        assert [p["username"] for p in data["punishments"]] == ["bob"]


class TestBatchRoutes:
    def test_batch_runs_in_background(self, client, admin_headers, db_engine):
        users = [make_user(db_engine, f"spam{i}") for i in range(3)]
        resp = client.post(
            "/api/admin/users/batch",
            json={"type": "batch_suspend", "user_ids": [*users, 5555], "severity": 2,
                  "reason": "Spam wave", "duration_minutes": 120},
            headers=admin_headers,
        )
        assert resp.status_code == 202
        op_id = resp.json()["data"]["operation_id"]

        # TestClient runs background tasks before returning.
        op = client.get(f"/api/admin/batch-operations/{op_id}", headers=admin_headers).json()["data"]
        assert op["status"] == "completed"
        assert op["progress"] == 100
        assert sum(1 for r in op["result"] if r["success"]) == 3
        assert all(get_user(db_engine, u).status == "suspended" for u in users)

    def test_unknown_batch_type(self, client, admin_headers):
        resp = client.post(
            "/api/admin/users/batch",
            json={"type": "batch_exile", "user_ids": [1], "reason": "x"},
            headers=admin_headers,
        )
        assert resp.status_code == 400

    def test_missing_operation(self, client, admin_headers):
        assert client.get("/api/admin/batch-operations/42", headers=admin_headers).status_code == 404


class TestCatalogueRoutes:
    def test_badge_lifecycle(self, client, admin_headers):
        created = client.post(
            "/api/admin/badges",
            json={"name": "helper", "title": "Helper", "condition": {"type": "reply_count", "target": 5}},
            headers=admin_headers,
        )
        assert created.status_code == 201
        badge_id = created.json()["data"]["id"]

        dup = client.post(
            "/api/admin/badges",
            json={"name": "helper", "title": "Again", "condition": {"type": "reply_count", "target": 5}},
            headers=admin_headers,
        )
        assert dup.status_code == 400

        patched = client.patch(f"/api/admin/badges/{badge_id}", json={"title": "Great Helper"}, headers=admin_headers)
        assert patched.json()["data"]["title"] == "Great Helper"
        assert client.get(f"/api/badges/{badge_id}").json()["data"]["title"] == "Great Helper"

    def test_badge_invalid_condition(self, client, admin_headers):
        resp = client.post(
            "/api/admin/badges",
            json={"name": "x", "title": "X", "condition": {"type": "karma", "target": 1}},
            headers=admin_headers,
        )
        assert resp.status_code == 400
        assert resp.json()["message"].startswith("Invalid condition")

    def test_seeded_catalogue_and_progress(self, client, member, db_engine):
        seed_defaults(db_engine)
        _, headers = member
        assert len(client.get("/api/badges/all").json()["data"]) == 15
        assert len(client.get("/api/special-tags/all").json()["data"]) == 6

        done = client.post("/api/daily-tasks/progress", json={"action": "course_time", "minutes": 30}, headers=headers)
        assert len(done.json()["data"]["completed"]) == 1
        unknown = client.post("/api/daily-tasks/progress", json={"action": "fly"}, headers=headers)
        assert unknown.json()["success"] is False

        tasks = client.get("/api/daily-tasks/user", headers=headers).json()["data"]
        assert tasks["stats"]["completed"] == 1

    def test_tag_grant_and_revoke(self, client, admin_headers, member, db_engine):
        seed_defaults(db_engine)
        uid, headers = member
        vip = next(t for t in client.get("/api/special-tags/all").json()["data"] if t["name"] == "vip")

        grant = client.post(f"/api/admin/special-tags/{vip['id']}/grant", json={"user_id": uid}, headers=admin_headers)
        assert grant.json()["success"] is True
        mine = client.get("/api/special-tags/user", headers=headers).json()["data"]
        assert [t["tag"]["name"] for t in mine] == ["vip"]

        revoke = client.post(f"/api/admin/special-tags/{vip['id']}/revoke", json={"user_id": uid}, headers=admin_headers)
        assert revoke.status_code == 200
        again = client.post(f"/api/admin/special-tags/{vip['id']}/revoke", json={"user_id": uid}, headers=admin_headers)
        assert again.status_code == 404

    def test_adjust_points(self, client, admin_headers, member, db_engine):
        uid, _ = member
        resp = client.post(
            "/api/admin/points/adjust",
            json={"user_id": uid, "points": 40, "reason": "Contest"},
            headers=admin_headers,
        )
        assert resp.json()["data"]["balance"] == 40
        assert client.post(
            "/api/admin/points/adjust", json={"user_id": uid, "reason": "noop"}, headers=admin_headers,
        ).status_code == 400

    def test_audit_log(self, client, admin_headers, member):
        uid, _ = member
        _punish(client, admin_headers, uid, type="warning", severity=1)
        logs = client.get("/api/admin/logs?action_type=PUNISH", headers=admin_headers).json()["data"]
        assert logs["pagination"]["total"] == 1


class TestNotificationRoutes:
    def test_read_flow(self, client, admin_headers, member):
        uid, headers = member
        _punish(client, admin_headers, uid, type="warning", severity=1)
        _punish(client, admin_headers, uid, type="warning", severity=1)

        assert client.get("/api/notifications/unread-count", headers=headers).json()["data"] == {"count": 2}
        notes = client.get("/api/notifications", headers=headers).json()["data"]["notifications"]
        assert client.put(f"/api/notifications/{notes[0]['id']}/read", headers=headers).status_code == 200
        assert client.get("/api/notifications/unread-count", headers=headers).json()["data"] == {"count": 1}

        assert client.put("/api/notifications/read-all", headers=headers).json()["data"] == {"updated": 1}
        assert client.put("/api/notifications/9999/read", headers=headers).status_code == 404
