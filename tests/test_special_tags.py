"""
tests/test_special_tags.py — Special Tag Grants, Expiry & Conditions
=====================================================================
"""

from __future__ import annotations

from datetime import timedelta

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from conftest import NOW, make_user
from agora.database.models import AdminLog, SpecialTag, UserSpecialTag
from agora.services.admin_service import create_special_tag
from agora.services.special_tag_service import (
    check_and_grant_conditional_tags,
    cleanup_expired_tags,
    get_all_special_tags,
    get_user_special_tags,
    grant_special_tag,
    revoke_special_tag,
)


def _tag_id(engine, name: str) -> int:
    with Session(engine) as session:
        return session.scalar(select(SpecialTag.id).where(SpecialTag.name == name))


def _held_names(engine, user_id: int, now=NOW) -> list[str]:
    return [t["tag"]["name"] for t in get_user_special_tags(engine, user_id, now=now)]


class TestGrant:
    def test_manual_grant_uses_default_duration(self, seeded_engine):
        admin = make_user(seeded_engine, "root", role="admin")
        uid = make_user(seeded_engine)
        ok, _ = grant_special_tag(seeded_engine, uid, _tag_id(seeded_engine, "vip"), granted_by=admin, now=NOW)
        assert ok

        (held,) = get_user_special_tags(seeded_engine, uid, now=NOW)
        assert held["tag"]["name"] == "vip"
        assert held["expires_at"] == (NOW + timedelta(days=365)).isoformat()
        assert held["is_expiring"] is False

    def test_permanent_tag_has_no_expiry(self, seeded_engine):
        uid = make_user(seeded_engine)
        grant_special_tag(seeded_engine, uid, _tag_id(seeded_engine, "early_bird"), now=NOW)
        (held,) = get_user_special_tags(seeded_engine, uid, now=NOW)
        assert held["expires_at"] is None

    def test_short_grant_is_flagged_expiring(self, seeded_engine):
        uid = make_user(seeded_engine)
        grant_special_tag(seeded_engine, uid, _tag_id(seeded_engine, "vip"), duration_days=3, now=NOW)
        (held,) = get_user_special_tags(seeded_engine, uid, now=NOW)
        assert held["is_expiring"] is True

    def test_regrant_refreshes_instead_of_duplicating(self, seeded_engine):
        uid = make_user(seeded_engine)
        tag_id = _tag_id(seeded_engine, "vip")
        grant_special_tag(seeded_engine, uid, tag_id, duration_days=3, now=NOW)
        grant_special_tag(seeded_engine, uid, tag_id, duration_days=30, now=NOW)

        with Session(seeded_engine) as session:
            assert session.scalar(
                select(func.count()).select_from(UserSpecialTag).where(UserSpecialTag.user_id == uid)
            ) == 1
        (held,) = get_user_special_tags(seeded_engine, uid, now=NOW)
        assert held["expires_at"] == (NOW + timedelta(days=30)).isoformat()

    def test_unknown_tag_or_user(self, seeded_engine):
        uid = make_user(seeded_engine)
        assert grant_special_tag(seeded_engine, uid, 9999, now=NOW) == (False, "Special tag not found.")
        assert grant_special_tag(seeded_engine, 9999, _tag_id(seeded_engine, "vip"), now=NOW) == (
            False, "User not found.",
        )

    def test_staff_grant_is_audited(self, seeded_engine):
        admin = make_user(seeded_engine, "root", role="admin")
        uid = make_user(seeded_engine)
        grant_special_tag(seeded_engine, uid, _tag_id(seeded_engine, "vip"), granted_by=admin, now=NOW)
        with Session(seeded_engine) as session:
            log = session.scalar(select(AdminLog).where(AdminLog.action_type == "GRANT_TAG"))
        assert log.actor_id == admin
        assert log.after_snapshot["user_id"] == uid


class TestRevokeAndExpiry:
    def test_revoke(self, seeded_engine):
        admin = make_user(seeded_engine, "root", role="admin")
        uid = make_user(seeded_engine)
        tag_id = _tag_id(seeded_engine, "early_bird")
        grant_special_tag(seeded_engine, uid, tag_id, now=NOW)

        assert revoke_special_tag(seeded_engine, uid, tag_id, revoked_by=admin) is True
        assert revoke_special_tag(seeded_engine, uid, tag_id, revoked_by=admin) is False
        assert _held_names(seeded_engine, uid) == []

    def test_revoked_tag_can_be_granted_again(self, seeded_engine):
        uid = make_user(seeded_engine)
        tag_id = _tag_id(seeded_engine, "early_bird")
        grant_special_tag(seeded_engine, uid, tag_id, now=NOW)
        revoke_special_tag(seeded_engine, uid, tag_id)
        grant_special_tag(seeded_engine, uid, tag_id, now=NOW)
        assert _held_names(seeded_engine, uid) == ["early_bird"]

    def test_expired_grant_not_held_before_cleanup(self, seeded_engine):
        uid = make_user(seeded_engine)
        grant_special_tag(seeded_engine, uid, _tag_id(seeded_engine, "vip"), duration_days=1, now=NOW)
        assert _held_names(seeded_engine, uid, now=NOW + timedelta(days=2)) == []

    def test_cleanup_deactivates_only_expired(self, seeded_engine):
        uid = make_user(seeded_engine)
        grant_special_tag(seeded_engine, uid, _tag_id(seeded_engine, "vip"), duration_days=1, now=NOW)
        grant_special_tag(seeded_engine, uid, _tag_id(seeded_engine, "early_bird"), now=NOW)

        assert cleanup_expired_tags(seeded_engine, now=NOW + timedelta(days=2)) == 1
        assert cleanup_expired_tags(seeded_engine, now=NOW + timedelta(days=2)) == 0
        with Session(seeded_engine) as session:
            active = session.scalars(
                select(UserSpecialTag.active).where(UserSpecialTag.user_id == uid)
            ).all()
        assert sorted(active) == [False, True]


class TestConditionalTags:
    def test_level_tag_granted(self, seeded_engine, rules):
        uid = make_user(seeded_engine, experience=4500, level=10)
        granted = check_and_grant_conditional_tags(seeded_engine, rules, uid, now=NOW)
        assert granted == [_tag_id(seeded_engine, "active_user")]
        assert _held_names(seeded_engine, uid) == ["active_user"]

    def test_not_granted_twice(self, seeded_engine, rules):
        uid = make_user(seeded_engine, experience=4500, level=10)
        check_and_grant_conditional_tags(seeded_engine, rules, uid, now=NOW)
        assert check_and_grant_conditional_tags(seeded_engine, rules, uid, now=NOW) == []

    def test_manual_tags_never_auto_granted(self, seeded_engine, rules):
        uid = make_user(seeded_engine, experience=200000, level=50)
        check_and_grant_conditional_tags(seeded_engine, rules, uid, now=NOW)
        held = set(_held_names(seeded_engine, uid))
        assert not held & {"admin", "moderator", "vip", "early_bird"}

    def test_unqualified_user(self, seeded_engine, rules):
        uid = make_user(seeded_engine)
        assert check_and_grant_conditional_tags(seeded_engine, rules, uid, now=NOW) == []

    def test_custom_conditional_tag(self, seeded_engine, rules):
        admin = make_user(seeded_engine, "root", role="admin")
        tag = create_special_tag(
            seeded_engine, actor_id=admin, name="veteran", title="Veteran",
            condition={"type": "level", "target": 2}, permanent=True,
        )
        uid = make_user(seeded_engine, experience=150, level=2)
        assert check_and_grant_conditional_tags(seeded_engine, rules, uid, now=NOW) == [tag.id]


class TestCatalogue:
    def test_all_tags_listed(self, seeded_engine):
        tags = {t["name"]: t for t in get_all_special_tags(seeded_engine)}
        assert len(tags) == 6
        assert tags["active_user"]["condition_text"] == "Reach level 10"
        assert tags["vip"]["condition_text"] == "Granted by staff"
