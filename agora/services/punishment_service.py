"""
agora.services.punishment_service — Punishments, Expiry Sweep & Appeals
========================================================================

DB half of the moderation state machine.  Transitions are limited to

    active → expired   (sweep, when end_time has passed)
    active → revoked   (admin revoke, or an approved appeal)

and every transition recomputes ``users.status`` from the remaining
in-force punishments via :func:`agora.engine.punishments.resolve_user_status`.

The sweep expires one punishment per transaction so a bad row can't stall
the rest.  Request guards re-query in-force punishments instead of trusting
the cached status, and repair it when it has drifted.

At most one open (pending/processing) appeal may exist per punishment.  A
query check gives the friendly error; the partial unique index
``uq_user_appeals_open_per_punishment`` closes the race.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import Engine, case, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from agora.database.models import (
    OPEN_APPEAL_STATUSES,
    AdminActionType,
    AppealStatus,
    PunishmentStatus,
    PunishmentType,
    User,
    UserAppeal,
    UserPunishment,
    UserStatus,
)
from agora.engine.clock import as_utc
from agora.engine.punishments import (
    MAX_SEVERITY,
    MIN_SEVERITY,
    appeal_priority,
    is_restricting,
    resolve_user_status,
    trust_penalty,
)
from agora.services.admin_service import log_admin_action, row_to_dict
from agora.services.notification_service import notify
from agora.services.paging import clamp_page, pagination

logger = logging.getLogger(__name__)

APPEALABLE_MIN_SEVERITY = 2
HANDLE_STATUSES = (
    AppealStatus.PROCESSING,
    AppealStatus.APPROVED,
    AppealStatus.REJECTED,
    AppealStatus.CLOSED,
)


# ---------------------------------------------------------------------------
# Result objects
# ---------------------------------------------------------------------------
@dataclass(slots=True)
class PunishResult:
    success: bool
    message: str = ""
    punishment: dict[str, Any] | None = None
    user_status: str | None = None
    not_found: bool = False


@dataclass(slots=True)
class AppealResult:
    success: bool
    message: str = ""
    appeal: dict[str, Any] | None = None
    not_found: bool = False


@dataclass(slots=True)
class RestrictionCheck:
    status: UserStatus
    punishments: list[dict[str, Any]] = field(default_factory=list)
    repaired: bool = False


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _in_force_clause(now: datetime):
    return (
        UserPunishment.status == PunishmentStatus.ACTIVE,
        or_(UserPunishment.end_time.is_(None), UserPunishment.end_time > now),
    )


def punishment_to_dict(p: UserPunishment) -> dict[str, Any]:
    return {
        "id": p.id,
        "user_id": p.user_id,
        "type": p.type,
        "severity": p.severity,
        "reason": p.reason,
        "start_time": as_utc(p.start_time).isoformat(),
        "end_time": as_utc(p.end_time).isoformat() if p.end_time else None,
        "status": p.status,
        "admin_id": p.admin_id,
        "revoked_by": p.revoked_by,
        "revoked_at": as_utc(p.revoked_at).isoformat() if p.revoked_at else None,
        "revoke_reason": p.revoke_reason,
    }


def appeal_to_dict(a: UserAppeal) -> dict[str, Any]:
    return {
        "id": a.id,
        "user_id": a.user_id,
        "punishment_id": a.punishment_id,
        "type": a.type,
        "title": a.title,
        "content": a.content,
        "evidence": a.evidence,
        "status": a.status,
        "priority": a.priority,
        "admin_note": a.admin_note,
        "handled_by": a.handled_by,
        "handled_at": as_utc(a.handled_at).isoformat() if a.handled_at else None,
        "created_at": as_utc(a.created_at).isoformat() if a.created_at else None,
    }


def recompute_user_status(session: Session, user_id: int, now: datetime) -> UserStatus:
    """Write the status implied by the user's in-force punishments."""
    active = session.scalars(
        select(UserPunishment).where(
            UserPunishment.user_id == user_id,
            UserPunishment.status == PunishmentStatus.ACTIVE,
        )
    ).all()
    status = resolve_user_status(active, now)
    user = session.get(User, user_id)
    if user is not None and user.status != status:
        logger.info("User %d status %s → %s", user_id, user.status, status)
        user.status = status
    return status


# ---------------------------------------------------------------------------
# Issue / revoke
# ---------------------------------------------------------------------------
def punish_in_session(
    session: Session,
    *,
    user_id: int,
    admin_id: int,
    type: str,
    severity: int,
    reason: str,
    duration_minutes: int | None,
    now: datetime,
) -> UserPunishment | None:
    """Create a punishment inside the caller's transaction.

    Returns ``None`` if the user doesn't exist.  Raises :class:`ValueError`
    for an unknown type, out-of-range severity or non-positive duration.
    """
    if type not in {t.value for t in PunishmentType}:
        raise ValueError(f"Unknown punishment type: {type!r}")
    if not MIN_SEVERITY <= severity <= MAX_SEVERITY:
        raise ValueError(f"Severity must be between {MIN_SEVERITY} and {MAX_SEVERITY}")
    if duration_minutes is not None and duration_minutes <= 0:
        raise ValueError("Duration must be a positive number of minutes")

    if session.get(User, user_id) is None:
        return None

    end_time = now + timedelta(minutes=duration_minutes) if duration_minutes else None
    punishment = UserPunishment(
        user_id=user_id,
        type=type,
        severity=severity,
        reason=reason,
        start_time=now,
        end_time=end_time,
        status=PunishmentStatus.ACTIVE,
        admin_id=admin_id,
        created_at=now,
    )
    session.add(punishment)
    session.flush()

    penalty = trust_penalty(type, severity)
    session.execute(
        update(User)
        .where(User.id == user_id)
        .values(
            violation_count=User.violation_count + 1,
            trust_score=case((User.trust_score - penalty < 0, 0), else_=User.trust_score - penalty),
        )
        .execution_options(synchronize_session="fetch")
    )
    status = recompute_user_status(session, user_id, now)

    log_admin_action(
        session,
        actor_id=admin_id,
        action_type=AdminActionType.PUNISH,
        target_table="user_punishments",
        target_id=str(punishment.id),
        before=None,
        after=row_to_dict(punishment),
        reason=reason,
    )
    until = f" until {end_time.isoformat()}" if end_time else ""
    notify(
        session,
        user_id=user_id,
        type="punishment",
        title=f"You received a {type}{until}",
        content=reason,
        data={"punishment_id": punishment.id, "type": type, "severity": severity},
    )
    logger.info(
        "Punishment %d (%s, severity %d) issued to user %d by %d → status %s",
        punishment.id, type, severity, user_id, admin_id, status,
    )
    return punishment


def punish_user(
    engine: Engine,
    *,
    user_id: int,
    admin_id: int,
    type: str,
    severity: int,
    reason: str,
    duration_minutes: int | None = None,
    now: datetime | None = None,
) -> PunishResult:
    """Issue a punishment.  ``duration_minutes=None`` means permanent."""
    now = as_utc(now)
    with Session(engine) as session:
        try:
            punishment = punish_in_session(
                session,
                user_id=user_id,
                admin_id=admin_id,
                type=type,
                severity=severity,
                reason=reason,
                duration_minutes=duration_minutes,
                now=now,
            )
        except ValueError as exc:
            return PunishResult(False, message=str(exc))
        if punishment is None:
            return PunishResult(False, message="User not found", not_found=True)
        session.commit()
        user_status = session.scalar(select(User.status).where(User.id == user_id))
        return PunishResult(
            True,
            message=f"User punished with {type}",
            punishment=punishment_to_dict(punishment),
            user_status=user_status,
        )


def _revoke_in_session(
    session: Session,
    punishment: UserPunishment,
    *,
    admin_id: int,
    reason: str | None,
    now: datetime,
) -> UserStatus:
    before = row_to_dict(punishment)
    punishment.status = PunishmentStatus.REVOKED
    punishment.revoked_by = admin_id
    punishment.revoked_at = now
    punishment.revoke_reason = reason
    session.flush()
    status = recompute_user_status(session, punishment.user_id, now)
    log_admin_action(
        session,
        actor_id=admin_id,
        action_type=AdminActionType.REVOKE,
        target_table="user_punishments",
        target_id=str(punishment.id),
        before=before,
        after=row_to_dict(punishment),
        reason=reason,
    )
    notify(
        session,
        user_id=punishment.user_id,
        type="punishment_revoked",
        title=f"Your {punishment.type} was lifted",
        content=reason or "",
        data={"punishment_id": punishment.id},
    )
    return status


def revoke_punishment(
    engine: Engine,
    punishment_id: int,
    *,
    admin_id: int,
    reason: str | None = None,
    now: datetime | None = None,
) -> PunishResult | None:
    """Revoke an active punishment.  ``None`` if it doesn't exist."""
    now = as_utc(now)
    with Session(engine) as session:
        punishment = session.get(UserPunishment, punishment_id)
        if punishment is None:
            return None
        if punishment.status != PunishmentStatus.ACTIVE:
            return PunishResult(False, message=f"Punishment is already {punishment.status}")

        status = _revoke_in_session(session, punishment, admin_id=admin_id, reason=reason, now=now)
        # Open appeals have nothing left to decide.
        session.execute(
            update(UserAppeal)
            .where(
                UserAppeal.punishment_id == punishment_id,
                UserAppeal.status.in_(OPEN_APPEAL_STATUSES),
            )
            .values(status=AppealStatus.CLOSED, admin_note="Punishment revoked", handled_by=admin_id, handled_at=now)
            .execution_options(synchronize_session=False)
        )
        session.commit()
        return PunishResult(
            True,
            message="Punishment revoked",
            punishment=punishment_to_dict(punishment),
            user_status=status,
        )


# ---------------------------------------------------------------------------
# Expiry sweep
# ---------------------------------------------------------------------------
def sweep_expired_punishments(engine: Engine, *, now: datetime | None = None) -> int:
    """Expire every active punishment whose ``end_time`` has passed.

    Each punishment is handled in its own transaction; a failure is logged
    and the sweep moves on.  Returns how many punishments were expired.
    """
    now = as_utc(now)
    with Session(engine) as session:
        due = session.scalars(
            select(UserPunishment.id).where(
                UserPunishment.status == PunishmentStatus.ACTIVE,
                UserPunishment.end_time.isnot(None),
                UserPunishment.end_time <= now,
            )
        ).all()

    expired = 0
    for punishment_id in due:
        try:
            with Session(engine) as session:
                punishment = session.get(UserPunishment, punishment_id)
                if punishment is None or punishment.status != PunishmentStatus.ACTIVE:
                    continue
                punishment.status = PunishmentStatus.EXPIRED
                session.flush()
                recompute_user_status(session, punishment.user_id, now)
                session.commit()
                expired += 1
        except SQLAlchemyError:
            logger.exception(
                "Failed to expire punishment %d", punishment_id,
                extra={"punishment_id": punishment_id},
            )
    if expired:
        logger.info("Punishment sweep expired %d punishment(s)", expired)
    return expired


# ---------------------------------------------------------------------------
# Request-time guard
# ---------------------------------------------------------------------------
def check_user_restriction(
    engine: Engine,
    user_id: int,
    *,
    now: datetime | None = None,
) -> RestrictionCheck:
    """Recompute the user's status from in-force punishments.

    Repairs ``users.status`` when the cached value has drifted, e.g. a
    punishment expired between sweeps.
    """
    now = as_utc(now)
    with Session(engine) as session:
        in_force = session.scalars(
            select(UserPunishment)
            .where(UserPunishment.user_id == user_id, *_in_force_clause(now))
            .order_by(UserPunishment.severity.desc(), UserPunishment.created_at.desc())
        ).all()
        status = resolve_user_status(in_force, now)
        user = session.get(User, user_id)
        repaired = False
        if user is not None and user.status != status:
            logger.info("Repairing stale status for user %d: %s → %s", user_id, user.status, status)
            user.status = status
            session.commit()
            repaired = True
        return RestrictionCheck(
            status=status,
            punishments=[punishment_to_dict(p) for p in in_force],
            repaired=repaired,
        )


# ---------------------------------------------------------------------------
# User-facing views
# ---------------------------------------------------------------------------
def get_user_punishment_summary(
    engine: Engine,
    user_id: int,
    *,
    now: datetime | None = None,
) -> dict[str, Any]:
    check = check_user_restriction(engine, user_id, now=now)
    with Session(engine) as session:
        recent = session.scalars(
            select(UserPunishment)
            .where(
                UserPunishment.user_id == user_id,
                UserPunishment.status.in_((PunishmentStatus.EXPIRED, PunishmentStatus.REVOKED)),
            )
            .order_by(UserPunishment.created_at.desc())
            .limit(5)
        ).all()
        totals = dict(session.execute(
            select(UserPunishment.type, func.count())
            .where(UserPunishment.user_id == user_id)
            .group_by(UserPunishment.type)
        ).all())

    restriction = next((p for p in check.punishments if is_restricting(p["type"])), None)
    return {
        "user_status": check.status.value,
        "is_restricted": restriction is not None,
        "current_restriction": restriction,
        "active_punishments": check.punishments,
        "recent_punishments": [punishment_to_dict(p) for p in recent],
        "punishment_stats": {t.value: totals.get(t.value, 0) for t in PunishmentType},
    }


def get_appealable_punishments(
    engine: Engine,
    user_id: int,
    *,
    now: datetime | None = None,
) -> list[dict[str, Any]]:
    """In-force punishments of severity ≥ 2, flagged with any open appeal."""
    now = as_utc(now)
    with Session(engine) as session:
        rows = session.scalars(
            select(UserPunishment)
            .where(
                UserPunishment.user_id == user_id,
                UserPunishment.severity >= APPEALABLE_MIN_SEVERITY,
                *_in_force_clause(now),
            )
            .order_by(UserPunishment.created_at.desc())
        ).all()
        open_appeals = dict(session.execute(
            select(UserAppeal.punishment_id, UserAppeal.id).where(
                UserAppeal.user_id == user_id,
                UserAppeal.status.in_(OPEN_APPEAL_STATUSES),
            )
        ).all())
        out = []
        for p in rows:
            row = punishment_to_dict(p)
            row["has_active_appeal"] = p.id in open_appeals
            row["appeal_id"] = open_appeals.get(p.id)
            out.append(row)
        return out


# ---------------------------------------------------------------------------
# Appeals
# ---------------------------------------------------------------------------
def submit_appeal(
    engine: Engine,
    *,
    user_id: int,
    punishment_id: int,
    title: str,
    content: str,
    evidence: list | None = None,
    now: datetime | None = None,
) -> AppealResult:
    now = as_utc(now)
    with Session(engine) as session:
        punishment = session.scalar(
            select(UserPunishment).where(
                UserPunishment.id == punishment_id,
                UserPunishment.user_id == user_id,
                UserPunishment.status == PunishmentStatus.ACTIVE,
            )
        )
        if punishment is None:
            return AppealResult(False, message="Punishment not found or not appealable", not_found=True)
        if punishment.severity < APPEALABLE_MIN_SEVERITY:
            return AppealResult(False, message="Punishments below severity 2 cannot be appealed")

        existing = session.scalar(
            select(UserAppeal.id).where(
                UserAppeal.punishment_id == punishment_id,
                UserAppeal.status.in_(OPEN_APPEAL_STATUSES),
            )
        )
        if existing is not None:
            return AppealResult(False, message="An appeal for this punishment is already open")

        appeal = UserAppeal(
            user_id=user_id,
            punishment_id=punishment_id,
            type="punishment_appeal",
            title=title,
            content=content,
            evidence=evidence,
            status=AppealStatus.PENDING,
            priority=appeal_priority(punishment.severity),
            created_at=now,
        )
        try:
            with session.begin_nested():   # SAVEPOINT
                session.add(appeal)
                session.flush()
        except IntegrityError:
            # Concurrent submission won the partial unique index.
            return AppealResult(False, message="An appeal for this punishment is already open")

        session.commit()
        logger.info("Appeal %d submitted for punishment %d by user %d", appeal.id, punishment_id, user_id)
        return AppealResult(True, message="Appeal submitted", appeal=appeal_to_dict(appeal))


def list_user_appeals(
    engine: Engine,
    user_id: int,
    *,
    page: int = 1,
    limit: int = 10,
) -> dict[str, Any]:
    return _list_appeals(engine, page=page, limit=limit, user_id=user_id)


def list_appeals(
    engine: Engine,
    *,
    status: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> dict[str, Any]:
    return _list_appeals(engine, page=page, limit=limit, status=status, include_user=True)


def _list_appeals(
    engine: Engine,
    *,
    page: int,
    limit: int,
    user_id: int | None = None,
    status: str | None = None,
    include_user: bool = False,
) -> dict[str, Any]:
    page, limit = clamp_page(page, limit)
    conditions = []
    if user_id is not None:
        conditions.append(UserAppeal.user_id == user_id)
    if status:
        conditions.append(UserAppeal.status == status)
    with Session(engine) as session:
        total = session.scalar(
            select(func.count()).select_from(UserAppeal).where(*conditions)
        ) or 0
        rows = session.execute(
            select(UserAppeal, UserPunishment, User.username)
            .join(UserPunishment, UserPunishment.id == UserAppeal.punishment_id)
            .join(User, User.id == UserAppeal.user_id)
            .where(*conditions)
            .order_by(UserAppeal.created_at.desc(), UserAppeal.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).all()
        appeals = []
        for appeal, punishment, username in rows:
            row = appeal_to_dict(appeal)
            row["punishment"] = punishment_to_dict(punishment)
            if include_user:
                row["username"] = username
            appeals.append(row)
        return {"appeals": appeals, "pagination": pagination(page, limit, total)}


def handle_appeal(
    engine: Engine,
    appeal_id: int,
    *,
    admin_id: int,
    status: str,
    admin_note: str | None = None,
    now: datetime | None = None,
) -> AppealResult:
    """Move an open appeal to *status*.  Approval revokes the punishment."""
    if status not in HANDLE_STATUSES:
        return AppealResult(False, message=f"Invalid appeal status: {status}")
    now = as_utc(now)
    with Session(engine) as session:
        appeal = session.get(UserAppeal, appeal_id)
        if appeal is None:
            return AppealResult(False, message="Appeal not found", not_found=True)
        if appeal.status not in OPEN_APPEAL_STATUSES:
            return AppealResult(False, message=f"Appeal is already {appeal.status}")

        before = row_to_dict(appeal)
        appeal.status = status
        appeal.admin_note = admin_note
        appeal.handled_by = admin_id
        appeal.handled_at = now
        session.flush()

        if status == AppealStatus.APPROVED:
            punishment = session.get(UserPunishment, appeal.punishment_id)
            if punishment is not None and punishment.status == PunishmentStatus.ACTIVE:
                _revoke_in_session(
                    session, punishment,
                    admin_id=admin_id, reason=f"Appeal #{appeal.id} approved", now=now,
                )

        log_admin_action(
            session,
            actor_id=admin_id,
            action_type=AdminActionType.APPEAL,
            target_table="user_appeals",
            target_id=str(appeal.id),
            before=before,
            after=row_to_dict(appeal),
            reason=admin_note,
        )
        if status != AppealStatus.PROCESSING:
            notify(
                session,
                user_id=appeal.user_id,
                type="appeal",
                title=f"Your appeal was {status}",
                content=admin_note or "",
                data={"appeal_id": appeal.id, "punishment_id": appeal.punishment_id, "status": status},
            )
        session.commit()
        return AppealResult(True, message=f"Appeal {status}", appeal=appeal_to_dict(appeal))


# ---------------------------------------------------------------------------
# Admin listing
# ---------------------------------------------------------------------------
def list_punishments(
    engine: Engine,
    *,
    user_id: int | None = None,
    type: str | None = None,
    status: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> dict[str, Any]:
    page, limit = clamp_page(page, limit)
    conditions = []
    if user_id is not None:
        conditions.append(UserPunishment.user_id == user_id)
    if type:
        conditions.append(UserPunishment.type == type)
    if status:
        conditions.append(UserPunishment.status == status)
    with Session(engine) as session:
        total = session.scalar(
            select(func.count()).select_from(UserPunishment).where(*conditions)
        ) or 0
        rows = session.execute(
            select(UserPunishment, User.username)
            .join(User, User.id == UserPunishment.user_id)
            .where(*conditions)
            .order_by(UserPunishment.created_at.desc(), UserPunishment.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).all()
        punishments = []
        for p, username in rows:
            row = punishment_to_dict(p)
            row["username"] = username
            punishments.append(row)
        return {"punishments": punishments, "pagination": pagination(page, limit, total)}
