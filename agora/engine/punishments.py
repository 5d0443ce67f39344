"""
agora.engine.punishments — Punishment → User Status Resolution
===============================================================

Pure rules for the moderation state machine:

* A punishment is *in force* when ``status == active`` and its ``end_time``
  is NULL (permanent) or still in the future.
* Only restricting types change a user's status.  Warnings never do.
* The user's status is the one implied by the in-force restricting
  punishment with the highest severity; ties go to the harsher type
  (ban > suspend > mute).  No restricting punishment → ``active``.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

from agora.database.models import PunishmentStatus, PunishmentType, UserStatus
from agora.engine.clock import normalize_dt

TYPE_TO_STATUS: dict[str, UserStatus] = {
    PunishmentType.BAN: UserStatus.BANNED,
    PunishmentType.SUSPEND: UserStatus.SUSPENDED,
    PunishmentType.MUTE: UserStatus.MUTED,
}

# Harshness rank used to break severity ties.
_TYPE_RANK: dict[str, int] = {
    PunishmentType.MUTE: 1,
    PunishmentType.SUSPEND: 2,
    PunishmentType.BAN: 3,
}

# Statuses that block posting / logging in.
POST_BLOCKING = frozenset({UserStatus.BANNED, UserStatus.SUSPENDED, UserStatus.MUTED})
LOGIN_BLOCKING = frozenset({UserStatus.BANNED, UserStatus.SUSPENDED})

MIN_SEVERITY = 1
MAX_SEVERITY = 5


@dataclass(frozen=True, slots=True)
class PunishmentView:
    """The fields status resolution needs; ORM rows satisfy this shape too."""

    type: str
    severity: int
    status: str
    end_time: datetime | None


def is_in_force(p, now: datetime) -> bool:
    if p.status != PunishmentStatus.ACTIVE:
        return False
    return p.end_time is None or normalize_dt(p.end_time) > normalize_dt(now)


def is_restricting(punishment_type: str) -> bool:
    return punishment_type in TYPE_TO_STATUS


def resolve_user_status(punishments: Iterable, now: datetime) -> UserStatus:
    """Status implied by the most severe in-force restricting punishment."""
    best = None
    for p in punishments:
        if not is_restricting(p.type) or not is_in_force(p, now):
            continue
        key = (p.severity, _TYPE_RANK[p.type])
        if best is None or key > best[0]:
            best = (key, p.type)
    if best is None:
        return UserStatus.ACTIVE
    return TYPE_TO_STATUS[best[1]]


def trust_penalty(punishment_type: str, severity: int) -> int:
    """Trust-score deduction for a new punishment."""
    return severity * (5 if is_restricting(punishment_type) else 2)


def appeal_priority(severity: int) -> str:
    return "high" if severity >= 4 else "normal"
