"""
agora.api.auth — Current-user identity
=======================================

Tokens are issued by the surrounding forum's login flow (see
:func:`agora.api.deps.create_access_token`); this router only reports who
the bearer is and what their level allows.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from agora.api.deps import get_config, get_current_user, get_rules, ok
from agora.config import AgoraConfig
from agora.database.models import User
from agora.engine.clock import as_utc
from agora.engine.rules import RuleBook

router = APIRouter(prefix="/auth", tags=["auth"])


@router.get("/me")
def me(
    user: User = Depends(get_current_user),
    rules: RuleBook = Depends(get_rules),
    cfg: AgoraConfig = Depends(get_config),
):
    """Return the authenticated user's profile."""
    return ok({
        "id": user.id,
        "username": user.username,
        "email": user.email,
        "avatar": user.avatar,
        "role": user.role,
        "status": user.status,
        "is_admin": user.role in cfg.admin_roles,
        "balance": user.balance,
        "experience": user.experience,
        "level": user.level,
        "level_info": rules.level_info(user.level),
        "trust_score": user.trust_score,
        "violation_count": user.violation_count,
        "created_at": as_utc(user.created_at).isoformat() if user.created_at else None,
    })
