"""
agora.config — YAML Configuration Loader
=========================================

Reads ``config.yaml`` for process-level settings: community identity, the
local timezone that defines "today" for daily limits and tasks, background
sweep intervals, and optional overrides of the level and point-rule tables.
Secrets (``JWT_SECRET``, ``DATABASE_URL``) stay in ``.env``.

Usage::

    from agora.config import load_config

    cfg = load_config()          # reads ./config.yaml by default
    print(cfg.community_name)    # "Agora Dev"
    print(cfg.timezone)          # "Asia/Shanghai"
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class AgoraConfig:
    """Immutable configuration loaded from ``config.yaml``.

    ``levels`` and ``point_rules`` are raw override tables; they are
    validated and frozen by :func:`agora.engine.rules.build_rulebook`.
    """

    # Identity
    community_name: str

    # Calendar — IANA zone name used for local midnight / month boundaries
    timezone: str = "UTC"

    # Economy
    level_up_bonus_per_level: int = 10

    # Background jobs
    punishment_sweep_seconds: int = 60
    tag_cleanup_seconds: int = 3600

    # Optional rule table overrides (None → built-in defaults)
    levels: list[dict[str, Any]] | None = None
    point_rules: dict[str, dict[str, Any]] | None = None

    # Admin roles allowed on /api/admin/*
    admin_roles: tuple[str, ...] = field(default=("admin", "moderator"))


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> AgoraConfig:
    """Read *path* and return an :class:`AgoraConfig` instance.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    return config_from_dict(raw)


def config_from_dict(raw: dict[str, Any]) -> AgoraConfig:
    """Build an :class:`AgoraConfig` from an already-parsed mapping."""
    roles = raw.get("admin_roles")
    return AgoraConfig(
        community_name=raw["community_name"],
        timezone=str(raw.get("timezone") or "UTC"),
        level_up_bonus_per_level=int(raw.get("level_up_bonus_per_level", 10)),
        punishment_sweep_seconds=int(raw.get("punishment_sweep_seconds", 60)),
        tag_cleanup_seconds=int(raw.get("tag_cleanup_seconds", 3600)),
        levels=raw.get("levels"),
        point_rules=raw.get("point_rules"),
        admin_roles=tuple(roles) if roles else ("admin", "moderator"),
    )
