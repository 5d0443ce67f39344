"""
Agora — Forum Reputation & Moderation Engine
=============================================
Turns forum activity into points, experience and levels, awards badges,
special tags and daily-task rewards, and runs the moderation pipeline
(punishments, appeals, batch actions) behind a JSON REST API.

Package layout::

    agora/
    ├── __main__.py        # ``python -m agora`` → uvicorn
    ├── config.py          # YAML → typed Python config
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   ├── models.py      # All ORM models
    │   └── seed.py        # Default badges, tasks and tags
    ├── engine/
    │   ├── rules.py       # Level table + point rule table (RuleBook)
    │   ├── clock.py       # Local-day boundaries and period windows
    │   ├── conditions.py  # Badge/task/tag condition tagged union
    │   └── punishments.py # Punishment → user status resolution
    ├── services/
    │   ├── point_service.py      # Ledger: grant, consume, check-in
    │   ├── badge_service.py      # Condition evaluation + badge awards
    │   ├── special_tag_service.py
    │   ├── daily_task_service.py
    │   ├── punishment_service.py # Punish, revoke, sweep, appeals
    │   ├── batch_service.py      # Tracked batch moderation runs
    │   ├── forum_service.py      # Topic / reply / like actions
    │   ├── notification_service.py
    │   ├── admin_service.py      # Audit log + admin adjustments
    │   ├── paging.py             # Page/limit clamping helpers
    │   └── scheduler.py          # Periodic sweep loops
    └── api/
        ├── main.py        # FastAPI app
        ├── deps.py        # JWT auth, engine + rule book injection
        ├── auth.py        # Current-user endpoint
        ├── errors.py      # JSON error envelope handlers
        └── routes/        # User + admin REST endpoints
"""

__version__ = "0.1.0"
