"""
agora.api.main — FastAPI application entry point
=================================================

Run with::

    uvicorn agora.api.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

load_dotenv()

from agora import __version__  # noqa: E402
from agora.api.auth import router as auth_router  # noqa: E402
from agora.api.deps import get_config, get_engine  # noqa: E402
from agora.api.errors import setup_error_handlers  # noqa: E402
from agora.api.routes.admin import router as admin_router  # noqa: E402
from agora.api.routes.badges import router as badges_router  # noqa: E402
from agora.api.routes.daily_tasks import router as daily_tasks_router  # noqa: E402
from agora.api.routes.forum import router as forum_router  # noqa: E402
from agora.api.routes.notifications import router as notifications_router  # noqa: E402
from agora.api.routes.points import router as points_router  # noqa: E402
from agora.api.routes.punishments import router as punishments_router  # noqa: E402
from agora.api.routes.special_tags import router as special_tags_router  # noqa: E402
from agora.services.scheduler import PeriodicTasks  # noqa: E402

logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    """Resolve allowed CORS origins from env with safe defaults.

    Priority:
      1) CORS_ALLOW_ORIGINS (comma-separated)
      2) FRONTEND_URL (single origin)
    """
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]

    frontend_url = os.getenv("FRONTEND_URL", "").strip()
    if frontend_url:
        return [frontend_url.rstrip("/")]

    return []


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle — warm the DB engine, run the sweep loops."""
    engine = get_engine()
    cfg = get_config()
    tasks = PeriodicTasks(engine, cfg)
    tasks.start()
    logger.info("Agora API started for %s — engine ready (%s)", cfg.community_name, engine.url.database)
    yield
    await tasks.stop()
    logger.info("Agora API shutting down")


app = FastAPI(
    title="Agora Forum API",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

setup_error_handlers(app)

# Mount routers
app.include_router(auth_router, prefix="/api")
app.include_router(points_router, prefix="/api")
app.include_router(badges_router, prefix="/api")
app.include_router(daily_tasks_router, prefix="/api")
app.include_router(special_tags_router, prefix="/api")
app.include_router(punishments_router, prefix="/api")
app.include_router(notifications_router, prefix="/api")
app.include_router(forum_router, prefix="/api")
app.include_router(admin_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"success": True, "data": {"status": "ok"}}
