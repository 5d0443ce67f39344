"""
agora.services.scheduler — Periodic Background Tasks
=====================================================

Maintenance jobs that run as asyncio loops inside the API process:

- **Punishment sweep** — every ``punishment_sweep_seconds`` (default 60),
  expires punishments whose end time has passed and restores user status.
- **Special tag cleanup** — every ``tag_cleanup_seconds`` (default 3600),
  deactivates expired tag grants.

Loops are started and cancelled from the FastAPI lifespan.  Each pass runs
via ``run_db()`` so the event loop is never blocked; a failing pass is
logged and the loop keeps going.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from sqlalchemy import Engine

from agora.config import AgoraConfig
from agora.database.engine import run_db
from agora.services.punishment_service import sweep_expired_punishments
from agora.services.special_tag_service import cleanup_expired_tags

logger = logging.getLogger(__name__)


class PeriodicTasks:
    """Owns the background maintenance loops for one engine."""

    def __init__(self, engine: Engine, config: AgoraConfig) -> None:
        self.engine = engine
        self.config = config
        self._tasks: list[asyncio.Task] = []

    def start(self) -> None:
        """Start all loops on the running event loop."""
        self._tasks = [
            asyncio.create_task(
                self._loop("punishment_sweep", self.config.punishment_sweep_seconds, self.sweep_once),
                name="punishment_sweep",
            ),
            asyncio.create_task(
                self._loop("tag_cleanup", self.config.tag_cleanup_seconds, self.cleanup_once),
                name="tag_cleanup",
            ),
        ]
        logger.info(
            "Background tasks started (sweep every %ds, tag cleanup every %ds)",
            self.config.punishment_sweep_seconds, self.config.tag_cleanup_seconds,
        )

    async def stop(self) -> None:
        """Cancel all loops and wait for them to finish."""
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

    async def _loop(self, name: str, seconds: int, job: Callable[[], object]) -> None:
        while True:
            try:
                await job()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("%s task failed", name, extra={"task": name})
            await asyncio.sleep(seconds)

    # -------------------------------------------------------------------
    # Jobs
    # -------------------------------------------------------------------
    async def sweep_once(self) -> int:
        expired = await run_db(sweep_expired_punishments, self.engine)
        if expired:
            logger.info("Sweep task complete: %d punishments expired", expired)
        return expired

    async def cleanup_once(self) -> int:
        return await run_db(cleanup_expired_tags, self.engine)
