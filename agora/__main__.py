"""
agora.__main__ — Entry point for ``python -m agora``
=====================================================

Wiring:
1. Load .env (secrets, DATABASE_URL).
2. Load config.yaml (soft settings).
3. Create the SQLAlchemy engine, ensure tables exist and seed defaults.
4. Serve the FastAPI app with uvicorn (blocking).

Run with::

    python -m agora
"""

from __future__ import annotations

import logging
import os

import uvicorn
from dotenv import load_dotenv

from agora.config import load_config
from agora.database.engine import create_db_engine, init_db

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("agora")


def main() -> None:
    """Bootstrap the database and run the API server."""

    # 1. Environment variables (secrets).
    load_dotenv()

    # 2. Soft configuration.
    cfg = load_config()
    logger.info("Config loaded — Community: %s (tz=%s)", cfg.community_name, cfg.timezone)

    # 3. Database.
    engine = create_db_engine()
    init_db(engine)
    engine.dispose()

    # 4. Serve (blocks until Ctrl+C or SIGTERM).
    uvicorn.run(
        "agora.api.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        log_config=None,
    )


if __name__ == "__main__":
    main()
