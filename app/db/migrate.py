"""
Alembic migration runner, used at startup when RUN_MIGRATIONS=1.
"""
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from app.core import config

logger = logging.getLogger(__name__)

ALEMBIC_INI = Path(__file__).resolve().parents[2] / "alembic.ini"

# Shared by every instance of the service so only one migrates at a time
MIGRATION_LOCK_KEY = 482913067


def build_alembic_config(database_url: str) -> Config:
    alembic_cfg = Config(str(ALEMBIC_INI))
    # configparser interpolation: a literal % in a password must be doubled
    alembic_cfg.set_main_option("sqlalchemy.url", database_url.replace("%", "%%"))
    return alembic_cfg


@contextmanager
def migration_lock(engine: Engine):
    """
    Hold a PostgreSQL advisory lock while the block runs.

    Other backends have no advisory locks; the block runs unlocked. If the
    lock cannot be taken the migration still runs, since Alembic upgrades
    are idempotent.
    """
    if engine.dialect.name != "postgresql":
        yield
        return

    conn = engine.connect()
    locked = False
    try:
        try:
            conn.execute(text("SELECT pg_advisory_lock(:key)"), {"key": MIGRATION_LOCK_KEY})
            conn.commit()
            locked = True
            logger.info("Migration lock acquired")
        except SQLAlchemyError as e:
            logger.warning(f"Could not acquire migration lock: {e}")
        yield
    finally:
        if locked:
            try:
                conn.execute(text("SELECT pg_advisory_unlock(:key)"), {"key": MIGRATION_LOCK_KEY})
                conn.commit()
            except SQLAlchemyError as e:
                logger.warning(f"Could not release migration lock: {e}")
        conn.close()


def run_migrations(database_url: Optional[str] = None) -> None:
    """Upgrade the database to the latest Alembic revision."""
    database_url = database_url or config.DATABASE_URL
    if not database_url:
        raise ValueError("DATABASE_URL is not set")

    logger.info("Running alembic upgrade head")
    engine = create_engine(database_url, pool_pre_ping=True)
    try:
        with migration_lock(engine):
            command.upgrade(build_alembic_config(database_url), "head")
        logger.info("Migrations complete")
    except Exception:
        logger.exception("Migration failed")
        raise
    finally:
        engine.dispose()
