"""Pushes issued codes into the game server's own database."""
import logging

from sqlalchemy import create_engine, text
from sqlalchemy.exc import SQLAlchemyError

from aecoin_store import config
from aecoin_store.errors import ProvisioningSinkError

logger = logging.getLogger(__name__)

_engine = None


def get_game_engine():
    global _engine
    if _engine is None and config.GAME_DATABASE_URL:
        _engine = create_engine(config.GAME_DATABASE_URL, pool_pre_ping=True)
    return _engine


def push_code(code: str, amount: int) -> bool:
    """
    Inserts one code into the game server table.

    Returns False when no game database is configured. Any failure, including
    a malformed URL or a missing database driver, is raised as
    ProvisioningSinkError.
    """
    statement = text(f"INSERT INTO {config.GAME_CODES_TABLE} (code, amount) VALUES (:code, :amount)")
    try:
        engine = get_game_engine()
        if engine is None:
            logger.debug("GAME_DATABASE_URL not set, skipping provisioning of %s", code)
            return False
        with engine.begin() as conn:
            conn.execute(statement, {"code": code, "amount": amount})
    except (SQLAlchemyError, ImportError) as e:
        raise ProvisioningSinkError(f"Failed to provision {code}: {e}") from e
    return True
