"""
Database engine initialisation and the parameterized statement runner.
"""

import logging
import sys
from typing import Any, Dict, List, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.exc import SQLAlchemyError

from studyaccess.config import DB_MAX_OVERFLOW, DB_POOL_SIZE, QUERY_TIMEOUT_SECONDS, get_env
from studyaccess.errors import QueryError

logger = logging.getLogger(__name__)


def init_engine(db_uri: Optional[str] = None):
    """Create a pooled SQLAlchemy engine and verify the connection."""
    db_uri = db_uri or get_env("DB_URI")
    pool_args = {}
    if not db_uri.startswith("sqlite"):
        pool_args = {"pool_size": DB_POOL_SIZE, "max_overflow": DB_MAX_OVERFLOW}
    engine = create_engine(db_uri, echo=False, future=True, pool_pre_ping=True, **pool_args)
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception as e:
        print("ERROR: could not connect to DB:", e, file=sys.stderr)
        sys.exit(1)
    logger.info("Connected to DB (%s).", engine.dialect.name)
    return engine


class Store:
    """
    Runs one parameterized statement per call on its own pooled connection.

    Nothing is shared between calls except the engine's pool, so a Store can
    be used from many request threads at once.
    """

    def __init__(self, engine, timeout_seconds: float = QUERY_TIMEOUT_SECONDS):
        self.engine = engine
        self.timeout_seconds = timeout_seconds

    @property
    def supports_statement_timeout(self) -> bool:
        return getattr(self.engine.dialect, "name", "") == "postgresql"

    def execute(
        self,
        statement: str,
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> List[Dict[str, Any]]:
        """Run *statement* with bound *params* and return the rows as dicts."""
        timeout = self.timeout_seconds if timeout is None else timeout
        try:
            with self.engine.begin() as conn:
                if self.supports_statement_timeout:
                    # Local to this transaction; the pooled connection is left untouched.
                    conn.execute(
                        text("SELECT set_config('statement_timeout', :ms, true)"),
                        {"ms": str(int(timeout * 1000))},
                    )
                result = conn.execute(text(statement), params or {})
                return [dict(row) for row in result.mappings().all()]
        except SQLAlchemyError as e:
            logger.error("Query failed (%d params): %s", len(params or {}), e.__class__.__name__)
            raise QueryError(f"Database query failed: {e.__class__.__name__}") from e

    def ping(self) -> bool:
        try:
            self.execute("SELECT 1")
        except QueryError:
            return False
        return True
