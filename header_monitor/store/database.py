"""SQLite database handle shared by the header, alert and project stores."""

import logging
import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from ..config import config
from ..errors import PersistenceFailure
from ..retry import exponential_backoff_retry

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1


class Database:
    """Owns the SQLite file, its schema and transaction boundaries.

    Stores receive a Database instead of opening connections themselves, so
    several stores can write inside one transaction.
    """

    def __init__(self, db_path: str | None = None, busy_timeout: float = 5.0):
        """Initialize the database.

        Args:
            db_path: Path to SQLite database. Defaults to MONITOR_DB_PATH env var
                     or ~/.header-monitor/monitor.db
            busy_timeout: Seconds SQLite waits on a locked database before failing
        """
        self.db_path = os.path.expanduser(db_path or config.MONITOR_DB_PATH)
        self.busy_timeout = busy_timeout

        # Ensure directory exists
        db_dir = os.path.dirname(self.db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

        self._init_db()

    def _init_db(self) -> None:
        """Apply schema.sql and record the schema version."""
        schema_path = Path(__file__).parent / "schema.sql"
        with open(schema_path) as f:
            schema = f.read()

        conn = self.connect()
        try:
            version = conn.execute("PRAGMA user_version").fetchone()[0]
            conn.executescript(schema)
            if version < SCHEMA_VERSION:
                conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
                logger.info(f"Initialized schema version {SCHEMA_VERSION} at {self.db_path}")
            conn.commit()
        except sqlite3.Error as e:
            raise PersistenceFailure(f"Failed to initialize schema: {e}") from e
        finally:
            conn.close()

    @property
    def schema_version(self) -> int:
        conn = self.connect()
        try:
            return conn.execute("PRAGMA user_version").fetchone()[0]
        finally:
            conn.close()

    @exponential_backoff_retry(
        max_attempts=lambda: config.DB_RETRY_ATTEMPTS,
        exceptions=(sqlite3.OperationalError,),
    )
    def connect(self) -> sqlite3.Connection:
        """Get database connection with row factory."""
        conn = sqlite3.connect(self.db_path, timeout=self.busy_timeout)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def transaction(self, conn: sqlite3.Connection | None = None) -> Iterator[sqlite3.Connection]:
        """Run a block in one transaction.

        When an outer connection is passed the block joins that transaction
        and commit/rollback is left to its owner.

        Raises:
            PersistenceFailure: If any SQLite error occurs; nothing is committed
        """
        if conn is not None:
            yield conn
            return

        try:
            conn = self.connect()
        except sqlite3.Error as e:
            raise PersistenceFailure(f"Could not open {self.db_path}: {e}") from e

        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise PersistenceFailure(str(e)) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
