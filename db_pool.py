"""SQLite connection pool with explicit write transactions."""
import logging
import sqlite3
import threading
from contextlib import contextmanager
from queue import Empty, Queue
from typing import Generator

logger = logging.getLogger(__name__)

class SQLiteConnectionPool:
    """Thread-safe SQLite connection pool.

    Connections run in autocommit mode (``isolation_level=None``) so callers
    control transaction boundaries themselves through :meth:`transaction`.
    """

    def __init__(self, database: str, max_connections: int = 5, busy_timeout: float = 30.0):
        self.database = database
        self.max_connections = max_connections
        self.busy_timeout = busy_timeout
        self._pool: Queue[sqlite3.Connection] = Queue(maxsize=max_connections)
        self._lock = threading.Lock()
        self._created_connections = 0

    def _create_connection(self) -> sqlite3.Connection:
        """Create a new SQLite connection with proper settings."""
        # Request handlers run on a threadpool, so a pooled connection may be
        # used by a different thread than the one that opened it.
        conn = sqlite3.connect(
            self.database,
            timeout=self.busy_timeout,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Get a connection from the pool or create a new one if needed."""
        connection = None
        try:
            connection = self._pool.get(block=False)
        except Empty:
            with self._lock:
                if self._created_connections < self.max_connections:
                    connection = self._create_connection()
                    self._created_connections += 1
                    logger.debug("Created new connection (total: %s)", self._created_connections)
            if connection is None:
                # If we've hit the limit, wait for a connection
                connection = self._pool.get(block=True)

        try:
            yield connection
        finally:
            try:
                if connection.in_transaction:
                    connection.rollback()
                self._pool.put(connection)
            except sqlite3.Error as e:
                logger.error("Error returning connection to pool: %s", e)
                try:
                    connection.close()
                except sqlite3.Error:
                    pass
                with self._lock:
                    self._created_connections -= 1

    @contextmanager
    def transaction(self, immediate: bool = True) -> Generator[sqlite3.Connection, None, None]:
        """Run the block inside one transaction, committing on success.

        ``BEGIN IMMEDIATE`` takes the database write lock up front, which
        serializes concurrent read-modify-write sequences across connections.
        """
        with self.get_connection() as con:
            con.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
            try:
                yield con
            except BaseException:
                con.rollback()
                raise
            else:
                con.commit()

    def close_all(self) -> None:
        """Close all connections in the pool."""
        while True:
            try:
                connection = self._pool.get(block=False)
            except Empty:
                break
            connection.close()
        with self._lock:
            self._created_connections = 0
