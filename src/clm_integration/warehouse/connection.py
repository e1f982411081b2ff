"""
PostgreSQL connection pool management using psycopg3

The pool is owned by whoever builds the repository (the service facade or
the CLI) and is closed with it; there is no process-wide pool.
"""
import os
import time
from contextlib import contextmanager

from psycopg import OperationalError
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool, PoolTimeout

from clm_integration.config.settings import DatabaseSettings
from clm_integration.core.errors import PersistenceError
from clm_integration.observability.logger import get_logger

logger = get_logger(__name__)


class DatabaseConnectionPool:
    """
    PostgreSQL connection pool manager using psycopg3

    Connections return rows as dictionaries and run every statement under
    the configured statement_timeout.
    """

    def __init__(
        self,
        host: str | None = None,
        port: int | None = None,
        database: str | None = None,
        user: str | None = None,
        password: str | None = None,
        min_size: int = 2,
        max_size: int = 10,
        timeout: float = 30.0,
        statement_timeout_ms: int | None = None,
    ) -> None:
        """
        Initialize database connection pool

        Args:
            host: Database host (defaults to env var DB_HOST)
            port: Database port (defaults to env var DB_PORT)
            database: Database name (defaults to env var DB_NAME)
            user: Database user (defaults to env var DB_USER)
            password: Database password (defaults to env var DB_PASSWORD)
            min_size: Minimum pool size
            max_size: Maximum pool size
            timeout: Connect and pool acquisition timeout in seconds
            statement_timeout_ms: Server-side deadline per statement
        """
        self.host = host or os.getenv("DB_HOST", "localhost")
        self.port = port or int(os.getenv("DB_PORT", "5432"))
        self.database = database or os.getenv("DB_NAME", "clm")
        self.user = user or os.getenv("DB_USER", "clm")
        self.password = password or os.getenv("DB_PASSWORD")

        if not self.password:
            raise ValueError(
                "Database password must be provided. "
                "Set DB_PASSWORD environment variable or pass to constructor."
            )

        self.min_size = min_size
        self.max_size = max_size
        self.timeout = timeout
        self.statement_timeout_ms = statement_timeout_ms

        self.conninfo = (
            f"host={self.host} "
            f"port={self.port} "
            f"dbname={self.database} "
            f"user={self.user} "
            f"password={self.password} "
            f"connect_timeout={int(self.timeout)}"
        )
        if statement_timeout_ms:
            self.conninfo += f" options='-c statement_timeout={int(statement_timeout_ms)}'"

        self._pool: ConnectionPool | None = None

    @classmethod
    def from_settings(cls, settings: DatabaseSettings) -> "DatabaseConnectionPool":
        return cls(
            host=settings.host,
            port=settings.port,
            database=settings.name,
            user=settings.user,
            password=settings.password,
            min_size=settings.min_pool_size,
            max_size=settings.max_pool_size,
            timeout=settings.timeout,
            statement_timeout_ms=settings.statement_timeout_ms,
        )

    @property
    def is_open(self) -> bool:
        return self._pool is not None

    def open(self, max_retries: int = 3, retry_delay: float = 2.0) -> None:
        """
        Open the connection pool with retry logic.

        Args:
            max_retries: Maximum number of connection attempts
            retry_delay: Delay between retries in seconds

        Raises:
            PersistenceError: If connection fails after all retries
        """
        if self._pool is not None:
            return

        pool = ConnectionPool(
            conninfo=self.conninfo,
            min_size=self.min_size,
            max_size=self.max_size,
            timeout=self.timeout,
            kwargs={"row_factory": dict_row},
            open=False,
        )

        for attempt in range(1, max_retries + 1):
            try:
                pool.open(wait=True, timeout=self.timeout)
                self._pool = pool
                logger.info(
                    "Database pool opened",
                    extra={"host": self.host, "database": self.database, "attempt": attempt},
                )
                return
            except (OperationalError, PoolTimeout) as e:
                logger.warning(
                    f"Database connection attempt {attempt}/{max_retries} failed",
                    extra={"host": self.host, "error": str(e)},
                )
                if attempt < max_retries:
                    time.sleep(retry_delay)
                else:
                    pool.close()
                    raise PersistenceError(
                        "open_pool",
                        f"Failed to connect to database after {max_retries} attempts: {e}",
                    ) from e

    def close(self) -> None:
        """Close the connection pool"""
        if self._pool is not None:
            self._pool.close()
            self._pool = None

    @contextmanager
    def get_connection(self):
        """
        Get a connection from the pool

        The connection commits when the block exits cleanly and rolls back
        when it raises.

        Raises:
            RuntimeError: If pool is not open
        """
        if self._pool is None:
            raise RuntimeError("Connection pool is not open. Call open() first.")

        with self._pool.connection() as conn:
            yield conn

    @contextmanager
    def get_cursor(self):
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                yield cur

    def execute_query(self, query: str, params: tuple | None = None) -> list[dict]:
        """
        Execute a SELECT query and return results

        Returns:
            List of dictionaries (one per row)
        """
        with self.get_cursor() as cur:
            cur.execute(query, params)
            return cur.fetchall()

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
