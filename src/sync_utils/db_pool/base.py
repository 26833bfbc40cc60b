"""
Base classes and functionality for database connection pooling.

Provides thread-safe connection pools with health checks, metrics,
and automatic connection recycling to prevent stale connections.
"""

import logging
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from queue import Empty, Full, Queue
from typing import Any

from opentelemetry import trace
from prometheus_client import Counter, Gauge, Histogram

from sync_utils.metrics import get_or_create_metric
from sync_utils.tracing import trace_operation

logger = logging.getLogger(__name__)


CONNECTION_POOL_SIZE = get_or_create_metric(
    lambda: Gauge(
        "db_connection_pool_size",
        "Current size of database connection pool",
        ["pool_name"],
    ),
    "db_connection_pool_size",
)

CONNECTION_POOL_ACTIVE = get_or_create_metric(
    lambda: Gauge(
        "db_connection_pool_active",
        "Number of connections currently checked out",
        ["pool_name"],
    ),
    "db_connection_pool_active",
)

CONNECTION_POOL_WAITS = get_or_create_metric(
    lambda: Counter(
        "db_connection_pool_waits_total",
        "Number of times a connection request had to wait",
        ["pool_name"],
    ),
    "db_connection_pool_waits",
)

CONNECTION_POOL_ERRORS = get_or_create_metric(
    lambda: Counter(
        "db_connection_pool_errors_total",
        "Number of connection pool errors",
        ["pool_name", "error_type"],
    ),
    "db_connection_pool_errors",
)

CONNECTION_ACQUIRE_TIME = get_or_create_metric(
    lambda: Histogram(
        "db_connection_acquire_seconds",
        "Time to acquire a connection from pool",
        ["pool_name"],
        buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
    ),
    "db_connection_acquire_seconds",
)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class PooledConnection:
    """Wrapper for a pooled database connection with metadata."""

    connection: Any
    created_at: datetime
    last_used: datetime
    use_count: int = 0
    is_healthy: bool = True

    def mark_used(self) -> None:
        """Mark connection as used and update timestamp."""
        self.last_used = _utcnow()
        self.use_count += 1


class ConnectionPoolError(Exception):
    """Base exception for connection pool errors."""


class PoolExhaustedError(ConnectionPoolError):
    """Raised when the connection pool is exhausted."""


class PoolClosedError(ConnectionPoolError):
    """Raised when attempting to use a closed pool."""


class BaseConnectionPool:
    """
    Base class for database connection pools.

    Subclasses implement _create_connection, _is_connection_healthy and
    _close_connection. Idle connections are health-checked on checkout and
    periodically by a background thread; connections past max_lifetime or
    idle longer than max_idle_time are recycled.
    """

    def __init__(
        self,
        min_size: int = 1,
        max_size: int = 10,
        max_idle_time: int = 300,
        max_lifetime: int = 3600,
        health_check_interval: int = 60,
        acquire_timeout: float = 30.0,
        pool_name: str = "default",
    ):
        """
        Initialize connection pool.

        Args:
            min_size: Minimum number of connections to maintain
            max_size: Maximum number of connections allowed
            max_idle_time: Maximum idle time in seconds before recycling
            max_lifetime: Maximum connection lifetime in seconds
            health_check_interval: Interval for health checks in seconds
            acquire_timeout: Timeout for acquiring connection in seconds
            pool_name: Name of the pool for metrics
        """
        if max_size < 1:
            raise ValueError(f"max_size must be >= 1, got {max_size}")
        if min_size > max_size:
            raise ValueError(f"min_size ({min_size}) cannot exceed max_size ({max_size})")

        self.min_size = min_size
        self.max_size = max_size
        self.max_idle_time = timedelta(seconds=max_idle_time)
        self.max_lifetime = timedelta(seconds=max_lifetime)
        self.health_check_interval = health_check_interval
        self.acquire_timeout = acquire_timeout
        self.pool_name = pool_name

        self._pool: Queue[PooledConnection] = Queue(maxsize=max_size)
        self._all_connections: list[PooledConnection] = []
        self._lock = threading.RLock()
        self._closed = False
        self._stop_event = threading.Event()

        self._initialize_pool()

        self._health_check_thread = threading.Thread(
            target=self._health_check_worker,
            name=f"{pool_name}-pool-health",
            daemon=True,
        )
        self._health_check_thread.start()

        logger.info(
            f"Initialized {self.__class__.__name__} '{pool_name}' "
            f"(min={min_size}, max={max_size})"
        )

    def _create_connection(self) -> Any:
        """Create a new database connection. Must be implemented by subclasses."""
        raise NotImplementedError

    def _is_connection_healthy(self, conn: Any) -> bool:
        """Check if connection is healthy. Must be implemented by subclasses."""
        raise NotImplementedError

    def _close_connection(self, conn: Any) -> None:
        """Close a database connection. Must be implemented by subclasses."""
        raise NotImplementedError

    def _new_pooled_connection(self) -> PooledConnection:
        now = _utcnow()
        pooled_conn = PooledConnection(
            connection=self._create_connection(),
            created_at=now,
            last_used=now,
        )
        self._all_connections.append(pooled_conn)
        return pooled_conn

    def _initialize_pool(self) -> None:
        """Initialize pool with minimum number of connections."""
        with self._lock:
            for _ in range(self.min_size):
                try:
                    self._pool.put(self._new_pooled_connection())
                except Exception as e:
                    logger.error(f"Failed to create initial connection: {e}")
                    CONNECTION_POOL_ERRORS.labels(
                        pool_name=self.pool_name, error_type="initialization"
                    ).inc()

            self._update_metrics()

    def _check_connection_health(self, pooled_conn: PooledConnection) -> bool:
        """
        Check if a pooled connection is still usable.

        A connection fails the check when it exceeded max lifetime, sat idle
        longer than max idle time, or fails the driver-level ping.
        """
        now = _utcnow()

        if now - pooled_conn.created_at > self.max_lifetime:
            logger.debug("Connection exceeded max lifetime, recycling")
            return False

        if now - pooled_conn.last_used > self.max_idle_time:
            logger.debug("Connection exceeded max idle time, recycling")
            return False

        is_healthy = self._is_connection_healthy(pooled_conn.connection)
        pooled_conn.is_healthy = is_healthy
        if not is_healthy:
            CONNECTION_POOL_ERRORS.labels(
                pool_name=self.pool_name, error_type="health_check"
            ).inc()
        return is_healthy

    def _recycle_connection(self, pooled_conn: PooledConnection) -> None:
        """Close and remove a connection from the pool."""
        try:
            self._close_connection(pooled_conn.connection)
        except Exception as e:
            logger.warning(f"Error closing connection: {e}")
        finally:
            with self._lock:
                if pooled_conn in self._all_connections:
                    self._all_connections.remove(pooled_conn)

    def _health_check_worker(self) -> None:
        """Background worker to perform periodic health checks."""
        while not self._stop_event.wait(self.health_check_interval):
            try:
                self._perform_health_checks()
            except Exception as e:
                logger.error(f"Health check worker error: {e}")

    def _perform_health_checks(self) -> None:
        """Check idle connections and replenish the pool to its minimum size."""
        if self._closed:
            return

        idle: list[PooledConnection] = []
        while True:
            try:
                idle.append(self._pool.get_nowait())
            except Empty:
                break

        for pooled_conn in idle:
            if self._check_connection_health(pooled_conn):
                self._pool.put_nowait(pooled_conn)
            else:
                self._recycle_connection(pooled_conn)
                logger.info("Recycled unhealthy connection")

        with self._lock:
            needed = self.min_size - len(self._all_connections)
            if needed > 0:
                logger.info(f"Replenishing pool with {needed} connections")
            for _ in range(max(needed, 0)):
                try:
                    self._pool.put_nowait(self._new_pooled_connection())
                except Exception as e:
                    logger.error(f"Failed to create replacement connection: {e}")
                    CONNECTION_POOL_ERRORS.labels(
                        pool_name=self.pool_name, error_type="replenishment"
                    ).inc()

            self._update_metrics()

    def _update_metrics(self) -> None:
        with self._lock:
            total_size = len(self._all_connections)
            active_size = total_size - self._pool.qsize()

        CONNECTION_POOL_SIZE.labels(pool_name=self.pool_name).set(total_size)
        CONNECTION_POOL_ACTIVE.labels(pool_name=self.pool_name).set(active_size)

    def _checkout(self, start_time: float) -> PooledConnection:
        while True:
            elapsed = time.monotonic() - start_time
            if elapsed >= self.acquire_timeout:
                raise PoolExhaustedError(
                    f"No connection available within {self.acquire_timeout}s"
                )

            pooled_conn = None
            try:
                pooled_conn = self._pool.get_nowait()
            except Empty:
                with self._lock:
                    if len(self._all_connections) < self.max_size:
                        try:
                            pooled_conn = self._new_pooled_connection()
                            logger.debug("Created new connection for pool")
                        except Exception:
                            CONNECTION_POOL_ERRORS.labels(
                                pool_name=self.pool_name, error_type="creation"
                            ).inc()
                            raise

                if pooled_conn is None:
                    CONNECTION_POOL_WAITS.labels(pool_name=self.pool_name).inc()
                    try:
                        pooled_conn = self._pool.get(
                            timeout=self.acquire_timeout - elapsed
                        )
                    except Empty:
                        raise PoolExhaustedError(
                            f"No connection available within {self.acquire_timeout}s"
                        )

            if self._check_connection_health(pooled_conn):
                return pooled_conn

            logger.info("Connection unhealthy, recycling and retrying")
            self._recycle_connection(pooled_conn)

    @contextmanager
    def acquire(self) -> Iterator[Any]:
        """
        Acquire a connection from the pool.

        Yields:
            Database connection

        Raises:
            PoolClosedError: If pool is closed
            PoolExhaustedError: If no connection available within timeout
        """
        if self._closed:
            raise PoolClosedError("Connection pool is closed")

        with trace_operation(
            "db_pool_acquire",
            kind=trace.SpanKind.CLIENT,
            pool_name=self.pool_name,
        ):
            start_time = time.monotonic()
            pooled_conn = self._checkout(start_time)
            pooled_conn.mark_used()
            self._update_metrics()
            CONNECTION_ACQUIRE_TIME.labels(pool_name=self.pool_name).observe(
                time.monotonic() - start_time
            )

        try:
            yield pooled_conn.connection
        finally:
            if self._closed:
                self._recycle_connection(pooled_conn)
            else:
                try:
                    self._pool.put_nowait(pooled_conn)
                except Full:
                    logger.error("Failed to return connection to pool, closing it")
                    self._recycle_connection(pooled_conn)
                self._update_metrics()

    def close(self) -> None:
        """Close all connections and shutdown the pool."""
        if self._closed:
            return

        logger.info(f"Closing connection pool '{self.pool_name}'")
        self._closed = True
        self._stop_event.set()

        with self._lock:
            for pooled_conn in self._all_connections:
                try:
                    self._close_connection(pooled_conn.connection)
                except Exception as e:
                    logger.warning(f"Error closing connection: {e}")

            self._all_connections.clear()

            while True:
                try:
                    self._pool.get_nowait()
                except Empty:
                    break

        self._update_metrics()
        logger.info(f"Connection pool '{self.pool_name}' closed")

    def __enter__(self) -> "BaseConnectionPool":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def get_stats(self) -> dict[str, Any]:
        """Get pool statistics."""
        with self._lock:
            total_size = len(self._all_connections)
            idle_size = self._pool.qsize()

            return {
                "pool_name": self.pool_name,
                "total_connections": total_size,
                "idle_connections": idle_size,
                "active_connections": total_size - idle_size,
                "min_size": self.min_size,
                "max_size": self.max_size,
                "closed": self._closed,
            }
