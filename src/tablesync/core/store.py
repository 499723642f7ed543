"""
Relational store interface, connection pool and transaction handle.

A RelationalStore owns a bounded pool of physical connections. Every
logical operation checks a connection out for its own duration, so
concurrent callers never share a connection; callers beyond the pool
capacity wait until one is returned.
"""

import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Optional

from .commands import Command, ExecutionResult
from .exceptions import (
    ProviderError,
    StatementError,
    StoreError,
    TableSyncError,
    TransactionAbortedError,
    TransientStoreError,
    ValidationError,
)
from .models import IsolationLevel


logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    """Classification of a store failure."""
    TRANSIENT = "transient"      # timeout/connectivity: retryable
    FATAL = "fatal"              # statement-scoped: recorded, not retried
    BATCH_FATAL = "batch_fatal"  # malformed statement/shape: aborts the batch


class ConnectionPool:
    """
    Bounded pool of physical connections.

    Connections are created lazily by ``factory`` up to ``max_size``.
    ``close()`` closes idle connections and marks checked-out ones stale so
    they are closed when released; the pool stays usable afterwards.
    """

    def __init__(
        self,
        factory: Callable[[], Any],
        closer: Callable[[Any], None],
        max_size: int = 4,
        checkout_timeout: Optional[float] = None,
    ):
        if max_size < 1:
            raise ValueError(f"Pool size must be at least 1, got {max_size}")
        self._factory = factory
        self._closer = closer
        self.max_size = max_size
        self.checkout_timeout = checkout_timeout
        self._cond = threading.Condition()
        self._idle: List[Any] = []
        self._size = 0
        self._generation = 0
        self._generations: Dict[int, int] = {}

    @property
    def size(self) -> int:
        """Number of open connections (idle and checked out)."""
        with self._cond:
            return self._size

    @property
    def idle_count(self) -> int:
        with self._cond:
            return len(self._idle)

    def acquire(self) -> Any:
        """Check out a connection, creating one if the pool has room."""
        with self._cond:
            while True:
                if self._idle:
                    conn = self._idle.pop()
                    self._generations[id(conn)] = self._generation
                    return conn
                if self._size < self.max_size:
                    self._size += 1
                    generation = self._generation
                    break
                if not self._cond.wait(self.checkout_timeout):
                    raise TransientStoreError(
                        f"Timed out after {self.checkout_timeout}s waiting for a pooled connection"
                    )

        try:
            conn = self._factory()
        except BaseException:
            with self._cond:
                self._size -= 1
                self._cond.notify()
            raise

        with self._cond:
            self._generations[id(conn)] = generation
        logger.debug(f"Opened pooled connection ({self.size}/{self.max_size})")
        return conn

    def release(self, conn: Any, discard: bool = False) -> None:
        """Return a connection; closes it when discarded or stale."""
        with self._cond:
            stale = self._generations.pop(id(conn), None) != self._generation
            if not (discard or stale):
                self._idle.append(conn)
                self._cond.notify()
                return
            self._size -= 1
            self._cond.notify()
        self._close_quietly(conn)

    def close(self) -> None:
        """Close every idle connection. Safe to call repeatedly."""
        with self._cond:
            idle, self._idle = self._idle, []
            self._size -= len(idle)
            self._generation += 1
            self._cond.notify_all()
        for conn in idle:
            self._close_quietly(conn)

    def _close_quietly(self, conn: Any) -> None:
        try:
            self._closer(conn)
        except Exception as e:
            logger.debug(f"Ignoring error while closing connection: {e}")


class Transaction:
    """
    A transaction bound to one checked-out connection.

    Scoped to a single logical operation; ``release()`` must be called to
    return the connection (the context-manager form does it automatically and
    rolls back if the block raised).
    """

    def __init__(self, store: "RelationalStore", connection: Any, isolation_level: IsolationLevel):
        self.store = store
        self.connection = connection
        self.isolation_level = isolation_level
        self.is_active = True
        self._released = False

    def __enter__(self) -> "Transaction":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        try:
            if self.is_active and exc_type is not None:
                self.rollback()
            elif self.is_active:
                self.commit()
        finally:
            self.release()

    def commit(self) -> None:
        self._check_active()
        self.store._guard(self.store._commit, self.connection)
        self.is_active = False
        logger.debug("Transaction committed")

    def rollback(self) -> None:
        self._check_active()
        # Inactive from here on even if the rollback itself fails
        self.is_active = False
        self.store._guard(self.store._rollback, self.connection)
        logger.debug("Transaction rolled back")

    def release(self, keep_open: bool = True) -> None:
        """
        Return the connection to the pool (or close it when ``keep_open`` is False).

        A still-active transaction is rolled back first.
        """
        if self._released:
            return
        self._released = True
        discard = not keep_open
        try:
            if self.is_active:
                self.is_active = False
                self.store._rollback(self.connection)
            self.store._end(self.connection)
        except Exception as e:
            logger.warning(f"Discarding connection after failed transaction cleanup: {e}")
            discard = True
        self.store._pool.release(self.connection, discard=discard)

    def _check_active(self) -> None:
        if not self.is_active:
            raise StatementError("Transaction is no longer active")


class RelationalStore(ABC):
    """
    Abstract base class for relational stores.

    Subclasses provide the driver-specific pieces (connect, begin, execute,
    error classification); this class supplies pooling, transaction handling
    and translation of driver errors into the tablesync taxonomy.
    """

    # Name of the SQL dialect used to build statements for this store
    dialect: str = ""

    def __init__(self, pool_size: int = 4, checkout_timeout: Optional[float] = None):
        self._pool = ConnectionPool(
            factory=self._guarded_connect,
            closer=self._disconnect,
            max_size=pool_size,
            checkout_timeout=checkout_timeout,
        )

    def __enter__(self) -> "RelationalStore":
        return self

    def __exit__(self, *args) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Public contract
    # ------------------------------------------------------------------

    def open(self) -> None:
        """Verify connectivity by opening one pooled connection."""
        conn = self._pool.acquire()
        self._pool.release(conn)

    def close(self) -> None:
        """Close pooled connections. Idempotent."""
        self._pool.close()
        logger.debug(f"Closed {type(self).__name__} connections")

    @contextmanager
    def connection(self) -> Iterator[Any]:
        """Check out a connection for the duration of the block."""
        conn = self._pool.acquire()
        discard = False
        try:
            yield conn
        except TransientStoreError:
            discard = True
            raise
        finally:
            self._pool.release(conn, discard=discard)

    def begin_transaction(
        self,
        isolation_level: IsolationLevel = IsolationLevel.READ_COMMITTED,
    ) -> Transaction:
        """Check out a connection and begin a transaction on it."""
        conn = self._pool.acquire()
        try:
            self._guard(self._begin, conn, isolation_level)
        except BaseException:
            self._pool.release(conn, discard=True)
            raise
        logger.debug(f"Began transaction ({isolation_level.value})")
        return Transaction(self, conn, isolation_level)

    def execute(self, command: Command, transaction: Optional[Transaction] = None) -> ExecutionResult:
        """
        Execute a single command.

        Inside a transaction the command runs on the transaction's connection;
        otherwise on a pooled connection in autocommit mode.
        """
        if transaction is not None:
            if not transaction.is_active:
                raise StatementError("Cannot execute on an inactive transaction")
            try:
                return self._guard(self._execute_on, transaction.connection, command)
            except (TransientStoreError, ProviderError) as e:
                if not self._transaction_lost(transaction.connection, e):
                    raise
                logger.warning(f"Transaction rolled back by the store: {e}")
                raise TransactionAbortedError(
                    f"Transaction was rolled back by the store: {e}",
                    e.sqlstate,
                    transient=isinstance(e, TransientStoreError),
                ) from e

        with self.connection() as conn:
            return self._guard(self._execute_on, conn, command)

    def classify(self, error: BaseException) -> ErrorKind:
        """Classify a failure as transient, statement-fatal or batch-fatal."""
        if isinstance(error, TransientStoreError):
            return ErrorKind.TRANSIENT
        if isinstance(error, (StatementError, TransactionAbortedError, ValidationError)):
            return ErrorKind.BATCH_FATAL
        if isinstance(error, TableSyncError):
            return ErrorKind.FATAL
        return self._classify_driver_error(error)

    def translate_error(self, error: BaseException) -> StoreError:
        """Map a driver exception to the matching StoreError subclass."""
        kind = self._classify_driver_error(error)
        sqlstate = self._sqlstate(error)
        message = self._message(error)
        if kind == ErrorKind.TRANSIENT:
            return TransientStoreError(message, sqlstate)
        if kind == ErrorKind.BATCH_FATAL:
            return StatementError(message, sqlstate)
        return ProviderError(message, sqlstate)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _guard(self, func: Callable[..., Any], *args: Any) -> Any:
        """Call a driver-level function, translating driver exceptions."""
        try:
            return func(*args)
        except TableSyncError:
            raise
        except Exception as e:
            raise self.translate_error(e) from e

    def _guarded_connect(self) -> Any:
        return self._guard(self._connect)

    def _sqlstate(self, error: BaseException) -> Optional[str]:
        return None

    def _message(self, error: BaseException) -> str:
        return str(error)

    def _end(self, conn: Any) -> None:
        """Restore the connection to autocommit after a transaction."""
        pass

    def _transaction_lost(self, conn: Any, error: StoreError) -> bool:
        """True when ``error`` left no open transaction on ``conn``."""
        return False

    @abstractmethod
    def _connect(self) -> Any:
        """Open a new physical connection."""
        pass

    @abstractmethod
    def _disconnect(self, conn: Any) -> None:
        """Close a physical connection."""
        pass

    @abstractmethod
    def _begin(self, conn: Any, isolation_level: IsolationLevel) -> None:
        pass

    @abstractmethod
    def _commit(self, conn: Any) -> None:
        pass

    @abstractmethod
    def _rollback(self, conn: Any) -> None:
        pass

    @abstractmethod
    def _execute_on(self, conn: Any, command: Command) -> ExecutionResult:
        """Run one command on a connection and collect its result."""
        pass

    @abstractmethod
    def _classify_driver_error(self, error: BaseException) -> ErrorKind:
        pass
