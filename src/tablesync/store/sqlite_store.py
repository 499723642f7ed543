"""
SQLite-backed relational store.

Used for local development and tests; SQL Server (SqlServerStore) is the
production backend.
"""

import logging
import sqlite3
import time
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional, Tuple, Union

from ..core.commands import Command, CommandKind, ExecutionResult
from ..core.exceptions import StatementError
from ..core.models import IsolationLevel
from ..core.store import ErrorKind, RelationalStore


logger = logging.getLogger(__name__)

# Number of SQLite VM instructions between timeout checks
_PROGRESS_INTERVAL = 1000

_TRANSIENT_MESSAGES = ("database is locked", "database is busy", "interrupted", "unable to open")


def _adapt_parameters(values: Tuple[Any, ...]) -> Tuple[Any, ...]:
    """Convert values sqlite3 cannot bind natively."""
    adapted = []
    for value in values:
        if isinstance(value, Decimal):
            value = str(value)
        elif isinstance(value, (datetime, date)):
            value = value.isoformat()
        adapted.append(value)
    return tuple(adapted)


class SqliteStore(RelationalStore):
    """
    SQLite implementation of the relational store.

    Connections run in autocommit mode; transactions are explicit
    BEGIN/COMMIT/ROLLBACK. Per-statement timeouts interrupt the running
    statement, which surfaces as a transient error; when the interrupt also
    ended the enclosing transaction it surfaces as TransactionAbortedError.
    """

    dialect = "sqlite"

    def __init__(
        self,
        db_path: Union[str, Path],
        pool_size: int = 4,
        busy_timeout: float = 5.0,
        checkout_timeout: Optional[float] = None,
    ):
        """
        Initialize the SQLite store.

        Args:
            db_path: Path to the database file, or ':memory:'
            pool_size: Maximum number of pooled connections
            busy_timeout: Seconds to wait on a locked database before failing
            checkout_timeout: Seconds to wait for a free pooled connection
        """
        self.db_path = str(db_path)
        self.busy_timeout = busy_timeout
        if self.db_path == ":memory:":
            # Every connection to ':memory:' is a separate database
            pool_size = 1
        super().__init__(pool_size=pool_size, checkout_timeout=checkout_timeout)

    def _connect(self) -> sqlite3.Connection:
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(
            self.db_path,
            timeout=self.busy_timeout,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.execute("PRAGMA foreign_keys = ON")
        logger.debug(f"Connected to SQLite store: {self.db_path}")
        return conn

    def _disconnect(self, conn: sqlite3.Connection) -> None:
        conn.close()

    def _begin(self, conn: sqlite3.Connection, isolation_level: IsolationLevel) -> None:
        # SQLite transactions are always serializable; IMMEDIATE takes the
        # write lock up front for the stricter levels
        if isolation_level in (IsolationLevel.SERIALIZABLE, IsolationLevel.REPEATABLE_READ):
            conn.execute("BEGIN IMMEDIATE")
        else:
            conn.execute("BEGIN")

    def _commit(self, conn: sqlite3.Connection) -> None:
        conn.execute("COMMIT")

    def _rollback(self, conn: sqlite3.Connection) -> None:
        if conn.in_transaction:
            conn.execute("ROLLBACK")

    def _transaction_lost(self, conn: sqlite3.Connection, error) -> bool:
        # An interrupted or failed write can make SQLite undo the whole transaction
        return not conn.in_transaction

    def _execute_on(self, conn: sqlite3.Connection, command: Command) -> ExecutionResult:
        if command.kind == CommandKind.STORED_PROCEDURE:
            raise StatementError(
                f"SQLite does not support stored procedures ({command.text})"
            )

        if command.timeout and command.timeout > 0:
            deadline = time.monotonic() + command.timeout
            conn.set_progress_handler(
                lambda: 1 if time.monotonic() > deadline else 0,
                _PROGRESS_INTERVAL,
            )

        cursor = conn.cursor()
        try:
            cursor.execute(command.text, _adapt_parameters(command.input_values()))
            result = ExecutionResult(rows_affected=cursor.rowcount)

            if cursor.description:
                result.columns = [d[0] for d in cursor.description]
                result.rows = [tuple(row) for row in cursor.fetchall()]

            outputs = command.output_parameters()
            if outputs and result.rows:
                # Trailing result row feeds the output parameters in order
                values = result.rows[0]
                for parameter, value in zip(outputs, values):
                    parameter.value = value
            elif len(outputs) == 1:
                # Single output parameter: the generated rowid of an INSERT
                outputs[0].value = cursor.lastrowid
            result.outputs = {p.name: p.value for p in outputs}
            return result
        finally:
            cursor.close()
            conn.set_progress_handler(None, 0)

    def _classify_driver_error(self, error: BaseException) -> ErrorKind:
        if isinstance(error, sqlite3.OperationalError):
            message = str(error).lower()
            if any(text in message for text in _TRANSIENT_MESSAGES):
                return ErrorKind.TRANSIENT
            # no such table/column, syntax errors
            return ErrorKind.BATCH_FATAL
        if isinstance(error, (sqlite3.ProgrammingError, sqlite3.InterfaceError)):
            return ErrorKind.BATCH_FATAL
        return ErrorKind.FATAL

    def _sqlstate(self, error: BaseException) -> Optional[str]:
        # sqlite3 exposes an error code name on 3.11+
        return getattr(error, "sqlite_errorname", None)
