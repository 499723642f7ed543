"""
Custom exceptions for the tablesync package.
"""

from typing import Optional


class TableSyncError(Exception):
    """Base exception for all tablesync errors."""
    pass


class ValidationError(TableSyncError):
    """
    Invalid input detected before any I/O.

    Raised when:
    - No snapshot or store was supplied
    - The snapshot has no primary-key or unique column
    - An identifier is not a safe SQL identifier
    """
    pass


class ConfigError(TableSyncError):
    """
    Error in tablesync configuration.

    Raised when:
    - Configuration file is missing or invalid
    - A configuration value is out of its valid range
    - A table schema declaration is malformed
    """
    pass


class StoreError(TableSyncError):
    """
    Error reported by the relational store.

    Keeps the SQLSTATE (when the driver exposes one). The driver exception
    is chained as ``__cause__``.
    """

    def __init__(self, message: str, sqlstate: Optional[str] = None):
        super().__init__(message)
        self.sqlstate = sqlstate


class TransientStoreError(StoreError):
    """
    Timeout or connectivity failure that may succeed on retry.

    ``attempts`` is set by the executor once retries are exhausted.
    """

    def __init__(self, message: str, sqlstate: Optional[str] = None, attempts: int = 0):
        super().__init__(message, sqlstate)
        self.attempts = attempts


class ProviderError(StoreError):
    """Store-reported failure scoped to a single statement (e.g. constraint violation)."""
    pass


class ConcurrencyError(ProviderError):
    """
    A write statement affected zero rows.

    No row-version column is compared, so this cannot tell a concurrent
    change apart from a row that never existed.
    """
    pass


class StatementError(StoreError):
    """
    Malformed statement or invalid table shape.

    Batch-fatal: aborts a whole synchronization call.
    """
    pass


class UnexpectedError(TableSyncError):
    """Failure that does not fit any other category."""
    pass


class TransactionAbortedError(StoreError):
    """
    The store rolled back the enclosing transaction while a statement failed.

    Raised when:
    - SQLite interrupts a write on timeout (the whole transaction is undone)
    - SQL Server chooses the session as a deadlock victim or dooms the transaction

    Never retried: statements already applied in the transaction are gone.
    ``transient`` tells whether the underlying failure was a timeout or
    deadlock rather than a permanent error.
    """

    def __init__(self, message: str, sqlstate: Optional[str] = None, transient: bool = False):
        super().__init__(message, sqlstate)
        self.transient = transient
