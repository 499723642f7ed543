"""
Core abstractions for tablesync.

Contains the snapshot model, command types, exceptions, the relational
store interface and logging utilities.
"""

from .models import (
    Column,
    IsolationLevel,
    Row,
    RowState,
    SynchronizationResult,
    TableSchema,
    TabularSnapshot,
)
from .commands import (
    Command,
    CommandKind,
    ExecutionResult,
    Parameter,
    ParameterDirection,
    ScalarResult,
    ScalarStatus,
)
from .exceptions import (
    ConcurrencyError,
    ConfigError,
    ProviderError,
    StatementError,
    StoreError,
    TableSyncError,
    TransactionAbortedError,
    TransientStoreError,
    UnexpectedError,
    ValidationError,
)
from .store import ConnectionPool, ErrorKind, RelationalStore, Transaction

__all__ = [
    # Models
    "Column",
    "IsolationLevel",
    "Row",
    "RowState",
    "SynchronizationResult",
    "TableSchema",
    "TabularSnapshot",
    # Commands
    "Command",
    "CommandKind",
    "ExecutionResult",
    "Parameter",
    "ParameterDirection",
    "ScalarResult",
    "ScalarStatus",
    # Exceptions
    "ConcurrencyError",
    "ConfigError",
    "ProviderError",
    "StatementError",
    "StoreError",
    "TableSyncError",
    "TransactionAbortedError",
    "TransientStoreError",
    "UnexpectedError",
    "ValidationError",
    # Store
    "ConnectionPool",
    "ErrorKind",
    "RelationalStore",
    "Transaction",
]
