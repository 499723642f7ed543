"""
tablesync - apply change-tracked table snapshots to a relational store.

Typical use:

    store = create_store("sqlite", db_path="local/app.db")
    runner = QueryRunner(store)
    snapshot = runner.load_snapshot(employee_schema)
    snapshot.find(Id=1)["Salary"] = 50000
    result, message = ChangeSetSynchronizer(store).synchronize(snapshot)
"""

from .core import (
    Column,
    Command,
    IsolationLevel,
    RowState,
    ScalarResult,
    SynchronizationResult,
    TableSchema,
    TabularSnapshot,
)
from .store import create_store
from .sync import ChangeSetSynchronizer, QueryRunner, RetryPolicy, SyncOutcome

__version__ = "0.1.0"

__all__ = [
    "ChangeSetSynchronizer",
    "Column",
    "Command",
    "IsolationLevel",
    "QueryRunner",
    "RetryPolicy",
    "RowState",
    "ScalarResult",
    "SyncOutcome",
    "SynchronizationResult",
    "TableSchema",
    "TabularSnapshot",
    "create_store",
]
