"""
Synchronization engine: statement building, retrying execution,
change-set synchronization and read helpers.
"""

from .executor import CommandExecutor, RetryPolicy, calculate_delay
from .query import QueryRunner
from .statements import (
    CommandTemplate,
    Dialect,
    ParameterBinding,
    SourceVersion,
    StatementBuilder,
    StatementKind,
    StatementSet,
    get_dialect,
)
from .synchronizer import ChangeSetSynchronizer, SyncOutcome

__all__ = [
    "ChangeSetSynchronizer",
    "CommandExecutor",
    "CommandTemplate",
    "Dialect",
    "ParameterBinding",
    "QueryRunner",
    "RetryPolicy",
    "SourceVersion",
    "StatementBuilder",
    "StatementKind",
    "StatementSet",
    "SyncOutcome",
    "calculate_delay",
    "get_dialect",
]
