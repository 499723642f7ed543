"""
Read-side helpers: load snapshots, fetch scalars, run ad-hoc commands.

Every statement goes through a CommandExecutor, so reads get the same
bounded retry on transient failures as synchronization writes.
"""

import logging
from typing import Any, Optional, Sequence, Union

from ..core.commands import (
    DEFAULT_TIMEOUT_SECONDS,
    Command,
    CommandKind,
    ExecutionResult,
    Parameter,
    ParameterDirection,
    ScalarResult,
)
from ..core.exceptions import StatementError
from ..core.models import TableSchema, TabularSnapshot
from ..core.store import RelationalStore
from ..core.utils import split_qualified_name
from .executor import CommandExecutor, RetryPolicy
from .statements import StatementBuilder, get_dialect


logger = logging.getLogger(__name__)


class QueryRunner:
    """Runs reads and ad-hoc commands against a store."""

    def __init__(
        self,
        store: RelationalStore,
        retry_policy: Optional[RetryPolicy] = None,
        executor: Optional[CommandExecutor] = None,
    ):
        self.store = store
        self.executor = executor or CommandExecutor(store, retry_policy)

    def load_snapshot(
        self,
        table: TableSchema,
        where: Optional[str] = None,
        parameters: Sequence[Any] = (),
        timeout: int = DEFAULT_TIMEOUT_SECONDS,
    ) -> TabularSnapshot:
        """
        Load a table into a new snapshot of Unchanged rows.

        Args:
            table: Table description
            where: Optional predicate with '?' placeholders. Inserted into the
                SQL verbatim: callers must not build it from untrusted input
            parameters: Values bound to the predicate's placeholders
            timeout: Statement timeout in seconds

        Returns:
            Populated TabularSnapshot
        """
        snapshot = table.new_snapshot()
        self.fill(snapshot, where, parameters, timeout)
        return snapshot

    def fill(
        self,
        snapshot: TabularSnapshot,
        where: Optional[str] = None,
        parameters: Sequence[Any] = (),
        timeout: int = DEFAULT_TIMEOUT_SECONDS,
    ) -> int:
        """Append the selected rows to an existing snapshot; returns how many were loaded."""
        builder = StatementBuilder(snapshot, get_dialect(self.store.dialect))
        command = builder.select(where, parameters)
        command.timeout = timeout

        result = self.executor.execute(command)
        records = result.records()
        for record in records:
            snapshot.load_row(record)

        logger.debug(f"Loaded {len(records)} row(s) into {snapshot.qualified_name}")
        return len(records)

    def get_scalar(
        self,
        command: Union[Command, str],
        expected_type: Optional[type] = None,
        parameters: Sequence[Any] = (),
    ) -> ScalarResult:
        """
        Run a query and return the first column of its first row.

        Args:
            command: Command or SQL text
            expected_type: Type the value must convert to losslessly
            parameters: Values for '?' placeholders when ``command`` is text

        Returns:
            ScalarResult telling apart no rows, NULL, type mismatch and a present value
        """
        command = self._as_command(command, parameters)
        result = self.executor.execute(command)
        scalar = ScalarResult.from_rows(result.rows, expected_type)
        if scalar.error:
            logger.warning(f"Scalar query returned an unexpected type: {scalar.error}")
        return scalar

    def execute(
        self,
        command: Union[Command, str],
        parameters: Sequence[Any] = (),
    ) -> ExecutionResult:
        """Run one command in autocommit mode."""
        return self.executor.execute(self._as_command(command, parameters))

    def call_procedure(
        self,
        name: str,
        *parameters: Parameter,
        timeout: int = DEFAULT_TIMEOUT_SECONDS,
    ) -> ExecutionResult:
        """
        Call a stored procedure.

        OUT and INOUT parameter values are written back into the given
        Parameter objects; the procedure's return value is on the result.
        """
        try:
            split_qualified_name(name)
        except ValueError as e:
            raise StatementError(str(e)) from e

        command = Command(
            text=name,
            kind=CommandKind.STORED_PROCEDURE,
            parameters=list(parameters),
            timeout=timeout,
        )
        result = self.executor.execute(command)
        logger.debug(f"Procedure {name} returned {result.return_value}")
        return result

    def _as_command(self, command: Union[Command, str], parameters: Sequence[Any]) -> Command:
        if isinstance(command, Command):
            return command
        built = Command(text=command)
        for index, value in enumerate(parameters):
            built.add_parameter(f"p{index}", value=value, direction=ParameterDirection.IN)
        return built
