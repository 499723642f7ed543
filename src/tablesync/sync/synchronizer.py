"""
Change-set synchronization engine.

Applies the pending changes of a TabularSnapshot to a relational store in
one transaction and reconciles the outcome back into the snapshot:

1. Validate the snapshot (no I/O on failure)
2. Collect changed rows; nothing to do means Success with zero statements
3. Derive the command templates the caller did not supply
4. Begin one transaction enclosing every write
5. Execute one statement per changed row, recording row-level failures
6. Classify the aggregate outcome, then commit or roll back
7. Merge store-assigned values and accept the applied rows
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional

from ..core.commands import DEFAULT_TIMEOUT_SECONDS
from ..core.exceptions import (
    ConcurrencyError,
    ProviderError,
    StatementError,
    StoreError,
    TransactionAbortedError,
    TransientStoreError,
    ValidationError,
)
from ..core.logging import CorrelationContext
from ..core.models import (
    IsolationLevel,
    Row,
    RowState,
    SynchronizationResult,
    TabularSnapshot,
)
from ..core.store import RelationalStore, Transaction
from .executor import CommandExecutor, RetryPolicy
from .statements import (
    STATE_STATEMENTS,
    StatementBuilder,
    StatementSet,
    get_dialect,
)


logger = logging.getLogger(__name__)

ERROR_HEADER = "The following errors were encountered while attempting to update the data source:"


@dataclass
class SyncOutcome:
    """
    Result of one synchronize call.

    Unpacks as ``(result, error_message)``; the row counts describe what was
    committed to the store.
    """
    result: SynchronizationResult
    error_message: str = ""
    inserted: int = 0
    updated: int = 0
    deleted: int = 0
    failed: int = 0

    def __iter__(self) -> Iterator[Any]:
        return iter((self.result, self.error_message))

    @property
    def succeeded(self) -> bool:
        return self.result == SynchronizationResult.SUCCESS


@dataclass
class _RowOutcome:
    row: Row
    state: RowState
    applied: bool
    generated: Dict[str, Any] = field(default_factory=dict)


class ChangeSetSynchronizer:
    """
    Synchronizes one snapshot's pending changes with a relational store.

    Each call checks its own connection out of the store's pool, so one
    synchronizer may be shared between threads.
    """

    def __init__(
        self,
        store: RelationalStore,
        retry_policy: Optional[RetryPolicy] = None,
        statements: Optional[StatementSet] = None,
        keep_connection_open: bool = False,
        isolation_level: IsolationLevel = IsolationLevel.READ_COMMITTED,
        on_rollback_error: Optional[Callable[[BaseException], None]] = None,
        executor: Optional[CommandExecutor] = None,
    ):
        """
        Initialize the synchronizer.

        Args:
            store: Store the changes are written to
            retry_policy: Attempt bound and backoff for each statement
            statements: Caller-supplied command templates (others are derived)
            keep_connection_open: Return the connection to the pool instead of closing it
            isolation_level: Isolation level of the enclosing transaction
            on_rollback_error: Called with any error raised by a rollback; such
                errors are never propagated
            executor: Custom executor (defaults to one built from store and policy)
        """
        self.store = store
        self.statements = statements
        self.keep_connection_open = keep_connection_open
        self.isolation_level = isolation_level
        self.on_rollback_error = on_rollback_error
        self.executor = executor or CommandExecutor(store, retry_policy)

    def synchronize(
        self,
        snapshot: TabularSnapshot,
        rollback_all_on_error: bool = False,
        timeout: int = DEFAULT_TIMEOUT_SECONDS,
        statements: Optional[StatementSet] = None,
    ) -> SyncOutcome:
        """
        Apply the snapshot's pending changes and reconcile it in place.

        Args:
            snapshot: Snapshot to synchronize (mutated in place)
            rollback_all_on_error: Roll back and discard every edit unless all rows succeed
            timeout: Per-statement timeout in seconds
            statements: Command templates for this call (override the instance's)

        Returns:
            SyncOutcome; no exception escapes this method
        """
        sync_id = uuid.uuid4().hex[:12]
        table = getattr(snapshot, "name", None)
        with CorrelationContext(sync_id=sync_id, table=table):
            try:
                return self._synchronize(
                    snapshot,
                    rollback_all_on_error,
                    timeout,
                    statements or self.statements,
                )
            except Exception as e:
                logger.exception(f"Unexpected failure synchronizing {table}: {e}")
                return SyncOutcome(SynchronizationResult.FAILED, str(e))

    def _synchronize(
        self,
        snapshot: TabularSnapshot,
        rollback_all_on_error: bool,
        timeout: int,
        supplied: Optional[StatementSet],
    ) -> SyncOutcome:
        try:
            builder = self._validate(snapshot, timeout)
        except ValidationError as e:
            logger.error(f"Synchronization rejected: {e}")
            return SyncOutcome(SynchronizationResult.FAILED, str(e))

        changed = snapshot.get_changes()
        if not changed:
            logger.debug("No pending changes")
            return SyncOutcome(SynchronizationResult.SUCCESS)

        # Per-call copies carry the timeout; the caller's templates stay untouched
        try:
            templates = builder.derive(supplied).with_timeout(timeout)
        except ValidationError as e:
            logger.error(f"Cannot derive statements: {e}")
            return SyncOutcome(SynchronizationResult.FAILED, str(e))

        logger.info(f"Synchronizing {len(changed)} changed row(s) of {snapshot.qualified_name}")

        transaction: Optional[Transaction] = None
        try:
            transaction = self.store.begin_transaction(self.isolation_level)

            outcomes = [self._apply_row(row, templates, transaction) for row in changed]

            failed = [o for o in outcomes if not o.applied]
            result = self._classify_outcome(len(outcomes), len(failed))
            message = self._build_error_message(failed)

            if rollback_all_on_error and result != SynchronizationResult.SUCCESS:
                self._rollback_quietly(transaction)
                snapshot.reject_changes()
                logger.warning(
                    f"Rolled back all changes: {len(failed)} of {len(outcomes)} row(s) failed"
                )
                return SyncOutcome(SynchronizationResult.FAILED, message, failed=len(failed))

            transaction.commit()

            applied = [o for o in outcomes if o.applied]
            for outcome in applied:
                if outcome.generated:
                    outcome.row.merge(outcome.generated)

            if result == SynchronizationResult.SUCCESS:
                snapshot.accept_changes()
            elif result == SynchronizationResult.PARTIAL_SUCCESS:
                for outcome in applied:
                    outcome.row.accept_changes()

            sync_outcome = SyncOutcome(
                result,
                message,
                inserted=sum(1 for o in applied if o.state == RowState.ADDED),
                updated=sum(1 for o in applied if o.state == RowState.MODIFIED),
                deleted=sum(1 for o in applied if o.state == RowState.DELETED),
                failed=len(failed),
            )
            logger.info(
                f"Synchronization {result.value}: {sync_outcome.inserted} inserted, "
                f"{sync_outcome.updated} updated, {sync_outcome.deleted} deleted, "
                f"{sync_outcome.failed} failed"
            )
            return sync_outcome

        except TransactionAbortedError as e:
            self._rollback_quietly(transaction)
            logger.error(f"Synchronization aborted, transaction lost: {e}")
            result = SynchronizationResult.TIMED_OUT if e.transient else SynchronizationResult.FAILED
            return SyncOutcome(result, str(e))

        except TransientStoreError as e:
            self._rollback_quietly(transaction)
            logger.error(f"Synchronization timed out: {e}")
            return SyncOutcome(SynchronizationResult.TIMED_OUT, str(e))

        except (StatementError, ValidationError) as e:
            self._rollback_quietly(transaction)
            logger.error(f"Synchronization aborted: {e}")
            return SyncOutcome(
                SynchronizationResult.FAILED,
                f"Synchronization of {snapshot.qualified_name} aborted: {e}",
            )

        except StoreError as e:
            self._rollback_quietly(transaction)
            logger.error(f"Synchronization failed: {e}")
            return SyncOutcome(SynchronizationResult.FAILED, str(e))

        finally:
            if transaction is not None:
                transaction.release(keep_open=self.keep_connection_open)

    def _validate(self, snapshot: TabularSnapshot, timeout: int) -> StatementBuilder:
        if self.store is None:
            raise ValidationError("Store has not been set up.")
        if snapshot is None:
            raise ValidationError("No snapshot, containing the rows to update, was supplied.")
        if timeout is None or timeout < 0:
            raise ValidationError(f"Invalid statement timeout: {timeout}")
        return StatementBuilder(snapshot, get_dialect(self.store.dialect))

    def _apply_row(self, row: Row, templates: StatementSet, transaction: Transaction) -> _RowOutcome:
        """
        Execute the statement for one changed row.

        Row-scoped failures are recorded on the row; transient and batch-fatal
        failures propagate and abort the call.
        """
        state = row.state
        kind = STATE_STATEMENTS[state]
        template = templates.for_state(state)
        if template is None:
            raise StatementError(
                f"No {kind.value} command is available for this table"
            )

        row.clear_error()
        command = template.bind(row)
        try:
            result = self.executor.execute(command, transaction=transaction)
            if result.rows_affected == 0:
                raise ConcurrencyError(
                    f"Concurrency violation: the {kind.value} command "
                    "affected 0 of the expected 1 records."
                )
        except ProviderError as e:
            row.set_error(str(e))
            logger.warning(f"{state.value} row failed: {e}")
            return _RowOutcome(row, state, applied=False)
        except (TransientStoreError, TransactionAbortedError) as e:
            row.set_error(str(e))
            raise

        generated = {
            binding.source_column: command.get_parameter(binding.name).value
            for binding in template.output_bindings()
        }
        return _RowOutcome(row, state, applied=True, generated=generated)

    def _classify_outcome(self, total: int, failed: int) -> SynchronizationResult:
        if failed == 0:
            return SynchronizationResult.SUCCESS
        if failed == total:
            return SynchronizationResult.FAILED
        return SynchronizationResult.PARTIAL_SUCCESS

    def _build_error_message(self, failed: List[_RowOutcome]) -> str:
        if not failed:
            return ""
        lines = [ERROR_HEADER]
        lines.extend(o.row.error_message for o in failed if o.row.error_message)
        return "\n".join(lines)

    def _rollback_quietly(self, transaction: Optional[Transaction]) -> None:
        """Best-effort rollback: failures go to the log and the diagnostic hook only."""
        if transaction is None or not transaction.is_active:
            return
        try:
            transaction.rollback()
        except Exception as e:
            logger.warning(f"Rollback failed: {e}")
            if self.on_rollback_error is not None:
                try:
                    self.on_rollback_error(e)
                except Exception:
                    logger.exception("Rollback diagnostic hook raised")
