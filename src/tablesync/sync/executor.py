"""
Bounded-retry command execution.

Runs one command through a RelationalStore, retrying the identical
statement only when the failure is classified as transient (timeout or
connectivity), with exponential backoff between attempts.
"""

import logging
import random
import time
from dataclasses import dataclass
from typing import Callable, Optional

from ..core.commands import Command, ExecutionResult
from ..core.exceptions import TransactionAbortedError, TransientStoreError
from ..core.store import ErrorKind, RelationalStore, Transaction
from ..core.logging import log_with_context


logger = logging.getLogger(__name__)


@dataclass
class RetryPolicy:
    """
    Configuration for retry behavior.

    Attributes:
        max_attempts: Maximum number of attempts (including first try)
        initial_delay_ms: Initial delay in milliseconds
        max_delay_ms: Maximum delay in milliseconds
        backoff_multiplier: Multiplier for exponential backoff
        jitter: Whether to add random jitter to delay
        classify: Optional classifier overriding the store's own
    """
    max_attempts: int = 3
    initial_delay_ms: float = 250.0
    max_delay_ms: float = 1000.0
    backoff_multiplier: float = 2.0
    jitter: bool = True
    classify: Optional[Callable[[BaseException], ErrorKind]] = None

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")


def calculate_delay(attempt: int, policy: RetryPolicy) -> float:
    """
    Calculate delay for a given attempt with exponential backoff.

    Args:
        attempt: Attempt number (0-based)
        policy: Retry policy

    Returns:
        Delay in seconds
    """
    delay_ms = min(
        policy.initial_delay_ms * (policy.backoff_multiplier ** attempt),
        policy.max_delay_ms
    )

    # Add jitter if enabled (±25% random variation)
    if policy.jitter:
        jitter_factor = 0.75 + (random.random() * 0.5)
        delay_ms *= jitter_factor

    return delay_ms / 1000.0


class CommandExecutor:
    """
    Executes commands with bounded retry on transient failures.

    Success exits immediately; a non-transient failure, or a transient one
    on the last attempt, propagates. An exhausted transient failure is raised
    as TransientStoreError carrying the number of attempts made;
    TransactionAbortedError always propagates on the first attempt.
    """

    def __init__(
        self,
        store: RelationalStore,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.policy = policy or RetryPolicy()
        self._sleep = sleep

    def classify(self, error: BaseException) -> ErrorKind:
        if self.policy.classify is not None:
            return self.policy.classify(error)
        return self.store.classify(error)

    def execute(
        self,
        command: Command,
        max_attempts: Optional[int] = None,
        transaction: Optional[Transaction] = None,
    ) -> ExecutionResult:
        """
        Execute ``command``, retrying transient failures.

        Args:
            command: The command to run
            max_attempts: Overrides the policy's attempt bound
            transaction: Transaction to run the command in (autocommit if None)

        Returns:
            The store's ExecutionResult
        """
        attempts = max_attempts if max_attempts is not None else self.policy.max_attempts
        if attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {attempts}")

        for attempt in range(1, attempts + 1):
            try:
                result = self.store.execute(command, transaction)
            except Exception as e:
                # Never retried: the transaction is already gone
                if isinstance(e, TransactionAbortedError) or self.classify(e) != ErrorKind.TRANSIENT:
                    raise

                if attempt >= attempts:
                    log_with_context(
                        logger, logging.ERROR,
                        f"Statement failed after {attempt} attempt(s): {e}",
                        attempt=attempt, statement=command.describe(),
                    )
                    if isinstance(e, TransientStoreError):
                        e.attempts = attempt
                        raise
                    raise TransientStoreError(str(e), attempts=attempt) from e

                log_with_context(
                    logger, logging.WARNING,
                    f"Transient failure on attempt {attempt}/{attempts}: {e}",
                    attempt=attempt, statement=command.describe(),
                )
                delay = calculate_delay(attempt - 1, self.policy)
                if delay > 0:
                    logger.debug(f"Backing off for {delay:.3f}s before retry")
                    self._sleep(delay)
                continue

            if attempt > 1:
                logger.info(f"Statement succeeded after {attempt} attempts")
            return result

        # Unreachable: the loop either returns or raises
        raise TransientStoreError("No attempts were made", attempts=0)
