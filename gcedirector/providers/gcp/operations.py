"""Polling of long-running Google Cloud operations.

Compute Engine and Cloud SQL insert and delete requests return immediately
with an operation handle; the resource only exists (or is gone) once that
operation reaches a terminal state. The poller waits for a batch of operations with Fibonacci backoff,
classifies each completed operation as successful or not, and records
everything that went wrong in the caller's ConditionAccumulator instead of
raising.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Collection, Iterator, Sequence
from typing import Final, Protocol

from loguru import logger

from gcedirector.config import PollingPolicy
from gcedirector.core.conditions import ConditionAccumulator

from .types import Conflict, Failure, NotFound, Ok, OperationError, PendingOperation, Result

log = logger.bind(provider="gcp", component="poller")

DONE_STATE: Final[frozenset[str]] = frozenset({"DONE"})
# Quotas are verified before an operation reaches RUNNING.
RUNNING_OR_DONE_STATES: Final[frozenset[str]] = frozenset({"RUNNING", "DONE"})

# (operation type, error code) pairs meaning the desired end state already holds.
IDEMPOTENT_ERRORS: Final[frozenset[tuple[str, str]]] = frozenset({
    ("insert", "RESOURCE_ALREADY_EXISTS"),
    ("delete", "RESOURCE_NOT_FOUND"),
    ("delete", "RESOURCE_NOT_READY"),
})


class OperationSource(Protocol):
    def get_operation(
        self, project: str, operation: PendingOperation,
    ) -> Result[PendingOperation]: ...


def is_idempotent_error(operation_type: str, error: OperationError) -> bool:
    return (operation_type, error.code) in IDEMPOTENT_ERRORS


def fibonacci_intervals(policy: PollingPolicy) -> Iterator[int]:
    """Yield sleep intervals 1, 1, 2, 3, 5, 8, ... capped at the policy maximum."""
    interval = min(policy.initial_interval_seconds, policy.max_interval_seconds)
    increment = 0
    while True:
        yield interval
        interval, increment = min(interval + increment, policy.max_interval_seconds), interval


class OperationPoller:
    """Waits for batches of operations to reach acceptable states.

    A single poller may serve several waits in sequence, but each operation
    must be handed to exactly one wait.
    """

    def __init__(
        self,
        client: OperationSource,
        project: str,
        policy: PollingPolicy,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._client = client
        self._project = project
        self._policy = policy
        self._sleep = sleep

    def wait(
        self,
        operations: Sequence[PendingOperation],
        acceptable_states: Collection[str],
        accumulator: ConditionAccumulator,
    ) -> list[PendingOperation]:
        """Poll until every operation is in ``acceptable_states`` or the timeout passes.

        Parameters
        ----------
        operations
            Operations to wait for. The sequence itself is not modified.
        acceptable_states
            Terminal statuses ending the wait for an operation.
        accumulator
            Receives real operation errors, the first fetch failure of each
            operation and the timeout.

        Returns
        -------
        list[PendingOperation]
            Latest snapshots of the operations that reached an acceptable
            state without a real error, in completion order.
        """
        if not acceptable_states:
            raise ValueError("acceptable_states must not be empty")

        pending: dict[str, PendingOperation] = {op.name: op for op in operations}
        succeeded: list[PendingOperation] = []
        reported: set[str] = set()
        failed: set[str] = set()
        unreachable: set[str] = set()
        intervals = fibonacci_intervals(self._policy)
        timeout = self._policy.timeout_seconds
        elapsed = 0

        if pending:
            log.debug(
                "Waiting for {n} operations to reach {states}",
                n=len(pending), states=sorted(acceptable_states),
            )

        while pending:
            interval = next(intervals)
            self._sleep(interval)
            elapsed += interval

            for name, operation in list(pending.items()):
                match self._client.get_operation(self._project, operation):
                    case Ok(value=current):
                        pass
                    case NotFound(message=message) | Conflict(message=message) | Failure(message=message):
                        log.bind(zone=operation.zone or None, operation=name).warning(
                            "Could not fetch operation status: {msg}", msg=message,
                        )
                        if name not in unreachable:
                            unreachable.add(name)
                            accumulator.add_error(None, message)
                        continue

                if current.errors and name not in reported:
                    reported.add(name)
                    if self._record_errors(current, accumulator):
                        failed.add(name)

                if current.status in acceptable_states:
                    del pending[name]
                    if name not in failed:
                        succeeded.append(current)

            if pending and elapsed > timeout:
                names = sorted(pending)
                log.warning(
                    "Timed out after {t}s waiting for operations: {names}",
                    t=timeout, names=names,
                )
                accumulator.add_error(
                    None,
                    f"Exceeded timeout of '{timeout}' seconds while polling for "
                    f"pending operations to complete: {names}",
                )
                break

        return succeeded

    @staticmethod
    def _record_errors(operation: PendingOperation, accumulator: ConditionAccumulator) -> bool:
        op_log = log.bind(zone=operation.zone or None, operation=operation.name)
        is_actual_error = False
        for error in operation.errors:
            if is_idempotent_error(operation.operation_type, error):
                op_log.info(
                    "Ignoring {code} on {op_type} of '{target}': {msg}",
                    code=error.code, op_type=operation.operation_type,
                    target=operation.target_name, msg=error.message,
                )
                continue
            op_log.debug("{target}: {msg}", target=operation.target_name, msg=error.message)
            accumulator.add_error(operation.target_name, error.message)
            is_actual_error = True
        return is_actual_error
