from __future__ import annotations

from itertools import islice

import pytest
from google.cloud import compute_v1

from gcedirector.config import PollingPolicy
from gcedirector.core.conditions import ConditionAccumulator
from gcedirector.providers.gcp.operations import (
    DONE_STATE,
    RUNNING_OR_DONE_STATES,
    OperationPoller,
    fibonacci_intervals,
    is_idempotent_error,
)
from gcedirector.providers.gcp.types import Failure, OperationError

pytestmark = [pytest.mark.unit, pytest.mark.xdist_group("unit")]

PROJECT = "test-project"
ZONE = "us-central1-a"


def _insert_disk(client, name: str):
    return client.insert_disk(PROJECT, ZONE, compute_v1.Disk(name=name)).value


class TestFibonacciIntervals:
    def test_sequence_is_capped_at_max_interval(self):
        policy = PollingPolicy(timeout_seconds=180, max_interval_seconds=8)
        assert list(islice(fibonacci_intervals(policy), 8)) == [1, 1, 2, 3, 5, 8, 8, 8]

    def test_low_cap(self):
        policy = PollingPolicy(timeout_seconds=180, max_interval_seconds=3)
        assert list(islice(fibonacci_intervals(policy), 6)) == [1, 1, 2, 3, 3, 3]


class TestIdempotentErrors:
    def test_insert_already_exists(self):
        assert is_idempotent_error("insert", OperationError("RESOURCE_ALREADY_EXISTS", "exists"))

    def test_delete_not_found(self):
        assert is_idempotent_error("delete", OperationError("RESOURCE_NOT_FOUND", "gone"))

    def test_delete_not_ready(self):
        assert is_idempotent_error("delete", OperationError("RESOURCE_NOT_READY", "busy"))

    def test_not_found_on_insert_is_real(self):
        assert not is_idempotent_error("insert", OperationError("RESOURCE_NOT_FOUND", "no image"))


class TestOperationPoller:
    def test_waits_until_done(self, fake_client, sleep, polling):
        op = _insert_disk(fake_client, "disk-a")
        accumulator = ConditionAccumulator()

        succeeded = OperationPoller(fake_client, PROJECT, polling, sleep=sleep).wait(
            [op], DONE_STATE, accumulator,
        )

        assert [o.name for o in succeeded] == [op.name]
        assert succeeded[0].status == "DONE"
        assert sleep.sleeps == [1, 1]
        assert len(accumulator) == 0
        assert "disk-a" in fake_client.disks

    def test_running_is_enough_when_acceptable(self, fake_client, sleep, polling):
        op = _insert_disk(fake_client, "disk-a")
        accumulator = ConditionAccumulator()

        succeeded = OperationPoller(fake_client, PROJECT, polling, sleep=sleep).wait(
            [op], RUNNING_OR_DONE_STATES, accumulator,
        )

        assert len(succeeded) == 1
        assert succeeded[0].status == "RUNNING"
        assert sleep.sleeps == [1]

    def test_does_not_modify_input(self, fake_client, sleep, polling):
        ops = [_insert_disk(fake_client, "disk-a"), _insert_disk(fake_client, "disk-b")]
        before = list(ops)

        OperationPoller(fake_client, PROJECT, polling, sleep=sleep).wait(
            ops, DONE_STATE, ConditionAccumulator(),
        )

        assert ops == before

    def test_timeout_lists_remaining_operations(self, fake_client, sleep):
        fake_client.stuck.add("disk-stuck")
        done = _insert_disk(fake_client, "disk-ok")
        stuck = _insert_disk(fake_client, "disk-stuck")
        accumulator = ConditionAccumulator()
        policy = PollingPolicy(timeout_seconds=10, max_interval_seconds=8)

        succeeded = OperationPoller(fake_client, PROJECT, policy, sleep=sleep).wait(
            [done, stuck], DONE_STATE, accumulator,
        )

        assert [o.name for o in succeeded] == [done.name]
        assert sleep.sleeps == [1, 1, 2, 3, 5]
        assert accumulator.has_error()
        [message] = [c.message for c in accumulator.conditions()]
        assert message.startswith("Exceeded timeout of '10' seconds")
        assert stuck.name in message
        assert done.name not in message

    def test_idempotent_error_counts_as_success(self, fake_client, sleep, polling):
        fake_client.operation_errors[("insert", "disk-a")] = (
            OperationError("RESOURCE_ALREADY_EXISTS", "The resource 'disk-a' already exists"),
        )
        op = _insert_disk(fake_client, "disk-a")
        accumulator = ConditionAccumulator()

        succeeded = OperationPoller(fake_client, PROJECT, polling, sleep=sleep).wait(
            [op], DONE_STATE, accumulator,
        )

        assert len(succeeded) == 1
        assert len(accumulator) == 0

    def test_real_error_is_accumulated_by_target(self, fake_client, sleep, polling):
        fake_client.operation_errors[("insert", "disk-a")] = (
            OperationError("QUOTA_EXCEEDED", "Quota 'SSD_TOTAL_GB' exceeded."),
        )
        op = _insert_disk(fake_client, "disk-a")
        ok = _insert_disk(fake_client, "disk-b")
        accumulator = ConditionAccumulator()

        succeeded = OperationPoller(fake_client, PROJECT, polling, sleep=sleep).wait(
            [op, ok], DONE_STATE, accumulator,
        )

        assert [o.name for o in succeeded] == [ok.name]
        [condition] = list(accumulator.conditions())
        assert condition.key == "disk-a"
        assert condition.message == "Quota 'SSD_TOTAL_GB' exceeded."

    def test_fetch_failures_are_retried_and_reported_once(self, fake_client, sleep):
        op = _insert_disk(fake_client, "disk-a")
        fake_client.forced[("get_zone_operation", op.name)] = Failure("backend error", code=500)
        accumulator = ConditionAccumulator()
        policy = PollingPolicy(timeout_seconds=2, max_interval_seconds=8)

        succeeded = OperationPoller(fake_client, PROJECT, policy, sleep=sleep).wait(
            [op], DONE_STATE, accumulator,
        )

        assert succeeded == []
        assert fake_client.calls("get_zone_operation") == [op.name] * 3
        messages = [c.message for c in accumulator.conditions()]
        assert len(messages) == 2
        assert messages[0] == "backend error"
        assert messages[1].startswith("Exceeded timeout of '2' seconds")

    def test_fetch_failures_are_reported_per_operation(self, fake_client, sleep):
        first = _insert_disk(fake_client, "disk-a")
        second = _insert_disk(fake_client, "disk-b")
        fake_client.forced[("get_zone_operation", first.name)] = Failure("backend error", code=500)
        fake_client.forced[("get_zone_operation", second.name)] = Failure("backend error", code=503)
        accumulator = ConditionAccumulator()
        policy = PollingPolicy(timeout_seconds=4, max_interval_seconds=8)

        OperationPoller(fake_client, PROJECT, policy, sleep=sleep).wait(
            [first, second], DONE_STATE, accumulator,
        )

        messages = [c.message for c in accumulator.conditions()]
        assert messages.count("backend error") == 2
        assert len(messages) == 3

    def test_empty_batch_does_not_sleep(self, fake_client, sleep, polling):
        succeeded = OperationPoller(fake_client, PROJECT, polling, sleep=sleep).wait(
            [], DONE_STATE, ConditionAccumulator(),
        )

        assert succeeded == []
        assert sleep.sleeps == []

    def test_rejects_empty_acceptable_states(self, fake_client, sleep, polling):
        poller = OperationPoller(fake_client, PROJECT, polling, sleep=sleep)
        with pytest.raises(ValueError, match="acceptable_states"):
            poller.wait([], frozenset(), ConditionAccumulator())
