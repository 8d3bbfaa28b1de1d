"""Tests for the AccessReconciler use case.

Covers the compare-then-act decision table, idempotence, per-key
serialization under concurrent triggers and the status write-back.
"""

import asyncio
from datetime import timedelta

import pytest

from src.netgate.api.exceptions import EnforcementFailure
from src.netgate.enforcement.domain.entities import (
    AccessAction,
    RuleState,
    SubscriberStatus,
)
from src.netgate.enforcement.use_cases.reconcile_access import (
    AccessReconciler,
    rule_lock_key,
)


class TestDecisionTable:
    @pytest.mark.asyncio
    async def test_expired_subscriber_without_rule_is_blocked(self, reconciler, firewall, repo, subscriber_factory):
        """end = yesterday, rule absent -> one add, rule present afterwards."""
        sub = subscriber_factory(start_offset_days=-31, end_offset_days=-1)

        result = await reconciler.reconcile(sub)

        assert result.action == AccessAction.APPLIED_BLOCK
        assert result.desired_blocked is True
        assert result.observed == RuleState.ABSENT
        assert ("10.0.0.5", "SUB-001") in firewall.rules
        assert firewall.mutations() == [("add", "10.0.0.5", "SUB-001")]
        assert repo.status_updates == [("SUB-001", SubscriberStatus.INACTIVE)]
        assert result.status == SubscriberStatus.INACTIVE

    @pytest.mark.asyncio
    async def test_entitled_subscriber_with_rule_is_unblocked(self, reconciler, firewall, repo, subscriber_factory):
        """end = tomorrow, rule present -> one remove, rule absent afterwards."""
        sub = subscriber_factory(end_offset_days=1)
        firewall.rules.add(("10.0.0.5", "SUB-001"))

        result = await reconciler.reconcile(sub)

        assert result.action == AccessAction.APPLIED_UNBLOCK
        assert firewall.rules == set()
        assert firewall.mutations() == [("remove", "10.0.0.5", "SUB-001")]
        assert repo.status_updates == [("SUB-001", SubscriberStatus.ACTIVE)]

    @pytest.mark.asyncio
    async def test_indeterminate_probe_defers(self, reconciler, firewall, repo, subscriber_factory):
        """Unknown rule state -> DEFERRED, no command, status untouched."""
        firewall.indeterminate = True
        sub = subscriber_factory(end_offset_days=-1)

        result = await reconciler.reconcile(sub)

        assert result.action == AccessAction.DEFERRED
        assert result.observed == RuleState.INDETERMINATE
        assert firewall.mutations() == []
        assert repo.status_updates == []
        assert result.status is None

    @pytest.mark.asyncio
    async def test_blocked_and_present_is_unchanged(self, reconciler, firewall, repo, subscriber_factory):
        firewall.rules.add(("10.0.0.5", "SUB-001"))
        sub = subscriber_factory(end_offset_days=-1)

        result = await reconciler.reconcile(sub)

        assert result.action == AccessAction.NONE
        assert firewall.mutations() == []
        assert repo.status_updates == []

    @pytest.mark.asyncio
    async def test_entitled_and_absent_is_unchanged(self, reconciler, firewall, repo, subscriber_factory):
        result = await reconciler.reconcile(subscriber_factory())

        assert result.action == AccessAction.NONE
        assert firewall.mutations() == []

    @pytest.mark.asyncio
    async def test_future_start_is_blocked_as_pending(self, reconciler, firewall, repo, subscriber_factory):
        sub = subscriber_factory(start_offset_days=2, end_offset_days=32)

        result = await reconciler.reconcile(sub)

        assert result.action == AccessAction.APPLIED_BLOCK
        assert repo.status_updates == [("SUB-001", SubscriberStatus.PENDING)]

    @pytest.mark.asyncio
    async def test_end_equal_to_now_is_expired(self, reconciler, firewall, subscriber_factory, now):
        sub = subscriber_factory(end_offset_days=0)
        assert sub.subscription_end == now

        result = await reconciler.reconcile(sub)

        assert result.action == AccessAction.APPLIED_BLOCK

    @pytest.mark.asyncio
    async def test_explicit_now_overrides_clock(self, reconciler, subscriber_factory, now):
        sub = subscriber_factory(end_offset_days=5)

        result = await reconciler.reconcile(sub, now + timedelta(days=6))

        assert result.action == AccessAction.APPLIED_BLOCK


class TestIdempotence:
    @pytest.mark.asyncio
    async def test_second_pass_issues_no_command(self, reconciler, firewall, subscriber_factory):
        sub = subscriber_factory(end_offset_days=-1)

        first = await reconciler.reconcile(sub)
        second = await reconciler.reconcile(sub)

        assert first.action == AccessAction.APPLIED_BLOCK
        assert second.action == AccessAction.NONE
        assert len(firewall.mutations()) == 1


class TestForceBlocked:
    @pytest.mark.asyncio
    async def test_deleted_subscriber_is_blocked_regardless_of_dates(self, reconciler, firewall, repo, subscriber_factory):
        sub = subscriber_factory(end_offset_days=30)

        result = await reconciler.reconcile(sub, force_blocked=True)

        assert result.action == AccessAction.APPLIED_BLOCK
        assert ("10.0.0.5", "SUB-001") in firewall.rules
        # Record is gone, nothing to write back
        assert repo.status_updates == []


class TestFailures:
    @pytest.mark.asyncio
    async def test_failed_command_raises_and_leaves_status(self, reconciler, firewall, repo, subscriber_factory, enforcement_failure):
        firewall.fail_with = enforcement_failure("block")
        sub = subscriber_factory(end_offset_days=-1)

        with pytest.raises(EnforcementFailure) as exc_info:
            await reconciler.reconcile(sub)

        assert exc_info.value.action == "block"
        assert repo.status_updates == []
        assert firewall.mutations() == [("add", "10.0.0.5", "SUB-001")]

    @pytest.mark.asyncio
    async def test_status_write_failure_is_reported_not_raised(self, reconciler, firewall, repo, subscriber_factory):
        repo.status_error = RuntimeError("database unavailable")
        sub = subscriber_factory(end_offset_days=-1)

        result = await reconciler.reconcile(sub)

        assert result.action == AccessAction.APPLIED_BLOCK
        assert result.status is None
        assert "database unavailable" in result.status_error

    @pytest.mark.asyncio
    async def test_subscriber_without_address_rejected(self, reconciler, firewall, subscriber_factory):
        with pytest.raises(ValueError):
            await reconciler.reconcile(subscriber_factory(ip_address=None))
        assert firewall.calls == []


class TestSerialization:
    @pytest.mark.asyncio
    async def test_concurrent_triggers_issue_one_command(self, firewall, repo, subscriber_factory, now):
        """Two triggers racing on the same key: exactly one add is sent."""
        firewall.delay = 0.01
        reconciler = AccessReconciler(firewall, repo, clock=lambda: now)
        sub = subscriber_factory(end_offset_days=-1)

        results = await asyncio.gather(reconciler.reconcile(sub), reconciler.reconcile(sub))

        actions = sorted(result.action.value for result in results)
        assert actions == [AccessAction.APPLIED_BLOCK.value, AccessAction.NONE.value]
        assert firewall.mutations() == [("add", "10.0.0.5", "SUB-001")]

    @pytest.mark.asyncio
    async def test_operations_on_one_key_do_not_interleave(self, firewall, repo, subscriber_factory, now):
        firewall.delay = 0.01
        reconciler = AccessReconciler(firewall, repo, clock=lambda: now)
        expired = subscriber_factory(end_offset_days=-1)
        renewed = subscriber_factory(end_offset_days=30)

        await asyncio.gather(reconciler.reconcile(expired), reconciler.reconcile(renewed))

        # Each probe is directly followed by its own corrective command
        ops = [call[0] for call in firewall.calls]
        assert ops == ["exists", "add", "exists", "remove"]
        assert firewall.rules == set()

    @pytest.mark.asyncio
    async def test_different_keys_run_in_parallel(self, firewall, repo, subscriber_factory, now):
        firewall.delay = 0.01
        reconciler = AccessReconciler(firewall, repo, clock=lambda: now)
        first = subscriber_factory("SUB-001", "10.0.0.5", end_offset_days=-1)
        second = subscriber_factory("SUB-002", "10.0.0.6", end_offset_days=-1)

        await asyncio.gather(reconciler.reconcile(first), reconciler.reconcile(second))

        # Both probes happen before either add
        ops = [call[0] for call in firewall.calls]
        assert ops[:2] == ["exists", "exists"]
        assert len(reconciler.locks) == 0

    def test_equivalent_addresses_share_a_lock_key(self):
        assert rule_lock_key("2001:DB8::1", "SUB-001") == rule_lock_key("2001:db8:0::1", "SUB-001")
        assert rule_lock_key("10.0.0.5", "SUB-001") != rule_lock_key("10.0.0.5", "SUB-002")


class TestRelease:
    @pytest.mark.asyncio
    async def test_removes_rule_on_previous_address(self, reconciler, firewall):
        firewall.rules.add(("10.0.0.4", "SUB-001"))

        action = await reconciler.release("10.0.0.4", "SUB-001")

        assert action == AccessAction.APPLIED_UNBLOCK
        assert firewall.rules == set()

    @pytest.mark.asyncio
    async def test_nothing_to_remove(self, reconciler, firewall):
        assert await reconciler.release("10.0.0.4", "SUB-001") == AccessAction.NONE
        assert firewall.mutations() == []

    @pytest.mark.asyncio
    async def test_indeterminate_defers(self, reconciler, firewall):
        firewall.indeterminate = True
        assert await reconciler.release("10.0.0.4", "SUB-001") == AccessAction.DEFERRED
        assert firewall.mutations() == []
