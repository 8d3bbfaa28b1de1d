"""Tests for access enforcement domain entities."""

from datetime import datetime, timedelta, timezone

import pytest

from src.netgate.enforcement.domain.entities import (
    AccessAction,
    CorrelationEntry,
    PaymentConfirmation,
    ReconcileResult,
    RuleState,
    ServicePlan,
    Subscriber,
    SubscriberStatus,
    SweepResult,
    add_months,
    extend_window,
    is_blocked,
    status_after,
)

UTC = timezone.utc
START = datetime(2026, 1, 1, tzinfo=UTC)
END = datetime(2026, 2, 1, tzinfo=UTC)


def subscriber(**overrides) -> Subscriber:
    values = {
        "subscriber_id": "SUB-001",
        "ip_address": "10.0.0.5",
        "subscription_start": START,
        "subscription_end": END,
    }
    values.update(overrides)
    return Subscriber(**values)


class TestSubscriber:
    def test_naive_datetimes_are_treated_as_utc(self):
        sub = subscriber(
            subscription_start=datetime(2026, 1, 1),
            subscription_end=datetime(2026, 2, 1),
        )
        assert sub.subscription_start == START
        assert sub.subscription_end.tzinfo is not None

    def test_blank_address_means_no_address(self):
        sub = subscriber(ip_address="   ")
        assert sub.ip_address is None
        assert not sub.has_address

    def test_status_string_is_coerced(self):
        assert subscriber(status="active").status == SubscriberStatus.ACTIVE

    def test_invalid_status_rejected(self):
        with pytest.raises(ValueError):
            subscriber(status="suspended")

    def test_rule_key(self):
        assert subscriber().rule_key == ("10.0.0.5", "SUB-001")


class TestIsBlocked:
    """Desired state is unblocked exactly on [start, end)."""

    def test_inside_window_is_unblocked(self):
        assert is_blocked(subscriber(), START + timedelta(days=3)) is False

    def test_start_instant_is_unblocked(self):
        assert is_blocked(subscriber(), START) is False

    def test_before_start_is_blocked(self):
        assert is_blocked(subscriber(), START - timedelta(seconds=1)) is True

    def test_end_instant_is_blocked(self):
        assert is_blocked(subscriber(), END) is True

    def test_after_end_is_blocked(self):
        assert is_blocked(subscriber(), END + timedelta(days=1)) is True

    def test_naive_now_is_treated_as_utc(self):
        assert is_blocked(subscriber(), datetime(2026, 1, 15)) is False


class TestStatusAfter:
    def test_unblocked_is_active(self):
        assert status_after(subscriber(), START, blocked=False) == SubscriberStatus.ACTIVE

    def test_blocked_before_start_is_pending(self):
        now = START - timedelta(days=1)
        assert status_after(subscriber(), now, blocked=True) == SubscriberStatus.PENDING

    def test_blocked_after_end_is_inactive(self):
        assert status_after(subscriber(), END, blocked=True) == SubscriberStatus.INACTIVE


class TestAddMonths:
    def test_simple(self):
        assert add_months(datetime(2026, 1, 15, tzinfo=UTC), 1) == datetime(2026, 2, 15, tzinfo=UTC)

    def test_clamps_to_month_end(self):
        assert add_months(datetime(2026, 1, 31), 1) == datetime(2026, 2, 28)

    def test_leap_year(self):
        assert add_months(datetime(2024, 1, 31), 1) == datetime(2024, 2, 29)

    def test_crosses_year(self):
        assert add_months(datetime(2026, 11, 30), 3) == datetime(2027, 2, 28)

    def test_keeps_time_of_day(self):
        moment = datetime(2026, 5, 10, 8, 30, tzinfo=UTC)
        assert add_months(moment, 12) == datetime(2027, 5, 10, 8, 30, tzinfo=UTC)


class TestExtendWindow:
    def test_active_subscriber_keeps_start_and_extends_end(self):
        now = START + timedelta(days=10)
        new_start, new_end = extend_window(subscriber(), 1, now)
        assert new_start == START
        assert new_end == datetime(2026, 3, 1, tzinfo=UTC)

    def test_expired_subscriber_restarts_at_now(self):
        now = datetime(2026, 4, 10, 9, 0, tzinfo=UTC)
        new_start, new_end = extend_window(subscriber(), 1, now)
        assert new_start == now
        assert new_end == datetime(2026, 5, 10, 9, 0, tzinfo=UTC)

    def test_end_instant_counts_as_expired(self):
        new_start, new_end = extend_window(subscriber(), 2, END)
        assert new_start == END
        assert new_end == datetime(2026, 4, 1, tzinfo=UTC)

    def test_pending_subscriber_keeps_future_start(self):
        now = START - timedelta(days=5)
        new_start, _ = extend_window(subscriber(), 1, now)
        assert new_start == START


class TestServicePlan:
    def test_duration_must_be_positive(self):
        with pytest.raises(ValueError):
            ServicePlan(plan_id=1, plan_name="Home", price=1500, duration_months=0)


class TestResults:
    def test_reconcile_result_applied(self):
        result = ReconcileResult(
            subscriber_id="SUB-001",
            address="10.0.0.5",
            action=AccessAction.APPLIED_BLOCK,
            desired_blocked=True,
            observed=RuleState.ABSENT,
            status=SubscriberStatus.INACTIVE,
        )
        assert result.applied
        data = result.to_dict()
        assert data["action"] == "applied_block"
        assert data["observed"] == "absent"
        assert data["status"] == "inactive"

    def test_deferred_is_not_applied(self):
        result = ReconcileResult(
            subscriber_id="SUB-001",
            address="10.0.0.5",
            action=AccessAction.DEFERRED,
            desired_blocked=True,
            observed=RuleState.INDETERMINATE,
        )
        assert not result.applied
        assert result.to_dict()["status"] is None

    def test_sweep_result_counts_actions(self):
        result = SweepResult(started_at=START)
        for action in (AccessAction.NONE, AccessAction.APPLIED_BLOCK, AccessAction.APPLIED_BLOCK,
                       AccessAction.APPLIED_UNBLOCK, AccessAction.DEFERRED):
            result.record(action)
        assert (result.unchanged, result.blocked, result.unblocked, result.deferred) == (1, 2, 1, 1)
        assert result.success

    def test_sweep_result_truncates_errors(self):
        result = SweepResult(started_at=START, failed=30, error_details=[f"e{i}" for i in range(30)])
        assert not result.success
        assert len(result.to_dict()["errors"]) == 20


class TestCorrelationEntry:
    def test_expiry_boundary(self):
        entry = CorrelationEntry.new("ws_CO_1", "SUB-001", ttl_seconds=60, now=START)
        assert entry.expires_at == START + timedelta(seconds=60)
        assert not entry.is_expired(START + timedelta(seconds=59))
        assert entry.is_expired(START + timedelta(seconds=60))


class TestPaymentConfirmation:
    def test_only_zero_result_code_succeeds(self):
        assert PaymentConfirmation(request_id="ws_CO_1", result_code=0).succeeded
        assert not PaymentConfirmation(request_id="ws_CO_1", result_code=1032).succeeded
