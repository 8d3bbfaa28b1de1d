"""Tests for RecordPaymentUseCase.

Operator-entered payments go through the same ledger as M-Pesa
confirmations, so a transaction id is applied at most once whichever
path reports it first.
"""

from datetime import datetime, timezone

import pytest

from src.netgate.api.exceptions import DuplicateConfirmation, TransactionError
from src.netgate.enforcement.domain.entities import (
    AccessAction,
    ConfirmationOutcome,
    PaymentConfirmation,
    PaymentMethod,
    ServicePlan,
)
from src.netgate.enforcement.use_cases.payment_confirmation import PaymentConfirmationHandler
from src.netgate.enforcement.use_cases.payment_initiation import PaymentNotPossible, SubscriberNotFound
from src.netgate.enforcement.use_cases.record_payment import RecordPaymentUseCase


@pytest.fixture
def use_case(ledger, repo, reconciler):
    return RecordPaymentUseCase(ledger=ledger, subscriber_repo=repo, reconciler=reconciler)


@pytest.fixture
def plan(repo):
    repo.plans[1] = ServicePlan(plan_id=1, plan_name="Home 10Mbps", price=1500, duration_months=3)
    return repo.plans[1]


class TestRecordPayment:
    @pytest.mark.asyncio
    async def test_expired_subscriber_is_reactivated(self, use_case, repo, firewall, ledger, plan, subscriber_factory, now):
        repo.add(subscriber_factory(start_offset_days=-40, end_offset_days=-10, service_plan_id=1))
        firewall.rules.add(("10.0.0.5", "SUB-001"))

        applied = await use_case.execute("SUB-001", "BT-2026-0042", 4500.0, PaymentMethod.BANK_TRANSFER)

        assert applied.new_start == now
        assert applied.new_end == datetime(2026, 6, 15, 12, 0, tzinfo=timezone.utc)
        assert applied.reconcile.action == AccessAction.APPLIED_UNBLOCK
        assert firewall.rules == set()
        record = await ledger.get("BT-2026-0042")
        assert record.payment_method == PaymentMethod.BANK_TRANSFER
        assert record.request_id is None
        assert record.amount == 4500.0

    @pytest.mark.asyncio
    async def test_entitled_subscriber_keeps_start(self, use_case, repo, firewall, plan, subscriber_factory):
        subscriber = repo.add(subscriber_factory(service_plan_id=1))

        applied = await use_case.execute("SUB-001", "CC-1", 4500.0, PaymentMethod.CREDIT_CARD)

        assert applied.new_start == subscriber.subscription_start
        assert applied.new_end.month == subscriber.subscription_end.month + 3
        assert applied.reconcile.action == AccessAction.NONE
        assert firewall.mutations() == []

    @pytest.mark.asyncio
    async def test_same_transaction_twice(self, use_case, repo, plan, subscriber_factory):
        repo.add(subscriber_factory(service_plan_id=1))
        await use_case.execute("SUB-001", "BT-2026-0042", 4500.0, PaymentMethod.BANK_TRANSFER)

        with pytest.raises(DuplicateConfirmation) as exc_info:
            await use_case.execute("SUB-001", "BT-2026-0042", 4500.0, PaymentMethod.BANK_TRANSFER)

        assert exc_info.value.details["subscriber_id"] == "SUB-001"
        assert len(repo.window_updates) == 1

    @pytest.mark.asyncio
    async def test_mpesa_receipt_entered_after_callback(
        self, use_case, correlation_store, ledger, repo, reconciler, plan, subscriber_factory
    ):
        """An operator re-entering a receipt the callback already applied does not extend again."""
        repo.add(subscriber_factory(service_plan_id=1))
        handler = PaymentConfirmationHandler(correlation_store, ledger, repo, reconciler)
        await correlation_store.create("ws_CO_1", "SUB-001", ttl_seconds=3600)
        result = await handler.handle(PaymentConfirmation(
            request_id="ws_CO_1", result_code=0, provider_transaction_id="NLJ7RT61SV", amount=4500.0,
        ))
        assert result.outcome == ConfirmationOutcome.APPLIED

        with pytest.raises(DuplicateConfirmation):
            await use_case.execute("SUB-001", "NLJ7RT61SV", 4500.0, PaymentMethod.MPESA)

        assert len(repo.window_updates) == 1

    @pytest.mark.asyncio
    async def test_unknown_subscriber(self, use_case, ledger):
        with pytest.raises(SubscriberNotFound):
            await use_case.execute("SUB-404", "BT-1", 1500.0, PaymentMethod.BANK_TRANSFER)
        assert len(ledger) == 0

    @pytest.mark.asyncio
    async def test_no_plan_records_nothing(self, use_case, repo, ledger, subscriber_factory):
        repo.add(subscriber_factory())

        with pytest.raises(PaymentNotPossible):
            await use_case.execute("SUB-001", "BT-1", 1500.0, PaymentMethod.BANK_TRANSFER)

        assert len(ledger) == 0

    @pytest.mark.asyncio
    async def test_window_failure_keeps_claim(self, use_case, repo, ledger, plan, subscriber_factory):
        repo.add(subscriber_factory(service_plan_id=1))
        repo.window_error = TransactionError("Subscriber 'SUB-001' not found", operation="update_window")

        with pytest.raises(TransactionError):
            await use_case.execute("SUB-001", "BT-1", 1500.0, PaymentMethod.BANK_TRANSFER)

        assert await ledger.contains("BT-1")
