"""Payment Confirmation Use Case - Reactivates a subscriber once paid.

The provider delivers confirmations asynchronously and redelivers until it
gets an acknowledgement, so this handler never raises and applies each
provider transaction at most once.

Workflow:
1. Serialize on the provider transaction id
2. Already in the ledger -> DUPLICATE
3. Consume the correlation entry; missing or expired -> UNMATCHED
4. Non-zero result code -> PAYMENT_FAILED (entry stays consumed)
5. Load subscriber and plan, claim the transaction id (lost race -> DUPLICATE)
6. Extend the window by the plan's duration and persist it
7. Reconcile once -> APPLIED

Steps 6 and 7 are shared with operator-recorded payments (apply_payment).
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional

from ...api.concurrency import KeyedLock
from ...api.exceptions import CorrelationMiss, DuplicateConfirmation
from ..domain.entities import (
    ConfirmationOutcome,
    ConfirmationResult,
    PaymentConfirmation,
    ReconcileResult,
    ServicePlan,
    Subscriber,
    extend_window,
)
from ..domain.ports import IConfirmationLedger, ICorrelationStore, ISubscriberRepository
from .reconcile_access import AccessReconciler

logger = logging.getLogger(__name__)


@dataclass
class AppliedPayment:
    """Window change made for a claimed payment."""

    new_start: datetime
    new_end: datetime
    reconcile: Optional[ReconcileResult] = None
    detail: Optional[str] = None


async def apply_payment(
    repo: ISubscriberRepository,
    reconciler: AccessReconciler,
    subscriber: Subscriber,
    plan: ServicePlan,
    transaction_id: str,
) -> AppliedPayment:
    """Extend and persist the window for a claimed payment, then reconcile once.

    Must only run after the transaction id was claimed in the ledger. A failed
    window write propagates; a failed reconciliation is reported in detail,
    the next trigger converges the rule.
    """
    subscriber_id = subscriber.subscriber_id
    now = reconciler.now()
    new_start, new_end = extend_window(subscriber, plan.duration_months, now)
    try:
        await repo.update_window(subscriber_id, new_start, new_end)
    except Exception:
        logger.error(
            f"Payment {transaction_id} for {subscriber_id} recorded but window update failed; "
            f"needs manual extension to {new_end.isoformat()}"
        )
        raise
    logger.info(
        f"Payment {transaction_id} applied: {subscriber_id} entitled until {new_end.isoformat()} "
        f"({plan.plan_name}, {plan.duration_months} month(s))"
    )

    applied = AppliedPayment(new_start=new_start, new_end=new_end)
    updated = replace(subscriber, subscription_start=new_start, subscription_end=new_end)
    if updated.has_address:
        try:
            applied.reconcile = await reconciler.reconcile(updated, now)
        except Exception as e:
            logger.error(f"Reconciliation after payment failed for {subscriber_id}: {e}")
            applied.detail = f"Reconciliation failed: {e}"
    return applied


class PaymentConfirmationHandler:
    """Exactly-once application of payment confirmations.

    Example:
        handler = PaymentConfirmationHandler(
            correlation_store=store,
            ledger=ledger,
            subscriber_repo=repo,
            reconciler=reconciler,
        )
        result = await handler.handle(PaymentConfirmation(
            request_id="ws_CO_191220191020363925",
            result_code=0,
            provider_transaction_id="NLJ7RT61SV",
            amount=1500,
        ))
    """

    def __init__(
        self,
        correlation_store: ICorrelationStore,
        ledger: IConfirmationLedger,
        subscriber_repo: ISubscriberRepository,
        reconciler: AccessReconciler,
    ):
        self.correlation_store = correlation_store
        self.ledger = ledger
        self.repo = subscriber_repo
        self.reconciler = reconciler
        self._locks = KeyedLock("confirmations")

    async def handle(self, confirmation: PaymentConfirmation) -> ConfirmationResult:
        """Process one confirmation delivery. Never raises."""
        lock_key = confirmation.provider_transaction_id or f"request:{confirmation.request_id}"
        try:
            async with self._locks.hold(lock_key):
                return await self._handle(confirmation)
        except DuplicateConfirmation as e:
            logger.warning(f"Ignoring redelivered confirmation: {e}")
            return ConfirmationResult(
                outcome=ConfirmationOutcome.DUPLICATE,
                request_id=confirmation.request_id,
                subscriber_id=e.details.get("subscriber_id"),
                provider_transaction_id=e.provider_transaction_id,
            )
        except Exception as e:
            logger.exception(f"Failed to process confirmation for request {confirmation.request_id}: {e}")
            return ConfirmationResult(
                outcome=ConfirmationOutcome.ERROR,
                request_id=confirmation.request_id,
                provider_transaction_id=confirmation.provider_transaction_id,
                detail=str(e),
            )

    async def _handle(self, confirmation: PaymentConfirmation) -> ConfirmationResult:
        """Apply one confirmation.

        Raises:
            DuplicateConfirmation: If the transaction id is already in the ledger
        """
        request_id = confirmation.request_id
        transaction_id = confirmation.provider_transaction_id

        if transaction_id and await self.ledger.contains(transaction_id):
            raise DuplicateConfirmation(transaction_id)

        try:
            subscriber_id = await self.correlation_store.consume(request_id)
        except CorrelationMiss as e:
            logger.warning(f"Unmatched payment confirmation: {e}")
            return ConfirmationResult(
                outcome=ConfirmationOutcome.UNMATCHED,
                request_id=request_id,
                provider_transaction_id=transaction_id,
                detail=e.details.get("reason"),
            )

        if not confirmation.succeeded:
            logger.info(
                f"Payment for {subscriber_id} not completed "
                f"(result_code={confirmation.result_code}: {confirmation.result_description})"
            )
            return ConfirmationResult(
                outcome=ConfirmationOutcome.PAYMENT_FAILED,
                request_id=request_id,
                subscriber_id=subscriber_id,
                provider_transaction_id=transaction_id,
                detail=confirmation.result_description,
            )

        if not transaction_id:
            return self._error(confirmation, subscriber_id, "Successful confirmation without a transaction id")

        subscriber = await self.repo.get_subscriber(subscriber_id)
        if subscriber is None:
            return self._error(confirmation, subscriber_id, f"Subscriber '{subscriber_id}' no longer exists")
        if subscriber.service_plan_id is None:
            return self._error(confirmation, subscriber_id, f"Subscriber '{subscriber_id}' has no service plan")
        plan = await self.repo.get_plan(subscriber.service_plan_id)
        if plan is None:
            return self._error(confirmation, subscriber_id, f"Service plan {subscriber.service_plan_id} not found")

        claimed = await self.ledger.claim(
            transaction_id,
            request_id=request_id,
            subscriber_id=subscriber_id,
            amount=confirmation.amount,
        )
        if not claimed:
            raise DuplicateConfirmation(transaction_id, details={"subscriber_id": subscriber_id})

        applied = await apply_payment(self.repo, self.reconciler, subscriber, plan, transaction_id)
        return ConfirmationResult(
            outcome=ConfirmationOutcome.APPLIED,
            request_id=request_id,
            subscriber_id=subscriber_id,
            provider_transaction_id=transaction_id,
            new_end=applied.new_end,
            reconcile=applied.reconcile,
            detail=applied.detail,
        )

    def _error(
        self,
        confirmation: PaymentConfirmation,
        subscriber_id: str,
        detail: str,
    ) -> ConfirmationResult:
        logger.error(f"Cannot apply payment for request {confirmation.request_id}: {detail}")
        return ConfirmationResult(
            outcome=ConfirmationOutcome.ERROR,
            request_id=confirmation.request_id,
            subscriber_id=subscriber_id,
            provider_transaction_id=confirmation.provider_transaction_id,
            detail=detail,
        )
