"""Record Payment Use Case - Operator-entered payments.

Payments taken outside the STK push flow (paybill, card, bank transfer)
reactivate a subscriber the same way a confirmed M-Pesa payment does.

Workflow:
1. Load the subscriber and its service plan
2. Claim the transaction id in the ledger (already there -> DuplicateConfirmation)
3. Extend the window by the plan's duration, persist it, reconcile once
"""

import logging

from ...api.exceptions import DuplicateConfirmation
from ..domain.entities import PaymentMethod
from ..domain.ports import IConfirmationLedger, ISubscriberRepository
from .payment_confirmation import AppliedPayment, apply_payment
from .payment_initiation import PaymentNotPossible, SubscriberNotFound
from .reconcile_access import AccessReconciler

logger = logging.getLogger(__name__)


class RecordPaymentUseCase:
    def __init__(
        self,
        ledger: IConfirmationLedger,
        subscriber_repo: ISubscriberRepository,
        reconciler: AccessReconciler,
    ):
        self.ledger = ledger
        self.repo = subscriber_repo
        self.reconciler = reconciler

    async def execute(
        self,
        subscriber_id: str,
        transaction_id: str,
        amount: float,
        payment_method: PaymentMethod,
    ) -> AppliedPayment:
        """Record a payment and extend the subscriber's window.

        Raises:
            SubscriberNotFound: Unknown subscriber
            PaymentNotPossible: No plan to extend by
            DuplicateConfirmation: Transaction id already recorded
            DatabaseError: Window could not be written (the payment stays recorded)
        """
        subscriber = await self.repo.get_subscriber(subscriber_id)
        if subscriber is None:
            raise SubscriberNotFound(subscriber_id)

        if subscriber.service_plan_id is None:
            raise PaymentNotPossible(f"Subscriber '{subscriber_id}' has no service plan")
        plan = await self.repo.get_plan(subscriber.service_plan_id)
        if plan is None:
            raise PaymentNotPossible(f"Service plan {subscriber.service_plan_id} not found")

        claimed = await self.ledger.claim(
            transaction_id,
            request_id=None,
            subscriber_id=subscriber_id,
            amount=amount,
            payment_method=payment_method,
        )
        if not claimed:
            raise DuplicateConfirmation(transaction_id, details={"subscriber_id": subscriber_id})

        logger.info(f"Recorded {payment_method.value} payment {transaction_id} of {amount} for {subscriber_id}")
        return await apply_payment(self.repo, self.reconciler, subscriber, plan, transaction_id)
