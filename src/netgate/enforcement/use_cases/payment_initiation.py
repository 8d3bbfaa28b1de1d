"""Payment Initiation Use Case - Starts a payment and remembers who it is for.

Workflow:
1. Load the subscriber and its service plan
2. Ask the payment gateway to collect the plan price
3. Store request id -> subscriber id in the correlation store with a TTL
"""

import logging
from typing import Optional

from ..domain.entities import PaymentRequest
from ..domain.ports import ICorrelationStore, IPaymentGateway, ISubscriberRepository

logger = logging.getLogger(__name__)


class SubscriberNotFound(LookupError):
    """No subscriber with the requested id."""


class PaymentNotPossible(ValueError):
    """The subscriber cannot be charged (no plan, no phone number)."""


class InitiatePaymentUseCase:
    def __init__(
        self,
        subscriber_repo: ISubscriberRepository,
        gateway: IPaymentGateway,
        correlation_store: ICorrelationStore,
        correlation_ttl_seconds: float = 3600,
    ):
        self.repo = subscriber_repo
        self.gateway = gateway
        self.correlation_store = correlation_store
        self.correlation_ttl_seconds = correlation_ttl_seconds

    async def execute(self, subscriber_id: str, phone_number: Optional[str] = None) -> PaymentRequest:
        """Initiate a payment of the subscriber's plan price.

        Args:
            subscriber_id: Subscriber to charge
            phone_number: Paying phone number (defaults to the subscriber's)

        Raises:
            SubscriberNotFound: Unknown subscriber
            PaymentNotPossible: No plan or no phone number
            PaymentGatewayError: Provider rejected the request
        """
        subscriber = await self.repo.get_subscriber(subscriber_id)
        if subscriber is None:
            raise SubscriberNotFound(subscriber_id)

        if subscriber.service_plan_id is None:
            raise PaymentNotPossible(f"Subscriber '{subscriber_id}' has no service plan")
        plan = await self.repo.get_plan(subscriber.service_plan_id)
        if plan is None:
            raise PaymentNotPossible(f"Service plan {subscriber.service_plan_id} not found")

        phone = phone_number or subscriber.phone
        if not phone:
            raise PaymentNotPossible(f"No phone number for subscriber '{subscriber_id}'")

        request_id = await self.gateway.request_payment(
            phone_number=phone,
            amount=plan.price,
            account_reference=subscriber_id,
            description=f"Payment for {plan.plan_name} subscription",
        )
        entry = await self.correlation_store.create(
            request_id,
            subscriber_id,
            self.correlation_ttl_seconds,
        )
        logger.info(f"Payment requested for {subscriber_id}: {plan.price} ({plan.plan_name}), request {request_id}")

        return PaymentRequest(
            request_id=request_id,
            subscriber_id=subscriber_id,
            amount=plan.price,
            plan_name=plan.plan_name,
            expires_at=entry.expires_at,
        )
