"""Port interfaces for access enforcement.

Ports define the contracts between the domain/use cases and the infrastructure.
These are abstract base classes that adapters must implement.

Following the Hexagonal Architecture (Ports and Adapters) pattern:
- Ports are interfaces defined in the domain layer
- Adapters implement these ports in the adapters layer
- Use cases depend only on ports, not concrete implementations
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from .entities import (
    CorrelationEntry,
    PaymentMethod,
    PaymentRecord,
    RuleState,
    ServicePlan,
    Subscriber,
    SubscriberStatus,
)


class IFirewall(ABC):
    """Port for the remote enforcement surface.

    Manages exactly one block rule per (address, subscriber_id) key.
    """

    @abstractmethod
    async def exists(self, address: str, subscriber_id: str) -> RuleState:
        """Probe for the block rule.

        Never raises for transport failures; those map to INDETERMINATE.

        Returns:
            PRESENT, ABSENT or INDETERMINATE
        """
        ...

    @abstractmethod
    async def add_block(self, address: str, subscriber_id: str) -> None:
        """Install the block rule.

        Raises:
            EnforcementFailure: If the command failed or never completed
        """
        ...

    @abstractmethod
    async def remove_block(self, address: str, subscriber_id: str) -> None:
        """Delete the block rule.

        Raises:
            EnforcementFailure: If the command failed or never completed
        """
        ...


class ISubscriberRepository(ABC):
    """Port for the subscriber persistence collaborator."""

    @abstractmethod
    async def get_subscriber(self, subscriber_id: str) -> Optional[Subscriber]:
        """Load one subscriber snapshot, or None if unknown."""
        ...

    @abstractmethod
    async def list_subscribers(self) -> list[Subscriber]:
        """Load snapshots of every subscriber."""
        ...

    @abstractmethod
    async def update_status(self, subscriber_id: str, status: SubscriberStatus) -> None:
        """Write a status transition driven by reconciliation."""
        ...

    @abstractmethod
    async def update_window(
        self,
        subscriber_id: str,
        subscription_start: datetime,
        subscription_end: datetime,
    ) -> None:
        """Persist a new entitlement window."""
        ...

    @abstractmethod
    async def get_plan(self, plan_id: int) -> Optional[ServicePlan]:
        """Load a service plan, or None if unknown."""
        ...


class ICorrelationStore(ABC):
    """Port for outstanding payment requests (request id -> subscriber id).

    Entries live at most ttl_seconds; an expired entry is never returned.
    """

    @abstractmethod
    async def create(self, request_id: str, subscriber_id: str, ttl_seconds: float) -> CorrelationEntry:
        """Record an outstanding request, replacing any entry with the same id."""
        ...

    @abstractmethod
    async def consume(self, request_id: str) -> str:
        """Atomically read and delete an entry.

        Returns:
            The subscriber id the request was made for

        Raises:
            CorrelationMiss: If no entry exists or it has expired
        """
        ...

    @abstractmethod
    async def purge_expired(self) -> int:
        """Delete entries past their expiry.

        Returns:
            Number of entries deleted
        """
        ...


class IConfirmationLedger(ABC):
    """Port for consumed provider transaction identifiers.

    Used to make confirmation handling exactly-once under redelivery.
    """

    @abstractmethod
    async def contains(self, provider_transaction_id: str) -> bool:
        """Check whether the transaction id was already processed."""
        ...

    @abstractmethod
    async def claim(
        self,
        provider_transaction_id: str,
        request_id: Optional[str],
        subscriber_id: str,
        amount: Optional[float] = None,
        payment_method: PaymentMethod = PaymentMethod.MPESA,
    ) -> bool:
        """Record the transaction id as processed.

        request_id is None for payments entered by an operator.

        Returns:
            True if this call claimed it, False if it was already recorded
        """
        ...

    @abstractmethod
    async def get(self, provider_transaction_id: str) -> Optional[PaymentRecord]:
        """Look up the record of a processed payment."""
        ...

    @abstractmethod
    async def purge_older_than(self, retention_seconds: float) -> int:
        """Forget records older than the retention window.

        Returns:
            Number of records deleted
        """
        ...


class IPaymentGateway(ABC):
    """Port for the external payment provider."""

    @abstractmethod
    async def request_payment(
        self,
        phone_number: str,
        amount: float,
        account_reference: str,
        description: str,
    ) -> str:
        """Ask the provider to collect a payment.

        Returns:
            The provider's request identifier, echoed in its confirmation

        Raises:
            PaymentGatewayError: If the provider rejected the request
        """
        ...
