"""Shared mock ports and fixtures for the access enforcement tests.

The mocks implement the domain ports directly, so use cases are tested in
isolation from SSH, PostgreSQL and the payment provider.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from src.netgate.api.exceptions import EnforcementFailure
from src.netgate.enforcement.adapters.memory_stores import (
    InMemoryConfirmationLedger,
    InMemoryCorrelationStore,
)
from src.netgate.enforcement.domain.entities import (
    RuleState,
    ServicePlan,
    Subscriber,
    SubscriberStatus,
)
from src.netgate.enforcement.domain.ports import (
    IFirewall,
    IPaymentGateway,
    ISubscriberRepository,
)
from src.netgate.enforcement.use_cases.reconcile_access import AccessReconciler

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


class MockFirewall(IFirewall):
    """In-memory rule table that records every call."""

    def __init__(self, delay: float = 0.0):
        self.rules: set[tuple[str, str]] = set()
        self.calls: list[tuple[str, str, str]] = []
        self.indeterminate = False
        self.fail_with: Optional[Exception] = None
        self.delay = delay

    async def exists(self, address: str, subscriber_id: str) -> RuleState:
        self.calls.append(("exists", address, subscriber_id))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.indeterminate:
            return RuleState.INDETERMINATE
        if (address, subscriber_id) in self.rules:
            return RuleState.PRESENT
        return RuleState.ABSENT

    async def add_block(self, address: str, subscriber_id: str) -> None:
        self.calls.append(("add", address, subscriber_id))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with:
            raise self.fail_with
        self.rules.add((address, subscriber_id))

    async def remove_block(self, address: str, subscriber_id: str) -> None:
        self.calls.append(("remove", address, subscriber_id))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with:
            raise self.fail_with
        self.rules.discard((address, subscriber_id))

    def mutations(self) -> list[tuple[str, str, str]]:
        return [call for call in self.calls if call[0] != "exists"]


class MockSubscriberRepository(ISubscriberRepository):
    """Mock implementation of ISubscriberRepository for testing."""

    def __init__(self):
        self.subscribers: dict[str, Subscriber] = {}
        self.plans: dict[int, ServicePlan] = {}
        self.status_updates: list[tuple[str, SubscriberStatus]] = []
        self.window_updates: list[tuple[str, datetime, datetime]] = []
        self.list_error: Optional[Exception] = None
        self.status_error: Optional[Exception] = None
        self.window_error: Optional[Exception] = None

    def add(self, subscriber: Subscriber) -> Subscriber:
        self.subscribers[subscriber.subscriber_id] = subscriber
        return subscriber

    async def get_subscriber(self, subscriber_id: str) -> Optional[Subscriber]:
        return self.subscribers.get(subscriber_id)

    async def list_subscribers(self) -> list[Subscriber]:
        if self.list_error:
            raise self.list_error
        return list(self.subscribers.values())

    async def update_status(self, subscriber_id: str, status: SubscriberStatus) -> None:
        if self.status_error:
            raise self.status_error
        self.status_updates.append((subscriber_id, status))

    async def update_window(self, subscriber_id: str, subscription_start: datetime, subscription_end: datetime) -> None:
        if self.window_error:
            raise self.window_error
        self.window_updates.append((subscriber_id, subscription_start, subscription_end))

    async def get_plan(self, plan_id: int) -> Optional[ServicePlan]:
        return self.plans.get(plan_id)


class MockPaymentGateway(IPaymentGateway):
    """Returns sequential request ids, or raises the configured error."""

    def __init__(self, raise_error: Optional[Exception] = None):
        self.raise_error = raise_error
        self.requests: list[dict] = []

    async def request_payment(self, phone_number: str, amount: float, account_reference: str, description: str) -> str:
        if self.raise_error:
            raise self.raise_error
        self.requests.append({
            "phone_number": phone_number,
            "amount": amount,
            "account_reference": account_reference,
            "description": description,
        })
        return f"ws_CO_{len(self.requests):04d}"


def make_subscriber(
    subscriber_id: str = "SUB-001",
    ip_address: Optional[str] = "10.0.0.5",
    start_offset_days: int = -10,
    end_offset_days: int = 20,
    **kwargs,
) -> Subscriber:
    """Subscriber whose window is given in days relative to NOW."""
    return Subscriber(
        subscriber_id=subscriber_id,
        ip_address=ip_address,
        subscription_start=NOW + timedelta(days=start_offset_days),
        subscription_end=NOW + timedelta(days=end_offset_days),
        **kwargs,
    )


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def subscriber_factory():
    return make_subscriber


@pytest.fixture
def firewall() -> MockFirewall:
    return MockFirewall()


@pytest.fixture
def repo() -> MockSubscriberRepository:
    return MockSubscriberRepository()


@pytest.fixture
def gateway() -> MockPaymentGateway:
    return MockPaymentGateway()


@pytest.fixture
def reconciler(firewall, repo) -> AccessReconciler:
    return AccessReconciler(firewall, repo, clock=lambda: NOW)


@pytest.fixture
def correlation_store() -> InMemoryCorrelationStore:
    return InMemoryCorrelationStore(clock=lambda: NOW)


@pytest.fixture
def ledger() -> InMemoryConfirmationLedger:
    return InMemoryConfirmationLedger(clock=lambda: NOW)


@pytest.fixture
def enforcement_failure():
    def build(action: str = "block", exit_status: int = 1) -> EnforcementFailure:
        return EnforcementFailure(
            subscriber_id="SUB-001",
            address="10.0.0.5",
            action=action,
            exit_status=exit_status,
            output="iptables: Permission denied",
        )
    return build
