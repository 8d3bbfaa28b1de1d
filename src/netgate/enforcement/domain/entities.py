"""Domain entities for access enforcement.

These are pure data structures with no infrastructure dependencies.
They represent the subscriber snapshot the reconciler works from, the
outcomes it reports, and the payment records that feed it.
"""

import calendar
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional


class SubscriberStatus(str, Enum):
    """Status tag stored on the subscriber record."""

    ACTIVE = "active"  # Inside the entitlement window, not blocked
    INACTIVE = "inactive"  # Window ended (or record removed), blocked
    PENDING = "pending"  # Window not started yet, blocked


class RuleState(str, Enum):
    """What the remote device reports for a (address, subscriber) block rule."""

    PRESENT = "present"
    ABSENT = "absent"
    INDETERMINATE = "indeterminate"  # Transport failure, state unknown


class AccessAction(str, Enum):
    """Outcome of one reconciliation pass."""

    NONE = "none"  # Already converged
    APPLIED_BLOCK = "applied_block"
    APPLIED_UNBLOCK = "applied_unblock"
    DEFERRED = "deferred"  # Probe indeterminate, retried on next trigger


class ConfirmationOutcome(str, Enum):
    """Outcome of handling one payment confirmation."""

    APPLIED = "applied"
    DUPLICATE = "duplicate"
    UNMATCHED = "unmatched"
    PAYMENT_FAILED = "payment_failed"
    ERROR = "error"


class PaymentMethod(str, Enum):
    """How a recorded payment was made."""

    MPESA = "mpesa"
    CREDIT_CARD = "credit_card"
    PAYPAL = "paypal"
    BANK_TRANSFER = "bank_transfer"


def as_utc(moment: datetime) -> datetime:
    """Treat naive datetimes as UTC so they compare with aware ones."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


@dataclass
class Subscriber:
    """Reconciliation-relevant projection of a subscriber record.

    Read as a snapshot; the reconciler never persists it directly. Status
    transitions go back through ISubscriberRepository.
    """

    subscriber_id: str
    ip_address: Optional[str]
    subscription_start: datetime
    subscription_end: datetime
    status: SubscriberStatus = SubscriberStatus.PENDING

    # Billing
    service_plan_id: Optional[int] = None
    phone: Optional[str] = None
    name: Optional[str] = None

    def __post_init__(self):
        self.subscription_start = as_utc(self.subscription_start)
        self.subscription_end = as_utc(self.subscription_end)
        if self.ip_address is not None:
            self.ip_address = self.ip_address.strip() or None
        if not isinstance(self.status, SubscriberStatus):
            self.status = SubscriberStatus(self.status)

    @property
    def has_address(self) -> bool:
        return self.ip_address is not None

    @property
    def rule_key(self) -> tuple[Optional[str], str]:
        """Key of the subscriber's firewall rule."""
        return (self.ip_address, self.subscriber_id)


def is_blocked(subscriber: Subscriber, now: datetime) -> bool:
    """Desired access state: blocked outside [start, end).

    An end date equal to now is already expired.
    """
    now = as_utc(now)
    return now < subscriber.subscription_start or now >= subscriber.subscription_end


def status_after(subscriber: Subscriber, now: datetime, blocked: bool) -> SubscriberStatus:
    """Status tag to write once the rule matches the desired state."""
    if not blocked:
        return SubscriberStatus.ACTIVE
    if as_utc(now) < subscriber.subscription_start:
        return SubscriberStatus.PENDING
    return SubscriberStatus.INACTIVE


def add_months(moment: datetime, months: int) -> datetime:
    """Add calendar months, clamping to the last day of the target month.

    >>> add_months(datetime(2024, 1, 31), 1)
    datetime.datetime(2024, 2, 29, 0, 0)
    """
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def extend_window(
    subscriber: Subscriber,
    months: int,
    now: datetime,
) -> tuple[datetime, datetime]:
    """Compute the entitlement window after a successful payment.

    A subscriber who is still entitled (now < end) keeps the start and has
    the end pushed out; otherwise the window restarts at now.

    Returns:
        (new_start, new_end)
    """
    now = as_utc(now)
    if now < subscriber.subscription_end:
        return subscriber.subscription_start, add_months(subscriber.subscription_end, months)
    return now, add_months(now, months)


@dataclass
class ServicePlan:
    """A purchasable service plan."""

    plan_id: int
    plan_name: str
    price: float
    duration_months: int = 1

    def __post_init__(self):
        if self.duration_months < 1:
            raise ValueError(f"duration_months must be positive, got {self.duration_months}")


@dataclass
class ReconcileResult:
    """Result of one reconciliation pass for one subscriber."""

    subscriber_id: str
    address: Optional[str]
    action: AccessAction
    desired_blocked: bool
    observed: RuleState
    status: Optional[SubscriberStatus] = None  # Status written, if any
    status_error: Optional[str] = None  # Status write failed after apply
    reconciled_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def applied(self) -> bool:
        return self.action in (AccessAction.APPLIED_BLOCK, AccessAction.APPLIED_UNBLOCK)

    def to_dict(self) -> dict[str, Any]:
        return {
            "subscriber_id": self.subscriber_id,
            "address": self.address,
            "action": self.action.value,
            "desired_blocked": self.desired_blocked,
            "observed": self.observed.value,
            "status": self.status.value if self.status else None,
            "status_error": self.status_error,
            "reconciled_at": self.reconciled_at.isoformat(),
        }


@dataclass
class SweepResult:
    """Statistics of one sweep over the subscriber set."""

    started_at: datetime
    total: int = 0
    unchanged: int = 0
    blocked: int = 0
    unblocked: int = 0
    deferred: int = 0
    failed: int = 0
    skipped: int = 0  # No address, or not scheduled because of shutdown
    purged_correlations: int = 0
    purged_confirmations: int = 0
    duration_seconds: float = 0.0
    error_details: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.failed == 0

    def record(self, action: AccessAction) -> None:
        if action == AccessAction.NONE:
            self.unchanged += 1
        elif action == AccessAction.APPLIED_BLOCK:
            self.blocked += 1
        elif action == AccessAction.APPLIED_UNBLOCK:
            self.unblocked += 1
        elif action == AccessAction.DEFERRED:
            self.deferred += 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "total": self.total,
            "unchanged": self.unchanged,
            "blocked": self.blocked,
            "unblocked": self.unblocked,
            "deferred": self.deferred,
            "failed": self.failed,
            "skipped": self.skipped,
            "purged_correlations": self.purged_correlations,
            "purged_confirmations": self.purged_confirmations,
            "duration_seconds": round(self.duration_seconds, 3),
            "errors": self.error_details[:20],
        }


@dataclass
class CorrelationEntry:
    """Outstanding payment request waiting for its confirmation."""

    request_id: str
    subscriber_id: str
    created_at: datetime
    expires_at: datetime

    @classmethod
    def new(cls, request_id: str, subscriber_id: str, ttl_seconds: float, now: datetime) -> "CorrelationEntry":
        now = as_utc(now)
        return cls(
            request_id=request_id,
            subscriber_id=subscriber_id,
            created_at=now,
            expires_at=now + timedelta(seconds=ttl_seconds),
        )

    def is_expired(self, now: datetime) -> bool:
        return as_utc(now) >= self.expires_at


@dataclass
class PaymentConfirmation:
    """A payment provider's asynchronous confirmation of one request."""

    request_id: str
    result_code: int
    provider_transaction_id: Optional[str] = None
    amount: Optional[float] = None
    result_description: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.result_code == 0


@dataclass
class PaymentRequest:
    """An initiated payment, as returned to the caller of initiation."""

    request_id: str
    subscriber_id: str
    amount: float
    plan_name: str
    expires_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "request_id": self.request_id,
            "subscriber_id": self.subscriber_id,
            "amount": self.amount,
            "plan_name": self.plan_name,
            "expires_at": self.expires_at.isoformat(),
        }


@dataclass
class ConfirmationResult:
    """What handling a payment confirmation did."""

    outcome: ConfirmationOutcome
    request_id: str
    subscriber_id: Optional[str] = None
    provider_transaction_id: Optional[str] = None
    new_end: Optional[datetime] = None
    reconcile: Optional[ReconcileResult] = None
    detail: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "request_id": self.request_id,
            "subscriber_id": self.subscriber_id,
            "provider_transaction_id": self.provider_transaction_id,
            "new_end": self.new_end.isoformat() if self.new_end else None,
            "reconcile": self.reconcile.to_dict() if self.reconcile else None,
            "detail": self.detail,
        }


@dataclass
class PaymentRecord:
    """A processed payment as kept in the confirmation ledger.

    request_id is the STK request for M-Pesa payments and None for
    payments recorded by an operator.
    """

    provider_transaction_id: str
    subscriber_id: str
    confirmed_at: datetime
    amount: Optional[float] = None
    payment_method: PaymentMethod = PaymentMethod.MPESA
    request_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "transaction_id": self.provider_transaction_id,
            "subscriber_id": self.subscriber_id,
            "amount": self.amount,
            "payment_method": self.payment_method.value,
            "request_id": self.request_id,
            "confirmed_at": self.confirmed_at.isoformat(),
        }
