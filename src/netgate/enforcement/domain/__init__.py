"""Domain layer - Pure domain entities and port interfaces.

This layer contains:
- Entities: Subscriber snapshots, reconciliation and payment outcomes
- Ports: Abstract interfaces for the firewall, persistence and payments

No infrastructure dependencies allowed in this layer.
"""

from .entities import (
    AccessAction,
    ConfirmationOutcome,
    ConfirmationResult,
    CorrelationEntry,
    PaymentConfirmation,
    PaymentRequest,
    ReconcileResult,
    RuleState,
    ServicePlan,
    Subscriber,
    SubscriberStatus,
    SweepResult,
    add_months,
    as_utc,
    extend_window,
    is_blocked,
    status_after,
)
from .ports import (
    IConfirmationLedger,
    ICorrelationStore,
    IFirewall,
    IPaymentGateway,
    ISubscriberRepository,
)

__all__ = [
    # Subscriber
    "Subscriber",
    "SubscriberStatus",
    "ServicePlan",
    "is_blocked",
    "status_after",
    "add_months",
    "extend_window",
    "as_utc",
    # Reconciliation
    "RuleState",
    "AccessAction",
    "ReconcileResult",
    "SweepResult",
    # Payments
    "CorrelationEntry",
    "PaymentConfirmation",
    "PaymentRequest",
    "ConfirmationOutcome",
    "ConfirmationResult",
    # Ports
    "IFirewall",
    "ISubscriberRepository",
    "ICorrelationStore",
    "IConfirmationLedger",
    "IPaymentGateway",
]
