"""Adapters layer - Infrastructure implementations for access enforcement.

This layer contains concrete implementations of the ports defined in the domain layer:
- IptablesFirewall: iptables over SSH implementation of IFirewall
- PostgresSubscriberRepository: PostgreSQL implementation of ISubscriberRepository
- PostgresCorrelationStore / InMemoryCorrelationStore: ICorrelationStore
- PostgresConfirmationLedger / InMemoryConfirmationLedger: IConfirmationLedger
- MpesaPaymentGateway: M-Pesa STK push implementation of IPaymentGateway
"""

from .iptables_firewall import IptablesFirewall, validate_address, validate_subscriber_id
from .memory_stores import InMemoryConfirmationLedger, InMemoryCorrelationStore
from .mpesa_gateway import MpesaPaymentGateway
from .postgres_payment_repo import PostgresConfirmationLedger, PostgresCorrelationStore
from .postgres_subscriber_repo import PostgresSubscriberRepository

__all__ = [
    # Firewall
    "IptablesFirewall",
    "validate_address",
    "validate_subscriber_id",
    # Persistence
    "PostgresSubscriberRepository",
    "PostgresCorrelationStore",
    "PostgresConfirmationLedger",
    "InMemoryCorrelationStore",
    "InMemoryConfirmationLedger",
    # Payments
    "MpesaPaymentGateway",
]
