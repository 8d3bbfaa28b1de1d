"""NetGate infrastructure modules.

This package provides the transports and shared helpers the enforcement
core is built on.

Classes:
    SSHCommandExecutor: One-shot SSH command runner with a global session cap
    SSHConfig: Connection settings for the remote command channel
    CommandResult: Exit status and output of one remote command
    MpesaClient: Daraja STK push client with OAuth token caching
    MpesaConfig: Daraja credentials and endpoints

Exceptions:
    NetGateError: Base exception for all NetGate errors
    ConfigurationError: Missing or invalid configuration
    CommandValidationError: Firewall parameter rejected by the allow-list
    NetworkError: Remote channel transport errors
    EnforcementFailure: Corrective firewall command failed
    PaymentError: Payment correlation and gateway errors
    DatabaseError: Database operation failures

Concurrency:
    KeyedLock: Per-key mutual exclusion
    process_concurrent: Bounded-concurrency fan-out
"""
from .concurrency import KeyedLock, process_concurrent
from .database import (
    check_database_health,
    close_pool,
    create_pool,
    database_connection,
    database_transaction,
)
from .exceptions import (
    CommandTimeout,
    CommandValidationError,
    ConfigurationError,
    ConnectionError,
    ConnectionPoolError,
    CorrelationMiss,
    DatabaseError,
    DuplicateConfirmation,
    EnforcementFailure,
    IntegrityError,
    NetGateError,
    NetworkError,
    PaymentError,
    PaymentGatewayError,
    TransactionError,
)
from .mpesa import MpesaClient, MpesaConfig, normalize_phone_number
from .ssh import CommandResult, SSHCommandExecutor, SSHConfig

__all__ = [
    # Transports
    "SSHCommandExecutor",
    "SSHConfig",
    "CommandResult",
    "MpesaClient",
    "MpesaConfig",
    "normalize_phone_number",
    # Concurrency
    "KeyedLock",
    "process_concurrent",
    # Database
    "database_transaction",
    "database_connection",
    "create_pool",
    "close_pool",
    "check_database_health",
    # Exceptions
    "NetGateError",
    "ConfigurationError",
    "CommandValidationError",
    "NetworkError",
    "ConnectionError",
    "CommandTimeout",
    "EnforcementFailure",
    "PaymentError",
    "CorrelationMiss",
    "DuplicateConfirmation",
    "PaymentGatewayError",
    "DatabaseError",
    "ConnectionPoolError",
    "TransactionError",
    "IntegrityError",
]
