#!/usr/bin/env python3
"""Exception Hierarchy for NetGate access enforcement.

This module provides a structured exception hierarchy for handling errors
across the enforcement core: the remote command channel, firewall actions,
payment correlation and persistence.

Design Principles:
    - All exceptions inherit from NetGateError base class
    - Exceptions preserve context (original error, timestamps, details)
    - Exceptions are categorized by recoverability
    - Each exception includes actionable information

Exception Hierarchy:
    NetGateError (base)
    ├── ConfigurationError (unrecoverable - fix config)
    ├── CommandValidationError (unrecoverable - bad address or identifier)
    ├── NetworkError (recoverable - next trigger)
    │   ├── ConnectionError
    │   └── CommandTimeout
    ├── EnforcementFailure (remote state could not be changed)
    ├── PaymentError
    │   ├── CorrelationMiss
    │   ├── DuplicateConfirmation
    │   └── PaymentGatewayError
    └── DatabaseError (may be recoverable)
        ├── ConnectionPoolError
        ├── TransactionError
        └── IntegrityError
"""
from datetime import datetime, timezone
from typing import Any, Optional

# ============================================
# Base Exception
# ============================================

class NetGateError(Exception):
    """Base exception for all NetGate errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (e.g., "COMMAND_TIMEOUT")
        details: Additional context as a dictionary
        timestamp: When the error occurred
        cause: The original exception that caused this error
        recoverable: Whether a later trigger might succeed
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        recoverable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__.upper()
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc)
        self.cause = cause
        self.recoverable = recoverable

        if cause:
            self.__cause__ = cause

    def __str__(self) -> str:
        parts = [self.message]
        if self.code:
            parts.insert(0, f"[{self.code}]")
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            parts.append(f"({detail_str})")
        return " ".join(parts)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code!r}, "
            f"details={self.details!r}, "
            f"recoverable={self.recoverable})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
            "recoverable": self.recoverable,
            "cause": str(self.cause) if self.cause else None,
        }


# ============================================
# Configuration / Validation Errors (Unrecoverable)
# ============================================

class ConfigurationError(NetGateError):
    """Raised when configuration is missing or invalid."""

    def __init__(
        self,
        message: str,
        missing_keys: Optional[list[str]] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if missing_keys:
            details["missing_keys"] = missing_keys
        super().__init__(
            message,
            code="CONFIGURATION_ERROR",
            details=details,
            recoverable=False,
            **kwargs,
        )


class CommandValidationError(NetGateError):
    """Raised when a firewall command parameter fails the allow-list.

    Raised before anything is sent to the remote channel.
    """

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if field:
            details["field"] = field
        if value is not None:
            # Truncate, the value is untrusted input
            details["value"] = repr(value[:64])
        super().__init__(
            message,
            code="COMMAND_VALIDATION_ERROR",
            details=details,
            recoverable=False,
            **kwargs,
        )


# ============================================
# Network Errors (Recoverable on next trigger)
# ============================================

class NetworkError(NetGateError):
    """Base class for remote channel transport errors."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("recoverable", True)
        super().__init__(message, **kwargs)


class ConnectionError(NetworkError):
    """Raised when the remote host is unreachable, refuses, or rejects auth."""

    def __init__(
        self,
        message: str = "Failed to connect to remote host",
        host: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if host:
            details["host"] = host
        super().__init__(
            message,
            code="CONNECTION_ERROR",
            details=details,
            **kwargs,
        )


class CommandTimeout(NetworkError):
    """Raised when a remote command does not complete within its bound."""

    def __init__(
        self,
        message: str = "Remote command timed out",
        timeout_seconds: Optional[float] = None,
        host: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if timeout_seconds:
            details["timeout_seconds"] = timeout_seconds
        if host:
            details["host"] = host
        super().__init__(
            message,
            code="COMMAND_TIMEOUT",
            details=details,
            **kwargs,
        )


# ============================================
# Enforcement Errors
# ============================================

class EnforcementFailure(NetGateError):
    """Raised when a corrective firewall command could not be applied.

    Attributes:
        subscriber_id: Subscriber whose rule was being changed
        address: Network address of the rule
        action: Attempted action ("block" or "unblock")
        exit_status: Remote exit status, None for transport failures
    """

    def __init__(
        self,
        subscriber_id: str,
        address: str,
        action: str,
        exit_status: Optional[int] = None,
        output: Optional[str] = None,
        **kwargs,
    ):
        message = f"Failed to {action} {address} for subscriber '{subscriber_id}'"
        details = kwargs.pop("details", {})
        details["subscriber_id"] = subscriber_id
        details["address"] = address
        details["action"] = action
        if exit_status is not None:
            details["exit_status"] = exit_status
        if output:
            details["output"] = output[:200]
        kwargs.setdefault("recoverable", True)
        super().__init__(
            message,
            code="ENFORCEMENT_FAILURE",
            details=details,
            **kwargs,
        )
        self.subscriber_id = subscriber_id
        self.address = address
        self.action = action
        self.exit_status = exit_status


# ============================================
# Payment Errors
# ============================================

class PaymentError(NetGateError):
    """Base class for payment correlation and gateway errors."""


class CorrelationMiss(PaymentError):
    """Raised when a confirmation has no matching (or an expired) request."""

    def __init__(
        self,
        request_id: str,
        expired: bool = False,
        **kwargs,
    ):
        reason = "expired" if expired else "unknown"
        details = kwargs.pop("details", {})
        details["request_id"] = request_id
        details["reason"] = reason
        super().__init__(
            f"No payment request for '{request_id}' ({reason})",
            code="CORRELATION_MISS",
            details=details,
            recoverable=False,
            **kwargs,
        )
        self.request_id = request_id
        self.expired = expired


class DuplicateConfirmation(PaymentError):
    """Raised when a provider transaction id was already processed."""

    def __init__(self, provider_transaction_id: str, **kwargs):
        details = kwargs.pop("details", {})
        details["provider_transaction_id"] = provider_transaction_id
        super().__init__(
            f"Confirmation '{provider_transaction_id}' already processed",
            code="DUPLICATE_CONFIRMATION",
            details=details,
            recoverable=False,
            **kwargs,
        )
        self.provider_transaction_id = provider_transaction_id


class PaymentGatewayError(PaymentError):
    """Raised when the payment provider API rejects or fails a request."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if status_code:
            details["status_code"] = status_code
        kwargs.setdefault("recoverable", status_code is None or status_code >= 500)
        super().__init__(
            message,
            code="PAYMENT_GATEWAY_ERROR",
            details=details,
            **kwargs,
        )
        self.status_code = status_code


# ============================================
# Database Errors
# ============================================

class DatabaseError(NetGateError):
    """Base class for database-related errors."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("recoverable", True)
        super().__init__(message, **kwargs)


class ConnectionPoolError(DatabaseError):
    """Raised when database connection pool is exhausted or unavailable."""

    def __init__(
        self,
        message: str = "Database connection pool error",
        **kwargs,
    ):
        super().__init__(message, code="CONNECTION_POOL_ERROR", **kwargs)


class TransactionError(DatabaseError):
    """Raised when database transaction fails."""

    def __init__(
        self,
        message: str = "Database transaction failed",
        operation: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if operation:
            details["operation"] = operation
        super().__init__(
            message,
            code="TRANSACTION_ERROR",
            details=details,
            **kwargs,
        )


class IntegrityError(DatabaseError):
    """Raised when database integrity constraint is violated."""

    def __init__(
        self,
        message: str = "Database integrity error",
        constraint: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if constraint:
            details["constraint"] = constraint
        super().__init__(
            message,
            code="INTEGRITY_ERROR",
            details=details,
            recoverable=False,
            **kwargs,
        )


# ============================================
# Exports
# ============================================

__all__ = [
    # Base
    "NetGateError",
    # Configuration / validation
    "ConfigurationError",
    "CommandValidationError",
    # Network
    "NetworkError",
    "ConnectionError",
    "CommandTimeout",
    # Enforcement
    "EnforcementFailure",
    # Payment
    "PaymentError",
    "CorrelationMiss",
    "DuplicateConfirmation",
    "PaymentGatewayError",
    # Database
    "DatabaseError",
    "ConnectionPoolError",
    "TransactionError",
    "IntegrityError",
]
