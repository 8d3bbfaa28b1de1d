"""FastAPI dependency injection for the enforcement API.

Lifecycle Management:
- Container (database pool, SSH executor, M-Pesa client): initialized at
  startup, shared across requests, closed at shutdown
- Background sweeper: started at startup when ENFORCEMENT_SWEEP_IN_APP=true

Security:
- API key authentication required for hook, reconcile and payment endpoints
- The M-Pesa callback is unauthenticated; Daraja cannot send a key
- Set DISABLE_AUTH=true to disable authentication (development only)
"""

import logging
import os
import secrets
from typing import Optional

from fastapi import HTTPException, Security, status
from fastapi.security import APIKeyHeader

from ..background import BackgroundSweeper
from ..container import EnforcementContainer, create_container
from ..use_cases import (
    AccessReconciler,
    InitiatePaymentUseCase,
    PaymentConfirmationHandler,
    RecordPaymentUseCase,
    SubscriberMutationHook,
)
from ..domain.ports import IConfirmationLedger, ISubscriberRepository

logger = logging.getLogger(__name__)

# ========== API Key Authentication ==========

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def _get_api_key() -> Optional[str]:
    api_key = os.getenv("API_KEY", "")
    return api_key if api_key else None


async def verify_api_key(
    api_key: Optional[str] = Security(api_key_header),
) -> bool:
    """Verify the API key from the request header.

    Security model:
    - If DISABLE_AUTH=true (dev mode): authentication is disabled
    - Otherwise: API_KEY is required (fail-closed)

    Raises:
        HTTPException: 401 if API key is missing or invalid, 500 if unset
    """
    if os.getenv("DISABLE_AUTH", "").lower() == "true":
        logger.warning("Authentication disabled (DISABLE_AUTH=true). Only use this in development!")
        return True

    expected_key = _get_api_key()

    if not expected_key:
        logger.error(
            "API_KEY not set - rejecting request. "
            "Set API_KEY environment variable or DISABLE_AUTH=true for development."
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Server misconfiguration: API_KEY not set",
        )

    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing API key. Provide X-API-Key header.",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    # Constant-time comparison
    if not secrets.compare_digest(api_key, expected_key):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    return True


# ========== Global State ==========

_container: Optional[EnforcementContainer] = None
_sweeper: Optional[BackgroundSweeper] = None


async def init_container(container: Optional[EnforcementContainer] = None) -> EnforcementContainer:
    """Initialize the shared container.

    Should be called on application startup. Tests pass a prepared container.
    """
    global _container
    _container = container or await create_container()
    logger.info("Enforcement container initialized")
    return _container


def start_sweeper() -> Optional[BackgroundSweeper]:
    """Start the in-process sweep loop if enabled in configuration."""
    global _sweeper
    container = get_container()
    if not container.config.sweep_in_app:
        logger.info("In-app sweep disabled (ENFORCEMENT_SWEEP_IN_APP=false)")
        return None
    _sweeper = BackgroundSweeper(
        container.sweep,
        interval_minutes=container.config.sweep_interval_minutes,
        run_on_startup=container.config.sweep_on_startup,
    )
    _sweeper.start()
    return _sweeper


async def close_container():
    """Stop the sweeper and close the container.

    Should be called on application shutdown.
    """
    global _container, _sweeper
    if _sweeper is not None:
        await _sweeper.stop()
        _sweeper = None
    if _container is not None:
        await _container.close()
        _container = None
        logger.info("Enforcement container closed")


def get_container() -> EnforcementContainer:
    if _container is None:
        raise RuntimeError("Enforcement container not initialized. Call init_container() first.")
    return _container


def get_sweeper() -> Optional[BackgroundSweeper]:
    return _sweeper


# ========== Dependency Functions ==========


def get_reconciler() -> AccessReconciler:
    return get_container().reconciler


def get_mutation_hook() -> SubscriberMutationHook:
    return get_container().hook


def get_subscriber_repo() -> ISubscriberRepository:
    return get_container().subscriber_repo


def get_confirmation_handler() -> PaymentConfirmationHandler:
    return get_container().confirmation_handler


def get_payment_initiation() -> InitiatePaymentUseCase:
    use_case = get_container().payment_initiation
    if use_case is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Payment gateway not configured",
        )
    return use_case


def get_record_payment() -> RecordPaymentUseCase:
    return get_container().record_payment


def get_ledger() -> IConfirmationLedger:
    return get_container().ledger
