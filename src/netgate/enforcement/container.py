"""Wiring of adapters into use cases.

One EnforcementContainer per process. Every trigger gets its use case from
the same container, so they share a single AccessReconciler and with it a
single per-key lock table.

Example:
    container = await create_container()
    try:
        result = await container.sweep.execute()
    finally:
        await container.close()
"""

import asyncio
import logging
from typing import Callable, Optional

from ..api.database import close_pool, create_pool
from ..api.exceptions import ConfigurationError
from ..api.mpesa import MpesaClient, MpesaConfig
from ..api.ssh import SSHCommandExecutor, SSHConfig
from .adapters import (
    InMemoryConfirmationLedger,
    InMemoryCorrelationStore,
    IptablesFirewall,
    MpesaPaymentGateway,
    PostgresConfirmationLedger,
    PostgresCorrelationStore,
    PostgresSubscriberRepository,
)
from .config import EnforcementConfig
from .domain.ports import (
    IConfirmationLedger,
    ICorrelationStore,
    IFirewall,
    IPaymentGateway,
    ISubscriberRepository,
)
from .use_cases import (
    AccessReconciler,
    AccessSweep,
    InitiatePaymentUseCase,
    PaymentConfirmationHandler,
    RecordPaymentUseCase,
    SubscriberMutationHook,
)

logger = logging.getLogger(__name__)


class EnforcementContainer:
    """Holds the ports and the use cases built on them."""

    def __init__(
        self,
        config: EnforcementConfig,
        firewall: IFirewall,
        subscriber_repo: ISubscriberRepository,
        correlation_store: ICorrelationStore,
        ledger: IConfirmationLedger,
        gateway: Optional[IPaymentGateway] = None,
        pool=None,
        mpesa_client: Optional[MpesaClient] = None,
        clock: Optional[Callable] = None,
    ):
        self.config = config
        self.firewall = firewall
        self.subscriber_repo = subscriber_repo
        self.correlation_store = correlation_store
        self.ledger = ledger
        self.gateway = gateway
        self.pool = pool
        self.mpesa_client = mpesa_client
        self.shutdown_event = asyncio.Event()

        self.reconciler = AccessReconciler(firewall, subscriber_repo, clock=clock)
        self.hook = SubscriberMutationHook(self.reconciler)
        self.sweep = AccessSweep(
            subscriber_repo=subscriber_repo,
            reconciler=self.reconciler,
            correlation_store=correlation_store,
            ledger=ledger,
            max_concurrency=config.sweep_max_concurrency,
            confirmation_retention_seconds=config.confirmation_retention_seconds,
            shutdown_event=self.shutdown_event,
        )
        self.confirmation_handler = PaymentConfirmationHandler(
            correlation_store=correlation_store,
            ledger=ledger,
            subscriber_repo=subscriber_repo,
            reconciler=self.reconciler,
        )
        self.record_payment = RecordPaymentUseCase(
            ledger=ledger,
            subscriber_repo=subscriber_repo,
            reconciler=self.reconciler,
        )
        self.payment_initiation: Optional[InitiatePaymentUseCase] = None
        if gateway is not None:
            self.payment_initiation = InitiatePaymentUseCase(
                subscriber_repo=subscriber_repo,
                gateway=gateway,
                correlation_store=correlation_store,
                correlation_ttl_seconds=config.correlation_ttl_seconds,
            )

    async def close(self) -> None:
        """Stop scheduling sweep work and release connections."""
        self.shutdown_event.set()
        if self.mpesa_client is not None:
            await self.mpesa_client.close()
        if self.pool is not None:
            await close_pool(self.pool)
            self.pool = None


async def create_container(config: Optional[EnforcementConfig] = None) -> EnforcementContainer:
    """Build the production container from environment configuration.

    Raises:
        ConfigurationError: If database or SSH settings are missing
        ConnectionPoolError: If the database is unreachable
    """
    config = (config or EnforcementConfig()).validate()
    ssh_config = SSHConfig.from_env()
    logger.info(f"Enforcement config: {config}, remote: {ssh_config!r}")

    executor = SSHCommandExecutor(ssh_config)
    firewall = IptablesFirewall(
        executor,
        chain=config.firewall_chain,
        use_sudo=config.firewall_use_sudo,
    )

    pool = await create_pool(config.database_url)

    if config.correlation_backend == "memory":
        correlation_store: ICorrelationStore = InMemoryCorrelationStore()
        ledger: IConfirmationLedger = InMemoryConfirmationLedger()
        logger.warning("Using in-memory payment correlation; outstanding payments are lost on restart")
    else:
        correlation_store = PostgresCorrelationStore(pool)
        ledger = PostgresConfirmationLedger(pool)

    mpesa_client = None
    gateway = None
    try:
        mpesa_client = MpesaClient(MpesaConfig.from_env())
        gateway = MpesaPaymentGateway(mpesa_client)
    except ConfigurationError as e:
        logger.warning(f"M-Pesa not configured, payment initiation disabled: {e.message}")

    return EnforcementContainer(
        config=config,
        firewall=firewall,
        subscriber_repo=PostgresSubscriberRepository(pool),
        correlation_store=correlation_store,
        ledger=ledger,
        gateway=gateway,
        pool=pool,
        mpesa_client=mpesa_client,
    )
