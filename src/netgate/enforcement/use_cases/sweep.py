"""Access Sweep Use Case - Periodic reconciliation of every subscriber.

Workflow:
1. Load all subscriber snapshots (via ISubscriberRepository)
2. Reconcile each one through a bounded worker pool, so a slow or
   unreachable device only ever occupies one slot
3. Purge expired payment correlations and old confirmation records
4. Return sweep statistics

Per-subscriber failures are isolated: they are logged, counted and the
sweep carries on. Once the shutdown event is set no new reconciliations
start; those already running finish.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Optional

from ...api.concurrency import process_concurrent
from ..domain.entities import Subscriber, SweepResult
from ..domain.ports import IConfirmationLedger, ICorrelationStore, ISubscriberRepository
from .reconcile_access import AccessReconciler

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_SECONDS = 7 * 24 * 3600


class AccessSweep:
    """Reconcile the whole subscriber set with bounded concurrency.

    Example:
        sweep = AccessSweep(
            subscriber_repo=PostgresSubscriberRepository(pool),
            reconciler=reconciler,
            correlation_store=PostgresCorrelationStore(pool),
            ledger=PostgresConfirmationLedger(pool),
            max_concurrency=10,
        )
        result = await sweep.execute()
        print(result.to_dict())
    """

    def __init__(
        self,
        subscriber_repo: ISubscriberRepository,
        reconciler: AccessReconciler,
        correlation_store: Optional[ICorrelationStore] = None,
        ledger: Optional[IConfirmationLedger] = None,
        max_concurrency: int = 10,
        confirmation_retention_seconds: float = DEFAULT_RETENTION_SECONDS,
        shutdown_event: Optional[asyncio.Event] = None,
    ):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.repo = subscriber_repo
        self.reconciler = reconciler
        self.correlation_store = correlation_store
        self.ledger = ledger
        self.max_concurrency = max_concurrency
        self.confirmation_retention_seconds = confirmation_retention_seconds
        self.shutdown_event = shutdown_event or asyncio.Event()

    async def execute(self) -> SweepResult:
        """Run one sweep cycle.

        Returns:
            SweepResult with counts per action, failures and skips
        """
        started_at = datetime.now(timezone.utc)
        started = time.monotonic()
        result = SweepResult(started_at=started_at)

        logger.info(f"Starting access sweep at {started_at.isoformat()}")

        try:
            subscribers = await self.repo.list_subscribers()
        except Exception as e:
            logger.error(f"Failed to load subscribers: {e}")
            result.error_details.append(f"Subscriber load failed: {e}")
            result.failed += 1
            result.duration_seconds = time.monotonic() - started
            return result

        result.total = len(subscribers)
        now = self.reconciler.now()

        async def reconcile_one(subscriber: Subscriber) -> None:
            if self.shutdown_event.is_set():
                result.skipped += 1
                return
            if not subscriber.has_address:
                result.skipped += 1
                return
            try:
                outcome = await self.reconciler.reconcile(subscriber, now)
            except Exception as e:
                result.failed += 1
                result.error_details.append(f"{subscriber.subscriber_id}: {e}")
                logger.warning(f"Sweep reconciliation failed for {subscriber.subscriber_id}: {e}")
                return
            result.record(outcome.action)

        await process_concurrent(subscribers, reconcile_one, max_concurrent=self.max_concurrency)

        await self.purge(result)

        result.duration_seconds = time.monotonic() - started
        logger.info(
            f"Access sweep completed in {result.duration_seconds:.2f}s: "
            f"{result.total} subscribers, {result.blocked} blocked, {result.unblocked} unblocked, "
            f"{result.deferred} deferred, {result.failed} failed, {result.skipped} skipped"
        )
        return result

    async def purge(self, result: Optional[SweepResult] = None) -> SweepResult:
        """Delete expired correlations and confirmation records past retention."""
        result = result or SweepResult(started_at=datetime.now(timezone.utc))

        if self.correlation_store is not None:
            try:
                result.purged_correlations = await self.correlation_store.purge_expired()
            except Exception as e:
                logger.error(f"Failed to purge expired correlations: {e}")
                result.error_details.append(f"Correlation purge failed: {e}")

        if self.ledger is not None:
            try:
                result.purged_confirmations = await self.ledger.purge_older_than(
                    self.confirmation_retention_seconds
                )
            except Exception as e:
                logger.error(f"Failed to purge confirmation records: {e}")
                result.error_details.append(f"Confirmation purge failed: {e}")

        if result.purged_correlations or result.purged_confirmations:
            logger.info(
                f"Purged {result.purged_correlations} correlations, "
                f"{result.purged_confirmations} confirmation records"
            )
        return result
