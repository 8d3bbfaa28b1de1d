"""Reconcile Access Use Case - Aligns one subscriber's firewall rule.

This use case is the single place where enforcement decisions are made.
Every trigger (mutation hook, sweep, payment confirmation) goes through it.

Workflow:
1. Compute desired state from the subscription window (or force blocked)
2. Take the per-key lock for (address, subscriber_id)
3. Probe the rule (PRESENT / ABSENT / INDETERMINATE)
4. INDETERMINATE -> DEFERRED, nothing else happens
5. Desired matches actual -> NONE, nothing else happens
6. Otherwise apply exactly one corrective command, then write the status

A failed corrective command raises EnforcementFailure; nothing is retried
within the call. The next trigger retries naturally.
"""

import ipaddress
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from ...api.concurrency import KeyedLock
from ...api.exceptions import EnforcementFailure
from ..domain.entities import (
    AccessAction,
    ReconcileResult,
    RuleState,
    Subscriber,
    as_utc,
    is_blocked,
    status_after,
)
from ..domain.ports import IFirewall, ISubscriberRepository

logger = logging.getLogger(__name__)


def rule_lock_key(address: str, subscriber_id: str) -> tuple[str, str]:
    """Lock key for a rule; equivalent spellings of an address share a key."""
    try:
        address = str(ipaddress.ip_address(address.strip()))
    except ValueError:
        pass  # Rejected later by the firewall's validation
    return (address, subscriber_id)


class AccessReconciler:
    """Compare-then-act reconciler for subscriber block rules.

    Operations on the same (address, subscriber_id) key never interleave;
    different keys proceed in parallel. Share one instance (and therefore
    one KeyedLock) between every trigger in the process.

    Example:
        reconciler = AccessReconciler(
            firewall=IptablesFirewall(executor),
            subscriber_repo=PostgresSubscriberRepository(pool),
        )
        result = await reconciler.reconcile(subscriber)
        if result.action == AccessAction.DEFERRED:
            ...  # Device unreachable, next trigger will retry
    """

    def __init__(
        self,
        firewall: IFirewall,
        subscriber_repo: ISubscriberRepository,
        locks: Optional[KeyedLock] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize the reconciler.

        Args:
            firewall: Port for probing and changing the block rule
            subscriber_repo: Port for writing status transitions
            locks: Per-key lock table (one is created if omitted)
            clock: Returns the current aware datetime (for tests)
        """
        self.firewall = firewall
        self.repo = subscriber_repo
        self.locks = locks or KeyedLock("rules")
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def now(self) -> datetime:
        return self._clock()

    async def reconcile(
        self,
        subscriber: Subscriber,
        now: Optional[datetime] = None,
        *,
        force_blocked: bool = False,
    ) -> ReconcileResult:
        """Bring the subscriber's rule in line with the desired state.

        Args:
            subscriber: Snapshot to reconcile (must have an address)
            now: Instant to evaluate the window at (defaults to the clock)
            force_blocked: Block regardless of dates; the record is gone,
                so no status is written

        Returns:
            ReconcileResult with NONE, APPLIED_BLOCK, APPLIED_UNBLOCK or DEFERRED

        Raises:
            EnforcementFailure: If the corrective command failed
            CommandValidationError: If address or id fail validation
            ValueError: If the subscriber has no address
        """
        if not subscriber.has_address:
            raise ValueError(f"Subscriber '{subscriber.subscriber_id}' has no network address")

        now = as_utc(now) if now is not None else self.now()
        address = subscriber.ip_address
        subscriber_id = subscriber.subscriber_id
        desired_blocked = force_blocked or is_blocked(subscriber, now)

        async with self.locks.hold(rule_lock_key(address, subscriber_id)):
            observed = await self.firewall.exists(address, subscriber_id)

            if observed == RuleState.INDETERMINATE:
                logger.info(f"Deferred reconciliation for {subscriber_id} ({address}): rule state unknown")
                return ReconcileResult(
                    subscriber_id=subscriber_id,
                    address=address,
                    action=AccessAction.DEFERRED,
                    desired_blocked=desired_blocked,
                    observed=observed,
                )

            if desired_blocked == (observed == RuleState.PRESENT):
                return ReconcileResult(
                    subscriber_id=subscriber_id,
                    address=address,
                    action=AccessAction.NONE,
                    desired_blocked=desired_blocked,
                    observed=observed,
                )

            try:
                if desired_blocked:
                    await self.firewall.add_block(address, subscriber_id)
                    action = AccessAction.APPLIED_BLOCK
                else:
                    await self.firewall.remove_block(address, subscriber_id)
                    action = AccessAction.APPLIED_UNBLOCK
            except EnforcementFailure as e:
                logger.error(
                    f"Enforcement failed for subscriber {subscriber_id} ({address}), "
                    f"attempted {e.action}: {e}"
                )
                raise

            result = ReconcileResult(
                subscriber_id=subscriber_id,
                address=address,
                action=action,
                desired_blocked=desired_blocked,
                observed=observed,
            )

            # Written under the lock so status updates land in rule order
            if not force_blocked:
                status = status_after(subscriber, now, desired_blocked)
                try:
                    await self.repo.update_status(subscriber_id, status)
                    result.status = status
                except Exception as e:
                    logger.error(f"Rule updated for {subscriber_id} but status write to '{status.value}' failed: {e}")
                    result.status_error = str(e)

        logger.info(f"Reconciled {subscriber_id} ({address}): {action.value}")
        return result

    async def release(self, address: str, subscriber_id: str) -> AccessAction:
        """Remove a block rule the subscriber left on an address it no longer owns.

        Returns:
            APPLIED_UNBLOCK if a rule was removed, NONE if there was none,
            DEFERRED if the rule state could not be determined

        Raises:
            EnforcementFailure: If the remove command failed
        """
        async with self.locks.hold(rule_lock_key(address, subscriber_id)):
            observed = await self.firewall.exists(address, subscriber_id)
            if observed == RuleState.INDETERMINATE:
                logger.warning(f"Could not check previous address {address} of {subscriber_id}; rule may remain")
                return AccessAction.DEFERRED
            if observed == RuleState.ABSENT:
                return AccessAction.NONE
            try:
                await self.firewall.remove_block(address, subscriber_id)
            except EnforcementFailure as e:
                logger.error(
                    f"Enforcement failed for subscriber {subscriber_id} ({address}), "
                    f"attempted {e.action} of previous address: {e}"
                )
                raise

        logger.info(f"Removed rule on previous address {address} of {subscriber_id}")
        return AccessAction.APPLIED_UNBLOCK


__all__ = [
    "AccessReconciler",
    "rule_lock_key",
]
