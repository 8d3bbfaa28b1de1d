"""Subscriber Mutation Hook - Reconciles right after a record is committed.

Called by whatever persists subscriber records (the HTTP hook endpoints,
or an in-process caller) once a create, update or delete has committed.
Enforcement here is best effort: failures are logged and never become
the failure of the request that changed the record. The sweep picks up
anything left behind.
"""

import logging
from typing import Optional

from ..domain.entities import AccessAction, ReconcileResult, Subscriber
from .reconcile_access import AccessReconciler, rule_lock_key

logger = logging.getLogger(__name__)


class SubscriberMutationHook:
    """Reconcile a single subscriber after it was saved or deleted.

    Example:
        hook = SubscriberMutationHook(reconciler)
        await hook.on_saved(subscriber, previous_address="10.0.0.4")
        await hook.on_deleted(subscriber)
    """

    def __init__(self, reconciler: AccessReconciler):
        self.reconciler = reconciler

    async def on_saved(
        self,
        subscriber: Subscriber,
        previous_address: Optional[str] = None,
    ) -> Optional[ReconcileResult]:
        """Handle a create or update.

        When the address changed, the rule left on the previous address is
        removed first so no stale rule survives the move.

        Returns:
            The reconciliation result, or None if nothing was reconciled
        """
        subscriber_id = subscriber.subscriber_id

        if previous_address and self._address_changed(previous_address, subscriber):
            try:
                action = await self.reconciler.release(previous_address, subscriber_id)
                if action == AccessAction.DEFERRED:
                    logger.warning(
                        f"Rule on previous address {previous_address} of {subscriber_id} "
                        f"not checked; it may need manual removal"
                    )
            except Exception as e:
                logger.error(f"Failed to clear previous address {previous_address} of {subscriber_id}: {e}")

        if not subscriber.has_address:
            logger.debug(f"Subscriber {subscriber_id} has no address, nothing to enforce")
            return None

        try:
            return await self.reconciler.reconcile(subscriber)
        except Exception as e:
            logger.error(f"Reconciliation after save failed for {subscriber_id}: {e}")
            return None

    async def on_deleted(self, subscriber: Subscriber) -> Optional[ReconcileResult]:
        """Handle a delete: the subscriber loses access regardless of dates."""
        if not subscriber.has_address:
            logger.debug(f"Deleted subscriber {subscriber.subscriber_id} had no address")
            return None

        try:
            return await self.reconciler.reconcile(subscriber, force_blocked=True)
        except Exception as e:
            logger.error(f"Reconciliation after delete failed for {subscriber.subscriber_id}: {e}")
            return None

    @staticmethod
    def _address_changed(previous_address: str, subscriber: Subscriber) -> bool:
        if subscriber.ip_address is None:
            return True
        return (
            rule_lock_key(previous_address, subscriber.subscriber_id)
            != rule_lock_key(subscriber.ip_address, subscriber.subscriber_id)
        )
