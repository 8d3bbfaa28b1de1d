"""In-memory adapters for the payment correlation store and ledger.

Suitable for a single process, for development and for tests. Entries are
lost on restart; use the Postgres adapters when that matters.

Methods contain no suspension points between reading and mutating the
tables, so each call is atomic with respect to other tasks on the loop.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from ...api.exceptions import CorrelationMiss
from ..domain.entities import CorrelationEntry, PaymentMethod, PaymentRecord
from ..domain.ports import IConfirmationLedger, ICorrelationStore

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryCorrelationStore(ICorrelationStore):
    """Dict-backed correlation store with per-entry expiry.

    Expired entries are rejected on consume and removed by purge_expired().
    """

    def __init__(self, clock: Clock = utc_now):
        self._clock = clock
        self._entries: dict[str, CorrelationEntry] = {}

    async def create(self, request_id: str, subscriber_id: str, ttl_seconds: float) -> CorrelationEntry:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        entry = CorrelationEntry.new(request_id, subscriber_id, ttl_seconds, self._clock())
        self._entries[request_id] = entry
        return entry

    async def consume(self, request_id: str) -> str:
        entry = self._entries.pop(request_id, None)
        if entry is None:
            raise CorrelationMiss(request_id)
        if entry.is_expired(self._clock()):
            raise CorrelationMiss(request_id, expired=True)
        return entry.subscriber_id

    async def purge_expired(self) -> int:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug(f"Purged {len(expired)} expired correlation entries")
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)


class InMemoryConfirmationLedger(IConfirmationLedger):
    """Dict-backed record of processed provider transaction ids."""

    def __init__(self, clock: Clock = utc_now):
        self._clock = clock
        self._records: dict[str, PaymentRecord] = {}

    async def contains(self, provider_transaction_id: str) -> bool:
        return provider_transaction_id in self._records

    async def claim(
        self,
        provider_transaction_id: str,
        request_id: Optional[str],
        subscriber_id: str,
        amount: Optional[float] = None,
        payment_method: PaymentMethod = PaymentMethod.MPESA,
    ) -> bool:
        if provider_transaction_id in self._records:
            return False
        self._records[provider_transaction_id] = PaymentRecord(
            provider_transaction_id=provider_transaction_id,
            subscriber_id=subscriber_id,
            confirmed_at=self._clock(),
            amount=amount,
            payment_method=payment_method,
            request_id=request_id,
        )
        return True

    async def get(self, provider_transaction_id: str) -> Optional[PaymentRecord]:
        return self._records.get(provider_transaction_id)

    async def purge_older_than(self, retention_seconds: float) -> int:
        cutoff = self._clock() - timedelta(seconds=retention_seconds)
        stale = [key for key, record in self._records.items() if record.confirmed_at < cutoff]
        for key in stale:
            del self._records[key]
        return len(stale)

    def __len__(self) -> int:
        return len(self._records)
