"""PostgreSQL adapters for payment correlation and confirmation records.

PostgresCorrelationStore keeps outstanding requests in payment_correlations
and consumes them with a single DELETE ... RETURNING, so two deliveries of
the same confirmation can never both receive the entry.

PostgresConfirmationLedger claims provider transaction ids with
INSERT ... ON CONFLICT DO NOTHING; the row doubles as the billing record
of the payment.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from ...api.database import database_connection
from ...api.exceptions import CorrelationMiss
from ..domain.entities import CorrelationEntry, PaymentMethod, PaymentRecord
from ..domain.ports import IConfirmationLedger, ICorrelationStore

if TYPE_CHECKING:
    import asyncpg

logger = logging.getLogger(__name__)


def _rows_affected(status: str) -> int:
    """Parse asyncpg's command tag, e.g. "DELETE 3" -> 3."""
    try:
        return int(status.split()[-1])
    except (AttributeError, IndexError, ValueError):
        return 0


class PostgresCorrelationStore(ICorrelationStore):
    """Durable correlation store with TTL enforced at read time."""

    def __init__(self, pool: "asyncpg.Pool"):
        self.pool = pool

    async def create(self, request_id: str, subscriber_id: str, ttl_seconds: float) -> CorrelationEntry:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        entry = CorrelationEntry.new(request_id, subscriber_id, ttl_seconds, datetime.now(timezone.utc))
        async with database_connection(self.pool) as conn:
            await conn.execute(
                """
                INSERT INTO payment_correlations (request_id, subscriber_id, created_at, expires_at)
                VALUES ($1, $2, $3, $4)
                ON CONFLICT (request_id) DO UPDATE SET
                    subscriber_id = EXCLUDED.subscriber_id,
                    created_at = EXCLUDED.created_at,
                    expires_at = EXCLUDED.expires_at
                """,
                entry.request_id,
                entry.subscriber_id,
                entry.created_at,
                entry.expires_at,
            )
        return entry

    async def consume(self, request_id: str) -> str:
        async with database_connection(self.pool) as conn:
            row = await conn.fetchrow(
                """
                DELETE FROM payment_correlations
                WHERE request_id = $1
                RETURNING subscriber_id, expires_at <= NOW() AS expired
                """,
                request_id,
            )
        if row is None:
            raise CorrelationMiss(request_id)
        if row["expired"]:
            raise CorrelationMiss(request_id, expired=True)
        return row["subscriber_id"]

    async def purge_expired(self) -> int:
        async with database_connection(self.pool) as conn:
            status = await conn.execute(
                "DELETE FROM payment_correlations WHERE expires_at <= NOW()"
            )
        return _rows_affected(status)


class PostgresConfirmationLedger(IConfirmationLedger):
    """Durable record of processed provider transaction ids."""

    def __init__(self, pool: "asyncpg.Pool"):
        self.pool = pool

    async def contains(self, provider_transaction_id: str) -> bool:
        async with database_connection(self.pool) as conn:
            found = await conn.fetchval(
                "SELECT 1 FROM payment_confirmations WHERE provider_transaction_id = $1",
                provider_transaction_id,
            )
        return found is not None

    async def claim(
        self,
        provider_transaction_id: str,
        request_id: Optional[str],
        subscriber_id: str,
        amount: Optional[float] = None,
        payment_method: PaymentMethod = PaymentMethod.MPESA,
    ) -> bool:
        async with database_connection(self.pool) as conn:
            claimed = await conn.fetchval(
                """
                INSERT INTO payment_confirmations (
                    provider_transaction_id, request_id, subscriber_id, amount,
                    payment_method, confirmed_at
                ) VALUES ($1, $2, $3, $4, $5, NOW())
                ON CONFLICT (provider_transaction_id) DO NOTHING
                RETURNING provider_transaction_id
                """,
                provider_transaction_id,
                request_id,
                subscriber_id,
                Decimal(str(amount)) if amount is not None else None,
                payment_method.value,
            )
        return claimed is not None

    async def get(self, provider_transaction_id: str) -> Optional[PaymentRecord]:
        async with database_connection(self.pool) as conn:
            row = await conn.fetchrow(
                """
                SELECT provider_transaction_id, request_id, subscriber_id, amount,
                       payment_method, confirmed_at
                FROM payment_confirmations
                WHERE provider_transaction_id = $1
                """,
                provider_transaction_id,
            )
        if row is None:
            return None
        amount = row["amount"]
        return PaymentRecord(
            provider_transaction_id=row["provider_transaction_id"],
            subscriber_id=row["subscriber_id"],
            confirmed_at=row["confirmed_at"],
            amount=float(amount) if amount is not None else None,
            payment_method=PaymentMethod(row["payment_method"]),
            request_id=row["request_id"],
        )

    async def purge_older_than(self, retention_seconds: float) -> int:
        async with database_connection(self.pool) as conn:
            status = await conn.execute(
                """
                DELETE FROM payment_confirmations
                WHERE confirmed_at < NOW() - make_interval(secs => $1)
                """,
                float(retention_seconds),
            )
        return _rows_affected(status)
