"""PostgreSQL repository adapter for subscriber snapshots.

This adapter implements ISubscriberRepository against the subscribers and
service_plans tables in db/enforcement_schema.sql.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Optional

from ...api.database import database_connection, database_transaction
from ...api.exceptions import TransactionError
from ..domain.entities import ServicePlan, Subscriber, SubscriberStatus
from ..domain.ports import ISubscriberRepository

if TYPE_CHECKING:
    import asyncpg

logger = logging.getLogger(__name__)

SUBSCRIBER_COLUMNS = """
    subscriber_id, name, ip_address, phone, service_plan_id,
    subscription_start, subscription_end, status
"""


class PostgresSubscriberRepository(ISubscriberRepository):
    """PostgreSQL implementation of ISubscriberRepository."""

    def __init__(self, pool: "asyncpg.Pool"):
        """Initialize the repository.

        Args:
            pool: asyncpg connection pool for database operations
        """
        self.pool = pool

    async def get_subscriber(self, subscriber_id: str) -> Optional[Subscriber]:
        async with database_connection(self.pool) as conn:
            row = await conn.fetchrow(
                f"SELECT {SUBSCRIBER_COLUMNS} FROM subscribers WHERE subscriber_id = $1",
                subscriber_id,
            )
        return self._row_to_subscriber(row) if row else None

    async def list_subscribers(self) -> list[Subscriber]:
        async with database_connection(self.pool) as conn:
            rows = await conn.fetch(
                f"SELECT {SUBSCRIBER_COLUMNS} FROM subscribers ORDER BY subscriber_id"
            )
        return [self._row_to_subscriber(row) for row in rows]

    async def update_status(self, subscriber_id: str, status: SubscriberStatus) -> None:
        async with database_connection(self.pool) as conn:
            await conn.execute(
                """
                UPDATE subscribers
                SET status = $2, updated_at = NOW()
                WHERE subscriber_id = $1
                """,
                subscriber_id,
                status.value,
            )

    async def update_window(
        self,
        subscriber_id: str,
        subscription_start: datetime,
        subscription_end: datetime,
    ) -> None:
        """Persist a new window.

        Raises:
            TransactionError: If the subscriber row no longer exists
        """
        async with database_transaction(self.pool) as conn:
            updated = await conn.fetchval(
                """
                UPDATE subscribers
                SET subscription_start = $2, subscription_end = $3, updated_at = NOW()
                WHERE subscriber_id = $1
                RETURNING subscriber_id
                """,
                subscriber_id,
                subscription_start,
                subscription_end,
            )
            if updated is None:
                raise TransactionError(
                    f"Subscriber '{subscriber_id}' not found",
                    operation="update_window",
                )

    async def get_plan(self, plan_id: int) -> Optional[ServicePlan]:
        async with database_connection(self.pool) as conn:
            row = await conn.fetchrow(
                """
                SELECT plan_id, plan_name, price, duration_months
                FROM service_plans
                WHERE plan_id = $1
                """,
                plan_id,
            )
        if row is None:
            return None
        price = row["price"]
        return ServicePlan(
            plan_id=row["plan_id"],
            plan_name=row["plan_name"],
            price=float(price) if isinstance(price, Decimal) else price,
            duration_months=row["duration_months"],
        )

    def _row_to_subscriber(self, row: Any) -> Subscriber:
        """Convert a database row to a Subscriber entity."""
        return Subscriber(
            subscriber_id=row["subscriber_id"],
            name=row["name"],
            ip_address=row["ip_address"],
            phone=row["phone"],
            service_plan_id=row["service_plan_id"],
            subscription_start=row["subscription_start"],
            subscription_end=row["subscription_end"],
            status=SubscriberStatus(row["status"]),
        )
