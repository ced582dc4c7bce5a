"""Database client and repositories for PostgreSQL operations."""

import json
import uuid
from datetime import datetime
from typing import Any, List, Optional

import asyncpg
import structlog

from ..models.legal_status import (
    LocalStatusRecord,
    Pagination,
    StatusHistoryEvent,
    Subscription,
    utc_now,
)
from ..models.patent import PatentSummary
from ..services.ports import PatentListPort, RepositoryPort
from .errors import NotFoundError

logger = structlog.get_logger(__name__)


class DatabaseClient:
    """Connection pool for PostgreSQL."""

    def __init__(self, connection_string: str, min_size: int = 5, max_size: int = 20):
        self.pool = None
        self.connection_string = connection_string
        self.min_size = min_size
        self.max_size = max_size

    async def connect(self):
        """Connect to the database."""
        try:
            self.pool = await asyncpg.create_pool(
                self.connection_string,
                min_size=self.min_size,
                max_size=self.max_size
            )
            logger.info("Connected to database")
        except Exception as e:
            logger.error("Database connection failed", error=str(e))
            raise

    async def disconnect(self):
        """Disconnect from the database."""
        try:
            if self.pool:
                await self.pool.close()
                logger.info("Disconnected from database")
        except Exception as e:
            logger.error("Database disconnection failed", error=str(e))


def _record_from_row(row) -> LocalStatusRecord:
    raw_data = row["raw_data"]
    if isinstance(raw_data, str):
        raw_data = json.loads(raw_data)
    return LocalStatusRecord(
        patent_id=row["patent_id"],
        jurisdiction=row["jurisdiction"],
        status=row["status"],
        previous_status=row["previous_status"] or "",
        remote_status=row["remote_status"] or "",
        effective_date=row["effective_date"],
        next_action=row["next_action"] or "",
        next_deadline=row["next_deadline"],
        last_sync_at=row["last_sync_at"],
        consecutive_sync_failures=row["consecutive_sync_failures"] or 0,
        raw_data=raw_data or {},
    )


def _subscription_from_row(row) -> Subscription:
    return Subscription(
        id=row["id"],
        active=row["active"],
        created_at=row["created_at"],
        patent_ids=list(row["patent_ids"] or []),
        portfolio_id=row["portfolio_id"] or "",
        status_filters=list(row["status_filters"] or []),
        channels=list(row["channels"] or []),
        recipient=row["recipient"] or "",
    )


class LegalStatusRepository(RepositoryPort):
    """Legal status records, history rows and subscriptions stored in PostgreSQL."""

    def __init__(self, db: DatabaseClient):
        self.db = db

    async def get_by_patent_id(self, patent_id: str) -> Optional[LocalStatusRecord]:
        """Get the local status record of a patent."""
        try:
            async with self.db.pool.acquire() as conn:
                row = await conn.fetchrow(
                    """
                    SELECT * FROM legal_status_records
                    WHERE patent_id = $1
                    """,
                    patent_id
                )
                return _record_from_row(row) if row else None
        except Exception as e:
            logger.error("Failed to get legal status record", patent_id=patent_id, error=str(e))
            raise

    async def update_status(
        self,
        patent_id: str,
        status: str,
        effective_date: Optional[datetime],
        source: str = "",
    ) -> None:
        """Upsert the current status and append a history row in one transaction."""
        try:
            async with self.db.pool.acquire() as conn:
                async with conn.transaction():
                    previous = await conn.fetchval(
                        """
                        SELECT status FROM legal_status_records
                        WHERE patent_id = $1
                        FOR UPDATE
                        """,
                        patent_id
                    )
                    await conn.execute(
                        """
                        INSERT INTO legal_status_records (
                            patent_id, jurisdiction, status, previous_status, effective_date, updated_at
                        )
                        SELECT $1, COALESCE(p.jurisdiction, ''), $2, '', $3, NOW()
                        FROM (SELECT 1) AS one
                        LEFT JOIN patents p ON p.id = $1
                        ON CONFLICT (patent_id) DO UPDATE SET
                            previous_status = legal_status_records.status,
                            status = EXCLUDED.status,
                            effective_date = EXCLUDED.effective_date,
                            updated_at = NOW()
                        """,
                        patent_id, status, effective_date
                    )
                    await conn.execute(
                        """
                        INSERT INTO legal_status_history (
                            event_id, patent_id, from_status, to_status, event_date, source, description
                        ) VALUES ($1, $2, $3, $4, $5, $6, $7)
                        """,
                        uuid.uuid4().hex,
                        patent_id,
                        previous or "",
                        status,
                        effective_date or utc_now(),
                        source,
                        f"{previous or 'NONE'} -> {status}"
                    )

                    logger.info("Updated legal status", patent_id=patent_id, from_status=previous, to_status=status)
        except Exception as e:
            logger.error("Failed to update legal status", patent_id=patent_id, error=str(e))
            raise

    async def record_remote_status(self, patent_id: str, remote_status: str, observed_at: datetime) -> None:
        """Store the status last observed at the patent office."""
        try:
            async with self.db.pool.acquire() as conn:
                await conn.execute(
                    """
                    UPDATE legal_status_records
                    SET remote_status = $2, remote_observed_at = $3
                    WHERE patent_id = $1
                    """,
                    patent_id, remote_status, observed_at
                )
        except Exception as e:
            logger.error("Failed to record remote status", patent_id=patent_id, error=str(e))
            raise

    async def record_sync_success(self, patent_id: str, synced_at: datetime) -> None:
        """Stamp a successful sync and reset the failure counter."""
        try:
            async with self.db.pool.acquire() as conn:
                await conn.execute(
                    """
                    UPDATE legal_status_records
                    SET last_sync_at = $2, consecutive_sync_failures = 0
                    WHERE patent_id = $1
                    """,
                    patent_id, synced_at
                )
        except Exception as e:
            logger.error("Failed to record sync success", patent_id=patent_id, error=str(e))
            raise

    async def record_sync_failure(self, patent_id: str) -> None:
        """Increment the consecutive sync failure counter."""
        try:
            async with self.db.pool.acquire() as conn:
                await conn.execute(
                    """
                    UPDATE legal_status_records
                    SET consecutive_sync_failures = consecutive_sync_failures + 1
                    WHERE patent_id = $1
                    """,
                    patent_id
                )
        except Exception as e:
            logger.error("Failed to record sync failure", patent_id=patent_id, error=str(e))
            raise

    async def get_status_history(
        self,
        patent_id: str,
        pagination: Optional[Pagination] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[StatusHistoryEvent]:
        """Get recorded transitions of a patent, oldest first."""
        query = """
            SELECT event_id, patent_id, from_status, to_status, event_date, source, description
            FROM legal_status_history
            WHERE patent_id = $1
        """
        params: List[Any] = [patent_id]
        if start is not None:
            params.append(start)
            query += f" AND event_date >= ${len(params)}"
        if end is not None:
            params.append(end)
            query += f" AND event_date <= ${len(params)}"
        query += " ORDER BY event_date ASC, event_id ASC"
        if pagination is not None:
            params.extend([pagination.page_size, pagination.offset])
            query += f" LIMIT ${len(params) - 1} OFFSET ${len(params)}"

        try:
            async with self.db.pool.acquire() as conn:
                rows = await conn.fetch(query, *params)
                return [
                    StatusHistoryEvent(
                        event_id=row["event_id"],
                        patent_id=row["patent_id"],
                        from_status=row["from_status"] or "",
                        to_status=row["to_status"],
                        event_date=row["event_date"],
                        source=row["source"] or "",
                        description=row["description"] or "",
                    )
                    for row in rows
                ]
        except Exception as e:
            logger.error("Failed to get status history", patent_id=patent_id, error=str(e))
            raise

    async def save_subscription(self, subscription: Subscription) -> None:
        """Insert a new subscription."""
        try:
            async with self.db.pool.acquire() as conn:
                await conn.execute(
                    """
                    INSERT INTO legal_status_subscriptions (
                        id, active, created_at, patent_ids, portfolio_id,
                        status_filters, channels, recipient
                    ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                    """,
                    subscription.id,
                    subscription.active,
                    subscription.created_at,
                    subscription.patent_ids,
                    subscription.portfolio_id,
                    subscription.status_filters,
                    [channel.value for channel in subscription.channels],
                    subscription.recipient
                )

                logger.info("Created subscription", subscription_id=subscription.id)
        except Exception as e:
            logger.error("Failed to save subscription", subscription_id=subscription.id, error=str(e))
            raise

    async def deactivate_subscription(self, subscription_id: str) -> None:
        """Mark a subscription inactive."""
        try:
            async with self.db.pool.acquire() as conn:
                updated = await conn.fetchval(
                    """
                    WITH updated AS (
                        UPDATE legal_status_subscriptions SET active = FALSE
                        WHERE id = $1
                        RETURNING 1
                    )
                    SELECT COUNT(*) FROM updated
                    """,
                    subscription_id
                )
        except Exception as e:
            logger.error("Failed to deactivate subscription", subscription_id=subscription_id, error=str(e))
            raise

        if not updated:
            raise NotFoundError("unsubscribe", f"subscription {subscription_id} not found")

    async def list_active_subscriptions(self) -> List[Subscription]:
        """Get all active subscriptions."""
        try:
            async with self.db.pool.acquire() as conn:
                rows = await conn.fetch(
                    """
                    SELECT * FROM legal_status_subscriptions
                    WHERE active = TRUE
                    ORDER BY created_at
                    """
                )
                return [_subscription_from_row(row) for row in rows]
        except Exception as e:
            logger.error("Failed to list active subscriptions", error=str(e))
            raise


class PatentRepository(PatentListPort):
    """Portfolio membership read from the patents table."""

    def __init__(self, db: DatabaseClient):
        self.db = db

    async def list_by_portfolio(self, portfolio_id: str) -> List[PatentSummary]:
        """Get the patents of a portfolio."""
        try:
            async with self.db.pool.acquire() as conn:
                rows = await conn.fetch(
                    """
                    SELECT id, pub_number, jurisdiction, portfolio_id FROM patents
                    WHERE portfolio_id = $1
                    ORDER BY id
                    """,
                    portfolio_id
                )
                return [
                    PatentSummary(
                        id=row["id"],
                        pub_number=row["pub_number"],
                        jurisdiction=row["jurisdiction"],
                        portfolio_id=row["portfolio_id"],
                    )
                    for row in rows
                ]
        except Exception as e:
            logger.error("Failed to list portfolio patents", portfolio_id=portfolio_id, error=str(e))
            raise
