"""Ports the legal status engine consumes.

Concrete implementations live in ``legal_status.utils``; tests substitute
mocks. Every method is a coroutine except the metrics calls, which must not
block. Cancellation of the calling task propagates into each call.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from ..models.legal_status import (
    LocalStatusRecord,
    Pagination,
    RemoteStatus,
    StatusHistoryEvent,
    Subscription,
)
from ..models.patent import PatentSummary


class RepositoryPort(ABC):
    """Local status records, their history, and notification subscriptions."""

    @abstractmethod
    async def get_by_patent_id(self, patent_id: str) -> Optional[LocalStatusRecord]:
        """Return the local record, or None when the patent is not tracked yet."""

    @abstractmethod
    async def update_status(
        self,
        patent_id: str,
        status: str,
        effective_date: Optional[datetime],
        source: str = "",
    ) -> None:
        """Upsert the current status and append the matching history event."""

    @abstractmethod
    async def record_remote_status(self, patent_id: str, remote_status: str, observed_at: datetime) -> None:
        """Store the last status observed at the authority."""

    @abstractmethod
    async def record_sync_success(self, patent_id: str, synced_at: datetime) -> None:
        """Set the last successful sync time and reset the failure counter."""

    @abstractmethod
    async def record_sync_failure(self, patent_id: str) -> None:
        """Increment the consecutive sync failure counter."""

    @abstractmethod
    async def get_status_history(
        self,
        patent_id: str,
        pagination: Optional[Pagination] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[StatusHistoryEvent]:
        """Return recorded transitions, oldest first."""

    @abstractmethod
    async def save_subscription(self, subscription: Subscription) -> None:
        """Persist a new subscription."""

    @abstractmethod
    async def deactivate_subscription(self, subscription_id: str) -> None:
        """Mark a subscription inactive; raises NotFoundError for unknown IDs."""

    @abstractmethod
    async def list_active_subscriptions(self) -> List[Subscription]:
        """Return all active subscriptions."""


class PatentListPort(ABC):
    """Patent membership of portfolios."""

    @abstractmethod
    async def list_by_portfolio(self, portfolio_id: str) -> List[PatentSummary]:
        """Return the patents of a portfolio."""


class RemoteStatusPort(ABC):
    """Authoritative patent-office status source."""

    @abstractmethod
    async def fetch_remote_status(self, patent_id: str, force: bool = False) -> RemoteStatus:
        """Fetch the office's current record; jurisdiction is resolved by the port."""


class CachePort(ABC):
    """TTL key/value cache holding JSON-compatible values."""

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or None on a miss."""

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: timedelta) -> None:
        """Store a value with a time-to-live."""

    @abstractmethod
    async def delete(self, *keys: str) -> None:
        """Remove keys."""


class EventPublishPort(ABC):
    """Fire-and-forget event publication."""

    @abstractmethod
    async def publish(self, topic: str, key: str, payload: Dict[str, Any]) -> None:
        """Publish a payload on a topic, keyed for partitioning."""


class MetricsPort(ABC):
    """Counters and histograms."""

    @abstractmethod
    def inc_counter(self, name: str, labels: Optional[Dict[str, str]] = None) -> None:
        """Increment a counter."""

    @abstractmethod
    def observe_histogram(self, name: str, value: float, labels: Optional[Dict[str, str]] = None) -> None:
        """Record a histogram observation."""
