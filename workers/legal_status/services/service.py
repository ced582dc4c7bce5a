"""Legal status service: the public operations of the engine."""

import asyncio
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import structlog
from pydantic import ValidationError as ModelValidationError

from ..models.legal_status import (
    BatchSyncRequest,
    BatchSyncResult,
    LegalStatusDetail,
    Pagination,
    ReconcileResult,
    StatusAnomaly,
    StatusHistoryEvent,
    StatusSummary,
    Subscription,
    SubscriptionRequest,
    SyncResult,
    utc_now,
)
from ..utils.config import LegalStatusConfig
from ..utils.errors import InternalError, NotFoundError, ValidationError
from ..utils.normalizer import StatusCodeMapper, default_mapper
from ..utils.observability import trace_span
from .anomalies import AnomalyDetector
from .batch import BatchCoordinator
from .keys import status_cache_key
from .notifications import NotificationDispatcher
from .ports import (
    CachePort,
    EventPublishPort,
    MetricsPort,
    PatentListPort,
    RemoteStatusPort,
    RepositoryPort,
)
from .reconcile import Reconciler
from .subscriptions import SubscriptionRegistry
from .summary import SummaryAggregator
from .sync import SyncEngine

logger = structlog.get_logger(__name__)


class LegalStatusService:
    """Orchestrates synchronisation, anomaly detection, summaries and reconciliation.

    All collaborators are ports; ``config`` defaults to ``LegalStatusConfig()``.
    """

    def __init__(
        self,
        repository: RepositoryPort,
        patents: PatentListPort,
        remote: RemoteStatusPort,
        publisher: EventPublishPort,
        cache: CachePort,
        metrics: MetricsPort,
        config: Optional[LegalStatusConfig] = None,
        mapper: Optional[StatusCodeMapper] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        for name, dependency in (
            ("repository", repository),
            ("patents", patents),
            ("remote", remote),
            ("publisher", publisher),
            ("cache", cache),
            ("metrics", metrics),
        ):
            if dependency is None:
                raise InternalError("legal_status.new", f"{name} must not be None")

        self.repository = repository
        self.cache = cache
        self.metrics = metrics
        self.config = config or LegalStatusConfig()
        self.mapper = mapper or default_mapper
        clock = clock or utc_now

        self.sync_engine = SyncEngine(repository, remote, publisher, cache, metrics, clock=clock)
        self.batch = BatchCoordinator(
            self.sync_engine,
            metrics,
            max_concurrency=self.config.max_batch_concurrency,
            max_batch_size=self.config.max_batch_size,
        )
        self.detector = AnomalyDetector(
            repository,
            patents,
            metrics,
            sync_failure_threshold=self.config.sync_failure_threshold,
            mapper=self.mapper,
            clock=clock,
        )
        self.summaries = SummaryAggregator(
            self.detector, cache, metrics, cache_ttl=self.config.summary_cache_ttl, mapper=self.mapper
        )
        self.reconciler = Reconciler(repository, remote, cache, metrics, clock=clock)
        self.subscriptions = SubscriptionRegistry(repository, metrics, clock=clock)
        self.notifications = NotificationDispatcher(
            repository,
            patents,
            publisher,
            cache,
            metrics,
            dedupe_window=self.config.notification_dedupe_window,
            mapper=self.mapper,
            clock=clock,
        )

    @trace_span("legal_status.sync_status")
    async def sync_status(self, patent_id: str, force: bool = False) -> SyncResult:
        """Synchronise one patent from the authoritative source."""
        return await self.sync_engine.sync_status(patent_id, force=force)

    @trace_span("legal_status.batch_sync")
    async def batch_sync(
        self, request: BatchSyncRequest, cancel_event: Optional[asyncio.Event] = None
    ) -> BatchSyncResult:
        """Synchronise many patents with bounded concurrency."""
        return await self.batch.batch_sync(request, cancel_event=cancel_event)

    @trace_span("legal_status.get_current_status")
    async def get_current_status(self, patent_id: str) -> LegalStatusDetail:
        """Return the current status of a patent, cache first."""
        if not patent_id:
            raise ValidationError("get_current_status", "patent_id must not be empty")

        cache_key = status_cache_key(patent_id)
        cached = await self._read_cached_detail(cache_key, patent_id)
        if cached is not None:
            self.metrics.inc_counter("legal_status_cache_hits_total")
            return cached
        self.metrics.inc_counter("legal_status_cache_misses_total")

        try:
            record = await self.repository.get_by_patent_id(patent_id)
        except Exception as e:
            logger.error("Failed to get current status", patent_id=patent_id, error=str(e))
            raise InternalError("get_current_status", f"get current status for {patent_id}", e) from e
        if record is None:
            raise NotFoundError("get_current_status", f"legal status not found for patent {patent_id}")

        detail = LegalStatusDetail(
            patent_id=record.patent_id,
            jurisdiction=record.jurisdiction,
            status=self.mapper.map_code(record.jurisdiction, record.status),
            status_text=record.status,
            effective_date=record.effective_date,
            next_action=record.next_action,
            next_deadline=record.next_deadline,
            raw_data=record.raw_data,
        )

        try:
            await self.cache.set(cache_key, detail.model_dump(mode="json"), self.config.status_cache_ttl)
        except Exception as e:
            logger.warning("Failed to set status cache", patent_id=patent_id, error=str(e))

        return detail

    @trace_span("legal_status.get_status_history")
    async def get_status_history(
        self,
        patent_id: str,
        pagination: Optional[Pagination] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[StatusHistoryEvent]:
        """Return a patent's recorded transitions, optionally paged and time-bounded."""
        if not patent_id:
            raise ValidationError("get_status_history", "patent_id must not be empty")
        if pagination is not None and (pagination.page < 1 or pagination.page_size < 1):
            raise ValidationError("get_status_history", "page and page_size must be positive")
        if start is not None and end is not None and start > end:
            raise ValidationError("get_status_history", "start must not be after end")

        try:
            return await self.repository.get_status_history(patent_id, pagination=pagination, start=start, end=end)
        except Exception as e:
            logger.error("Failed to get status history", patent_id=patent_id, error=str(e))
            raise InternalError("get_status_history", f"get status history for {patent_id}", e) from e

    @trace_span("legal_status.detect_anomalies")
    async def detect_anomalies(self, portfolio_id: str) -> List[StatusAnomaly]:
        """Scan a portfolio for status irregularities, most severe first."""
        return await self.detector.detect_anomalies(portfolio_id)

    @trace_span("legal_status.subscribe")
    async def subscribe_status_change(self, request: SubscriptionRequest) -> Subscription:
        """Create a status-change notification subscription."""
        return await self.subscriptions.subscribe(request)

    @trace_span("legal_status.unsubscribe")
    async def unsubscribe_status_change(self, subscription_id: str):
        """Deactivate a notification subscription."""
        await self.subscriptions.unsubscribe(subscription_id)

    @trace_span("legal_status.get_status_summary")
    async def get_status_summary(self, portfolio_id: str) -> StatusSummary:
        """Return the portfolio status summary with its health score."""
        return await self.summaries.get_status_summary(portfolio_id)

    @trace_span("legal_status.reconcile_status")
    async def reconcile_status(self, patent_id: str) -> ReconcileResult:
        """Compare local and remote records and apply the remote truth."""
        return await self.reconciler.reconcile_status(patent_id)

    @trace_span("legal_status.notify_status_change")
    async def notify_status_change(self, event: Dict[str, Any]) -> int:
        """Deliver notifications for a published status change."""
        return await self.notifications.notify_status_change(event)

    async def _read_cached_detail(self, cache_key: str, patent_id: str) -> Optional[LegalStatusDetail]:
        try:
            cached = await self.cache.get(cache_key)
        except Exception as e:
            logger.warning("Failed to read status cache", patent_id=patent_id, error=str(e))
            return None
        if cached is None:
            return None
        try:
            return LegalStatusDetail.model_validate(cached)
        except ModelValidationError as e:
            logger.warning("Discarding malformed status cache entry", patent_id=patent_id, error=str(e))
            return None
