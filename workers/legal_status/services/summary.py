"""Cached portfolio status summaries."""

from collections import Counter
from datetime import timedelta
from typing import Optional

import structlog
from pydantic import ValidationError as ModelValidationError

from ..models.legal_status import StatusSummary
from ..utils.errors import ValidationError
from ..utils.normalizer import StatusCodeMapper, default_mapper
from .anomalies import AnomalyDetector
from .health import compute_health_score
from .keys import summary_cache_key
from .ports import CachePort, MetricsPort

logger = structlog.get_logger(__name__)


class SummaryAggregator:
    """Builds per-portfolio status and jurisdiction histograms with a health score."""

    def __init__(
        self,
        detector: AnomalyDetector,
        cache: CachePort,
        metrics: MetricsPort,
        cache_ttl: timedelta = timedelta(minutes=15),
        mapper: Optional[StatusCodeMapper] = None,
    ):
        self.detector = detector
        self.cache = cache
        self.metrics = metrics
        self.cache_ttl = cache_ttl
        self.mapper = mapper or default_mapper

    async def get_status_summary(self, portfolio_id: str) -> StatusSummary:
        """Return the portfolio summary, served from cache when fresh."""
        if not portfolio_id:
            raise ValidationError("get_status_summary", "portfolio_id must not be empty")

        cache_key = summary_cache_key(portfolio_id)
        cached = await self._read_cache(cache_key, portfolio_id)
        if cached is not None:
            self.metrics.inc_counter("legal_status_summary_cache_hits_total")
            return cached
        self.metrics.inc_counter("legal_status_summary_cache_misses_total")

        total_patents, records = await self.detector.load_records(portfolio_id)

        by_status = Counter()
        by_jurisdiction = Counter()
        last_sync_at = None
        for record in records:
            by_status[self.mapper.map_code(record.jurisdiction, record.status).value] += 1
            by_jurisdiction[record.jurisdiction] += 1
            if record.last_sync_at is not None and (last_sync_at is None or record.last_sync_at > last_sync_at):
                last_sync_at = record.last_sync_at

        anomalies = self.detector.evaluate(records)

        summary = StatusSummary(
            portfolio_id=portfolio_id,
            total_patents=total_patents,
            by_status=dict(by_status),
            by_jurisdiction=dict(by_jurisdiction),
            anomaly_count=len(anomalies),
            last_sync_at=last_sync_at,
            health_score=compute_health_score(anomalies, total_patents),
        )

        try:
            await self.cache.set(cache_key, summary.model_dump(mode="json"), self.cache_ttl)
        except Exception as e:
            logger.warning("Failed to set summary cache", portfolio_id=portfolio_id, error=str(e))

        logger.info("get_status_summary completed",
                    portfolio_id=portfolio_id,
                    total_patents=total_patents,
                    anomaly_count=summary.anomaly_count,
                    health_score=summary.health_score)
        return summary

    async def _read_cache(self, cache_key: str, portfolio_id: str) -> Optional[StatusSummary]:
        try:
            cached = await self.cache.get(cache_key)
        except Exception as e:
            logger.warning("Failed to read summary cache", portfolio_id=portfolio_id, error=str(e))
            return None
        if cached is None:
            return None
        try:
            return StatusSummary.model_validate(cached)
        except ModelValidationError as e:
            logger.warning("Discarding malformed summary cache entry", portfolio_id=portfolio_id, error=str(e))
            return None
