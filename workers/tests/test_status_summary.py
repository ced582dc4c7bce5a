from datetime import datetime, timedelta, timezone

import pytest

from legal_status.models.patent import PatentSummary
from legal_status.services.anomalies import AnomalyDetector
from legal_status.services.keys import summary_cache_key
from legal_status.services.summary import SummaryAggregator
from legal_status.utils.errors import InternalError, ValidationError

from factories import FIXED_NOW, make_record

PORTFOLIO_ID = "portfolio-42"


class TestStatusSummary:
    """Test cached portfolio summaries."""

    @pytest.fixture
    def aggregator(self, repository, patents, cache, metrics, clock):
        detector = AnomalyDetector(repository, patents, metrics, clock=clock)
        return SummaryAggregator(detector, cache, metrics, cache_ttl=timedelta(minutes=15))

    @pytest.fixture
    def portfolio(self, repository, patents):
        patents.list_by_portfolio.return_value = [
            PatentSummary(id="CN1"),
            PatentSummary(id="CN2"),
            PatentSummary(id="US1"),
            PatentSummary(id="EP1"),
        ]
        records = {
            "CN1": make_record(
                patent_id="CN1",
                status="授权",
                last_sync_at=FIXED_NOW - timedelta(hours=2),
            ),
            "CN2": make_record(
                patent_id="CN2",
                status="失效",
                previous_status="授权",
                last_sync_at=FIXED_NOW - timedelta(hours=1),
            ),
            "US1": make_record(patent_id="US1", jurisdiction="US", status="PATENTED"),
            "EP1": None,
        }

        async def get_by_patent_id(patent_id):
            return records[patent_id]

        repository.get_by_patent_id.side_effect = get_by_patent_id
        return records

    @pytest.mark.asyncio
    async def test_builds_and_caches_summary(self, aggregator, portfolio, cache, metrics):
        summary = await aggregator.get_status_summary(PORTFOLIO_ID)

        assert summary.portfolio_id == PORTFOLIO_ID
        assert summary.total_patents == 4
        assert summary.by_status == {"GRANTED": 2, "LAPSED": 1}
        assert summary.by_jurisdiction == {"CN": 2, "US": 1}
        assert summary.anomaly_count == 1
        assert summary.last_sync_at == FIXED_NOW - timedelta(hours=1)
        assert summary.health_score == pytest.approx(1.0 - 0.30 / 4)

        key = summary_cache_key(PORTFOLIO_ID)
        assert cache.ttls[key] == timedelta(minutes=15)
        assert cache.store[key]["portfolio_id"] == PORTFOLIO_ID
        assert metrics.count("legal_status_summary_cache_misses_total") == 1

    @pytest.mark.asyncio
    async def test_serves_from_cache(self, aggregator, portfolio, patents, metrics):
        first = await aggregator.get_status_summary(PORTFOLIO_ID)
        second = await aggregator.get_status_summary(PORTFOLIO_ID)

        assert second == first
        patents.list_by_portfolio.assert_awaited_once()
        assert metrics.count("legal_status_summary_cache_hits_total") == 1

    @pytest.mark.asyncio
    async def test_malformed_cache_entry_is_rebuilt(self, aggregator, portfolio, cache):
        await cache.set(summary_cache_key(PORTFOLIO_ID), {"unexpected": "shape"}, timedelta(minutes=1))

        summary = await aggregator.get_status_summary(PORTFOLIO_ID)

        assert summary.total_patents == 4

    @pytest.mark.asyncio
    async def test_cache_write_failure_is_tolerated(self, aggregator, portfolio, cache, monkeypatch):
        async def broken_set(key, value, ttl):
            raise ConnectionError("redis down")

        monkeypatch.setattr(cache, "set", broken_set)

        summary = await aggregator.get_status_summary(PORTFOLIO_ID)

        assert summary.total_patents == 4

    @pytest.mark.asyncio
    async def test_empty_portfolio(self, aggregator):
        summary = await aggregator.get_status_summary(PORTFOLIO_ID)

        assert summary.total_patents == 0
        assert summary.by_status == {}
        assert summary.last_sync_at is None
        assert summary.health_score == 1.0

    @pytest.mark.asyncio
    async def test_empty_portfolio_id_rejected(self, aggregator):
        with pytest.raises(ValidationError):
            await aggregator.get_status_summary("")

    @pytest.mark.asyncio
    async def test_listing_failure(self, aggregator, patents):
        patents.list_by_portfolio.side_effect = RuntimeError("db down")

        with pytest.raises(InternalError):
            await aggregator.get_status_summary(PORTFOLIO_ID)

    @pytest.mark.asyncio
    async def test_mixed_naive_and_aware_sync_times(self, aggregator, repository, patents):
        patents.list_by_portfolio.return_value = [PatentSummary(id="CN1"), PatentSummary(id="CN2")]
        records = {
            "CN1": make_record(patent_id="CN1", status="授权", last_sync_at=datetime(2024, 6, 1, 11, 30)),
            "CN2": make_record(patent_id="CN2", status="授权", last_sync_at=FIXED_NOW - timedelta(hours=3)),
        }

        async def get_by_patent_id(patent_id):
            return records[patent_id]

        repository.get_by_patent_id.side_effect = get_by_patent_id

        summary = await aggregator.get_status_summary(PORTFOLIO_ID)

        assert summary.last_sync_at == datetime(2024, 6, 1, 11, 30, tzinfo=timezone.utc)
        assert summary.anomaly_count == 0
