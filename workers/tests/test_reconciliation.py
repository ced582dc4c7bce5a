from datetime import datetime, timedelta, timezone

import pytest

from legal_status.services.keys import status_cache_key
from legal_status.services.reconcile import INVESTIGATE, UPDATE_LOCAL, Reconciler, compare_records
from legal_status.utils.errors import InternalError, NotFoundError, ValidationError

from factories import FIXED_NOW, make_record, make_remote

PATENT_ID = "CN112345678A"
EFFECTIVE = datetime(2024, 5, 20, tzinfo=timezone.utc)


class TestCompareRecords:
    """Test field-level comparison."""

    def test_identical_records(self):
        local = make_record(status="授权", effective_date=EFFECTIVE, next_action="Annuity")
        remote = make_remote(status="授权", effective_date=EFFECTIVE, next_action="Annuity")

        assert compare_records(local, remote) == []

    def test_every_field_differs(self):
        local = make_record(status="公开", next_action="", effective_date=None)
        remote = make_remote(status="授权", jurisdiction="US", next_action="Pay issue fee")

        discrepancies = {d.field: d for d in compare_records(local, remote)}

        assert set(discrepancies) == {"status", "jurisdiction", "effective_date", "next_action"}
        assert discrepancies["jurisdiction"].resolution == INVESTIGATE
        assert discrepancies["status"].resolution == UPDATE_LOCAL
        assert discrepancies["effective_date"].local_value == ""
        assert discrepancies["effective_date"].remote_value == EFFECTIVE.isoformat()


class TestReconciler:
    """Test on-demand reconciliation."""

    @pytest.fixture
    def reconciler(self, repository, remote, cache, metrics, clock):
        return Reconciler(repository, remote, cache, metrics, clock=clock)

    @pytest.mark.asyncio
    async def test_consistent_record(self, reconciler, repository, remote, metrics):
        repository.get_by_patent_id.return_value = make_record(status="授权", effective_date=EFFECTIVE)
        remote.fetch_remote_status.return_value = make_remote(status="授权", effective_date=EFFECTIVE)

        result = await reconciler.reconcile_status(PATENT_ID)

        assert result.consistent is True
        assert result.discrepancies == []
        assert result.auto_applied is False
        assert result.reconciled_at == FIXED_NOW
        repository.update_status.assert_not_awaited()
        assert metrics.count("legal_status_reconciliations_total", {"consistent": "true"}) == 1

    @pytest.mark.asyncio
    async def test_inconsistent_record_is_updated(self, reconciler, repository, remote, cache, metrics):
        repository.get_by_patent_id.return_value = make_record(status="公开", effective_date=EFFECTIVE)
        remote.fetch_remote_status.return_value = make_remote(status="授权", effective_date=EFFECTIVE)
        await cache.set(status_cache_key(PATENT_ID), {"status": "stale"}, timedelta(hours=1))

        result = await reconciler.reconcile_status(PATENT_ID)

        assert result.consistent is False
        assert result.local_status == "公开"
        assert result.remote_status == "授权"
        assert [d.field for d in result.discrepancies] == ["status"]
        assert result.auto_applied is True
        repository.update_status.assert_awaited_once_with(PATENT_ID, "授权", EFFECTIVE, source="CNIPA")
        assert await cache.get(status_cache_key(PATENT_ID)) is None
        assert metrics.count("legal_status_reconciliations_total", {"consistent": "false"}) == 1

    @pytest.mark.asyncio
    async def test_status_date_and_action_mismatch(self, reconciler, repository, remote):
        repository.get_by_patent_id.return_value = make_record(status="公开", next_action="")
        remote.fetch_remote_status.return_value = make_remote(
            status="授权", effective_date=EFFECTIVE, next_action="Pay registration fee"
        )

        result = await reconciler.reconcile_status(PATENT_ID)

        assert result.consistent is False
        assert sorted(d.field for d in result.discrepancies) == ["effective_date", "next_action", "status"]
        assert result.auto_applied is True
        repository.update_status.assert_awaited_once_with(PATENT_ID, "授权", EFFECTIVE, source="CNIPA")

    @pytest.mark.asyncio
    async def test_failed_auto_apply_still_reports(self, reconciler, repository):
        repository.get_by_patent_id.return_value = make_record(status="公开")
        repository.update_status.side_effect = RuntimeError("lock timeout")

        result = await reconciler.reconcile_status(PATENT_ID)

        assert result.consistent is False
        assert result.auto_applied is False

    @pytest.mark.asyncio
    async def test_missing_local_record(self, reconciler, remote):
        with pytest.raises(NotFoundError):
            await reconciler.reconcile_status(PATENT_ID)

        remote.fetch_remote_status.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_remote_failure(self, reconciler, repository, remote):
        repository.get_by_patent_id.return_value = make_record()
        remote.fetch_remote_status.side_effect = TimeoutError("office timeout")

        with pytest.raises(InternalError):
            await reconciler.reconcile_status(PATENT_ID)

    @pytest.mark.asyncio
    async def test_local_failure(self, reconciler, repository):
        repository.get_by_patent_id.side_effect = RuntimeError("db down")

        with pytest.raises(InternalError):
            await reconciler.reconcile_status(PATENT_ID)

    @pytest.mark.asyncio
    async def test_empty_patent_id_rejected(self, reconciler):
        with pytest.raises(ValidationError):
            await reconciler.reconcile_status("")
