"""On-demand reconciliation of local against remote legal status."""

from datetime import datetime
from typing import Callable, List, Optional

import structlog

from ..models.legal_status import Discrepancy, LocalStatusRecord, ReconcileResult, RemoteStatus, utc_now
from ..utils.errors import InternalError, NotFoundError, ValidationError
from .keys import status_cache_key
from .ports import CachePort, MetricsPort, RemoteStatusPort, RepositoryPort

logger = structlog.get_logger(__name__)

UPDATE_LOCAL = "update_local"
INVESTIGATE = "investigate"


def _format_date(value: Optional[datetime]) -> str:
    return value.isoformat() if value is not None else ""


def compare_records(local: LocalStatusRecord, remote: RemoteStatus) -> List[Discrepancy]:
    """Field-level diff of status, jurisdiction, effective date and next action."""
    discrepancies = []

    if local.status != remote.status:
        discrepancies.append(Discrepancy(
            field="status",
            local_value=local.status,
            remote_value=remote.status,
            resolution=UPDATE_LOCAL,
        ))

    # A jurisdiction change is unusual enough to need a human
    if local.jurisdiction != remote.jurisdiction:
        discrepancies.append(Discrepancy(
            field="jurisdiction",
            local_value=local.jurisdiction,
            remote_value=remote.jurisdiction,
            resolution=INVESTIGATE,
        ))

    if local.effective_date != remote.effective_date:
        discrepancies.append(Discrepancy(
            field="effective_date",
            local_value=_format_date(local.effective_date),
            remote_value=_format_date(remote.effective_date),
            resolution=UPDATE_LOCAL,
        ))

    if local.next_action != remote.next_action:
        discrepancies.append(Discrepancy(
            field="next_action",
            local_value=local.next_action,
            remote_value=remote.next_action,
            resolution=UPDATE_LOCAL,
        ))

    return discrepancies


class Reconciler:
    """Compares one patent's local record with the authority and applies remote truth."""

    def __init__(
        self,
        repository: RepositoryPort,
        remote: RemoteStatusPort,
        cache: CachePort,
        metrics: MetricsPort,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.repository = repository
        self.remote = remote
        self.cache = cache
        self.metrics = metrics
        self.clock = clock or utc_now

    async def reconcile_status(self, patent_id: str) -> ReconcileResult:
        """Report discrepancies and, when inconsistent, update the local record."""
        if not patent_id:
            raise ValidationError("reconcile_status", "patent_id must not be empty")

        logger.debug("reconcile_status started", patent_id=patent_id)

        try:
            local = await self.repository.get_by_patent_id(patent_id)
        except Exception as e:
            logger.error("Failed to get local status for reconciliation", patent_id=patent_id, error=str(e))
            raise InternalError("reconcile_status", f"get local status for {patent_id}", e) from e
        if local is None:
            raise NotFoundError("reconcile_status", f"no local status found for patent {patent_id}")

        try:
            remote = await self.remote.fetch_remote_status(patent_id)
        except Exception as e:
            logger.error("Failed to fetch remote status for reconciliation", patent_id=patent_id, error=str(e))
            raise InternalError("reconcile_status", f"fetch remote status for {patent_id}", e) from e

        discrepancies = compare_records(local, remote)
        consistent = not discrepancies
        auto_applied = False
        if not consistent:
            auto_applied = await self._apply_remote(patent_id, remote, len(discrepancies))

        self.metrics.inc_counter("legal_status_reconciliations_total", {"consistent": str(consistent).lower()})
        logger.info("reconcile_status completed",
                    patent_id=patent_id,
                    consistent=consistent,
                    discrepancies=len(discrepancies),
                    auto_applied=auto_applied)

        return ReconcileResult(
            patent_id=patent_id,
            consistent=consistent,
            local_status=local.status,
            remote_status=remote.status,
            discrepancies=discrepancies,
            reconciled_at=self.clock(),
            auto_applied=auto_applied,
        )

    async def _apply_remote(self, patent_id: str, remote: RemoteStatus, discrepancy_count: int) -> bool:
        try:
            await self.repository.update_status(patent_id, remote.status, remote.effective_date, source=remote.source)
        except Exception as e:
            logger.warning("Auto-reconciliation failed", patent_id=patent_id, error=str(e))
            return False

        try:
            await self.cache.delete(status_cache_key(patent_id))
        except Exception as e:
            logger.warning("Failed to invalidate status cache", patent_id=patent_id, error=str(e))

        logger.info("Auto-reconciliation applied", patent_id=patent_id, discrepancy_count=discrepancy_count)
        return True
