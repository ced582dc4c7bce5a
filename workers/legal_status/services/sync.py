"""Single-patent legal status synchronisation against the patent office."""

import time
from typing import Callable, Optional
from datetime import datetime

import structlog

from ..models.legal_status import LocalStatusRecord, RemoteStatus, SyncResult, utc_now
from ..utils.errors import InternalError, ValidationError
from .keys import STATUS_CHANGED_TOPIC, status_cache_key
from .ports import CachePort, EventPublishPort, MetricsPort, RemoteStatusPort, RepositoryPort

logger = structlog.get_logger(__name__)


class SyncEngine:
    """Reads the local record, fetches the authority's record, and persists transitions.

    Local fetch, remote fetch and persistence are on the critical path: a
    failure there aborts the call with an ``InternalError``. Event
    publication, cache invalidation and sync bookkeeping are best-effort and
    only logged when they fail.
    """

    def __init__(
        self,
        repository: RepositoryPort,
        remote: RemoteStatusPort,
        publisher: EventPublishPort,
        cache: CachePort,
        metrics: MetricsPort,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.repository = repository
        self.remote = remote
        self.publisher = publisher
        self.cache = cache
        self.metrics = metrics
        self.clock = clock or utc_now

    async def sync_status(self, patent_id: str, force: bool = False) -> SyncResult:
        """Synchronise one patent and report whether its status changed."""
        if not patent_id:
            raise ValidationError("sync_status", "patent_id must not be empty")

        start = time.perf_counter()
        logger.debug("sync_status started", patent_id=patent_id, force=force)

        local = await self._fetch_local(patent_id)
        remote = await self._fetch_remote(patent_id, force)

        previous_status = local.status if local is not None else ""
        current_status = remote.status
        changed = previous_status != current_status

        if changed:
            await self._persist(patent_id, local, remote)
            await self._publish_change(patent_id, previous_status, remote)
            await self._invalidate(patent_id)
            self.metrics.inc_counter("legal_status_changes_total", {"to_status": current_status})

        synced_at = self.clock()
        await self._best_effort(
            "record remote status",
            patent_id,
            self.repository.record_remote_status(patent_id, current_status, synced_at),
        )
        await self._best_effort(
            "record sync success",
            patent_id,
            self.repository.record_sync_success(patent_id, synced_at),
        )

        elapsed = time.perf_counter() - start
        labels = {"changed": str(changed).lower()}
        self.metrics.observe_histogram("legal_status_sync_duration_seconds", elapsed, labels)
        self.metrics.inc_counter("legal_status_syncs_total", labels)

        logger.info("sync_status completed",
                    patent_id=patent_id,
                    changed=changed,
                    previous_status=previous_status,
                    current_status=current_status,
                    duration=elapsed)

        return SyncResult(
            patent_id=patent_id,
            previous_status=previous_status,
            current_status=current_status,
            changed=changed,
            synced_at=synced_at,
            source=remote.source,
        )

    async def _fetch_local(self, patent_id: str) -> Optional[LocalStatusRecord]:
        try:
            return await self.repository.get_by_patent_id(patent_id)
        except Exception as e:
            logger.error("Failed to get local status", patent_id=patent_id, error=str(e))
            self.metrics.inc_counter("legal_status_sync_errors_total", {"stage": "local_fetch"})
            raise InternalError("sync_status", f"fetch local status for {patent_id}", e) from e

    async def _fetch_remote(self, patent_id: str, force: bool) -> RemoteStatus:
        try:
            return await self.remote.fetch_remote_status(patent_id, force=force)
        except Exception as e:
            logger.error("Failed to fetch remote status", patent_id=patent_id, error=str(e))
            self.metrics.inc_counter("legal_status_sync_errors_total", {"stage": "remote_fetch"})
            await self._best_effort("record sync failure", patent_id, self.repository.record_sync_failure(patent_id))
            raise InternalError("sync_status", f"fetch remote status for {patent_id}", e) from e

    async def _persist(self, patent_id: str, local: Optional[LocalStatusRecord], remote: RemoteStatus):
        try:
            await self.repository.update_status(patent_id, remote.status, remote.effective_date, source=remote.source)
        except Exception as e:
            logger.error("Failed to persist status change", patent_id=patent_id, error=str(e))
            self.metrics.inc_counter("legal_status_sync_errors_total", {"stage": "persist"})
            if local is not None:
                # The authority's answer is kept even though the transition was not
                await self._best_effort(
                    "record remote status",
                    patent_id,
                    self.repository.record_remote_status(patent_id, remote.status, self.clock()),
                )
                await self._best_effort("record sync failure", patent_id, self.repository.record_sync_failure(patent_id))
            raise InternalError("sync_status", f"persist status change for {patent_id}", e) from e

    async def _publish_change(self, patent_id: str, previous_status: str, remote: RemoteStatus):
        event = {
            "patent_id": patent_id,
            "previous_status": previous_status,
            "current_status": remote.status,
            "jurisdiction": remote.jurisdiction,
            "changed_at": self.clock().isoformat(),
            "source": remote.source,
        }
        try:
            await self.publisher.publish(STATUS_CHANGED_TOPIC, patent_id, event)
        except Exception as e:
            logger.warning("Failed to publish status change event", patent_id=patent_id, error=str(e))

    async def _invalidate(self, patent_id: str):
        try:
            await self.cache.delete(status_cache_key(patent_id))
        except Exception as e:
            logger.warning("Failed to invalidate status cache", patent_id=patent_id, error=str(e))

    async def _best_effort(self, action: str, patent_id: str, operation):
        try:
            await operation
        except Exception as e:
            logger.warning(f"Failed to {action}", patent_id=patent_id, error=str(e))
