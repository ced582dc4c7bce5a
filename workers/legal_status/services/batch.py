"""Bounded-concurrency batch synchronisation."""

import asyncio
import contextlib
import time
from typing import List, Optional

import structlog

from ..models.legal_status import BatchSyncRequest, BatchSyncResult, SyncError
from ..utils.errors import ValidationError
from .ports import MetricsPort
from .sync import SyncEngine

logger = structlog.get_logger(__name__)

CANCELLED_MESSAGE = "batch sync cancelled"


class _BatchCancelled(Exception):
    """The batch's cancel event fired while an item was in flight."""


class _BatchCollector:
    """Accumulates per-item outcomes of one batch call."""

    def __init__(self):
        self.succeeded = 0
        self.failed = 0
        self.errors: List[SyncError] = []

    def add_success(self):
        self.succeeded += 1

    def add_failure(self, patent_id: str, message: str):
        self.failed += 1
        self.errors.append(SyncError(patent_id=patent_id, error=message))


class BatchCoordinator:
    """Fans a batch of patent IDs out to the sync engine.

    At most ``max_concurrency`` syncs are in flight at once. Per-item
    failures, including cancellation through ``cancel_event``, are recorded
    in the result; once the request validates, ``batch_sync`` does not raise
    for them.
    """

    def __init__(
        self,
        sync_engine: SyncEngine,
        metrics: MetricsPort,
        max_concurrency: int = 10,
        max_batch_size: int = 500,
    ):
        self.sync_engine = sync_engine
        self.metrics = metrics
        self.max_concurrency = max_concurrency
        self.max_batch_size = max_batch_size

    def validate(self, request: Optional[BatchSyncRequest]):
        """Validate a batch request."""
        if request is None:
            raise ValidationError("batch_sync", "batch sync request must not be empty")
        if not request.patent_ids:
            raise ValidationError("batch_sync", "patent_ids must not be empty")
        if len(request.patent_ids) > self.max_batch_size:
            raise ValidationError(
                "batch_sync", f"patent_ids must not exceed {self.max_batch_size} entries per batch"
            )
        seen = set()
        for patent_id in request.patent_ids:
            if not patent_id:
                raise ValidationError("batch_sync", "patent_ids must not contain empty strings")
            if patent_id in seen:
                raise ValidationError("batch_sync", f"duplicate patent_id: {patent_id}")
            seen.add(patent_id)

    async def batch_sync(
        self,
        request: BatchSyncRequest,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> BatchSyncResult:
        """Synchronise every patent in the request."""
        self.validate(request)

        start = time.perf_counter()
        logger.info("batch_sync started",
                    count=len(request.patent_ids),
                    concurrency=self.max_concurrency,
                    force=request.force,
                    jurisdictions=request.jurisdictions)

        semaphore = asyncio.Semaphore(self.max_concurrency)
        collector = _BatchCollector()

        await asyncio.gather(*(
            self._sync_one(patent_id, request.force, semaphore, collector, cancel_event)
            for patent_id in request.patent_ids
        ))

        elapsed = time.perf_counter() - start
        result = BatchSyncResult(
            succeeded=collector.succeeded,
            failed=collector.failed,
            errors=collector.errors,
            duration_ms=elapsed * 1000,
        )

        self.metrics.observe_histogram("legal_status_batch_sync_duration_seconds", elapsed)
        logger.info("batch_sync completed",
                    succeeded=result.succeeded,
                    failed=result.failed,
                    duration=elapsed)

        return result

    async def _sync_one(
        self,
        patent_id: str,
        force: bool,
        semaphore: asyncio.Semaphore,
        collector: _BatchCollector,
        cancel_event: Optional[asyncio.Event],
    ):
        if not await self._acquire(semaphore, cancel_event):
            collector.add_failure(patent_id, CANCELLED_MESSAGE)
            return

        try:
            await self._run_cancellable(self.sync_engine.sync_status(patent_id, force=force), cancel_event)
            collector.add_success()
        except _BatchCancelled:
            collector.add_failure(patent_id, CANCELLED_MESSAGE)
        except Exception as e:
            logger.warning("batch_sync item failed", patent_id=patent_id, error=str(e))
            collector.add_failure(patent_id, str(e))
        finally:
            semaphore.release()

    async def _acquire(self, semaphore: asyncio.Semaphore, cancel_event: Optional[asyncio.Event]) -> bool:
        """Wait for a pool slot; False when cancelled first."""
        if cancel_event is None:
            await semaphore.acquire()
            return True
        if cancel_event.is_set():
            return False

        acquire = asyncio.ensure_future(semaphore.acquire())
        cancelled = asyncio.ensure_future(cancel_event.wait())
        try:
            await asyncio.wait({acquire, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            if not acquire.cancel() and not acquire.cancelled():
                semaphore.release()
            raise
        finally:
            cancelled.cancel()

        if acquire.done() and not acquire.cancelled():
            return True
        if not acquire.cancel():
            # Acquired between the wait returning and the cancel
            semaphore.release()
        return False

    async def _run_cancellable(self, operation, cancel_event: Optional[asyncio.Event]):
        if cancel_event is None:
            return await operation

        task = asyncio.ensure_future(operation)
        cancelled = asyncio.ensure_future(cancel_event.wait())
        try:
            await asyncio.wait({task, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            cancelled.cancel()

        if task.done():
            return task.result()

        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        raise _BatchCancelled()