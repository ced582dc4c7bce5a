import asyncio
import json
import logging
from typing import Any, Dict, Optional

import structlog
from pydantic import ValidationError as ModelValidationError

from ..base import BaseWorker
from ...models.legal_status import BatchSyncRequest
from ...services.keys import STATUS_CHANGED_TOPIC
from ...services.service import LegalStatusService
from ...utils.cache import RedisCache
from ...utils.config import Settings, get_settings
from ...utils.database import DatabaseClient, LegalStatusRepository, PatentRepository
from ...utils.error_tracking import capture_exception, setup_sentry
from ...utils.errors import LegalStatusError, NotFoundError, ValidationError
from ...utils.messaging import NatsEventPublisher
from ...utils.observability import PrometheusMetrics, setup_tracing, start_metrics_server, trace_operation
from ...utils.remote_status import RemoteStatusClient

logger = structlog.get_logger(__name__)

SYNC_REQUEST = "legal_status.sync.request"
SYNC_COMPLETE = "legal_status.sync.complete"
SYNC_ERROR = "legal_status.sync.error"
RECONCILE_REQUEST = "legal_status.reconcile.request"
RECONCILE_COMPLETE = "legal_status.reconcile.complete"
RECONCILE_ERROR = "legal_status.reconcile.error"


def error_payload(error: Exception) -> Dict[str, Any]:
    """Describe a failed request for an error subject."""
    if isinstance(error, LegalStatusError):
        return {"error": str(error), **error.to_dict()}
    return {"error": str(error), "kind": "internal"}


class LegalStatusSyncWorker(BaseWorker):
    """Worker for legal status synchronisation, reconciliation and notifications."""

    def __init__(self, settings: Optional[Settings] = None, service: Optional[LegalStatusService] = None):
        self.settings = settings or get_settings()
        super().__init__(
            self.settings.nats_url,
            queue_group=self.settings.nats_queue_group,
            client_name=self.settings.service_name,
        )
        self.service = service
        self.db: Optional[DatabaseClient] = None
        self.cache: Optional[RedisCache] = None
        self.remote: Optional[RemoteStatusClient] = None
        self.metrics = PrometheusMetrics()

        logger.info("LegalStatusSyncWorker initialized")

    async def start(self):
        """Start the worker and subscribe to its subjects."""
        await super().start()
        if self.service is None:
            self.service = await self._build_service()
            if self.settings.metrics_port:
                start_metrics_server(self.metrics, self.settings.metrics_port)

        await self.subscribe(SYNC_REQUEST, self.handle_sync_request)
        await self.subscribe(RECONCILE_REQUEST, self.handle_reconcile_request)
        await self.subscribe(STATUS_CHANGED_TOPIC, self.handle_status_changed)

        logger.info("LegalStatusSyncWorker started and listening for requests")

    async def stop(self):
        """Stop the worker and release its adapters."""
        await super().stop()
        if self.remote:
            await self.remote.disconnect()
        if self.cache:
            await self.cache.disconnect()
        if self.db:
            await self.db.disconnect()

    async def _build_service(self) -> LegalStatusService:
        self.db = DatabaseClient(self.settings.database_url)
        await self.db.connect()
        self.cache = RedisCache(self.settings.redis_url)
        await self.cache.connect()
        self.remote = RemoteStatusClient(
            self.settings.remote_status_base_url, timeout=self.settings.remote_status_timeout
        )
        await self.remote.connect()

        return LegalStatusService(
            repository=LegalStatusRepository(self.db),
            patents=PatentRepository(self.db),
            remote=self.remote,
            publisher=NatsEventPublisher(self.nats_client),
            cache=self.cache,
            metrics=self.metrics,
            config=self.settings.engine_config(),
        )

    async def process_message(self, subject: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """Run the operation requested on ``subject``."""
        async with trace_operation("legal_status.worker.process", {"subject": subject}):
            if subject == SYNC_REQUEST:
                try:
                    request = BatchSyncRequest.model_validate(data)
                except ModelValidationError as e:
                    raise ValidationError("batch_sync", f"invalid sync request: {e}") from e
                result = await self.service.batch_sync(request)
                return result.model_dump(mode="json")

            if subject == RECONCILE_REQUEST:
                result = await self.service.reconcile_status(data.get("patent_id", ""))
                return result.model_dump(mode="json")

            if subject == STATUS_CHANGED_TOPIC:
                sent = await self.service.notify_status_change(data)
                return {"patent_id": data.get("patent_id"), "sent": sent}

            raise ValidationError("process_message", f"unsupported subject {subject}")

    async def handle_sync_request(self, msg):
        """Handle batch sync requests."""
        data: Dict[str, Any] = {}
        try:
            data = self._decode(msg)
            request_id = data.get("request_id")

            logger.info("Processing sync request",
                        request_id=request_id,
                        patent_count=len(data.get("patent_ids") or []))

            result = await self.process_message(SYNC_REQUEST, data)

            await self.publish(SYNC_COMPLETE, {
                "request_id": request_id,
                "status": "success",
                **result,
            })

        except Exception as e:
            self._report(e, SYNC_REQUEST)
            await self.publish(SYNC_ERROR, {
                "request_id": data.get("request_id"),
                **error_payload(e),
            })

    async def handle_reconcile_request(self, msg):
        """Handle reconciliation requests."""
        data: Dict[str, Any] = {}
        try:
            data = self._decode(msg)
            logger.info("Processing reconcile request", patent_id=data.get("patent_id"))

            result = await self.process_message(RECONCILE_REQUEST, data)

            await self.publish(RECONCILE_COMPLETE, {
                "request_id": data.get("request_id"),
                "status": "success",
                **result,
            })

        except Exception as e:
            self._report(e, RECONCILE_REQUEST)
            await self.publish(RECONCILE_ERROR, {
                "request_id": data.get("request_id"),
                "patent_id": data.get("patent_id"),
                **error_payload(e),
            })

    async def handle_status_changed(self, msg):
        """Dispatch notifications for a status change event."""
        try:
            data = self._decode(msg)
            await self.process_message(STATUS_CHANGED_TOPIC, data)
        except Exception as e:
            self._report(e, STATUS_CHANGED_TOPIC)

    def _decode(self, msg) -> Dict[str, Any]:
        try:
            data = json.loads(msg.data.decode())
        except ValueError as e:
            raise ValidationError("decode", f"malformed message: {e}") from e
        if not isinstance(data, dict):
            raise ValidationError("decode", "message must be a JSON object")
        return data

    def _report(self, error: Exception, subject: str):
        # Caller mistakes are not service faults
        if isinstance(error, (ValidationError, NotFoundError)):
            logger.warning("Request rejected", subject=subject, kind=error.kind, error=str(error))
            return
        logger.error("Error processing request", subject=subject, error=str(error))
        capture_exception(error, {"subject": subject})


async def main():
    """Main entry point for the legal status sync worker."""
    settings = get_settings()
    setup_sentry(settings.sentry_dsn, environment=settings.environment, service_name=settings.service_name)
    setup_tracing(settings.service_name)

    worker = LegalStatusSyncWorker(settings)
    await worker.run()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(main())
