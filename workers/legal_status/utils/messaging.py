"""NATS event publisher."""

import json
from typing import Any, Dict

import structlog

from ..services.ports import EventPublishPort

logger = structlog.get_logger(__name__)


class NatsEventPublisher(EventPublishPort):
    """Publishes JSON payloads on a NATS connection; the key travels as a header."""

    def __init__(self, nats_client):
        self.nats_client = nats_client

    async def publish(self, topic: str, key: str, payload: Dict[str, Any]) -> None:
        try:
            await self.nats_client.publish(
                topic,
                json.dumps(payload, default=str).encode(),
                headers={"key": key},
            )
            logger.debug("Published event", topic=topic, key=key)
        except Exception as e:
            logger.error("Failed to publish event", topic=topic, key=key, error=str(e))
            raise
