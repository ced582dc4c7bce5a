"""Base worker class for legal status workers."""

import asyncio
import json
from typing import Any, Callable, Dict, Optional
from abc import ABC, abstractmethod

import nats
import structlog

logger = structlog.get_logger(__name__)


class BaseWorker(ABC):
    """NATS-connected worker exchanging JSON payloads.

    Subscriptions join ``queue_group`` so that replicas of the same worker
    share requests instead of each handling every message.
    """

    def __init__(
        self,
        nats_url: str = "nats://localhost:4222",
        queue_group: Optional[str] = None,
        client_name: Optional[str] = None,
    ):
        self.nats_url = nats_url
        self.queue_group = queue_group or ""
        self.client_name = client_name or type(self).__name__
        self.nats_client: Optional[nats.NATS] = None
        self.running = False
        self.subscriptions = []

    async def _on_error(self, e: Exception):
        logger.error("NATS client error", error=str(e))

    async def _on_disconnected(self):
        logger.warning("Disconnected from NATS, reconnecting", nats_url=self.nats_url)

    async def _on_reconnected(self):
        logger.info("Reconnected to NATS", nats_url=self.nats_url)

    async def connect(self):
        """Connect to NATS."""
        try:
            self.nats_client = await nats.connect(
                servers=[self.nats_url],
                name=self.client_name,
                reconnect_time_wait=3,
                max_reconnect_attempts=5,
                error_cb=self._on_error,
                disconnected_cb=self._on_disconnected,
                reconnected_cb=self._on_reconnected,
            )
            logger.info("Connected to NATS", nats_url=self.nats_url, client_name=self.client_name)

        except Exception as e:
            logger.error("Failed to connect to NATS", nats_url=self.nats_url, error=str(e))
            raise

    async def disconnect(self):
        """Drain in-flight messages and close the connection."""
        try:
            if self.nats_client and not self.nats_client.is_closed:
                await self.nats_client.drain()
                logger.info("Disconnected from NATS")
        except Exception as e:
            logger.error("Error disconnecting from NATS", error=str(e))

    async def subscribe(self, subject: str, handler: Callable):
        """Subscribe to a subject within the worker's queue group."""
        try:
            subscription = await self.nats_client.subscribe(subject, queue=self.queue_group, cb=handler)
            self.subscriptions.append(subscription)
            logger.info("Subscribed to subject", subject=subject, queue_group=self.queue_group)
        except Exception as e:
            logger.error("Failed to subscribe", subject=subject, error=str(e))
            raise

    async def publish(self, subject: str, data: Dict[str, Any]):
        """Publish a JSON message to a NATS subject."""
        try:
            await self.nats_client.publish(subject, json.dumps(data, default=str).encode())
            logger.debug("Published message", subject=subject)
        except Exception as e:
            logger.error("Failed to publish message", subject=subject, error=str(e))
            raise

    async def start(self):
        """Start the worker."""
        try:
            await self.connect()
            self.running = True
            logger.info("Worker started", client_name=self.client_name)
        except Exception as e:
            logger.error("Failed to start worker", error=str(e))
            raise

    async def stop(self):
        """Stop the worker; draining the connection also drains its subscriptions."""
        self.running = False
        self.subscriptions = []
        await self.disconnect()
        logger.info("Worker stopped", client_name=self.client_name)

    @abstractmethod
    async def process_message(self, subject: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """Handle a decoded request. Must be implemented by subclasses."""

    async def run(self):
        """Run the worker until stopped or interrupted."""
        try:
            await self.start()

            while self.running:
                await asyncio.sleep(1)

        except (KeyboardInterrupt, asyncio.CancelledError):
            logger.info("Received interrupt signal")
        finally:
            await self.stop()
