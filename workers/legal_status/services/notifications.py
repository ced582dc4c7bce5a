"""Delivery of status-change notifications to matching subscriptions."""

from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional, Set

import structlog

from ..models.legal_status import Subscription, UnifiedStatusCode, utc_now
from ..utils.errors import InternalError, ValidationError
from ..utils.normalizer import StatusCodeMapper, default_mapper
from .keys import NOTIFICATION_TOPIC, notification_dedupe_key
from .ports import CachePort, EventPublishPort, MetricsPort, PatentListPort, RepositoryPort

logger = structlog.get_logger(__name__)


class NotificationDispatcher:
    """Turns a ``legal_status.changed`` event into per-subscription notifications.

    The same patent reaching the same status is announced at most once per
    dedupe window.
    """

    def __init__(
        self,
        repository: RepositoryPort,
        patents: PatentListPort,
        publisher: EventPublishPort,
        cache: CachePort,
        metrics: MetricsPort,
        dedupe_window: timedelta = timedelta(hours=24),
        mapper: Optional[StatusCodeMapper] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.repository = repository
        self.patents = patents
        self.publisher = publisher
        self.cache = cache
        self.metrics = metrics
        self.dedupe_window = dedupe_window
        self.mapper = mapper or default_mapper
        self.clock = clock or utc_now

    async def notify_status_change(self, event: Dict[str, Any]) -> int:
        """Notify matching subscribers; returns the number of notifications sent."""
        patent_id = event.get("patent_id")
        current_status = event.get("current_status")
        if not patent_id or not current_status:
            raise ValidationError("notify_status_change", "event must carry patent_id and current_status")

        dedupe_key = notification_dedupe_key(patent_id, current_status)
        if await self._already_notified(dedupe_key, patent_id):
            logger.info("Notification suppressed as duplicate", patent_id=patent_id, to_status=current_status)
            return 0

        try:
            subscriptions = await self.repository.list_active_subscriptions()
        except Exception as e:
            logger.error("Failed to list subscriptions", patent_id=patent_id, error=str(e))
            raise InternalError("notify_status_change", "list active subscriptions", e) from e

        unified = self.mapper.map_code(event.get("jurisdiction"), current_status)
        portfolio_members: Dict[str, Set[str]] = {}

        sent = 0
        for subscription in subscriptions:
            if not self._passes_filters(subscription, current_status, unified):
                continue
            if not await self._covers(subscription, patent_id, portfolio_members):
                continue
            if await self._send(subscription, event, unified):
                sent += 1

        if sent:
            await self._mark_notified(dedupe_key, patent_id)

        logger.info("Status change notifications dispatched", patent_id=patent_id, sent=sent)
        return sent

    def _passes_filters(self, subscription: Subscription, raw_status: str, unified: UnifiedStatusCode) -> bool:
        if not subscription.status_filters:
            return True
        return raw_status in subscription.status_filters or unified.value in subscription.status_filters

    async def _covers(self, subscription: Subscription, patent_id: str, portfolio_members: Dict[str, Set[str]]) -> bool:
        if patent_id in subscription.patent_ids:
            return True
        if not subscription.portfolio_id:
            return False

        members = portfolio_members.get(subscription.portfolio_id)
        if members is None:
            members = await self._load_portfolio(subscription.portfolio_id)
            portfolio_members[subscription.portfolio_id] = members
        return patent_id in members

    async def _load_portfolio(self, portfolio_id: str) -> Set[str]:
        try:
            patents = await self.patents.list_by_portfolio(portfolio_id)
        except Exception as e:
            logger.warning("Failed to list portfolio for notification", portfolio_id=portfolio_id, error=str(e))
            return set()
        return {patent.id for patent in patents}

    async def _send(self, subscription: Subscription, event: Dict[str, Any], unified: UnifiedStatusCode) -> bool:
        payload = {
            "subscription_id": subscription.id,
            "recipient": subscription.recipient,
            "channels": [channel.value for channel in subscription.channels],
            "patent_id": event["patent_id"],
            "previous_status": event.get("previous_status", ""),
            "current_status": event["current_status"],
            "unified_status": unified.value,
            "changed_at": event.get("changed_at"),
        }
        try:
            await self.publisher.publish(NOTIFICATION_TOPIC, subscription.id, payload)
        except Exception as e:
            logger.warning("Failed to publish notification",
                           subscription_id=subscription.id,
                           patent_id=event["patent_id"],
                           error=str(e))
            return False
        self.metrics.inc_counter("legal_status_notifications_total")
        return True

    async def _already_notified(self, dedupe_key: str, patent_id: str) -> bool:
        try:
            return await self.cache.get(dedupe_key) is not None
        except Exception as e:
            logger.warning("Failed to read notification dedupe entry", patent_id=patent_id, error=str(e))
            return False

    async def _mark_notified(self, dedupe_key: str, patent_id: str):
        try:
            await self.cache.set(dedupe_key, {"notified_at": self.clock().isoformat()}, self.dedupe_window)
        except Exception as e:
            logger.warning("Failed to set notification dedupe entry", patent_id=patent_id, error=str(e))
