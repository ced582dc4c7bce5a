"""Status-change notification subscriptions."""

import uuid
from datetime import datetime
from typing import Callable, Optional

import structlog

from ..models.legal_status import Subscription, SubscriptionRequest, utc_now
from ..utils.errors import InternalError, LegalStatusError, ValidationError
from .ports import MetricsPort, RepositoryPort

logger = structlog.get_logger(__name__)


class SubscriptionRegistry:
    """Creates and deactivates subscriptions.

    Deactivating an unknown ID surfaces the repository's ``NotFoundError``;
    deactivating an inactive one succeeds.
    """

    def __init__(
        self,
        repository: RepositoryPort,
        metrics: MetricsPort,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.repository = repository
        self.metrics = metrics
        self.clock = clock or utc_now

    def validate(self, request: Optional[SubscriptionRequest]):
        """Validate a subscription request."""
        if request is None:
            raise ValidationError("subscribe", "subscription request must not be empty")
        if not request.patent_ids and not request.portfolio_id:
            raise ValidationError("subscribe", "either patent_ids or portfolio_id must be specified")
        if not request.channels:
            raise ValidationError("subscribe", "at least one notification channel is required")
        if not request.recipient:
            raise ValidationError("subscribe", "recipient must not be empty")

    async def subscribe(self, request: SubscriptionRequest) -> Subscription:
        """Persist and return a new active subscription."""
        self.validate(request)

        subscription = Subscription(
            id=f"sub_{uuid.uuid4().hex}",
            active=True,
            created_at=self.clock(),
            patent_ids=list(request.patent_ids),
            portfolio_id=request.portfolio_id,
            status_filters=list(request.status_filters),
            channels=list(request.channels),
            recipient=request.recipient,
        )

        try:
            await self.repository.save_subscription(subscription)
        except Exception as e:
            logger.error("Failed to save subscription", subscription_id=subscription.id, error=str(e))
            raise InternalError("subscribe", "save subscription", e) from e

        logger.info("Subscription created", subscription_id=subscription.id)
        self.metrics.inc_counter("legal_status_subscriptions_created_total")
        return subscription

    async def unsubscribe(self, subscription_id: str):
        """Deactivate a subscription by ID."""
        if not subscription_id:
            raise ValidationError("unsubscribe", "subscription_id must not be empty")

        try:
            await self.repository.deactivate_subscription(subscription_id)
        except LegalStatusError:
            raise
        except Exception as e:
            logger.error("Failed to deactivate subscription", subscription_id=subscription_id, error=str(e))
            raise InternalError("unsubscribe", f"deactivate subscription {subscription_id}", e) from e

        logger.info("Subscription deactivated", subscription_id=subscription_id)
        self.metrics.inc_counter("legal_status_subscriptions_deactivated_total")
