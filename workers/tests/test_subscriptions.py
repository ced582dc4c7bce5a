import pytest

from legal_status.models.legal_status import NotificationChannel, SubscriptionRequest
from legal_status.services.subscriptions import SubscriptionRegistry
from legal_status.utils.errors import InternalError, NotFoundError, ValidationError

from factories import FIXED_NOW


class TestSubscriptionRegistry:
    """Test subscription lifecycle."""

    @pytest.fixture
    def registry(self, repository, metrics, clock):
        return SubscriptionRegistry(repository, metrics, clock=clock)

    @pytest.fixture
    def request_by_patent(self):
        return SubscriptionRequest(
            patent_ids=["CN112345678A"],
            status_filters=["GRANTED"],
            channels=[NotificationChannel.EMAIL, NotificationChannel.DINGTALK],
            recipient="ip-team@example.com",
        )

    @pytest.mark.asyncio
    async def test_subscribe(self, registry, repository, metrics, request_by_patent):
        subscription = await registry.subscribe(request_by_patent)

        assert subscription.id.startswith("sub_")
        assert subscription.active is True
        assert subscription.created_at == FIXED_NOW
        assert subscription.patent_ids == ["CN112345678A"]
        assert subscription.channels == [NotificationChannel.EMAIL, NotificationChannel.DINGTALK]
        repository.save_subscription.assert_awaited_once_with(subscription)
        assert metrics.count("legal_status_subscriptions_created_total") == 1

    @pytest.mark.asyncio
    async def test_subscription_ids_are_unique(self, registry, request_by_patent):
        first = await registry.subscribe(request_by_patent)
        second = await registry.subscribe(request_by_patent)

        assert first.id != second.id

    @pytest.mark.asyncio
    async def test_portfolio_subscription(self, registry):
        subscription = await registry.subscribe(SubscriptionRequest(
            portfolio_id="portfolio-1",
            channels=[NotificationChannel.WEBHOOK],
            recipient="https://hooks.example.com/ip",
        ))

        assert subscription.portfolio_id == "portfolio-1"
        assert subscription.patent_ids == []

    @pytest.mark.parametrize("overrides", [
        {"patent_ids": [], "portfolio_id": ""},
        {"channels": []},
        {"recipient": ""},
    ])
    @pytest.mark.asyncio
    async def test_invalid_requests(self, registry, repository, overrides):
        values = {
            "patent_ids": ["CN112345678A"],
            "channels": [NotificationChannel.SMS],
            "recipient": "+86 138 0000 0000",
        }
        values.update(overrides)

        with pytest.raises(ValidationError):
            await registry.subscribe(SubscriptionRequest(**values))

        repository.save_subscription.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_request(self, registry):
        with pytest.raises(ValidationError):
            await registry.subscribe(None)

    @pytest.mark.asyncio
    async def test_save_failure(self, registry, repository, request_by_patent):
        repository.save_subscription.side_effect = RuntimeError("unique violation")

        with pytest.raises(InternalError):
            await registry.subscribe(request_by_patent)

    @pytest.mark.asyncio
    async def test_unsubscribe(self, registry, repository, metrics):
        await registry.unsubscribe("sub_abc")

        repository.deactivate_subscription.assert_awaited_once_with("sub_abc")
        assert metrics.count("legal_status_subscriptions_deactivated_total") == 1

    @pytest.mark.asyncio
    async def test_unsubscribe_unknown_id(self, registry, repository, metrics):
        repository.deactivate_subscription.side_effect = NotFoundError("unsubscribe", "subscription sub_x not found")

        with pytest.raises(NotFoundError):
            await registry.unsubscribe("sub_x")

        assert metrics.count("legal_status_subscriptions_deactivated_total") == 0

    @pytest.mark.asyncio
    async def test_unsubscribe_storage_failure(self, registry, repository):
        repository.deactivate_subscription.side_effect = RuntimeError("db down")

        with pytest.raises(InternalError):
            await registry.unsubscribe("sub_abc")

    @pytest.mark.asyncio
    async def test_unsubscribe_empty_id(self, registry, repository):
        with pytest.raises(ValidationError):
            await registry.unsubscribe("")

        repository.deactivate_subscription.assert_not_awaited()
