from unittest.mock import AsyncMock

import pytest

from legal_status.services.ports import (
    EventPublishPort,
    PatentListPort,
    RemoteStatusPort,
    RepositoryPort,
)

from factories import FIXED_NOW, InMemoryCache, RecordingMetrics, make_remote


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture
def repository():
    repo = AsyncMock(spec=RepositoryPort)
    repo.get_by_patent_id.return_value = None
    repo.get_status_history.return_value = []
    repo.list_active_subscriptions.return_value = []
    return repo


@pytest.fixture
def patents():
    port = AsyncMock(spec=PatentListPort)
    port.list_by_portfolio.return_value = []
    return port


@pytest.fixture
def remote():
    port = AsyncMock(spec=RemoteStatusPort)
    port.fetch_remote_status.return_value = make_remote()
    return port


@pytest.fixture
def publisher():
    return AsyncMock(spec=EventPublishPort)


@pytest.fixture
def cache():
    return InMemoryCache()


@pytest.fixture
def metrics():
    return RecordingMetrics()
