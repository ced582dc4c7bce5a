from datetime import timedelta

from legal_status.utils.config import LegalStatusConfig, Settings


class TestLegalStatusConfig:
    """Test engine configuration defaults."""

    def test_defaults(self):
        config = LegalStatusConfig()

        assert config.max_batch_concurrency == 10
        assert config.max_batch_size == 500
        assert config.status_cache_ttl == timedelta(hours=1)
        assert config.summary_cache_ttl == timedelta(minutes=15)
        assert config.notification_dedupe_window == timedelta(hours=24)
        assert config.sync_failure_threshold == 3

    def test_non_positive_values_fall_back_to_defaults(self):
        config = LegalStatusConfig(
            max_batch_concurrency=0,
            max_batch_size=-5,
            status_cache_ttl=timedelta(0),
            sync_failure_threshold=None,
        )

        assert config.max_batch_concurrency == 10
        assert config.max_batch_size == 500
        assert config.status_cache_ttl == timedelta(hours=1)
        assert config.sync_failure_threshold == 3

    def test_positive_overrides_are_kept(self):
        config = LegalStatusConfig(max_batch_concurrency=3, summary_cache_ttl=timedelta(minutes=1))

        assert config.max_batch_concurrency == 3
        assert config.summary_cache_ttl == timedelta(minutes=1)


class TestSettings:
    """Test environment-driven settings."""

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("LEGAL_STATUS_NATS_URL", "nats://nats.internal:4222")
        monkeypatch.setenv("LEGAL_STATUS_MAX_BATCH_SIZE", "50")
        monkeypatch.setenv("LEGAL_STATUS_STATUS_CACHE_TTL_SECONDS", "120")

        settings = Settings()

        assert settings.nats_url == "nats://nats.internal:4222"
        config = settings.engine_config()
        assert config.max_batch_size == 50
        assert config.status_cache_ttl == timedelta(seconds=120)

    def test_invalid_tunables_fall_back(self, monkeypatch):
        monkeypatch.setenv("LEGAL_STATUS_MAX_BATCH_CONCURRENCY", "0")

        assert Settings().engine_config().max_batch_concurrency == 10
