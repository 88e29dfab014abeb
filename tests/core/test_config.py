"""
Tests for pipeline configuration and the clock.
"""

import os
from datetime import datetime, timedelta, timezone

import pytest

from core.clock import MockClock, SystemClock
from core.config import DatabaseConfig, FeedConfig, KafkaConfig, PipelineConfig
from core.exceptions import ConfigurationError, InvalidConfigError


ENV_KEYS = [
    "DATABASE_URL",
    "DATABASE_POOL_SIZE",
    "KAFKA_BOOTSTRAP_SERVERS",
    "KAFKA_TOPIC_MARKET_DATA",
    "KAFKA_CONSUMER_GROUP_ID",
    "KAFKA_CONSUMER_CONCURRENCY",
    "KAFKA_MAX_POLL_RECORDS",
    "MARKET_DATA_SYMBOLS",
    "FEED_EXCHANGE_NAME",
    "EVENT_BUS_ENABLED",
    "DURABLE_LOG_ENABLED",
    "SHUTDOWN_TIMEOUT_SECONDS",
    "LOG_LEVEL",
]


@pytest.fixture
def clean_env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


class TestPipelineConfig:

    def test_defaults(self, clean_env, tmp_path):
        config = PipelineConfig.from_env(str(tmp_path / "missing.env"))

        assert config.kafka.topic == "market-data"
        assert config.kafka.group_id == "market-data-consumer"
        assert config.kafka.concurrency == 4
        assert config.kafka.max_poll_records == 500
        assert config.kafka.fetch_max_wait_ms == 100
        assert config.feed.symbols == ("BTC-USD",)
        assert config.feed.exchange_name == "coinbase"
        assert config.event_bus_enabled is True
        assert config.durable_log_enabled is False
        assert config.validate() == []

    def test_environment_overrides(self, clean_env, tmp_path):
        clean_env.setenv("MARKET_DATA_SYMBOLS", "BTC-USD, ETH-USD ,")
        clean_env.setenv("KAFKA_CONSUMER_CONCURRENCY", "8")
        clean_env.setenv("DURABLE_LOG_ENABLED", "true")
        clean_env.setenv("LOG_LEVEL", "debug")

        config = PipelineConfig.from_env(str(tmp_path / "missing.env"))

        assert config.feed.symbols == ("BTC-USD", "ETH-USD")
        assert config.kafka.concurrency == 8
        assert config.durable_log_enabled is True
        assert config.log_level == "DEBUG"

    def test_env_file_is_loaded(self, clean_env, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("KAFKA_TOPIC_MARKET_DATA=ticks\n")

        try:
            config = PipelineConfig.from_env(str(env_file))
        finally:
            # load_dotenv writes straight into os.environ
            os.environ.pop("KAFKA_TOPIC_MARKET_DATA", None)

        assert config.kafka.topic == "ticks"

    def test_bad_integer_raises(self, clean_env, tmp_path):
        clean_env.setenv("KAFKA_MAX_POLL_RECORDS", "lots")

        with pytest.raises(InvalidConfigError) as exc_info:
            PipelineConfig.from_env(str(tmp_path / "missing.env"))

        assert exc_info.value.key == "KAFKA_MAX_POLL_RECORDS"

    def test_no_path_enabled_is_invalid(self):
        config = PipelineConfig(event_bus_enabled=False, durable_log_enabled=False)

        with pytest.raises(ConfigurationError) as exc_info:
            config.require_valid()

        assert any("EVENT_BUS_ENABLED" in e for e in exc_info.value.errors)

    def test_kafka_validated_only_when_enabled(self):
        kafka = KafkaConfig(concurrency=0)

        assert PipelineConfig(kafka=kafka).validate() == []
        assert PipelineConfig(kafka=kafka, durable_log_enabled=True).validate() != []

    def test_feed_url_scheme(self):
        assert FeedConfig(ws_url="https://example.com").validate() != []


class TestKafkaConfig:

    def test_consumer_config_disables_auto_commit(self):
        config = KafkaConfig().consumer_config(worker_index=2)

        assert config["enable.auto.commit"] is False
        assert config["auto.offset.reset"] == "earliest"
        assert config["group.id"] == "market-data-consumer"
        assert config["fetch.wait.max.ms"] == 100
        assert config["client.id"].endswith("-2")


class TestDatabaseConfig:

    def test_redacted_url_hides_credentials(self):
        config = DatabaseConfig(url="postgresql://user:secret@db:5432/market_data")
        assert "secret" not in config.redacted_url()


class TestClock:

    def test_mock_clock_advances(self):
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        clock = MockClock(start)

        clock.advance(seconds=1.5)

        assert clock.now() == start + timedelta(seconds=1.5)
        assert clock.millis() == int(start.timestamp() * 1000) + 1500

    def test_naive_time_is_treated_as_utc(self):
        clock = MockClock(datetime(2024, 1, 1))
        assert clock.now().tzinfo == timezone.utc

    def test_system_clock_is_utc(self):
        clock = SystemClock()
        assert clock.now().tzinfo == timezone.utc
        assert clock.millis() > 0
