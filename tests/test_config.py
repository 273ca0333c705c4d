"""Tests for configuration loading."""

import pytest

from pricecrawler.config import load_config
from pricecrawler.errors import ConfigError
from pricecrawler.reliability import ReliabilityConfig

ENV_OVERRIDES = ("DATABASE_PATH", "LOG_LEVEL", "LOG_FORMAT", "CRAWL_CONCURRENCY", "CRAWL_MAX_PAGES")


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_OVERRIDES:
        monkeypatch.delenv(name, raising=False)


class TestLoadConfig:
    """Test load_config."""

    def test_defaults(self):
        config = load_config()

        assert config["storage"]["database"] == "data/prices.db"
        assert config["crawler"]["concurrency"] == 1
        assert config["crawler"]["max_pages"] == 10
        assert config["reliability"]["rate_limiter"]["requests_per_minute"] == 17
        assert config["logging"]["level"] == "INFO"

    def test_user_file_merges_over_defaults(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text(
            "crawler:\n"
            "  concurrency: 4\n"
            "reliability:\n"
            "  retry:\n"
            "    max_retries: 5\n"
        )

        config = load_config(str(path))

        assert config["crawler"]["concurrency"] == 4
        assert config["crawler"]["max_pages"] == 10
        assert config["reliability"]["retry"]["max_retries"] == 5
        assert config["reliability"]["retry"]["initial_delay_ms"] == 1000

    def test_json_file(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text('{"storage": {"database": "/tmp/other.db"}}')

        assert load_config(str(path))["storage"]["database"] == "/tmp/other.db"

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("DATABASE_PATH", "/data/env.db")
        monkeypatch.setenv("CRAWL_CONCURRENCY", "3")
        monkeypatch.setenv("LOG_FORMAT", "json")

        config = load_config()

        assert config["storage"]["database"] == "/data/env.db"
        assert config["crawler"]["concurrency"] == 3
        assert config["logging"]["format"] == "json"

    def test_bad_numeric_env(self, monkeypatch):
        monkeypatch.setenv("CRAWL_MAX_PAGES", "many")

        with pytest.raises(ConfigError):
            load_config()

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            load_config(str(tmp_path / "missing.yaml"))

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("crawler: [unclosed\n")

        with pytest.raises(ConfigError):
            load_config(str(path))

    def test_reliability_section_validates(self):
        reliability = ReliabilityConfig.from_dict(load_config()["reliability"])

        assert reliability.rate_limiter.min_delay_ms == 3000
        assert reliability.retry.backoff_multiplier == 2
        assert reliability.circuit_breaker.failure_threshold == 5
        assert reliability.timeouts.operation_timeout_ms == 120000
