"""Unit tests for deploy configuration."""

from __future__ import annotations

import pytest

from zarf_core.config import (
    DEFAULT_CLUSTER_TIMEOUT,
    DEFAULT_INIT_CLUSTER_TIMEOUT,
    DEFAULT_RETRIES,
    DeployConfig,
    load_config,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in ("ZARF_RETRIES", "ZARF_RETRY_DELAY", "ZARF_CLUSTER_TIMEOUT", "ZARF_LOG_LEVEL", "ZARF_SEED_HOST"):
        monkeypatch.delenv(var, raising=False)


class TestLoadConfig:
    """Tests for load_config."""

    def test_defaults(self, tmp_path):
        """Test defaults apply without a file or environment."""
        config = load_config(tmp_path / "missing.yaml")

        assert config.retries == DEFAULT_RETRIES
        assert config.get_source("retries") == "default"

    def test_config_file(self, tmp_path):
        """Test values are read from the config file."""
        path = tmp_path / "config.yaml"
        path.write_text("retries: 5\nseed_host: 10.0.0.5\nunknown: ignored\n")

        config = load_config(path)

        assert config.retries == 5
        assert config.seed_host == "10.0.0.5"
        assert config.get_source("retries") == "config file"

    def test_environment_wins(self, tmp_path, monkeypatch):
        """Test environment variables override the file."""
        path = tmp_path / "config.yaml"
        path.write_text("retries: 5\n")
        monkeypatch.setenv("ZARF_RETRIES", "9")
        monkeypatch.setenv("ZARF_RETRY_DELAY", "0.5")

        config = load_config(path)

        assert config.retries == 9
        assert config.retry_delay_seconds == 0.5
        assert config.get_source("retries") == "environment"

    def test_invalid_value_ignored(self, tmp_path):
        """Test an unparseable value keeps the default."""
        path = tmp_path / "config.yaml"
        path.write_text("retries: lots\n")

        config = load_config(path)

        assert config.retries == DEFAULT_RETRIES
        assert config.get_source("retries") == "default"

    def test_unreadable_file(self, tmp_path):
        """Test broken YAML falls back to defaults."""
        path = tmp_path / "config.yaml"
        path.write_text("retries: [unclosed\n")

        assert load_config(path).retries == DEFAULT_RETRIES


class TestClusterTimeout:
    """Tests for DeployConfig.cluster_timeout."""

    def test_init_waits_longer(self):
        """Test init packages get the longer default."""
        config = DeployConfig()
        assert config.cluster_timeout(True) == DEFAULT_INIT_CLUSTER_TIMEOUT
        assert config.cluster_timeout(False) == DEFAULT_CLUSTER_TIMEOUT

    def test_explicit(self):
        """Test an explicit timeout applies to every package."""
        assert DeployConfig(cluster_timeout_seconds=10).cluster_timeout(True) == 10
