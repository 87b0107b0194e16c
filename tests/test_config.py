"""
Tests for StreetWise configuration loading.
"""

import logging

from streetwise.config import DEFAULT_CONFIG, _deep_merge, load_config, setup_logging
from streetwise.jobs import JobConfig


class TestLoadConfig:
    """Tests for load_config."""

    def test_defaults(self, tmp_path, monkeypatch):
        """Test that defaults apply without a config file."""
        monkeypatch.delenv("STREETWISE_DB_PATH", raising=False)
        monkeypatch.delenv("STREETWISE_LOG_LEVEL", raising=False)

        config = load_config(tmp_path / "missing.yaml")

        assert config == DEFAULT_CONFIG
        assert config is not DEFAULT_CONFIG

    def test_file_overrides_defaults(self, tmp_path, monkeypatch):
        """Test that YAML values are merged over the defaults."""
        monkeypatch.delenv("STREETWISE_DB_PATH", raising=False)
        path = tmp_path / "config.yaml"
        path.write_text("jobs:\n  default_retries: 5\n")

        config = load_config(path)

        assert config["jobs"]["default_retries"] == 5
        assert config["jobs"]["max_concurrent_jobs"] == 3
        assert config["database"]["path"] == "db/streetwise.db"

    def test_environment_overrides(self, tmp_path, monkeypatch):
        """Test that environment variables win over the file."""
        path = tmp_path / "config.yaml"
        path.write_text("database:\n  path: from-file.db\n")
        monkeypatch.setenv("STREETWISE_DB_PATH", "from-env.db")
        monkeypatch.setenv("STREETWISE_LOG_LEVEL", "DEBUG")

        config = load_config(path)

        assert config["database"]["path"] == "from-env.db"
        assert config["logging"]["level"] == "DEBUG"

    def test_empty_file(self, tmp_path, monkeypatch):
        monkeypatch.delenv("STREETWISE_DB_PATH", raising=False)
        monkeypatch.delenv("STREETWISE_LOG_LEVEL", raising=False)
        path = tmp_path / "config.yaml"
        path.write_text("")

        assert load_config(path) == DEFAULT_CONFIG

    def test_deep_merge(self):
        base = {"a": {"b": 1, "c": 2}, "d": 3}
        merged = _deep_merge(base, {"a": {"b": 10}, "e": 4})

        assert merged == {"a": {"b": 10, "c": 2}, "d": 3, "e": 4}
        assert base["a"]["b"] == 1


class TestJobConfig:
    """Tests for building JobConfig from the config dict."""

    def test_from_config(self):
        config = {"jobs": {"max_concurrent_jobs": 1, "stale_after_minutes": 5}}
        job_config = JobConfig.from_config(config)

        assert job_config.max_concurrent_jobs == 1
        assert job_config.stale_after_minutes == 5
        assert job_config.default_retries == 3

    def test_unknown_keys_ignored(self):
        job_config = JobConfig.from_config({"jobs": {"colour": "blue"}})
        assert job_config == JobConfig()

    def test_missing_section(self):
        assert JobConfig.from_config({}) == JobConfig()


class TestSetupLogging:
    """Tests for logging setup."""

    def test_sets_level(self):
        setup_logging("DEBUG")
        assert logging.getLogger().level == logging.DEBUG
        setup_logging("WARNING", rich=True)
        assert logging.getLogger().level == logging.WARNING
