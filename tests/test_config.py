"""
Tests for configuration dataclasses and environment overrides
"""

import argparse
import logging

import pytest

from named_lock.core.config import LockConfig, LogConfig, RetryJitterConfig, StoreConfig
from named_lock.core.constants import DEFAULT_JITTER_MAX_DELAY, DEFAULT_JITTER_MIN_DELAY
from named_lock.core.exceptions import ConfigurationError


class TestLockConfigFromEnv:
    """Test NAMED_LOCK_* environment handling"""

    def test_defaults(self):
        config = LockConfig.from_env({})

        assert config.lease.seconds == 30
        assert config.lease.micros == 0
        assert config.jitter.min_delay == DEFAULT_JITTER_MIN_DELAY
        assert config.jitter.max_delay == DEFAULT_JITTER_MAX_DELAY
        assert config.store == StoreConfig()
        assert config.log.level == "INFO"
        assert config.skew_tolerance_micros == 0

    def test_overrides(self):
        config = LockConfig.from_env(
            {
                "NAMED_LOCK_BACKEND": " Memory ",
                "NAMED_LOCK_DATABASE_URL": "sqlite:///other.db",
                "NAMED_LOCK_TABLE": "app_locks",
                "NAMED_LOCK_AUTO_CREATE_SCHEMA": "no",
                "NAMED_LOCK_LEASE_SECONDS": "5",
                "NAMED_LOCK_LEASE_MICROS": "250000",
                "NAMED_LOCK_JITTER_MIN": "0.01",
                "NAMED_LOCK_JITTER_MAX": "0.05",
                "NAMED_LOCK_SKEW_TOLERANCE_MICROS": "2000",
                "NAMED_LOCK_LOG_LEVEL": "debug",
                "NAMED_LOCK_LOG_FORMAT": "JSON",
            }
        )

        assert config.store.backend == "memory"
        assert config.store.url == "sqlite:///other.db"
        assert config.store.table_name == "app_locks"
        assert config.store.auto_create_schema is False
        assert (config.lease.seconds, config.lease.micros) == (5, 250000)
        assert (config.jitter.min_delay, config.jitter.max_delay) == (0.01, 0.05)
        assert config.skew_tolerance_micros == 2000
        assert config.log.level == "DEBUG"
        assert config.log.format == "json"

    @pytest.mark.parametrize(
        ("env_name", "value"),
        [
            ("NAMED_LOCK_LEASE_SECONDS", "abc"),
            ("NAMED_LOCK_LEASE_SECONDS", "-5"),
            ("NAMED_LOCK_LEASE_MICROS", "1000000"),
            ("NAMED_LOCK_JITTER_MAX", "nan"),
            ("NAMED_LOCK_SKEW_TOLERANCE_MICROS", "1.5"),
        ],
    )
    def test_invalid_numbers_ignored_with_warning(self, env_name, value, caplog):
        with caplog.at_level(logging.WARNING):
            config = LockConfig.from_env({env_name: value})

        assert config == LockConfig.from_env({})
        assert f"Ignoring invalid {env_name}" in caplog.text

    def test_invalid_log_settings_fall_back(self, caplog):
        with caplog.at_level(logging.WARNING):
            config = LockConfig.from_env({"NAMED_LOCK_LOG_LEVEL": "chatty", "NAMED_LOCK_LOG_FORMAT": "xml"})

        assert config.log.level == "INFO"
        assert config.log.format == "text"
        assert "NAMED_LOCK_LOG_LEVEL" in caplog.text

    def test_unrecognized_bool_keeps_default(self):
        config = LockConfig.from_env({"NAMED_LOCK_AUTO_CREATE_SCHEMA": "maybe"})
        assert config.store.auto_create_schema is True

    def test_reads_process_environment_by_default(self, monkeypatch):
        monkeypatch.setenv("NAMED_LOCK_LEASE_SECONDS", "7")
        assert LockConfig.from_env().lease.seconds == 7


class TestLockConfigFromArgs:
    """Test CLI arguments layered over the environment"""

    def test_arguments_win_over_environment(self):
        args = argparse.Namespace(
            backend="memory",
            database_url="sqlite:///cli.db",
            table="cli_locks",
            echo_sql=True,
            log_level="warning",
            log_format="json",
            log_file="named-lock.log",
            lease=9,
            lease_micros=10,
        )

        config = LockConfig.from_args(args, {"NAMED_LOCK_BACKEND": "sql", "NAMED_LOCK_LEASE_SECONDS": "3"})

        assert config.store.backend == "memory"
        assert config.store.url == "sqlite:///cli.db"
        assert config.store.table_name == "cli_locks"
        assert config.store.echo is True
        assert config.log.level == "WARNING"
        assert config.log.format == "json"
        assert config.log.file == "named-lock.log"
        assert (config.lease.seconds, config.lease.micros) == (9, 10)

    def test_missing_arguments_use_environment(self):
        config = LockConfig.from_args(argparse.Namespace(), {"NAMED_LOCK_LEASE_SECONDS": "3"})

        assert config.lease.seconds == 3
        assert config.store.echo is False

    def test_zero_lease_argument_is_kept(self):
        config = LockConfig.from_args(argparse.Namespace(lease=0, lease_micros=0), {})
        assert (config.lease.seconds, config.lease.micros) == (0, 0)


class TestRetryJitterConfig:
    """Test jitter window validation"""

    @pytest.mark.parametrize(("min_delay", "max_delay"), [(0.05, 0.01), (0.02, 0.02), (0, 0)])
    def test_empty_window_raises(self, min_delay, max_delay):
        with pytest.raises(ConfigurationError) as exc_info:
            RetryJitterConfig(min_delay=min_delay, max_delay=max_delay)
        assert exc_info.value.field == "jitter"

    @pytest.mark.parametrize(
        "environ",
        [
            {"NAMED_LOCK_JITTER_MIN": "0.5"},
            {"NAMED_LOCK_JITTER_MIN": "0.01", "NAMED_LOCK_JITTER_MAX": "0.01"},
        ],
    )
    def test_empty_window_from_env_uses_defaults(self, environ, caplog):
        with caplog.at_level(logging.WARNING):
            config = LockConfig.from_env(environ)

        assert (config.jitter.min_delay, config.jitter.max_delay) == (DEFAULT_JITTER_MIN_DELAY, DEFAULT_JITTER_MAX_DELAY)
        assert "Ignoring invalid jitter window" in caplog.text

    def test_negative_delay_raises(self):
        with pytest.raises(ConfigurationError) as exc_info:
            RetryJitterConfig(min_delay=-0.1)
        assert exc_info.value.field == "jitter"


def test_unknown_log_format_raises():
    with pytest.raises(ConfigurationError):
        LogConfig(format="xml")
