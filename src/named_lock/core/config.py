"""Configuration dataclasses for named-lock.

These dataclasses centralize all configuration options for type safety
and easy testing. They can be created from the environment, from
command-line arguments, or used directly in code.
"""

from __future__ import annotations

import argparse
import logging
import math
import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from named_lock.core.constants import (
    DEFAULT_DATABASE_URL,
    DEFAULT_JITTER_MAX_DELAY,
    DEFAULT_JITTER_MIN_DELAY,
    DEFAULT_LEASE_MICROS,
    DEFAULT_LEASE_SECONDS,
    DEFAULT_SKEW_TOLERANCE_MICROS,
    DEFAULT_STORE_BACKEND,
    DEFAULT_TABLE_NAME,
    ENV_VAR_MAPPING,
    LOG_FORMATS,
    MICROS_PER_SECOND,
    VALID_LOG_LEVELS,
)
from named_lock.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _parse_env_numeric(value: str | None, cast: Callable[[str], Any]) -> Any | None:
    """Parse an environment value, returning None when invalid."""
    if value is None:
        return None
    try:
        parsed = cast(value)
    except (TypeError, ValueError):
        return None
    if isinstance(parsed, float) and not math.isfinite(parsed):
        return None
    return parsed


def _parse_env_bool(value: str | None) -> bool | None:
    if value is None:
        return None
    normalized = value.strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    return None


def _numeric_override(
    env: Mapping[str, str],
    key: str,
    cast: Callable[[str], Any],
    default: Any,
    *,
    minimum: float = 0,
    below: float | None = None,
) -> Any:
    """Return the env override for `key` or `default`, warning on invalid values."""
    env_name = ENV_VAR_MAPPING[key]
    if env_name not in env:
        return default
    parsed = _parse_env_numeric(env.get(env_name), cast)
    if parsed is not None and parsed >= minimum and (below is None or parsed < below):
        return parsed
    logger.warning(f"Ignoring invalid {env_name}={env.get(env_name)!r}; using default {default!r}")
    return default


@dataclass
class LeaseConfig:
    """Default lease requested by handles built from configuration.

    Attributes:
        seconds: Whole seconds of the lease (default: 30)
        micros: Additional microseconds, 0..999999 (default: 0)

    A (0, 0) lease never expires.
    """

    seconds: int = DEFAULT_LEASE_SECONDS
    micros: int = DEFAULT_LEASE_MICROS


@dataclass
class RetryJitterConfig:
    """Randomized sleep between acquisition attempts.

    Attributes:
        min_delay: Shortest sleep in seconds (default: 0.001)
        max_delay: Longest sleep in seconds (default: 0.02)
    """

    min_delay: float = DEFAULT_JITTER_MIN_DELAY
    max_delay: float = DEFAULT_JITTER_MAX_DELAY

    def __post_init__(self) -> None:
        if self.min_delay < 0 or self.max_delay < 0:
            raise ConfigurationError(
                "Jitter delays must be non-negative",
                field="jitter",
                details=f"min_delay={self.min_delay}, max_delay={self.max_delay}",
            )
        if self.max_delay <= self.min_delay:
            raise ConfigurationError(
                "Jitter window must be non-empty (max_delay > min_delay)",
                field="jitter",
                details=f"min_delay={self.min_delay}, max_delay={self.max_delay}",
            )


@dataclass
class StoreConfig:
    """Where lock rows live.

    Attributes:
        backend: Store implementation, "sql" or "memory" (default: "sql")
        url: SQLAlchemy database URL for the sql backend
        table_name: Name of the lock table (default: "named_lock")
        auto_create_schema: Create the table when the store is built (default: True)
        echo: Echo SQL statements through SQLAlchemy logging (default: False)
    """

    backend: str = DEFAULT_STORE_BACKEND
    url: str = DEFAULT_DATABASE_URL
    table_name: str = DEFAULT_TABLE_NAME
    auto_create_schema: bool = True
    echo: bool = False


@dataclass
class LogConfig:
    """Configuration for logging behavior.

    Attributes:
        level: Logging level string (default: "INFO")
        format: "text" or "json" (default: "text")
        file: Optional log file path; rotated by size
    """

    level: str = "INFO"
    format: str = "text"
    file: str | None = None

    def __post_init__(self) -> None:
        if self.format.lower() not in LOG_FORMATS:
            raise ConfigurationError(f"Unknown log format '{self.format}'", field="log_format")


@dataclass
class LockConfig:
    """Master configuration for named locks.

    Attributes:
        lease: Default lease for handles created by the CLI
        jitter: Sleep window between acquisition attempts
        store: Store selection and connection settings
        log: Logging configuration
        skew_tolerance_micros: Margin added to every lease before it counts as stale
    """

    lease: LeaseConfig = field(default_factory=LeaseConfig)
    jitter: RetryJitterConfig = field(default_factory=RetryJitterConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    log: LogConfig = field(default_factory=LogConfig)
    skew_tolerance_micros: int = DEFAULT_SKEW_TOLERANCE_MICROS

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> LockConfig:
        """Build configuration from defaults plus NAMED_LOCK_* overrides.

        Invalid numeric values are ignored with a warning, the same way
        for every setting.
        """
        env = os.environ if environ is None else environ

        store = StoreConfig(
            backend=env.get(ENV_VAR_MAPPING["backend"], DEFAULT_STORE_BACKEND).strip().lower(),
            url=env.get(ENV_VAR_MAPPING["url"], DEFAULT_DATABASE_URL),
            table_name=env.get(ENV_VAR_MAPPING["table_name"], DEFAULT_TABLE_NAME),
        )
        auto_create = _parse_env_bool(env.get(ENV_VAR_MAPPING["auto_create_schema"]))
        if auto_create is not None:
            store.auto_create_schema = auto_create

        lease = LeaseConfig(
            seconds=_numeric_override(env, "lease_seconds", int, DEFAULT_LEASE_SECONDS),
            micros=_numeric_override(env, "lease_micros", int, DEFAULT_LEASE_MICROS, below=MICROS_PER_SECOND),
        )
        min_delay = _numeric_override(env, "jitter_min_delay", float, DEFAULT_JITTER_MIN_DELAY)
        max_delay = _numeric_override(env, "jitter_max_delay", float, DEFAULT_JITTER_MAX_DELAY)
        if max_delay <= min_delay:
            logger.warning(
                f"Ignoring invalid jitter window (min_delay={min_delay}, max_delay={max_delay}); "
                f"using {DEFAULT_JITTER_MIN_DELAY}..{DEFAULT_JITTER_MAX_DELAY}"
            )
            min_delay, max_delay = DEFAULT_JITTER_MIN_DELAY, DEFAULT_JITTER_MAX_DELAY
        jitter = RetryJitterConfig(min_delay=min_delay, max_delay=max_delay)

        log_level = env.get(ENV_VAR_MAPPING["log_level"], "INFO").upper()
        if log_level not in VALID_LOG_LEVELS:
            logger.warning(f"Ignoring invalid {ENV_VAR_MAPPING['log_level']}={log_level!r}; using INFO")
            log_level = "INFO"
        log_format = env.get(ENV_VAR_MAPPING["log_format"], "text").lower()
        if log_format not in LOG_FORMATS:
            logger.warning(f"Ignoring invalid {ENV_VAR_MAPPING['log_format']}={log_format!r}; using text")
            log_format = "text"

        return cls(
            lease=lease,
            jitter=jitter,
            store=store,
            log=LogConfig(level=log_level, format=log_format),
            skew_tolerance_micros=_numeric_override(
                env, "skew_tolerance_micros", int, DEFAULT_SKEW_TOLERANCE_MICROS
            ),
        )

    @classmethod
    def from_args(cls, args: argparse.Namespace, environ: Mapping[str, str] | None = None) -> LockConfig:
        """Create configuration from parsed command-line arguments.

        Arguments that were not given fall back to the environment.
        """
        config = cls.from_env(environ)
        if getattr(args, "backend", None):
            config.store.backend = args.backend
        if getattr(args, "database_url", None):
            config.store.url = args.database_url
        if getattr(args, "table", None):
            config.store.table_name = args.table
        if getattr(args, "echo_sql", False):
            config.store.echo = True
        if getattr(args, "log_level", None):
            config.log.level = args.log_level.upper()
        if getattr(args, "log_format", None):
            config.log.format = args.log_format
        if getattr(args, "log_file", None):
            config.log.file = args.log_file
        if getattr(args, "lease", None) is not None:
            config.lease.seconds = args.lease
        if getattr(args, "lease_micros", None) is not None:
            config.lease.micros = args.lease_micros
        return config
