"""Core module - Foundation components for named-lock.

This module provides the basic building blocks used throughout the package:
- Version information
- Custom exceptions
- Configuration dataclasses
- Constants and defaults
- Logging helpers
"""

from named_lock.core.version import __version__

from named_lock.core.exceptions import (
    NamedLockError,
    ConfigurationError,
    InvalidDurationError,
    InvalidLockNameError,
    LockStateError,
    AlreadyHeldError,
    NotHeldError,
    NotInfiniteLeaseError,
    LockStoreError,
)

from named_lock.core.config import (
    LeaseConfig,
    RetryJitterConfig,
    StoreConfig,
    LogConfig,
    LockConfig,
)

from named_lock.core.logging import (
    JSONFormatter,
    setup_logging,
    with_log_context,
)

__all__ = [
    "__version__",
    "NamedLockError",
    "ConfigurationError",
    "InvalidDurationError",
    "InvalidLockNameError",
    "LockStateError",
    "AlreadyHeldError",
    "NotHeldError",
    "NotInfiniteLeaseError",
    "LockStoreError",
    "LeaseConfig",
    "RetryJitterConfig",
    "StoreConfig",
    "LogConfig",
    "LockConfig",
    "JSONFormatter",
    "setup_logging",
    "with_log_context",
]
