"""
named-lock - Lease-based named locks on a shared store

Lets processes on one or more hosts take turns on a named resource by
claiming a row in a shared database. Claims carry a lease; a holder that
dies without releasing is detected once its lease runs out and its claim
is broken by the next contender.
"""

from named_lock.core.exceptions import (
    AlreadyHeldError,
    ConfigurationError,
    InvalidDurationError,
    InvalidLockNameError,
    LockStateError,
    LockStoreError,
    NamedLockError,
    NotHeldError,
    NotInfiniteLeaseError,
)
from named_lock.core.config import LockConfig
from named_lock.core.locks import (
    Duration,
    LockHandle,
    LockState,
    LockStore,
    MemoryLockStore,
    SQLLockStore,
    close_shared_stores,
    create_lock_store,
    get_lock,
)
from named_lock.core.version import __version__

__all__ = [
    "__version__",
    "AlreadyHeldError",
    "ConfigurationError",
    "Duration",
    "InvalidDurationError",
    "InvalidLockNameError",
    "LockConfig",
    "LockHandle",
    "LockState",
    "LockStateError",
    "LockStore",
    "LockStoreError",
    "MemoryLockStore",
    "NamedLockError",
    "NotHeldError",
    "NotInfiniteLeaseError",
    "SQLLockStore",
    "close_shared_stores",
    "create_lock_store",
    "get_lock",
]
