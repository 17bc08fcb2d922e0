"""Named locks over a shared store.

A lock is a row in a store every cooperating process can reach. Handles
claim it with a conditional write, verify the claim by reading it back,
and break claims that outlive their lease.
"""

from named_lock.core.locks.backends import LockStore, MemoryLockStore, SQLLockStore, build_lock_table
from named_lock.core.locks.manager import (
    LockHandle,
    close_shared_stores,
    create_lock_store,
    generate_owner_token,
    get_lock,
    shared_lock_store,
    validate_lock_name,
    wall_clock_micros,
)
from named_lock.core.locks.models import Duration, LockRow, LockState, OwnerClaim

__all__ = [
    "Duration",
    "LockHandle",
    "LockRow",
    "LockState",
    "LockStore",
    "MemoryLockStore",
    "OwnerClaim",
    "SQLLockStore",
    "build_lock_table",
    "close_shared_stores",
    "create_lock_store",
    "generate_owner_token",
    "get_lock",
    "shared_lock_store",
    "validate_lock_name",
    "wall_clock_micros",
]
