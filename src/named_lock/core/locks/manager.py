"""Named lock handles and store selection.

A LockHandle never trusts a write it made until it has read it back: a
claim counts only if a read filtered on the exact pid, token and timestamp
just written finds the row. Breaking a stale claim and claiming the lock are
always separate attempts, so a handle never holds a lock merely because it
broke somebody else's claim.
"""

from __future__ import annotations

import functools
import hashlib
import logging
import os
import random
import socket
import threading
import time
import uuid
from collections.abc import Callable

from named_lock.core.config import LockConfig, RetryJitterConfig, StoreConfig
from named_lock.core.constants import (
    DEFAULT_LEASE_MICROS,
    DEFAULT_LEASE_SECONDS,
    DEFAULT_LOCK_BACKEND_ENV,
    DEFAULT_STORE_BACKEND,
    MAX_LOCK_NAME_LENGTH,
    MICROS_PER_SECOND,
)
from named_lock.core.exceptions import (
    AlreadyHeldError,
    InvalidLockNameError,
    LockStateError,
    NotHeldError,
    NotInfiniteLeaseError,
)
from named_lock.core.locks.backends import LockStore, MemoryLockStore, SQLLockStore
from named_lock.core.locks.models import Duration, LockState, OwnerClaim
from named_lock.core.logging import with_log_context

logger = logging.getLogger(__name__)

_shared_stores: dict[tuple[str, ...], LockStore] = {}
_shared_stores_lock = threading.Lock()


def wall_clock_micros() -> int:
    """Current wall-clock time in epoch microseconds."""
    return time.time_ns() // 1000


@functools.lru_cache(maxsize=1)
def _host_address() -> str:
    hostname = socket.gethostname()
    try:
        return socket.gethostbyname(hostname)
    except OSError:
        return hostname


def generate_owner_token(pid: int | None = None) -> str:
    """Return a token that identifies one claim attempt.

    Mixes the pid, this host's address and a random salt, so two hosts that
    happen to share a pid and a clock tick still produce different tokens.
    """
    pid = os.getpid() if pid is None else pid
    raw = f"{pid}:{_host_address()}:{uuid.uuid4().hex}:{time.time_ns()}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def validate_lock_name(name: object) -> str:
    if not isinstance(name, str) or not name:
        raise InvalidLockNameError(name, "lock names must be non-empty strings")
    if len(name) > MAX_LOCK_NAME_LENGTH:
        raise InvalidLockNameError(name, f"lock names are limited to {MAX_LOCK_NAME_LENGTH} characters")
    return name


def create_lock_store(
    backend_name: str | None = None,
    *,
    config: StoreConfig | None = None,
    logger: logging.Logger | None = None,
) -> LockStore:
    """Create a lock store from an explicit name, the config, or the environment."""
    log = logger or logging.getLogger(__name__)
    store_config = config or StoreConfig(backend=os.environ.get(DEFAULT_LOCK_BACKEND_ENV, DEFAULT_STORE_BACKEND))
    requested = (backend_name or store_config.backend).strip().lower()

    if requested == "memory":
        store: LockStore = MemoryLockStore()
    elif requested == "sql":
        store = SQLLockStore(store_config.url, table_name=store_config.table_name, echo=store_config.echo)
    else:
        log.warning("Unknown lock store backend '%s'; falling back to '%s'", requested, DEFAULT_STORE_BACKEND)
        return create_lock_store(DEFAULT_STORE_BACKEND, config=store_config, logger=log)

    if store_config.auto_create_schema:
        store.create_schema()
    return store


def _store_key(config: StoreConfig) -> tuple[str, ...]:
    backend = config.backend.strip().lower()
    if backend == "memory":
        return (backend,)
    return (backend, config.url, config.table_name)


def shared_lock_store(config: StoreConfig) -> LockStore:
    """Return the process-wide store for `config`, creating it on first use.

    Handles built by `get_lock` without an explicit store share this one, so
    two handles for the same name always contend on the same rows. Stores
    stay open until `close_shared_stores()`.
    """
    key = _store_key(config)
    with _shared_stores_lock:
        store = _shared_stores.get(key)
        if store is None:
            store = create_lock_store(config=config)
            _shared_stores[key] = store
        return store


def close_shared_stores() -> None:
    """Close every store handed out by `shared_lock_store`."""
    with _shared_stores_lock:
        stores = list(_shared_stores.values())
        _shared_stores.clear()
    for store in stores:
        store.close()


class LockHandle:
    """One process's view of one named lock.

    Usage:
        lock = get_lock("nightly-report", lease_sec=60, store=store)
        if lock.acquire(max_wait_sec=5) is LockState.LOCKED:
            try:
                ...  # critical section
            finally:
                lock.release()

    `state` is the handle's last computed belief; another process or lease
    expiry may change the row at any time, and `status()` re-checks it.

    Args:
        name: Lock name shared by every cooperating process
        lease: How long each claim made by this handle may be held; zero never expires
        store: Shared store holding the lock row
        jitter: Sleep window between acquisition attempts
        skew_tolerance_micros: Extra time granted to other holders before their claim counts as stale
        clock: Wall-clock source in epoch microseconds
    """

    def __init__(
        self,
        name: str,
        lease: Duration,
        *,
        store: LockStore,
        jitter: RetryJitterConfig | None = None,
        skew_tolerance_micros: int = 0,
        clock: Callable[[], int] | None = None,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ):
        self.name = validate_lock_name(name)
        self.lease = lease
        self.store = store
        self.jitter = jitter or RetryJitterConfig()
        self.skew_tolerance_micros = max(0, skew_tolerance_micros)
        self._clock = clock or wall_clock_micros
        self.logger = with_log_context(logger or logging.getLogger(__name__), lock_name=name)

        self.state = LockState.UNLOCKED
        self.held_claim: OwnerClaim | None = None
        self.row_id = store.provision(name, lease)

    def __repr__(self) -> str:
        return f"LockHandle(name={self.name!r}, row_id={self.row_id}, state={self.state.name}, lease={self.lease})"

    def __enter__(self) -> LockHandle:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self.state is LockState.LOCKED:
            self.release()

    @property
    def held_owner_token(self) -> str | None:
        return None if self.held_claim is None else self.held_claim.token

    def _next_claim(self) -> OwnerClaim:
        acquired_sec, acquired_frac = divmod(self._clock(), MICROS_PER_SECOND)
        pid = os.getpid()
        return OwnerClaim(
            pid=pid,
            token=generate_owner_token(pid),
            acquired_sec=acquired_sec,
            acquired_frac=acquired_frac,
            lease_sec=self.lease.seconds,
            lease_frac=self.lease.micros,
        )

    def _jitter_delay(self) -> float:
        return random.uniform(self.jitter.min_delay, self.jitter.max_delay)

    def try_once(self) -> LockState:
        """Attempt exactly once to take the lock.

        Returns LOCKED when this attempt won, UNLOCKED when someone else holds
        a live claim (or released it mid-attempt), and STALE when the current
        claim had outlived its lease and was broken. STALE does not mean this
        handle holds the lock; retry to claim it.
        """
        if self.state is LockState.LOCKED:
            raise AlreadyHeldError(self.name)

        claim = self._next_claim()
        self.store.claim(self.row_id, claim)
        if self.store.holds(self.row_id, claim):
            self.held_claim = claim
            self.state = LockState.LOCKED
            self.logger.debug("Acquired lock %s (lease %s)", self.name, self.lease)
            return self.state

        self.held_claim = None
        row = self.store.read(self.row_id)
        if row is None:
            # Somebody deleted the row out from under us; put it back and report the lock free.
            self.logger.warning("Lock row for %s disappeared; provisioning it again", self.name)
            self.row_id = self.store.provision(self.name, self.lease)
            self.state = LockState.UNLOCKED
            return self.state

        current = row.claim
        if current is None:
            # Released between our write and the read-back.
            self.state = LockState.UNLOCKED
        elif current.is_expired(self._clock(), self.skew_tolerance_micros):
            self._clear_stale(current)
        else:
            self.state = LockState.UNLOCKED
        return self.state

    def acquire(self, max_wait_sec: int = 0, max_wait_frac: int = 0) -> LockState:
        """Try to take the lock, polling for up to the given wait.

        Returns as soon as an attempt yields LOCKED or STALE. Otherwise keeps
        trying, sleeping a random interval from the jitter window between
        attempts, and returns the last UNLOCKED once the wait is spent. A zero
        wait means a single attempt.
        """
        max_wait = Duration.validated(max_wait_sec, max_wait_frac, field="max_wait")
        if self.state is LockState.LOCKED:
            raise AlreadyHeldError(self.name)

        deadline = time.monotonic() + max_wait.total_seconds()
        attempts = 0
        while True:
            attempts += 1
            state = self.try_once()
            if state is not LockState.UNLOCKED or max_wait.is_zero:
                return state
            time.sleep(self._jitter_delay())
            if time.monotonic() >= deadline:
                self.logger.debug("Lock %s still held after %d attempts over %s", self.name, attempts, max_wait)
                return state

    def status(self) -> LockState:
        """Re-check whether this handle's own claim is still on the row.

        Never writes to the store and never reports STALE.
        """
        if self.held_claim is None:
            self.state = LockState.UNLOCKED
            return self.state

        if self.store.holds(self.row_id, self.held_claim):
            self.state = LockState.LOCKED
        else:
            self.logger.warning("Claim on %s was lost (broken as stale or forcibly)", self.name)
            self.held_claim = None
            self.state = LockState.UNLOCKED
        return self.state

    def release(self) -> LockState:
        """Give the lock up.

        The row is cleared only if it still carries this handle's claim; either
        way the handle ends up UNLOCKED.
        """
        if self.state is not LockState.LOCKED or self.held_claim is None:
            raise NotHeldError(self.name)

        claim = self.held_claim
        if self.store.holds(self.row_id, claim):
            self.store.clear(self.row_id, claim)
            held_for = Duration(*divmod(max(0, self._clock() - claim.acquired_micros), MICROS_PER_SECOND))
            self.logger.debug("Released lock %s after %s", self.name, held_for)
        else:
            self.logger.warning("Lock %s was already broken by another process before release", self.name)

        self.held_claim = None
        self.state = LockState.UNLOCKED
        return self.state

    def break_claim(self, observed: OwnerClaim) -> LockState:
        """Clear a stale claim, but only if the row still carries exactly `observed`.

        If the holder released and re-claimed, or a third party already broke
        and re-claimed, the row no longer matches and nothing changes. The
        result is STALE either way.
        """
        if observed.has_infinite_lease:
            raise LockStateError("Attempted to automatically break an infinite lease", self.name)
        if not observed.is_expired(self._clock(), self.skew_tolerance_micros):
            raise LockStateError("Refusing to break a claim whose lease has not expired", self.name)
        return self._clear_stale(observed)

    def _clear_stale(self, observed: OwnerClaim) -> LockState:
        # Callers have already judged `observed` expired; the clock is not read again.
        if self.store.clear(self.row_id, observed):
            self.logger.info(
                "Broke stale claim on %s held by pid %s (lease %s)",
                self.name,
                observed.pid,
                observed.lease,
                extra={"owner_pid": observed.pid},
            )
        else:
            self.logger.debug("Stale claim on %s changed before it could be broken", self.name)

        self.state = LockState.STALE
        return self.state

    def force_break_infinite(self) -> LockState:
        """Operator override: clear a claim whose lease never expires.

        Returns UNLOCKED if the lock was not held at all and STALE once the
        observed claim is gone, whether this call cleared it or the row changed
        first. Finite leases are refused with NotInfiniteLeaseError; those
        are only ever broken by staleness detection.
        """
        row = self.store.read(self.row_id)
        current = None if row is None else row.claim
        if current is None:
            self.held_claim = None
            self.state = LockState.UNLOCKED
            return self.state

        if not current.has_infinite_lease:
            raise NotInfiniteLeaseError(self.name, current.lease_sec, current.lease_frac)

        if self.store.clear(self.row_id, current):
            self.logger.warning(
                "Forcibly broke infinite lease on %s held by pid %s",
                self.name,
                current.pid,
                extra={"owner_pid": current.pid},
            )
        else:
            self.logger.info("Infinite lease on %s changed before it could be broken", self.name)
        self.held_claim = None
        self.state = LockState.STALE
        return self.state


def get_lock(
    name: str,
    lease_sec: int = DEFAULT_LEASE_SECONDS,
    lease_frac: int = DEFAULT_LEASE_MICROS,
    *,
    store: LockStore | None = None,
    config: LockConfig | None = None,
    clock: Callable[[], int] | None = None,
) -> LockHandle:
    """Return a handle for the named lock, provisioning its row if needed.

    A (0, 0) lease never goes stale and is only ever broken with
    `force_break_infinite`. Without an explicit store the handle uses the
    shared store for `config` (or the NAMED_LOCK_* environment settings);
    close it with `close_shared_stores()`. An explicit store stays the
    caller's to close.
    """
    lease = Duration.validated(lease_sec, lease_frac, field="lease")
    validate_lock_name(name)
    config = config or LockConfig.from_env()
    if store is None:
        store = shared_lock_store(config.store)
    return LockHandle(
        name,
        lease,
        store=store,
        jitter=config.jitter,
        skew_tolerance_micros=config.skew_tolerance_micros,
        clock=clock,
    )
