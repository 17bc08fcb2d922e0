"""Entry point for the named-lock command."""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import time
from pathlib import Path
from typing import Any

from dotenv import find_dotenv, load_dotenv

from named_lock.cli.parser import parse_arguments
from named_lock.core.config import LockConfig
from named_lock.core.constants import (
    EXIT_EXCLUSION_VIOLATED,
    EXIT_NOT_LOCKED,
    EXIT_OK,
    EXIT_STORE_ERROR,
    MICROS_PER_SECOND,
)
from named_lock.core.exceptions import (
    ConfigurationError,
    InvalidDurationError,
    InvalidLockNameError,
    LockStateError,
    LockStoreError,
)
from named_lock.core.locks import (
    Duration,
    LockHandle,
    LockRow,
    LockState,
    LockStore,
    create_lock_store,
    validate_lock_name,
    wall_clock_micros,
)
from named_lock.core.logging import flush_logging_handlers, setup_logging

logger = logging.getLogger(__name__)


def _print_error(msg: str) -> None:
    print(f"ERROR: {msg}", file=sys.stderr)


def _bootstrap_dotenv() -> bool:
    """Load NAMED_LOCK_* settings from the nearest .env file, without overriding the environment."""
    return load_dotenv(find_dotenv(usecwd=True), override=False)


def _lease_from(config: LockConfig) -> Duration:
    return Duration.validated(config.lease.seconds, config.lease.micros, field="lease")


def _handle_for(args: argparse.Namespace, config: LockConfig, store: LockStore) -> LockHandle:
    return LockHandle(
        args.name,
        _lease_from(config),
        store=store,
        jitter=config.jitter,
        skew_tolerance_micros=config.skew_tolerance_micros,
    )


def _acquire_through_stale(lock: LockHandle, wait: Duration) -> tuple[LockState, bool]:
    """Acquire, retrying straight away after each stale break.

    Returns the final state and whether any stale claim was broken on the way.
    """
    broke_stale = False
    state = lock.acquire(wait.seconds, wait.micros)
    while state is LockState.STALE:
        broke_stale = True
        state = lock.acquire(wait.seconds, wait.micros)
    return state, broke_stale


def describe_row(row: LockRow, now_micros: int, skew_tolerance_micros: int = 0) -> dict[str, Any]:
    """Summarize a lock row for display."""
    info: dict[str, Any] = row.to_dict()
    claim = row.claim
    if claim is None:
        info["state"] = "free"
        return info

    info["age_seconds"] = (now_micros - claim.acquired_micros) / MICROS_PER_SECOND
    expires_at = claim.expires_at_micros(skew_tolerance_micros)
    if expires_at is None:
        info["state"] = "held (infinite lease)"
    elif claim.is_expired(now_micros, skew_tolerance_micros):
        info["state"] = "stale"
    else:
        info["state"] = "held"
        info["expires_in_seconds"] = (expires_at - now_micros) / MICROS_PER_SECOND
    return info


def _run_init_db(args: argparse.Namespace, config: LockConfig, store: LockStore) -> int:
    store.create_schema()
    print(f"Lock table ready: {store!r}")
    return EXIT_OK


def _run_status(args: argparse.Namespace, config: LockConfig, store: LockStore) -> int:
    name = validate_lock_name(args.name)
    row = store.find(name)
    if row is None:
        if args.format == "json":
            print(json.dumps({"name": name, "state": "missing"}, indent=2))
        else:
            print(f"{name}: no lock row")
        return EXIT_NOT_LOCKED

    info = describe_row(row, wall_clock_micros(), config.skew_tolerance_micros)
    if args.format == "json":
        print(json.dumps(info, indent=2, default=str))
    else:
        for key, value in info.items():
            print(f"{key}: {value}")
    return EXIT_OK


def _run_hold(args: argparse.Namespace, config: LockConfig, store: LockStore) -> int:
    wait = Duration.validated(args.wait, args.wait_micros, field="wait")
    lock = _handle_for(args, config, store)

    state, broke_stale = _acquire_through_stale(lock, wait)
    if broke_stale:
        print(f"{lock.name}: broke a stale claim")
    print(f"{lock.name}: {state.value}")
    if state is not LockState.LOCKED:
        return EXIT_NOT_LOCKED

    deadline = time.monotonic() + args.hold
    while True:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            break
        time.sleep(min(args.check_interval, remaining) if args.check_interval > 0 else remaining)
        if lock.status() is not LockState.LOCKED:
            print(f"{lock.name}: claim lost while holding")
            return EXIT_NOT_LOCKED

    if args.no_release:
        print(f"{lock.name}: exiting without release")
        return EXIT_OK

    print(f"{lock.name}: {lock.release().value}")
    return EXIT_OK


def _run_careful(args: argparse.Namespace, config: LockConfig, store: LockStore) -> int:
    wait = Duration.validated(args.wait, args.wait_micros, field="wait")
    lock = _handle_for(args, config, store)
    sentinel = Path(args.sentinel) if args.sentinel else Path(f"{lock.name}.holder")
    acquired = missed = lost = 0

    for iteration in range(1, args.iterations + 1):
        state, broke_stale = _acquire_through_stale(lock, wait)
        if state is not LockState.LOCKED:
            missed += 1
            continue
        acquired += 1

        if broke_stale:
            # The broken holder died inside its critical section and left its sentinel behind.
            sentinel.unlink(missing_ok=True)
        try:
            fd = os.open(sentinel, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError:
            logger.error(
                "Sentinel %s already exists on iteration %d: another process holds %s",
                sentinel,
                iteration,
                lock.name,
            )
            _print_error(f"mutual exclusion violated on {lock.name} (sentinel {sentinel} exists)")
            lock.release()
            return EXIT_EXCLUSION_VIOLATED
        with os.fdopen(fd, "w") as handle:
            handle.write(f"{os.getpid()}\n")

        time.sleep(args.hold)
        sentinel.unlink(missing_ok=True)

        if lock.status() is LockState.LOCKED:
            lock.release()
        else:
            lost += 1
            logger.warning("Lost %s during iteration %d; the lease is shorter than the hold", lock.name, iteration)

    print(f"{lock.name}: {args.iterations} iterations, {acquired} acquired, {missed} missed, {lost} lost")
    return EXIT_OK


def _run_break_infinite(args: argparse.Namespace, config: LockConfig, store: LockStore) -> int:
    lock = _handle_for(args, config, store)
    state = lock.force_break_infinite()
    if state is LockState.STALE:
        print(f"{lock.name}: infinite lease broken")
    else:
        print(f"{lock.name}: not held")
    return EXIT_OK


_COMMANDS = {
    "init-db": _run_init_db,
    "status": _run_status,
    "hold": _run_hold,
    "careful": _run_careful,
    "break-infinite": _run_break_infinite,
}


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the named-lock command"""
    args = parse_arguments(argv)
    dotenv_loaded = _bootstrap_dotenv()

    try:
        config = LockConfig.from_args(args)
    except ConfigurationError as e:
        _print_error(str(e))
        return EXIT_STORE_ERROR

    setup_logging(config.log.level, config.log.format, config.log.file)
    if dotenv_loaded:
        logger.debug(".env file found and loaded")
    try:
        store = create_lock_store(config=config.store)
        try:
            return _COMMANDS[args.command](args, config, store)
        finally:
            store.close()
    except (InvalidDurationError, InvalidLockNameError, LockStateError) as e:
        _print_error(str(e))
        return EXIT_NOT_LOCKED
    except (LockStoreError, ConfigurationError) as e:
        _print_error(str(e))
        return EXIT_STORE_ERROR
    finally:
        flush_logging_handlers(logger)


if __name__ == "__main__":
    sys.exit(main())
