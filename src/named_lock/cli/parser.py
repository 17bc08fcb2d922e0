"""CLI argument parsing for the named-lock command."""

from __future__ import annotations

import argparse

import argcomplete

from named_lock.core.constants import LOG_FORMATS, STORE_BACKENDS, VALID_LOG_LEVELS
from named_lock.core.version import __version__


def _non_negative_int(value: str) -> int:
    parsed = int(value)
    if parsed < 0:
        raise argparse.ArgumentTypeError(f"must be a non-negative integer, got {value}")
    return parsed


def _non_negative_float(value: str) -> float:
    parsed = float(value)
    if parsed < 0:
        raise argparse.ArgumentTypeError(f"must be non-negative, got {value}")
    return parsed


def _add_lease_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--lease",
        type=_non_negative_int,
        default=None,
        metavar="SECONDS",
        help="Lease to request, whole seconds (default: 30, or NAMED_LOCK_LEASE_SECONDS). "
        "A lease of 0 seconds and 0 microseconds never expires",
    )
    parser.add_argument(
        "--lease-micros",
        type=_non_negative_int,
        default=None,
        metavar="MICROS",
        help="Additional lease microseconds, 0-999999 (default: 0)",
    )
    parser.add_argument(
        "--wait",
        type=_non_negative_int,
        default=0,
        metavar="SECONDS",
        help="How long to keep retrying while another process holds the lock (default: 0, one attempt)",
    )
    parser.add_argument(
        "--wait-micros",
        type=_non_negative_int,
        default=0,
        metavar="MICROS",
        help="Additional wait microseconds, 0-999999 (default: 0)",
    )


def parse_arguments(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments"""
    parser = argparse.ArgumentParser(
        prog="named-lock",
        description="named-lock - Inspect and exercise lease-based named locks",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Create the lock table in the configured database
  named-lock --database-url sqlite:///locks.db init-db

  # Show who holds a lock
  named-lock status nightly-report
  named-lock status nightly-report --format json

  # Take a lock for 10 seconds with a 30 second lease, waiting up to 5 seconds
  named-lock hold nightly-report --hold 10 --lease 30 --wait 5

  # Simulate a crashed holder: take the lock and exit without releasing
  named-lock hold nightly-report --lease 2 --no-release

  # Run several of these at once to check mutual exclusion
  named-lock careful nightly-report --iterations 50 --sentinel /tmp/nightly.holder

  # Clear a lock that was taken with an infinite lease
  named-lock break-infinite nightly-report

Environment Variables:
  NAMED_LOCK_BACKEND               Store backend: sql (default) or memory
  NAMED_LOCK_DATABASE_URL          SQLAlchemy URL (default: sqlite:///named_lock.db)
  NAMED_LOCK_TABLE                 Lock table name (default: named_lock)
  NAMED_LOCK_LEASE_SECONDS         Default lease seconds
  NAMED_LOCK_JITTER_MIN            Shortest sleep between attempts, seconds
  NAMED_LOCK_JITTER_MAX            Longest sleep between attempts, seconds
  NAMED_LOCK_SKEW_TOLERANCE_MICROS Extra time before a claim counts as stale
  NAMED_LOCK_LOG_LEVEL             Default log level

Exit Codes:
  0  Success
  1  Lock not obtained, or invalid arguments
  2  Store or configuration error
  3  Two holders were seen at the same time (careful)
        """,
    )

    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    store_group = parser.add_argument_group("Store", "Where lock rows live")
    store_group.add_argument(
        "--backend",
        choices=STORE_BACKENDS,
        default=None,
        help="Store backend (default: sql, or NAMED_LOCK_BACKEND)",
    )
    store_group.add_argument(
        "--database-url",
        default=None,
        metavar="URL",
        help="SQLAlchemy database URL for the sql backend",
    )
    store_group.add_argument("--table", default=None, metavar="NAME", help="Lock table name")
    store_group.add_argument("--echo-sql", action="store_true", help="Log every SQL statement")

    log_group = parser.add_argument_group("Logging")
    log_group.add_argument(
        "--log-level",
        type=str.upper,
        choices=VALID_LOG_LEVELS,
        default=None,
        help="Logging level (default: INFO, or NAMED_LOCK_LOG_LEVEL)",
    )
    log_group.add_argument("--log-format", choices=LOG_FORMATS, default=None, help="Log output format")
    log_group.add_argument("--log-file", default=None, metavar="PATH", help="Also write logs to this file")

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND", required=True)

    subparsers.add_parser("init-db", help="Create the lock table")

    status_parser = subparsers.add_parser("status", help="Show the current holder of a lock")
    status_parser.add_argument("name", help="Lock name")
    status_parser.add_argument("--format", choices=("text", "json"), default="text", help="Output format")

    hold_parser = subparsers.add_parser("hold", help="Acquire a lock, hold it, then release it")
    hold_parser.add_argument("name", help="Lock name")
    _add_lease_arguments(hold_parser)
    hold_parser.add_argument(
        "--hold",
        type=_non_negative_float,
        default=1.0,
        metavar="SECONDS",
        help="How long to hold the lock once acquired (default: 1)",
    )
    hold_parser.add_argument(
        "--check-interval",
        type=_non_negative_float,
        default=0.5,
        metavar="SECONDS",
        help="How often to confirm the claim while holding (default: 0.5)",
    )
    hold_parser.add_argument(
        "--no-release",
        action="store_true",
        help="Exit without releasing, leaving the claim for staleness detection",
    )

    careful_parser = subparsers.add_parser(
        "careful", help="Repeatedly acquire and release, checking that no one else holds the lock at the same time"
    )
    careful_parser.add_argument("name", help="Lock name")
    _add_lease_arguments(careful_parser)
    careful_parser.add_argument(
        "--iterations", type=_non_negative_int, default=10, metavar="N", help="Acquire/release cycles (default: 10)"
    )
    careful_parser.add_argument(
        "--hold",
        type=_non_negative_float,
        default=0.01,
        metavar="SECONDS",
        help="How long to hold the lock in each cycle (default: 0.01)",
    )
    careful_parser.add_argument(
        "--sentinel",
        default=None,
        metavar="PATH",
        help="File created exclusively while the lock is held (default: <name>.holder in the current directory)",
    )

    break_parser = subparsers.add_parser("break-infinite", help="Forcibly clear a claim with an infinite lease")
    break_parser.add_argument("name", help="Lock name")

    # Shell tab-completion; a no-op unless the shell asked for completions
    argcomplete.autocomplete(parser)

    return parser.parse_args(argv)
