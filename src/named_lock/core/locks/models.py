"""Lock data model.

A lock is one row in a shared store. The row is claimed when all four
claim columns (owner_pid, owner_token, acquired_sec, acquired_frac) are set
and free when all four are null; writers never set or clear them
independently. The lease columns describe the most recent claim.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any

from named_lock.core.constants import MICROS_PER_SECOND
from named_lock.core.exceptions import InvalidDurationError


class LockState(Enum):
    """A handle's belief about the lock, true only when it was computed."""

    LOCKED = "locked"
    UNLOCKED = "unlocked"
    STALE = "stale"  # Someone's claim went stale; retrying may succeed


@dataclass(frozen=True)
class Duration:
    """A (seconds, microseconds) span, as stored in the lease columns."""

    seconds: int = 0
    micros: int = 0

    @classmethod
    def validated(cls, seconds: int, micros: int = 0, *, field: str = "duration") -> Duration:
        """Build a Duration, raising InvalidDurationError for malformed parts."""
        for part_name, value in ((f"{field}_sec", seconds), (f"{field}_frac", micros)):
            if isinstance(value, bool) or not isinstance(value, int):
                raise InvalidDurationError("Duration parts must be integers", part_name, value)
            if value < 0:
                raise InvalidDurationError("Duration parts may not be negative", part_name, value)
        if micros >= MICROS_PER_SECOND:
            # Whole seconds belong in the seconds part.
            raise InvalidDurationError("Microsecond part must be below one second", f"{field}_frac", micros)
        return cls(seconds, micros)

    @property
    def is_zero(self) -> bool:
        return self.seconds == 0 and self.micros == 0

    @property
    def total_micros(self) -> int:
        return self.seconds * MICROS_PER_SECOND + self.micros

    def total_seconds(self) -> float:
        return self.total_micros / MICROS_PER_SECOND

    def __str__(self) -> str:
        if self.is_zero:
            return "0s"
        return f"{self.seconds}.{self.micros:06d}s"


@dataclass(frozen=True)
class OwnerClaim:
    """One specific claim on a lock row.

    Two claims are the same claim only if pid, token and timestamp all
    match; the lease travels with the claim so staleness is always judged
    against the duration the holder actually asked for.
    """

    pid: int
    token: str
    acquired_sec: int
    acquired_frac: int
    lease_sec: int
    lease_frac: int

    @property
    def lease(self) -> Duration:
        return Duration(self.lease_sec, self.lease_frac)

    @property
    def has_infinite_lease(self) -> bool:
        return self.lease.is_zero

    @property
    def acquired_micros(self) -> int:
        return self.acquired_sec * MICROS_PER_SECOND + self.acquired_frac

    def expires_at_micros(self, skew_tolerance_micros: int = 0) -> int | None:
        """Epoch microseconds after which the claim is stale; None if it never is."""
        if self.has_infinite_lease:
            return None
        return self.acquired_micros + self.lease.total_micros + skew_tolerance_micros

    def is_expired(self, now_micros: int, skew_tolerance_micros: int = 0) -> bool:
        expires_at = self.expires_at_micros(skew_tolerance_micros)
        if expires_at is None:
            return False
        return now_micros > expires_at

    def same_claim(self, other: OwnerClaim | None) -> bool:
        if other is None:
            return False
        return (self.pid, self.token, self.acquired_sec, self.acquired_frac) == (
            other.pid,
            other.token,
            other.acquired_sec,
            other.acquired_frac,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class LockRow:
    """Snapshot of one lock row as read from a store."""

    id: int
    name: str
    lease_sec: int = 0
    lease_frac: int = 0
    owner_pid: int | None = None
    owner_token: str | None = None
    acquired_sec: int | None = None
    acquired_frac: int | None = None

    @property
    def claim(self) -> OwnerClaim | None:
        if self.owner_token is None or self.owner_pid is None:
            return None
        if self.acquired_sec is None or self.acquired_frac is None:
            return None
        return OwnerClaim(
            pid=self.owner_pid,
            token=self.owner_token,
            acquired_sec=self.acquired_sec,
            acquired_frac=self.acquired_frac,
            lease_sec=self.lease_sec,
            lease_frac=self.lease_frac,
        )

    @property
    def is_claimed(self) -> bool:
        return self.claim is not None

    @property
    def claim_columns_consistent(self) -> bool:
        """True when the claim columns are all set or all null."""
        columns = (self.owner_pid, self.owner_token, self.acquired_sec, self.acquired_frac)
        return all(c is None for c in columns) or all(c is not None for c in columns)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_mapping(cls, data: Any) -> LockRow:
        def _optional_int(key: str) -> int | None:
            value = data[key]
            return None if value is None else int(value)

        return cls(
            id=int(data["id"]),
            name=str(data["name"]),
            lease_sec=int(data["lease_sec"]),
            lease_frac=int(data["lease_frac"]),
            owner_pid=_optional_int("owner_pid"),
            owner_token=None if data["owner_token"] is None else str(data["owner_token"]),
            acquired_sec=_optional_int("acquired_sec"),
            acquired_frac=_optional_int("acquired_frac"),
        )
