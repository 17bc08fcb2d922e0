"""Custom exceptions for named-lock.

Caller misuse (bad durations, releasing a lock that is not held, ...) is
reported with exceptions. Losing a race or observing a stale lease is not an
error: those outcomes are ordinary ``LockState`` return values.
"""


class NamedLockError(Exception):
    """Base exception for all named-lock errors."""

    def __init__(self, message: str, details: str | None = None):
        self.message = message
        self.details = details
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


class ConfigurationError(NamedLockError):
    """Exception raised for invalid explicit configuration values.

    Examples:
        - Unknown log format
        - Jitter bounds that are negative
    """

    def __init__(self, message: str, field: str | None = None, details: str | None = None):
        self.field = field
        super().__init__(message, details)


class InvalidDurationError(NamedLockError, ValueError):
    """Raised for malformed caller-supplied timing arguments.

    Durations are (seconds, microseconds) pairs. Both parts must be
    non-negative integers and the microsecond part must stay below one
    second. Validation happens before any store I/O.
    """

    def __init__(self, message: str, field: str | None = None, value: object = None):
        self.field = field
        self.value = value
        details = f"{field}={value!r}" if field else None
        super().__init__(message, details)


class InvalidLockNameError(NamedLockError, ValueError):
    """Raised when a lock name is empty or does not fit the name column."""

    def __init__(self, name: object, reason: str):
        self.name = name
        super().__init__(f"Invalid lock name {name!r}", reason)


class LockStateError(NamedLockError):
    """Base class for lock protocol misuse by the caller."""

    def __init__(self, message: str, lock_name: str | None = None, details: str | None = None):
        self.lock_name = lock_name
        super().__init__(message, details)

    def __str__(self) -> str:
        text = super().__str__()
        if self.lock_name:
            return f"{text} ({self.lock_name})"
        return text


class AlreadyHeldError(LockStateError):
    """Raised when trying to claim a lock this handle already holds."""

    def __init__(self, lock_name: str):
        super().__init__("Attempted to lock a lock that is already held by this handle", lock_name)


class NotHeldError(LockStateError):
    """Raised when releasing a lock this handle does not hold."""

    def __init__(self, lock_name: str):
        super().__init__("Attempted to release a lock that is not held by this handle", lock_name)


class NotInfiniteLeaseError(LockStateError):
    """Raised when the administrative break targets a finite lease.

    Finite leases may only be broken through staleness detection during
    acquisition.

    Attributes:
        lease_sec: Lease seconds of the live claim
        lease_frac: Lease microseconds of the live claim
    """

    def __init__(self, lock_name: str, lease_sec: int, lease_frac: int):
        self.lease_sec = lease_sec
        self.lease_frac = lease_frac
        super().__init__(
            "Refusing to forcibly break a claim with a finite lease",
            lock_name,
            details=f"lease {lease_sec}s {lease_frac}us",
        )


class LockStoreError(NamedLockError):
    """Exception raised when the backing store fails.

    Wraps driver errors with the store operation that failed. The lock
    core never retries these: only contention is retried.
    """

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        details: str | None = None,
        original_error: Exception | None = None,
    ):
        self.operation = operation
        self.original_error = original_error
        super().__init__(message, details)

    def __str__(self) -> str:
        parts = [self.message]
        if self.operation:
            parts.append(f"during {self.operation}")
        if self.details:
            parts.append(self.details)
        return " - ".join(parts)
