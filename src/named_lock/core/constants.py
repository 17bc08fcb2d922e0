"""Constants and default values for named-lock.

This module centralizes the magic numbers and environment variable names
used throughout the package.
"""

# ==================== TIME UNITS ====================

MICROS_PER_SECOND: int = 1_000_000

# ==================== LOCK DEFAULTS ====================

DEFAULT_LEASE_SECONDS: int = 30  # How long a claim may be held before it is stale
DEFAULT_LEASE_MICROS: int = 0
MAX_LOCK_NAME_LENGTH: int = 255  # Matches the width of the name column
MAX_OWNER_TOKEN_LENGTH: int = 255

# Sleep between acquisition attempts is drawn uniformly from this window (seconds)
DEFAULT_JITTER_MIN_DELAY: float = 0.001
DEFAULT_JITTER_MAX_DELAY: float = 0.02

# Extra time added to every lease before it is considered stale
DEFAULT_SKEW_TOLERANCE_MICROS: int = 0

# ==================== STORE DEFAULTS ====================

STORE_BACKENDS: tuple[str, ...] = ("memory", "sql")
DEFAULT_STORE_BACKEND: str = "sql"
DEFAULT_DATABASE_URL: str = "sqlite:///named_lock.db"
DEFAULT_TABLE_NAME: str = "named_lock"
SQLITE_BUSY_TIMEOUT_SECONDS: float = 15.0  # How long a SQLite writer waits for the file lock

# ==================== LOGGING DEFAULTS ====================

LOG_FILE_MAX_BYTES: int = 10 * 1024 * 1024  # 10MB max per log file
LOG_FILE_BACKUP_COUNT: int = 5  # Number of backup log files to keep
LOG_FORMATS: tuple[str, ...] = ("text", "json")
VALID_LOG_LEVELS: tuple[str, ...] = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# ==================== ENVIRONMENT ====================

DEFAULT_LOCK_BACKEND_ENV = "NAMED_LOCK_BACKEND"

# Config attribute -> environment variable
ENV_VAR_MAPPING: dict[str, str] = {
    "backend": DEFAULT_LOCK_BACKEND_ENV,
    "url": "NAMED_LOCK_DATABASE_URL",
    "table_name": "NAMED_LOCK_TABLE",
    "auto_create_schema": "NAMED_LOCK_AUTO_CREATE_SCHEMA",
    "lease_seconds": "NAMED_LOCK_LEASE_SECONDS",
    "lease_micros": "NAMED_LOCK_LEASE_MICROS",
    "jitter_min_delay": "NAMED_LOCK_JITTER_MIN",
    "jitter_max_delay": "NAMED_LOCK_JITTER_MAX",
    "skew_tolerance_micros": "NAMED_LOCK_SKEW_TOLERANCE_MICROS",
    "log_level": "NAMED_LOCK_LOG_LEVEL",
    "log_format": "NAMED_LOCK_LOG_FORMAT",
}

# ==================== CLI EXIT CODES ====================

EXIT_OK: int = 0
EXIT_NOT_LOCKED: int = 1  # Lock not obtained, or caller misuse
EXIT_STORE_ERROR: int = 2  # Store or configuration failure
EXIT_EXCLUSION_VIOLATED: int = 3  # `careful` harness saw two holders at once
