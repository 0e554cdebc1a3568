"""Shared utilities for the n8n stack tools."""

# Common utilities
from utils.common import (
    format_bytes,
    elapsed,
    timestamp_slug,
    is_secret_key,
    set_marker,
    sleep_with_notice,
)

# Pattern definitions
from utils.patterns import (
    FAILED_TASK,
    REDIS_PONG,
    BACKUP_FILENAME,
    VOLUME_ARCHIVE,
    CERT_KEY_FILE,
    SWARM_INFO,
)

# Validation utilities
from utils.validation import (
    ValidationIssue,
    ValidationResult,
    ValidationRegistry,
)

# Output formatting
from utils.formatting import (
    Console,
    TableFormatter,
)

# Configuration
from utils.config import (
    Config,
    EnvConfig,
    EnvFileError,
    KnownVariables,
    StackSettings,
    PLACEHOLDER_VALUE,
)

__all__ = [
    # Common
    "format_bytes",
    "elapsed",
    "timestamp_slug",
    "is_secret_key",
    "set_marker",
    "sleep_with_notice",
    # Patterns
    "FAILED_TASK",
    "REDIS_PONG",
    "BACKUP_FILENAME",
    "VOLUME_ARCHIVE",
    "CERT_KEY_FILE",
    "SWARM_INFO",
    # Validation
    "ValidationIssue",
    "ValidationResult",
    "ValidationRegistry",
    # Formatting
    "Console",
    "TableFormatter",
    # Config
    "Config",
    "EnvConfig",
    "EnvFileError",
    "KnownVariables",
    "StackSettings",
    "PLACEHOLDER_VALUE",
]
