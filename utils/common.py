"""Common utility functions used across the n8n stack tools."""

import time
from datetime import datetime


def format_bytes(b: int) -> str:
    """Format bytes into human-readable size string.

    Examples:
        512 KB, 1.5 MB, 2.34 GB
    """
    if b < 1024 * 1024:
        return f"{b / 1024:.0f} KB"
    if b < 1024 * 1024 * 1024:
        return f"{b / (1024 * 1024):.1f} MB"
    return f"{b / (1024 * 1024 * 1024):.2f} GB"


def elapsed(start_time: float) -> str:
    """Format elapsed time from start_time to now as human-readable string.

    Examples:
        0m 30s, 2m 15s, 1h 05m 30s
    """
    secs = int(time.time() - start_time)
    m, s = divmod(secs, 60)
    h, m = divmod(m, 60)
    if h:
        return f"{h}h {m:02d}m {s:02d}s"
    return f"{m}m {s:02d}s"


def timestamp_slug(now: datetime | None = None) -> str:
    """Return a ``YYYYMMDD_HHMMSS`` stamp used in backup and archive names."""
    return (now or datetime.now()).strftime("%Y%m%d_%H%M%S")


def is_secret_key(name: str) -> bool:
    """True for env var names whose values must never be printed."""
    upper = name.upper()
    return "PASSWORD" in upper or "KEY" in upper or "SECRET" in upper


def set_marker(value: str | None) -> str:
    """Render a secret as ``[SET]`` / ``[NOT SET]``."""
    return "[SET]" if value else "[NOT SET]"


def sleep_with_notice(seconds: int, notice=print) -> None:
    """Block for *seconds*, announcing the wait first. Zero skips the wait."""
    if seconds <= 0:
        return
    notice(f"Waiting {seconds} seconds for services to start...")
    time.sleep(seconds)
