"""
Time utilities.
"""

from datetime import datetime, timezone


def now_utc() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


def now_iso() -> str:
    """Get current UTC datetime as ISO string."""
    return now_utc().isoformat()


def run_id() -> str:
    """Run identifier used for log context and export folders: YYYYMMDD_HHMMSS."""
    return now_utc().strftime("%Y%m%d_%H%M%S")
