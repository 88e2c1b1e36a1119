"""
Timezone utility functions for the GridGuessr application
"""

from datetime import datetime, timezone


def get_utc_time():
    """Get current time in UTC"""
    return datetime.now(timezone.utc)


def ensure_utc(dt):
    """Return an aware UTC datetime; naive values are assumed to be UTC"""
    if dt is None:
        return None

    # SQLite hands back naive datetimes even for columns written as aware
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)

    return dt.astimezone(timezone.utc)


def parse_timestamp(value):
    """Parse an ISO-8601 string (or pass through a datetime) into aware UTC"""
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        return ensure_utc(value)

    if isinstance(value, str):
        try:
            return ensure_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
        except ValueError:
            return None

    return None


def has_passed(dt, now=None):
    """Check whether a timestamp lies in the past"""
    if dt is None:
        return False
    now = ensure_utc(now) if now else get_utc_time()
    return ensure_utc(dt) <= now
