"""UTC timestamps for run history and JSON log records."""
from datetime import datetime, timezone


def utc_now() -> datetime:
    """Timezone-aware now. Never use naive datetime.utcnow() for run history."""
    return datetime.now(timezone.utc)


def utc_iso(moment: datetime = None) -> str:
    """ISO 8601 with explicit +00:00 offset, e.g. '2024-05-01T12:00:00.123456+00:00'."""
    return (moment or utc_now()).astimezone(timezone.utc).isoformat()
