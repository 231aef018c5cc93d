from datetime import datetime, timezone
from zoneinfo import ZoneInfo


def day_key(tz_name: str, now: datetime | None = None) -> str:
    """Calendar day ("YYYY-MM-DD") of `now` in the ingestion timezone."""
    now = now or datetime.now(timezone.utc)
    return now.astimezone(ZoneInfo(tz_name)).strftime("%Y-%m-%d")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)
