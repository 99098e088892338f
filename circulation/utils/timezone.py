from datetime import datetime
from typing import Optional
import pytz

from circulation.config import settings

UTC = pytz.utc
LOCAL_TZ = pytz.timezone(settings.timezone)

def now_utc() -> datetime:
    """Get current datetime in UTC."""
    return datetime.now(UTC)

def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops tzinfo) and convert aware ones."""
    if value is None:
        return None
    if value.tzinfo is None:
        return UTC.localize(value)
    return value.astimezone(UTC)

def to_local(value: Optional[datetime]) -> Optional[datetime]:
    """Convert a stored timestamp to the configured display timezone."""
    value = ensure_utc(value)
    return value.astimezone(LOCAL_TZ) if value else None

def local_isoformat(value: Optional[datetime]) -> Optional[str]:
    """ISO 8601 string in the display timezone, for API payloads."""
    value = to_local(value)
    return value.isoformat() if value else None
