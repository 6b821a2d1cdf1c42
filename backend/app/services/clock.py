from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Normalize to an aware UTC datetime; naive values are read as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def resolve_now(now: Optional[datetime]) -> datetime:
    return ensure_utc(now) if now is not None else utc_now()


def to_db(value: Optional[datetime]) -> Optional[str]:
    # Fixed width so string comparison in SQL follows chronological order.
    if value is None:
        return None
    return ensure_utc(value).isoformat(timespec="microseconds")


def from_db(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return ensure_utc(datetime.fromisoformat(value))


def intervals_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """True if [a_start, a_end) intersects [b_start, b_end)."""
    return a_start < b_end and a_end > b_start


WEEKDAY_KEYS = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")


def parse_wall_clock(value: str) -> int:
    """Minutes after local midnight for an ``HH:MM`` string; ``24:00`` is 1440."""
    parts = value.strip().split(":")
    if len(parts) != 2 or not all(part.isdigit() for part in parts):
        raise ValueError(f"Invalid time {value!r}; expected HH:MM")
    hours, minutes = int(parts[0]), int(parts[1])
    if hours == 24 and minutes == 0:
        return 24 * 60
    if not (0 <= hours < 24 and 0 <= minutes < 60):
        raise ValueError(f"Invalid time {value!r}; expected HH:MM")
    return hours * 60 + minutes
