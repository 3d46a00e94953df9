"""Calendar billing period helpers (UTC)."""

from datetime import UTC, datetime


def start_of_month(dt: datetime | None = None) -> datetime:
    """Midnight UTC on the first day of the month containing ``dt`` (default: now)."""
    dt = (dt or datetime.now(UTC)).astimezone(UTC)
    return dt.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def start_of_last_month(dt: datetime | None = None) -> datetime:
    """Midnight UTC on the first day of the month before the one containing ``dt``."""
    first = start_of_month(dt)
    if first.month == 1:
        return first.replace(year=first.year - 1, month=12)
    return first.replace(month=first.month - 1)


def next_month(dt: datetime) -> datetime:
    """Midnight UTC on the first day of the month after the one containing ``dt``."""
    first = start_of_month(dt)
    if first.month == 12:
        return first.replace(year=first.year + 1, month=1)
    return first.replace(month=first.month + 1)


def last_month_period(dt: datetime | None = None) -> tuple[datetime, datetime]:
    """The previous calendar month as a half-open ``(from, to)`` period."""
    return start_of_last_month(dt), start_of_month(dt)
