"""
统一时间管理模块

All persisted timestamps are timezone-aware UTC, and the daily sponsorship
budget is keyed by the UTC calendar date.

使用方法:
    from oria.utils.timezone import utcnow, utc_date_str
"""
from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def utc_date_str(dt: Optional[datetime] = None) -> str:
    """
    Return the UTC calendar date as ``YYYY-MM-DD``.

    Args:
        dt: datetime to convert; defaults to now. Naive values are assumed UTC.
    """
    if dt is None:
        dt = utcnow()
    return make_aware(dt).astimezone(timezone.utc).strftime("%Y-%m-%d")


def make_aware(dt: datetime) -> datetime:
    """
    将naive datetime视为UTC并附加时区信息

    SQLite drops tzinfo on round-trip, so values read back from the database
    go through here before being compared.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt
