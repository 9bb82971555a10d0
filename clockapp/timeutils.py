from __future__ import annotations

from datetime import datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo


def normalize_utc(ts: datetime | None) -> datetime:
    if ts is None:
        return datetime.now(timezone.utc)

    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)

    return ts.astimezone(timezone.utc)


def to_epoch_ms(ts: datetime) -> int:
    return int(normalize_utc(ts).timestamp() * 1000)


def from_epoch_ms(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


def local_month_bucket(epoch_ms: int, tz: ZoneInfo) -> str:
    return from_epoch_ms(epoch_ms).astimezone(tz).strftime("%Y-%m")


def lookback_start_utc(reference_utc: datetime, tz: ZoneInfo, days: int) -> datetime:
    """Start of the window covering the last ``days`` calendar days, today included."""
    span = max(1, int(days))
    local_day = normalize_utc(reference_utc).astimezone(tz).date()
    first_day = local_day - timedelta(days=span - 1)
    local_start = datetime.combine(first_day, time.min, tzinfo=tz)
    return local_start.astimezone(timezone.utc)
