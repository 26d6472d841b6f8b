"""
Block Windows
Maps timestamps onto 30-minute accounting windows.

Flow:
1. Take the instant's wall-clock time in the configured timezone
2. Floor minutes to :00 or :30
3. Convert back to an absolute (UTC) instant

Windows are half-open: [start, end). A reading stamped exactly on a
boundary belongs to the window that begins there.

Example (Asia/Kuala_Lumpur, UTC+8):
    2024-01-01T14:29:59+08:00 → 06:00Z  (14:00 local)
    2024-01-01T14:30:00+08:00 → 06:30Z  (14:30 local)
"""

from datetime import datetime, timedelta, timezone, tzinfo
from typing import Optional, Tuple, Union
from zoneinfo import ZoneInfo


WINDOW_MINUTES = 30
WINDOW = timedelta(minutes=WINDOW_MINUTES)

TimezoneLike = Union[str, timedelta, tzinfo]
TimestampLike = Union[str, int, float, datetime]


def resolve_timezone(tz: TimezoneLike) -> tzinfo:
    """
    Accepts an IANA name ("Asia/Kuala_Lumpur"), a fixed offset
    (timedelta(hours=8)) or a ready tzinfo.
    """
    if isinstance(tz, tzinfo):
        return tz
    if isinstance(tz, timedelta):
        return timezone(tz)
    if isinstance(tz, str):
        if tz.upper() in ("UTC", "Z"):
            return timezone.utc
        return ZoneInfo(tz)
    raise TypeError(f"Unsupported timezone: {tz!r}")


def parse_timestamp(value: TimestampLike) -> datetime:
    """Parse ISO strings and unix epochs (s or ms) into aware datetimes"""
    if isinstance(value, datetime):
        ts = value
    elif isinstance(value, str):
        ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
    elif isinstance(value, (int, float)):
        seconds = value / 1000 if value > 1e12 else value
        ts = datetime.fromtimestamp(seconds, tz=timezone.utc)
    else:
        raise TypeError(f"Unsupported timestamp: {value!r}")

    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def localize(ts: datetime, tz: TimezoneLike) -> datetime:
    """Attach tz to a naive wall-clock value; aware values pass through"""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=resolve_timezone(tz))
    return ts


def window_start(ts: TimestampLike, tz: TimezoneLike) -> datetime:
    """Start of the 30-minute window containing ts, as a UTC instant"""
    zone = resolve_timezone(tz)
    local = parse_timestamp(ts).astimezone(zone)
    floored = local.replace(
        minute=(local.minute // WINDOW_MINUTES) * WINDOW_MINUTES,
        second=0,
        microsecond=0,
    )
    return floored.astimezone(timezone.utc)


def window_end(start: datetime) -> datetime:
    return start + WINDOW


def window_for(ts: TimestampLike, tz: TimezoneLike) -> Tuple[datetime, datetime]:
    start = window_start(ts, tz)
    return start, window_end(start)


def current_window_from_reading(
    last_reading_ts: Optional[TimestampLike],
    tz: TimezoneLike,
) -> Optional[Tuple[datetime, datetime]]:
    """
    Window of the last received reading.

    Block identity follows device time, not the local clock, so
    fast-forwarded emitters land in the right window.
    """
    if last_reading_ts is None or last_reading_ts == "":
        return None
    return window_for(last_reading_ts, tz)


def format_window(start: datetime, end: datetime, tz: TimezoneLike) -> str:
    """Render a window as "14:00 – 14:30" in local time"""
    zone = resolve_timezone(tz)
    return f"{start.astimezone(zone):%H:%M} – {end.astimezone(zone):%H:%M}"
