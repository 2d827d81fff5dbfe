"""Display helpers for bot replies."""

from datetime import datetime, timedelta
from typing import Optional

from config import settings

JID_SUFFIX = '@s.whatsapp.net'

PERIODS = [
    ('year', 60 * 60 * 24 * 365),
    ('month', 60 * 60 * 24 * 30),
    ('week', 60 * 60 * 24 * 7),
    ('day', 60 * 60 * 24),
    ('hour', 60 * 60),
    ('minute', 60),
    ('second', 1),
]


def format_jid(jid: Optional[str]) -> str:
    if not jid:
        return 'Unknown'
    return jid.replace(JID_SUFFIX, '')


def phone_to_jid(number: str) -> str:
    return f"{number}{JID_SUFFIX}"


def format_uptime(seconds: float) -> str:
    """Render seconds as '1d 2h 3m 4s', skipping zero parts."""
    seconds = int(seconds)
    days, seconds = divmod(seconds, 24 * 60 * 60)
    hours, seconds = divmod(seconds, 60 * 60)
    minutes, secs = divmod(seconds, 60)

    parts = []
    if days > 0:
        parts.append(f"{days}d")
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0:
        parts.append(f"{minutes}m")
    if secs > 0 or not parts:
        parts.append(f"{secs}s")
    return ' '.join(parts)


def format_relative(target: datetime, now: Optional[datetime] = None) -> str:
    """Describe target relative to now using its largest whole unit.

    2h05m ahead renders as 'in 2 hours', 3 days back as '3 days ago'.
    """
    if now is None:
        now = datetime.now(settings.tz)
    delta: timedelta = target - now
    total = int(delta.total_seconds())
    future = total >= 0
    total = abs(total)

    for name, size in PERIODS:
        if total >= size or name == 'second':
            value = total // size
            label = name if value == 1 else f"{name}s"
            return f"in {value} {label}" if future else f"{value} {label} ago"


def localize(dt: datetime) -> datetime:
    return dt.astimezone(settings.tz)


def _hour12(dt: datetime) -> str:
    return dt.strftime('%I:%M').lstrip('0') + dt.strftime(' %p')


def format_datetime_full(dt: datetime) -> str:
    """'October 19, 2026 at 10:00 AM GMT+6'"""
    dt = localize(dt)
    return f"{format_date_full(dt)} at {_hour12(dt)} {_gmt_offset(dt)}"


def format_datetime_med(dt: datetime) -> str:
    """'Oct 19, 2026, 10:00 AM'"""
    dt = localize(dt)
    return f"{dt.strftime('%b')} {dt.day}, {dt.year}, {_hour12(dt)}"


def format_date_full(dt: datetime) -> str:
    dt = localize(dt)
    return f"{dt.strftime('%B')} {dt.day}, {dt.year}"


def format_time_with_seconds(dt: datetime) -> str:
    dt = localize(dt)
    return dt.strftime('%I:%M:%S').lstrip('0') + dt.strftime(' %p')


def _gmt_offset(dt: datetime) -> str:
    offset = dt.utcoffset() or timedelta()
    minutes = int(offset.total_seconds()) // 60
    sign = '+' if minutes >= 0 else '-'
    hours, mins = divmod(abs(minutes), 60)
    if hours == 0 and mins == 0:
        return 'GMT'
    if mins:
        return f"GMT{sign}{hours}:{mins:02d}"
    return f"GMT{sign}{hours}"
