"""Natural-language reminder time parsing.

Turns free text such as "remind me in 2 hours to call mom" or
"tomorrow 9am meeting" into a due time and the remaining message. Rules are
tried in a fixed order and the first one that matches decides the time:

    1. relative offset       "in 2 hours", "in 15 min", or a leading "2h"
    2. tomorrow at a time    "tomorrow 9am", "tomorrow at 10:30"
    3. daily at a time       "daily 8pm", "every day at 20:00" (stored once)
    4. any clock time        "9am", "18:45" (today, or tomorrow if passed)
    5. nothing matched       one hour from now

All times are computed in the bot timezone.
"""

import re
from datetime import datetime, timedelta, timezone
from typing import Optional

from config import settings
from schemas import ParsedTime

TRIGGER_WORDS = ('remind me', 'reminder', 'alarm', 'alert me')
COMMAND_PREFIXES = ('!addreminder', '/addreminder')
DEFAULT_MESSAGE = 'Reminder'
DAILY_PREFIX = 'Daily: '

IN_PATTERN = re.compile(r'in\s+(\d+)\s+(hour|hr|minute|min|h|m)(?:s?)\b', re.IGNORECASE)
COMPACT_PATTERN = re.compile(r'^(\d+)\s*(hours|hour|hrs|hr|h|minutes|minute|mins|min|m)\b', re.IGNORECASE)
TOMORROW_PATTERN = re.compile(
    r'tomorrow\s+(?:at\s+)?(\d{1,2})(?::(\d{2}))?\s*(am|pm)?', re.IGNORECASE
)
DAILY_PATTERN = re.compile(
    r'(?:daily|every\s+day)\s+(?:at\s+)?(\d{1,2})(?::(\d{2}))?\s*(am|pm)?', re.IGNORECASE
)
CLOCK_PATTERN = re.compile(r'(\d{1,2})(?::(\d{2}))?\s*(am|pm)?', re.IGNORECASE)
LEADING_FILLER = re.compile(r'^(to|that|for)\s+', re.IGNORECASE)
WHITESPACE = re.compile(r'\s+')


class InvalidClockTime(ValueError):
    """A matched hour/minute pair that is not a real time of day."""


def _localize(now: Optional[datetime]) -> datetime:
    tz = settings.tz
    if now is None:
        return datetime.now(tz)
    if now.tzinfo is None:
        return now.replace(tzinfo=tz)
    return now.astimezone(tz)


def _strip_match(text: str, pattern: re.Pattern) -> str:
    return WHITESPACE.sub(' ', pattern.sub('', text, count=1)).strip()


def _clock(match: re.Match) -> tuple:
    hours = int(match.group(1))
    minutes = int(match.group(2)) if match.group(2) else 0
    meridiem = match.group(3).lower() if match.group(3) else None

    if meridiem == 'pm' and hours < 12:
        hours += 12
    if meridiem == 'am' and hours == 12:
        hours = 0

    if not (0 <= hours <= 23 and 0 <= minutes <= 59):
        raise InvalidClockTime(f"{hours}:{minutes:02d}")
    return hours, minutes


def _at_clock(day: datetime, match: re.Match) -> datetime:
    hours, minutes = _clock(match)
    return day.replace(hour=hours, minute=minutes, second=0, microsecond=0)


def _next_occurrence(now: datetime, match: re.Match) -> datetime:
    due = _at_clock(now, match)
    if due < now:
        due += timedelta(days=1)
    return due


def _after(now: datetime, delta: timedelta) -> datetime:
    # Absolute offset, independent of wall-clock shifts
    return (now.astimezone(timezone.utc) + delta).astimezone(now.tzinfo)


def _offset(amount: int, unit: str) -> timedelta:
    if unit.lower().startswith('h'):
        return timedelta(hours=amount)
    return timedelta(minutes=amount)


def extract_message(text: str) -> str:
    """Drop everything up to and including the first trigger word."""
    lower = text.lower()
    message = text
    for word in TRIGGER_WORDS:
        index = lower.find(word)
        if index != -1:
            message = text[index + len(word):].strip()
            break

    if message.startswith(COMMAND_PREFIXES):
        parts = message.split(' ', 1)
        message = parts[1].strip() if len(parts) > 1 else ''
    return message


def parse_natural_time(text: str, now: Optional[datetime] = None) -> Optional[ParsedTime]:
    """Parse a reminder request into a due time and a cleaned message.

    Args:
        text: Free text from the user
        now: Reference time (defaults to the current time in the bot timezone)

    Returns:
        ParsedTime, or None when the text names a time that does not exist
        ("at 99") or lies beyond what datetime can hold ("in 99999999 hours").
    """
    now = _localize(now)
    message = extract_message(text)
    due_at = None
    parsed_message = message

    try:
        in_match = IN_PATTERN.search(message)
        compact_match = COMPACT_PATTERN.search(message)
        if in_match:
            due_at = _after(now, _offset(int(in_match.group(1)), in_match.group(2)))
            parsed_message = LEADING_FILLER.sub('', _strip_match(message, IN_PATTERN)).strip()
        elif compact_match:
            due_at = _after(now, _offset(int(compact_match.group(1)), compact_match.group(2)))
            parsed_message = LEADING_FILLER.sub('', _strip_match(message, COMPACT_PATTERN)).strip()

        tomorrow_match = TOMORROW_PATTERN.search(message)
        if tomorrow_match and due_at is None:
            due_at = _at_clock(now + timedelta(days=1), tomorrow_match)
            parsed_message = LEADING_FILLER.sub('', _strip_match(message, TOMORROW_PATTERN)).strip()

        daily_match = DAILY_PATTERN.search(message)
        if daily_match and due_at is None:
            due_at = _next_occurrence(now, daily_match)
            parsed_message = f"{DAILY_PREFIX}{_strip_match(message, DAILY_PATTERN)}"

        if due_at is None:
            clock_match = CLOCK_PATTERN.search(message)
            if clock_match:
                due_at = _next_occurrence(now, clock_match)
                parsed_message = _strip_match(message, CLOCK_PATTERN)
    except (InvalidClockTime, OverflowError, ValueError):
        # Not a representable time: hour 99, or an offset past datetime.max
        return None

    if due_at is None:
        due_at = _after(now, timedelta(hours=1))
        parsed_message = message

    if not parsed_message:
        parsed_message = DEFAULT_MESSAGE

    return ParsedTime(due_at=due_at, message=parsed_message)
