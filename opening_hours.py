"""Open/closed evaluation for "HH:MM" opening hours, overnight spans included."""

import re
from datetime import datetime
from typing import Optional

from models import Listing

MINUTES_PER_DAY = 24 * 60

_HHMM_RE = re.compile(r"^\s*(\d{1,2}):(\d{2})\s*$")


def parse_hhmm(text: Optional[str]) -> Optional[int]:
    """Convert "HH:MM" to minutes past midnight, or None if malformed."""
    if not text or not isinstance(text, str):
        return None
    m = _HHMM_RE.match(text)
    if not m:
        return None
    hours, minutes = int(m.group(1)), int(m.group(2))
    if hours > 23 or minutes > 59:
        return None
    return hours * 60 + minutes


def minutes_of_day(when: datetime) -> int:
    return when.hour * 60 + when.minute


def is_open(open_time: Optional[str], close_time: Optional[str], now_minutes: int) -> bool:
    """Whether ``now_minutes`` falls inside the [open, close) window.

    Unknown or malformed hours count as closed. When close is earlier than
    open the window runs past midnight (22:00-02:00 covers 23:30 and 01:00).
    """
    open_m = parse_hhmm(open_time)
    close_m = parse_hhmm(close_time)
    if open_m is None or close_m is None:
        return False

    now = now_minutes % MINUTES_PER_DAY

    if close_m < open_m:
        return now >= open_m or now < close_m
    return open_m <= now < close_m


def is_open_at(open_time: Optional[str], close_time: Optional[str], when: datetime) -> bool:
    return is_open(open_time, close_time, minutes_of_day(when))


def listing_is_open(listing: Listing, when: Optional[datetime] = None) -> bool:
    """Open/closed badge for a listing, evaluated at local time by default."""
    when = when or datetime.now()
    return is_open_at(listing.open_time, listing.close_time, when)


def format_hours(open_time: Optional[str], close_time: Optional[str]) -> str:
    if not open_time or not close_time:
        return ""
    return f"{open_time} – {close_time}"
