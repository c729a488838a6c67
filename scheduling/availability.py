# scheduling/availability.py
"""
Free-window computation.

Given busy intervals, the owner's working hours and a meeting length, return the
contiguous free windows per day. Pure: no calendar calls, no clock reads.

Windows are NOT chunked into bookable slots and buffers are NOT applied here;
whoever picks a concrete time inside a window leaves the buffer margin.
"""
from __future__ import annotations

from datetime import date, datetime, timedelta, tzinfo
from typing import Iterable, List, Optional, Sequence, Tuple

from .errors import ValidationError
from .models import Preferences, TimeSlot

__all__ = [
    "compute_free_windows",
    "free_windows_for_day",
    "parse_date_range",
    "weekday_index",
]


def weekday_index(day: date) -> int:
    """Weekday in the persisted convention: 0=Sunday … 6=Saturday."""
    return day.isoweekday() % 7


def parse_date_range(start_date: str, end_date: str) -> Tuple[date, date]:
    try:
        start = date.fromisoformat(str(start_date).strip())
        end = date.fromisoformat(str(end_date).strip())
    except ValueError as e:
        raise ValidationError(f"dates must be YYYY-MM-DD (got {start_date!r}, {end_date!r})") from e
    if end < start:
        raise ValidationError(f"end date {end_date} is before start date {start_date}")
    return start, end


def _clip_and_sort(
    busy_blocks: Iterable[TimeSlot],
    day_start: datetime,
    day_end: datetime,
) -> List[Tuple[datetime, datetime]]:
    clipped = [
        (max(b.start, day_start), min(b.end, day_end))
        for b in busy_blocks
        if b.start < day_end and b.end > day_start
    ]
    clipped.sort(key=lambda pair: pair[0])
    return clipped


def free_windows_for_day(
    day_start: datetime,
    day_end: datetime,
    busy_blocks: Iterable[TimeSlot],
    min_length: timedelta,
    *,
    tz: Optional[tzinfo] = None,
) -> List[TimeSlot]:
    """Subtract busy blocks from one [day_start, day_end) span with a cursor walk."""
    if not day_start < day_end:
        return []

    candidates: List[Tuple[datetime, datetime]] = []
    cursor = day_start
    for b_start, b_end in _clip_and_sort(busy_blocks, day_start, day_end):
        if cursor < b_start:
            candidates.append((cursor, b_start))
        if b_end > cursor:
            cursor = b_end
    if cursor < day_end:
        candidates.append((cursor, day_end))

    out: List[TimeSlot] = []
    for s, e in candidates:
        if e - s < min_length:
            continue
        if tz is not None:
            s, e = s.astimezone(tz), e.astimezone(tz)
        out.append(TimeSlot(s, e))
    return out


def compute_free_windows(
    busy_blocks: Sequence[TimeSlot],
    range_start: date,
    range_end: date,
    preferences: Preferences,
    duration_minutes: int,
) -> List[TimeSlot]:
    """
    Free windows for every day in [range_start, range_end] (inclusive), in
    chronological order.

    - Working hours are interpreted in preferences.timezone on each calendar day.
    - Days listed in preferences.no_meeting_days contribute nothing.
    - A gap is returned only if it is at least `duration_minutes` long.
    - Unparseable working hours, or start >= end, yield no windows at all.
    """
    bounds = preferences.working_hours()
    if bounds is None:
        return []
    wh_start, wh_end = bounds
    if wh_start >= wh_end:
        return []

    tz = preferences.tzinfo()
    min_length = timedelta(minutes=max(0, int(duration_minutes)))
    skip_days = set(preferences.no_meeting_days or [])
    blocks = list(busy_blocks)

    windows: List[TimeSlot] = []
    day = range_start
    while day <= range_end:
        if weekday_index(day) not in skip_days:
            day_start = datetime.combine(day, wh_start, tzinfo=tz)
            day_end = datetime.combine(day, wh_end, tzinfo=tz)
            windows.extend(free_windows_for_day(day_start, day_end, blocks, min_length, tz=tz))
        day += timedelta(days=1)
    return windows
