# room_audit/services/time_window.py
from __future__ import annotations

import calendar
from datetime import datetime, time, timedelta, timezone
from typing import List

from room_audit.schemas.calendar import TimeWindow

MAX_MONTHS_AHEAD = 36
MAX_MONTHS_BEHIND = 12


def clamp(value: int, lower: int, upper: int) -> int:
    return max(lower, min(upper, int(value)))


def add_months(moment: datetime, months: int) -> datetime:
    """
    Shift `moment` by a number of calendar months (negative allowed).

    The day of month is clamped to the length of the target month, so
    Jan 31 + 1 month is Feb 28 (or 29).
    """
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def build_audit_window(
    months_ahead: int,
    months_behind: int,
    now: datetime | None = None,
) -> TimeWindow:
    """
    Build the audit horizon around today (UTC).

    Rules
    -----
    - months_ahead is clamped to [0, 36], months_behind to [0, 12].
    - start = today's UTC midnight minus months_behind.
    - end = tomorrow's UTC midnight plus months_ahead.

    The window always covers at least the current day.
    """
    if now is None:
        now = datetime.now(tz=timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    ahead = clamp(months_ahead, 0, MAX_MONTHS_AHEAD)
    behind = clamp(months_behind, 0, MAX_MONTHS_BEHIND)

    today = datetime.combine(now.astimezone(timezone.utc).date(), time.min, tzinfo=timezone.utc)
    start = add_months(today, -behind)
    end = add_months(today + timedelta(days=1), ahead)
    return TimeWindow(start=start, end=end)


def month_chunks(window: TimeWindow) -> List[TimeWindow]:
    """
    Split a window into consecutive month-long sub-windows.

    Chunks are half-open, start at window.start, advance by one calendar
    month each, and the last one is clipped to window.end. Together they
    cover the window exactly, with no gaps or overlaps.
    """
    chunks: List[TimeWindow] = []
    chunk_start = window.start
    step = 1
    while chunk_start < window.end:
        # Step from the window start rather than the previous chunk so a
        # clamped day (Jan 31 -> Feb 28) does not drift later chunks.
        chunk_end = min(add_months(window.start, step), window.end)
        chunks.append(TimeWindow(start=chunk_start, end=chunk_end))
        chunk_start = chunk_end
        step += 1
    return chunks


def split_in_half(window: TimeWindow) -> List[TimeWindow]:
    """
    Split a window into two adjacent halves at its midpoint.
    """
    midpoint = window.start + (window.end - window.start) / 2
    return [
        TimeWindow(start=window.start, end=midpoint),
        TimeWindow(start=midpoint, end=window.end),
    ]
