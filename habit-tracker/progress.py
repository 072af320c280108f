"""Streak and completion-rate calculation for habits.

Everything in here is a pure function of its arguments. Callers load the
completion timestamps themselves and pass an explicit ``now``, so a batch of
habits evaluated together shares the same anchor and results are reproducible.
"""

import logging
import math
from datetime import date, datetime, time, timedelta
from typing import Iterable, Optional, Union

from models import Frequency, HabitType, Progress

logger = logging.getLogger(__name__)

Timestamp = Union[datetime, date]


class InvalidFrequencyError(ValueError):
    """A frequency outside the supported set reached the calculator."""


def parse_frequency(value) -> Frequency:
    if isinstance(value, Frequency):
        return value
    try:
        return Frequency(value)
    except ValueError:
        raise InvalidFrequencyError(f"Unknown habit frequency: {value!r}") from None


def _as_datetime(value: Timestamp) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.combine(value, time())


def _week_index(day: date) -> int:
    """Monday-based week number counted from date.min, which is a Monday."""
    return (day.toordinal() - 1) // 7


def period_of(frequency: Frequency, day: date) -> Optional[int]:
    """Map a calendar day to its period index, or None when the day is not eligible."""
    if frequency is Frequency.daily:
        return day.toordinal()
    if frequency is Frequency.weekly:
        return _week_index(day)
    if day.weekday() != frequency.weekday:
        return None
    return _week_index(day)


def distinct_periods(frequency: Frequency, completions: Iterable[Timestamp]) -> set[int]:
    periods = set()
    for stamp in completions:
        period = period_of(frequency, _as_datetime(stamp).date())
        if period is not None:
            periods.add(period)
    return periods


def _anchor_period(frequency: Frequency, today: date) -> int:
    if frequency is Frequency.daily:
        return today.toordinal()
    if frequency is Frequency.weekly:
        return _week_index(today)
    # Most recent occurrence of the target weekday on or before today
    last_occurrence = today - timedelta(days=(today.weekday() - frequency.weekday) % 7)
    return _week_index(last_occurrence)


def current_streak(frequency: Frequency, periods: set[int], today: date) -> int:
    anchor = _anchor_period(frequency, today)
    past = [p for p in periods if p <= anchor]
    if not past:
        return 0
    start = max(past)
    # Daily habits get one day of grace: a streak ending yesterday is still current.
    if frequency is Frequency.daily and start < anchor - 1:
        return 0
    streak = 0
    while start - streak in periods:
        streak += 1
    return streak


def longest_streak(periods: set[int]) -> int:
    longest = run = 0
    previous = None
    for period in sorted(periods):
        if previous is not None and period - previous == 1:
            run += 1
        else:
            run = 1
        longest = max(longest, run)
        previous = period
    return longest


def expected_completions(frequency: Frequency, created_at: Timestamp, now: Timestamp) -> int:
    """Number of periods from the creation day through today, inclusive. Never below 1."""
    start = _as_datetime(created_at).date()
    today = _as_datetime(now).date()
    days = (today - start).days + 1
    if days <= 0:
        return 1

    if frequency is Frequency.daily:
        expected = days
    elif frequency is Frequency.weekly:
        expected = math.ceil(days / 7)
    else:
        full_weeks, remainder = divmod(days, 7)
        offset = (frequency.weekday - start.weekday()) % 7
        expected = full_weeks + (1 if offset < remainder else 0)
    return max(expected, 1)


def calculate_progress(
    frequency,
    created_at: Timestamp,
    completions: Iterable[Timestamp],
    now: Timestamp,
) -> Progress:
    """Compute streaks and completion rate for one habit.

    Streaks are computed over the distinct periods that contain a completion,
    while ``total_completions`` and the rate numerator count every record,
    duplicates included.
    """
    frequency = parse_frequency(frequency)
    stamps = [_as_datetime(c) for c in completions]
    if not stamps:
        return Progress()

    today = _as_datetime(now).date()
    periods = distinct_periods(frequency, stamps)
    total = len(stamps)
    rate = min(total / expected_completions(frequency, created_at, now), 1.0)

    progress = Progress(
        current_streak=current_streak(frequency, periods, today),
        longest_streak=longest_streak(periods),
        last_completed_date=max(stamps),
        total_completions=total,
        completion_rate=round(rate, 3),
    )
    logger.debug(
        "Progress for %s habit: %d periods, current=%d longest=%d rate=%.3f",
        frequency.value,
        len(periods),
        progress.current_streak,
        progress.longest_streak,
        progress.completion_rate,
    )
    return progress


def summarize(entries: list[tuple[HabitType, Progress]], now: Timestamp) -> dict:
    """Aggregate a batch of (habit type, progress) pairs into dashboard figures."""
    today = _as_datetime(now).date()
    progress_list = [p for _, p in entries]
    count = len(progress_list)
    if count:
        average_rate = sum(p.completion_rate for p in progress_list) / count
    else:
        average_rate = 0.0
    return {
        "total_habits": count,
        "daily_habits": sum(1 for t, _ in entries if t == HabitType.daily),
        "long_term_habits": sum(1 for t, _ in entries if t == HabitType.long_term),
        "average_completion_rate": round(average_rate, 3),
        "best_current_streak": max((p.current_streak for p in progress_list), default=0),
        "total_completions": sum(p.total_completions for p in progress_list),
        "completed_today": sum(
            1
            for p in progress_list
            if p.last_completed_date is not None and p.last_completed_date.date() == today
        ),
    }
