"""Training-plan week arithmetic. Weeks start on Sunday."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Tuple, TypeVar, Union

from constants import DAY_ORDER

T = TypeVar('T')

DateLike = Union[str, date, datetime]


@dataclass(frozen=True)
class WeekInfo:
    current_week: int
    is_before_start: bool
    is_after_end: bool
    week_start_date: date
    week_end_date: date
    plan_start_date: date
    plan_end_date: date
    days_into_week: int
    days_remaining: int


def _to_date(value: DateLike) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    # Accept plain dates and full ISO timestamps ("2026-01-19T08:00:00Z").
    return date.fromisoformat(str(value)[:10])


def days_since_sunday(day: date) -> int:
    # date.weekday(): Monday=0 .. Sunday=6
    return (day.weekday() + 1) % 7


def get_sunday_of_week(day: DateLike) -> date:
    d = _to_date(day)
    return d - timedelta(days=days_since_sunday(d))


def calculate_current_week(start_date: DateLike, duration_weeks: int,
                           reference_date: Optional[DateLike] = None) -> WeekInfo:
    """
    Locate reference_date (default: today) inside a plan.

    Week 1 starts on the Sunday on or before start_date. The returned week
    number is clamped to [1, duration_weeks].
    """
    plan_start = _to_date(start_date)
    week1_start = get_sunday_of_week(plan_start)
    today = _to_date(reference_date) if reference_date is not None else date.today()
    current_week_start = get_sunday_of_week(today)

    duration_weeks = max(1, int(duration_weeks))
    plan_end = week1_start + timedelta(days=duration_weeks * 7 - 1)

    current_week = (current_week_start - week1_start).days // 7 + 1
    is_before_start = today < week1_start
    is_after_end = current_week > duration_weeks

    if is_before_start:
        current_week = 1
    elif is_after_end:
        current_week = duration_weeks

    week_start = week1_start + timedelta(days=(current_week - 1) * 7)

    return WeekInfo(
        current_week=current_week,
        is_before_start=is_before_start,
        is_after_end=is_after_end,
        week_start_date=week_start,
        week_end_date=week_start + timedelta(days=6),
        plan_start_date=plan_start,
        plan_end_date=plan_end,
        days_into_week=days_since_sunday(today),
        days_remaining=max(0, (plan_end - today).days),
    )


def format_week_date_range(start: date, end: date) -> str:
    """'Jan 19 - Jan 25, 2026'"""
    return f"{start.strftime('%b')} {start.day} - {end.strftime('%b')} {end.day}, {end.year}"


def is_workout_today(workout_day: str, reference_date: Optional[DateLike] = None) -> bool:
    today = _to_date(reference_date) if reference_date is not None else date.today()
    return workout_day.strip().lower() == today.strftime('%A').lower()


def sort_workouts_by_day(workouts: Dict[str, T]) -> List[Tuple[str, T]]:
    """Sunday first; unknown day names sort last."""
    return sorted(workouts.items(), key=lambda item: DAY_ORDER.get(item[0].lower(), 7))
