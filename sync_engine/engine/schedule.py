"""
Due-time calculation for workflow schedules.

All instants are timezone-aware UTC. Wall-clock arithmetic (days, weeks,
months, start_time) happens in the schedule's own timezone so a daily
08:00 run stays at 08:00 local across DST changes.
"""

from __future__ import annotations

import calendar
from dataclasses import replace
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .types import ScheduleConfig, ScheduleFrequency

_FIXED_UNITS = {
    ScheduleFrequency.MINUTES: timedelta(minutes=1),
    ScheduleFrequency.HOURS: timedelta(hours=1),
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops tzinfo) and normalize aware ones."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def pin_monthly_anchor(schedule: ScheduleConfig, reference: datetime) -> ScheduleConfig:
    """
    Fix the day of month of a monthly schedule that leaves it open.

    The day is taken from `reference` in the schedule's timezone. Without a
    stored day each step would reuse the previous due day, so a month-end
    clamp (Jan 31 to Feb 29) would carry into every later month.
    """
    if schedule.frequency != ScheduleFrequency.MONTHS or schedule.day_of_month is not None:
        return schedule
    local = as_utc(reference).astimezone(ZoneInfo(schedule.timezone))
    return replace(schedule, day_of_month=local.day)


def parse_start_time(value: str) -> time:
    """Parse an "HH:MM" start time."""
    parts = value.split(":")
    if len(parts) != 2 or not all(p.isdigit() for p in parts):
        raise ValueError(f"start_time must be HH:MM, got {value!r}")
    hours, minutes = int(parts[0]), int(parts[1])
    if not (0 <= hours < 24 and 0 <= minutes < 60):
        raise ValueError(f"start_time out of range: {value!r}")
    return time(hours, minutes)


def validate_schedule(schedule: ScheduleConfig) -> None:
    """Raise ValueError when the schedule cannot produce an unambiguous due time."""
    if schedule.interval < 1:
        raise ValueError("interval must be at least 1")
    if schedule.start_time is not None:
        parse_start_time(schedule.start_time)
    try:
        ZoneInfo(schedule.timezone)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"unknown timezone: {schedule.timezone}") from e
    for day in schedule.days_of_week:
        if not 0 <= day <= 6:
            raise ValueError(f"days_of_week entries must be 0-6, got {day}")
    if schedule.day_of_month is not None and not 1 <= schedule.day_of_month <= 31:
        raise ValueError(f"day_of_month must be 1-31, got {schedule.day_of_month}")


def first_due(schedule: ScheduleConfig, reference: datetime) -> datetime:
    """First due instant strictly after `reference` for a newly activated schedule."""
    reference = as_utc(reference)
    if schedule.start_time is None:
        return next_due(schedule, reference)

    tz = ZoneInfo(schedule.timezone)
    start = parse_start_time(schedule.start_time)
    local_date = reference.astimezone(tz).date()

    if schedule.frequency in _FIXED_UNITS:
        # Grid anchored at today's start time, extending both directions
        period = _FIXED_UNITS[schedule.frequency] * schedule.interval
        anchor = _at_local(local_date, start, tz)
        steps = (reference - anchor) // period + 1
        return anchor + steps * period

    if schedule.frequency == ScheduleFrequency.DAYS:
        candidate = _at_local(local_date, start, tz)
        if candidate <= reference:
            candidate = _at_local(local_date + timedelta(days=1), start, tz)
        return candidate

    if schedule.frequency == ScheduleFrequency.WEEKS:
        allowed = set(schedule.days_of_week) or {_sunday_weekday(local_date)}
        for offset in range(8):
            day = local_date + timedelta(days=offset)
            if _sunday_weekday(day) in allowed:
                candidate = _at_local(day, start, tz)
                if candidate > reference:
                    return candidate
        raise AssertionError("weekly schedule produced no candidate")

    day_of_month = schedule.day_of_month or local_date.day
    candidate = _at_local(_month_day(local_date.year, local_date.month, day_of_month), start, tz)
    if candidate <= reference:
        year, month = _add_months(local_date.year, local_date.month, 1)
        candidate = _at_local(_month_day(year, month, day_of_month), start, tz)
    return candidate


def next_due(schedule: ScheduleConfig, due: datetime) -> datetime:
    """
    Due instant following `due`.

    Pure in (schedule, due): the same due time always yields the same
    successor, so recomputing from the original due time never drifts.
    """
    due = as_utc(due)
    if schedule.frequency in _FIXED_UNITS:
        return due + _FIXED_UNITS[schedule.frequency] * schedule.interval

    tz = ZoneInfo(schedule.timezone)
    local = due.astimezone(tz)
    wall_time = (
        parse_start_time(schedule.start_time)
        if schedule.start_time
        else local.time().replace(tzinfo=None)
    )

    if schedule.frequency == ScheduleFrequency.DAYS:
        return _at_local(local.date() + timedelta(days=schedule.interval), wall_time, tz)

    if schedule.frequency == ScheduleFrequency.WEEKS:
        weekday = _sunday_weekday(local.date())
        if schedule.days_of_week:
            later = sorted(d for d in set(schedule.days_of_week) if d > weekday)
            if later:
                return _at_local(local.date() + timedelta(days=later[0] - weekday), wall_time, tz)
            week_start = local.date() - timedelta(days=weekday)
            target = week_start + timedelta(weeks=schedule.interval, days=min(schedule.days_of_week))
            return _at_local(target, wall_time, tz)
        return _at_local(local.date() + timedelta(weeks=schedule.interval), wall_time, tz)

    year, month = _add_months(local.year, local.month, schedule.interval)
    day_of_month = schedule.day_of_month or local.day
    return _at_local(_month_day(year, month, day_of_month), wall_time, tz)


def advance_past(schedule: ScheduleConfig, due: datetime, now: datetime) -> datetime:
    """Next due instant after `due` that lies strictly in the future of `now`."""
    due = as_utc(due)
    now = as_utc(now)
    if schedule.frequency in _FIXED_UNITS:
        period = _FIXED_UNITS[schedule.frequency] * schedule.interval
        if due > now:
            return due + period
        return due + ((now - due) // period + 1) * period

    following = next_due(schedule, due)
    while following <= now:
        following = next_due(schedule, following)
    return following


def _at_local(day: date, wall_time: time, tz: ZoneInfo) -> datetime:
    return datetime.combine(day, wall_time).replace(tzinfo=tz).astimezone(timezone.utc)


def _sunday_weekday(day: date) -> int:
    """Weekday with Sunday=0."""
    return (day.weekday() + 1) % 7


def _add_months(year: int, month: int, months: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + months
    return index // 12, index % 12 + 1


def _month_day(year: int, month: int, day: int) -> date:
    return date(year, month, min(day, calendar.monthrange(year, month)[1]))
