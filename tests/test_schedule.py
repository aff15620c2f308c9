"""Tests for due-time calculation."""

from datetime import datetime, timedelta, timezone

import pytest

from sync_engine.engine.schedule import (
    advance_past,
    first_due,
    next_due,
    pin_monthly_anchor,
    validate_schedule,
)
from sync_engine.engine.types import ScheduleConfig, ScheduleFrequency

UTC = timezone.utc


class TestFirstDue:
    """Tests for the first due instant after activation."""

    def test_fixed_interval_without_start_time(self):
        """Without a start time the first run is one period after activation."""
        schedule = ScheduleConfig(frequency=ScheduleFrequency.HOURS, interval=2)
        reference = datetime(2024, 6, 3, 10, 17, tzinfo=UTC)

        assert first_due(schedule, reference) == datetime(2024, 6, 3, 12, 17, tzinfo=UTC)

    def test_minutes_grid_anchored_at_start_time(self):
        """Sub-daily schedules with a start time stay on the start-time grid."""
        schedule = ScheduleConfig(
            frequency=ScheduleFrequency.MINUTES, interval=30, start_time="00:10"
        )
        reference = datetime(2024, 6, 3, 10, 20, tzinfo=UTC)

        assert first_due(schedule, reference) == datetime(2024, 6, 3, 10, 40, tzinfo=UTC)

    def test_daily_start_time_already_passed_today(self):
        schedule = ScheduleConfig(frequency=ScheduleFrequency.DAYS, start_time="08:00")
        reference = datetime(2024, 6, 3, 9, 0, tzinfo=UTC)

        assert first_due(schedule, reference) == datetime(2024, 6, 4, 8, 0, tzinfo=UTC)

    def test_daily_start_time_in_local_timezone_across_dst(self):
        """08:00 Berlin is 07:00 UTC in winter and 06:00 UTC after the switch."""
        schedule = ScheduleConfig(
            frequency=ScheduleFrequency.DAYS, start_time="08:00", timezone="Europe/Berlin"
        )
        reference = datetime(2024, 3, 30, 10, 0, tzinfo=UTC)

        due = first_due(schedule, reference)

        assert due == datetime(2024, 3, 31, 6, 0, tzinfo=UTC)
        assert next_due(schedule, datetime(2024, 3, 30, 7, 0, tzinfo=UTC)) == due

    def test_weekly_on_selected_days(self):
        """days_of_week uses Sunday=0; Monday and Wednesday here."""
        schedule = ScheduleConfig(
            frequency=ScheduleFrequency.WEEKS, start_time="09:00", days_of_week=[1, 3]
        )
        sunday = datetime(2024, 6, 2, 12, 0, tzinfo=UTC)

        monday = first_due(schedule, sunday)
        wednesday = next_due(schedule, monday)
        following_monday = next_due(schedule, wednesday)

        assert monday == datetime(2024, 6, 3, 9, 0, tzinfo=UTC)
        assert wednesday == datetime(2024, 6, 5, 9, 0, tzinfo=UTC)
        assert following_monday == datetime(2024, 6, 10, 9, 0, tzinfo=UTC)

    def test_monthly_day_clamped_to_month_length(self):
        schedule = ScheduleConfig(
            frequency=ScheduleFrequency.MONTHS, start_time="00:00", day_of_month=31
        )
        reference = datetime(2024, 1, 31, 12, 0, tzinfo=UTC)

        february = first_due(schedule, reference)

        assert february == datetime(2024, 2, 29, 0, 0, tzinfo=UTC)
        assert next_due(schedule, february) == datetime(2024, 3, 31, 0, 0, tzinfo=UTC)


class TestNextDue:
    """Tests for recomputation from the original due time."""

    def test_late_trigger_does_not_drift(self):
        """A run fired 7.5 minutes late keeps the 15-minute grid."""
        schedule = ScheduleConfig(frequency=ScheduleFrequency.MINUTES, interval=15)
        due = datetime(2024, 6, 3, 10, 0, tzinfo=UTC)
        fired_at = due + timedelta(minutes=7, seconds=30)

        assert advance_past(schedule, due, fired_at) == datetime(2024, 6, 3, 10, 15, tzinfo=UTC)

    def test_missed_slots_collapse_into_one(self):
        """After downtime the next due time is the first grid slot in the future."""
        schedule = ScheduleConfig(frequency=ScheduleFrequency.HOURS, interval=1)
        due = datetime(2024, 6, 3, 10, 0, tzinfo=UTC)
        now = datetime(2024, 6, 3, 13, 20, tzinfo=UTC)

        assert advance_past(schedule, due, now) == datetime(2024, 6, 3, 14, 0, tzinfo=UTC)

    def test_missed_daily_slots(self):
        schedule = ScheduleConfig(frequency=ScheduleFrequency.DAYS, start_time="06:00")
        due = datetime(2024, 6, 1, 6, 0, tzinfo=UTC)
        now = datetime(2024, 6, 3, 7, 0, tzinfo=UTC)

        assert advance_past(schedule, due, now) == datetime(2024, 6, 4, 6, 0, tzinfo=UTC)

    def test_next_due_is_pure(self):
        schedule = ScheduleConfig(frequency=ScheduleFrequency.DAYS, interval=3)
        due = datetime(2024, 6, 3, 10, 0, tzinfo=UTC)

        assert next_due(schedule, due) == next_due(schedule, due)
        assert next_due(schedule, due) == datetime(2024, 6, 6, 10, 0, tzinfo=UTC)


class TestMonthlyAnchor:
    """Tests for month-end handling of monthly schedules."""

    def test_day_31_steps_through_short_months(self):
        schedule = ScheduleConfig(
            frequency=ScheduleFrequency.MONTHS, start_time="08:00", day_of_month=31
        )
        due = datetime(2024, 1, 31, 8, 0, tzinfo=UTC)

        steps = []
        for _ in range(3):
            due = next_due(schedule, due)
            steps.append(due)

        assert steps == [
            datetime(2024, 2, 29, 8, 0, tzinfo=UTC),
            datetime(2024, 3, 31, 8, 0, tzinfo=UTC),
            datetime(2024, 4, 30, 8, 0, tzinfo=UTC),
        ]

    def test_open_day_is_pinned_to_creation_day(self):
        """A schedule created on Jan 31 keeps running on the last day of each month."""
        open_day = ScheduleConfig(frequency=ScheduleFrequency.MONTHS, start_time="08:00")
        created = datetime(2024, 1, 31, 7, 0, tzinfo=UTC)

        schedule = pin_monthly_anchor(open_day, created)
        due = first_due(schedule, created)
        following = advance_past(schedule, due, datetime(2024, 3, 1, tzinfo=UTC))

        assert schedule.day_of_month == 31
        assert due == datetime(2024, 1, 31, 8, 0, tzinfo=UTC)
        assert following == datetime(2024, 3, 31, 8, 0, tzinfo=UTC)
        assert next_due(schedule, following) == datetime(2024, 4, 30, 8, 0, tzinfo=UTC)

    def test_pin_uses_schedule_timezone(self):
        open_day = ScheduleConfig(frequency=ScheduleFrequency.MONTHS, timezone="Asia/Tokyo")

        schedule = pin_monthly_anchor(open_day, datetime(2024, 1, 31, 20, 0, tzinfo=UTC))

        assert schedule.day_of_month == 1

    def test_explicit_day_and_other_frequencies_untouched(self):
        monthly = ScheduleConfig(frequency=ScheduleFrequency.MONTHS, day_of_month=15)
        daily = ScheduleConfig(frequency=ScheduleFrequency.DAYS)
        reference = datetime(2024, 1, 31, tzinfo=UTC)

        assert pin_monthly_anchor(monthly, reference) is monthly
        assert pin_monthly_anchor(daily, reference) is daily


class TestValidateSchedule:
    """Tests for schedule validation."""

    @pytest.mark.parametrize(
        "schedule",
        [
            ScheduleConfig(frequency=ScheduleFrequency.HOURS, interval=0),
            ScheduleConfig(frequency=ScheduleFrequency.DAYS, start_time="25:00"),
            ScheduleConfig(frequency=ScheduleFrequency.DAYS, timezone="Mars/Olympus"),
            ScheduleConfig(frequency=ScheduleFrequency.WEEKS, days_of_week=[7]),
            ScheduleConfig(frequency=ScheduleFrequency.MONTHS, day_of_month=0),
        ],
    )
    def test_rejects_invalid_schedule(self, schedule):
        with pytest.raises(ValueError):
            validate_schedule(schedule)

    def test_accepts_valid_schedule(self):
        validate_schedule(
            ScheduleConfig(
                frequency=ScheduleFrequency.WEEKS,
                start_time="07:30",
                timezone="America/New_York",
                days_of_week=[0, 6],
            )
        )
