"""Tests for cycle date predictions."""

from __future__ import annotations

from datetime import date, datetime, timedelta

import pytest

from src.reminders import predictor
from src.reminders.predictor import (
    cycle_day,
    fertile_window,
    next_period,
    ovulation,
    predict,
    same_calendar_day,
    to_calendar_day,
)
from src.reminders.tests.conftest import (
    TEST_NEXT_PERIOD,
    TEST_OVULATION,
    TEST_PERIOD_START,
    TEST_WINDOW_START,
    make_profile,
)


class TestNextPeriod:
    def test_adds_cycle_length(self) -> None:
        assert next_period(TEST_PERIOD_START, 28) == TEST_NEXT_PERIOD

    def test_crosses_month_and_year(self) -> None:
        assert next_period(date(2023, 12, 20), 30) == date(2024, 1, 19)

    def test_absent_start_returns_none(self) -> None:
        assert next_period(None, 28) is None

    @pytest.mark.parametrize("length", [0, -5])
    def test_non_positive_length_returns_none(self, length: int) -> None:
        assert next_period(TEST_PERIOD_START, length) is None

    def test_time_of_day_is_ignored(self) -> None:
        """A datetime late in the day predicts the same date as its date."""
        late = datetime(2024, 1, 1, 23, 59)
        assert next_period(late, 28) == TEST_NEXT_PERIOD


class TestOvulation:
    @pytest.mark.parametrize("length", [21, 28, 35, 45])
    def test_fourteen_days_before_next_period(self, length: int) -> None:
        expected = TEST_PERIOD_START + timedelta(days=length - 14)
        assert ovulation(TEST_PERIOD_START, length) == expected
        assert next_period(TEST_PERIOD_START, length) - ovulation(TEST_PERIOD_START, length) == timedelta(days=14)

    def test_standard_cycle(self) -> None:
        assert ovulation(TEST_PERIOD_START, 28) == TEST_OVULATION

    def test_absent_start_returns_none(self) -> None:
        assert ovulation(None, 28) is None

    def test_short_cycle_precedes_period_start(self) -> None:
        """Cycles shorter than the luteal phase are not clamped."""
        result = ovulation(TEST_PERIOD_START, 10)
        assert result == TEST_PERIOD_START - timedelta(days=4)
        assert result < TEST_PERIOD_START

    def test_cycle_of_exactly_fourteen_days(self) -> None:
        assert ovulation(TEST_PERIOD_START, 14) == TEST_PERIOD_START


class TestFertileWindow:
    def test_spans_ovulation_plus_minus_two(self) -> None:
        window = fertile_window(TEST_PERIOD_START, 28)
        assert window is not None
        assert window.start == TEST_WINDOW_START
        assert window.end == date(2024, 1, 17)
        assert window.ovulation == TEST_OVULATION
        assert window.length_days == 5

    @pytest.mark.parametrize("length", [15, 24, 31, 40])
    def test_window_bounds_follow_ovulation(self, length: int) -> None:
        window = fertile_window(TEST_PERIOD_START, length)
        ov = ovulation(TEST_PERIOD_START, length)
        assert window.start == ov - timedelta(days=2)
        assert window.end == ov + timedelta(days=2)

    def test_absent_start_returns_none(self) -> None:
        assert fertile_window(None, 28) is None


class TestCalendarHelpers:
    def test_to_calendar_day(self) -> None:
        assert to_calendar_day(datetime(2024, 3, 5, 8, 30)) == date(2024, 3, 5)
        assert to_calendar_day(date(2024, 3, 5)) == date(2024, 3, 5)
        assert to_calendar_day(None) is None

    def test_same_calendar_day(self) -> None:
        assert same_calendar_day(datetime(2024, 3, 5, 0, 1), date(2024, 3, 5))
        assert not same_calendar_day(date(2024, 3, 5), date(2024, 3, 6))
        assert not same_calendar_day(None, date(2024, 3, 5))

    def test_cycle_day_is_one_indexed(self) -> None:
        assert cycle_day(TEST_PERIOD_START, TEST_PERIOD_START) == 1
        assert cycle_day(TEST_PERIOD_START, TEST_OVULATION) == 15


class TestPredict:
    def test_bundles_all_predictions(self) -> None:
        prediction = predict(make_profile())
        assert prediction.next_period == TEST_NEXT_PERIOD
        assert prediction.period_end == date(2024, 2, 2)  # 5-day period
        assert prediction.ovulation == TEST_OVULATION
        assert prediction.fertile_window.start == TEST_WINDOW_START

    def test_empty_when_start_absent(self) -> None:
        prediction = predict(make_profile(last_period_start=None))
        assert prediction == predictor.CyclePrediction()
