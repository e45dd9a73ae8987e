"""
Unit tests for reminder recurrence calculation.

Covers:
- daily/weekly closed-form stepping and skipped-occurrence counts
- month-end clamping for monthly and yearly series
- anchors already in the future are returned unchanged
- error taxonomy for one-time, unknown and invalid rules
"""

from datetime import datetime, timezone

import pytest

from knowledge_service.errors import ConfigurationError, PastDateError, ValidationError
from knowledge_service.utils.recurrence import (
    advance_recurrence,
    compute_next_occurrence,
    shift,
    validate_recurrence,
)


def _utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class TestFixedLengthSteps:
    def test_daily_skips_missed_occurrences(self):
        step = advance_recurrence(_utc(2025, 3, 10, 9), "daily", 1, _utc(2025, 3, 13, 10))
        assert step.next_occurrence == _utc(2025, 3, 14, 9)
        assert step.steps == 4
        assert step.skipped == 3

    def test_anchor_equal_to_now_moves_one_interval(self):
        step = advance_recurrence(_utc(2025, 3, 10, 9), "weekly", 2, _utc(2025, 3, 10, 9))
        assert step.next_occurrence == _utc(2025, 3, 24, 9)
        assert step.skipped == 0

    def test_result_is_strictly_after_now(self):
        now = _utc(2025, 3, 17, 9)
        result = compute_next_occurrence(_utc(2025, 3, 10, 9), "weekly", 1, now)
        assert result > now
        assert result == _utc(2025, 3, 24, 9)

    def test_future_anchor_unchanged(self):
        anchor = _utc(2025, 4, 1, 8, 30)
        step = advance_recurrence(anchor, "daily", 1, _utc(2025, 3, 1))
        assert step.next_occurrence == anchor
        assert step.steps == 0


class TestCalendarSteps:
    def test_jan_31_monthly_clamps_to_end_of_february(self):
        result = compute_next_occurrence(_utc(2025, 1, 31, 9), "monthly", 1, _utc(2025, 2, 1))
        assert result == _utc(2025, 2, 28, 9)

    def test_jan_31_monthly_leap_year(self):
        result = compute_next_occurrence(_utc(2024, 1, 31, 9), "monthly", 1, _utc(2024, 2, 1))
        assert result == _utc(2024, 2, 29, 9)

    def test_clamping_is_computed_from_anchor_not_previous_candidate(self):
        step = advance_recurrence(_utc(2025, 1, 31, 9), "monthly", 1, _utc(2025, 3, 1))
        assert step.next_occurrence == _utc(2025, 3, 31, 9)
        assert step.skipped == 1

    def test_quarterly_interval(self):
        result = compute_next_occurrence(_utc(2025, 1, 15), "monthly", 3, _utc(2025, 6, 1))
        assert result == _utc(2025, 7, 15)

    def test_feb_29_yearly_in_common_year(self):
        result = compute_next_occurrence(_utc(2024, 2, 29, 12), "yearly", 1, _utc(2024, 3, 1))
        assert result == _utc(2025, 2, 28, 12)

    def test_far_past_anchor_lands_on_next_month(self):
        step = advance_recurrence(_utc(2020, 5, 5, 7), "monthly", 1, _utc(2025, 3, 10))
        assert step.next_occurrence == _utc(2025, 4, 5, 7)
        assert step.skipped == step.steps - 1

    def test_shift_keeps_time_and_tz(self):
        shifted = shift(_utc(2025, 1, 31, 23, 45), "monthly", 1)
        assert shifted == _utc(2025, 2, 28, 23, 45)
        assert shifted.tzinfo == timezone.utc


class TestErrors:
    def test_one_time_in_past_raises(self):
        with pytest.raises(PastDateError):
            advance_recurrence(_utc(2025, 1, 1), "none", 1, _utc(2025, 2, 1))

    def test_unknown_type_is_configuration_error(self):
        with pytest.raises(ConfigurationError):
            advance_recurrence(_utc(2025, 1, 1), "hourly", 1, _utc(2025, 2, 1))

    def test_zero_interval_is_validation_error(self):
        with pytest.raises(ValidationError):
            validate_recurrence("daily", 0)

    def test_shift_unknown_type(self):
        with pytest.raises(ConfigurationError):
            shift(_utc(2025, 1, 1), "none", 1)
