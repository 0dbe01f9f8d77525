"""
Tests for fetch window computation.

Guards against:
  - Windows that reach past the reporting lag boundary
  - Backfill months that overlap or leave gaps
  - Initial position windows touching the campaign start date
  - Initial position windows cut short by the reporting lag
  - Traffic summaries including the month still being reported
  - A finished month fetched again as the running month
"""
from datetime import date

import pytest

from gsc_sync.exceptions import ConfigurationError
from gsc_sync.services.date_windows import (
    DateWindow,
    daily_target_window,
    initial_position_window,
    lag_boundary,
    monthly_backfill_windows,
    traffic_windows,
)

TODAY = date(2025, 6, 20)


# ────────────────────────────────────────────
# DATE WINDOW
# ────────────────────────────────────────────


class TestDateWindow:

    def test_half_open_interval(self):
        window = DateWindow(date(2025, 7, 1), date(2025, 8, 1))
        assert window.num_days == 31
        assert window.last_day == date(2025, 7, 31)
        assert window.label == "2025-07-01..2025-07-31"
        assert date(2025, 7, 31) in window
        assert date(2025, 8, 1) not in window
        assert window.days()[0] == date(2025, 7, 1)
        assert len(window.days()) == 31

    def test_end_before_start_is_rejected(self):
        with pytest.raises(ValueError):
            DateWindow(date(2025, 7, 2), date(2025, 7, 1))


# ────────────────────────────────────────────
# LAG BOUNDARY
# ────────────────────────────────────────────


class TestLagBoundary:

    def test_boundary_and_daily_target(self):
        assert lag_boundary(TODAY, 3) == date(2025, 6, 17)
        window = daily_target_window(TODAY, 3)
        assert window.start == date(2025, 6, 17)
        assert window.num_days == 1

    def test_negative_lag_is_rejected(self):
        with pytest.raises(ValueError):
            lag_boundary(TODAY, -1)


# ────────────────────────────────────────────
# HISTORICAL BACKFILL
# ────────────────────────────────────────────


class TestMonthlyBackfillWindows:

    def test_months_from_start_to_boundary(self):
        windows = monthly_backfill_windows(date(2025, 2, 10), lag_days=3, today=TODAY)

        assert [w.label for w in windows] == [
            "2025-02-10..2025-02-28",
            "2025-03-01..2025-03-31",
            "2025-04-01..2025-04-30",
            "2025-05-01..2025-05-31",
            "2025-06-01..2025-06-17",
        ]

    def test_windows_are_contiguous(self):
        windows = monthly_backfill_windows(date(2024, 11, 15), lag_days=3, today=TODAY)
        for previous, current in zip(windows, windows[1:]):
            assert previous.end == current.start
        assert windows[-1].last_day == lag_boundary(TODAY, 3)

    def test_start_after_boundary_has_nothing_to_backfill(self):
        assert monthly_backfill_windows(date(2025, 6, 19), lag_days=3, today=TODAY) == []

    def test_missing_start_date_is_a_configuration_error(self):
        with pytest.raises(ConfigurationError):
            monthly_backfill_windows(None, lag_days=3, today=TODAY)


# ────────────────────────────────────────────
# INITIAL POSITION
# ────────────────────────────────────────────


class TestInitialPositionWindow:

    def test_seven_days_before_start(self):
        window = initial_position_window(date(2025, 2, 10), days=7, lag_days=3, today=TODAY)
        assert window.start == date(2025, 2, 3)
        assert window.last_day == date(2025, 2, 9)
        assert date(2025, 2, 10) not in window

    def test_partially_reportable_window_is_not_used(self):
        # Boundary 2025-06-17: the window would end on 2025-06-18
        assert initial_position_window(date(2025, 6, 19), days=7, lag_days=3, today=TODAY) is None

    def test_window_ending_on_lag_boundary(self):
        window = initial_position_window(date(2025, 6, 18), days=7, lag_days=3, today=TODAY)
        assert window.start == date(2025, 6, 11)
        assert window.last_day == date(2025, 6, 17)

    def test_not_reportable_yet(self):
        assert initial_position_window(date(2025, 6, 25), days=7, lag_days=3, today=TODAY) is None


# ────────────────────────────────────────────
# TRAFFIC
# ────────────────────────────────────────────


class TestTrafficWindows:

    def test_twelve_elapsed_months_and_running_month(self):
        windows = traffic_windows(TODAY, lag_days=3, months=12)

        assert len(windows.monthly) == 12
        assert windows.monthly[0].label == "2024-06-01..2024-06-30"
        assert windows.monthly[-1].label == "2025-05-01..2025-05-31"
        assert windows.current_month.label == "2025-06-01..2025-06-17"
        assert windows.monthly_span == DateWindow(date(2024, 6, 1), date(2025, 6, 1))

    def test_running_month_is_never_summarised(self):
        windows = traffic_windows(date(2025, 6, 2), lag_days=3, months=12)
        # Boundary 2025-05-30: May is not over yet
        assert windows.monthly[-1].label == "2025-04-01..2025-04-30"

    def test_month_ending_on_boundary_counts_as_elapsed(self):
        windows = traffic_windows(date(2025, 6, 3), lag_days=3, months=12)
        # Boundary 2025-05-31
        assert windows.monthly[-1].label == "2025-05-01..2025-05-31"
        assert windows.current_month is None
