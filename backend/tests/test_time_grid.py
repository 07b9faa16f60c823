"""
Tests for schedule grid placement.

Placement is a pure function: no app or database needed.
"""

from datetime import datetime

import pytest

from barbertab.services import time_grid
from barbertab.services.time_grid import (
    find_conflicts,
    find_overlaps,
    place_appointment,
    place_appointments,
)


DAY = datetime(2026, 10, 20)


def at(hour, minute=0):
    return DAY.replace(hour=hour, minute=minute)


class TestPlaceAppointment:
    """top/height math over the default 08:00-21:00 window."""

    def test_start_of_window_one_hour(self):
        top, height = place_appointment(at(8), 1)
        assert top == 0
        assert height == pytest.approx(100 / 13)

    def test_full_window_is_full_height(self):
        top, height = place_appointment(at(8), 13)
        assert top == 0
        assert height == pytest.approx(100)

    def test_half_hour_start(self):
        top, _ = place_appointment(at(10, 30), 0.5)
        assert top == pytest.approx((10.5 - 8) / 13 * 100)

    def test_out_of_window_not_clamped(self):
        top, _ = place_appointment(at(7), 1)
        assert top == pytest.approx(-100 / 13)

        top, _ = place_appointment(at(21, 30), 1)
        assert top > 100

    def test_custom_window(self):
        top, height = place_appointment(at(12), 2, window_start_hour=10, window_end_hour=20)
        assert top == pytest.approx(20)
        assert height == pytest.approx(20)

    def test_empty_window_rejected(self):
        with pytest.raises(ValueError):
            place_appointment(at(9), 1, window_start_hour=10, window_end_hour=10)


class TestPlaceAppointments:

    def test_columns_follow_first_appearance(self):
        placements = place_appointments([
            {"id": 1, "staff_id": 7, "start_time": at(9), "duration_minutes": 30},
            {"id": 2, "staff_id": 3, "start_time": at(9), "duration_minutes": 30},
            {"id": 3, "staff_id": 7, "start_time": at(11), "duration_minutes": 60},
        ])
        assert [p.staff_column_index for p in placements] == [0, 1, 0]

    def test_explicit_staff_order_and_unknown_staff_skipped(self):
        placements = place_appointments(
            [
                {"id": 1, "staff_id": 7, "start_time": at(9), "duration_hours": 1},
                {"id": 2, "staff_id": 99, "start_time": at(9), "duration_hours": 1},
            ],
            staff_order=[3, 7],
        )
        assert len(placements) == 1
        assert placements[0].appointment_id == 1
        assert placements[0].staff_column_index == 1

    def test_overlaps_keep_identical_geometry(self):
        placements = place_appointments([
            {"id": 1, "staff_id": 7, "start_time": at(10), "duration_minutes": 60},
            {"id": 2, "staff_id": 7, "start_time": at(10), "duration_minutes": 60},
        ])
        a, b = placements
        assert (a.staff_column_index, a.top_offset_percent, a.height_percent) == (
            b.staff_column_index,
            b.top_offset_percent,
            b.height_percent,
        )

    def test_missing_duration_rejected(self):
        with pytest.raises(ValueError):
            place_appointments([{"id": 1, "staff_id": 7, "start_time": at(10)}])

    def test_to_dict(self):
        placement = place_appointments([
            {"id": 5, "staff_id": 1, "start_time": at(8), "duration_hours": 1},
        ])[0]
        data = placement.to_dict()
        assert data["appointment_id"] == 5
        assert data["top_offset_percent"] == 0
        assert placement.end_hour == 9


class TestOverlapsAndConflicts:

    def test_find_overlaps_same_column_only(self):
        placements = place_appointments([
            {"id": 1, "staff_id": 1, "start_time": at(10), "duration_minutes": 60},
            {"id": 2, "staff_id": 1, "start_time": at(10, 30), "duration_minutes": 30},
            {"id": 3, "staff_id": 2, "start_time": at(10), "duration_minutes": 60},
            {"id": 4, "staff_id": 1, "start_time": at(11), "duration_minutes": 30},
        ])
        assert find_overlaps(placements) == [(1, 2)]

    def test_find_conflicts(self):
        existing = [
            (at(10), at(10, 30), 1),
            (at(11), at(12), 2),
        ]
        assert find_conflicts(existing, at(10, 15), at(10, 45)) == [1]
        assert find_conflicts(existing, at(9), at(13)) == [1, 2]

    def test_touching_intervals_do_not_conflict(self):
        existing = [(at(10), at(10, 30), 1)]
        assert find_conflicts(existing, at(10, 30), at(11)) == []
        assert find_conflicts(existing, at(9, 30), at(10)) == []

    def test_day_bounds(self):
        start, end = time_grid.day_bounds(DAY.date())
        assert start == DAY
        assert (end - start).days == 1
