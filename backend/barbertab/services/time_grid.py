# Overview: Pure placement of appointments on the daily schedule grid.

"""
Time grid placement.

Stateless functions that turn a day's appointments into rectangles for a
fixed daily window (default 08:00-21:00, one row per hour):

    top_offset_percent = (start_hour_fraction - window_start) / window_size * 100
    height_percent     = duration_hours / window_size * 100

Appointments are grouped strictly by staff into columns. There is no
stacking: two overlapping appointments for the same staff member get
identical horizontal geometry and overlap visually. Offsets outside the
window are not clamped; the renderer clips them.

The same interval logic backs ``find_conflicts``, the sorted-interval scan
used at booking time to refuse double bookings.
"""

from __future__ import annotations

from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from typing import Any, Iterable, Sequence

DEFAULT_WINDOW_START_HOUR = 8
DEFAULT_WINDOW_END_HOUR = 21


@dataclass(frozen=True)
class Placement:
    appointment_id: Any
    staff_id: Any
    staff_column_index: int
    top_offset_percent: float
    height_percent: float
    start_hour: float
    duration_hours: float

    @property
    def end_hour(self) -> float:
        return self.start_hour + self.duration_hours

    def to_dict(self) -> dict:
        return asdict(self)


def _field(item, name: str, default=None):
    if isinstance(item, dict):
        return item.get(name, default)
    return getattr(item, name, default)


def hour_fraction(moment: datetime) -> float:
    """10:30 -> 10.5"""
    return moment.hour + moment.minute / 60 + moment.second / 3600


def _duration_hours(item) -> float:
    hours = _field(item, "duration_hours")
    if hours is None:
        minutes = _field(item, "duration_minutes")
        if minutes is None:
            raise ValueError("appointment has no duration")
        hours = minutes / 60
    return float(hours)


def place_appointment(
    start_time: datetime,
    duration_hours: float,
    *,
    window_start_hour: int = DEFAULT_WINDOW_START_HOUR,
    window_end_hour: int = DEFAULT_WINDOW_END_HOUR,
) -> tuple[float, float]:
    """Returns (top_offset_percent, height_percent) for one interval."""
    window_size = window_end_hour - window_start_hour
    if window_size <= 0:
        raise ValueError("window_end_hour must be after window_start_hour")
    top = (hour_fraction(start_time) - window_start_hour) / window_size * 100
    height = duration_hours / window_size * 100
    return top, height


def place_appointments(
    appointments: Iterable,
    *,
    window_start_hour: int = DEFAULT_WINDOW_START_HOUR,
    window_end_hour: int = DEFAULT_WINDOW_END_HOUR,
    staff_order: Sequence | None = None,
) -> list[Placement]:
    """
    Map appointments (objects or dicts exposing id, staff_id, start_time and
    duration_hours or duration_minutes) onto grid rectangles.

    staff_order fixes the column order; appointments whose staff is not in an
    explicit order are skipped. Without it columns follow first appearance.
    """
    columns: dict = {}
    if staff_order is not None:
        columns = {staff_id: idx for idx, staff_id in enumerate(staff_order)}

    placements: list[Placement] = []
    for item in appointments:
        staff_id = _field(item, "staff_id")
        if staff_id not in columns:
            if staff_order is not None:
                continue
            columns[staff_id] = len(columns)

        start_time = _field(item, "start_time")
        duration = _duration_hours(item)
        top, height = place_appointment(
            start_time,
            duration,
            window_start_hour=window_start_hour,
            window_end_hour=window_end_hour,
        )
        placements.append(
            Placement(
                appointment_id=_field(item, "id"),
                staff_id=staff_id,
                staff_column_index=columns[staff_id],
                top_offset_percent=top,
                height_percent=height,
                start_hour=hour_fraction(start_time),
                duration_hours=duration,
            )
        )
    return placements


def find_overlaps(placements: Iterable[Placement]) -> list[tuple[Any, Any]]:
    """
    Pairs of appointment ids in the same column whose intervals intersect.

    Used to flag visually overlapping blocks; placement itself never moves them.
    """
    by_column: dict[int, list[Placement]] = {}
    for p in placements:
        by_column.setdefault(p.staff_column_index, []).append(p)

    pairs: list[tuple[Any, Any]] = []
    for column in by_column.values():
        column.sort(key=lambda p: (p.start_hour, p.end_hour))
        active: list[Placement] = []
        for p in column:
            active = [a for a in active if a.end_hour > p.start_hour]
            for a in active:
                pairs.append((a.appointment_id, p.appointment_id))
            active.append(p)
    return pairs


def find_conflicts(
    existing: Iterable[tuple[datetime, datetime, Any]],
    start: datetime,
    end: datetime,
) -> list:
    """
    Sorted-interval scan: ids of existing (start, end, id) intervals that
    intersect [start, end). Touching intervals (one ends when the next
    starts) do not conflict.
    """
    conflicts = []
    for other_start, other_end, other_id in sorted(existing, key=lambda iv: iv[0]):
        if other_start >= end:
            break
        if other_end > start:
            conflicts.append(other_id)
    return conflicts


def day_bounds(day) -> tuple[datetime, datetime]:
    """[00:00, next day 00:00) for a date."""
    start = datetime(day.year, day.month, day.day)
    return start, start + timedelta(days=1)
