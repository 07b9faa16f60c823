"""
Booking tests: appointment + opening tab, client resolution, staff
availability, partial-failure reporting and the daily schedule.
"""

from datetime import date, datetime

import pytest
from sqlalchemy.exc import SQLAlchemyError

from barbertab.errors import ConflictError, DependencyFailure, InvalidState, NotFound, ValidationError
from barbertab.models import Appointment, Client, Tab, TabLineItem
from barbertab.models.scheduling import (
    APPOINTMENT_CANCELLED,
    APPOINTMENT_COMPLETED,
    APPOINTMENT_CONFIRMED,
    APPOINTMENT_PENDING,
)
from barbertab.models.tabs import TAB_OPEN, TAB_ORIGIN_SCHEDULED
from barbertab.services import booking_service, tab_service


def book(service, staff, start="2026-10-20T10:00:00", **kwargs):
    kwargs.setdefault("client_name", "Carlos")
    kwargs.setdefault("client_phone", "11 98888-7777")
    return booking_service.create_booking(
        service_id=service.id,
        staff_id=staff.id,
        start_time=start,
        **kwargs,
    )


class TestCreateBooking:

    def test_new_client_booking(self, db_session, haircut, barber):
        appointment, tab = book(haircut, barber)

        assert appointment.status == APPOINTMENT_CONFIRMED
        assert appointment.start_time == datetime(2026, 10, 20, 10, 0)
        assert appointment.duration_minutes == 30
        assert appointment.staff_id == barber.id

        assert tab.status == TAB_OPEN
        assert tab.origin == TAB_ORIGIN_SCHEDULED
        assert tab.appointment_id == appointment.id
        assert tab.total_cents == 4500
        assert len(tab.lines) == 1
        line = tab.lines[0]
        assert line.name == "Corte"
        assert line.unit_price_cents == 4500
        assert line.responsible_staff_id == barber.id

        client = db_session.get(Client, appointment.client_id)
        assert client.name == "Carlos"
        assert client.phone == "11 98888-7777"

    def test_existing_client_by_name_is_reused(self, db_session, haircut, barber, regular_client):
        appointment, _ = book(haircut, barber, client_name="  ana souza ", client_phone=None)
        assert appointment.client_id == regular_client.id
        assert db_session.query(Client).count() == 1

    def test_explicit_client_id(self, haircut, barber, regular_client):
        appointment, tab = book(haircut, barber, client_id=regular_client.id, client_name=None)
        assert appointment.client_id == regular_client.id
        assert tab.client_id == regular_client.id

    def test_ambiguous_client_name(self, db_session, haircut, barber):
        db_session.add_all([Client(name="Carlos", phone="1"), Client(name="carlos", phone="2")])
        db_session.commit()
        with pytest.raises(ConflictError) as exc_info:
            book(haircut, barber)
        assert len(exc_info.value.details["client_ids"]) == 2
        assert db_session.query(Appointment).count() == 0

    def test_new_client_requires_phone(self, db_session, haircut, barber):
        with pytest.raises(ValidationError):
            book(haircut, barber, client_phone=None)
        assert db_session.query(Client).count() == 0
        assert db_session.query(Appointment).count() == 0

    def test_phone_optional_when_configured(self, app, monkeypatch, haircut, barber):
        monkeypatch.setitem(app.config, "REQUIRE_PHONE_FOR_NEW_CLIENT", False)
        appointment, _ = book(haircut, barber, client_phone=None)
        assert appointment.client.phone is None

    def test_client_required(self, haircut, barber):
        with pytest.raises(ValidationError):
            book(haircut, barber, client_name="   ")

    def test_unknown_service(self, db_session, barber):
        with pytest.raises(NotFound):
            booking_service.create_booking(
                service_id=999, staff_id=barber.id, start_time="2026-10-20T10:00:00",
                client_name="Carlos", client_phone="1",
            )

    def test_inactive_staff(self, db_session, haircut, barber):
        barber.status = "inactive"
        db_session.commit()
        with pytest.raises(NotFound):
            book(haircut, barber)

    def test_invalid_start_time(self, db_session, haircut, barber):
        with pytest.raises(ValidationError):
            book(haircut, barber, start="tomorrow at ten")
        assert db_session.query(Client).count() == 0

    def test_offset_start_time_converted_to_shop_time(self, haircut, barber):
        appointment, _ = book(haircut, barber, start="2026-10-20T13:00:00+03:00")
        assert appointment.start_time == datetime(2026, 10, 20, 10, 0)

    def test_duration_override(self, haircut, barber):
        appointment, tab = book(haircut, barber, duration_minutes=45)
        assert appointment.duration_minutes == 45
        assert tab.total_cents == 4500

    def test_invalid_duration(self, haircut, barber):
        with pytest.raises(ValidationError):
            book(haircut, barber, duration_minutes=0)

    def test_pending_status(self, haircut, barber):
        appointment, tab = book(haircut, barber, status=APPOINTMENT_PENDING)
        assert appointment.status == APPOINTMENT_PENDING
        assert tab.status == TAB_OPEN

    def test_terminal_starting_status_rejected(self, db_session, haircut, barber):
        with pytest.raises(ValidationError):
            book(haircut, barber, status=APPOINTMENT_COMPLETED)
        assert db_session.query(Client).count() == 0
        assert db_session.query(Appointment).count() == 0


class TestAvailability:

    def test_overlapping_booking_refused(self, db_session, haircut, barber):
        first, _ = book(haircut, barber)
        with pytest.raises(ConflictError) as exc_info:
            book(haircut, barber, start="2026-10-20T10:15:00", client_name="Diego", client_phone="2")
        assert exc_info.value.details["conflicting_appointment_ids"] == [first.id]
        assert db_session.query(Appointment).count() == 1
        assert db_session.query(Tab).count() == 1

    def test_back_to_back_allowed(self, haircut, barber):
        book(haircut, barber)
        appointment, _ = book(haircut, barber, start="2026-10-20T10:30:00", client_name="Diego", client_phone="2")
        assert appointment.start_time == datetime(2026, 10, 20, 10, 30)

    def test_other_staff_free(self, haircut, barber, second_barber):
        book(haircut, barber)
        appointment, _ = book(haircut, second_barber, client_name="Diego", client_phone="2")
        assert appointment.staff_id == second_barber.id

    def test_cancelled_appointment_frees_slot(self, haircut, barber):
        first, _ = book(haircut, barber)
        booking_service.update_appointment_status(first.id, APPOINTMENT_CANCELLED)
        appointment, _ = book(haircut, barber, client_name="Diego", client_phone="2")
        assert appointment.id != first.id

    def test_late_booking_blocks_next_morning(self, db_session, haircut, barber):
        late, _ = book(haircut, barber, start="2026-10-20T23:30:00", duration_minutes=120)
        with pytest.raises(ConflictError) as exc_info:
            book(haircut, barber, start="2026-10-21T00:30:00", client_name="Diego", client_phone="2")
        assert exc_info.value.details["conflicting_appointment_ids"] == [late.id]

        appointment, _ = book(haircut, barber, start="2026-10-21T01:30:00", client_name="Diego", client_phone="2")
        assert appointment.start_time == datetime(2026, 10, 21, 1, 30)

    def test_full_day_booking_ending_at_start_is_free(self, haircut, barber):
        book(haircut, barber, start="2026-10-19T10:00:00", duration_minutes=24 * 60)
        appointment, _ = book(haircut, barber, client_name="Diego", client_phone="2")
        assert appointment.start_time == datetime(2026, 10, 20, 10, 0)

    def test_double_booking_when_allowed(self, app, monkeypatch, db_session, haircut, barber):
        monkeypatch.setitem(app.config, "ALLOW_DOUBLE_BOOKING", True)
        book(haircut, barber)
        book(haircut, barber, client_name="Diego", client_phone="2")
        assert db_session.query(Appointment).count() == 2


class TestPartialFailure:

    @staticmethod
    def _boom(*args):
        raise SQLAlchemyError("boom")

    def test_atomic_booking_rolls_back(self, db_session, monkeypatch, haircut, barber):
        monkeypatch.setattr(booking_service, "_insert_tab", self._boom)

        with pytest.raises(DependencyFailure) as exc_info:
            book(haircut, barber)

        assert exc_info.value.status_code == 502
        assert exc_info.value.details == {"stage": "tab"}
        assert db_session.query(Client).count() == 0
        assert db_session.query(Appointment).count() == 0
        assert db_session.query(Tab).count() == 0

    def test_non_atomic_booking_reports_persisted_ids(self, app, db_session, monkeypatch, haircut, barber):
        monkeypatch.setitem(app.config, "BOOKING_ATOMIC", False)
        monkeypatch.setattr(booking_service, "_insert_service_line", self._boom)

        with pytest.raises(DependencyFailure) as exc_info:
            book(haircut, barber)

        details = exc_info.value.details
        assert details["stage"] == "line_item"
        client = db_session.query(Client).one()
        appointment = db_session.query(Appointment).one()
        tab = db_session.query(Tab).one()
        assert details["client_id"] == client.id
        assert details["appointment_id"] == appointment.id
        assert details["tab_id"] == tab.id
        # No compensation: the tab stays behind without its service line
        assert db_session.query(TabLineItem).count() == 0


class TestAppointmentStatus:

    def test_complete(self, haircut, barber):
        appointment, _ = book(haircut, barber)
        appointment = booking_service.update_appointment_status(appointment.id, APPOINTMENT_COMPLETED)
        assert appointment.status == APPOINTMENT_COMPLETED

    def test_terminal_status(self, haircut, barber):
        appointment, _ = book(haircut, barber)
        booking_service.update_appointment_status(appointment.id, APPOINTMENT_COMPLETED)
        with pytest.raises(InvalidState):
            booking_service.update_appointment_status(appointment.id, APPOINTMENT_CANCELLED)

    def test_unknown_status(self, haircut, barber):
        appointment, _ = book(haircut, barber)
        with pytest.raises(ValidationError):
            booking_service.update_appointment_status(appointment.id, "no_show")

    def test_missing_appointment(self, db_session):
        with pytest.raises(NotFound):
            booking_service.update_appointment_status(999, APPOINTMENT_COMPLETED)

    def test_cancel_leaves_tab_open(self, haircut, barber):
        appointment, tab = book(haircut, barber)
        booking_service.update_appointment_status(appointment.id, APPOINTMENT_CANCELLED)
        assert tab_service.get_tab(tab.id).status == TAB_OPEN


class TestSchedule:

    def test_list_schedule(self, haircut, barber, second_barber):
        late, _ = book(haircut, barber, start="2026-10-20T15:00:00")
        early, _ = book(haircut, second_barber, start="2026-10-20T09:00:00", client_name="Diego", client_phone="2")
        book(haircut, barber, start="2026-10-21T09:00:00", client_name="Eva", client_phone="3")

        day = booking_service.list_schedule(date(2026, 10, 20))
        assert [a.id for a in day] == [early.id, late.id]

        only_barber = booking_service.list_schedule(date(2026, 10, 20), staff_id=barber.id)
        assert [a.id for a in only_barber] == [late.id]

    def test_schedule_grid(self, haircut, barber, second_barber):
        appointment, _ = book(haircut, second_barber)

        grid = booking_service.build_schedule_grid(date(2026, 10, 20))
        assert grid["window"] == {"start_hour": 8, "end_hour": 21, "rows": 13}
        assert [c["staff_id"] for c in grid["columns"]] == [barber.id, second_barber.id]
        assert len(grid["placements"]) == 1
        placement = grid["placements"][0]
        assert placement["appointment_id"] == appointment.id
        assert placement["staff_column_index"] == 1
        assert placement["top_offset_percent"] == pytest.approx(2 / 13 * 100)
        assert placement["height_percent"] == pytest.approx(0.5 / 13 * 100)
        assert grid["overlaps"] == []

    def test_schedule_grid_keeps_inactive_staff_with_appointments(self, db_session, haircut, barber, second_barber):
        appointment, _ = book(haircut, barber)
        barber.status = "inactive"
        db_session.commit()

        grid = booking_service.build_schedule_grid(date(2026, 10, 20))
        assert [(c["staff_id"], c["active"]) for c in grid["columns"]] == [
            (second_barber.id, True),
            (barber.id, False),
        ]
        assert grid["placements"][0]["appointment_id"] == appointment.id
        assert grid["placements"][0]["staff_column_index"] == 1

        empty_day = booking_service.build_schedule_grid(date(2026, 10, 21))
        assert [c["staff_id"] for c in empty_day["columns"]] == [second_barber.id]
