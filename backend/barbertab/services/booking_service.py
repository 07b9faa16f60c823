# Overview: Service-layer operations for bookings; appointment + initial tab creation and schedule queries.

"""
Booking Service - "client C receives service X from staff Y at time T".

A booking is an Appointment plus an open Tab pre-populated with the booked
service as its first line item. Steps, in order:

    1. resolve or create the Client
    2. re-check staff availability under the write lock, then insert the
       Appointment (status=confirmed unless pending is asked for)
    3. insert the Tab (origin=scheduled, status=open)
    4. snapshot the service name/price into one line item
    5. recompute the tab totals

All validation (client, service, staff, start time, staff availability)
happens before step 1 writes anything. Availability is checked again in
the write transaction (BEGIN IMMEDIATE on SQLite, a locked staff row
elsewhere) so concurrent bookings of one slot serialize.

ATOMICITY:
- BOOKING_ATOMIC=True (default): the five steps share one DB transaction.
  A failing step rolls everything back and raises DependencyFailure naming
  the stage; nothing is persisted.
- BOOKING_ATOMIC=False: each step commits on its own. A failing step raises
  DependencyFailure carrying the ids already persisted (client_id,
  appointment_id, tab_id). Nothing is compensated; retrying the whole
  booking may duplicate the partial rows.
"""

from __future__ import annotations

from datetime import date, timedelta

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Appointment, Client, Staff, Tab, TabLineItem
from ..models.scheduling import (
    APPOINTMENT_CANCELLED,
    APPOINTMENT_COMPLETED,
    APPOINTMENT_CONFIRMED,
    APPOINTMENT_PENDING,
    APPOINTMENT_STATUSES,
)
from ..models.tabs import LINE_KIND_SERVICE, TAB_OPEN, TAB_ORIGIN_SCHEDULED
from ..errors import ConflictError, DependencyFailure, InvalidState, NotFound, ValidationError
from ..validation import coerce_int
from barbertab.time_utils import parse_local_datetime
from . import catalog_service, time_grid
from .concurrency import begin_immediate, guarded_transition, lock_for_update, run_with_retry
from .tab_service import compute_totals


# Allowed appointment status changes; completed/cancelled are terminal
APPOINTMENT_TRANSITIONS = {
    APPOINTMENT_PENDING: {APPOINTMENT_CONFIRMED, APPOINTMENT_COMPLETED, APPOINTMENT_CANCELLED},
    APPOINTMENT_CONFIRMED: {APPOINTMENT_COMPLETED, APPOINTMENT_CANCELLED},
    APPOINTMENT_COMPLETED: set(),
    APPOINTMENT_CANCELLED: set(),
}

# Statuses a new booking may start in
BOOKING_STATUSES = (APPOINTMENT_PENDING, APPOINTMENT_CONFIRMED)

MAX_DURATION_MINUTES = 24 * 60


# =============================================================================
# VALIDATION (no writes)
# =============================================================================

def _parse_start_time(start_time):
    try:
        parsed = parse_local_datetime(start_time, current_app.config.get("SHOP_TIMEZONE", "UTC"))
    except (TypeError, ValueError):
        raise ValidationError("start_time must be an ISO-8601 datetime", {"start_time": str(start_time)})
    if parsed is None:
        raise ValidationError("start_time is required")
    return parsed


def _validate_duration(duration_minutes, service) -> int:
    if duration_minutes is None:
        return service.duration_minutes
    minutes = coerce_int("duration_minutes", duration_minutes)
    if minutes <= 0:
        raise ValidationError("duration_minutes must be > 0")
    if minutes > MAX_DURATION_MINUTES:
        raise ValidationError("duration_minutes cannot exceed one day")
    return minutes


def _staff_intervals(staff_id: int, start_time, end_time, *, exclude_id: int | None = None):
    """Appointments of one staff member that may overlap [start_time, end_time)."""
    # No appointment runs longer than a day, so nothing starting earlier can reach start_time
    earliest = start_time - timedelta(minutes=MAX_DURATION_MINUTES)
    q = db.session.query(Appointment).filter(
        Appointment.staff_id == staff_id,
        Appointment.start_time > earliest,
        Appointment.start_time < end_time,
        Appointment.status != APPOINTMENT_CANCELLED,
    )
    if exclude_id is not None:
        q = q.filter(Appointment.id != exclude_id)
    return [(a.start_time, a.end_time, a.id) for a in q.all()]


def check_availability(staff_id: int, start_time, duration_minutes: int) -> None:
    """Refuse an interval that overlaps any other live appointment of the staff member."""
    if current_app.config.get("ALLOW_DOUBLE_BOOKING", False):
        return
    end_time = start_time + timedelta(minutes=duration_minutes)
    conflicts = time_grid.find_conflicts(
        _staff_intervals(staff_id, start_time, end_time), start_time, end_time
    )
    if conflicts:
        raise ConflictError(
            "Staff member already has an appointment in that interval",
            {"staff_id": staff_id, "conflicting_appointment_ids": conflicts},
        )


def _resolve_client(client_id, client_name, client_phone, client_email) -> tuple[Client | None, dict | None]:
    """
    Existing client, or the fields of a client to create.

    An explicit client_id always wins. Free-text names only match an
    existing client case-insensitively and unambiguously.
    """
    if client_id is not None:
        return catalog_service.get_client(coerce_int("client_id", client_id)), None

    name = (client_name or "").strip()
    if not name:
        raise ValidationError("client_id or client_name is required")

    existing = catalog_service.find_client_by_name(name)
    if existing is not None:
        return existing, None

    phone = (client_phone or "").strip() or None
    if current_app.config.get("REQUIRE_PHONE_FOR_NEW_CLIENT", True) and not phone:
        raise ValidationError("client_phone is required for new clients", {"client_name": name})
    return None, {"name": name, "phone": phone, "email": client_email}


# =============================================================================
# BOOKING
# =============================================================================

def _lock_staff_schedule(staff_id: int) -> None:
    """Open the write transaction and lock the staff row for the availability re-check."""
    begin_immediate()
    lock_for_update(db.session.query(Staff).filter_by(id=staff_id)).first()


def _insert_client(fields: dict) -> Client:
    return catalog_service.create_client(
        name=fields["name"],
        phone=fields["phone"],
        email=fields["email"],
        require_phone=False,
        commit=False,
    )


def _insert_appointment(client: Client, service, staff, start_time, duration_minutes: int, status: str) -> Appointment:
    appointment = Appointment(
        client_id=client.id,
        staff_id=staff.id,
        service_id=service.id,
        start_time=start_time,
        duration_minutes=duration_minutes,
        status=status,
    )
    db.session.add(appointment)
    db.session.flush()
    return appointment


def _insert_tab(client: Client, appointment: Appointment, staff) -> Tab:
    tab = Tab(
        origin=TAB_ORIGIN_SCHEDULED,
        client_id=client.id,
        appointment_id=appointment.id,
        staff_id=staff.id,
        status=TAB_OPEN,
    )
    db.session.add(tab)
    db.session.flush()
    return tab


def _insert_service_line(tab: Tab, service, staff) -> TabLineItem:
    line = TabLineItem(
        tab_id=tab.id,
        kind=LINE_KIND_SERVICE,
        catalog_ref_id=service.id,
        name=service.name,
        unit_price_cents=service.price_cents,
        quantity=1,
        responsible_staff_id=staff.id,
    )
    db.session.add(line)
    db.session.flush()
    return line


def _update_tab_totals(tab: Tab, line: TabLineItem) -> Tab:
    tab.subtotal_cents, tab.total_cents = compute_totals(line.line_total_cents, tab.discount_cents)
    db.session.flush()
    return tab


def create_booking(
    *,
    service_id,
    staff_id,
    start_time,
    client_id=None,
    client_name: str | None = None,
    client_phone: str | None = None,
    client_email: str | None = None,
    duration_minutes=None,
    status: str = APPOINTMENT_CONFIRMED,
) -> tuple[Appointment, Tab]:
    """
    Book a service and open its tab.

    Returns (appointment, tab); the tab holds one line item with the
    service's current price. ``status`` is the appointment's starting
    status, pending or confirmed.

    The availability check runs twice: once up front, and again inside the
    write transaction after taking the write lock, so two requests racing
    for the same slot cannot both commit.

    Raises:
        ValidationError: bad start time/duration/status, missing client name or phone
        NotFound: unknown or inactive client/service/staff
        ConflictError: ambiguous client name, staff already booked
        DependencyFailure: a write failed part way (see module docstring)
    """
    service = catalog_service.get_service(coerce_int("service_id", service_id))
    staff = catalog_service.get_active_staff(coerce_int("staff_id", staff_id))
    start = _parse_start_time(start_time)
    minutes = _validate_duration(duration_minutes, service)
    if status not in BOOKING_STATUSES:
        raise ValidationError(
            f"status must be one of {list(BOOKING_STATUSES)}", {"status": status}
        )
    client, new_client_fields = _resolve_client(client_id, client_name, client_phone, client_email)
    check_availability(staff.id, start, minutes)

    atomic = current_app.config.get("BOOKING_ATOMIC", True)
    created: dict = {"client_id": client.id if client else None}

    def _stage(stage: str, func, *args, commit: bool = True):
        try:
            result = func(*args)
            if commit and not atomic:
                db.session.commit()
            return result
        except SQLAlchemyError as exc:
            db.session.rollback()
            persisted = {} if atomic else created
            current_app.logger.error(
                "Booking failed at stage %s (atomic=%s, persisted=%s)", stage, atomic, persisted
            )
            raise DependencyFailure(
                f"Booking failed while writing {stage}",
                stage=stage,
                **persisted,
            ) from exc

    def _reserve_slot():
        try:
            # Held until the appointment stage commits
            _stage("availability", _lock_staff_schedule, staff.id, commit=False)
            check_availability(staff.id, start, minutes)
        except ConflictError:
            db.session.rollback()
            raise

    if atomic:
        _reserve_slot()

    if client is None:
        client = _stage("client", _insert_client, new_client_fields)
        created["client_id"] = client.id

    if not atomic:
        _reserve_slot()

    appointment = _stage(
        "appointment", _insert_appointment, client, service, staff, start, minutes, status
    )
    created["appointment_id"] = appointment.id

    tab = _stage("tab", _insert_tab, client, appointment, staff)
    created["tab_id"] = tab.id

    line = _stage("line_item", _insert_service_line, tab, service, staff)
    _stage("totals", _update_tab_totals, tab, line)

    if atomic:
        _stage("commit", db.session.commit)

    current_app.logger.info(
        "Booking created: appointment %s, tab %s, client %s, staff %s at %s",
        appointment.id, tab.id, client.id, staff.id, start.isoformat(),
    )
    return appointment, tab


# =============================================================================
# SCHEDULE
# =============================================================================

def list_schedule(
    day: date,
    *,
    staff_id: int | None = None,
    include_cancelled: bool = False,
) -> list[Appointment]:
    """Appointments starting on ``day`` (local), earliest first."""
    day_start, day_end = time_grid.day_bounds(day)
    q = db.session.query(Appointment).filter(
        Appointment.start_time >= day_start,
        Appointment.start_time < day_end,
    )
    if staff_id is not None:
        q = q.filter(Appointment.staff_id == staff_id)
    if not include_cancelled:
        q = q.filter(Appointment.status != APPOINTMENT_CANCELLED)
    return q.order_by(Appointment.start_time, Appointment.id).all()


def build_schedule_grid(day: date) -> dict:
    """
    Grid payload for one day: window, staff columns, placements and the
    pairs of appointments that visually overlap.
    """
    start_hour = current_app.config.get("SCHEDULE_WINDOW_START_HOUR", time_grid.DEFAULT_WINDOW_START_HOUR)
    end_hour = current_app.config.get("SCHEDULE_WINDOW_END_HOUR", time_grid.DEFAULT_WINDOW_END_HOUR)

    appointments = list_schedule(day)
    staff = catalog_service.list_active_staff()
    # Staff deactivated after booking still own their appointments that day
    known = {s.id for s in staff}
    extra = {a.staff_id: a.staff for a in appointments if a.staff_id not in known}
    staff += [extra[staff_id] for staff_id in sorted(extra)]

    placements = time_grid.place_appointments(
        appointments,
        window_start_hour=start_hour,
        window_end_hour=end_hour,
        staff_order=[s.id for s in staff],
    )
    return {
        "date": day.isoformat(),
        "window": {
            "start_hour": start_hour,
            "end_hour": end_hour,
            "rows": end_hour - start_hour,
        },
        "columns": [
            {"index": i, "staff_id": s.id, "staff_name": s.name, "active": s.is_active}
            for i, s in enumerate(staff)
        ],
        "placements": [p.to_dict() for p in placements],
        "overlaps": [list(pair) for pair in time_grid.find_overlaps(placements)],
    }


def update_appointment_status(appointment_id: int, status: str) -> Appointment:
    """
    Move an appointment along its lifecycle.

    Cancelling does not touch the appointment's tab; an open tab is
    settled or cancelled on its own.
    """
    if status not in APPOINTMENT_STATUSES:
        raise ValidationError(
            f"status must be one of {list(APPOINTMENT_STATUSES)}", {"status": status}
        )

    def _op():
        appointment = db.session.get(Appointment, appointment_id)
        if appointment is None:
            raise NotFound(f"Appointment {appointment_id} not found", {"appointment_id": appointment_id})
        current = appointment.status
        if status not in APPOINTMENT_TRANSITIONS[current]:
            raise InvalidState(
                f"Cannot change appointment from {current} to {status}",
                {"appointment_id": appointment_id, "status": current},
            )
        if not guarded_transition(Appointment, appointment_id, from_status=current, values={"status": status}):
            raise InvalidState(
                "Appointment changed concurrently",
                {"appointment_id": appointment_id},
            )
        db.session.commit()
        return appointment

    appointment = run_with_retry(_op)
    current_app.logger.info("Appointment %s -> %s", appointment_id, status)
    return appointment
