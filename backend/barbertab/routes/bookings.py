# Overview: Flask API routes for bookings and the daily schedule; parses input and returns JSON responses.

# backend/barbertab/routes/bookings.py
"""Booking and schedule API routes"""

from flask import Blueprint, request, jsonify, current_app

from ..errors import PipelineError
from ..models.scheduling import APPOINTMENT_CONFIRMED
from ..services import booking_service
from ..validation import coerce_int, require_fields, validate_day


bookings_bp = Blueprint("bookings", __name__, url_prefix="/api")


@bookings_bp.post("/bookings")
def create_booking_route():
    """
    Book a service and open its tab.

    Body: client_id | client_name (+ client_phone, client_email),
          service_id, staff_id, start_time, duration_minutes (optional),
          status (optional, pending or confirmed)
    """
    try:
        data = require_fields(request.get_json(silent=True), "service_id", "staff_id", "start_time")

        appointment, tab = booking_service.create_booking(
            service_id=data["service_id"],
            staff_id=data["staff_id"],
            start_time=data["start_time"],
            client_id=data.get("client_id"),
            client_name=data.get("client_name"),
            client_phone=data.get("client_phone"),
            client_email=data.get("client_email"),
            duration_minutes=data.get("duration_minutes"),
            status=data.get("status", APPOINTMENT_CONFIRMED),
        )

        return jsonify({"appointment": appointment.to_dict(), "tab": tab.to_dict()}), 201

    except PipelineError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create booking")
        return jsonify({"error": "Internal server error"}), 500


@bookings_bp.get("/schedule")
def get_schedule_route():
    """Appointments for ?date=YYYY-MM-DD, optionally one staff member."""
    try:
        day = validate_day("date", request.args.get("date"))
        staff_id = request.args.get("staff_id")
        include_cancelled = request.args.get("include_cancelled", "false").lower() == "true"

        appointments = booking_service.list_schedule(
            day,
            staff_id=coerce_int("staff_id", staff_id) if staff_id else None,
            include_cancelled=include_cancelled,
        )
        return jsonify({
            "date": day.isoformat(),
            "appointments": [a.to_dict() for a in appointments],
        }), 200

    except PipelineError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load schedule")
        return jsonify({"error": "Internal server error"}), 500


@bookings_bp.get("/schedule/grid")
def get_schedule_grid_route():
    """Grid placements for ?date=YYYY-MM-DD."""
    try:
        day = validate_day("date", request.args.get("date"))
        return jsonify(booking_service.build_schedule_grid(day)), 200

    except PipelineError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to build schedule grid")
        return jsonify({"error": "Internal server error"}), 500


@bookings_bp.patch("/appointments/<int:appointment_id>/status")
def update_appointment_status_route(appointment_id: int):
    try:
        data = require_fields(request.get_json(silent=True), "status")
        appointment = booking_service.update_appointment_status(appointment_id, data["status"])
        return jsonify({"appointment": appointment.to_dict()}), 200

    except PipelineError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update appointment status")
        return jsonify({"error": "Internal server error"}), 500
