from __future__ import annotations

from datetime import timedelta

from ..extensions import db
from barbertab.time_utils import to_local_iso, to_utc_z


APPOINTMENT_CONFIRMED = "confirmed"
APPOINTMENT_PENDING = "pending"
APPOINTMENT_COMPLETED = "completed"
APPOINTMENT_CANCELLED = "cancelled"

APPOINTMENT_STATUSES = (
    APPOINTMENT_CONFIRMED,
    APPOINTMENT_PENDING,
    APPOINTMENT_COMPLETED,
    APPOINTMENT_CANCELLED,
)


class Appointment(db.Model):
    """
    A client receiving one service from one staff member at a local wall-clock time.

    start_time is shop-local naive; it anchors grid placement.
    """
    __tablename__ = "appointments"
    __table_args__ = (
        db.Index("ix_appointments_staff_start", "staff_id", "start_time"),
        db.Index("ix_appointments_start_status", "start_time", "status"),
        db.CheckConstraint("duration_minutes > 0", name="ck_appointments_duration"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False, index=True)
    staff_id = db.Column(db.Integer, db.ForeignKey("staff.id"), nullable=False)
    service_id = db.Column(db.Integer, db.ForeignKey("services.id"), nullable=False)

    start_time = db.Column(db.DateTime, nullable=False)
    duration_minutes = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(16), nullable=False, default=APPOINTMENT_CONFIRMED)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    client = db.relationship("Client", backref=db.backref("appointments", lazy=True))
    staff = db.relationship("Staff")
    service = db.relationship("Service")

    @property
    def duration_hours(self) -> float:
        return self.duration_minutes / 60

    @property
    def end_time(self):
        return self.start_time + timedelta(minutes=self.duration_minutes)

    def __repr__(self) -> str:
        return f"<Appointment id={self.id} staff_id={self.staff_id} start={self.start_time} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "client_id": self.client_id,
            "client_name": self.client.name if self.client else None,
            "staff_id": self.staff_id,
            "staff_name": self.staff.name if self.staff else None,
            "service_id": self.service_id,
            "service_name": self.service.name if self.service else None,
            "start_time": to_local_iso(self.start_time),
            "end_time": to_local_iso(self.end_time),
            "duration_minutes": self.duration_minutes,
            "duration_hours": self.duration_hours,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
        }
