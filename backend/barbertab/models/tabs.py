from __future__ import annotations

from ..extensions import db
from barbertab.time_utils import to_utc_z


TAB_OPEN = "open"
TAB_PAID = "paid"
TAB_CANCELLED = "cancelled"

TAB_ORIGIN_SCHEDULED = "scheduled"
TAB_ORIGIN_WALK_IN = "walk_in"

LINE_KIND_SERVICE = "service"
LINE_KIND_PRODUCT = "product"
LINE_KINDS = (LINE_KIND_SERVICE, LINE_KIND_PRODUCT)


class Tab(db.Model):
    """
    Tab (comanda): the accumulating order for one client visit.

    ORIGIN is a tagged variant:
    - scheduled: opened by a booking, always carries appointment_id
    - walk_in: opened at the counter, never carries appointment_id

    LIFECYCLE: open -> paid | cancelled. Both exits are terminal; line items,
    discount and totals are frozen afterwards.

    TOTALS: subtotal = sum(unit_price * quantity); total = max(0, subtotal - discount).
    """
    __tablename__ = "tabs"
    __table_args__ = (
        db.CheckConstraint(
            "(origin = 'scheduled' AND appointment_id IS NOT NULL)"
            " OR (origin = 'walk_in' AND appointment_id IS NULL)",
            name="ck_tabs_origin_appointment",
        ),
        db.CheckConstraint("discount_cents >= 0", name="ck_tabs_discount"),
        db.CheckConstraint("total_cents >= 0", name="ck_tabs_total"),
        db.Index("ix_tabs_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    origin = db.Column(db.String(16), nullable=False, default=TAB_ORIGIN_WALK_IN)

    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False, index=True)
    appointment_id = db.Column(db.Integer, db.ForeignKey("appointments.id"), nullable=True, unique=True)
    # Default responsible staff for the visit
    staff_id = db.Column(db.Integer, db.ForeignKey("staff.id"), nullable=True)

    # All amounts in cents
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.BigInteger, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default=TAB_OPEN, index=True)
    payment_method = db.Column(db.String(16), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    client = db.relationship("Client", backref=db.backref("tabs", lazy=True))
    staff = db.relationship("Staff")
    appointment = db.relationship("Appointment", backref=db.backref("tab", uselist=False))
    lines = db.relationship(
        "TabLineItem",
        back_populates="tab",
        cascade="all, delete-orphan",
        order_by="TabLineItem.id",
        lazy=True,
    )

    @property
    def is_open(self) -> bool:
        return self.status == TAB_OPEN

    def __repr__(self) -> str:
        return f"<Tab id={self.id} origin={self.origin} status={self.status} total_cents={self.total_cents}>"

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "origin": self.origin,
            "client_id": self.client_id,
            "client_name": self.client.name if self.client else None,
            "appointment_id": self.appointment_id,
            "staff_id": self.staff_id,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
            "status": self.status,
            "payment_method": self.payment_method,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at) if self.updated_at else None,
            "paid_at": to_utc_z(self.paid_at) if self.paid_at else None,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "cancel_reason": self.cancel_reason,
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class TabLineItem(db.Model):
    """
    One priced entry on a tab.

    name and unit_price_cents are snapshots taken when the item was added;
    later catalog edits never touch them.
    """
    __tablename__ = "tab_line_items"
    __table_args__ = (
        db.CheckConstraint("quantity >= 1", name="ck_tab_line_items_quantity"),
        db.CheckConstraint("kind IN ('service', 'product')", name="ck_tab_line_items_kind"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tab_id = db.Column(db.Integer, db.ForeignKey("tabs.id"), nullable=False, index=True)

    kind = db.Column(db.String(16), nullable=False)
    # services.id or products.id depending on kind
    catalog_ref_id = db.Column(db.Integer, nullable=False)

    name = db.Column(db.String(255), nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)

    responsible_staff_id = db.Column(db.Integer, db.ForeignKey("staff.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    tab = db.relationship("Tab", back_populates="lines")
    responsible_staff = db.relationship("Staff")

    @property
    def line_total_cents(self) -> int:
        return self.unit_price_cents * self.quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tab_id": self.tab_id,
            "kind": self.kind,
            "catalog_ref_id": self.catalog_ref_id,
            "name": self.name,
            "unit_price_cents": self.unit_price_cents,
            "quantity": self.quantity,
            "line_total_cents": self.line_total_cents,
            "responsible_staff_id": self.responsible_staff_id,
            "created_at": to_utc_z(self.created_at),
        }
