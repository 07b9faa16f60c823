from __future__ import annotations

from ..extensions import db
from barbertab.time_utils import to_utc_z


STAFF_STATUS_ACTIVE = "active"
STAFF_STATUS_INACTIVE = "inactive"


class Staff(db.Model):
    """
    Team member who performs services and earns commission.

    Read-only from the pipeline's perspective: referenced by id on
    appointments, tabs and line items for commission attribution.
    """
    __tablename__ = "staff"
    __table_args__ = (
        db.Index("ix_staff_status", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    role = db.Column(db.String(64), nullable=False, default="Barber")

    # Commission in basis points (4000 = 40%)
    commission_rate_bps = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default=STAFF_STATUS_ACTIVE)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    @property
    def is_active(self) -> bool:
        return self.status == STAFF_STATUS_ACTIVE

    def __repr__(self) -> str:
        return f"<Staff id={self.id} name={self.name!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "role": self.role,
            "commission_rate_bps": self.commission_rate_bps,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
        }


class Service(db.Model):
    """Bookable service (haircut, beard trim...). Price/duration are snapshotted onto tabs."""
    __tablename__ = "services"
    __table_args__ = (
        db.Index("ix_services_active", "active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    category = db.Column(db.String(64), nullable=True)

    # Authoritative storage in cents (frontend may only format for display)
    price_cents = db.Column(db.Integer, nullable=False, default=0)
    duration_minutes = db.Column(db.Integer, nullable=False, default=30)

    active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Service id={self.id} name={self.name!r} price_cents={self.price_cents}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "price_cents": self.price_cents,
            "duration_minutes": self.duration_minutes,
            "active": self.active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Product(db.Model):
    """
    Retail product with a mutable stock counter.

    Stock only moves through settlement; every decrement is mirrored by an
    append-only StockMovement row so the counter can be audited.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_products_sku"),
        db.Index("ix_products_active", "active"),
        db.CheckConstraint("minimum_stock >= 0", name="ck_products_minimum_stock"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=True)
    name = db.Column(db.String(255), nullable=False)

    cost_price_cents = db.Column(db.Integer, nullable=True)
    price_cents = db.Column(db.Integer, nullable=False, default=0)

    stock_quantity = db.Column(db.Integer, nullable=False, default=0)
    minimum_stock = db.Column(db.Integer, nullable=False, default=0)

    active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    @property
    def needs_reorder(self) -> bool:
        return self.stock_quantity <= self.minimum_stock

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r} stock={self.stock_quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "cost_price_cents": self.cost_price_cents,
            "price_cents": self.price_cents,
            "stock_quantity": self.stock_quantity,
            "minimum_stock": self.minimum_stock,
            "needs_reorder": self.needs_reorder,
            "active": self.active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Append-only record of a stock change.

    IMMUTABLE: Records are never updated or deleted.
    quantity_delta is negative for sales.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_product_occurred", "product_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    tab_id = db.Column(db.Integer, db.ForeignKey("tabs.id"), nullable=True, index=True)
    line_item_id = db.Column(db.Integer, db.ForeignKey("tab_line_items.id"), nullable=True)

    quantity_delta = db.Column(db.Integer, nullable=False)
    note = db.Column(db.String(255), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("stock_movements", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "tab_id": self.tab_id,
            "line_item_id": self.line_item_id,
            "quantity_delta": self.quantity_delta,
            "note": self.note,
            "occurred_at": to_utc_z(self.occurred_at),
        }
