# Overview: Read access to catalog, staff and clients used while building bookings and tabs.

"""
Catalog lookup.

Services, products and staff are owned elsewhere; the pipeline only reads
them. Client records are the exception: booking may create one on demand.
"""

from __future__ import annotations

from sqlalchemy import func

from ..extensions import db
from ..models import Client, Product, Service, Staff
from ..models.catalog import STAFF_STATUS_ACTIVE
from ..models.tabs import LINE_KIND_PRODUCT, LINE_KIND_SERVICE, LINE_KINDS
from ..errors import ConflictError, NotFound, ValidationError


# =============================================================================
# CATALOG
# =============================================================================

def get_service(service_id: int, *, require_active: bool = True) -> Service:
    service = db.session.get(Service, service_id)
    if service is None:
        raise NotFound(f"Service {service_id} not found", {"service_id": service_id})
    if require_active and not service.active:
        raise NotFound(f"Service {service_id} is inactive", {"service_id": service_id})
    return service


def get_product(product_id: int, *, require_active: bool = True) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFound(f"Product {product_id} not found", {"product_id": product_id})
    if require_active and not product.active:
        raise NotFound(f"Product {product_id} is inactive", {"product_id": product_id})
    return product


def get_catalog_item(kind: str, catalog_ref_id: int) -> Service | Product:
    """Resolve a line-item reference to its active catalog row."""
    if kind == LINE_KIND_SERVICE:
        return get_service(catalog_ref_id)
    if kind == LINE_KIND_PRODUCT:
        return get_product(catalog_ref_id)
    raise ValidationError(f"kind must be one of {list(LINE_KINDS)}", {"kind": kind})


def list_services(*, include_inactive: bool = False) -> list[Service]:
    q = db.session.query(Service)
    if not include_inactive:
        q = q.filter(Service.active.is_(True))
    return q.order_by(Service.name).all()


def list_products(*, include_inactive: bool = False) -> list[Product]:
    q = db.session.query(Product)
    if not include_inactive:
        q = q.filter(Product.active.is_(True))
    return q.order_by(Product.name).all()


def list_reorder_candidates() -> list[Product]:
    """Active products at or below their minimum stock, emptiest first."""
    return (
        db.session.query(Product)
        .filter(
            Product.active.is_(True),
            Product.stock_quantity <= Product.minimum_stock,
        )
        .order_by(Product.stock_quantity, Product.name)
        .all()
    )


# =============================================================================
# STAFF
# =============================================================================

def list_active_staff() -> list[Staff]:
    """Active staff in a stable order (by id); also the schedule column order."""
    return (
        db.session.query(Staff)
        .filter(Staff.status == STAFF_STATUS_ACTIVE)
        .order_by(Staff.id)
        .all()
    )


def get_active_staff(staff_id: int) -> Staff:
    staff = db.session.get(Staff, staff_id)
    if staff is None:
        raise NotFound(f"Staff {staff_id} not found", {"staff_id": staff_id})
    if not staff.is_active:
        raise NotFound(f"Staff {staff_id} is inactive", {"staff_id": staff_id})
    return staff


# =============================================================================
# CLIENTS
# =============================================================================

def get_client(client_id: int) -> Client:
    client = db.session.get(Client, client_id)
    if client is None:
        raise NotFound(f"Client {client_id} not found", {"client_id": client_id})
    return client


def find_clients_by_name(name: str) -> list[Client]:
    """Case-insensitive exact name match."""
    normalized = (name or "").strip().lower()
    if not normalized:
        return []
    return (
        db.session.query(Client)
        .filter(func.lower(Client.name) == normalized)
        .order_by(Client.id)
        .all()
    )


def find_client_by_name(name: str) -> Client | None:
    """
    Single client matching name, or None.

    More than one match is an ambiguous identity: the caller has to pick an
    explicit client id instead of guessing the first row.
    """
    matches = find_clients_by_name(name)
    if len(matches) > 1:
        raise ConflictError(
            f"More than one client is named {name.strip()!r}; select a client id",
            {"client_ids": [c.id for c in matches]},
        )
    return matches[0] if matches else None


def create_client(
    *,
    name: str,
    phone: str | None = None,
    email: str | None = None,
    birthday=None,
    require_phone: bool = True,
    commit: bool = True,
) -> Client:
    name = (name or "").strip()
    if not name:
        raise ValidationError("client_name is required")
    phone = (phone or "").strip() or None
    if require_phone and not phone:
        raise ValidationError("client_phone is required for new clients", {"client_name": name})

    client = Client(
        name=name,
        phone=phone,
        email=(email or "").strip() or None,
        birthday=birthday,
    )
    db.session.add(client)
    if commit:
        db.session.commit()
    else:
        db.session.flush()
    return client
