# Overview: Service-layer operations for tabs (comandas); line items, discount and totals.

"""
Tab Service - the accumulating order of one client visit.

DESIGN PRINCIPLES:
- A tab is mutable only while status='open'; paid and cancelled are terminal.
- Catalog name and price are snapshotted onto the line item when it is added.
- Totals are recomputed from persisted lines after every mutation:
    subtotal = sum(unit_price * quantity)
    total    = max(0, subtotal - discount)
- Every mutation claims the tab with a guarded UPDATE (status still 'open')
  inside the same DB transaction as the change, so a tab that was settled or
  cancelled in the meantime is never modified. Two staff editing the same
  open tab remain last-write-wins.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Tab, TabLineItem
from ..models.tabs import LINE_KINDS, TAB_OPEN, TAB_ORIGIN_WALK_IN
from ..errors import InvalidState, NotFound, ValidationError
from ..validation import coerce_int, validate_discount, validate_quantity
from barbertab.time_utils import utcnow
from . import catalog_service
from .concurrency import guarded_transition, lock_for_update, run_with_retry


# =============================================================================
# DEFAULT RESPONSIBLE STAFF POLICIES
# =============================================================================

RESPONSIBLE_EXPLICIT = "explicit"
RESPONSIBLE_TAB_STAFF = "tab_staff"
RESPONSIBLE_FIRST_ACTIVE = "first_active"

RESPONSIBLE_POLICIES = (
    RESPONSIBLE_EXPLICIT,
    RESPONSIBLE_TAB_STAFF,
    RESPONSIBLE_FIRST_ACTIVE,
)


def compute_totals(subtotal_cents: int, discount_cents: int) -> tuple[int, int]:
    """(subtotal, total) with the total clamped at zero."""
    return subtotal_cents, max(0, subtotal_cents - discount_cents)


def _load_tab(tab_id: int, *, lock: bool = False) -> Tab:
    q = db.session.query(Tab).filter_by(id=tab_id)
    if lock:
        q = lock_for_update(q)
    tab = q.first()
    if tab is None:
        raise NotFound(f"Tab {tab_id} not found", {"tab_id": tab_id})
    return tab


def _require_open(tab: Tab, action: str) -> None:
    if tab.status != TAB_OPEN:
        raise InvalidState(
            f"Cannot {action} a {tab.status} tab",
            {"tab_id": tab.id, "status": tab.status},
        )


def _claim_open_tab(tab: Tab, action: str) -> None:
    """Re-verify 'open' in the write itself; a concurrent close wins."""
    if not guarded_transition(Tab, tab.id, from_status=TAB_OPEN, values={"updated_at": utcnow()}):
        db.session.refresh(tab)
        raise InvalidState(
            f"Cannot {action} a {tab.status} tab",
            {"tab_id": tab.id, "status": tab.status},
        )


def _recompute_totals(tab: Tab) -> None:
    db.session.flush()
    subtotal = db.session.query(
        func.coalesce(func.sum(TabLineItem.unit_price_cents * TabLineItem.quantity), 0)
    ).filter(TabLineItem.tab_id == tab.id).scalar()
    tab.subtotal_cents, tab.total_cents = compute_totals(int(subtotal or 0), tab.discount_cents)


def _validate_kind(kind) -> str:
    if kind not in LINE_KINDS:
        raise ValidationError(f"kind must be one of {list(LINE_KINDS)}", {"kind": kind})
    return kind


def resolve_responsible_staff(tab: Tab, responsible_staff_id) -> int:
    """
    Staff credited for a line item.

    An explicit id must reference active staff. Without one, the configured
    DEFAULT_RESPONSIBLE_STAFF policy decides; the default policy ('explicit')
    refuses to guess.
    """
    if responsible_staff_id is not None:
        staff_id = coerce_int("responsible_staff_id", responsible_staff_id)
        return catalog_service.get_active_staff(staff_id).id

    policy = current_app.config.get("DEFAULT_RESPONSIBLE_STAFF", RESPONSIBLE_EXPLICIT)
    if policy == RESPONSIBLE_EXPLICIT:
        raise ValidationError("responsible_staff_id is required")
    if policy == RESPONSIBLE_TAB_STAFF:
        if tab.staff_id is None:
            raise ValidationError("responsible_staff_id is required (tab has no staff)")
        return catalog_service.get_active_staff(tab.staff_id).id
    if policy == RESPONSIBLE_FIRST_ACTIVE:
        staff = catalog_service.list_active_staff()
        if not staff:
            raise ValidationError("responsible_staff_id is required (no active staff)")
        return staff[0].id
    raise ValueError(f"Unknown DEFAULT_RESPONSIBLE_STAFF policy: {policy}")


def build_line_item(
    tab: Tab,
    *,
    kind: str,
    catalog_ref_id,
    quantity=1,
    responsible_staff_id=None,
) -> TabLineItem:
    """New, unsaved line item with the catalog name/price snapshotted now."""
    kind = _validate_kind(kind)
    ref_id = coerce_int("catalog_ref_id", catalog_ref_id)
    qty = validate_quantity(quantity)
    item = catalog_service.get_catalog_item(kind, ref_id)
    staff_id = resolve_responsible_staff(tab, responsible_staff_id)
    return TabLineItem(
        kind=kind,
        catalog_ref_id=item.id,
        name=item.name,
        unit_price_cents=item.price_cents,
        quantity=qty,
        responsible_staff_id=staff_id,
    )


# =============================================================================
# TAB CREATION & QUERIES
# =============================================================================

def open_walk_in_tab(client_id: int, staff_id: int | None = None) -> Tab:
    """Open an empty tab at the counter, not tied to an appointment."""
    client = catalog_service.get_client(client_id)
    if staff_id is not None:
        staff_id = catalog_service.get_active_staff(staff_id).id

    def _op():
        tab = Tab(
            origin=TAB_ORIGIN_WALK_IN,
            client_id=client.id,
            staff_id=staff_id,
            status=TAB_OPEN,
        )
        db.session.add(tab)
        db.session.commit()
        return tab

    tab = run_with_retry(_op)
    current_app.logger.info("Walk-in tab %s opened for client %s", tab.id, client.id)
    return tab


def get_tab(tab_id: int) -> Tab:
    return _load_tab(tab_id)


def list_tabs(
    *,
    status: str | None = None,
    client_id: int | None = None,
    limit: int = 200,
) -> list[Tab]:
    q = db.session.query(Tab)
    if status is not None:
        q = q.filter(Tab.status == status)
    if client_id is not None:
        q = q.filter(Tab.client_id == client_id)
    return q.order_by(Tab.created_at.desc(), Tab.id.desc()).limit(limit).all()


# =============================================================================
# MUTATIONS (open tabs only)
# =============================================================================

def add_line_item(
    tab_id: int,
    *,
    kind: str,
    catalog_ref_id,
    quantity=1,
    responsible_staff_id=None,
) -> Tab:
    """Snapshot a service/product onto an open tab and recompute totals."""
    _validate_kind(kind)

    def _op():
        tab = _load_tab(tab_id, lock=True)
        _require_open(tab, "add items to")
        line = build_line_item(
            tab,
            kind=kind,
            catalog_ref_id=catalog_ref_id,
            quantity=quantity,
            responsible_staff_id=responsible_staff_id,
        )
        _claim_open_tab(tab, "add items to")
        tab.lines.append(line)
        _recompute_totals(tab)
        db.session.commit()
        return tab

    return run_with_retry(_op)


def remove_line_item(tab_id: int, line_item_id: int) -> Tab:
    """Removing the last item leaves an empty open tab."""
    def _op():
        tab = _load_tab(tab_id, lock=True)
        _require_open(tab, "remove items from")
        line = db.session.get(TabLineItem, line_item_id)
        if line is None or line.tab_id != tab.id:
            raise NotFound(
                f"Line item {line_item_id} not found on tab {tab.id}",
                {"tab_id": tab.id, "line_item_id": line_item_id},
            )
        _claim_open_tab(tab, "remove items from")
        tab.lines.remove(line)
        _recompute_totals(tab)
        db.session.commit()
        return tab

    return run_with_retry(_op)


def set_discount(tab_id: int, discount_cents) -> Tab:
    """Any non-negative discount; the total never drops below zero."""
    discount = validate_discount(discount_cents)

    def _op():
        tab = _load_tab(tab_id, lock=True)
        _require_open(tab, "discount")
        _claim_open_tab(tab, "discount")
        tab.discount_cents = discount
        _recompute_totals(tab)
        db.session.commit()
        return tab

    return run_with_retry(_op)


def reassign_responsible(tab_id: int, line_item_id: int, staff_id) -> Tab:
    """Move commission attribution for one line; price is untouched."""
    staff = catalog_service.get_active_staff(coerce_int("staff_id", staff_id))

    def _op():
        tab = _load_tab(tab_id, lock=True)
        _require_open(tab, "reassign items on")
        line = db.session.get(TabLineItem, line_item_id)
        if line is None or line.tab_id != tab.id:
            raise NotFound(
                f"Line item {line_item_id} not found on tab {tab.id}",
                {"tab_id": tab.id, "line_item_id": line_item_id},
            )
        _claim_open_tab(tab, "reassign items on")
        line.responsible_staff_id = staff.id
        db.session.commit()
        return tab

    return run_with_retry(_op)


def replace_line_items(tab_id: int, items: list[dict]) -> Tab:
    """
    Rewrite the full item set of an open tab (delete all, then reinsert).

    Last full edit wins. Entries carrying ``line_item_id`` keep that line's
    snapshot (name, unit price) and may override quantity and responsible
    staff; entries without it are snapshotted from the catalog now.
    """
    if not isinstance(items, list):
        raise ValidationError("items must be a list")

    def _op():
        tab = _load_tab(tab_id, lock=True)
        _require_open(tab, "edit items on")
        existing = {line.id: line for line in tab.lines}

        new_lines: list[TabLineItem] = []
        for raw in items:
            if not isinstance(raw, dict):
                raise ValidationError("each item must be an object")
            if raw.get("line_item_id") is not None:
                line_id = coerce_int("line_item_id", raw["line_item_id"])
                src = existing.get(line_id)
                if src is None:
                    raise NotFound(
                        f"Line item {line_id} not found on tab {tab.id}",
                        {"tab_id": tab.id, "line_item_id": line_id},
                    )
                responsible = src.responsible_staff_id
                if raw.get("responsible_staff_id") is not None:
                    responsible = resolve_responsible_staff(tab, raw["responsible_staff_id"])
                new_lines.append(
                    TabLineItem(
                        kind=src.kind,
                        catalog_ref_id=src.catalog_ref_id,
                        name=src.name,
                        unit_price_cents=src.unit_price_cents,
                        quantity=validate_quantity(raw.get("quantity", src.quantity)),
                        responsible_staff_id=responsible,
                    )
                )
            else:
                new_lines.append(
                    build_line_item(
                        tab,
                        kind=raw.get("kind"),
                        catalog_ref_id=raw.get("catalog_ref_id"),
                        quantity=raw.get("quantity", 1),
                        responsible_staff_id=raw.get("responsible_staff_id"),
                    )
                )

        _claim_open_tab(tab, "edit items on")
        tab.lines.clear()
        db.session.flush()
        tab.lines.extend(new_lines)
        _recompute_totals(tab)
        db.session.commit()
        return tab

    return run_with_retry(_op)
