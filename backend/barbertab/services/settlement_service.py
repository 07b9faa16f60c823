# Overview: Service-layer operations for settlement; atomic close, ledger posting and recovery.

"""
Settlement Service - turns an open tab into revenue.

settle(tab, method) runs three steps:

    1. (optional) rewrite the tab's full item set      -> own commit
    2. atomic_settle: one DB transaction that          -> recovery point
         - re-verifies status='open' server-side (guarded UPDATE to 'paid')
         - checks and decrements stock for every product line
         - appends one StockMovement per product line
         - updates the client's visit aggregates
    3. post one income LedgerTransaction for the total -> own commit

If step 1 fails the tab keeps its previous items and DependencyFailure(stage='items')
is raised. If step 2 fails nothing changes: the tab stays open and stock is untouched.
If step 3 fails the tab is correctly paid and stock is correctly moved but
the ledger has no entry; DependencyFailure(stage='ledger') is raised and the
gap is visible through find_unposted_settlements() until
post_settlement_transaction() fills it.

CONCURRENCY: two settle() calls racing on one tab serialize on the guarded
UPDATE. Exactly one flips the tab; the other raises InvalidState and never
reaches stock or ledger.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..extensions import db
from ..models import LedgerTransaction, Product, StockMovement, Tab, TabLineItem
from ..models.ledger import TRANSACTION_INCOME
from ..models.tabs import LINE_KIND_PRODUCT, TAB_CANCELLED, TAB_OPEN, TAB_PAID
from ..errors import ConflictError, DependencyFailure, InvalidState, NotFound, ValidationError
from barbertab.time_utils import utcnow
from . import ledger_service, tab_service
from .concurrency import begin_immediate, guarded_transition, lock_for_update, run_with_retry


# =============================================================================
# PAYMENT METHODS (CONSTANTS)
# =============================================================================

METHOD_CREDIT = "credit"
METHOD_DEBIT = "debit"
METHOD_CASH = "cash"
METHOD_PIX = "pix"
METHOD_OTHER = "other"

VALID_PAYMENT_METHODS = [
    METHOD_CREDIT,
    METHOD_DEBIT,
    METHOD_CASH,
    METHOD_PIX,
    METHOD_OTHER,
]


def _validate_payment_method(payment_method) -> str:
    method = payment_method.strip().lower() if isinstance(payment_method, str) else payment_method
    if method not in VALID_PAYMENT_METHODS:
        raise ValidationError(
            f"Invalid payment method: {payment_method}. Must be one of {VALID_PAYMENT_METHODS}",
            {"payment_method": payment_method},
        )
    return method


def _not_open(tab: Tab, action: str) -> InvalidState:
    return InvalidState(
        f"Cannot {action} a {tab.status} tab",
        {"tab_id": tab.id, "status": tab.status},
    )


# =============================================================================
# STOCK
# =============================================================================

def _product_quantities(lines: list[TabLineItem]) -> dict[int, int]:
    totals: dict[int, int] = {}
    for line in lines:
        if line.kind == LINE_KIND_PRODUCT:
            totals[line.catalog_ref_id] = totals.get(line.catalog_ref_id, 0) + line.quantity
    return totals


def _lock_products(product_ids) -> dict[int, Product]:
    if not product_ids:
        return {}
    rows = lock_for_update(
        db.session.query(Product).filter(Product.id.in_(sorted(product_ids)))
    ).populate_existing().all()
    return {p.id: p for p in rows}


def _validate_stock(tab: Tab, quantities: dict[int, int], products: dict[int, Product]) -> None:
    missing = sorted(pid for pid in quantities if pid not in products)
    if missing:
        raise NotFound("Products on tab no longer exist", {"tab_id": tab.id, "product_ids": missing})

    if current_app.config.get("ALLOW_NEGATIVE_STOCK", False):
        return

    insufficient = []
    for product_id, qty in sorted(quantities.items()):
        on_hand = products[product_id].stock_quantity
        if on_hand < qty:
            insufficient.append({
                "product_id": product_id,
                "requested_quantity": qty,
                "on_hand": on_hand,
            })
    if insufficient:
        raise ValidationError(
            "Insufficient stock to settle tab",
            {"tab_id": tab.id, "items": insufficient},
        )


# =============================================================================
# ATOMIC SETTLE (single transactional boundary)
# =============================================================================

def atomic_settle(tab_id: int, payment_method: str) -> Tab:
    """
    Decrement stock for every product line and flip the tab to 'paid' in
    one transaction. Either everything happens or nothing does.
    """
    def _op():
        begin_immediate()
        tab = (
            lock_for_update(db.session.query(Tab).filter_by(id=tab_id))
            .populate_existing()
            .first()
        )
        if tab is None:
            raise NotFound(f"Tab {tab_id} not found", {"tab_id": tab_id})
        if tab.status != TAB_OPEN:
            raise _not_open(tab, "settle")

        lines = db.session.query(TabLineItem).filter_by(tab_id=tab.id).order_by(TabLineItem.id).all()
        if not lines:
            raise InvalidState("Cannot settle a tab with no items", {"tab_id": tab.id})

        quantities = _product_quantities(lines)
        products = _lock_products(quantities.keys())
        _validate_stock(tab, quantities, products)

        now = utcnow()
        if not guarded_transition(
            Tab,
            tab.id,
            from_status=TAB_OPEN,
            values={"status": TAB_PAID, "paid_at": now, "updated_at": now, "payment_method": payment_method},
        ):
            db.session.refresh(tab)
            raise _not_open(tab, "settle")

        for line in lines:
            if line.kind != LINE_KIND_PRODUCT:
                continue
            product = products[line.catalog_ref_id]
            product.stock_quantity = product.stock_quantity - line.quantity
            db.session.add(StockMovement(
                product_id=product.id,
                tab_id=tab.id,
                line_item_id=line.id,
                quantity_delta=-line.quantity,
                note=f"Tab #{tab.id}",
                occurred_at=now,
            ))

        client = tab.client
        client.total_spent_cents = (client.total_spent_cents or 0) + tab.total_cents
        client.total_visits = (client.total_visits or 0) + 1
        client.last_visit_at = now

        db.session.commit()
        return tab

    return run_with_retry(_op)


# =============================================================================
# LEDGER POSTING
# =============================================================================

def _describe(tab: Tab) -> str:
    client_name = tab.client.name if tab.client else "?"
    return f"Tab #{tab.id} - Client: {client_name}"


def _post_income(tab: Tab, payment_method: str) -> LedgerTransaction:
    tab_id = tab.id
    try:
        txn = ledger_service.record_transaction(
            type=TRANSACTION_INCOME,
            amount_cents=tab.total_cents,
            method=payment_method,
            category=current_app.config.get("SETTLEMENT_LEDGER_CATEGORY"),
            description=_describe(tab),
            tab_id=tab.id,
        )
        db.session.commit()
        return txn
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.error(
            "Tab %s is paid but its ledger entry could not be posted", tab_id
        )
        raise DependencyFailure(
            "Tab settled but the ledger entry could not be posted; retry the ledger posting",
            stage="ledger",
            tab_id=tab_id,
        ) from exc


# =============================================================================
# PUBLIC OPERATIONS
# =============================================================================

def settle(tab_id: int, payment_method, items: list[dict] | None = None) -> tuple[Tab, LedgerTransaction]:
    """
    Settle an open tab.

    Args:
        tab_id: tab to settle
        payment_method: credit, debit, cash, pix or other
        items: optional full item set to persist first (last full edit wins)

    Returns:
        (tab, transaction) with tab.status == 'paid'

    Raises:
        ValidationError: bad payment method, insufficient stock
        NotFound: unknown tab
        InvalidState: tab not open or empty (also the loser of a settle race)
        DependencyFailure: item rewrite failed, tab still open (stage='items');
            tab paid but ledger posting failed (stage='ledger')
    """
    method = _validate_payment_method(payment_method)

    tab = tab_service.get_tab(tab_id)
    if tab.status != TAB_OPEN:
        raise _not_open(tab, "settle")

    if items is not None:
        if not items:
            raise InvalidState("Cannot settle a tab with no items", {"tab_id": tab_id})
        try:
            tab_service.replace_line_items(tab_id, items)
        except SQLAlchemyError as exc:
            current_app.logger.error("Tab %s items could not be rewritten; settlement not started", tab_id)
            raise DependencyFailure(
                "Tab items could not be saved; the tab was not settled",
                stage="items",
                tab_id=tab_id,
            ) from exc

    tab = atomic_settle(tab_id, method)
    current_app.logger.info("Tab %s settled: %s cents via %s", tab.id, tab.total_cents, method)

    txn = _post_income(tab, method)
    return tab, txn


def cancel_tab(tab_id: int, reason: str | None = None) -> Tab:
    """open -> cancelled. No stock or ledger effect; terminal."""
    def _op():
        begin_immediate()
        tab = (
            lock_for_update(db.session.query(Tab).filter_by(id=tab_id))
            .populate_existing()
            .first()
        )
        if tab is None:
            raise NotFound(f"Tab {tab_id} not found", {"tab_id": tab_id})
        if tab.status != TAB_OPEN:
            raise _not_open(tab, "cancel")
        now = utcnow()
        if not guarded_transition(
            Tab,
            tab.id,
            from_status=TAB_OPEN,
            values={"status": TAB_CANCELLED, "cancelled_at": now, "updated_at": now, "cancel_reason": reason},
        ):
            db.session.refresh(tab)
            raise _not_open(tab, "cancel")
        db.session.commit()
        return tab

    tab = run_with_retry(_op)
    current_app.logger.info("Tab %s cancelled", tab.id)
    return tab


def find_unposted_settlements() -> list[Tab]:
    """Paid tabs that have no ledger entry (a failed step 3)."""
    return (
        db.session.query(Tab)
        .outerjoin(LedgerTransaction, LedgerTransaction.tab_id == Tab.id)
        .filter(Tab.status == TAB_PAID, LedgerTransaction.id.is_(None))
        .order_by(Tab.paid_at, Tab.id)
        .all()
    )


def post_settlement_transaction(tab_id: int, payment_method=None) -> LedgerTransaction:
    """
    Post the missing ledger entry for a paid tab.

    Uses the method recorded at settlement unless one is given.
    """
    tab = tab_service.get_tab(tab_id)
    if tab.status != TAB_PAID:
        raise InvalidState(
            f"Only paid tabs have a ledger entry (tab is {tab.status})",
            {"tab_id": tab.id, "status": tab.status},
        )
    existing = ledger_service.get_transaction_for_tab(tab.id)
    if existing is not None:
        raise ConflictError(
            "Ledger entry already posted for this tab",
            {"tab_id": tab.id, "transaction_id": existing.id},
        )

    method = _validate_payment_method(payment_method if payment_method is not None else tab.payment_method)
    try:
        return _post_income(tab, method)
    except DependencyFailure as exc:
        if isinstance(exc.__cause__, IntegrityError):
            # Lost a race with another repost; the unique tab_id held
            existing = ledger_service.get_transaction_for_tab(tab_id)
            raise ConflictError(
                "Ledger entry already posted for this tab",
                {"tab_id": tab_id, "transaction_id": existing.id if existing else None},
            ) from exc
        raise
