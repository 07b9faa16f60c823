"""
Settlement tests: stock out, paid transition, ledger posting and recovery.

The main flow follows one visit end to end: booking (45.00), two pomades
(2 x 20.00), a 5.00 discount and a pix payment of 80.00.
"""

import pytest
from sqlalchemy.exc import SQLAlchemyError

from barbertab.errors import ConflictError, DependencyFailure, InvalidState, NotFound, ValidationError
from barbertab.models import Client, LedgerTransaction, Product, StockMovement
from barbertab.models.ledger import TRANSACTION_INCOME
from barbertab.models.tabs import TAB_CANCELLED, TAB_OPEN, TAB_PAID
from barbertab.services import booking_service, ledger_service, settlement_service, tab_service


@pytest.fixture
def booked_tab(db_session, haircut, barber):
    _, tab = booking_service.create_booking(
        service_id=haircut.id,
        staff_id=barber.id,
        start_time="2026-10-20T10:00:00",
        client_name="Carlos",
        client_phone="11 98888-7777",
    )
    return tab


@pytest.fixture
def discounted_tab(booked_tab, pomade, barber):
    tab = tab_service.add_line_item(
        booked_tab.id,
        kind="product",
        catalog_ref_id=pomade.id,
        quantity=2,
        responsible_staff_id=barber.id,
    )
    assert tab.subtotal_cents == 8500
    tab = tab_service.set_discount(tab.id, 500)
    assert tab.total_cents == 8000
    return tab


def stock_of(db_session, product):
    return db_session.get(Product, product.id).stock_quantity


class TestSettle:

    def test_settle_pix(self, db_session, discounted_tab, pomade):
        tab, txn = settlement_service.settle(discounted_tab.id, "pix")

        assert tab.status == TAB_PAID
        assert tab.payment_method == "pix"
        assert tab.paid_at is not None
        assert stock_of(db_session, pomade) == 8

        assert txn.type == TRANSACTION_INCOME
        assert txn.amount_cents == 8000
        assert txn.method == "pix"
        assert txn.tab_id == tab.id
        assert txn.category == "Counter sale"
        assert txn.description == f"Tab #{tab.id} - Client: Carlos"
        assert db_session.query(LedgerTransaction).count() == 1

    def test_add_after_settle_rejected(self, discounted_tab, pomade, barber):
        settlement_service.settle(discounted_tab.id, "pix")
        with pytest.raises(InvalidState):
            tab_service.add_line_item(
                discounted_tab.id,
                kind="product",
                catalog_ref_id=pomade.id,
                responsible_staff_id=barber.id,
            )

    def test_stock_movement_per_product_line(self, db_session, discounted_tab, pomade):
        tab, _ = settlement_service.settle(discounted_tab.id, "cash")
        movements = db_session.query(StockMovement).all()
        assert len(movements) == 1
        assert movements[0].product_id == pomade.id
        assert movements[0].tab_id == tab.id
        assert movements[0].quantity_delta == -2

    def test_client_aggregates_updated(self, db_session, discounted_tab):
        tab, _ = settlement_service.settle(discounted_tab.id, "debit")
        client = db_session.get(Client, tab.client_id)
        assert client.total_spent_cents == 8000
        assert client.total_visits == 1
        assert client.last_visit_at is not None

    def test_payment_method_normalized(self, discounted_tab):
        tab, txn = settlement_service.settle(discounted_tab.id, " PIX ")
        assert tab.payment_method == "pix"
        assert txn.method == "pix"

    def test_invalid_payment_method(self, db_session, discounted_tab, pomade):
        with pytest.raises(ValidationError):
            settlement_service.settle(discounted_tab.id, "voucher")
        assert tab_service.get_tab(discounted_tab.id).status == TAB_OPEN
        assert stock_of(db_session, pomade) == 10

    def test_missing_tab(self, db_session):
        with pytest.raises(NotFound):
            settlement_service.settle(999, "cash")

    def test_empty_tab_rejected(self, regular_client):
        tab = tab_service.open_walk_in_tab(regular_client.id)
        with pytest.raises(InvalidState):
            settlement_service.settle(tab.id, "cash")
        assert tab_service.get_tab(tab.id).status == TAB_OPEN

    def test_empty_item_set_rejected(self, discounted_tab):
        with pytest.raises(InvalidState):
            settlement_service.settle(discounted_tab.id, "cash", items=[])
        assert len(tab_service.get_tab(discounted_tab.id).lines) == 2

    def test_settle_with_item_rewrite(self, db_session, discounted_tab, pomade, barber):
        service_line = discounted_tab.lines[0]
        tab, txn = settlement_service.settle(
            discounted_tab.id,
            "credit",
            items=[
                {"line_item_id": service_line.id},
                {"kind": "product", "catalog_ref_id": pomade.id, "quantity": 3, "responsible_staff_id": barber.id},
            ],
        )
        assert tab.subtotal_cents == 4500 + 6000
        assert tab.total_cents == 4500 + 6000 - 500
        assert txn.amount_cents == tab.total_cents
        assert stock_of(db_session, pomade) == 7


class TestDoubleSettle:

    def test_second_settle_rejected_without_side_effects(self, db_session, discounted_tab, pomade):
        settlement_service.settle(discounted_tab.id, "pix")

        with pytest.raises(InvalidState):
            settlement_service.settle(discounted_tab.id, "cash")

        assert stock_of(db_session, pomade) == 8
        assert db_session.query(LedgerTransaction).count() == 1
        assert db_session.query(StockMovement).count() == 1

    def test_atomic_settle_rechecks_status(self, db_session, discounted_tab, pomade):
        settlement_service.atomic_settle(discounted_tab.id, "pix")
        with pytest.raises(InvalidState):
            settlement_service.atomic_settle(discounted_tab.id, "pix")
        assert stock_of(db_session, pomade) == 8


class TestStock:

    def test_insufficient_stock(self, db_session, booked_tab, pomade, barber):
        tab_service.add_line_item(
            booked_tab.id, kind="product", catalog_ref_id=pomade.id, quantity=11, responsible_staff_id=barber.id
        )
        with pytest.raises(ValidationError) as exc_info:
            settlement_service.settle(booked_tab.id, "cash")

        items = exc_info.value.details["items"]
        assert items == [{"product_id": pomade.id, "requested_quantity": 11, "on_hand": 10}]
        assert tab_service.get_tab(booked_tab.id).status == TAB_OPEN
        assert stock_of(db_session, pomade) == 10
        assert db_session.query(LedgerTransaction).count() == 0
        assert db_session.query(StockMovement).count() == 0

    def test_negative_stock_when_allowed(self, app, monkeypatch, db_session, booked_tab, pomade, barber):
        monkeypatch.setitem(app.config, "ALLOW_NEGATIVE_STOCK", True)
        tab_service.add_line_item(
            booked_tab.id, kind="product", catalog_ref_id=pomade.id, quantity=11, responsible_staff_id=barber.id
        )
        settlement_service.settle(booked_tab.id, "cash")
        assert stock_of(db_session, pomade) == -1

    def test_same_product_on_two_lines(self, db_session, booked_tab, pomade, barber, second_barber):
        for staff in (barber, second_barber):
            tab_service.add_line_item(
                booked_tab.id, kind="product", catalog_ref_id=pomade.id, quantity=5, responsible_staff_id=staff.id
            )
        settlement_service.settle(booked_tab.id, "cash")
        assert stock_of(db_session, pomade) == 0
        assert db_session.query(StockMovement).count() == 2


class TestCancel:

    def test_cancel_open_tab(self, db_session, discounted_tab, pomade):
        tab = settlement_service.cancel_tab(discounted_tab.id, reason="no show")
        assert tab.status == TAB_CANCELLED
        assert tab.cancel_reason == "no show"
        assert tab.cancelled_at is not None
        assert stock_of(db_session, pomade) == 10
        assert db_session.query(LedgerTransaction).count() == 0

    def test_cancelled_tab_is_terminal(self, discounted_tab):
        settlement_service.cancel_tab(discounted_tab.id)
        with pytest.raises(InvalidState):
            settlement_service.cancel_tab(discounted_tab.id)
        with pytest.raises(InvalidState):
            settlement_service.settle(discounted_tab.id, "cash")

    def test_paid_tab_cannot_be_cancelled(self, discounted_tab):
        settlement_service.settle(discounted_tab.id, "pix")
        with pytest.raises(InvalidState):
            settlement_service.cancel_tab(discounted_tab.id)


class TestLedgerRecovery:

    @staticmethod
    def _boom(**kwargs):
        raise SQLAlchemyError("ledger unavailable")

    def test_ledger_failure_leaves_paid_tab_unposted(self, monkeypatch, db_session, discounted_tab, pomade):
        monkeypatch.setattr(ledger_service, "record_transaction", self._boom)

        with pytest.raises(DependencyFailure) as exc_info:
            settlement_service.settle(discounted_tab.id, "pix")

        assert exc_info.value.details == {"stage": "ledger", "tab_id": discounted_tab.id}
        assert tab_service.get_tab(discounted_tab.id).status == TAB_PAID
        assert stock_of(db_session, pomade) == 8
        assert db_session.query(LedgerTransaction).count() == 0
        assert [t.id for t in settlement_service.find_unposted_settlements()] == [discounted_tab.id]

    def test_repost_fills_the_gap_once(self, monkeypatch, db_session, discounted_tab):
        monkeypatch.setattr(ledger_service, "record_transaction", self._boom)
        with pytest.raises(DependencyFailure):
            settlement_service.settle(discounted_tab.id, "pix")
        monkeypatch.undo()

        txn = settlement_service.post_settlement_transaction(discounted_tab.id)
        assert txn.amount_cents == 8000
        assert txn.method == "pix"
        assert settlement_service.find_unposted_settlements() == []

        with pytest.raises(ConflictError):
            settlement_service.post_settlement_transaction(discounted_tab.id)
        assert db_session.query(LedgerTransaction).count() == 1

    def test_repost_requires_paid_tab(self, discounted_tab):
        with pytest.raises(InvalidState):
            settlement_service.post_settlement_transaction(discounted_tab.id)

    def test_list_transactions(self, discounted_tab):
        settlement_service.settle(discounted_tab.id, "pix")
        incomes = ledger_service.list_transactions(type=TRANSACTION_INCOME)
        assert [t.tab_id for t in incomes] == [discounted_tab.id]
        with pytest.raises(ValidationError):
            ledger_service.list_transactions(type="refund")


class TestItemRewriteFailure:

    def test_failed_rewrite_leaves_tab_open(self, monkeypatch, db_session, discounted_tab, haircut, pomade, barber):
        def fail(tab):
            raise SQLAlchemyError("write failed")

        monkeypatch.setattr(tab_service, "_recompute_totals", fail)
        with pytest.raises(DependencyFailure) as exc_info:
            settlement_service.settle(
                discounted_tab.id,
                "pix",
                items=[{"kind": "service", "catalog_ref_id": haircut.id, "responsible_staff_id": barber.id}],
            )
        monkeypatch.undo()

        assert exc_info.value.status_code == 502
        assert exc_info.value.details == {"stage": "items", "tab_id": discounted_tab.id}

        tab = tab_service.get_tab(discounted_tab.id)
        assert tab.status == TAB_OPEN
        assert len(tab.lines) == 2
        assert tab.total_cents == 8000
        assert stock_of(db_session, pomade) == 10
        assert db_session.query(LedgerTransaction).count() == 0
        assert db_session.query(StockMovement).count() == 0
