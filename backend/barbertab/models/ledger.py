from __future__ import annotations

from ..extensions import db
from barbertab.time_utils import to_utc_z


TRANSACTION_INCOME = "income"
TRANSACTION_EXPENSE = "expense"


class LedgerTransaction(db.Model):
    """
    Financial ledger entry.

    IMMUTABLE: Records are never updated or deleted.

    A settled tab produces exactly one income entry; the unique tab_id makes a
    second posting for the same tab impossible at the database level.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.UniqueConstraint("tab_id", name="uq_transactions_tab"),
        db.Index("ix_transactions_type_occurred", "type", "occurred_at"),
        db.CheckConstraint("type IN ('income', 'expense')", name="ck_transactions_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    type = db.Column(db.String(16), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    method = db.Column(db.String(16), nullable=True)
    category = db.Column(db.String(64), nullable=True)
    description = db.Column(db.String(255), nullable=True)

    tab_id = db.Column(db.Integer, db.ForeignKey("tabs.id"), nullable=True)

    # Business time
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    # System time
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    tab = db.relationship("Tab", backref=db.backref("ledger_transaction", uselist=False))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "amount_cents": self.amount_cents,
            "method": self.method,
            "category": self.category,
            "description": self.description,
            "tab_id": self.tab_id,
            "occurred_at": to_utc_z(self.occurred_at),
            "created_at": to_utc_z(self.created_at),
        }
