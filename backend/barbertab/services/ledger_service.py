# Overview: Service-layer operations for the financial ledger; append-only transaction entries.

from __future__ import annotations

from datetime import datetime
from typing import Optional

from ..extensions import db
from ..models import LedgerTransaction
from ..models.ledger import TRANSACTION_EXPENSE, TRANSACTION_INCOME
from ..errors import ValidationError
from barbertab.time_utils import utcnow
"""
Ledger Invariants (authoritative)

- Append-only: entries are never updated or deleted.
- amount_cents is always positive; type carries the direction.
- A settled tab has at most one entry (unique tab_id).
- occurred_at is business time; created_at is system time (DB default).
"""

VALID_TRANSACTION_TYPES = (TRANSACTION_INCOME, TRANSACTION_EXPENSE)


def record_transaction(
    *,
    type: str,
    amount_cents: int,
    method: str | None = None,
    category: str | None = None,
    description: str | None = None,
    tab_id: int | None = None,
    occurred_at: Optional[datetime] = None,
) -> LedgerTransaction:
    """
    Append one ledger entry.

    Flushes without committing so the caller decides the transaction boundary.
    """
    if type not in VALID_TRANSACTION_TYPES:
        raise ValidationError(f"Invalid transaction type: {type}", {"type": type})
    if amount_cents < 0:
        raise ValidationError("amount_cents must be >= 0")

    txn = LedgerTransaction(
        type=type,
        amount_cents=amount_cents,
        method=method,
        category=category,
        description=description,
        tab_id=tab_id,
        occurred_at=occurred_at or utcnow(),
    )
    db.session.add(txn)
    db.session.flush()
    return txn


def get_transaction_for_tab(tab_id: int) -> LedgerTransaction | None:
    return db.session.query(LedgerTransaction).filter_by(tab_id=tab_id).first()


def list_transactions(
    *,
    type: str | None = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = 200,
) -> list[LedgerTransaction]:
    """Newest first. start is inclusive, end exclusive."""
    q = db.session.query(LedgerTransaction)
    if type is not None:
        if type not in VALID_TRANSACTION_TYPES:
            raise ValidationError(f"Invalid transaction type: {type}", {"type": type})
        q = q.filter(LedgerTransaction.type == type)
    if start is not None:
        q = q.filter(LedgerTransaction.occurred_at >= start)
    if end is not None:
        q = q.filter(LedgerTransaction.occurred_at < end)
    return (
        q.order_by(LedgerTransaction.occurred_at.desc(), LedgerTransaction.id.desc())
        .limit(limit)
        .all()
    )
