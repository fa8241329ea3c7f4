# Overview: Sales journal access; append-only writes and newest-first reads.

from __future__ import annotations

from datetime import datetime
from typing import Iterable

from ..extensions import db
from ..errors import NotFoundError, ValidationError
from ..models import Sale, SaleItem, SaleLine, SaleRecord, StockDeduction
from ..time_utils import utcnow


def append_sale(
    *,
    cashier_id: str,
    items: Iterable[SaleItem],
    timestamp: datetime | None = None,
) -> int:
    """
    Append a journal entry and its lines.

    Flush only: the caller owns the transaction, so the entry can be written
    together with its deduction log rows.
    """
    items = list(items)
    if not items:
        raise ValidationError("A sale needs at least one item")
    for item in items:
        if item.quantity < 1:
            raise ValidationError("Sale item quantity must be >= 1")

    sale = Sale(
        cashier_id=cashier_id,
        total_cents=sum(item.line_total_cents for item in items),
        timestamp=timestamp or utcnow(),
    )
    db.session.add(sale)
    db.session.flush()

    for number, item in enumerate(items, start=1):
        db.session.add(SaleLine(
            sale_id=sale.id,
            line_number=number,
            medicine_id=item.medicine_id,
            name=item.name,
            quantity=item.quantity,
            unit_price_cents=item.unit_price_cents,
            line_total_cents=item.line_total_cents,
        ))
    db.session.flush()
    return sale.id


def list_sales(limit: int | None = None) -> list[SaleRecord]:
    """Journal entries newest-first (timestamp, then id, both descending)."""
    q = db.session.query(Sale).order_by(Sale.timestamp.desc(), Sale.id.desc())
    if limit is not None:
        q = q.limit(limit)
    return [sale.to_record() for sale in q.all()]


def get_sale(sale_id: int) -> SaleRecord:
    sale = db.session.get(Sale, sale_id)
    if sale is None:
        raise NotFoundError("Sale", sale_id)
    return sale.to_record()


def list_deductions(sale_id: int) -> list[StockDeduction]:
    return (
        db.session.query(StockDeduction)
        .filter_by(sale_id=sale_id)
        .order_by(StockDeduction.line_number.asc())
        .all()
    )
