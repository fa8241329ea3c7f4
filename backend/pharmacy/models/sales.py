from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from sqlalchemy import event
from sqlalchemy.orm import object_session

from ..extensions import db
from ..errors import JournalImmutableError
from ..money import cents_to_decimal, format_cents
from ..time_utils import to_utc_z


class Sale(db.Model):
    """
    Sales journal entry.

    Append-only: rows are inserted once by the sale committer and never
    updated or deleted through the ORM (see the listeners at the bottom).
    Line prices are snapshots taken at commit time, so later price edits on
    the medicine do not change historical sales.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_timestamp_id", "timestamp", "id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    cashier_id = db.Column(db.String(128), nullable=False, index=True)
    total_cents = db.Column(db.Integer, nullable=False)

    # Server-assigned business time; journal order is timestamp DESC, id DESC
    timestamp = db.Column(db.DateTime(timezone=True), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    lines = db.relationship(
        "SaleLine",
        backref=db.backref("sale", lazy=True),
        order_by="SaleLine.line_number",
        lazy="selectin",
    )

    def to_record(self) -> "SaleRecord":
        return SaleRecord(
            id=self.id,
            cashier_id=self.cashier_id,
            total_cents=self.total_cents,
            timestamp=self.timestamp,
            items=tuple(line.to_item() for line in self.lines),
        )

    def to_dict(self) -> dict:
        return self.to_record().to_dict()


class SaleLine(db.Model):
    """Line item on a journal entry. No FK to medicines: medicines are hard-deleted."""
    __tablename__ = "sale_lines"
    __table_args__ = (
        db.UniqueConstraint("sale_id", "line_number", name="uq_sale_lines_sale_line"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    line_number = db.Column(db.Integer, nullable=False)

    medicine_id = db.Column(db.Integer, nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    def to_item(self) -> "SaleItem":
        return SaleItem(
            medicine_id=self.medicine_id,
            name=self.name,
            quantity=self.quantity,
            unit_price_cents=self.unit_price_cents,
        )


class StockDeduction(db.Model):
    """
    Commit log for the stock side of a sale.

    One row per sale line, written PENDING in the same transaction as the
    journal entry (intent), then flipped to APPLIED in the same transaction as
    the stock decrement, or to FAILED with a reason. PENDING rows also act as
    reservations when later commits re-validate stock.
    """
    __tablename__ = "stock_deductions"
    __table_args__ = (
        db.UniqueConstraint("sale_id", "line_number", name="uq_stock_deductions_sale_line"),
        db.Index("ix_stock_deductions_medicine_status", "medicine_id", "status"),
        {"sqlite_autoincrement": True},
    )

    PENDING = "PENDING"
    APPLIED = "APPLIED"
    FAILED = "FAILED"

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    line_number = db.Column(db.Integer, nullable=False)
    medicine_id = db.Column(db.Integer, nullable=False)
    quantity = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(16), nullable=False, default=PENDING, index=True)
    failure_reason = db.Column(db.String(255), nullable=True)
    applied_at = db.Column(db.DateTime(timezone=True), nullable=True)
    applied_by = db.Column(db.String(128), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship("Sale", backref=db.backref("deductions", lazy=True, order_by="StockDeduction.line_number"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "line_number": self.line_number,
            "medicine_id": self.medicine_id,
            "quantity": self.quantity,
            "status": self.status,
            "failure_reason": self.failure_reason,
            "applied_at": to_utc_z(self.applied_at),
            "applied_by": self.applied_by,
        }


@dataclass(frozen=True)
class SaleItem:
    medicine_id: int
    name: str
    quantity: int
    unit_price_cents: int

    @property
    def line_total_cents(self) -> int:
        return self.unit_price_cents * self.quantity

    def to_dict(self) -> dict:
        return {
            "medicine_id": self.medicine_id,
            "name": self.name,
            "quantity": self.quantity,
            "price": format_cents(self.unit_price_cents),
            "line_total": format_cents(self.line_total_cents),
        }


@dataclass(frozen=True)
class SaleRecord:
    id: int
    cashier_id: str
    total_cents: int
    timestamp: datetime
    items: tuple = field(default_factory=tuple)

    @property
    def total(self) -> Decimal:
        return cents_to_decimal(self.total_cents)

    @property
    def quantity_sold(self) -> int:
        return sum(item.quantity for item in self.items)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cashier_id": self.cashier_id,
            "total": format_cents(self.total_cents),
            "timestamp": to_utc_z(self.timestamp),
            "items": [item.to_dict() for item in self.items],
        }


def _reject_journal_update(mapper, connection, target):
    session = object_session(target)
    if session is not None and not session.is_modified(target, include_collections=False):
        return
    raise JournalImmutableError(
        f"{type(target).__name__} rows are append-only",
        details={"table": target.__tablename__, "id": target.id},
    )


def _reject_journal_delete(mapper, connection, target):
    raise JournalImmutableError(
        f"{type(target).__name__} rows cannot be deleted",
        details={"table": target.__tablename__, "id": target.id},
    )


for _model in (Sale, SaleLine):
    event.listen(_model, "before_update", _reject_journal_update)
    event.listen(_model, "before_delete", _reject_journal_delete)
