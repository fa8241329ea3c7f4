from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal

from ..extensions import db
from ..money import cents_to_decimal, format_cents
from ..time_utils import to_iso_date, to_utc_z


class Medicine(db.Model):
    """
    Stock ledger row: one medicine and its on-hand quantity.

    Unlike a transaction-derived inventory, quantity is a mutable field here.
    Every write goes through stock_service, which locks the row and relies on
    version_id (optimistic locking) so concurrent deductions never apply a
    decrement computed from a stale read.
    """
    __tablename__ = "medicines"
    __table_args__ = (
        db.CheckConstraint("quantity >= 0", name="ck_medicines_quantity_nonnegative"),
        db.CheckConstraint("price_cents >= 0", name="ck_medicines_price_nonnegative"),
        db.Index("ix_medicines_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=0)

    # Authoritative storage in cents (API formats as a 2-decimal string)
    price_cents = db.Column(db.Integer, nullable=False, default=0)

    expiry_date = db.Column(db.Date, nullable=True, index=True)

    last_updated = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_by = db.Column(db.String(128), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Medicine id={self.id} name={self.name!r} quantity={self.quantity}>"

    def to_snapshot(self) -> "MedicineSnapshot":
        return MedicineSnapshot(
            id=self.id,
            name=self.name,
            quantity=self.quantity,
            price_cents=self.price_cents,
            expiry_date=self.expiry_date,
            last_updated=self.last_updated,
            updated_by=self.updated_by,
            version_id=self.version_id,
        )

    def to_dict(self) -> dict:
        return self.to_snapshot().to_dict()


@dataclass(frozen=True)
class MedicineSnapshot:
    """Detached, immutable view of a Medicine row as delivered by the live feed."""
    id: int
    name: str
    quantity: int
    price_cents: int
    expiry_date: date | None = None
    last_updated: datetime | None = None
    updated_by: str | None = None
    version_id: int | None = None

    @property
    def price(self) -> Decimal:
        return cents_to_decimal(self.price_cents)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "quantity": self.quantity,
            "price": format_cents(self.price_cents),
            "expiry_date": to_iso_date(self.expiry_date),
            "last_updated": to_utc_z(self.last_updated),
            "updated_by": self.updated_by,
        }
