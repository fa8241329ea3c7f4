# Overview: Stock ledger operations; validation, stamping, locking and feed publication for medicines.

from __future__ import annotations

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..errors import InsufficientStockError, NotFoundError, ValidationError
from ..models import Medicine, MedicineSnapshot
from ..money import to_cents
from ..time_utils import utcnow
from ..validation import (
    ModelValidationPolicy,
    coerce_int,
    enforce_rules_medicine,
    require_actor_id,
    validate_payload,
)
from .concurrency import begin_write, lock_for_update, run_with_retry
from .feed_service import publish_medicines
"""
Stock Ledger Invariants (authoritative)

- quantity is never negative (service check + CHECK constraint).
- price is stored as integer cents; inputs are quantized to 2 decimals.
- Every mutation stamps last_updated (server time) and updated_by (actor id).
- Reads are ordered by name, then id.
- Deductions lock the row and re-read the current quantity; a decrement is
  never computed from a value read outside the locking transaction.
  version_id turns a lost race into StaleDataError, which run_with_retry
  answers with a fresh read.
- After every committed mutation the medicine feed receives a full snapshot.
"""

MEDICINE_POLICY = ModelValidationPolicy(
    writable_fields={"name", "quantity", "price_cents", "expiry_date"},
    required_on_create={"name"},
)


def _prepare_fields(fields, *, partial: bool) -> dict:
    if fields is None:
        fields = {}
    if not isinstance(fields, dict):
        raise ValidationError("Invalid payload")

    payload = dict(fields)
    if "price" in payload:
        if "price_cents" in payload:
            raise ValidationError("Provide either price or price_cents, not both")
        raw_price = payload.pop("price")
        payload["price_cents"] = None if raw_price is None else to_cents(raw_price)

    patch = validate_payload(
        model=Medicine,
        payload=payload,
        policy=MEDICINE_POLICY,
        partial=partial,
    )
    enforce_rules_medicine(patch)
    return patch


def _load(medicine_id, *, lock: bool = False) -> Medicine:
    query = db.session.query(Medicine).filter_by(id=medicine_id)
    if lock:
        query = lock_for_update(query)
    medicine = query.first()
    if medicine is None:
        raise NotFoundError("Medicine", medicine_id)
    return medicine


def _stamp(medicine: Medicine, actor_id: str) -> None:
    medicine.last_updated = utcnow()
    medicine.updated_by = actor_id


def list_medicines(search: str | None = None) -> list[MedicineSnapshot]:
    """
    Full ledger snapshot ordered by name.

    search: optional case-insensitive substring match on name.
    """
    q = db.session.query(Medicine)
    if search is not None and search.strip():
        term = search.strip().lower()
        q = q.filter(func.lower(Medicine.name).contains(term, autoescape=True))
    rows = q.order_by(Medicine.name.asc(), Medicine.id.asc()).all()
    return [row.to_snapshot() for row in rows]


def stock_snapshot() -> dict[int, MedicineSnapshot]:
    """Point read of the whole ledger keyed by id."""
    return {m.id: m.to_snapshot() for m in db.session.query(Medicine).all()}


def get_medicine(medicine_id: int) -> MedicineSnapshot:
    return _load(medicine_id).to_snapshot()


def find_medicine(medicine_id: int) -> MedicineSnapshot | None:
    medicine = db.session.query(Medicine).filter_by(id=medicine_id).first()
    return medicine.to_snapshot() if medicine else None


def create_medicine(fields: dict, actor_id: str) -> int:
    """Create a medicine. Missing quantity/price default to 0."""
    actor = require_actor_id(actor_id)
    patch = _prepare_fields(fields, partial=False)
    values = {"quantity": 0, "price_cents": 0}
    values.update({k: v for k, v in patch.items() if v is not None})

    def _op():
        medicine = Medicine(**values)
        _stamp(medicine, actor)
        db.session.add(medicine)
        db.session.commit()
        return medicine.id

    medicine_id = run_with_retry(_op)
    current_app.logger.info("Medicine %s created by %s", medicine_id, actor)
    publish_medicines()
    return medicine_id


def update_medicine(medicine_id: int, fields: dict, actor_id: str) -> MedicineSnapshot:
    """Partial update of name, quantity, price and expiry date."""
    actor = require_actor_id(actor_id)
    patch = _prepare_fields(fields, partial=True)
    if not patch:
        raise ValidationError("No fields to update")
    if "price_cents" in patch and patch["price_cents"] is None:
        raise ValidationError("price cannot be null")

    def _op():
        begin_write()
        medicine = _load(medicine_id, lock=True)
        for key, value in patch.items():
            setattr(medicine, key, value)
        _stamp(medicine, actor)
        db.session.commit()
        return medicine.to_snapshot()

    snapshot = run_with_retry(_op)
    publish_medicines()
    return snapshot


def delete_medicine(medicine_id: int, actor_id: str) -> None:
    """
    Hard delete (no tombstone). Deleting an already-deleted id raises
    NotFoundError. Sales history keeps its own copy of name and price.
    """
    actor = require_actor_id(actor_id)

    def _op():
        begin_write()
        medicine = _load(medicine_id, lock=True)
        db.session.delete(medicine)
        db.session.commit()

    run_with_retry(_op)
    current_app.logger.info("Medicine %s deleted by %s", medicine_id, actor)
    publish_medicines()


def _deduct_stock_inner(*, medicine_id: int, quantity: int, actor_id: str) -> Medicine:
    """Core deduction logic without write-begin, retry, commit or publish.

    Called by both the public deduct_stock() and the sale committer, which
    marks its deduction log row inside the same transaction.
    """
    medicine = _load(medicine_id, lock=True)
    if medicine.quantity < quantity:
        raise InsufficientStockError(
            medicine_id=medicine.id,
            requested=quantity,
            available=medicine.quantity,
            name=medicine.name,
        )
    medicine.quantity = medicine.quantity - quantity
    _stamp(medicine, actor_id)
    db.session.flush()
    return medicine


def _validate_deduction(quantity) -> int:
    quantity = coerce_int(quantity, "quantity")
    if quantity <= 0:
        raise ValidationError("quantity must be > 0")
    return quantity


def deduct_stock(medicine_id: int, quantity: int, actor_id: str) -> MedicineSnapshot:
    """Decrease on-hand quantity, failing rather than going negative."""
    actor = require_actor_id(actor_id)
    quantity = _validate_deduction(quantity)

    def _op():
        begin_write()
        medicine = _deduct_stock_inner(medicine_id=medicine_id, quantity=quantity, actor_id=actor)
        db.session.commit()
        return medicine.to_snapshot()

    snapshot = run_with_retry(_op)
    publish_medicines()
    return snapshot
