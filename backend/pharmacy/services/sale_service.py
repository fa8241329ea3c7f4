"""
Sale committer - turns a cart into a journal entry plus stock deductions.

Commit protocol (two-phase local log):

1. Write intent. In one locked transaction: re-validate every cart line
   against the current ledger, append the sale to the journal, and write one
   PENDING StockDeduction per line.
2. Apply. Each PENDING deduction is applied in its own transaction that
   decrements the medicine and flips the row to APPLIED. A deduction that
   cannot be applied (medicine deleted, stock edited down) is marked FAILED.
   If the database keeps refusing a write after retries, the pass stops and
   the remaining rows stay PENDING.

The journal is never rolled back. Failed or stalled deductions surface as
PartialCommitError; a crash between the phases leaves PENDING rows that
list_unfinished_commits() reports and resume_commit() finishes.

PENDING rows count as reservations during re-validation, so two cashiers
racing for the same stock cannot both pass step 1.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import partial

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..errors import (
    EmptyCartError,
    InsufficientStockError,
    NotFoundError,
    PartialCommitError,
)
from ..models import Medicine, Sale, SaleItem, StockDeduction
from ..time_utils import to_utc_z, utcnow
from ..validation import require_actor_id
from .cart_service import Cart, CartLine
from .concurrency import begin_write, lock_for_update, run_with_retry
from .feed_service import publish_medicines, publish_sales
from .journal_service import append_sale
from .stock_service import _deduct_stock_inner


def reserved_quantity(medicine_id: int) -> int:
    """Units owed to recorded sales whose deductions are still PENDING."""
    q = db.session.query(
        func.coalesce(func.sum(StockDeduction.quantity), 0)
    ).filter(
        StockDeduction.medicine_id == medicine_id,
        StockDeduction.status == StockDeduction.PENDING,
    )
    return int(q.scalar() or 0)


def _revalidate(lines: list[CartLine]) -> list[SaleItem]:
    """
    Re-check every line against locked ledger rows and build the sale items.

    Prices and names are copied here, at commit time.
    """
    locked: dict[int, Medicine] = {}
    # Lock in id order so concurrent committers cannot deadlock
    for medicine_id in sorted({line.medicine_id for line in lines}):
        medicine = lock_for_update(
            db.session.query(Medicine).filter_by(id=medicine_id)
        ).first()
        if medicine is None:
            raise NotFoundError("Medicine", medicine_id)
        locked[medicine_id] = medicine

    items = []
    for line in lines:
        medicine = locked[line.medicine_id]
        available = medicine.quantity - reserved_quantity(medicine.id)
        if line.quantity > available:
            raise InsufficientStockError(
                medicine_id=medicine.id,
                requested=line.quantity,
                available=max(available, 0),
                name=medicine.name,
            )
        items.append(SaleItem(
            medicine_id=medicine.id,
            name=medicine.name,
            quantity=line.quantity,
            unit_price_cents=medicine.price_cents,
        ))
    return items


def _record_sale(lines: list[CartLine], cashier_id: str) -> int:
    begin_write()
    items = _revalidate(lines)
    sale_id = append_sale(cashier_id=cashier_id, items=items, timestamp=utcnow())
    for number, item in enumerate(items, start=1):
        db.session.add(StockDeduction(
            sale_id=sale_id,
            line_number=number,
            medicine_id=item.medicine_id,
            quantity=item.quantity,
            status=StockDeduction.PENDING,
        ))
    db.session.commit()
    return sale_id


def _apply_deduction(deduction_id: int, actor_id: str) -> None:
    begin_write()
    deduction = lock_for_update(
        db.session.query(StockDeduction).filter_by(id=deduction_id)
    ).first()
    if deduction is None or deduction.status != StockDeduction.PENDING:
        # Already applied or failed by an earlier attempt
        db.session.rollback()
        return
    _deduct_stock_inner(
        medicine_id=deduction.medicine_id,
        quantity=deduction.quantity,
        actor_id=actor_id,
    )
    deduction.status = StockDeduction.APPLIED
    deduction.applied_at = utcnow()
    deduction.applied_by = actor_id
    db.session.commit()


def _mark_failed(deduction_id: int, reason: str) -> StockDeduction:
    def _op():
        deduction = db.session.get(StockDeduction, deduction_id)
        deduction.status = StockDeduction.FAILED
        deduction.failure_reason = reason[:255]
        db.session.commit()
        return deduction

    return run_with_retry(_op)


@dataclass
class ApplyOutcome:
    """What one pass over a sale's PENDING deductions achieved."""
    applied: list[int] = field(default_factory=list)
    failed: list[dict] = field(default_factory=list)
    pending: list[dict] = field(default_factory=list)


def _still_pending(deduction_ids: list[int], exc: Exception) -> list[dict]:
    rows = (
        db.session.query(StockDeduction)
        .filter(
            StockDeduction.id.in_(deduction_ids),
            StockDeduction.status == StockDeduction.PENDING,
        )
        .order_by(StockDeduction.line_number.asc())
        .all()
    )
    return [{**row.to_dict(), "error": exc.__class__.__name__} for row in rows]


def _apply_pending(sale_id: int, actor_id: str) -> ApplyOutcome:
    """
    Apply a sale's PENDING deductions in line order.

    A deduction the ledger rejects is marked FAILED and the pass moves on.
    Any other error (retries exhausted on a locked database, for example)
    stops the pass; that row and the ones after it stay PENDING.
    """
    pending_ids = [
        row.id
        for row in db.session.query(StockDeduction.id)
        .filter_by(sale_id=sale_id, status=StockDeduction.PENDING)
        .order_by(StockDeduction.line_number.asc())
        .all()
    ]
    db.session.rollback()

    outcome = ApplyOutcome()
    for position, deduction_id in enumerate(pending_ids):
        try:
            try:
                run_with_retry(partial(_apply_deduction, deduction_id, actor_id))
            except (NotFoundError, InsufficientStockError) as exc:
                deduction = _mark_failed(deduction_id, str(exc))
                outcome.failed.append({
                    **deduction.to_dict(),
                    "error": exc.__class__.__name__,
                    "details": exc.details,
                })
            else:
                outcome.applied.append(deduction_id)
        except Exception as exc:
            db.session.rollback()
            current_app.logger.exception(
                "Stopped applying deductions of sale %s at deduction %s",
                sale_id, deduction_id,
            )
            outcome.pending = _still_pending(pending_ids[position:], exc)
            break
    return outcome


def commit_sale(cart: Cart, cashier_id: str) -> int:
    """
    Check out a cart. Returns the new sale id and clears the cart.

    Raises:
    - EmptyCartError: the cart has no lines
    - InsufficientStockError / NotFoundError: re-validation failed; nothing written
    - PartialCommitError: the sale is recorded but some deductions failed or
      are still PENDING
    """
    cashier = require_actor_id(cashier_id)
    if cart.is_empty():
        raise EmptyCartError("Cart is empty")

    lines = cart.lines()
    sale_id = run_with_retry(partial(_record_sale, lines, cashier))
    current_app.logger.info(
        "Sale %s recorded by %s (%s line(s), %s unit(s))",
        sale_id, cashier, len(lines), sum(line.quantity for line in lines),
    )
    publish_sales()

    outcome = _apply_pending(sale_id, cashier)
    publish_medicines()

    # Cleared on partial commits too: the sale is already journaled
    cart.clear()

    if outcome.failed or outcome.pending:
        current_app.logger.error(
            "Sale %s recorded with %s failed and %s pending stock deduction(s): %s",
            sale_id, len(outcome.failed), len(outcome.pending),
            outcome.failed + outcome.pending,
        )
        raise PartialCommitError(sale_id, outcome.failed, outcome.pending)
    return sale_id


def resume_commit(sale_id: int, actor_id: str) -> dict:
    """
    Apply deductions left PENDING by an interrupted commit.

    Returns {"sale_id", "applied", "deductions"} where `applied` counts the
    rows this call moved to APPLIED. FAILED rows are never retried here;
    if any exist, or some rows are still PENDING, PartialCommitError is raised.
    """
    actor = require_actor_id(actor_id)
    if db.session.get(Sale, sale_id) is None:
        raise NotFoundError("Sale", sale_id)

    outcome = _apply_pending(sale_id, actor)
    publish_medicines()

    rows = (
        db.session.query(StockDeduction)
        .filter_by(sale_id=sale_id)
        .order_by(StockDeduction.line_number.asc())
        .all()
    )
    failed = [row.to_dict() for row in rows if row.status == StockDeduction.FAILED]
    if failed or outcome.pending:
        current_app.logger.error(
            "Sale %s still has %s failed and %s pending deduction(s)",
            sale_id, len(failed), len(outcome.pending),
        )
        raise PartialCommitError(sale_id, failed, outcome.pending)
    current_app.logger.info(
        "Resumed sale %s: %s deduction(s) applied by %s", sale_id, len(outcome.applied), actor,
    )
    return {
        "sale_id": sale_id,
        "applied": len(outcome.applied),
        "deductions": [row.to_dict() for row in rows],
    }


def list_unfinished_commits() -> list[dict]:
    """Sales whose deduction log still has PENDING or FAILED rows."""
    rows = (
        db.session.query(StockDeduction)
        .filter(StockDeduction.status.in_([StockDeduction.PENDING, StockDeduction.FAILED]))
        .order_by(StockDeduction.sale_id.asc(), StockDeduction.line_number.asc())
        .all()
    )
    by_sale: dict[int, dict] = {}
    for row in rows:
        entry = by_sale.get(row.sale_id)
        if entry is None:
            sale = row.sale
            entry = by_sale[row.sale_id] = {
                "sale_id": row.sale_id,
                "cashier_id": sale.cashier_id,
                "timestamp": to_utc_z(sale.timestamp),
                "pending": [],
                "failed": [],
            }
        key = "pending" if row.status == StockDeduction.PENDING else "failed"
        entry[key].append(row.to_dict())
    return list(by_sale.values())
