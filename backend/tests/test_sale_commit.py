"""
Sale committer tests: happy path, re-validation at commit time, partial
commits, resuming interrupted commits and concurrent checkouts.
"""

import threading

import pytest
from sqlalchemy.exc import OperationalError

from pharmacy import create_app
from pharmacy.errors import (
    EmptyCartError,
    InsufficientStockError,
    NotFoundError,
    PartialCommitError,
)
from pharmacy.extensions import db
from pharmacy.models import Medicine, Sale, StockDeduction
from pharmacy.services import journal_service, sale_service, stock_service
from pharmacy.services.cart_service import Cart, LedgerLookup


def _cart_with(medicine_id, quantity):
    cart = Cart(LedgerLookup())
    cart.set_line_quantity(medicine_id, quantity)
    return cart


def test_end_to_end_paracetamol_sale(paracetamol):
    cart = Cart(LedgerLookup())
    for _ in range(3):
        cart.add_line(paracetamol.id)

    sale_id = sale_service.commit_sale(cart, "c1")

    sale = journal_service.get_sale(sale_id)
    payload = sale.to_dict()
    assert payload["total"] == "4.50"
    assert payload["cashier_id"] == "c1"
    assert payload["timestamp"].endswith("Z")
    assert payload["items"] == [{
        "medicine_id": paracetamol.id,
        "name": "Paracetamol",
        "quantity": 3,
        "price": "1.50",
        "line_total": "4.50",
    }]

    assert stock_service.get_medicine(paracetamol.id).quantity == 17
    assert cart.is_empty()

    deductions = journal_service.list_deductions(sale_id)
    assert [d.status for d in deductions] == [StockDeduction.APPLIED]
    assert deductions[0].applied_by == "c1"


def test_set_quantity_beyond_remaining_stock_after_sale(paracetamol):
    sale_service.commit_sale(_cart_with(paracetamol.id, 3), "c1")

    cart = _cart_with(paracetamol.id, 1)
    with pytest.raises(InsufficientStockError) as exc:
        cart.set_line_quantity(paracetamol.id, 25)

    assert exc.value.available == 17
    assert cart.get_line(paracetamol.id).quantity == 1


def test_commit_conserves_quantity_across_lines(make_medicine):
    a = make_medicine(name="Amoxicillin", quantity=10, price="4.20")
    b = make_medicine(name="Zinc", quantity=5, price="0.99")
    before = sum(m.quantity for m in stock_service.list_medicines())

    cart = Cart(LedgerLookup())
    cart.set_line_quantity(b.id, 2)
    cart.set_line_quantity(a.id, 4)
    sale_id = sale_service.commit_sale(cart, "c1")

    after = sum(m.quantity for m in stock_service.list_medicines())
    sale = journal_service.get_sale(sale_id)
    assert before - after == 6
    assert sale.quantity_sold == 6
    assert sale.total_cents == 2 * 99 + 4 * 420
    # Lines keep cart order
    assert [item.name for item in sale.items] == ["Zinc", "Amoxicillin"]


def test_empty_cart_is_rejected(db_session):
    with pytest.raises(EmptyCartError):
        sale_service.commit_sale(Cart(LedgerLookup()), "c1")
    assert db_session.query(Sale).count() == 0


def test_commit_revalidates_and_writes_nothing_on_shortage(paracetamol):
    cart = _cart_with(paracetamol.id, 10)
    stock_service.update_medicine(paracetamol.id, {"quantity": 4}, "manager")

    with pytest.raises(InsufficientStockError) as exc:
        sale_service.commit_sale(cart, "c1")

    assert exc.value.available == 4
    assert cart.get_line(paracetamol.id).quantity == 10
    assert db.session.query(Sale).count() == 0
    assert db.session.query(StockDeduction).count() == 0
    assert stock_service.get_medicine(paracetamol.id).quantity == 4


def test_commit_of_deleted_medicine_writes_nothing(paracetamol):
    cart = _cart_with(paracetamol.id, 1)
    stock_service.delete_medicine(paracetamol.id, "manager")

    with pytest.raises(NotFoundError):
        sale_service.commit_sale(cart, "c1")
    assert db.session.query(Sale).count() == 0


def test_commit_snapshots_price_at_commit_time(paracetamol):
    cart = _cart_with(paracetamol.id, 2)
    stock_service.update_medicine(paracetamol.id, {"price": "2.00"}, "manager")

    sale_id = sale_service.commit_sale(cart, "c1")
    assert journal_service.get_sale(sale_id).total_cents == 400

    # Later price edits do not rewrite history
    stock_service.update_medicine(paracetamol.id, {"price": "9.99"}, "manager")
    assert journal_service.get_sale(sale_id).total_cents == 400


def test_deterministic_race_from_same_snapshot(make_medicine):
    medicine = make_medicine(name="Amoxicillin", quantity=5)
    first = _cart_with(medicine.id, 3)
    second = _cart_with(medicine.id, 3)

    sale_service.commit_sale(first, "c1")
    with pytest.raises(InsufficientStockError) as exc:
        sale_service.commit_sale(second, "c2")

    assert exc.value.available == 2
    assert stock_service.get_medicine(medicine.id).quantity == 2
    assert len(journal_service.list_sales()) == 1


def test_pending_deductions_reserve_stock(make_medicine, monkeypatch):
    medicine = make_medicine(name="Amoxicillin", quantity=5)

    with monkeypatch.context() as m:
        # Crash between recording the sale and applying its deductions
        m.setattr(sale_service, "_apply_pending", lambda sale_id, actor_id: sale_service.ApplyOutcome())
        sale_service.commit_sale(_cart_with(medicine.id, 3), "c1")

    assert stock_service.get_medicine(medicine.id).quantity == 5
    assert sale_service.reserved_quantity(medicine.id) == 3

    with pytest.raises(InsufficientStockError) as exc:
        sale_service.commit_sale(_cart_with(medicine.id, 3), "c2")
    assert exc.value.available == 2


def test_resume_applies_pending_deductions(make_medicine, monkeypatch):
    medicine = make_medicine(name="Amoxicillin", quantity=5)
    with monkeypatch.context() as m:
        m.setattr(sale_service, "_apply_pending", lambda sale_id, actor_id: sale_service.ApplyOutcome())
        sale_id = sale_service.commit_sale(_cart_with(medicine.id, 3), "c1")

    unfinished = sale_service.list_unfinished_commits()
    assert [entry["sale_id"] for entry in unfinished] == [sale_id]
    assert len(unfinished[0]["pending"]) == 1
    assert unfinished[0]["failed"] == []

    result = sale_service.resume_commit(sale_id, "supervisor")

    assert result["applied"] == 1
    rows = result["deductions"]
    assert [row["status"] for row in rows] == [StockDeduction.APPLIED]
    assert rows[0]["applied_by"] == "supervisor"
    assert stock_service.get_medicine(medicine.id).quantity == 2
    assert sale_service.list_unfinished_commits() == []

    # Resuming again is a no-op
    assert sale_service.resume_commit(sale_id, "supervisor")["applied"] == 0
    assert stock_service.get_medicine(medicine.id).quantity == 2


def test_resume_unknown_sale(db_session):
    with pytest.raises(NotFoundError):
        sale_service.resume_commit(12345, "supervisor")


def test_partial_commit_keeps_sale_and_reports_failures(make_medicine, monkeypatch):
    kept = make_medicine(name="Amoxicillin", quantity=10)
    doomed = make_medicine(name="Zinc", quantity=10)

    cart = Cart(LedgerLookup())
    cart.set_line_quantity(kept.id, 2)
    cart.set_line_quantity(doomed.id, 1)

    record_sale = sale_service._record_sale

    def record_then_delete(lines, cashier_id):
        sale_id = record_sale(lines, cashier_id)
        # Medicine removed between recording the sale and applying stock
        stock_service.delete_medicine(doomed.id, "manager")
        return sale_id

    monkeypatch.setattr(sale_service, "_record_sale", record_then_delete)

    with pytest.raises(PartialCommitError) as exc:
        sale_service.commit_sale(cart, "c1")

    err = exc.value
    assert err.status_code == 500
    assert [f["medicine_id"] for f in err.failed] == [doomed.id]
    assert err.failed[0]["status"] == StockDeduction.FAILED
    assert err.failed[0]["error"] == "NotFoundError"

    # The sale stays in the journal; the surviving line was deducted
    sale = journal_service.get_sale(err.sale_id)
    assert sale.quantity_sold == 3
    assert stock_service.get_medicine(kept.id).quantity == 8
    assert cart.is_empty()

    unfinished = sale_service.list_unfinished_commits()
    assert unfinished[0]["sale_id"] == err.sale_id
    assert unfinished[0]["pending"] == []
    assert len(unfinished[0]["failed"]) == 1

    with pytest.raises(PartialCommitError):
        sale_service.resume_commit(err.sale_id, "supervisor")


def _locked_database(**kwargs):
    raise OperationalError("UPDATE medicines", {}, Exception("database is locked"))


def test_locked_database_during_apply_keeps_sale_and_reports_pending(app, make_medicine, monkeypatch):
    first = make_medicine(name="Amoxicillin", quantity=10)
    second = make_medicine(name="Zinc", quantity=10)

    cart = Cart(LedgerLookup())
    cart.set_line_quantity(first.id, 2)
    cart.set_line_quantity(second.id, 1)

    with monkeypatch.context() as m:
        m.setitem(app.config, "COMMIT_RETRY_ATTEMPTS", 1)
        m.setattr(sale_service, "_deduct_stock_inner", _locked_database)
        with pytest.raises(PartialCommitError) as exc:
            sale_service.commit_sale(cart, "c1")

    err = exc.value
    assert err.failed == []
    assert [p["medicine_id"] for p in err.pending] == [first.id, second.id]
    assert err.pending[0]["error"] == "OperationalError"
    assert err.details["sale_id"] == err.sale_id

    # One journal entry, both deductions still owed, cart closed
    assert [s.id for s in journal_service.list_sales()] == [err.sale_id]
    statuses = [
        row.status
        for row in db.session.query(StockDeduction).filter_by(sale_id=err.sale_id)
        .order_by(StockDeduction.line_number)
    ]
    assert statuses == [StockDeduction.PENDING, StockDeduction.PENDING]
    assert cart.is_empty()
    assert stock_service.get_medicine(first.id).quantity == 10
    assert sale_service.reserved_quantity(first.id) == 2

    result = sale_service.resume_commit(err.sale_id, "supervisor")
    assert result["applied"] == 2
    assert stock_service.get_medicine(first.id).quantity == 8
    assert stock_service.get_medicine(second.id).quantity == 9


def test_concurrent_checkouts_on_shared_database(tmp_path):
    """Two cashiers race for 3 units each of a medicine with 5 in stock."""
    race_app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'race.sqlite3'}",
        'SQLALCHEMY_ENGINE_OPTIONS': {
            'connect_args': {'check_same_thread': False, 'timeout': 30},
        },
    })
    with race_app.app_context():
        db.create_all()
        medicine_id = stock_service.create_medicine(
            {"name": "Amoxicillin", "quantity": 5, "price": "4.20"}, "setup"
        )

    barrier = threading.Barrier(2)
    outcomes = {}

    def checkout(cashier_id):
        with race_app.app_context():
            try:
                cart = _cart_with(medicine_id, 3)
                barrier.wait(timeout=10)
                outcomes[cashier_id] = sale_service.commit_sale(cart, cashier_id)
            except InsufficientStockError as exc:
                outcomes[cashier_id] = exc
            finally:
                db.session.remove()

    threads = [threading.Thread(target=checkout, args=(c,)) for c in ("c1", "c2")]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)

    successes = [v for v in outcomes.values() if isinstance(v, int)]
    failures = [v for v in outcomes.values() if isinstance(v, InsufficientStockError)]
    assert len(successes) == 1
    assert len(failures) == 1
    assert failures[0].available == 2

    with race_app.app_context():
        assert db.session.get(Medicine, medicine_id).quantity == 2
        assert len(journal_service.list_sales()) == 1
        db.session.remove()
        db.drop_all()
