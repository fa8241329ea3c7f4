"""
Sales journal tests: newest-first ordering, append-only rows, validation.
"""

from datetime import datetime, timedelta

import pytest

from pharmacy.errors import JournalImmutableError, NotFoundError, ValidationError
from pharmacy.extensions import db
from pharmacy.models import Sale, SaleItem, SaleLine
from pharmacy.services import journal_service


BASE = datetime(2026, 3, 1, 9, 0, 0)


def _append(cashier_id="c1", minutes=0, quantity=1, price_cents=150):
    sale_id = journal_service.append_sale(
        cashier_id=cashier_id,
        items=[SaleItem(medicine_id=1, name="Paracetamol", quantity=quantity, unit_price_cents=price_cents)],
        timestamp=BASE + timedelta(minutes=minutes),
    )
    db.session.commit()
    return sale_id


def test_append_computes_totals(db_session):
    sale_id = journal_service.append_sale(
        cashier_id="c1",
        items=[
            SaleItem(medicine_id=1, name="Paracetamol", quantity=3, unit_price_cents=150),
            SaleItem(medicine_id=2, name="Zinc", quantity=2, unit_price_cents=99),
        ],
    )
    db.session.commit()

    sale = journal_service.get_sale(sale_id)
    assert sale.total_cents == 648
    assert sale.to_dict()["total"] == "6.48"
    assert [item.to_dict()["line_total"] for item in sale.items] == ["4.50", "1.98"]
    assert sale.timestamp is not None


def test_append_rejects_empty_and_zero_quantity(db_session):
    with pytest.raises(ValidationError):
        journal_service.append_sale(cashier_id="c1", items=[])
    with pytest.raises(ValidationError):
        journal_service.append_sale(
            cashier_id="c1",
            items=[SaleItem(medicine_id=1, name="Paracetamol", quantity=0, unit_price_cents=150)],
        )
    assert db_session.query(Sale).count() == 0


def test_list_sales_newest_first_with_id_tiebreak(db_session):
    first = _append(minutes=0)
    second = _append(minutes=5)
    tied = _append(minutes=5)

    ids = [sale.id for sale in journal_service.list_sales()]
    assert ids == [tied, second, first]

    assert [sale.id for sale in journal_service.list_sales(limit=2)] == [tied, second]


def test_get_missing_sale(db_session):
    with pytest.raises(NotFoundError):
        journal_service.get_sale(404)


def test_sales_cannot_be_updated(db_session):
    sale_id = _append()
    sale = db.session.get(Sale, sale_id)
    sale.total_cents = 1

    with pytest.raises(JournalImmutableError):
        db.session.flush()
    db.session.rollback()

    assert journal_service.get_sale(sale_id).total_cents == 150


def test_sale_lines_cannot_be_deleted(db_session):
    sale_id = _append()
    line = db.session.query(SaleLine).filter_by(sale_id=sale_id).one()
    db.session.delete(line)

    with pytest.raises(JournalImmutableError):
        db.session.flush()
    db.session.rollback()

    assert len(journal_service.get_sale(sale_id).items) == 1
