"""
Stock ledger tests: validation, stamping, ordering, search and deductions.
"""

from datetime import date

import pytest
from sqlalchemy.orm.exc import StaleDataError

from pharmacy.errors import InsufficientStockError, NotFoundError, ValidationError
from pharmacy.extensions import db
from pharmacy.models import Medicine
from pharmacy.services import stock_service


def test_create_defaults_and_stamping(db_session):
    medicine_id = stock_service.create_medicine({"name": "  Cetirizine  "}, "admin")
    medicine = stock_service.get_medicine(medicine_id)

    assert medicine.name == "Cetirizine"
    assert medicine.quantity == 0
    assert medicine.price_cents == 0
    assert medicine.expiry_date is None
    assert medicine.updated_by == "admin"
    assert medicine.last_updated is not None


def test_price_is_quantized_to_cents(db_session):
    medicine_id = stock_service.create_medicine({"name": "Ibuprofen", "price": 2.005}, "admin")
    assert stock_service.get_medicine(medicine_id).price_cents == 201

    medicine_id = stock_service.create_medicine({"name": "Aspirin", "price": "3.1"}, "admin")
    medicine = stock_service.get_medicine(medicine_id)
    assert medicine.price_cents == 310
    assert medicine.to_dict()["price"] == "3.10"


@pytest.mark.parametrize("fields", [
    {},
    {"name": ""},
    {"name": "X", "quantity": -1},
    {"name": "X", "quantity": "1.5"},
    {"name": "X", "price": -0.5},
    {"name": "X", "price": "abc"},
    {"name": "X", "expiry_date": "31/12/2027"},
    {"name": "X", "colour": "red"},
])
def test_create_rejects_invalid_fields(db_session, fields):
    with pytest.raises(ValidationError):
        stock_service.create_medicine(fields, "admin")
    assert db_session.query(Medicine).count() == 0


def test_create_requires_actor(db_session):
    with pytest.raises(ValidationError):
        stock_service.create_medicine({"name": "Paracetamol"}, "")


def test_update_changes_fields_and_restamps(make_medicine):
    medicine = make_medicine(quantity=5, actor_id="setup")

    updated = stock_service.update_medicine(
        medicine.id,
        {"quantity": 40, "price": "2.25", "expiry_date": "2027-03-01"},
        "manager",
    )

    assert updated.quantity == 40
    assert updated.price_cents == 225
    assert updated.expiry_date == date(2027, 3, 1)
    assert updated.updated_by == "manager"
    assert updated.version_id > medicine.version_id


def test_update_can_clear_expiry(make_medicine):
    medicine = make_medicine(expiry_date="2027-01-01")
    updated = stock_service.update_medicine(medicine.id, {"expiry_date": None}, "admin")
    assert updated.expiry_date is None


def test_update_rejects_empty_patch_and_null_price(make_medicine):
    medicine = make_medicine()
    with pytest.raises(ValidationError):
        stock_service.update_medicine(medicine.id, {}, "admin")
    with pytest.raises(ValidationError):
        stock_service.update_medicine(medicine.id, {"price": None}, "admin")


def test_update_missing_medicine(db_session):
    with pytest.raises(NotFoundError):
        stock_service.update_medicine(999, {"quantity": 1}, "admin")


def test_delete_is_hard_and_not_repeatable(make_medicine):
    medicine = make_medicine()
    stock_service.delete_medicine(medicine.id, "admin")

    assert stock_service.find_medicine(medicine.id) is None
    with pytest.raises(NotFoundError):
        stock_service.delete_medicine(medicine.id, "admin")


def test_list_is_ordered_by_name(make_medicine):
    make_medicine(name="Zinc")
    make_medicine(name="amoxicillin")
    make_medicine(name="Ibuprofen")

    # Plain collation: capitals sort first
    names = [m.name for m in stock_service.list_medicines()]
    assert names == ["Ibuprofen", "Zinc", "amoxicillin"]


def test_search_is_case_insensitive_substring(make_medicine):
    make_medicine(name="Paracetamol 500mg")
    make_medicine(name="Paracetamol Syrup")
    make_medicine(name="Ibuprofen")

    names = [m.name for m in stock_service.list_medicines(search="PARA")]
    assert names == ["Paracetamol 500mg", "Paracetamol Syrup"]
    assert stock_service.list_medicines(search="50%") == []
    assert len(stock_service.list_medicines(search="  ")) == 3


def test_deduct_stock_decrements(paracetamol):
    snapshot = stock_service.deduct_stock(paracetamol.id, 3, "c1")
    assert snapshot.quantity == 17
    assert snapshot.updated_by == "c1"


def test_deduct_stock_never_goes_negative(paracetamol):
    with pytest.raises(InsufficientStockError) as exc:
        stock_service.deduct_stock(paracetamol.id, 21, "c1")

    assert exc.value.available == 20
    assert stock_service.get_medicine(paracetamol.id).quantity == 20


@pytest.mark.parametrize("quantity", [0, -2, "abc", 1.5])
def test_deduct_stock_rejects_bad_quantity(paracetamol, quantity):
    with pytest.raises(ValidationError):
        stock_service.deduct_stock(paracetamol.id, quantity, "c1")


def test_stale_row_is_rejected_by_version_check(paracetamol):
    medicine = db.session.get(Medicine, paracetamol.id)
    assert medicine.version_id == paracetamol.version_id
    # Simulate a concurrent writer bumping the row behind this session's back
    db.session.execute(
        Medicine.__table__.update()
        .where(Medicine.id == paracetamol.id)
        .values(quantity=1, version_id=Medicine.version_id + 1)
    )
    medicine.quantity = 100

    with pytest.raises(StaleDataError):
        db.session.flush()
    db.session.rollback()

    assert stock_service.get_medicine(paracetamol.id).quantity == 20


def test_stock_snapshot_is_keyed_by_id(make_medicine):
    a = make_medicine(name="Amoxicillin", quantity=4)
    b = make_medicine(name="Zinc", quantity=9)

    snapshot = stock_service.stock_snapshot()

    assert set(snapshot) == {a.id, b.id}
    assert snapshot[b.id].quantity == 9
