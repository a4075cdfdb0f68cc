import pytest

from conftest import make_product
from inventory_desk.errors import InsufficientStockError, ProductNotFoundError, ValidationError
from inventory_desk.ledger import RESTOCK_REASON, StockLedger, quantity_change
from inventory_desk.schemas import MAX_QUANTITY, MovementType


@pytest.fixture(name="ledger")
def ledger_fixture(store):  # type: ignore[no-untyped-def]
    return StockLedger(store)


def test_in_movement_adds_stock(ledger, store) -> None:  # type: ignore[no-untyped-def]
    product = store.create(make_product(quantity=10))

    result = ledger.record_movement(product.id, "IN", 5, "Supplier delivery", "PO-1001")

    assert result.new_quantity == 15
    assert store.get_by_id(product.id).quantity == 15
    movements = ledger.list_movements(product.id)
    assert len(movements) == 1
    assert movements[0].movement_type is MovementType.IN
    assert movements[0].quantity == 5
    assert movements[0].quantity_change == 5
    assert movements[0].reference == "PO-1001"
    assert movements[0].sku == product.sku


def test_out_movement_removes_stock(ledger, store) -> None:  # type: ignore[no-untyped-def]
    product = store.create(make_product(quantity=10))

    result = ledger.record_movement(product.id, MovementType.OUT, 5)

    assert result.new_quantity == 5
    assert result.movement.quantity_change == -5


@pytest.mark.parametrize("quantity", [0, -3, True, 2.5, "4"])
def test_invalid_quantities_write_nothing(ledger, store, quantity) -> None:  # type: ignore[no-untyped-def]
    product = store.create(make_product(quantity=10))

    with pytest.raises(ValidationError):
        ledger.record_movement(product.id, "IN", quantity)

    assert store.get_by_id(product.id).quantity == 10
    assert ledger.list_movements(product.id) == []


def test_out_below_zero_is_rejected(ledger, store) -> None:  # type: ignore[no-untyped-def]
    product = store.create(make_product(quantity=3))

    with pytest.raises(InsufficientStockError) as excinfo:
        ledger.record_movement(product.id, "OUT", 4)

    assert excinfo.value.available == 3
    assert excinfo.value.requested == 4
    assert store.get_by_id(product.id).quantity == 3
    assert ledger.list_movements(product.id) == []


def test_out_to_exactly_zero_is_allowed(ledger, store) -> None:  # type: ignore[no-untyped-def]
    product = store.create(make_product(quantity=3))

    assert ledger.record_movement(product.id, "out", 3).new_quantity == 0


def test_adjustment_adds_unless_decrease(ledger, store) -> None:  # type: ignore[no-untyped-def]
    product = store.create(make_product(quantity=10))

    assert ledger.record_movement(product.id, "adjustment", 4, "Stock count").new_quantity == 14
    assert ledger.record_movement(product.id, "ADJUSTMENT", 6, "Damaged", decrease=True).new_quantity == 8


def test_decrease_only_applies_to_adjustments(ledger, store) -> None:  # type: ignore[no-untyped-def]
    product = store.create(make_product(quantity=10))

    with pytest.raises(ValidationError, match="ADJUSTMENT"):
        ledger.record_movement(product.id, "IN", 2, decrease=True)


def test_unknown_movement_type(ledger, store) -> None:  # type: ignore[no-untyped-def]
    product = store.create(make_product())

    with pytest.raises(ValidationError):
        ledger.record_movement(product.id, "TRANSFER", 1)


def test_missing_product(ledger) -> None:  # type: ignore[no-untyped-def]
    with pytest.raises(ProductNotFoundError):
        ledger.record_movement(9999, "IN", 1)


def test_restock_records_reason_and_reference(ledger, store) -> None:  # type: ignore[no-untyped-def]
    product = store.create(make_product(quantity=1, min_stock=5))

    result = ledger.restock(product.id, 20)

    assert result.new_quantity == 21
    assert result.movement.movement_type is MovementType.IN
    assert result.movement.reason == RESTOCK_REASON
    assert result.movement.reference.startswith("RESTOCK-")
    assert result.movement.reference.removeprefix("RESTOCK-").isdigit()


def test_movements_are_listed_newest_first(ledger, store) -> None:  # type: ignore[no-untyped-def]
    bolts = store.create(make_product(sku="BLT001", name="Bolt"))
    nuts = store.create(make_product(sku="NUT001", name="Nut"))
    ledger.record_movement(bolts.id, "IN", 1, "first")
    ledger.record_movement(nuts.id, "IN", 2, "second")
    ledger.record_movement(bolts.id, "OUT", 1, "third")

    assert [item.reason for item in ledger.list_movements()] == ["third", "second", "first"]
    assert [item.reason for item in ledger.list_movements(bolts.id)] == ["third", "first"]
    assert [item.reason for item in ledger.list_movements(limit=1)] == ["third"]
    assert ledger.list_movements()[1].product_name == "Nut"


def test_list_movements_requires_positive_limit(ledger) -> None:  # type: ignore[no-untyped-def]
    with pytest.raises(ValidationError):
        ledger.list_movements(limit=0)


def test_quantity_change_signs() -> None:
    assert quantity_change(MovementType.IN, 3) == 3
    assert quantity_change(MovementType.OUT, 3) == -3
    assert quantity_change(MovementType.ADJUSTMENT, 3) == 3
    assert quantity_change(MovementType.ADJUSTMENT, 3, decrease=True) == -3


def test_quantity_ceiling_is_enforced(ledger, store) -> None:  # type: ignore[no-untyped-def]
    product = store.create(make_product(quantity=MAX_QUANTITY - 5))

    with pytest.raises(ValidationError, match="cannot exceed"):
        ledger.record_movement(product.id, "IN", 6)
    with pytest.raises(ValidationError):
        ledger.record_movement(product.id, "OUT", MAX_QUANTITY + 1)

    assert ledger.record_movement(product.id, "IN", 5).new_quantity == MAX_QUANTITY
    assert len(ledger.list_movements(product.id)) == 1
