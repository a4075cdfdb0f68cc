import io
import json
from collections import defaultdict
from decimal import Decimal
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.parse import parse_qs, urlsplit

import pytest

from conftest import make_product
from inventory_desk import schemas
from inventory_desk.config import Settings
from inventory_desk.errors import (
    InsufficientStockError,
    PartialMovementError,
    ProductInUseError,
    ProductNotFoundError,
    RetryableStoreError,
    StoreError,
    StoreTimeoutError,
)
from inventory_desk.importer import ImportPipeline
from inventory_desk.parse_store import ParseProductStore

SERVER = "https://parse.test/parse"

PRODUCT = {
    "objectId": "p1",
    "name": "Wireless Mouse",
    "sku": "MOU001",
    "category": "Electronics",
    "price": 49.99,
    "cost": 25,
    "quantity": 10,
    "minStock": 10,
    "maxStock": 100,
    "supplier": "Tech Supplier",
    "barcode": "345678901234",
    "description": "Bluetooth wireless mouse",
    "createdAt": "2024-05-01T10:00:00.000Z",
    "updatedAt": "2024-05-02T10:00:00.000Z",
}


class FakeResponse:
    def __init__(self, status: int, body: dict[str, Any]) -> None:
        self.status = status
        self._body = body

    def __enter__(self) -> "FakeResponse":
        return self

    def __exit__(self, *exc_info: object) -> bool:
        return False

    def read(self) -> bytes:
        return json.dumps(self._body).encode("utf-8")


def http_error(code: int, body: dict[str, Any]) -> HTTPError:
    return HTTPError(f"{SERVER}/x", code, "error", None, io.BytesIO(json.dumps(body).encode("utf-8")))  # type: ignore[arg-type]


class FakeParse:
    """Scripted stand-in for ``urlopen`` keyed by method and URL path."""

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], list[Any]] = defaultdict(list)
        self.requests: list[Any] = []
        self.timeouts: list[float] = []

    def add(self, method: str, path: str, reply: Any) -> None:
        self.routes[(method, f"/parse/{path}")].append(reply)

    def __call__(self, request, timeout):  # type: ignore[no-untyped-def]
        self.requests.append(request)
        self.timeouts.append(timeout)
        key = (request.get_method(), urlsplit(request.full_url).path)
        reply = self.routes[key].pop(0)
        if isinstance(reply, BaseException):
            raise reply
        if isinstance(reply, tuple):
            return FakeResponse(*reply)
        return FakeResponse(200, reply)

    def body(self, index: int) -> dict[str, Any]:
        return json.loads(self.requests[index].data.decode("utf-8"))

    def query(self, index: int) -> dict[str, list[str]]:
        return parse_qs(urlsplit(self.requests[index].full_url).query)


@pytest.fixture(name="fake")
def fake_fixture() -> FakeParse:
    return FakeParse()


@pytest.fixture(name="parse_store")
def parse_store_fixture(fake: FakeParse) -> ParseProductStore:
    return ParseProductStore(SERVER, "app-id", "rest-key", timeout=3.0, opener=fake)


def test_requires_credentials() -> None:
    with pytest.raises(StoreError):
        ParseProductStore(SERVER, "", "rest-key")


def test_from_settings_uses_timeout() -> None:
    settings = Settings(parse_app_id="app", parse_rest_key="key", request_timeout=4.5)

    store = ParseProductStore.from_settings(settings)

    assert store.timeout == 4.5
    assert store.app_id == "app"


def test_get_by_id_maps_wire_fields(parse_store: ParseProductStore, fake: FakeParse) -> None:
    fake.add("GET", "classes/Product/p1", PRODUCT)

    product = parse_store.get_by_id("p1")

    assert product.id == "p1"
    assert product.min_stock == 10
    assert product.max_stock == 100
    assert product.price == Decimal("49.99")
    assert product.is_low_stock is True
    request = fake.requests[0]
    assert request.get_header("X-parse-application-id") == "app-id"
    assert request.get_header("X-parse-rest-api-key") == "rest-key"
    assert fake.timeouts == [3.0]


def test_missing_object_raises_not_found(parse_store: ParseProductStore, fake: FakeParse) -> None:
    fake.add("GET", "classes/Product/gone", http_error(404, {"code": 101, "error": "Object not found."}))

    with pytest.raises(ProductNotFoundError):
        parse_store.get_by_id("gone")


def test_create_checks_sku_then_posts(parse_store: ParseProductStore, fake: FakeParse) -> None:
    fake.add("GET", "classes/Product", {"results": []})
    fake.add("POST", "classes/Product", (201, {"objectId": "n1", "createdAt": "2024-05-03T08:00:00.000Z"}))

    created = parse_store.create(make_product(max_stock=30))

    assert created.id == "n1"
    assert json.loads(fake.query(0)["where"][0]) == {"sku": "WID001"}
    sent = fake.body(1)
    assert sent["minStock"] == 2
    assert sent["maxStock"] == 30
    assert sent["price"] == 10.0
    assert "min_stock" not in sent


def test_create_rejects_existing_sku(parse_store: ParseProductStore, fake: FakeParse) -> None:
    fake.add("GET", "classes/Product", {"results": [{**PRODUCT, "sku": "WID001"}]})

    with pytest.raises(StoreError, match="already exists"):
        parse_store.create(make_product())
    assert len(fake.requests) == 1


def test_server_errors_are_retryable(parse_store: ParseProductStore, fake: FakeParse) -> None:
    fake.add("GET", "classes/Product/p1", http_error(503, {"error": "unavailable"}))
    fake.add("GET", "classes/Product/p1", http_error(400, {"error": "bad request"}))

    with pytest.raises(RetryableStoreError):
        parse_store.get_by_id("p1")
    with pytest.raises(StoreError) as excinfo:
        parse_store.get_by_id("p1")
    assert not isinstance(excinfo.value, RetryableStoreError)


@pytest.mark.parametrize("failure", [TimeoutError("slow"), URLError(TimeoutError("slow"))])
def test_timeouts(parse_store: ParseProductStore, fake: FakeParse, failure: Exception) -> None:
    fake.add("GET", "classes/Product/p1", failure)

    with pytest.raises(StoreTimeoutError):
        parse_store.get_by_id("p1")


def test_unreachable_server_is_retryable(parse_store: ParseProductStore, fake: FakeParse) -> None:
    fake.add("GET", "classes/Product/p1", URLError("connection refused"))

    with pytest.raises(RetryableStoreError):
        parse_store.get_by_id("p1")


def test_apply_movement_posts_then_increments(parse_store: ParseProductStore, fake: FakeParse) -> None:
    fake.add("GET", "classes/Product/p1", PRODUCT)
    fake.add("POST", "classes/StockMovement", (201, {"objectId": "m1", "createdAt": "2024-05-03T09:00:00.000Z"}))
    fake.add("PUT", "classes/Product/p1", {"quantity": 15, "updatedAt": "2024-05-03T09:00:01.000Z"})
    payload = schemas.StockMovementCreate(movement_type="IN", quantity=5, reason="Delivery", reference="PO-7")

    result = parse_store.apply_movement("p1", payload, 5)

    assert result.new_quantity == 15
    assert result.movement.id == "m1"
    assert result.movement.sku == "MOU001"
    assert fake.body(1) == {
        "productId": "p1",
        "movementType": "IN",
        "quantity": 5,
        "quantityChange": 5,
        "reason": "Delivery",
        "reference": "PO-7",
    }
    assert fake.body(2) == {"quantity": {"__op": "Increment", "amount": 5}}


def test_apply_movement_checks_the_floor_first(parse_store: ParseProductStore, fake: FakeParse) -> None:
    fake.add("GET", "classes/Product/p1", {**PRODUCT, "quantity": 2})
    payload = schemas.StockMovementCreate(movement_type="OUT", quantity=5)

    with pytest.raises(InsufficientStockError):
        parse_store.apply_movement("p1", payload, -5)
    assert len(fake.requests) == 1


def test_failed_increment_reports_partial_movement(parse_store: ParseProductStore, fake: FakeParse) -> None:
    fake.add("GET", "classes/Product/p1", PRODUCT)
    fake.add("POST", "classes/StockMovement", (201, {"objectId": "m9", "createdAt": "2024-05-03T09:00:00.000Z"}))
    fake.add("PUT", "classes/Product/p1", http_error(500, {"error": "boom"}))
    payload = schemas.StockMovementCreate(movement_type="IN", quantity=1)

    with pytest.raises(PartialMovementError) as excinfo:
        parse_store.apply_movement("p1", payload, 1)

    assert excinfo.value.movement_id == "m9"
    assert excinfo.value.product_id == "p1"


def test_list_filters_low_stock_on_the_client(parse_store: ParseProductStore, fake: FakeParse) -> None:
    healthy = {**PRODUCT, "objectId": "p2", "sku": "MOU002", "quantity": 50}
    fake.add("GET", "classes/Product", {"results": [PRODUCT, healthy]})

    products = parse_store.list(schemas.ProductFilters(search="mouse", low_stock=True))

    assert [item.id for item in products] == ["p1"]
    where = json.loads(fake.query(0)["where"][0])
    assert where["$or"][0] == {"name": {"$regex": "mouse", "$options": "i"}}
    assert fake.query(0)["order"] == ["name"]


def test_malformed_remote_products_are_store_errors(parse_store: ParseProductStore, fake: FakeParse) -> None:
    nameless = {**PRODUCT, "objectId": "p9", "name": ""}
    fake.add("GET", "classes/Product/p9", nameless)
    fake.add("GET", "classes/Product", {"results": [nameless, PRODUCT, {**PRODUCT, "objectId": "p8", "price": "n/a"}]})

    with pytest.raises(StoreError, match="p9"):
        parse_store.get_by_id("p9")

    assert [item.id for item in parse_store.list()] == ["p1"]


def test_delete_refuses_products_with_movements(parse_store: ParseProductStore, fake: FakeParse) -> None:
    fake.add("GET", "classes/Product/p1", PRODUCT)
    fake.add("GET", "classes/StockMovement", {"results": [], "count": 2})

    with pytest.raises(ProductInUseError):
        parse_store.delete("p1")
    assert fake.query(1)["count"] == ["1"]


def test_list_movements_annotates_products(parse_store: ParseProductStore, fake: FakeParse) -> None:
    movement = {
        "objectId": "m1",
        "productId": "p1",
        "movementType": "OUT",
        "quantity": 3,
        "quantityChange": -3,
        "reason": "Sale",
        "createdAt": "2024-05-03T09:00:00.000Z",
    }
    fake.add("GET", "classes/StockMovement", {"results": [movement, {**movement, "objectId": "m0"}]})
    fake.add("GET", "classes/Product/p1", PRODUCT)

    movements = parse_store.list_movements(limit=10)

    assert [item.id for item in movements] == ["m1", "m0"]
    assert movements[0].product_name == "Wireless Mouse"
    assert fake.query(0)["order"] == ["-createdAt"]
    assert len(fake.requests) == 2


def test_import_retries_transient_parse_failures(parse_store: ParseProductStore, fake: FakeParse) -> None:
    row = {"name": "Cable", "sku": "CAB001", "category": "Electronics", "price": "4.50", "quantity": "30"}
    fake.add("GET", "classes/Product", {"results": []})
    fake.add("GET", "classes/Product", {"results": []})
    fake.add("POST", "classes/Product", http_error(503, {"error": "busy"}))
    fake.add("GET", "classes/Product", {"results": []})
    fake.add("POST", "classes/Product", (201, {"objectId": "c1", "createdAt": "2024-05-03T08:00:00.000Z"}))

    result = ImportPipeline(parse_store, retries=1).run([row])

    assert result.successful == 1
    assert result.failed == 0
