"""Product store backed by a Parse-compatible REST datastore (e.g. Back4App).

The remote API offers no multi-object transactions. A stock movement is
therefore written in two steps: the movement record first, then an atomic
``Increment`` on the product quantity. When the second step fails the
movement is left orphaned and :class:`PartialMovementError` is raised so the
caller can reconcile it; the failure is never swallowed.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Optional
from urllib.error import HTTPError, URLError
from urllib.parse import quote, urlencode
from urllib.request import Request, urlopen

from pydantic import ValidationError as PydanticValidationError

from . import schemas
from .config import Settings
from .errors import (
    DuplicateCategoryError,
    DuplicateSkuError,
    InsufficientStockError,
    PartialMovementError,
    ProductInUseError,
    ProductNotFoundError,
    RetryableStoreError,
    StoreError,
    StoreTimeoutError,
)
from .store import matches_filters

logger = logging.getLogger(__name__)

USER_AGENT = "inventory-desk"
PAGE_LIMIT = 1000

# Parse "Object not found."
_OBJECT_NOT_FOUND = 101

Opener = Callable[..., Any]


def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, dict):  # {"__type": "Date", "iso": "..."}
        value = value.get("iso")
    if isinstance(value, str):
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    return datetime.utcnow()


def _decimal(value: Any) -> Decimal:
    if value in (None, ""):
        return Decimal("0")
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"not a number: {value!r}") from exc


def _product_from_object(obj: dict[str, Any]) -> schemas.ProductRead:
    try:
        return _build_product(obj)
    except (PydanticValidationError, KeyError, TypeError, ValueError) as exc:
        raise StoreError(f"Parse returned an invalid Product {obj.get('objectId', '?')}: {exc}") from exc


def _build_product(obj: dict[str, Any]) -> schemas.ProductRead:
    created = _parse_datetime(obj.get("createdAt"))
    max_stock = obj.get("maxStock")
    return schemas.ProductRead(
        id=obj["objectId"],
        name=obj.get("name") or "",
        sku=obj.get("sku") or "",
        category=obj.get("category") or "",
        price=_decimal(obj.get("price")),
        cost=_decimal(obj.get("cost")),
        quantity=int(obj.get("quantity") or 0),
        min_stock=int(obj.get("minStock") or 0),
        max_stock=int(max_stock) if max_stock is not None else None,
        supplier=obj.get("supplier") or "",
        barcode=obj.get("barcode") or "",
        description=obj.get("description") or "",
        created_at=created,
        updated_at=_parse_datetime(obj.get("updatedAt")) if obj.get("updatedAt") else created,
    )


_FIELD_NAMES = {"min_stock": "minStock", "max_stock": "maxStock"}


def _product_fields(data: dict[str, Any]) -> dict[str, Any]:
    fields: dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, Decimal):
            value = float(value)
        fields[_FIELD_NAMES.get(key, key)] = value
    return fields


def _movement_from_object(
    obj: dict[str, Any], product: Optional[schemas.ProductRead]
) -> schemas.StockMovementRead:
    quantity = int(obj.get("quantity") or 0)
    movement_type = obj.get("movementType") or "IN"
    change = obj.get("quantityChange")
    if change is None:
        change = -quantity if movement_type == "OUT" else quantity
    return schemas.StockMovementRead(
        id=obj["objectId"],
        product_id=obj.get("productId") or "",
        movement_type=movement_type,
        quantity=quantity,
        quantity_change=int(change),
        reason=obj.get("reason") or "",
        reference=obj.get("reference") or "",
        created_at=_parse_datetime(obj.get("createdAt")),
        product_name=product.name if product else None,
        sku=product.sku if product else None,
    )


class ParseProductStore:
    """Store talking to ``/classes/*`` endpoints of a Parse server."""

    def __init__(
        self,
        server_url: str,
        app_id: str,
        rest_key: str,
        *,
        timeout: float = 10.0,
        opener: Opener = urlopen,
    ) -> None:
        if not app_id or not rest_key:
            raise StoreError("Parse backend requires an application id and a REST API key")
        self.server_url = server_url.rstrip("/")
        self.app_id = app_id
        self.rest_key = rest_key
        self.timeout = timeout
        self._open = opener

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> "ParseProductStore":
        return cls(
            settings.parse_server_url,
            settings.parse_app_id or "",
            settings.parse_rest_key or "",
            timeout=settings.request_timeout,
            **kwargs,
        )

    def _build_headers(self) -> dict[str, str]:
        return {
            "X-Parse-Application-Id": self.app_id,
            "X-Parse-REST-API-Key": self.rest_key,
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
        }

    def _request(
        self,
        method: str,
        path: str,
        *,
        payload: Optional[dict[str, Any]] = None,
        params: Optional[dict[str, Any]] = None,
        accepted_errors: tuple[int, ...] = (),
    ) -> tuple[int, dict[str, Any]]:
        """Execute a call against the Parse REST API and decode the JSON body."""

        url = f"{self.server_url}/{path.lstrip('/')}"
        if params:
            url = f"{url}?{urlencode(params)}"
        body = json.dumps(payload).encode("utf-8") if payload is not None else None
        request = Request(url, data=body, headers=self._build_headers(), method=method)

        try:
            with self._open(request, timeout=self.timeout) as response:
                return response.status, self._load_json(response.read())
        except HTTPError as exc:
            if exc.code in accepted_errors:
                return exc.code, self._load_json(exc.read())
            message = exc.read().decode("utf-8", errors="replace")
            logger.warning("%s %s failed with %s: %s", method, url, exc.code, message)
            if exc.code >= 500 or exc.code == 429:
                raise RetryableStoreError(f"{method} {path} failed with {exc.code}: {message}") from exc
            raise StoreError(f"{method} {path} failed with {exc.code}: {message}") from exc
        except TimeoutError as exc:
            logger.warning("%s %s timed out after %ss", method, url, self.timeout)
            raise StoreTimeoutError(f"{method} {path} timed out after {self.timeout}s") from exc
        except URLError as exc:
            if isinstance(exc.reason, TimeoutError):
                raise StoreTimeoutError(f"{method} {path} timed out after {self.timeout}s") from exc
            logger.warning("%s %s unreachable: %s", method, url, exc.reason)
            raise RetryableStoreError(f"{method} {path} unreachable: {exc.reason}") from exc

    @staticmethod
    def _load_json(data: bytes) -> dict[str, Any]:
        if not data:
            return {}
        try:
            decoded = json.loads(data.decode("utf-8"))
        except json.JSONDecodeError as exc:
            raise StoreError("Parse server returned invalid JSON") from exc
        if not isinstance(decoded, dict):
            raise StoreError("Unexpected JSON structure returned by Parse server")
        return decoded

    def _query(
        self,
        class_name: str,
        where: Optional[dict[str, Any]] = None,
        *,
        order: Optional[str] = None,
        limit: int = PAGE_LIMIT,
    ) -> list[dict[str, Any]]:
        params: dict[str, Any] = {"limit": limit}
        if where:
            params["where"] = json.dumps(where)
        if order:
            params["order"] = order
        _, body = self._request("GET", f"classes/{class_name}", params=params)
        results = body.get("results", [])
        return [item for item in results if isinstance(item, dict)]

    def _count(self, class_name: str, where: dict[str, Any]) -> int:
        params = {"where": json.dumps(where), "count": 1, "limit": 0}
        _, body = self._request("GET", f"classes/{class_name}", params=params)
        return int(body.get("count", 0))

    def _object_path(self, class_name: str, object_id: schemas.ProductId) -> str:
        return f"classes/{class_name}/{quote(str(object_id), safe='')}"

    def _fetch_product(self, product_id: schemas.ProductId) -> dict[str, Any]:
        status, body = self._request("GET", self._object_path("Product", product_id), accepted_errors=(404,))
        if status == 404 or body.get("code") == _OBJECT_NOT_FOUND:
            raise ProductNotFoundError(product_id)
        return body

    def create(self, payload: schemas.ProductCreate) -> schemas.ProductRead:
        # Parse has no unique constraints, the SKU check happens client side.
        if self.get_by_sku(payload.sku):
            raise DuplicateSkuError(payload.sku)
        fields = _product_fields(payload.model_dump())
        _, body = self._request("POST", "classes/Product", payload=fields)
        created = {**fields, **body}
        created.setdefault("updatedAt", body.get("createdAt"))
        return _product_from_object(created)

    def get_by_id(self, product_id: schemas.ProductId) -> schemas.ProductRead:
        return _product_from_object(self._fetch_product(product_id))

    def get_by_sku(self, sku: str) -> Optional[schemas.ProductRead]:
        results = self._query("Product", {"sku": sku}, limit=1)
        return _product_from_object(results[0]) if results else None

    def get_by_barcode(self, code: str) -> Optional[schemas.ProductRead]:
        if not code:
            return None
        results = self._query("Product", {"barcode": code}, limit=1)
        return _product_from_object(results[0]) if results else None

    def update(self, product_id: schemas.ProductId, payload: schemas.ProductUpdate) -> schemas.ProductRead:
        current = self._fetch_product(product_id)
        changes = payload.changes()
        new_sku = changes.get("sku")
        if new_sku and new_sku != current.get("sku"):
            existing = self.get_by_sku(new_sku)
            if existing and existing.id != current["objectId"]:
                raise DuplicateSkuError(new_sku)
        fields = _product_fields(changes)
        if fields:
            _, body = self._request("PUT", self._object_path("Product", product_id), payload=fields)
            current = {**current, **fields, **body}
        return _product_from_object(current)

    def delete(self, product_id: schemas.ProductId) -> None:
        self._fetch_product(product_id)
        movements = self._count("StockMovement", {"productId": str(product_id)})
        if movements:
            raise ProductInUseError(product_id, movements)
        self._request("DELETE", self._object_path("Product", product_id))

    def list(self, filters: Optional[schemas.ProductFilters] = None) -> list[schemas.ProductRead]:
        filters = filters or schemas.ProductFilters()
        where: dict[str, Any] = {}
        if filters.category:
            where["category"] = filters.category
        if filters.search:
            pattern = {"$regex": re.escape(filters.search), "$options": "i"}
            where["$or"] = [{"name": pattern}, {"sku": pattern}, {"description": pattern}]
        products = []
        for item in self._query("Product", where, order="name"):
            try:
                products.append(_product_from_object(item))
            except StoreError as exc:
                logger.warning("Skipping product: %s", exc)
        # Parse cannot compare two columns, low stock is filtered here.
        return [item for item in products if matches_filters(item, filters)]

    def apply_movement(
        self, product_id: schemas.ProductId, payload: schemas.StockMovementCreate, delta: int
    ) -> schemas.MovementResult:
        product = self.get_by_id(product_id)
        if product.quantity + delta < 0:
            raise InsufficientStockError(product.id, product.quantity, abs(delta))

        record = {
            "productId": str(product.id),
            "movementType": payload.movement_type.value,
            "quantity": payload.quantity,
            "quantityChange": delta,
            "reason": payload.reason,
            "reference": payload.reference,
        }
        _, created = self._request("POST", "classes/StockMovement", payload=record)
        movement_id = created.get("objectId")

        try:
            _, body = self._request(
                "PUT",
                self._object_path("Product", product.id),
                payload={"quantity": {"__op": "Increment", "amount": delta}},
            )
        except StoreError as exc:
            logger.error(
                "Stock movement %s for product %s is orphaned: quantity update failed (%s)",
                movement_id,
                product.id,
                exc,
            )
            raise PartialMovementError(movement_id, product.id, str(exc)) from exc

        new_quantity = int(body.get("quantity", product.quantity + delta))
        movement = _movement_from_object({**record, **created}, product)
        return schemas.MovementResult(movement=movement, new_quantity=new_quantity)

    def list_movements(
        self, product_id: Optional[schemas.ProductId] = None, limit: int = 100
    ) -> list[schemas.StockMovementRead]:
        where = {"productId": str(product_id)} if product_id is not None else None
        objects = self._query("StockMovement", where, order="-createdAt", limit=limit)
        products: dict[str, Optional[schemas.ProductRead]] = {}
        movements = []
        for obj in objects:
            owner = str(obj.get("productId") or "")
            if owner not in products:
                try:
                    products[owner] = self.get_by_id(owner) if owner else None
                except ProductNotFoundError:
                    logger.warning("Stock movement %s references missing product %s", obj.get("objectId"), owner)
                    products[owner] = None
            movements.append(_movement_from_object(obj, products[owner]))
        return movements

    def add_category(self, payload: schemas.CategoryCreate) -> schemas.CategoryRead:
        if self._query("Category", {"name": payload.name}, limit=1):
            raise DuplicateCategoryError(payload.name)
        _, body = self._request("POST", "classes/Category", payload=payload.model_dump())
        return schemas.CategoryRead(
            id=body["objectId"], created_at=_parse_datetime(body.get("createdAt")), **payload.model_dump()
        )

    def list_categories(self) -> list[schemas.CategoryRead]:
        return [
            schemas.CategoryRead(
                id=item["objectId"],
                name=item.get("name") or "",
                description=item.get("description") or "",
                created_at=_parse_datetime(item.get("createdAt")),
            )
            for item in self._query("Category", order="name")
        ]

    def add_supplier(self, payload: schemas.SupplierCreate) -> schemas.SupplierRead:
        data = payload.model_dump()
        record = {
            "name": data["name"],
            "contactPerson": data["contact_person"] or "",
            "email": data["email"] or "",
            "phone": data["phone"] or "",
            "address": data["address"] or "",
        }
        _, body = self._request("POST", "classes/Supplier", payload=record)
        return schemas.SupplierRead(id=body["objectId"], created_at=_parse_datetime(body.get("createdAt")), **data)

    def list_suppliers(self) -> list[schemas.SupplierRead]:
        return [
            schemas.SupplierRead(
                id=item["objectId"],
                name=item.get("name") or "",
                contact_person=item.get("contactPerson") or None,
                email=item.get("email") or None,
                phone=item.get("phone") or None,
                address=item.get("address") or None,
                created_at=_parse_datetime(item.get("createdAt")),
            )
            for item in self._query("Supplier", order="name")
        ]


__all__ = ["ParseProductStore"]
