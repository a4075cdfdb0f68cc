"""Product store contract and its local backends.

Every backend satisfies :class:`ProductStore`. The import pipeline and the
stock ledger only ever talk to that protocol, so the SQL database, the
in-memory store and the Parse REST backend are interchangeable.
"""

from __future__ import annotations

import itertools
import threading
from datetime import datetime
from typing import Optional, Protocol, runtime_checkable

from sqlalchemy.orm import Session

from . import crud, models, schemas
from .errors import (
    DuplicateCategoryError,
    DuplicateSkuError,
    InsufficientStockError,
    ProductInUseError,
    ProductNotFoundError,
)


@runtime_checkable
class ProductStore(Protocol):
    def create(self, payload: schemas.ProductCreate) -> schemas.ProductRead: ...

    def get_by_id(self, product_id: schemas.ProductId) -> schemas.ProductRead: ...

    def get_by_sku(self, sku: str) -> Optional[schemas.ProductRead]: ...

    def get_by_barcode(self, code: str) -> Optional[schemas.ProductRead]: ...

    def update(self, product_id: schemas.ProductId, payload: schemas.ProductUpdate) -> schemas.ProductRead: ...

    def delete(self, product_id: schemas.ProductId) -> None: ...

    def list(self, filters: Optional[schemas.ProductFilters] = None) -> list[schemas.ProductRead]: ...

    def apply_movement(
        self, product_id: schemas.ProductId, payload: schemas.StockMovementCreate, delta: int
    ) -> schemas.MovementResult: ...

    def list_movements(
        self, product_id: Optional[schemas.ProductId] = None, limit: int = 100
    ) -> list[schemas.StockMovementRead]: ...

    def add_category(self, payload: schemas.CategoryCreate) -> schemas.CategoryRead: ...

    def list_categories(self) -> list[schemas.CategoryRead]: ...

    def add_supplier(self, payload: schemas.SupplierCreate) -> schemas.SupplierRead: ...

    def list_suppliers(self) -> list[schemas.SupplierRead]: ...


def _movement_read(
    movement: models.StockMovement, product_name: Optional[str], sku: Optional[str]
) -> schemas.StockMovementRead:
    return schemas.StockMovementRead(
        id=movement.id,
        product_id=movement.product_id,
        movement_type=movement.movement_type,
        quantity=movement.quantity,
        quantity_change=movement.quantity_change,
        reason=movement.reason,
        reference=movement.reference,
        created_at=movement.created_at,
        product_name=product_name,
        sku=sku,
    )


class SqlProductStore:
    """Store backed by the local SQL database through a SQLAlchemy session."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def create(self, payload: schemas.ProductCreate) -> schemas.ProductRead:
        return schemas.ProductRead.model_validate(crud.create_product(self.db, payload))

    def get_by_id(self, product_id: schemas.ProductId) -> schemas.ProductRead:
        return schemas.ProductRead.model_validate(crud.get_product(self.db, product_id))

    def get_by_sku(self, sku: str) -> Optional[schemas.ProductRead]:
        product = crud.get_product_by_sku(self.db, sku)
        return schemas.ProductRead.model_validate(product) if product else None

    def get_by_barcode(self, code: str) -> Optional[schemas.ProductRead]:
        product = crud.get_product_by_barcode(self.db, code)
        return schemas.ProductRead.model_validate(product) if product else None

    def update(self, product_id: schemas.ProductId, payload: schemas.ProductUpdate) -> schemas.ProductRead:
        product = crud.get_product(self.db, product_id)
        return schemas.ProductRead.model_validate(crud.update_product(self.db, product, payload))

    def delete(self, product_id: schemas.ProductId) -> None:
        crud.delete_product(self.db, crud.get_product(self.db, product_id))

    def list(self, filters: Optional[schemas.ProductFilters] = None) -> list[schemas.ProductRead]:
        return [schemas.ProductRead.model_validate(item) for item in crud.list_products(self.db, filters)]

    def apply_movement(
        self, product_id: schemas.ProductId, payload: schemas.StockMovementCreate, delta: int
    ) -> schemas.MovementResult:
        movement, product = crud.apply_movement(self.db, product_id, payload, delta)
        return schemas.MovementResult(
            movement=_movement_read(movement, product.name, product.sku), new_quantity=product.quantity
        )

    def list_movements(
        self, product_id: Optional[schemas.ProductId] = None, limit: int = 100
    ) -> list[schemas.StockMovementRead]:
        return [
            _movement_read(movement, name, sku)
            for movement, name, sku in crud.list_movements(self.db, product_id, limit)
        ]

    def add_category(self, payload: schemas.CategoryCreate) -> schemas.CategoryRead:
        return schemas.CategoryRead.model_validate(crud.create_category(self.db, payload))

    def list_categories(self) -> list[schemas.CategoryRead]:
        return [schemas.CategoryRead.model_validate(item) for item in crud.list_categories(self.db)]

    def add_supplier(self, payload: schemas.SupplierCreate) -> schemas.SupplierRead:
        return schemas.SupplierRead.model_validate(crud.create_supplier(self.db, payload))

    def list_suppliers(self) -> list[schemas.SupplierRead]:
        return [schemas.SupplierRead.model_validate(item) for item in crud.list_suppliers(self.db)]


class MemoryProductStore:
    """Process local store used for demos, offline work and tests.

    State lives in plain dictionaries and disappears with the process. A lock
    keeps each call atomic when the API serves requests from a thread pool.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._products: dict[int, schemas.ProductRead] = {}
        self._movements: list[schemas.StockMovementRead] = []
        self._categories: list[schemas.CategoryRead] = []
        self._suppliers: list[schemas.SupplierRead] = []
        self._ids = itertools.count(1)
        self._movement_ids = itertools.count(1)

    def _get(self, product_id: schemas.ProductId) -> schemas.ProductRead:
        try:
            return self._products[int(product_id)]
        except (KeyError, TypeError, ValueError) as exc:
            raise ProductNotFoundError(product_id) from exc

    def _find_sku(self, sku: str) -> Optional[schemas.ProductRead]:
        return next((item for item in self._products.values() if item.sku == sku), None)

    def create(self, payload: schemas.ProductCreate) -> schemas.ProductRead:
        with self._lock:
            if self._find_sku(payload.sku):
                raise DuplicateSkuError(payload.sku)
            now = datetime.utcnow()
            product = schemas.ProductRead(id=next(self._ids), created_at=now, updated_at=now, **payload.model_dump())
            self._products[product.id] = product
            return product

    def get_by_id(self, product_id: schemas.ProductId) -> schemas.ProductRead:
        with self._lock:
            return self._get(product_id)

    def get_by_sku(self, sku: str) -> Optional[schemas.ProductRead]:
        with self._lock:
            return self._find_sku(sku)

    def get_by_barcode(self, code: str) -> Optional[schemas.ProductRead]:
        if not code:
            return None
        with self._lock:
            return next((item for item in self._products.values() if item.barcode == code), None)

    def update(self, product_id: schemas.ProductId, payload: schemas.ProductUpdate) -> schemas.ProductRead:
        with self._lock:
            product = self._get(product_id)
            changes = payload.changes()
            new_sku = changes.get("sku")
            if new_sku and new_sku != product.sku and self._find_sku(new_sku):
                raise DuplicateSkuError(new_sku)
            updated = product.model_copy(update={**changes, "updated_at": datetime.utcnow()})
            self._products[product.id] = updated
            return updated

    def delete(self, product_id: schemas.ProductId) -> None:
        with self._lock:
            product = self._get(product_id)
            movements = sum(1 for item in self._movements if item.product_id == product.id)
            if movements:
                raise ProductInUseError(product.id, movements)
            del self._products[product.id]

    def list(self, filters: Optional[schemas.ProductFilters] = None) -> list[schemas.ProductRead]:
        filters = filters or schemas.ProductFilters()
        with self._lock:
            items = list(self._products.values())
        return sorted(
            (item for item in items if matches_filters(item, filters)),
            key=lambda item: (item.name, str(item.id)),
        )

    def apply_movement(
        self, product_id: schemas.ProductId, payload: schemas.StockMovementCreate, delta: int
    ) -> schemas.MovementResult:
        with self._lock:
            product = self._get(product_id)
            new_quantity = product.quantity + delta
            if new_quantity < 0:
                raise InsufficientStockError(product.id, product.quantity, abs(delta))
            movement = schemas.StockMovementRead(
                id=next(self._movement_ids),
                product_id=product.id,
                quantity_change=delta,
                created_at=datetime.utcnow(),
                product_name=product.name,
                sku=product.sku,
                **payload.model_dump(),
            )
            self._products[product.id] = product.model_copy(
                update={"quantity": new_quantity, "updated_at": datetime.utcnow()}
            )
            self._movements.append(movement)
            return schemas.MovementResult(movement=movement, new_quantity=new_quantity)

    def list_movements(
        self, product_id: Optional[schemas.ProductId] = None, limit: int = 100
    ) -> list[schemas.StockMovementRead]:
        with self._lock:
            movements = [
                item for item in reversed(self._movements) if product_id is None or str(item.product_id) == str(product_id)
            ][:limit]
            annotated = []
            for item in movements:
                product = self._products.get(int(item.product_id))
                annotated.append(
                    item.model_copy(
                        update={
                            "product_name": product.name if product else None,
                            "sku": product.sku if product else None,
                        }
                    )
                )
            return annotated

    def add_category(self, payload: schemas.CategoryCreate) -> schemas.CategoryRead:
        with self._lock:
            if any(item.name == payload.name for item in self._categories):
                raise DuplicateCategoryError(payload.name)
            category = schemas.CategoryRead(
                id=len(self._categories) + 1, created_at=datetime.utcnow(), **payload.model_dump()
            )
            self._categories.append(category)
            return category

    def list_categories(self) -> list[schemas.CategoryRead]:
        with self._lock:
            return sorted(self._categories, key=lambda item: item.name)

    def add_supplier(self, payload: schemas.SupplierCreate) -> schemas.SupplierRead:
        with self._lock:
            supplier = schemas.SupplierRead(
                id=len(self._suppliers) + 1, created_at=datetime.utcnow(), **payload.model_dump()
            )
            self._suppliers.append(supplier)
            return supplier

    def list_suppliers(self) -> list[schemas.SupplierRead]:
        with self._lock:
            return sorted(self._suppliers, key=lambda item: item.name)


def matches_filters(product: schemas.ProductRead, filters: schemas.ProductFilters) -> bool:
    """Client-side equivalent of the SQL list filters."""

    if filters.category and product.category != filters.category:
        return False
    if filters.search:
        term = filters.search.lower()
        haystacks = (product.name, product.sku, product.description or "")
        if not any(term in value.lower() for value in haystacks):
            return False
    if filters.low_stock and not product.is_low_stock:
        return False
    return True
