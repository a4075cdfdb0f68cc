"""Exception hierarchy shared by stores, the ledger and the import pipeline."""

from __future__ import annotations


class InventoryError(RuntimeError):
    """Base class for every domain error raised by the package."""


class ValidationError(InventoryError):
    """Raised when caller supplied values break a domain rule."""


class InsufficientStockError(InventoryError):
    """Raised when a movement would drive a product quantity below zero."""

    def __init__(self, product_id: object, available: int, requested: int) -> None:
        super().__init__(
            f"Insufficient stock for product {product_id}: {available} available, {requested} requested"
        )
        self.product_id = product_id
        self.available = available
        self.requested = requested


class StoreError(InventoryError):
    """Raised when the backing product store rejects or fails a call."""


class ProductNotFoundError(StoreError):
    def __init__(self, product_id: object) -> None:
        super().__init__(f"Product {product_id} not found")
        self.product_id = product_id


class DuplicateSkuError(StoreError):
    def __init__(self, sku: str) -> None:
        super().__init__(f"SKU '{sku}' already exists")
        self.sku = sku


class DuplicateCategoryError(StoreError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Category '{name}' already exists")
        self.name = name


class ProductInUseError(StoreError):
    """Raised when deleting a product that still has stock movements."""

    def __init__(self, product_id: object, movement_count: int) -> None:
        super().__init__(
            f"Product {product_id} has {movement_count} stock movement(s) and cannot be deleted"
        )
        self.product_id = product_id
        self.movement_count = movement_count


class PartialMovementError(StoreError):
    """A movement record was stored but the product quantity was not updated."""

    def __init__(self, movement_id: object, product_id: object, reason: str) -> None:
        super().__init__(
            f"Movement {movement_id} was recorded but product {product_id} quantity was not updated: {reason}"
        )
        self.movement_id = movement_id
        self.product_id = product_id


class RetryableStoreError(StoreError):
    """A transient failure; the same call may succeed when repeated."""


class StoreTimeoutError(RetryableStoreError):
    """The store did not answer within the configured timeout."""


__all__ = [
    "DuplicateCategoryError",
    "DuplicateSkuError",
    "InsufficientStockError",
    "InventoryError",
    "PartialMovementError",
    "ProductInUseError",
    "ProductNotFoundError",
    "RetryableStoreError",
    "StoreError",
    "StoreTimeoutError",
    "ValidationError",
]
