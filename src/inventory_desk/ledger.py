"""Stock ledger: append-only movements that shift a product's quantity."""

from __future__ import annotations

import logging
import time
from typing import Optional, Union

from . import schemas
from .errors import ValidationError
from .store import ProductStore

logger = logging.getLogger(__name__)

RESTOCK_REASON = "Quick restock from low stock alert"


def _movement_type(value: Union[schemas.MovementType, str]) -> schemas.MovementType:
    if isinstance(value, schemas.MovementType):
        return value
    try:
        return schemas.MovementType(str(value).strip().upper())
    except ValueError as exc:
        choices = ", ".join(item.value for item in schemas.MovementType)
        raise ValidationError(f"movement type must be one of {choices}, got {value!r}") from exc


def quantity_change(movement_type: schemas.MovementType, quantity: int, *, decrease: bool = False) -> int:
    """Signed delta for a movement of *quantity* units."""

    if movement_type is schemas.MovementType.OUT:
        return -quantity
    if movement_type is schemas.MovementType.ADJUSTMENT and decrease:
        return -quantity
    return quantity


class StockLedger:
    def __init__(self, store: ProductStore) -> None:
        self.store = store

    def record_movement(
        self,
        product_id: schemas.ProductId,
        movement_type: Union[schemas.MovementType, str],
        quantity: int,
        reason: str = "",
        reference: str = "",
        *,
        decrease: bool = False,
    ) -> schemas.MovementResult:
        """Append a movement and apply its delta to the product quantity.

        ``quantity`` is always a positive magnitude. IN adds, OUT removes and
        ADJUSTMENT adds unless ``decrease`` is set. A movement that would take
        the quantity below zero raises :class:`InsufficientStockError` and
        writes nothing; one that would push it past ``MAX_QUANTITY`` raises
        :class:`ValidationError`.
        """

        kind = _movement_type(movement_type)
        if isinstance(quantity, bool) or not isinstance(quantity, int) or not 0 < quantity <= schemas.MAX_QUANTITY:
            raise ValidationError(f"quantity must be a positive integer, got {quantity!r}")
        if decrease and kind is not schemas.MovementType.ADJUSTMENT:
            raise ValidationError("decrease only applies to ADJUSTMENT movements")

        delta = quantity_change(kind, quantity, decrease=decrease)
        if delta > 0:
            current = self.store.get_by_id(product_id).quantity
            if current + delta > schemas.MAX_QUANTITY:
                raise ValidationError(f"quantity cannot exceed {schemas.MAX_QUANTITY}, product holds {current}")
        payload = schemas.StockMovementCreate(
            movement_type=kind, quantity=quantity, reason=reason or "", reference=reference or ""
        )
        result = self.store.apply_movement(product_id, payload, delta)
        logger.info(
            "Recorded %s movement %s for product %s: %+d (now %d)",
            kind.value,
            result.movement.id,
            product_id,
            delta,
            result.new_quantity,
        )
        return result

    def restock(self, product_id: schemas.ProductId, quantity: int, reason: str = RESTOCK_REASON) -> schemas.MovementResult:
        reference = f"RESTOCK-{int(time.time() * 1000)}"
        return self.record_movement(product_id, schemas.MovementType.IN, quantity, reason, reference)

    def list_movements(
        self, product_id: Optional[schemas.ProductId] = None, limit: int = 100
    ) -> list[schemas.StockMovementRead]:
        if limit <= 0:
            raise ValidationError("limit must be positive")
        return self.store.list_movements(product_id, limit)
