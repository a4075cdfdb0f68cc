"""Bulk product import: duplicate detection, resolution and row application."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Callable, Optional, Sequence

from pydantic import ValidationError as PydanticValidationError

from . import schemas
from .errors import RetryableStoreError, StoreError, ValidationError
from .parsing import REQUIRED_COLUMNS, ImportRow
from .store import ProductStore

logger = logging.getLogger(__name__)

PREVIEW_ROWS = 5
DISPLAY_ERRORS = 10
NUMERIC_COLUMNS = ("price", "cost", "quantity", "min_stock", "max_stock")

ProgressCallback = Callable[[int, int], None]


class DuplicateResolution(str, Enum):
    CANCEL = "cancel"
    SKIP = "skip"
    UPDATE = "update"


class DuplicateResolutionRequired(Exception):
    """Raised by :meth:`ImportPipeline.run` when SKUs collide and no resolution was chosen."""

    def __init__(self, duplicates: list[schemas.DuplicateRecord]) -> None:
        super().__init__(f"{len(duplicates)} row(s) reference SKUs that already exist")
        self.duplicates = duplicates


@dataclass(slots=True)
class ImportResult:
    """Outcome of an import run; row failures are reported here, never raised."""

    successful: int = 0
    failed: int = 0
    skipped: int = 0
    cancelled: bool = False
    errors: list[str] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return self.successful + self.failed

    def display_errors(self, limit: int = DISPLAY_ERRORS) -> list[str]:
        shown = self.errors[:limit]
        if len(self.errors) > limit:
            shown.append(f"... and {len(self.errors) - limit} more errors")
        return shown

    def to_report(self) -> schemas.ImportReport:
        return schemas.ImportReport(
            successful=self.successful,
            failed=self.failed,
            skipped=self.skipped,
            cancelled=self.cancelled,
            errors=self.errors,
            display_errors=self.display_errors(),
        )


def _decimal(row: ImportRow, column: str, default: Optional[Decimal] = None) -> Decimal:
    raw = row.get(column, "")
    if raw == "" and default is not None:
        return default
    try:
        value = Decimal(raw)
    except InvalidOperation as exc:
        raise ValidationError(f"invalid numeric value: {column}") from exc
    if not value.is_finite() or value < 0:
        raise ValidationError(f"invalid numeric value: {column}")
    return value


def _integer(row: ImportRow, column: str, default: Optional[int] = None, *, required: bool = False) -> Optional[int]:
    raw = row.get(column, "")
    if raw == "" and not required:
        return default
    value = _decimal(row, column)
    if value != value.to_integral_value() or value > schemas.MAX_QUANTITY:
        raise ValidationError(f"invalid numeric value: {column}")
    return int(value)


def row_to_product(row: ImportRow) -> schemas.ProductCreate:
    """Validate and coerce one import row into a create payload."""

    missing = [column for column in REQUIRED_COLUMNS if not row.get(column, "").strip()]
    if missing:
        raise ValidationError(f"missing required field: {', '.join(missing)}")

    price = _decimal(row, "price")
    quantity = _integer(row, "quantity", required=True)
    cost = _decimal(row, "cost", default=Decimal("0"))
    min_stock = _integer(row, "min_stock", 0)
    max_stock = _integer(row, "max_stock")

    try:
        return schemas.ProductCreate(
            name=row["name"],
            sku=row["sku"],
            category=row["category"],
            price=price,
            cost=cost,
            quantity=quantity,
            min_stock=min_stock,
            max_stock=max_stock,
            supplier=row.get("supplier", ""),
            barcode=row.get("barcode", ""),
            description=row.get("description", ""),
        )
    except PydanticValidationError as exc:
        numeric = [str(err["loc"][0]) for err in exc.errors() if err["loc"] and err["loc"][0] in NUMERIC_COLUMNS]
        if numeric:
            raise ValidationError(f"invalid numeric value: {numeric[0]}") from exc
        details = "; ".join(f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in exc.errors())
        raise ValidationError(details) from exc


class ImportPipeline:
    """Apply parsed import rows to a :class:`ProductStore` one row at a time."""

    def __init__(
        self,
        store: ProductStore,
        *,
        row_delay: float = 0.0,
        retries: int = 0,
        progress: Optional[ProgressCallback] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self.row_delay = row_delay
        self.retries = max(retries, 0)
        self.progress = progress
        self._sleep = sleep

    @staticmethod
    def preview(rows: Sequence[ImportRow], limit: int = PREVIEW_ROWS) -> list[ImportRow]:
        return list(rows[:limit])

    def find_duplicates(self, rows: Sequence[ImportRow]) -> list[schemas.DuplicateRecord]:
        """Return the rows whose SKU already exists in the store."""

        duplicates: list[schemas.DuplicateRecord] = []
        for number, row in enumerate(rows, start=1):
            sku = row.get("sku", "").strip()
            if not sku:
                continue
            existing = self.store.get_by_sku(sku)
            if existing is None:
                continue
            duplicates.append(
                schemas.DuplicateRecord(
                    row_number=number,
                    sku=sku,
                    incoming_name=row.get("name", ""),
                    existing_id=existing.id,
                    existing_name=existing.name,
                )
            )
        return duplicates

    def run(
        self,
        rows: Sequence[ImportRow],
        resolution: Optional[DuplicateResolution] = None,
        *,
        cancel_event: Optional[threading.Event] = None,
    ) -> ImportResult:
        """Detect duplicates and apply *rows*.

        Raises :class:`DuplicateResolutionRequired` when existing SKUs are
        found and no resolution was supplied.
        """

        duplicates = self.find_duplicates(rows)
        if duplicates and resolution is None:
            raise DuplicateResolutionRequired(duplicates)
        return self.apply(rows, duplicates, resolution, cancel_event=cancel_event)

    def apply(
        self,
        rows: Sequence[ImportRow],
        duplicates: Sequence[schemas.DuplicateRecord],
        resolution: Optional[DuplicateResolution] = None,
        *,
        cancel_event: Optional[threading.Event] = None,
    ) -> ImportResult:
        result = ImportResult()
        resolution = DuplicateResolution(resolution) if resolution is not None else None
        existing = {item.sku: item.existing_id for item in duplicates}

        if existing and resolution is None:
            raise DuplicateResolutionRequired(list(duplicates))
        if existing and resolution is DuplicateResolution.CANCEL:
            logger.info("Import cancelled at duplicate resolution (%d duplicate SKU(s))", len(existing))
            result.cancelled = True
            return result

        work: list[tuple[int, ImportRow]] = []
        for number, row in enumerate(rows, start=1):
            sku = row.get("sku", "").strip()
            if sku in existing and resolution is DuplicateResolution.SKIP:
                result.skipped += 1
                continue
            work.append((number, row))

        total = len(work)
        for position, (number, row) in enumerate(work, start=1):
            if cancel_event is not None and cancel_event.is_set():
                logger.info("Import cancelled after %d of %d row(s)", position - 1, total)
                result.cancelled = True
                break

            sku = row.get("sku", "").strip()
            target = existing.get(sku) if resolution is DuplicateResolution.UPDATE else None
            try:
                self._apply_row(row, target)
            except (ValidationError, StoreError) as exc:
                result.failed += 1
                message = f"Row {number} (SKU {sku or '-'}): {exc}"
                result.errors.append(message)
                logger.warning("Import %s", message)
            else:
                result.successful += 1

            if self.progress is not None:
                self.progress(position, total)
            if self.row_delay and position < total:
                self._sleep(self.row_delay)

        logger.info(
            "Import finished: %d successful, %d failed, %d skipped%s",
            result.successful,
            result.failed,
            result.skipped,
            " (cancelled)" if result.cancelled else "",
        )
        return result

    def _apply_row(self, row: ImportRow, target: Optional[schemas.ProductId]) -> None:
        payload = row_to_product(row)
        attempt = 0
        while True:
            try:
                if target is None:
                    self.store.create(payload)
                else:
                    self.store.update(target, schemas.ProductUpdate(**payload.model_dump()))
                return
            except RetryableStoreError as exc:
                if attempt >= self.retries:
                    raise
                attempt += 1
                logger.info("Retrying SKU %s after transient store failure (%s)", payload.sku, exc)
