"""Pydantic schemas shared by the stores, the API and the CLI."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, EmailStr, Field

ProductId = Union[int, str]

# Stock counts are stored as 32-bit integers; prices as NUMERIC(12, 2).
MAX_QUANTITY = 2**31 - 1
PRICE_DIGITS = 12
PRICE_PLACES = 2


class MovementType(str, Enum):
    IN = "IN"
    OUT = "OUT"
    ADJUSTMENT = "ADJUSTMENT"


class ProductBase(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=255)
    sku: str = Field(..., min_length=1, max_length=64)
    category: str = Field(..., min_length=1, max_length=128)
    price: Decimal = Field(..., ge=0, max_digits=PRICE_DIGITS, decimal_places=PRICE_PLACES)
    cost: Decimal = Field(Decimal("0"), ge=0, max_digits=PRICE_DIGITS, decimal_places=PRICE_PLACES)
    quantity: int = Field(0, ge=0, le=MAX_QUANTITY)
    min_stock: int = Field(0, ge=0, le=MAX_QUANTITY)
    max_stock: Optional[int] = Field(None, ge=0, le=MAX_QUANTITY)
    supplier: str = Field("", max_length=255)
    barcode: str = Field("", max_length=64)
    description: str = ""


class ProductCreate(ProductBase):
    pass


class ProductUpdate(BaseModel):
    """Partial update; only fields that were explicitly set are applied."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(None, min_length=1, max_length=255)
    sku: Optional[str] = Field(None, min_length=1, max_length=64)
    category: Optional[str] = Field(None, min_length=1, max_length=128)
    price: Optional[Decimal] = Field(None, ge=0, max_digits=PRICE_DIGITS, decimal_places=PRICE_PLACES)
    cost: Optional[Decimal] = Field(None, ge=0, max_digits=PRICE_DIGITS, decimal_places=PRICE_PLACES)
    quantity: Optional[int] = Field(None, ge=0, le=MAX_QUANTITY)
    min_stock: Optional[int] = Field(None, ge=0, le=MAX_QUANTITY)
    max_stock: Optional[int] = Field(None, ge=0, le=MAX_QUANTITY)
    supplier: Optional[str] = Field(None, max_length=255)
    barcode: Optional[str] = Field(None, max_length=64)
    description: Optional[str] = None

    def changes(self) -> dict[str, object]:
        """Return the explicitly set fields; ``None`` only clears ``max_stock``."""

        data = self.model_dump(exclude_unset=True)
        return {key: value for key, value in data.items() if value is not None or key == "max_stock"}


class ProductRead(ProductBase):
    model_config = ConfigDict(from_attributes=True)

    id: ProductId
    created_at: datetime
    updated_at: datetime

    @property
    def is_low_stock(self) -> bool:
        return self.quantity <= self.min_stock

    @property
    def stock_value(self) -> Decimal:
        return self.price * self.quantity


class ProductFilters(BaseModel):
    category: Optional[str] = None
    search: Optional[str] = None
    low_stock: bool = False


class StockMovementCreate(BaseModel):
    movement_type: MovementType
    quantity: int = Field(..., gt=0, le=MAX_QUANTITY, description="Magnitude of the change; the sign follows from the type")
    reason: str = ""
    reference: str = ""


class StockMovementRead(StockMovementCreate):
    model_config = ConfigDict(from_attributes=True)

    id: ProductId
    product_id: ProductId
    quantity_change: int
    created_at: datetime
    product_name: Optional[str] = None
    sku: Optional[str] = None


class MovementRequest(BaseModel):
    """Body accepted by the movement endpoint."""

    movement_type: MovementType
    quantity: int = Field(..., le=MAX_QUANTITY)
    reason: str = ""
    reference: str = ""
    decrease: bool = False


class RestockRequest(BaseModel):
    quantity: int = Field(..., le=MAX_QUANTITY)


class MovementResult(BaseModel):
    movement: StockMovementRead
    new_quantity: int


class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=128)
    description: str = ""


class CategoryRead(CategoryCreate):
    model_config = ConfigDict(from_attributes=True)

    id: ProductId
    created_at: datetime


class SupplierCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    contact_person: Optional[str] = Field(None, max_length=255)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, max_length=64)
    address: Optional[str] = None


class SupplierRead(SupplierCreate):
    model_config = ConfigDict(from_attributes=True)

    id: ProductId
    created_at: datetime


class UserCreate(BaseModel):
    username: str = Field(..., min_length=3, max_length=64)
    full_name: Optional[str] = Field(None, max_length=128)
    password: str = Field(..., min_length=6, max_length=128)
    is_active: bool = True


class UserRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    full_name: Optional[str] = None
    is_active: bool
    created_at: datetime


class LoginRequest(BaseModel):
    username: str
    password: str


class SessionRead(BaseModel):
    username: str
    issued_at: datetime
    expires_at: datetime
    token: Optional[str] = None


class DuplicateRecord(BaseModel):
    """An import row whose SKU already exists in the catalog."""

    row_number: int
    sku: str
    incoming_name: str
    existing_id: ProductId
    existing_name: str


class ImportPreview(BaseModel):
    filename: str
    total_rows: int
    rows: list[dict[str, str]]
    duplicates: list[DuplicateRecord]


class ImportReport(BaseModel):
    successful: int
    failed: int
    skipped: int
    cancelled: bool
    errors: list[str]
    display_errors: list[str] = Field(default_factory=list)
