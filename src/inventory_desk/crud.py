"""Database access helpers."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from . import models, schemas, security
from .errors import (
    DuplicateCategoryError,
    DuplicateSkuError,
    InsufficientStockError,
    ProductInUseError,
    ProductNotFoundError,
    StoreError,
)


class DuplicateUsernameError(RuntimeError):
    """Raised when trying to create a user with an existing username."""


def _normalize_id(product_id: schemas.ProductId) -> int:
    try:
        return int(product_id)
    except (TypeError, ValueError) as exc:
        raise ProductNotFoundError(product_id) from exc


def list_products(db: Session, filters: schemas.ProductFilters | None = None) -> list[models.Product]:
    filters = filters or schemas.ProductFilters()
    statement = select(models.Product)
    if filters.category:
        statement = statement.where(models.Product.category == filters.category)
    if filters.search:
        term = f"%{filters.search}%"
        statement = statement.where(
            or_(
                models.Product.name.ilike(term),
                models.Product.sku.ilike(term),
                models.Product.description.ilike(term),
            )
        )
    if filters.low_stock:
        statement = statement.where(models.Product.quantity <= models.Product.min_stock)
    statement = statement.order_by(models.Product.name, models.Product.id)
    return list(db.scalars(statement))


def get_product(db: Session, product_id: schemas.ProductId) -> models.Product:
    product = db.get(models.Product, _normalize_id(product_id))
    if product is None:
        raise ProductNotFoundError(product_id)
    return product


def get_product_by_sku(db: Session, sku: str) -> Optional[models.Product]:
    statement = select(models.Product).where(models.Product.sku == sku)
    return db.scalars(statement).first()


def get_product_by_barcode(db: Session, code: str) -> Optional[models.Product]:
    if not code:
        return None
    statement = select(models.Product).where(models.Product.barcode == code).order_by(models.Product.id)
    return db.scalars(statement).first()


def create_product(db: Session, payload: schemas.ProductCreate) -> models.Product:
    if get_product_by_sku(db, payload.sku):
        raise DuplicateSkuError(payload.sku)
    product = models.Product(**payload.model_dump())
    db.add(product)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise DuplicateSkuError(payload.sku) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise StoreError(f"Product {payload.sku} could not be saved: {exc}") from exc
    db.refresh(product)
    return product


def update_product(db: Session, product: models.Product, payload: schemas.ProductUpdate) -> models.Product:
    changes = payload.changes()
    new_sku = changes.get("sku")
    if new_sku and new_sku != product.sku and get_product_by_sku(db, new_sku):
        raise DuplicateSkuError(new_sku)
    for key, value in changes.items():
        setattr(product, key, value)
    product.updated_at = datetime.utcnow()
    db.add(product)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise StoreError(f"Product {product.id} update rejected: {exc.orig}") from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise StoreError(f"Product {product.id} could not be saved: {exc}") from exc
    db.refresh(product)
    return product


def count_movements(db: Session, product_id: int) -> int:
    statement = select(func.count()).select_from(models.StockMovement).where(
        models.StockMovement.product_id == product_id
    )
    return db.scalar(statement) or 0


def delete_product(db: Session, product: models.Product) -> None:
    movements = count_movements(db, product.id)
    if movements:
        raise ProductInUseError(product.id, movements)
    db.delete(product)
    db.commit()


def apply_movement(
    db: Session, product_id: schemas.ProductId, payload: schemas.StockMovementCreate, delta: int
) -> tuple[models.StockMovement, models.Product]:
    """Insert the movement and shift the product quantity in one transaction."""

    product = get_product(db, product_id)
    try:
        result = db.execute(
            update(models.Product)
            .where(models.Product.id == product.id, models.Product.quantity + delta >= 0)
            .values(quantity=models.Product.quantity + delta, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise InsufficientStockError(product.id, product.quantity, abs(delta))
        movement = models.StockMovement(
            product_id=product.id,
            movement_type=payload.movement_type.value,
            quantity=payload.quantity,
            quantity_change=delta,
            reason=payload.reason,
            reference=payload.reference,
            created_at=datetime.utcnow(),
        )
        db.add(movement)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise StoreError(f"Movement for product {product.id} could not be saved: {exc}") from exc
    except Exception:
        db.rollback()
        raise
    db.refresh(product)
    db.refresh(movement)
    return movement, product


def list_movements(
    db: Session, product_id: schemas.ProductId | None = None, limit: int = 100
) -> list[tuple[models.StockMovement, Optional[str], Optional[str]]]:
    statement = select(models.StockMovement, models.Product.name, models.Product.sku).outerjoin(
        models.Product, models.StockMovement.product_id == models.Product.id
    )
    if product_id is not None:
        statement = statement.where(models.StockMovement.product_id == _normalize_id(product_id))
    statement = statement.order_by(models.StockMovement.created_at.desc(), models.StockMovement.id.desc()).limit(limit)
    return [(row[0], row[1], row[2]) for row in db.execute(statement).all()]


def list_categories(db: Session) -> list[models.Category]:
    return list(db.scalars(select(models.Category).order_by(models.Category.name)))


def create_category(db: Session, payload: schemas.CategoryCreate) -> models.Category:
    category = models.Category(name=payload.name, description=payload.description)
    db.add(category)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise DuplicateCategoryError(payload.name) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise StoreError(f"Category {payload.name} could not be saved: {exc}") from exc
    db.refresh(category)
    return category


def list_suppliers(db: Session) -> list[models.Supplier]:
    return list(db.scalars(select(models.Supplier).order_by(models.Supplier.name)))


def create_supplier(db: Session, payload: schemas.SupplierCreate) -> models.Supplier:
    supplier = models.Supplier(**payload.model_dump())
    db.add(supplier)
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise StoreError(f"Supplier {payload.name} could not be saved: {exc}") from exc
    db.refresh(supplier)
    return supplier


def list_users(db: Session, *, skip: int = 0, limit: int = 50) -> list[models.User]:
    statement = select(models.User).order_by(models.User.id).offset(skip).limit(limit)
    return list(db.scalars(statement))


def get_user_by_username(db: Session, username: str) -> Optional[models.User]:
    statement = select(models.User).where(models.User.username == username)
    return db.scalars(statement).first()


def create_user(db: Session, payload: schemas.UserCreate) -> models.User:
    user = models.User(
        username=payload.username,
        full_name=payload.full_name,
        hashed_password=security.hash_password(payload.password),
        is_active=payload.is_active,
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise DuplicateUsernameError(f"Username '{payload.username}' already exists") from exc
    db.refresh(user)
    return user


def authenticate_user(db: Session, username: str, password: str) -> Optional[models.User]:
    """Return the matching user when the credentials are valid."""

    user = get_user_by_username(db, username)
    if not user or not user.is_active:
        return None
    if not security.verify_password(password, user.hashed_password):
        return None
    return user
