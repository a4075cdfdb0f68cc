"""Shared FastAPI dependencies."""

from __future__ import annotations

from functools import lru_cache
from typing import Generator, Optional

from fastapi import Depends
from sqlalchemy.orm import Session

from .config import Settings, get_settings
from .database import SessionLocal, get_engine
from .errors import StoreError
from .importer import ImportPipeline
from .ledger import StockLedger
from .parse_store import ParseProductStore
from .store import MemoryProductStore, ProductStore, SqlProductStore


def get_db() -> Generator[Session, None, None]:
    """Provide a database session for FastAPI routes."""

    get_engine()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@lru_cache(maxsize=1)
def memory_store() -> MemoryProductStore:
    """Process wide in-memory store shared by every request."""

    return MemoryProductStore()


def build_store(settings: Settings, db: Optional[Session] = None) -> ProductStore:
    """Return the product store selected by ``settings.backend``."""

    if settings.backend == "memory":
        return memory_store()
    if settings.backend == "parse":
        return ParseProductStore.from_settings(settings)
    if db is None:
        raise StoreError("The SQL backend needs a database session")
    return SqlProductStore(db)


def get_store(db: Session = Depends(get_db)) -> ProductStore:
    return build_store(get_settings(), db)


def get_ledger(store: ProductStore = Depends(get_store)) -> StockLedger:
    return StockLedger(store)


def get_pipeline(store: ProductStore = Depends(get_store)) -> ImportPipeline:
    settings = get_settings()
    return ImportPipeline(store, row_delay=settings.import_row_delay, retries=settings.import_retries)
