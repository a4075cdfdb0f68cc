"""FastAPI application factory."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, File, HTTPException, Request, Response, UploadFile, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from . import __version__, schemas
from .auth import SESSION_COOKIE, get_current_session, login
from .config import get_settings
from .database import init_database
from .dependencies import get_db, get_ledger, get_pipeline, get_store
from .errors import (
    DuplicateCategoryError,
    DuplicateSkuError,
    InsufficientStockError,
    InventoryError,
    ProductInUseError,
    ProductNotFoundError,
    StoreError,
    ValidationError,
)
from .import_templates import render_template, template_filename
from .importer import DuplicateResolution, DuplicateResolutionRequired, ImportPipeline
from .ledger import StockLedger
from .log import setup_logging
from .parsing import parse_file
from .reports import InventoryReport, build_report, render_report_csv
from .security import SessionInfo
from .store import ProductStore

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR = (
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (InsufficientStockError, status.HTTP_409_CONFLICT),
    (ProductNotFoundError, status.HTTP_404_NOT_FOUND),
    (DuplicateSkuError, status.HTTP_409_CONFLICT),
    (DuplicateCategoryError, status.HTTP_409_CONFLICT),
    (ProductInUseError, status.HTTP_409_CONFLICT),
    (StoreError, status.HTTP_502_BAD_GATEWAY),
)


def status_for(exc: InventoryError) -> int:
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_400_BAD_REQUEST


def _session_read(session: SessionInfo, token: Optional[str] = None) -> schemas.SessionRead:
    return schemas.SessionRead(
        username=session.username,
        issued_at=session.issued_at,
        expires_at=session.expires_at,
        token=token,
    )


def _read_upload(file: UploadFile) -> tuple[str, list[dict[str, str]]]:
    filename = file.filename or ""
    rows = parse_file(filename, file.file.read())
    if not rows:
        raise ValidationError(f"{filename or 'upload'} contains no data rows")
    return filename, rows


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""

    settings = get_settings()
    setup_logging(settings.log_level, settings.log_dir)
    init_database()

    app = FastAPI(title=settings.app_name, version=__version__)

    @app.exception_handler(InventoryError)
    async def inventory_error_handler(request: Request, exc: InventoryError) -> JSONResponse:
        code = status_for(exc)
        if code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=code, content={"detail": str(exc)})

    @app.get("/health", tags=["system"])
    def health_check() -> dict[str, str]:
        return {"status": "ok", "backend": settings.backend}

    @app.post("/auth/login", response_model=schemas.SessionRead, tags=["auth"])
    def auth_login(credentials: schemas.LoginRequest, response: Response, db: Session = Depends(get_db)):
        outcome = login(db, credentials.username, credentials.password)
        if outcome is None:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid username or password")
        token, session = outcome
        response.set_cookie(
            SESSION_COOKIE,
            token,
            max_age=settings.session_max_age,
            httponly=True,
            samesite="lax",
        )
        return _session_read(session, token)

    @app.post("/auth/logout", status_code=status.HTTP_204_NO_CONTENT, tags=["auth"])
    def auth_logout() -> Response:
        response = Response(status_code=status.HTTP_204_NO_CONTENT)
        response.delete_cookie(SESSION_COOKIE)
        return response

    api = APIRouter(dependencies=[Depends(get_current_session)])

    @api.get("/auth/session", response_model=schemas.SessionRead, tags=["auth"])
    def current_session(session: SessionInfo = Depends(get_current_session)):
        return _session_read(session)

    @api.get("/products", response_model=list[schemas.ProductRead], tags=["products"])
    def list_products(
        category: Optional[str] = None,
        search: Optional[str] = None,
        low_stock: bool = False,
        store: ProductStore = Depends(get_store),
    ):
        filters = schemas.ProductFilters(category=category, search=search, low_stock=low_stock)
        return store.list(filters)

    @api.post(
        "/products", response_model=schemas.ProductRead, status_code=status.HTTP_201_CREATED, tags=["products"]
    )
    def create_product(payload: schemas.ProductCreate, store: ProductStore = Depends(get_store)):
        product = store.create(payload)
        logger.info("Created product %s (%s)", product.id, product.sku)
        return product

    @api.get("/products/sku/{sku}", response_model=schemas.ProductRead, tags=["products"])
    def product_by_sku(sku: str, store: ProductStore = Depends(get_store)):
        product = store.get_by_sku(sku)
        if product is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"No product with SKU '{sku}'")
        return product

    @api.get("/products/barcode/{code}", response_model=schemas.ProductRead, tags=["products"])
    def product_by_barcode(code: str, store: ProductStore = Depends(get_store)):
        product = store.get_by_barcode(code)
        if product is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"No product with barcode '{code}'")
        return product

    @api.get("/products/{product_id}", response_model=schemas.ProductRead, tags=["products"])
    def get_product(product_id: str, store: ProductStore = Depends(get_store)):
        return store.get_by_id(product_id)

    @api.patch("/products/{product_id}", response_model=schemas.ProductRead, tags=["products"])
    def update_product(product_id: str, payload: schemas.ProductUpdate, store: ProductStore = Depends(get_store)):
        return store.update(product_id, payload)

    @api.delete("/products/{product_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["products"])
    def delete_product(product_id: str, store: ProductStore = Depends(get_store)) -> Response:
        store.delete(product_id)
        logger.info("Deleted product %s", product_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @api.get(
        "/products/{product_id}/movements", response_model=list[schemas.StockMovementRead], tags=["movements"]
    )
    def product_movements(product_id: str, limit: int = 100, ledger: StockLedger = Depends(get_ledger)):
        ledger.store.get_by_id(product_id)
        return ledger.list_movements(product_id, limit)

    @api.post(
        "/products/{product_id}/movements",
        response_model=schemas.MovementResult,
        status_code=status.HTTP_201_CREATED,
        tags=["movements"],
    )
    def record_movement(
        product_id: str, payload: schemas.MovementRequest, ledger: StockLedger = Depends(get_ledger)
    ):
        return ledger.record_movement(
            product_id,
            payload.movement_type,
            payload.quantity,
            payload.reason,
            payload.reference,
            decrease=payload.decrease,
        )

    @api.post(
        "/products/{product_id}/restock",
        response_model=schemas.MovementResult,
        status_code=status.HTTP_201_CREATED,
        tags=["movements"],
    )
    def restock_product(product_id: str, payload: schemas.RestockRequest, ledger: StockLedger = Depends(get_ledger)):
        return ledger.restock(product_id, payload.quantity)

    @api.get("/movements", response_model=list[schemas.StockMovementRead], tags=["movements"])
    def list_movements(product_id: Optional[str] = None, limit: int = 100, ledger: StockLedger = Depends(get_ledger)):
        return ledger.list_movements(product_id, limit)

    @api.get("/categories", response_model=list[schemas.CategoryRead], tags=["catalog"])
    def list_categories(store: ProductStore = Depends(get_store)):
        return store.list_categories()

    @api.post(
        "/categories", response_model=schemas.CategoryRead, status_code=status.HTTP_201_CREATED, tags=["catalog"]
    )
    def create_category(payload: schemas.CategoryCreate, store: ProductStore = Depends(get_store)):
        return store.add_category(payload)

    @api.get("/suppliers", response_model=list[schemas.SupplierRead], tags=["catalog"])
    def list_suppliers(store: ProductStore = Depends(get_store)):
        return store.list_suppliers()

    @api.post(
        "/suppliers", response_model=schemas.SupplierRead, status_code=status.HTTP_201_CREATED, tags=["catalog"]
    )
    def create_supplier(payload: schemas.SupplierCreate, store: ProductStore = Depends(get_store)):
        return store.add_supplier(payload)

    @api.post("/imports/preview", response_model=schemas.ImportPreview, tags=["imports"])
    def preview_import(file: UploadFile = File(...), pipeline: ImportPipeline = Depends(get_pipeline)):
        filename, rows = _read_upload(file)
        return schemas.ImportPreview(
            filename=filename,
            total_rows=len(rows),
            rows=pipeline.preview(rows),
            duplicates=pipeline.find_duplicates(rows),
        )

    @api.post(
        "/imports",
        response_model=schemas.ImportReport,
        responses={status.HTTP_409_CONFLICT: {"description": "Existing SKUs need a duplicate resolution"}},
        tags=["imports"],
    )
    def run_import(
        file: UploadFile = File(...),
        resolution: Optional[DuplicateResolution] = None,
        pipeline: ImportPipeline = Depends(get_pipeline),
    ):
        filename, rows = _read_upload(file)
        logger.info("Importing %d row(s) from %s", len(rows), filename)
        try:
            result = pipeline.run(rows, resolution)
        except DuplicateResolutionRequired as exc:
            return JSONResponse(
                status_code=status.HTTP_409_CONFLICT,
                content=jsonable_encoder({"detail": str(exc), "duplicates": exc.duplicates}),
            )
        return result.to_report()

    @api.get("/imports/template.csv", tags=["imports"])
    def csv_template() -> Response:
        return Response(
            content=render_template("csv"),
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="{template_filename("csv")}"'},
        )

    @api.get("/imports/template.txt", tags=["imports"])
    def txt_template() -> Response:
        return Response(
            content=render_template("txt"),
            media_type="text/plain",
            headers={"Content-Disposition": f'attachment; filename="{template_filename("txt")}"'},
        )

    @api.get("/reports/summary", response_model=InventoryReport, tags=["reports"])
    def report_summary(store: ProductStore = Depends(get_store)):
        return build_report(store.list())

    @api.get("/reports/export.csv", tags=["reports"])
    def export_report(store: ProductStore = Depends(get_store)) -> Response:
        report = build_report(store.list())
        filename = f"inventory_report_{datetime.now():%Y%m%d_%H%M%S}.csv"
        return Response(
            content=render_report_csv(report, settings.currency_symbol),
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    app.include_router(api)
    return app
