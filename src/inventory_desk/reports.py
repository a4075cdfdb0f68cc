"""Inventory reports built from the product store read surface."""

from __future__ import annotations

import csv
import io
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional

from pydantic import BaseModel

from .schemas import ProductRead

TOP_PRODUCTS = 5


class InventorySummary(BaseModel):
    total_products: int
    total_quantity: int
    total_value: Decimal
    total_cost_value: Decimal
    low_stock_count: int


class CategoryBreakdown(BaseModel):
    name: str
    count: int
    value: Decimal


class StockStatus(BaseModel):
    in_stock: int
    low_stock: int
    out_of_stock: int
    in_stock_percent: float
    low_stock_percent: float
    out_of_stock_percent: float


class ProductValue(BaseModel):
    name: str
    sku: str
    category: str
    quantity: int
    total_value: Decimal


class LowStockItem(BaseModel):
    name: str
    sku: str
    quantity: int
    min_stock: int
    category: str


class InventoryReport(BaseModel):
    generated_at: datetime
    summary: InventorySummary
    categories: list[CategoryBreakdown]
    stock_status: StockStatus
    top_products: list[ProductValue]
    low_stock_items: list[LowStockItem]


def _percent(part: int, total: int) -> float:
    return (part / total) * 100 if total else 0.0


def build_report(products: Iterable[ProductRead], generated_at: Optional[datetime] = None) -> InventoryReport:
    items = list(products)
    total = len(items)

    categories: dict[str, CategoryBreakdown] = {}
    for item in items:
        entry = categories.setdefault(item.category, CategoryBreakdown(name=item.category, count=0, value=Decimal("0")))
        entry.count += 1
        entry.value += item.stock_value

    low_stock = [item for item in items if item.is_low_stock]
    in_stock = sum(1 for item in items if item.quantity > item.min_stock)
    low_but_available = sum(1 for item in items if 0 < item.quantity <= item.min_stock)
    out_of_stock = sum(1 for item in items if item.quantity == 0)

    ranked = sorted(items, key=lambda item: item.stock_value, reverse=True)[:TOP_PRODUCTS]

    return InventoryReport(
        generated_at=generated_at or datetime.now(),
        summary=InventorySummary(
            total_products=total,
            total_quantity=sum(item.quantity for item in items),
            total_value=sum((item.stock_value for item in items), Decimal("0")),
            total_cost_value=sum((item.cost * item.quantity for item in items), Decimal("0")),
            low_stock_count=len(low_stock),
        ),
        categories=list(categories.values()),
        stock_status=StockStatus(
            in_stock=in_stock,
            low_stock=low_but_available,
            out_of_stock=out_of_stock,
            in_stock_percent=_percent(in_stock, total),
            low_stock_percent=_percent(low_but_available, total),
            out_of_stock_percent=_percent(out_of_stock, total),
        ),
        top_products=[
            ProductValue(
                name=item.name,
                sku=item.sku,
                category=item.category,
                quantity=item.quantity,
                total_value=item.stock_value,
            )
            for item in ranked
        ],
        low_stock_items=[
            LowStockItem(
                name=item.name,
                sku=item.sku,
                quantity=item.quantity,
                min_stock=item.min_stock,
                category=item.category,
            )
            for item in sorted(low_stock, key=lambda item: item.quantity)
        ],
    )


def render_report_csv(report: InventoryReport, currency: str = "R") -> str:
    """Render *report* as the sectioned CSV export."""

    def money(value: Decimal) -> str:
        return f"{currency}{value:.2f}"

    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")

    writer.writerow(["INVENTORY REPORTS SUMMARY"])
    writer.writerow([f"Generated on: {report.generated_at:%Y-%m-%d %H:%M:%S}"])
    writer.writerow([])

    summary = report.summary
    writer.writerow(["INVENTORY SUMMARY"])
    writer.writerow(["Metric", "Value"])
    writer.writerow(["Total Products", summary.total_products])
    writer.writerow(["Total Quantity", summary.total_quantity])
    writer.writerow(["Total Value", money(summary.total_value)])
    writer.writerow(["Total Cost Value", money(summary.total_cost_value)])
    writer.writerow(["Low Stock Items", summary.low_stock_count])
    writer.writerow([])

    writer.writerow(["CATEGORY BREAKDOWN"])
    writer.writerow(["Category", "Product Count", "Total Value"])
    for category in report.categories:
        writer.writerow([category.name, category.count, money(category.value)])
    writer.writerow([])

    status = report.stock_status
    writer.writerow(["STOCK STATUS"])
    writer.writerow(["Status", "Count", "Percentage"])
    writer.writerow(["In Stock", status.in_stock, f"{status.in_stock_percent:.1f}%"])
    writer.writerow(["Low Stock", status.low_stock, f"{status.low_stock_percent:.1f}%"])
    writer.writerow(["Out of Stock", status.out_of_stock, f"{status.out_of_stock_percent:.1f}%"])
    writer.writerow([])

    writer.writerow(["TOP PRODUCTS BY VALUE"])
    writer.writerow(["Rank", "Product Name", "SKU", "Category", "Quantity", "Total Value"])
    for rank, product in enumerate(report.top_products, start=1):
        writer.writerow([rank, product.name, product.sku, product.category, product.quantity, money(product.total_value)])

    if report.low_stock_items:
        writer.writerow([])
        writer.writerow(["LOW STOCK ITEMS"])
        writer.writerow(["Product Name", "SKU", "Current Stock", "Min Stock", "Category"])
        for item in report.low_stock_items:
            writer.writerow([item.name, item.sku, item.quantity, item.min_stock, item.category])

    return buffer.getvalue()
