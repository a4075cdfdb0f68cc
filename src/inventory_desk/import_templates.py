"""Starter files that show the import column layout."""

from __future__ import annotations

import csv
import io

from .errors import ValidationError
from .parsing import COLUMNS

EXAMPLE_ROWS = (
    ("Laptop Computer", "LAP001", "Electronics", "999.99", "750.00", "15", "5", "50",
     "Tech Supplier", "123456789012", "High-performance laptop"),
    ("Office Chair", "CHR001", "Furniture", "299.99", "200.00", "8", "2", "20",
     "Office Supplies Inc", "234567890123", "Ergonomic office chair"),
    ("Wireless Mouse", "MOU001", "Electronics", "49.99", "25.00", "25", "10", "100",
     "Tech Supplier", "345678901234", "Bluetooth wireless mouse"),
)

FORMATS = {"csv": ",", "txt": "\t"}


def render_template(fmt: str = "csv") -> str:
    """Return the header row and three example rows, comma or tab separated."""

    try:
        delimiter = FORMATS[fmt.lower()]
    except KeyError as exc:
        raise ValidationError(f"Unknown template format '{fmt}'; expected csv or txt") from exc

    buffer = io.StringIO()
    writer = csv.writer(buffer, delimiter=delimiter, lineterminator="\n")
    writer.writerow(COLUMNS)
    writer.writerows(EXAMPLE_ROWS)
    return buffer.getvalue()


def template_filename(fmt: str = "csv") -> str:
    return f"inventory_template.{fmt.lower()}"
