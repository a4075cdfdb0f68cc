"""Delimited text parsing for product import files."""

from __future__ import annotations

import csv
import io
from pathlib import PurePath
from typing import Iterator

from .errors import ValidationError

ImportRow = dict[str, str]

COLUMNS = (
    "name",
    "sku",
    "category",
    "price",
    "cost",
    "quantity",
    "min_stock",
    "max_stock",
    "supplier",
    "barcode",
    "description",
)
REQUIRED_COLUMNS = ("name", "sku", "category", "price", "quantity")
SUPPORTED_EXTENSIONS = (".csv", ".txt")


def _first_line(text: str) -> str:
    for line in text.splitlines():
        if line.strip():
            return line
    return ""


def _clean(field: str) -> str:
    value = field.strip()
    if len(value) >= 2 and value[0] == value[-1] == '"':
        value = value[1:-1]
    return value


def _is_blank(fields: list[str], delimiter: str) -> bool:
    if any(field.strip() for field in fields):
        return False
    # A tab separated line of empty fields is still only whitespace.
    return len(fields) <= 1 or not delimiter.strip()


def detect_delimiter(filename: str, text: str) -> str:
    """Pick the delimiter from the file extension.

    ``.csv`` files are comma separated. ``.txt`` files are tried as tab
    separated first and fall back to commas when the header does not split
    into more than one column on tabs.
    """

    suffix = PurePath(filename).suffix.lower()
    if suffix == ".csv":
        return ","
    if suffix == ".txt":
        header = _first_line(text)
        return "\t" if len(header.split("\t")) > 1 else ","
    raise ValidationError(
        f"Unsupported file type '{suffix or filename}'; expected one of {', '.join(SUPPORTED_EXTENSIONS)}"
    )


def iter_rows(text: str, delimiter: str = ",") -> Iterator[ImportRow]:
    """Yield one mapping per data line, keyed by the lower-cased header.

    Quoted fields may hold the delimiter or line breaks. Blank or
    whitespace-only lines are ignored and lines with fewer fields than the
    header are dropped. A line of empty delimited fields is still a row, so
    it is reported as a failed import rather than silently lost.
    """

    reader = csv.reader(io.StringIO(text, newline=""), delimiter=delimiter, quotechar='"')
    headers: list[str] | None = None
    for fields in reader:
        if _is_blank(fields, delimiter):
            continue
        if headers is None:
            headers = [_clean(field).lower() for field in fields]
            continue
        if len(fields) < len(headers):
            continue
        yield {header: _clean(fields[index]) for index, header in enumerate(headers)}


def decode(data: bytes) -> str:
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise ValidationError("Import file must be UTF-8 encoded text") from exc


def parse_text(filename: str, text: str) -> list[ImportRow]:
    return list(iter_rows(text, detect_delimiter(filename, text)))


def parse_file(filename: str, data: bytes) -> list[ImportRow]:
    """Decode an uploaded file and return all of its rows."""

    return parse_text(filename, decode(data))
