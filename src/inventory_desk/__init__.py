"""Inventory Desk: product catalog, stock ledger and bulk import service."""

from importlib.metadata import PackageNotFoundError, version

try:  # pragma: no cover - handled at runtime
    __version__ = version("inventory-desk")
except PackageNotFoundError:  # pragma: no cover - local execution before install
    __version__ = "0.4.0"

__all__ = ["__version__"]
