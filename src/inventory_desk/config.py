"""Application configuration helpers."""

from __future__ import annotations

import os
import secrets
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path

BACKENDS = ("sql", "memory", "parse")


def _env_flag(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).lower() in {"1", "true", "yes"}


def _default_data_root() -> Path:
    """Return the platform specific directory used for persistent data."""

    override = os.environ.get("INVENTORY_DESK_HOME")
    if override:
        return Path(override).expanduser()
    if os.name == "nt":
        base = Path(os.environ.get("LOCALAPPDATA", Path.home()))
        return base / "InventoryDesk"
    return Path.home() / ".inventory_desk"


def _default_database_path() -> Path:
    override = os.environ.get("INVENTORY_DESK_DB")
    if override:
        return Path(override).expanduser()
    return _default_data_root() / "inventory.sqlite3"


def _default_log_dir() -> Path:
    override = os.environ.get("INVENTORY_DESK_LOG_DIR")
    if override:
        return Path(override).expanduser()
    return _default_data_root() / "logs"


def _default_secret_key() -> str:
    """Return the secret key used for signing sessions."""

    override = os.environ.get("INVENTORY_DESK_SECRET")
    if override:
        return override
    return secrets.token_hex(32)


def _default_backend() -> str:
    backend = os.environ.get("INVENTORY_DESK_BACKEND", "sql").lower()
    if backend not in BACKENDS:
        raise ValueError(f"Unknown storage backend {backend!r}; expected one of {', '.join(BACKENDS)}")
    return backend


@dataclass(slots=True)
class Settings:
    """Runtime configuration loaded from environment variables."""

    app_name: str = field(default_factory=lambda: os.environ.get("INVENTORY_DESK_APP_NAME", "Inventory Desk"))
    host: str = field(default_factory=lambda: os.environ.get("INVENTORY_DESK_HOST", "127.0.0.1"))
    port: int = field(default_factory=lambda: int(os.environ.get("INVENTORY_DESK_PORT", "8000")))
    reload: bool = field(default_factory=lambda: _env_flag("INVENTORY_DESK_RELOAD"))
    log_level: str = field(default_factory=lambda: os.environ.get("INVENTORY_DESK_LOG_LEVEL", "info"))
    data_root: Path = field(default_factory=_default_data_root)
    database_path: Path = field(default_factory=_default_database_path)
    log_dir: Path = field(default_factory=_default_log_dir)
    secret_key: str = field(default_factory=_default_secret_key)
    session_hours: int = field(default_factory=lambda: int(os.environ.get("INVENTORY_DESK_SESSION_HOURS", "24")))
    backend: str = field(default_factory=_default_backend)
    parse_server_url: str = field(
        default_factory=lambda: os.environ.get("INVENTORY_DESK_PARSE_URL", "https://parseapi.back4app.com")
    )
    parse_app_id: str | None = field(default_factory=lambda: os.environ.get("INVENTORY_DESK_PARSE_APP_ID"))
    parse_rest_key: str | None = field(default_factory=lambda: os.environ.get("INVENTORY_DESK_PARSE_REST_KEY"))
    request_timeout: float = field(default_factory=lambda: float(os.environ.get("INVENTORY_DESK_TIMEOUT", "10")))
    import_row_delay: float = field(default_factory=lambda: float(os.environ.get("INVENTORY_DESK_IMPORT_DELAY", "0")))
    import_retries: int = field(default_factory=lambda: int(os.environ.get("INVENTORY_DESK_IMPORT_RETRIES", "1")))
    currency_symbol: str = field(default_factory=lambda: os.environ.get("INVENTORY_DESK_CURRENCY", "R"))

    @property
    def database_url(self) -> str:
        return f"sqlite:///{self.database_path}"

    @property
    def session_max_age(self) -> int:
        """Session lifetime in seconds."""

        return self.session_hours * 60 * 60

    def ensure_storage(self) -> None:
        """Ensure that the data, database and log directories exist."""

        self.data_root.mkdir(parents=True, exist_ok=True)
        self.database_path.parent.mkdir(parents=True, exist_ok=True)
        self.log_dir.mkdir(parents=True, exist_ok=True)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached application settings."""

    settings = Settings()
    settings.ensure_storage()
    return settings
