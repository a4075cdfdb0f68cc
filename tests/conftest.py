import logging
import os
import tempfile
from collections.abc import Generator
from decimal import Decimal
from typing import Any

# Settings are read once per process; point them at a scratch directory before
# the package is imported so tests never touch the real data directory.
os.environ["INVENTORY_DESK_HOME"] = tempfile.mkdtemp(prefix="inventory-desk-tests-")
os.environ["INVENTORY_DESK_SECRET"] = "test-secret-key"
os.environ["INVENTORY_DESK_BACKEND"] = "sql"
os.environ.pop("INVENTORY_DESK_DB", None)
os.environ.pop("INVENTORY_DESK_LOG_DIR", None)

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from inventory_desk import crud, schemas
from inventory_desk.app import create_app
from inventory_desk.database import create_sqlite_engine, init_database
from inventory_desk.dependencies import get_db
from inventory_desk.log import LOGGER_NAME
from inventory_desk.store import MemoryProductStore, SqlProductStore

TEST_USERNAME = "clerk"
TEST_PASSWORD = "counting-boxes"


def make_product(**overrides: Any) -> schemas.ProductCreate:
    data: dict[str, Any] = {
        "name": "Widget",
        "sku": "WID001",
        "category": "Hardware",
        "price": Decimal("10.00"),
        "cost": Decimal("6.00"),
        "quantity": 10,
        "min_stock": 2,
    }
    data.update(overrides)
    return schemas.ProductCreate(**data)


@pytest.fixture(autouse=True)
def reset_package_logger() -> Generator[None, None, None]:
    yield
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


@pytest.fixture(name="db_engine")
def db_engine_fixture() -> Generator[Any, None, None]:
    engine = create_sqlite_engine("sqlite://", poolclass=StaticPool)
    init_database(engine)
    yield engine
    engine.dispose()


@pytest.fixture(name="db_session")
def db_session_fixture(db_engine) -> Generator[Session, None, None]:  # type: ignore[no-untyped-def]
    factory = sessionmaker(bind=db_engine, autoflush=False, expire_on_commit=False)
    with factory() as session:
        yield session


@pytest.fixture(name="store", params=["sql", "memory"])
def store_fixture(request, db_session):  # type: ignore[no-untyped-def]
    if request.param == "sql":
        return SqlProductStore(db_session)
    return MemoryProductStore()


@pytest.fixture(name="memory_store")
def memory_store_fixture() -> MemoryProductStore:
    return MemoryProductStore()


@pytest.fixture(name="client")
def client_fixture(db_engine) -> Generator[TestClient, None, None]:  # type: ignore[no-untyped-def]
    app = create_app()
    factory = sessionmaker(bind=db_engine, autoflush=False, expire_on_commit=False)

    def get_db_override() -> Generator[Session, None, None]:
        with factory() as session:
            yield session

    app.dependency_overrides[get_db] = get_db_override

    with factory() as session:
        crud.create_user(
            session,
            schemas.UserCreate(username=TEST_USERNAME, password=TEST_PASSWORD, full_name="Stock Clerk"),
        )

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture(name="auth_client")
def auth_client_fixture(client: TestClient) -> TestClient:
    response = client.post("/auth/login", json={"username": TEST_USERNAME, "password": TEST_PASSWORD})
    assert response.status_code == 200, response.text
    client.headers["Authorization"] = f"Bearer {response.json()['token']}"
    return client
