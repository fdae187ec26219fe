from __future__ import annotations

from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import settlement.persistence.pg as pg
from settlement.core.config import get_settings
from settlement.persistence.models import Base, ProductModel
from settlement.providers.registry import get_payment_provider
from settlement.providers.sandbox import SandboxPaymentProvider


@pytest.fixture(scope="session")
def test_db_path(tmp_path_factory: pytest.TempPathFactory) -> Path:
    return tmp_path_factory.mktemp("db") / "test.sqlite"


@pytest.fixture(scope="session", autouse=True)
def configure_test_engine(test_db_path: Path):
    settings = get_settings()
    settings.payment_backend = "sandbox"
    settings.auth_enabled = True

    engine = create_engine(
        f"sqlite+pysqlite:///{test_db_path}",
        future=True,
        connect_args={"check_same_thread": False},
    )
    TestSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)

    pg.engine = engine
    pg.SessionLocal = TestSessionLocal

    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def sandbox() -> SandboxPaymentProvider:
    return SandboxPaymentProvider()


@pytest.fixture()
def client(configure_test_engine, sandbox):
    from settlement.main import app

    app.dependency_overrides[get_payment_provider] = lambda: sandbox
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture()
def session(configure_test_engine):
    with pg.session_scope() as s:
        yield s


@pytest.fixture()
def make_product(session):
    def _make(name: str = "Apple", quantity: int = 10, price: int = 500) -> ProductModel:
        product = ProductModel(name=name, quantity=quantity, price_cents=price)
        session.add(product)
        session.commit()
        return product

    return _make


@pytest.fixture()
def auth_headers():
    settings = get_settings()
    return {
        "guest": {"X-API-Key": settings.storefront_api_key},
        "customer": {"X-API-Key": settings.storefront_api_key, "X-User-Id": "42"},
        "other_customer": {"X-API-Key": settings.storefront_api_key, "X-User-Id": "43"},
        "admin": {"X-API-Key": settings.admin_api_key},
        "system": {"X-API-Key": settings.system_api_key},
    }
