import pytest
from fastapi.testclient import TestClient

import models  # noqa: F401
from core.db import Base, make_engine, make_session_factory
from core.deps import get_session_factory
from main import create_app
from services.orders import OrderCoordinator
from services.repository import OrderRepository, ProductRepository, ReviewRepository


@pytest.fixture()
def engine():
    """Fresh in-memory SQLite database for each test."""
    engine = make_engine("sqlite:///:memory:")
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture()
def file_engine(tmp_path):
    """File-backed SQLite database, shared by several threads."""
    engine = make_engine(f"sqlite:///{tmp_path / 'catalog.db'}", busy_timeout=30)
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture()
def products(session_factory):
    return ProductRepository(session_factory)


@pytest.fixture()
def reviews(session_factory):
    return ReviewRepository(session_factory)


@pytest.fixture()
def orders(session_factory):
    return OrderRepository(session_factory)


@pytest.fixture()
def coordinator(session_factory):
    return OrderCoordinator(session_factory, retry_backoff=0)


@pytest.fixture()
def widget(products):
    """Product(name="Widget", price=9.99, stockQuantity=5)."""
    return products.create({"name": "Widget", "price": "9.99", "stock_quantity": 5, "sku": "WID-1"})


@pytest.fixture()
def gadget(products):
    return products.create({"name": "Gadget", "price": "0.35", "stock_quantity": 10})


@pytest.fixture()
def client(session_factory):
    """Test client whose routes use the per-test database."""
    app = create_app()
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
