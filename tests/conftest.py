import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from tablepos.database import get_session, get_session_factory
from tablepos.engine import TableSessionEngine
from tablepos.events import ChangeFeed
from tablepos.main import app
from tablepos.models import Category, Product


@pytest.fixture
def db_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session(db_engine):
    with Session(db_engine) as session:
        yield session


@pytest.fixture
def feed():
    return ChangeFeed()


@pytest.fixture
def pos(session, feed):
    return TableSessionEngine(session, feed)


@pytest.fixture
def menu(session):
    """Small catalog: two always-available items, one Sunday-only, one switched off."""
    drinks = Category(name="Drinks")
    food = Category(name="Food")
    session.add(drinks)
    session.add(food)
    products = [
        Product(category_id=drinks.id, name="Coke", price=40),
        Product(category_id=food.id, name="Paneer Tikka", price=220),
        Product(category_id=food.id, name="Sunday Biryani", price=250, available_days=["Sun"]),
        Product(category_id=drinks.id, name="Lassi", price=60, is_available_now=False),
    ]
    session.add_all(products)
    session.commit()
    return {product.name: product for product in products}


@pytest.fixture
def client(db_engine):
    def override_session():
        with Session(db_engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_session_factory] = lambda: (lambda: Session(db_engine))
    yield TestClient(app)
    app.dependency_overrides.clear()
