"""
Fixtures compartidas para los tests de módulos

Cada test corre dentro de una transacción externa que se revierte al final;
los commit de los servicios solo liberan SAVEPOINTs.
"""
import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("DEBUG", "false")

from datetime import datetime
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from app.database.database import Base, get_db
from app.main import app
from app.modules.auth.models import User, UserRole
from app.modules.branches.models import Branch
from app.modules.prices.models import PriceRecord, PriceKind, PriceRole, PriceState
from app.modules.products.models import Product, Presentation
from app.modules.stock.models import StockLot, StockThreshold


@pytest.fixture(scope="session")
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite maneja BEGIN por su cuenta y rompe los SAVEPOINT
    @event.listens_for(engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db_session(engine):
    connection = engine.connect()
    transaction = connection.begin()
    session = Session(bind=connection, join_transaction_mode="create_savepoint")
    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


@pytest.fixture(autouse=True)
def dispatched(monkeypatch):
    """Captura los despachos de notificaciones en lugar de encolarlos en Celery"""
    sent = []
    monkeypatch.setattr(
        "app.modules.notifications.service.celery_dispatcher",
        lambda notification_id: sent.append(notification_id)
    )
    return sent


@pytest.fixture
def api_client(db_session):
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.pop(get_db, None)


# ===== DATOS BASE =====

@pytest.fixture
def branch(db_session):
    branch = Branch(name="Sucursal Centro", address="6a Avenida 10-20")
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture
def admin_user(db_session):
    user = User(name="Ana Admin", email="ana@example.com", role=UserRole.ADMIN)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture
def seller_user(db_session):
    user = User(name="Luis Vendedor", email="luis@example.com", role=UserRole.SELLER)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture
def super_admin(db_session):
    user = User(name="Root", email="root@example.com", role=UserRole.SUPER_ADMIN)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture
def product(db_session):
    product = Product(name="Cemento 42.5kg", code="CEM-001", current_cost=Decimal("55.0000"))
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture
def presentation(db_session, product):
    presentation = Presentation(product_id=product.id, name="Tarima 40 sacos", barcode="7401000000011")
    db_session.add(presentation)
    db_session.commit()
    return presentation


@pytest.fixture
def make_price(db_session):
    def _make(product=None, presentation=None, amount="10.00",
              kind=PriceKind.STANDARD, state=PriceState.APPROVED, used=False):
        price = PriceRecord(
            product_id=product.id if product is not None else None,
            presentation_id=presentation.id if presentation is not None else None,
            role=PriceRole.PUBLIC,
            ordinal=1,
            amount=Decimal(amount),
            kind=kind,
            state=state,
            used=used,
        )
        db_session.add(price)
        db_session.commit()
        return price
    return _make


@pytest.fixture
def make_lot(db_session, branch):
    def _make(quantity, ingress, product=None, presentation=None, unit_cost="5.00", branch_id=None):
        lot = StockLot(
            product_id=product.id if product is not None else None,
            presentation_id=presentation.id if presentation is not None else None,
            branch_id=branch_id or branch.id,
            initial_quantity=quantity,
            remaining_quantity=quantity,
            unit_cost=Decimal(unit_cost),
            ingress_date=ingress if isinstance(ingress, datetime) else datetime.fromisoformat(ingress),
        )
        db_session.add(lot)
        db_session.commit()
        return lot
    return _make


@pytest.fixture
def make_threshold(db_session):
    def _make(minimum, product=None, presentation=None):
        threshold = StockThreshold(
            product_id=product.id if product is not None else None,
            presentation_id=presentation.id if presentation is not None else None,
            minimum=minimum,
        )
        db_session.add(threshold)
        db_session.commit()
        return threshold
    return _make
