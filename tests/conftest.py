import os
import tempfile

# settings are read at import time
os.environ.setdefault("SHOP_DATA_ROOT", tempfile.mkdtemp(prefix="flower-shop-"))
os.environ.setdefault("ENVIRONMENT", "test")

from decimal import Decimal

import pytest

from flower_shop import db_models
from flower_shop.database import Base, create_engine_for_url, create_session_factory
from flower_shop.services.orders import OrderService
from flower_shop.services.status import OrderStatusService


class RecordingNotifier:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.created = []
        self.status_changes = []

    async def order_created(self, order):
        if self.fail:
            raise ConnectionError("mail server unreachable")
        self.created.append(order)

    async def order_status_changed(self, order, previous_status):
        if self.fail:
            raise ConnectionError("mail server unreachable")
        self.status_changes.append((order, previous_status))


@pytest.fixture
async def engine(tmp_path):
    engine = create_engine_for_url(f"sqlite+aiosqlite:///{tmp_path / 'shop.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
async def catalog(session_factory):
    """Seed products and a payment method; returns their ids by key."""
    async with session_factory() as session:
        rose = db_models.Product(name="Red Rose Bouquet", price=Decimal("25.00"), stock_quantity=5, sku="ROSE-12")
        tulip = db_models.Product(name="Tulip Mix", price=Decimal("15.50"), stock_quantity=10, sku="TULIP-MIX")
        lily = db_models.Product(name="White Lily", price=Decimal("30.00"), stock_quantity=8, active=False)
        card = db_models.PaymentMethod(name="Bank transfer", type="bank", account_info="SK00 1234")
        session.add_all([rose, tulip, lily, card])
        await session.commit()
        return {"rose": rose.id, "tulip": tulip.id, "lily": lily.id, "bank": card.id}


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def failing_notifier():
    return RecordingNotifier(fail=True)


@pytest.fixture
def order_service(session_factory, notifier):
    return OrderService(session_factory, notifier)


@pytest.fixture
def status_service(session_factory, notifier):
    return OrderStatusService(session_factory, notifier)


@pytest.fixture
def order_payload(catalog):
    def build(*items, **overrides):
        payload = {
            "customer_name": "Jana Kvetová",
            "customer_email": "Jana@Example.com",
            "customer_phone": "+421 900 123 456",
            "delivery_address": "Hlavná 1",
            "delivery_city": "Bratislava",
            "items": [{"product_id": catalog[key], "quantity": qty} for key, qty in items],
        }
        payload.update(overrides)
        return payload
    return build


@pytest.fixture
def stock(session_factory):
    """Current stock_quantity of a product, read in a fresh session."""
    async def read(product_id):
        async with session_factory() as session:
            product = await session.get(db_models.Product, product_id)
            return product.stock_quantity if product else None
    return read
