from decimal import Decimal

import pytest

from flower_shop.errors import DataAccessError
from flower_shop.facade import Database


async def test_find_and_count(session_factory, catalog):
    async with session_factory() as session:
        db = Database(session)
        active = await db.products.find_many(where={"active": True}, order_by={"name": "asc"}, select=["id", "name"])
        rose = await db.products.find_unique(where={"id": catalog["rose"]})
        ghost = await db.products.find_unique(where={"id": 404})
        paged = await db.products.find_many(order_by={"id": "asc"}, take=1, skip=1)
        total = await db.products.count()
        inactive = await db.products.count(where={"active": False})
    assert [p["name"] for p in active] == ["Red Rose Bouquet", "Tulip Mix"]
    assert rose["price"] == Decimal("25.00")
    assert ghost is None
    assert [p["id"] for p in paged] == [catalog["tulip"]]
    assert (total, inactive) == (3, 1)


async def test_create_update_delete(session_factory, catalog):
    async with session_factory() as session:
        async with session.begin():
            db = Database(session)
            occasion = await db.occasions.create({"name": "Birthday", "display_order": 1})
            many = await db.occasions.create_many([{"name": "Wedding"}, {"name": "Funeral"}])
            renamed = await db.occasions.update({"id": occasion["id"]}, {"name": "Birthdays"})
            removed = await db.occasions.delete({"id": many[1]["id"]})
            missing = await db.occasions.update({"id": 999}, {"name": "Nobody"})
    assert renamed["name"] == "Birthdays"
    assert removed["name"] == "Funeral"
    assert missing is None


async def test_increment_and_guarded_decrement(session_factory, catalog):
    async with session_factory() as session:
        async with session.begin():
            db = Database(session)
            refused = await db.products.decrement({"id": catalog["rose"]}, "stock_quantity", 6)
            left = await db.products.decrement({"id": catalog["rose"]}, "stock_quantity", 5)
            back = await db.products.increment({"id": catalog["rose"]}, "stock_quantity", 2)
    assert refused is None
    assert left["stock_quantity"] == 0
    assert back["stock_quantity"] == 2


async def test_default_mode_collapses_failures(session_factory, catalog):
    async with session_factory() as session:
        db = Database(session)
        created = await db.products.create({"name": "Copy", "price": Decimal("1.00"), "sku": "ROSE-12"})
    assert created is None


async def test_strict_mode_raises_data_access_error(session_factory, catalog):
    async with session_factory() as session:
        db = Database(session, strict=True)
        assert await db.products.find_unique(where={"id": 404}) is None
        with pytest.raises(DataAccessError):
            await db.products.create({"name": "Copy", "price": Decimal("1.00"), "sku": "ROSE-12"})
