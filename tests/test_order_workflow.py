import asyncio
import re
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from flower_shop.db_models import OrderStatus
from flower_shop.errors import (
    InsufficientStockError, OrderNotDeletableError, OrderNotFoundError, OrderNumberConflictError,
    OrderValidationError, PaymentMethodNotFoundError, ProductInactiveError, ProductNotFoundError,
    UserNotFoundError,
)
from flower_shop.facade import Database, TableClient
from flower_shop.services.orders import OrderService, generate_order_number


def numbers(*values):
    it = iter(values)
    return lambda: next(it)


async def order_count(session_factory):
    async with session_factory() as session:
        return await Database(session).orders.count()


# ---------------------------------------------------------
# Order numbers
# ---------------------------------------------------------

def test_order_number_format():
    now = datetime(2025, 2, 14, 9, 30, tzinfo=timezone.utc)
    number = generate_order_number("FL", now)
    assert re.fullmatch(r"FL-20250214-\d{4}-\d{3}", number)
    assert number.split("-")[2] == str(int(now.timestamp() * 1000))[-4:]


# ---------------------------------------------------------
# Creation
# ---------------------------------------------------------

async def test_create_order_decrements_stock_and_totals(order_service, order_payload, catalog, stock, notifier):
    order = await order_service.create_order(order_payload(("rose", 3), ("tulip", 2)))

    assert order["status"] == OrderStatus.pending
    assert order["customer_email"] == "jana@example.com"
    assert order["total_amount"] == Decimal("106.00")
    assert [i["subtotal"] for i in order["items"]] == [Decimal("75.00"), Decimal("31.00")]
    assert sum(i["subtotal"] for i in order["items"]) == order["total_amount"]
    assert order["items"][0]["product"]["name"] == "Red Rose Bouquet"
    assert await stock(catalog["rose"]) == 2
    assert await stock(catalog["tulip"]) == 8
    assert notifier.created[0]["id"] == order["id"]


async def test_line_items_keep_price_snapshot(order_service, order_payload, catalog, session_factory):
    order = await order_service.create_order(order_payload(("rose", 1)))
    async with session_factory() as session:
        async with session.begin():
            await Database(session).products.update({"id": catalog["rose"]}, {"price": Decimal("99.00")})

    reloaded = await order_service.get_order(order["id"])

    assert reloaded["items"][0]["unit_price"] == Decimal("25.00")
    assert reloaded["items"][0]["product"]["price"] == Decimal("99.00")
    assert reloaded["total_amount"] == Decimal("25.00")
    assert reloaded["status_history"][0]["notes"] == "Order created"


async def test_payment_method_summary(order_service, order_payload, catalog):
    order = await order_service.create_order(order_payload(("tulip", 1), payment_method_id=catalog["bank"]))
    assert order["payment_method"]["name"] == "Bank transfer"


async def test_insufficient_stock_changes_nothing(order_service, order_payload, catalog, stock, session_factory):
    with pytest.raises(InsufficientStockError) as exc:
        await order_service.create_order(order_payload(("tulip", 1), ("rose", 10)))

    assert exc.value.details == {"product_id": catalog["rose"], "available": 5, "requested": 10}
    assert await stock(catalog["rose"]) == 5
    assert await stock(catalog["tulip"]) == 10
    assert await order_count(session_factory) == 0


async def test_repeated_product_lines_are_checked_together(order_service, order_payload, catalog, stock):
    with pytest.raises(InsufficientStockError) as exc:
        await order_service.create_order(order_payload(("rose", 3), ("rose", 3)))
    assert exc.value.requested == 6
    assert await stock(catalog["rose"]) == 5


async def test_missing_and_inactive_products(order_service, order_payload, catalog, stock):
    with pytest.raises(ProductNotFoundError) as missing:
        await order_service.create_order({**order_payload(("rose", 1)), "items": [
            {"product_id": catalog["rose"], "quantity": 1},
            {"product_id": 9999, "quantity": 1},
        ]})
    with pytest.raises(ProductInactiveError):
        await order_service.create_order(order_payload(("lily", 1)))

    assert missing.value.status_code == 404
    assert "(item 2)" in missing.value.message
    assert await stock(catalog["rose"]) == 5


async def test_validation_errors_are_structured(order_service, session_factory, catalog):
    with pytest.raises(OrderValidationError) as exc:
        await order_service.create_order({
            "customer_name": "  ",
            "customer_email": "not-an-email",
            "customer_phone": "123",
            "items": [{"product_id": "abc", "quantity": 0}],
        })

    errors = {e["field"]: e for e in exc.value.errors}
    assert errors["customer_name"]["code"] == "REQUIRED_FIELD"
    assert errors["customer_email"]["code"] == "INVALID_FORMAT"
    assert errors["customer_phone"]["message"] == "Invalid phone number format"
    assert errors["items[0].product_id"]["code"] == "INVALID_TYPE"
    assert errors["items[0].quantity"]["message"] == "Quantity must be a positive integer"
    assert await order_count(session_factory) == 0


async def test_empty_cart_is_rejected(order_service, order_payload):
    with pytest.raises(OrderValidationError) as exc:
        await order_service.create_order(order_payload())
    assert exc.value.errors == [{
        "field": "items", "message": "Order must contain at least one item", "code": "REQUIRED_FIELD",
    }]


async def test_existing_order_number_is_regenerated(session_factory, notifier, order_payload):
    service = OrderService(session_factory, notifier, order_number_factory=numbers("FL-A", "FL-A", "FL-B"))

    first = await service.create_order(order_payload(("rose", 1)))
    second = await service.create_order(order_payload(("rose", 1)))

    assert (first["order_number"], second["order_number"]) == ("FL-A", "FL-B")


async def test_unique_constraint_conflict_retries_whole_creation(session_factory, notifier, order_payload,
                                                                 catalog, stock):
    service = OrderService(
        session_factory, notifier,
        order_number_factory=numbers("FL-A", "FL-A", "FL-A", "FL-A", "FL-B"),
        max_attempts=2,
    )
    await service.create_order(order_payload(("rose", 1)))

    second = await service.create_order(order_payload(("rose", 2)))

    assert second["order_number"] == "FL-B"
    assert await stock(catalog["rose"]) == 2


async def test_conflict_gives_up_after_max_attempts(session_factory, notifier, order_payload, catalog, stock):
    service = OrderService(session_factory, notifier, order_number_factory=lambda: "FL-SAME", max_attempts=2)
    await service.create_order(order_payload(("rose", 1)))

    with pytest.raises(OrderNumberConflictError):
        await service.create_order(order_payload(("rose", 1)))
    assert await stock(catalog["rose"]) == 4


async def test_notification_failure_does_not_fail_creation(session_factory, failing_notifier, order_payload,
                                                          catalog, stock):
    order = await OrderService(session_factory, failing_notifier).create_order(order_payload(("rose", 1)))

    assert order["id"]
    assert await stock(catalog["rose"]) == 4


# ---------------------------------------------------------
# Deletion
# ---------------------------------------------------------

async def test_delete_restores_stock(order_service, status_service, order_payload, catalog, stock,
                                     session_factory):
    order = await order_service.create_order(order_payload(("rose", 2)))
    await status_service.update_status(order["id"], "confirmed")
    assert await stock(catalog["rose"]) == 3

    outcome = await order_service.delete_order(order["id"])

    assert outcome["deleted_order"]["status"] == "confirmed"
    assert outcome["stock_restored"] == [
        {"product_id": catalog["rose"], "product_name": "Red Rose Bouquet", "quantity_restored": 2},
    ]
    assert await stock(catalog["rose"]) == 5
    with pytest.raises(OrderNotFoundError):
        await order_service.get_order(order["id"])
    async with session_factory() as session:
        assert await Database(session).order_items.count(where={"order_id": order["id"]}) == 0


async def test_delivered_order_cannot_be_deleted(order_service, status_service, order_payload, catalog, stock):
    order = await order_service.create_order(order_payload(("rose", 2)))
    await status_service.update_status(order["id"], "delivered")

    with pytest.raises(OrderNotDeletableError) as exc:
        await order_service.delete_order(order["id"])

    assert exc.value.details["current_status"] == "delivered"
    assert await stock(catalog["rose"]) == 3
    assert (await order_service.get_order(order["id"]))["status"] == OrderStatus.delivered


async def test_delete_skips_items_of_removed_products(order_service, order_payload, catalog, stock,
                                                      session_factory):
    order = await order_service.create_order(order_payload(("rose", 1), ("tulip", 4)))
    async with session_factory() as session:
        async with session.begin():
            await Database(session).products.delete({"id": catalog["tulip"]})

    outcome = await order_service.delete_order(order["id"])

    assert [r["product_id"] for r in outcome["stock_restored"]] == [catalog["rose"]]
    assert await stock(catalog["rose"]) == 5


async def test_delete_unknown_order(order_service, catalog):
    with pytest.raises(OrderNotFoundError):
        await order_service.delete_order(4242)


# ---------------------------------------------------------
# Listing
# ---------------------------------------------------------

async def test_list_orders_filters_and_paginates(order_service, status_service, order_payload):
    first = await order_service.create_order(order_payload(("rose", 1), customer_name="Alice Green"))
    await order_service.create_order(order_payload(("tulip", 1), customer_name="Bob Stone"))
    await order_service.create_order(order_payload(("tulip", 1), customer_name="Alicia Bloom"))
    await status_service.update_status(first["id"], "cancelled")

    page = await order_service.list_orders(sort_by="total_amount", sort_order="asc", limit=2)
    alices = await order_service.list_orders(customer_name="ALIC")
    cancelled = await order_service.list_orders(status="cancelled")

    assert [o["total_amount"] for o in page["orders"]] == [Decimal("15.50"), Decimal("15.50")]
    assert page["pagination"] == {
        "page": 1, "limit": 2, "total": 3, "total_pages": 2, "has_next_page": True, "has_prev_page": False,
    }
    assert {o["customer_name"] for o in alices["orders"]} == {"Alice Green", "Alicia Bloom"}
    assert [o["id"] for o in cancelled["orders"]] == [first["id"]]
    assert len(cancelled["orders"][0]["items"]) == 1


async def test_list_orders_clamps_limit_and_ignores_unknown_sort(order_service, order_payload):
    await order_service.create_order(order_payload(("rose", 1)))

    result = await order_service.list_orders(sort_by="drop table", limit=500, page=0)

    assert result["pagination"]["limit"] == 100
    assert result["pagination"]["page"] == 1
    assert len(result["orders"]) == 1


async def test_unknown_payment_method_or_user_is_rejected(order_service, order_payload, catalog, stock,
                                                         session_factory):
    with pytest.raises(PaymentMethodNotFoundError) as exc:
        await order_service.create_order(order_payload(("rose", 1), payment_method_id=9999))
    assert exc.value.status_code == 404

    with pytest.raises(UserNotFoundError):
        await order_service.create_order(order_payload(("rose", 1), user_id=777))

    assert await stock(catalog["rose"]) == 5
    assert await order_count(session_factory) == 0


async def test_items_require_real_integers(order_service, catalog):
    with pytest.raises(OrderValidationError) as exc:
        await order_service.create_order({
            "customer_name": "Jana",
            "customer_email": "jana@example.com",
            "items": [
                {"product_id": str(catalog["rose"]), "quantity": 1},
                {"product_id": catalog["rose"], "quantity": 2.0},
                {"product_id": catalog["rose"], "quantity": True},
            ],
        })

    errors = {e["field"]: e for e in exc.value.errors}
    assert errors["items[0].product_id"]["code"] == "INVALID_TYPE"
    assert errors["items[1].quantity"]["code"] == "INVALID_TYPE"
    assert errors["items[2].quantity"]["message"] == "Quantity must be a positive integer"


# ---------------------------------------------------------
# Concurrent stock
# ---------------------------------------------------------

async def test_concurrent_orders_cannot_oversell(order_service, order_payload, catalog, stock):
    results = await asyncio.gather(
        order_service.create_order(order_payload(("rose", 3))),
        order_service.create_order(order_payload(("rose", 3))),
        return_exceptions=True,
    )

    assert sum(isinstance(r, dict) for r in results) == 1
    assert sum(isinstance(r, InsufficientStockError) for r in results) == 1
    assert await stock(catalog["rose"]) == 2


async def test_stock_drained_after_check_rolls_back(order_service, order_payload, catalog, stock,
                                                    session_factory, monkeypatch):
    find_unique = TableClient.find_unique

    async def drained_after_read(self, where, select=None):
        row = await find_unique(self, where, select)
        if self.table_name == "products" and select and "active" in select:
            # another order takes all but one rose between check and decrement
            await self.query().update({"stock_quantity": 1}, where)
        return row

    monkeypatch.setattr(TableClient, "find_unique", drained_after_read)

    with pytest.raises(InsufficientStockError) as exc:
        await order_service.create_order(order_payload(("rose", 3)))

    assert exc.value.details == {"product_id": catalog["rose"], "available": 1, "requested": 3}
    assert await stock(catalog["rose"]) == 5
    assert await order_count(session_factory) == 0
