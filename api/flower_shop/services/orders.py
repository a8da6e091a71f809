# flower_shop/services/orders.py
"""
Order Workflow - creation, deletion and reads.

Creation and deletion each run as ONE database transaction:
- creation validates every line item (existence, active flag, stock) before
  touching anything, then decrements stock with a guarded atomic UPDATE,
  inserts the order, its items and the first status-history row;
- deletion restores stock for every surviving item and removes the order.

Notifications go out after commit and never change the outcome.
"""
from __future__ import annotations
from datetime import date, datetime, time, timezone
from decimal import Decimal
from functools import partial
from typing import Any, Callable, Dict, List, Mapping, Optional, Union
import logging
import math
import secrets

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from flower_shop.db_models import OrderStatus
from flower_shop.errors import (
    InsufficientStockError, OrderNotDeletableError, OrderNotFoundError,
    OrderNumberConflictError, PaymentMethodNotFoundError, ProductInactiveError, ProductNotFoundError,
    UserNotFoundError,
)
from flower_shop.facade import Database
from flower_shop.models import OrderCreate, validate_order_payload
from flower_shop.services.notifications import LoggingNotifier, Notifier
from flower_shop.services.status import parse_status
from flower_shop.settings import settings
from flower_shop.transactions import TransactionExecutor

logger = logging.getLogger(__name__)

PRODUCT_SUMMARY_COLUMNS = ["id", "name", "price", "summary", "active"]
SORT_FIELDS = ("created_at", "total_amount", "status", "customer_name")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_order_number(prefix: Optional[str] = None, now: Optional[datetime] = None) -> str:
    """
    PREFIX-YYYYMMDD-TTTT-RRR: date, last four digits of the millisecond
    timestamp and a random three-digit suffix. Collisions are possible; the
    UNIQUE constraint on orders.order_number catches them.
    """
    prefix = settings.ORDER_NUMBER_PREFIX if prefix is None else prefix
    now = now or utcnow()
    millis = str(int(now.timestamp() * 1000))[-4:]
    suffix = f"{secrets.randbelow(1000):03d}"
    return f"{prefix}-{now.strftime('%Y%m%d')}-{millis}-{suffix}"


# ============================================================================
# Read helpers (used inside and outside transactions)
# ============================================================================

async def fetch_order_details(
    db: Database,
    order_id: int,
    include_history: bool = False,
) -> Optional[Dict[str, Any]]:
    """Order row + items (each with a product summary) + payment method."""
    order = await db.orders.find_unique(where={"id": order_id})
    if order is None:
        return None

    items = await db.order_items.find_many(where={"order_id": order_id}, order_by={"id": "asc"})
    product_ids = sorted({i["product_id"] for i in items if i["product_id"] is not None})
    products: Dict[int, Dict[str, Any]] = {}
    if product_ids:
        result = await db.query("products").select(PRODUCT_SUMMARY_COLUMNS).in_("id", product_ids).execute()
        products = {p["id"]: p for p in result.raise_for_error().data}

    order["items"] = [dict(item, product=products.get(item["product_id"])) for item in items]
    order["payment_method"] = None
    if order.get("payment_method_id"):
        order["payment_method"] = await db.payment_methods.find_unique(
            where={"id": order["payment_method_id"]},
            select=["id", "name", "type", "account_info"],
        )
    if include_history:
        order["status_history"] = await db.order_status_history.find_many(
            where={"order_id": order_id}, order_by={"id": "asc"},
        )
    return order


def _day_bound(value: Union[date, datetime], end: bool) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.combine(value, time.max if end else time.min)


# ============================================================================
# Service
# ============================================================================

class OrderService:
    """Order lifecycle: create, delete, read."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        notifier: Optional[Notifier] = None,
        *,
        executor: Optional[TransactionExecutor] = None,
        order_number_factory: Optional[Callable[[], str]] = None,
        max_attempts: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.notifier = notifier or LoggingNotifier()
        self.executor = executor or TransactionExecutor(session_factory)
        self.order_number_factory = order_number_factory or generate_order_number
        self.max_attempts = max_attempts or settings.ORDER_NUMBER_MAX_ATTEMPTS

    # =========================================================================
    # Creation
    # =========================================================================

    async def create_order(self, payload: Union[OrderCreate, Mapping[str, Any]]) -> Dict[str, Any]:
        """
        Create an order from a cart payload.

        Raises OrderValidationError before any database access, business
        errors (ProductNotFoundError, ProductInactiveError,
        InsufficientStockError) with nothing committed, DataAccessError /
        TransactionTimeoutError for infrastructure failures.
        """
        data = payload if isinstance(payload, OrderCreate) else validate_order_payload(payload)

        for attempt in range(1, self.max_attempts + 1):
            result = await self.executor.run([partial(self._create_in_tx, data)])
            if result.success:
                break
            if isinstance(result.error, OrderNumberConflictError) and attempt < self.max_attempts:
                logger.warning(
                    "Order number %s collided, retrying (attempt %d/%d)",
                    result.error.order_number, attempt, self.max_attempts,
                )
                continue
            if getattr(result.error, "is_client_error", False):
                logger.warning("Order rejected for %s: %s", data.customer_email, result.error)
            result.unwrap()

        order = result.result
        logger.info(
            "Order %s created (id=%s, total=%s, items=%d)",
            order["order_number"], order["id"], order["total_amount"], len(order["items"]),
        )
        await self._notify_created(order)
        return order

    async def _create_in_tx(self, data: OrderCreate, tx: Database) -> Dict[str, Any]:
        # Phase 1: every lookup before any write
        requested: Dict[int, int] = {}
        for item in data.items:
            requested[item.product_id] = requested.get(item.product_id, 0) + item.quantity

        products: Dict[int, Dict[str, Any]] = {}
        for index, item in enumerate(data.items):
            if item.product_id in products:
                continue
            product = await tx.products.find_unique(
                where={"id": item.product_id},
                select=["id", "name", "price", "stock_quantity", "active"],
            )
            if product is None:
                raise ProductNotFoundError(item.product_id, index)
            if not product["active"]:
                raise ProductInactiveError(product["id"], product["name"])
            if product["stock_quantity"] < requested[item.product_id]:
                raise InsufficientStockError(
                    product["id"], product["name"],
                    product["stock_quantity"], requested[item.product_id],
                )
            products[item.product_id] = product

        if data.payment_method_id is not None and await tx.payment_methods.find_unique(
            where={"id": data.payment_method_id}, select=["id"],
        ) is None:
            raise PaymentMethodNotFoundError(data.payment_method_id)
        if data.user_id is not None and await tx.users.find_unique(where={"id": data.user_id}, select=["id"]) is None:
            raise UserNotFoundError(data.user_id)

        # Phase 2: price snapshot + guarded stock decrement, in item order
        total = Decimal("0")
        line_items: List[Dict[str, Any]] = []
        for item in data.items:
            product = products[item.product_id]
            unit_price = Decimal(str(product["price"]))
            subtotal = unit_price * item.quantity
            total += subtotal
            line_items.append({
                "product_id": product["id"],
                "product_name": product["name"],
                "unit_price": unit_price,
                "quantity": item.quantity,
                "subtotal": subtotal,
            })
            if await tx.products.decrement({"id": product["id"]}, "stock_quantity", item.quantity) is None:
                # drained by a concurrent order since phase 1
                current = await tx.products.find_unique(where={"id": product["id"]}, select=["stock_quantity"])
                available = current["stock_quantity"] if current else 0
                raise InsufficientStockError(product["id"], product["name"], available, item.quantity)

        order_number = await self._unused_order_number(tx)
        now = utcnow()
        inserted = await tx.query("orders").insert({
            "order_number": order_number,
            "user_id": data.user_id,
            "customer_name": data.customer_name,
            "customer_email": data.customer_email,
            "customer_phone": data.customer_phone,
            "delivery_address": data.delivery_address,
            "delivery_city": data.delivery_city,
            "delivery_state": data.delivery_state,
            "delivery_zip": data.delivery_zip,
            "delivery_date": data.delivery_date,
            "delivery_time_slot": data.delivery_time_slot,
            "delivery_notes": data.delivery_notes,
            "payment_method_id": data.payment_method_id,
            "status": OrderStatus.pending,
            "total_amount": total,
            "notes": data.notes,
            "status_updated_at": now,
        })
        if not inserted.success and isinstance(inserted.error, IntegrityError) \
                and "order_number" in str(inserted.error.orig):
            raise OrderNumberConflictError(order_number)
        order_id = inserted.raise_for_error().first["id"]

        await tx.order_items.create_many([dict(li, order_id=order_id) for li in line_items])
        await tx.order_status_history.create({
            "order_id": order_id,
            "old_status": None,
            "new_status": OrderStatus.pending,
            "notes": "Order created",
        })
        return await fetch_order_details(tx, order_id)

    async def _unused_order_number(self, tx: Database) -> str:
        number = self.order_number_factory()
        for _ in range(self.max_attempts - 1):
            if await tx.orders.find_unique(where={"order_number": number}, select=["id"]) is None:
                break
            number = self.order_number_factory()
        return number

    async def _notify_created(self, order: Dict[str, Any]) -> None:
        if not order.get("customer_email"):
            return
        try:
            await self.notifier.order_created(order)
        except Exception as e:
            logger.warning(
                "Failed to send order confirmation for order %s to %s: %s",
                order["id"], order["customer_email"], e,
            )

    # =========================================================================
    # Deletion
    # =========================================================================

    async def delete_order(self, order_id: int) -> Dict[str, Any]:
        """
        Delete a non-delivered order and give its stock back.

        Returns the deleted order summary and the per-product restoration.
        """
        result = await self.executor.run([partial(self._delete_in_tx, order_id)])
        if not result.success and getattr(result.error, "is_client_error", False):
            logger.warning("Order %s not deleted: %s", order_id, result.error)
        outcome = result.unwrap()
        logger.info(
            "Order %s deleted, stock restored for %d product(s)",
            outcome["deleted_order"]["order_number"], len(outcome["stock_restored"]),
        )
        return outcome

    async def _delete_in_tx(self, order_id: int, tx: Database) -> Dict[str, Any]:
        order = await tx.orders.find_unique(where={"id": order_id})
        if order is None:
            raise OrderNotFoundError(order_id)
        status = OrderStatus(order["status"])
        if status is OrderStatus.delivered:
            raise OrderNotDeletableError(order_id, status.value)

        items = await tx.order_items.find_many(where={"order_id": order_id}, order_by={"id": "asc"})
        restored: List[Dict[str, Any]] = []
        for item in items:
            if item["product_id"] is None:
                continue
            product = await tx.products.increment({"id": item["product_id"]}, "stock_quantity", item["quantity"])
            if product is None:
                continue
            restored.append({
                "product_id": product["id"],
                "product_name": product["name"],
                "quantity_restored": item["quantity"],
            })

        (await tx.query("order_items").delete({"order_id": order_id})).raise_for_error()
        await tx.orders.delete({"id": order_id})
        return {
            "deleted_order": {
                "id": order["id"],
                "order_number": order["order_number"],
                "customer_name": order["customer_name"],
                "status": status.value,
            },
            "stock_restored": restored,
        }

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_order(self, order_id: int) -> Dict[str, Any]:
        async with self.session_factory() as session:
            order = await fetch_order_details(Database(session, strict=True), order_id, include_history=True)
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    async def list_orders(
        self,
        status: Optional[str] = None,
        date_from: Optional[Union[date, datetime]] = None,
        date_to: Optional[Union[date, datetime]] = None,
        customer_email: Optional[str] = None,
        customer_name: Optional[str] = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
        page: int = 1,
        limit: int = 20,
    ) -> Dict[str, Any]:
        page = max(1, int(page))
        limit = min(100, max(1, int(limit)))
        if sort_by not in SORT_FIELDS:
            sort_by = "created_at"
        ascending = str(sort_order).lower() == "asc"
        offset = (page - 1) * limit

        async with self.session_factory() as session:
            db = Database(session, strict=True)
            qb = db.query("orders")
            if status:
                qb.eq("status", parse_status(status))
            if date_from:
                qb.gte("created_at", _day_bound(date_from, end=False))
            if date_to:
                qb.lte("created_at", _day_bound(date_to, end=True))
            if customer_email:
                qb.ilike("customer_email", f"%{customer_email.strip()}%")
            if customer_name:
                qb.ilike("customer_name", f"%{customer_name.strip()}%")
            qb.order(sort_by, ascending=ascending).order("id", ascending=ascending)
            result = (await qb.range(offset, offset + limit - 1).count().execute()).raise_for_error()
            orders = result.data

            if orders:
                items = await db.query("order_items").in_("order_id", [o["id"] for o in orders]) \
                    .order("id").execute()
                by_order: Dict[int, List[Dict[str, Any]]] = {}
                for item in items.raise_for_error().data:
                    by_order.setdefault(item["order_id"], []).append(item)
                for o in orders:
                    o["items"] = by_order.get(o["id"], [])

        total = result.count or 0
        total_pages = math.ceil(total / limit) if total else 0
        return {
            "orders": orders,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "total_pages": total_pages,
                "has_next_page": page < total_pages,
                "has_prev_page": page > 1,
            },
        }


__all__ = ["OrderService", "generate_order_number", "fetch_order_details"]
