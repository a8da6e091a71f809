# flower_shop/services/status.py
"""
Order status state machine.

Allowed moves are listed explicitly. Only two kinds of move are refused:
a delivered order cannot go back into the pipeline, and a cancelled order
cannot be marked delivered. Moving to the current status is allowed and
only updates notes.
"""
from __future__ import annotations
from datetime import datetime, timezone
from functools import partial
from typing import Any, Dict, FrozenSet, Optional, Union
import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from flower_shop.db_models import OrderStatus
from flower_shop.errors import InvalidStatusTransitionError, OrderNotFoundError, OrderValidationError
from flower_shop.facade import Database
from flower_shop.services.notifications import LoggingNotifier, Notifier
from flower_shop.transactions import TransactionExecutor

logger = logging.getLogger(__name__)

_ALL = frozenset(OrderStatus)

ALLOWED_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.pending: _ALL,
    OrderStatus.confirmed: _ALL,
    OrderStatus.preparing: _ALL,
    OrderStatus.ready: _ALL,
    OrderStatus.delivered: frozenset({OrderStatus.delivered, OrderStatus.cancelled}),
    OrderStatus.cancelled: _ALL - {OrderStatus.delivered},
}

FORBIDDEN_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    current: _ALL - allowed for current, allowed in ALLOWED_TRANSITIONS.items()
}


def parse_status(value: Union[str, OrderStatus]) -> OrderStatus:
    if isinstance(value, OrderStatus):
        return value
    try:
        return OrderStatus(str(value).strip().lower())
    except ValueError:
        allowed = ", ".join(s.value for s in OrderStatus)
        raise OrderValidationError([{
            "field": "status",
            "message": f"Invalid status. Must be one of: {allowed}",
            "code": "INVALID_VALUE",
        }]) from None


def can_transition(current: Union[str, OrderStatus], target: Union[str, OrderStatus]) -> bool:
    return parse_status(target) in ALLOWED_TRANSITIONS[parse_status(current)]


def check_transition(current: Union[str, OrderStatus], target: Union[str, OrderStatus]) -> OrderStatus:
    """Return the parsed target status or raise InvalidStatusTransitionError."""
    current, target = parse_status(current), parse_status(target)
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidStatusTransitionError(current.value, target.value)
    return target


class OrderStatusService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        notifier: Optional[Notifier] = None,
        executor: Optional[TransactionExecutor] = None,
    ):
        self.notifier = notifier or LoggingNotifier()
        self.executor = executor or TransactionExecutor(session_factory)

    async def update_status(
        self,
        order_id: int,
        status: Union[str, OrderStatus],
        notes: Optional[str] = None,
        changed_by: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Move an order to `status`, recording the change in its history.

        Raises OrderNotFoundError (404) or InvalidStatusTransitionError (409)
        with nothing written.
        """
        target = parse_status(status)
        result = await self.executor.run([partial(self._update_in_tx, order_id, target, notes, changed_by)])
        if not result.success and getattr(result.error, "is_client_error", False):
            logger.warning("Status update for order %s refused: %s", order_id, result.error)
        previous, order = result.unwrap()

        if previous is target:
            logger.info("Order %s status unchanged (%s), notes updated", order["order_number"], target.value)
            return order

        logger.info("Order %s status %s -> %s", order["order_number"], previous.value, target.value)
        if order.get("customer_email"):
            try:
                await self.notifier.order_status_changed(order, previous.value)
            except Exception as e:
                logger.warning(
                    "Failed to send status update for order %s to %s: %s",
                    order["id"], order["customer_email"], e,
                )
        return order

    async def _update_in_tx(
        self,
        order_id: int,
        target: OrderStatus,
        notes: Optional[str],
        changed_by: Optional[str],
        tx: Database,
    ):
        # imported here: orders.py imports parse_status from this module
        from flower_shop.services.orders import fetch_order_details

        order = await tx.orders.find_unique(where={"id": order_id}, select=["id", "status"])
        if order is None:
            raise OrderNotFoundError(order_id)
        previous = OrderStatus(order["status"])
        check_transition(previous, target)

        changes: Dict[str, Any] = {"status": target, "status_updated_at": datetime.now(timezone.utc)}
        if notes is not None:
            changes["notes"] = notes.strip() or None
        await tx.orders.update({"id": order_id}, changes)
        await tx.order_status_history.create({
            "order_id": order_id,
            "old_status": previous,
            "new_status": target,
            "notes": notes.strip() if notes and notes.strip() else None,
            "changed_by": changed_by,
        })
        return previous, await fetch_order_details(tx, order_id)
