# flower_shop/routers/orders.py
"""
Orders Router - thin HTTP layer over OrderService / OrderStatusService.

Every response uses the same envelope: {success, data?, message?, errors?}.
Errors are raised as ShopError subclasses and rendered by the app-level
exception handler.
"""
from __future__ import annotations
from datetime import date
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from flower_shop.database import get_session_factory
from flower_shop.models import validate_status_payload
from flower_shop.services.notifications import Notifier, build_notifier
from flower_shop.services.orders import OrderService
from flower_shop.services.status import OrderStatusService
from flower_shop.settings import settings

router = APIRouter(prefix="/orders", tags=["Orders"])


# ============================================================================
# Dependencies
# ============================================================================

def get_notifier() -> Notifier:
    return build_notifier(settings)


def get_order_service(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    notifier: Notifier = Depends(get_notifier),
) -> OrderService:
    return OrderService(session_factory, notifier)


def get_status_service(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    notifier: Notifier = Depends(get_notifier),
) -> OrderStatusService:
    return OrderStatusService(session_factory, notifier)


# ============================================================================
# Endpoints
# ============================================================================

@router.get("")
async def list_orders(
    status: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    customer_email: Optional[str] = None,
    customer_name: Optional[str] = None,
    sort_by: str = "created_at",
    sort_order: str = Query(default="desc", pattern="^(asc|desc)$"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1),
    service: OrderService = Depends(get_order_service),
):
    """List orders with filters, sorting and pagination (limit capped at 100)."""
    result = await service.list_orders(
        status=status,
        date_from=date_from,
        date_to=date_to,
        customer_email=customer_email,
        customer_name=customer_name,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        limit=limit,
    )
    return {"success": True, "data": result["orders"], "pagination": result["pagination"]}


@router.get("/{order_id}")
async def get_order(order_id: int, service: OrderService = Depends(get_order_service)):
    return {"success": True, "data": await service.get_order(order_id)}


@router.post("", status_code=201)
async def create_order(
    payload: Dict[str, Any] = Body(...),
    service: OrderService = Depends(get_order_service),
):
    """
    Create an order from a cart.

    The body is validated by the service so field errors come back as
    [{field, message, code}] rather than FastAPI's default 422 shape.
    """
    order = await service.create_order(payload)
    return {"success": True, "data": order, "message": "Order created successfully"}


@router.patch("/{order_id}/status")
async def update_order_status(
    order_id: int,
    payload: Dict[str, Any] = Body(...),
    service: OrderStatusService = Depends(get_status_service),
):
    update = validate_status_payload(payload)
    order = await service.update_status(order_id, update.status, update.notes, update.changed_by)
    return {"success": True, "data": order, "message": f"Order status updated to {update.status.value}"}


@router.delete("/{order_id}")
async def delete_order(order_id: int, service: OrderService = Depends(get_order_service)):
    outcome = await service.delete_order(order_id)
    return {"success": True, "data": outcome, "message": "Order deleted successfully"}
