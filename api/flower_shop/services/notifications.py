# flower_shop/services/notifications.py
"""
Outbound order notifications (confirmation and status-change messages).

The order services await these calls but never let a failure change the
outcome of the order operation.
"""
from __future__ import annotations
from typing import Any, Dict, Optional, Protocol
import logging

import httpx
from fastapi.encoders import jsonable_encoder

logger = logging.getLogger(__name__)


def _value(status: Any) -> Any:
    return getattr(status, "value", status)


class Notifier(Protocol):
    async def order_created(self, order: Dict[str, Any]) -> None: ...

    async def order_status_changed(self, order: Dict[str, Any], previous_status: str) -> None: ...


class LoggingNotifier:
    """Default notifier: records what would have been sent."""

    async def order_created(self, order: Dict[str, Any]) -> None:
        logger.info(
            "[EMAIL] To: %s, Subject: Order %s confirmed, Total: %s",
            order.get("customer_email"), order.get("order_number"), order.get("total_amount"),
        )

    async def order_status_changed(self, order: Dict[str, Any], previous_status: str) -> None:
        logger.info(
            "[EMAIL] To: %s, Subject: Order %s status update, %s -> %s",
            order.get("customer_email"), order.get("order_number"), previous_status, _value(order.get("status")),
        )


class HttpNotifier:
    """POSTs order events as JSON to a notification service."""

    def __init__(self, url: str, timeout: float = 10.0, client: Optional[httpx.AsyncClient] = None):
        self.url = url
        self.timeout = timeout
        self._client = client

    async def _post(self, payload: Dict[str, Any]) -> None:
        body = jsonable_encoder(payload)
        if self._client is not None:
            response = await self._client.post(self.url, json=body, timeout=self.timeout)
            response.raise_for_status()
            return
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(self.url, json=body)
            response.raise_for_status()

    async def order_created(self, order: Dict[str, Any]) -> None:
        await self._post({
            "type": "order_created",
            "order_id": order.get("id"),
            "order_number": order.get("order_number"),
            "recipient": order.get("customer_email"),
            "order": order,
        })

    async def order_status_changed(self, order: Dict[str, Any], previous_status: str) -> None:
        await self._post({
            "type": "order_status",
            "order_id": order.get("id"),
            "order_number": order.get("order_number"),
            "status": order.get("status"),
            "previous_status": previous_status,
            "recipient": order.get("customer_email"),
        })


def build_notifier(settings) -> Notifier:
    if settings.NOTIFICATION_URL:
        return HttpNotifier(settings.NOTIFICATION_URL, timeout=settings.NOTIFICATION_TIMEOUT_SECONDS)
    return LoggingNotifier()
