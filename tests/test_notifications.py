import json
from decimal import Decimal
from types import SimpleNamespace

import httpx
import pytest

from flower_shop.db_models import OrderStatus
from flower_shop.services.notifications import HttpNotifier, LoggingNotifier, build_notifier

ORDER = {
    "id": 7,
    "order_number": "FL-20250214-1234-001",
    "customer_email": "jana@example.com",
    "status": OrderStatus.confirmed,
    "total_amount": Decimal("25.00"),
}


def test_build_notifier_picks_http_only_with_url():
    assert isinstance(build_notifier(SimpleNamespace(NOTIFICATION_URL="")), LoggingNotifier)
    http = build_notifier(SimpleNamespace(NOTIFICATION_URL="http://mail.local/events", NOTIFICATION_TIMEOUT_SECONDS=3))
    assert isinstance(http, HttpNotifier)
    assert http.timeout == 3


async def test_http_notifier_posts_json_events():
    seen = []

    def handler(request):
        seen.append(json.loads(request.content))
        return httpx.Response(202)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        notifier = HttpNotifier("http://mail.local/events", client=client)
        await notifier.order_created(ORDER)
        await notifier.order_status_changed(ORDER, "pending")

    assert seen[0]["type"] == "order_created"
    assert seen[0]["order"]["total_amount"] == 25.0
    assert seen[1] == {
        "type": "order_status",
        "order_id": 7,
        "order_number": "FL-20250214-1234-001",
        "status": "confirmed",
        "previous_status": "pending",
        "recipient": "jana@example.com",
    }


async def test_http_notifier_raises_on_error_status():
    transport = httpx.MockTransport(lambda request: httpx.Response(503))
    async with httpx.AsyncClient(transport=transport) as client:
        with pytest.raises(httpx.HTTPStatusError):
            await HttpNotifier("http://mail.local/events", client=client).order_created(ORDER)
