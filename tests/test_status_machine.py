import pytest

from flower_shop.db_models import OrderStatus
from flower_shop.errors import InvalidStatusTransitionError, OrderNotFoundError, OrderValidationError
from flower_shop.facade import Database
from flower_shop.services.status import (
    ALLOWED_TRANSITIONS, FORBIDDEN_TRANSITIONS, OrderStatusService, can_transition, check_transition, parse_status,
)

PIPELINE = {OrderStatus.pending, OrderStatus.confirmed, OrderStatus.preparing, OrderStatus.ready}


def test_only_two_kinds_of_move_are_forbidden():
    assert FORBIDDEN_TRANSITIONS[OrderStatus.delivered] == PIPELINE
    assert FORBIDDEN_TRANSITIONS[OrderStatus.cancelled] == {OrderStatus.delivered}
    for status in PIPELINE:
        assert FORBIDDEN_TRANSITIONS[status] == frozenset()


def test_every_status_has_an_edge_list():
    assert set(ALLOWED_TRANSITIONS) == set(OrderStatus)
    for current in OrderStatus:
        assert current in ALLOWED_TRANSITIONS[current]


@pytest.mark.parametrize("current,target,allowed", [
    ("pending", "delivered", True),
    ("ready", "pending", True),
    ("delivered", "cancelled", True),
    ("cancelled", "pending", True),
    ("delivered", "preparing", False),
    ("cancelled", "delivered", False),
])
def test_can_transition(current, target, allowed):
    assert can_transition(current, target) is allowed


def test_check_transition_reports_both_statuses():
    with pytest.raises(InvalidStatusTransitionError) as exc:
        check_transition(OrderStatus.delivered, "ready")
    assert exc.value.status_code == 409
    assert exc.value.details == {"current_status": "delivered", "requested_status": "ready"}
    assert "from delivered to ready" in exc.value.message


def test_parse_status_rejects_unknown_values():
    assert parse_status(" Confirmed ") is OrderStatus.confirmed
    with pytest.raises(OrderValidationError) as exc:
        parse_status("shipped")
    assert exc.value.errors[0]["field"] == "status"


async def test_pending_to_delivered_then_back_is_refused(order_service, status_service, order_payload, notifier,
                                                         session_factory):
    order = await order_service.create_order(order_payload(("rose", 1)))

    delivered = await status_service.update_status(order["id"], "delivered", changed_by="courier")
    assert delivered["status"] == OrderStatus.delivered
    assert notifier.status_changes[-1][1] == "pending"

    with pytest.raises(InvalidStatusTransitionError):
        await status_service.update_status(order["id"], "preparing")

    async with session_factory() as session:
        db = Database(session)
        row = await db.orders.find_unique(where={"id": order["id"]})
        history = await db.order_status_history.find_many(where={"order_id": order["id"]}, order_by={"id": "asc"})
    assert row["status"] == OrderStatus.delivered
    assert [(h["old_status"], h["new_status"]) for h in history] == [
        (None, OrderStatus.pending),
        (OrderStatus.pending, OrderStatus.delivered),
    ]
    assert history[-1]["changed_by"] == "courier"


async def test_same_status_updates_notes_without_notifying(order_service, status_service, order_payload, notifier):
    order = await order_service.create_order(order_payload(("tulip", 2)))

    updated = await status_service.update_status(order["id"], "pending", notes="  Call before delivery ")

    assert updated["status"] == OrderStatus.pending
    assert updated["notes"] == "Call before delivery"
    assert notifier.status_changes == []


async def test_status_notification_failure_is_swallowed(order_service, session_factory, order_payload,
                                                        failing_notifier):
    order = await order_service.create_order(order_payload(("rose", 1)))
    service = OrderStatusService(session_factory, failing_notifier)

    updated = await service.update_status(order["id"], "confirmed")

    assert updated["status"] == OrderStatus.confirmed


async def test_unknown_order(status_service, catalog):
    with pytest.raises(OrderNotFoundError):
        await status_service.update_status(12345, "confirmed")
