# flower_shop/services/__init__.py
"""
Business logic services for the flower shop order engine.
"""
from flower_shop.services.notifications import HttpNotifier, LoggingNotifier, Notifier, build_notifier
from flower_shop.services.orders import OrderService
from flower_shop.services.status import OrderStatusService

__all__ = [
    "HttpNotifier",
    "LoggingNotifier",
    "Notifier",
    "build_notifier",
    "OrderService",
    "OrderStatusService",
]
