# src/core/hub/__init__.py
"""
Ядро гео-хаба: реестр подписок, сессии, рассылка, интерфейс хранилища.
"""

from src.core.hub.registry import Subscription, SubscriptionRegistry
from src.core.hub.store import ProximityStore
from src.core.hub.session import ConnectionSession, SessionState
from src.core.hub.dispatcher import DeliveryStatus, DispatchReport, EventDispatcher

__all__ = [
    "Subscription",
    "SubscriptionRegistry",
    "ProximityStore",
    "ConnectionSession",
    "SessionState",
    "DeliveryStatus",
    "DispatchReport",
    "EventDispatcher",
]
