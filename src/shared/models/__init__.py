# src/shared/models/__init__.py
"""
Pydantic-модели вайбов и сообщений WebSocket протокола.
"""

from src.shared.models.vibe import ArData, ArPosition, GeoPoint, Vibe, VibeContent
from src.shared.models.messages import (
    JoinRequest,
    PublishRequest,
    UpdateRequest,
    RawLocation,
    parse_client_message,
    SnapshotMessage,
    CreatedMessage,
    UpdatedMessage,
    ErrorMessage,
    event_message,
)

__all__ = [
    "ArData",
    "ArPosition",
    "GeoPoint",
    "Vibe",
    "VibeContent",
    "JoinRequest",
    "PublishRequest",
    "UpdateRequest",
    "RawLocation",
    "parse_client_message",
    "SnapshotMessage",
    "CreatedMessage",
    "UpdatedMessage",
    "ErrorMessage",
    "event_message",
]
