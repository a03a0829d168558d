"""Theodor SDK - client for the Theodor sound analysis service.

Exports:
- TheodorClient: REST calls, real-time events and prediction waits
- RealtimeConnection: the reconnecting WebSocket session on its own
- PredictionTracker: event/poll/deadline correlation for predictions
"""

from .api import RecordingsAPI
from .backoff import ReconnectBackoff
from .client import TheodorClient
from .config import SDK_VERSION, ClientConfig, ConnectionConfig
from .connection import ConnectionState, LifecycleHook, RealtimeConnection, build_websocket_url
from .errors import (
    APIError,
    ConfigurationError,
    DuplicateWaitError,
    PredictionFailedError,
    PredictionNotFoundError,
    PredictionTimeoutError,
    RemoteError,
    RequestCancelledError,
    SessionClosedError,
    TheodorError,
    TransportError,
)
from .models import JobOutcome, JobSnapshot
from .predictions import PredictionTracker
from .protocol.events import BroadcastEvent, ControlAction, RecordingSite
from .router import MessageRouter, SequenceCursor, Subscription

__version__ = SDK_VERSION

__all__ = [
    # Client
    "TheodorClient",
    "ClientConfig",
    "RecordingsAPI",
    # Real-time
    "RealtimeConnection",
    "ConnectionConfig",
    "ConnectionState",
    "LifecycleHook",
    "ReconnectBackoff",
    "MessageRouter",
    "SequenceCursor",
    "Subscription",
    "build_websocket_url",
    # Predictions
    "PredictionTracker",
    "JobOutcome",
    "JobSnapshot",
    # Protocol names
    "BroadcastEvent",
    "ControlAction",
    "RecordingSite",
    # Errors
    "TheodorError",
    "ConfigurationError",
    "TransportError",
    "RequestCancelledError",
    "RemoteError",
    "APIError",
    "PredictionFailedError",
    "PredictionTimeoutError",
    "PredictionNotFoundError",
    "DuplicateWaitError",
    "SessionClosedError",
]
