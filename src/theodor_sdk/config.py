"""Client configuration.

Values come from constructor arguments, falling back to the environment:
- THEODOR_API_KEY: bearer token for REST and the real-time connection
- THEODOR_BASE_URL: service root (default https://theodor.ai)
- THEODOR_API_VERSION: API version path segment (default v4)
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any

from .backoff import DEFAULT_BASE_DELAY, DEFAULT_FAILURE_THRESHOLD, DEFAULT_MAX_DELAY

SDK_VERSION = "0.1.0"

DEFAULT_BASE_URL = "https://theodor.ai"
DEFAULT_API_VERSION = "v4"
DEFAULT_HEARTBEAT_INTERVAL = 30.0
DEFAULT_REQUEST_TIMEOUT = 30.0
DEFAULT_POLL_INTERVAL = 2.0
DEFAULT_PREDICTION_TIMEOUT = 120.0

ENV_API_KEY = "THEODOR_API_KEY"
ENV_BASE_URL = "THEODOR_BASE_URL"
ENV_API_VERSION = "THEODOR_API_VERSION"


@dataclass
class ConnectionConfig:
    """Settings for the real-time connection."""

    base_url: str = DEFAULT_BASE_URL
    token: str | None = None
    api_version: str = DEFAULT_API_VERSION

    heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL

    # Reconnection
    auto_reconnect: bool = True
    reconnect_delay: float = DEFAULT_BASE_DELAY
    max_reconnect_delay: float = DEFAULT_MAX_DELAY
    reconnect_threshold: int = DEFAULT_FAILURE_THRESHOLD


@dataclass
class ClientConfig:
    """Settings for TheodorClient (REST + real-time + prediction waits)."""

    token: str | None = None
    base_url: str = DEFAULT_BASE_URL
    api_version: str = DEFAULT_API_VERSION
    use_websocket: bool = True

    # REST
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT

    # Prediction waits
    poll_interval: float = DEFAULT_POLL_INTERVAL
    prediction_timeout: float = DEFAULT_PREDICTION_TIMEOUT

    # Real-time connection
    heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL
    auto_reconnect: bool = True
    reconnect_delay: float = DEFAULT_BASE_DELAY
    max_reconnect_delay: float = DEFAULT_MAX_DELAY
    reconnect_threshold: int = DEFAULT_FAILURE_THRESHOLD

    @property
    def api_url(self) -> str:
        """Root of the versioned REST API."""
        return f"{self.base_url.rstrip('/')}/api/{self.api_version}"

    @classmethod
    def from_env(cls, **overrides: Any) -> ClientConfig:
        """Build a config from the environment; explicit non-None overrides win."""
        values: dict[str, Any] = {
            "token": os.getenv(ENV_API_KEY) or None,
            "base_url": os.getenv(ENV_BASE_URL) or DEFAULT_BASE_URL,
            "api_version": os.getenv(ENV_API_VERSION) or DEFAULT_API_VERSION,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def connection_config(self) -> ConnectionConfig:
        return ConnectionConfig(
            base_url=self.base_url,
            token=self.token,
            api_version=self.api_version,
            heartbeat_interval=self.heartbeat_interval,
            auto_reconnect=self.auto_reconnect,
            reconnect_delay=self.reconnect_delay,
            max_reconnect_delay=self.max_reconnect_delay,
            reconnect_threshold=self.reconnect_threshold,
        )
