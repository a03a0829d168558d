"""TheodorClient - REST calls, real-time events and prediction waits in one place.

Usage:
    async with TheodorClient(ClientConfig(token="...")) as client:
        client.on(BroadcastEvent.RECORDING_CREATED, print_event)
        result = await client.analyze_recording(
            "beat.wav", site="heart", wait_for_prediction=True
        )
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any

from .api import RecordingsAPI
from .config import ClientConfig
from .connection import Connector, LifecycleHook, RealtimeConnection
from .errors import ConfigurationError
from .predictions import PredictionTracker
from .protocol.events import BroadcastEvent, RecordingSite
from .router import EventHandler, Subscription

logger = logging.getLogger(__name__)


class TheodorClient:
    """Client for the Theodor analysis service.

    Without ``use_websocket`` (or without a token) prediction waits rely on
    polling alone.
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        *,
        connector: Connector | None = None,
        api: RecordingsAPI | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            config: Client settings (default: read from the environment)
            connector: Socket factory override, mostly for tests
            api: REST client override, mostly for tests
        """
        self.config = config or ClientConfig.from_env()
        self.api = api or RecordingsAPI(self.config)

        self.connection: RealtimeConnection | None = None
        if self.config.use_websocket:
            self.connection = RealtimeConnection(
                self.config.connection_config(), connector=connector
            )

        self.predictions = PredictionTracker(
            self.api.get_recording,
            poll_interval=self.config.poll_interval,
            default_timeout=self.config.prediction_timeout,
        )
        if self.connection is not None:
            self.predictions.attach(self.connection)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def connect(self) -> None:
        """Open the real-time connection (no-op without websocket or token)."""
        if self.connection is None:
            return
        if not self.config.token:
            logger.info("No token configured, real-time connection not started")
            return
        await self.connection.open()

    async def close(self) -> None:
        """Close the connection, fail outstanding waits and release HTTP resources."""
        cancelled = self.predictions.close()
        if cancelled:
            logger.info(f"Cancelled {cancelled} outstanding prediction wait(s)")
        if self.connection is not None:
            await self.connection.close()
        await self.api.aclose()

    async def __aenter__(self) -> TheodorClient:
        await self.connect()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    # =========================================================================
    # Events
    # =========================================================================

    def _require_connection(self) -> RealtimeConnection:
        if self.connection is None:
            raise ConfigurationError("Real-time events need use_websocket=True")
        return self.connection

    def on(self, event: str | BroadcastEvent, handler: EventHandler) -> Subscription:
        """Subscribe to a broadcast event (``"*"`` for every event)."""
        return self._require_connection().on_event(event, handler)

    def add_listener(self, hook: LifecycleHook, callback: Callable[..., Any]) -> Subscription:
        """Listen for connected / reconnected / closed / error."""
        return self._require_connection().add_listener(hook, callback)

    # =========================================================================
    # Authentication
    # =========================================================================

    def set_token(self, token: str) -> None:
        self.api.set_token(token)
        if self.connection is not None:
            self.connection.set_token(token)

    async def login(self, login_id: str, password: str) -> dict[str, Any]:
        """Log in and start the real-time connection with the new token."""
        data = await self.api.login(login_id, password)
        token = data.get("token")
        if token:
            self.set_token(token)
            await self.connect()
        return data

    # =========================================================================
    # Recordings
    # =========================================================================

    async def analyze_recording(
        self,
        file_path: str | Path,
        site: str | RecordingSite,
        exam_id: str | None = None,
        wait_for_prediction: bool = False,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Upload a file; optionally wait for its prediction."""
        recording = await self.api.analyze_recording(file_path, site, exam_id=exam_id)
        if not wait_for_prediction:
            return recording
        return await self.wait_for_prediction(recording["id"], timeout=timeout)

    async def analyze_base64(
        self,
        data: str,
        mime_type: str,
        size: int,
        site: str | RecordingSite,
        exam_id: str | None = None,
        enhanced: bool = False,
        wait_for_prediction: bool = False,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Submit base64 audio; optionally wait for its prediction."""
        recording = await self.api.analyze_base64(
            data, mime_type, size, site, exam_id=exam_id, enhanced=enhanced
        )
        if not wait_for_prediction:
            return recording
        return await self.wait_for_prediction(recording["id"], timeout=timeout)

    async def wait_for_prediction(
        self, recording_id: str | int, timeout: float | None = None
    ) -> dict[str, Any]:
        """Wait for a recording's classification (event, poll or timeout)."""
        return await self.predictions.wait_for(recording_id, timeout=timeout)

    async def get_recording(self, recording_id: str | int) -> dict[str, Any]:
        return await self.api.get_recording(recording_id)

    # =========================================================================
    # Exams
    # =========================================================================

    async def get_exams(self, **params: Any) -> dict[str, Any]:
        return await self.api.get_exams(**params)

    async def get_exam(self, exam_id: str) -> dict[str, Any]:
        return await self.api.get_exam(exam_id)

    async def create_exam(self, exam_data: dict[str, Any]) -> dict[str, Any]:
        return await self.api.create_exam(exam_data)
