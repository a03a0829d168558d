"""Real-time connection lifecycle.

Owns the single WebSocket of a session and everything around it:
- URL building (http -> ws, https -> wss, resume cursor as query params)
- Authentication challenge and heartbeat pings once the socket is open
- Reading frames one at a time and handing them to the MessageRouter
- Automatic reconnect with ReconnectBackoff until close() is called

State machine:
    DISCONNECTED --open()--> CONNECTING --socket open--> OPEN
    OPEN --socket closed--> DISCONNECTED (reconnect scheduled)
    any --close()--> CLOSING (terminal)
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
import time
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any, Protocol, runtime_checkable
from urllib.parse import urlencode

import websockets
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK

from .backoff import ReconnectBackoff
from .config import ConnectionConfig
from .errors import ConfigurationError, RequestCancelledError, SessionClosedError, TransportError
from .protocol.events import BroadcastEvent, ControlAction
from .protocol.frames import decode_frame, encode_frame
from .router import EventHandler, MessageRouter, SequenceCursor, Subscription

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    """Connection state machine."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"


class LifecycleHook(str, Enum):
    """Lifecycle notifications a caller can listen to.

    Listener signatures:
        CONNECTED()            first successful open
        RECONNECTED()          open after one or more failures
        CLOSED(failures: int)  socket closed; consecutive failure count
        ERROR(error: Exception)
    """

    CONNECTED = "connected"
    RECONNECTED = "reconnected"
    CLOSED = "closed"
    ERROR = "error"


@runtime_checkable
class WireConnection(Protocol):
    """The subset of a websockets client connection this module uses."""

    async def send(self, message: str) -> None: ...

    async def recv(self) -> str | bytes: ...

    async def close(self) -> None: ...


Connector = Callable[[str, dict[str, str]], Awaitable[WireConnection]]


async def websocket_connector(url: str, headers: dict[str, str]) -> WireConnection:
    """Open a socket with the websockets library.

    Protocol-level pings are disabled: the connection sends its own
    ``ping`` frames at ``heartbeat_interval``.
    """
    return await websockets.connect(url, additional_headers=headers, ping_interval=None)


def build_websocket_url(
    base_url: str,
    api_version: str,
    connection_id: str = "",
    sequence_number: int = 0,
) -> str:
    """Derive the socket URL from the HTTP(S) service root.

    Raises:
        ConfigurationError: If the scheme is neither http nor https
    """
    if base_url.startswith("http://"):
        scheme, rest = "ws://", base_url[len("http://") :]
    elif base_url.startswith("https://"):
        scheme, rest = "wss://", base_url[len("https://") :]
    else:
        raise ConfigurationError(f"Unknown protocol in base URL: {base_url!r}")

    query = urlencode({"connection_id": connection_id, "sequence_number": sequence_number})
    return f"{scheme}{rest.rstrip('/')}/api/{api_version}/websocket?{query}"


class RealtimeConnection:
    """One logical session over a reconnecting WebSocket.

    Usage:
        connection = RealtimeConnection(ConnectionConfig(token="..."))
        connection.on_event(BroadcastEvent.RECORDING_CLASSIFIED, handle)
        await connection.open()
        ...
        await connection.close()
    """

    def __init__(
        self,
        config: ConnectionConfig | None = None,
        *,
        router: MessageRouter | None = None,
        connector: Connector | None = None,
    ) -> None:
        self.config = config or ConnectionConfig()
        self.router = router or MessageRouter()
        self._connector = connector or websocket_connector
        self._backoff = ReconnectBackoff(
            base_delay=self.config.reconnect_delay,
            max_delay=self.config.max_reconnect_delay,
            threshold=self.config.reconnect_threshold,
        )
        self._state = ConnectionState.DISCONNECTED
        self._ws: WireConnection | None = None
        self._run_task: asyncio.Task[None] | None = None
        self._heartbeat_task: asyncio.Task[None] | None = None
        self._manually_closed = False
        self._closed = False
        self._wake = asyncio.Event()
        self._opened = asyncio.Event()
        self._listeners: dict[LifecycleHook, list[Callable[..., Any]]] = {
            hook: [] for hook in LifecycleHook
        }
        self.last_retry_delay: float | None = None

    # =========================================================================
    # State
    # =========================================================================

    @property
    def state(self) -> ConnectionState:
        """Current connection state."""
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state == ConnectionState.OPEN

    @property
    def is_closed(self) -> bool:
        """True once close() has been called."""
        return self._closed

    @property
    def cursor(self) -> SequenceCursor:
        return self.router.cursor

    @property
    def consecutive_failures(self) -> int:
        return self._backoff.failures

    @property
    def backoff(self) -> ReconnectBackoff:
        return self._backoff

    def build_url(self) -> str:
        """Socket URL for the next attempt, carrying the current resume cursor."""
        return build_websocket_url(
            self.config.base_url,
            self.config.api_version,
            connection_id=self.cursor.connection_id,
            sequence_number=self.cursor.resume_seq,
        )

    def set_token(self, token: str | None) -> None:
        """Replace the bearer token used from the next (re)connect on."""
        self.config.token = token

    # =========================================================================
    # Registration
    # =========================================================================

    def add_listener(self, hook: LifecycleHook, callback: Callable[..., Any]) -> Subscription:
        """Register a lifecycle listener. Listeners run in registration order."""
        listeners = self._listeners[hook]
        listeners.append(callback)

        def remove() -> None:
            if callback in listeners:
                listeners.remove(callback)

        return Subscription(remove)

    def on_event(self, name: str | BroadcastEvent, handler: EventHandler) -> Subscription:
        """Subscribe to a broadcast event (``"*"`` for all)."""
        return self.router.on_event(name, handler)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def open(self) -> None:
        """Start connecting in the background.

        Raises:
            ConfigurationError: If the base URL scheme is not http(s)
            SessionClosedError: If close() was already called
        """
        if self._closed:
            raise SessionClosedError("Connection already closed")

        self.build_url()

        if self._run_task is not None and not self._run_task.done():
            return

        self._manually_closed = False
        self._start()

    async def wait_until_open(self, timeout: float | None = None) -> None:
        """Wait until the socket is open.

        Raises:
            TimeoutError: If not open within ``timeout`` seconds
        """
        await asyncio.wait_for(self._opened.wait(), timeout=timeout)

    async def close(self) -> None:
        """Close the session for good.

        Pending requests fail with SessionClosedError, the heartbeat and
        reconnect loop stop, and no further reconnect is attempted.
        """
        if self._closed:
            return

        self._closed = True
        self._manually_closed = True
        self._state = ConnectionState.CLOSING
        self._opened.clear()

        self.router.fail_pending(SessionClosedError())

        heartbeat_task = self._heartbeat_task
        self._heartbeat_task = None
        run_task = self._run_task
        self._run_task = None

        ws = self._ws
        self._ws = None
        if ws is not None:
            await self._close_socket(ws)

        for task in (heartbeat_task, run_task):
            if task is None or task is asyncio.current_task():
                continue
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        logger.info("Real-time connection closed")

    def _start(self) -> None:
        self._run_task = asyncio.create_task(self._run(), name="theodor-realtime")

    async def _run(self) -> None:
        """Connect, read until the socket closes, back off, repeat."""
        while not self._manually_closed:
            await self._connect_once()

            if self._manually_closed or not self.config.auto_reconnect:
                break

            delay = self._backoff.next_delay
            self.last_retry_delay = delay
            if self._backoff.failures > self._backoff.threshold:
                logger.warning(
                    f"Server unreachable after {self._backoff.failures} attempts, "
                    f"retrying in {delay:g}s. Check the connection or the WebSocket port."
                )
            else:
                logger.info(f"Reconnecting in {delay:g}s (attempt {self._backoff.failures})")

            await self._sleep_until_retry(delay)

    async def _sleep_until_retry(self, delay: float) -> None:
        """Sleep for ``delay`` or until a send asks for a fresh attempt."""
        self._wake.clear()
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(self._wake.wait(), timeout=delay)

    async def _connect_once(self) -> None:
        """One connection attempt and, if it opens, its whole lifetime."""
        self._state = ConnectionState.CONNECTING
        url = self.build_url()
        headers = {"Authorization": f"Bearer {self.config.token}"} if self.config.token else {}

        if self._backoff.failures == 0:
            logger.info(f"Connecting to {url}")

        try:
            ws = await self._connector(url, headers)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if self._backoff.failures <= 1:
                logger.warning(f"Connection attempt failed: {e}")
            await self._notify(LifecycleHook.ERROR, e)
            await self._handle_transport_close()
            return

        self._ws = ws
        await self._handle_transport_open()
        error = await self._read_loop(ws)
        if self._ws is ws:
            self._ws = None

        if self._manually_closed:
            return

        if error is not None:
            await self._notify(LifecycleHook.ERROR, error)
        await self._handle_transport_close()

    async def _read_loop(self, ws: WireConnection) -> Exception | None:
        """Read frames until the socket closes. Returns the error, if any."""
        try:
            while True:
                raw = await ws.recv()
                frame = decode_frame(raw)
                logger.debug(f"Received frame: {frame}")
                await self.router.dispatch(frame)
        except ConnectionClosedOK:
            return None
        except ConnectionClosed as e:
            logger.warning(f"Connection lost: {e}")
            return e
        except Exception as e:
            logger.error(f"Read loop error: {e}")
            return e

    async def _handle_transport_open(self) -> None:
        reconnected = self._backoff.failures > 0
        self._state = ConnectionState.OPEN
        self._opened.set()

        if reconnected:
            logger.info("Real-time connection re-established")
        else:
            logger.info("Real-time connection established")

        if self.config.token:
            logger.debug("Sending authentication challenge")
            await self.send(ControlAction.AUTHENTICATION_CHALLENGE, {"token": self.config.token})

        self._start_heartbeat()

        await self._notify(LifecycleHook.RECONNECTED if reconnected else LifecycleHook.CONNECTED)
        self._backoff.reset()

    async def _handle_transport_close(self) -> None:
        self._stop_heartbeat()
        self._state = ConnectionState.DISCONNECTED
        self._opened.clear()

        failures = self._backoff.record_failure()
        if failures == 1:
            logger.info("Real-time connection closed by transport")

        self.router.fail_pending(RequestCancelledError("Connection closed before a reply arrived"))
        await self._notify(LifecycleHook.CLOSED, failures)

    def _request_connect(self) -> None:
        """Ask for a fresh connection attempt (used when a send finds no socket)."""
        if self._manually_closed:
            return
        if self._run_task is None:
            logger.debug("Connection was never opened, not connecting")
            return
        if self._run_task.done():
            self._start()
        else:
            self._wake.set()

    async def _close_socket(self, ws: WireConnection) -> None:
        try:
            await ws.close()
        except Exception as e:
            logger.debug(f"Error closing socket: {e}")

    async def _notify(self, hook: LifecycleHook, *args: Any) -> None:
        for callback in list(self._listeners[hook]):
            try:
                result = callback(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(f"Error in {hook.value} listener")

    # =========================================================================
    # Heartbeat
    # =========================================================================

    def _start_heartbeat(self) -> None:
        self._stop_heartbeat()
        self._heartbeat_task = asyncio.create_task(
            self._heartbeat_loop(), name="theodor-realtime-heartbeat"
        )

    def _stop_heartbeat(self) -> None:
        if self._heartbeat_task is not None:
            if self._heartbeat_task is not asyncio.current_task():
                self._heartbeat_task.cancel()
            self._heartbeat_task = None

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.heartbeat_interval)
            if self._state != ConnectionState.OPEN:
                return
            logger.debug("Sending heartbeat ping")
            await self.send(ControlAction.PING, {"timestamp": int(time.time() * 1000)})

    # =========================================================================
    # Sending
    # =========================================================================

    async def send(self, action: str | ControlAction, data: dict[str, Any] | None = None) -> bool:
        """Send a control frame without waiting for a reply.

        Never raises for connection problems: returns False when the frame
        was not delivered, after asking for a fresh connection attempt.
        """
        seq = self.cursor.next_outgoing()
        return await self._send_frame(action, data, seq)

    async def request(
        self,
        action: str | ControlAction,
        data: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> Any:
        """Send a control frame and wait for its correlated reply.

        Returns:
            The reply's ``data``

        Raises:
            RemoteError: If the reply carries an error
            TransportError: If the frame was not delivered or the socket dropped
            SessionClosedError: If the session is closed while waiting
            TimeoutError: If no reply arrives within ``timeout`` seconds
        """
        seq = self.cursor.next_outgoing()
        future = self.router.expect_reply(seq)

        try:
            if not await self._send_frame(action, data, seq):
                future.cancel()
                raise TransportError(f"{_action_name(action)} not delivered: connection is not open")
            return await asyncio.wait_for(future, timeout=timeout)
        except TimeoutError as e:
            raise TimeoutError(f"No reply to {_action_name(action)} (seq {seq}) within {timeout}s") from e
        finally:
            self.router.discard(seq)

    async def _send_frame(self, action: str | ControlAction, data: dict[str, Any] | None, seq: int) -> bool:
        name = _action_name(action)
        ws = self._ws
        if ws is None or self._state != ConnectionState.OPEN:
            logger.info(f"Not connected, skipping {name} (seq {seq})")
            self._request_connect()
            return False

        try:
            await ws.send(encode_frame(name, data, seq))
        except Exception as e:
            logger.warning(f"Error sending {name} (seq {seq}): {e}")
            # Closing makes the read loop exit, which schedules the reconnect
            await self._close_socket(ws)
            return False

        logger.debug(f"Sent {name} (seq {seq})")
        return True

    async def __aenter__(self) -> RealtimeConnection:
        await self.open()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()


def _action_name(action: str | ControlAction) -> str:
    return action.value if isinstance(action, ControlAction) else action
