"""Message router for inbound frames.

Every decoded frame goes through ``MessageRouter.dispatch`` one at a time,
in arrival order:
- Replies settle the pending request registered under their ``seq_reply``
- Broadcast events advance the resume cursor, then reach subscribers
- Malformed frames are logged and dropped
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from .errors import RemoteError
from .protocol.events import BroadcastEvent
from .protocol.frames import EventFrame, InboundFrame, MalformedFrame, ReplyFrame

logger = logging.getLogger(__name__)

# Called with (event_name, payload). May return an awaitable.
EventHandler = Callable[[str, dict[str, Any]], Any]

WILDCARD = "*"


class Subscription:
    """Handle returned by a registration; ``unsubscribe()`` removes it."""

    def __init__(self, remove: Callable[[], None]) -> None:
        self._remove: Callable[[], None] | None = remove

    @property
    def active(self) -> bool:
        return self._remove is not None

    def unsubscribe(self) -> None:
        if self._remove is not None:
            self._remove()
            self._remove = None


@dataclass
class SequenceCursor:
    """Sequence bookkeeping for one session.

    ``outgoing_seq`` is the last value handed out; the first frame gets 1.
    ``resume_seq`` is sent on (re)connect so the server can replay events
    after the last one seen.
    """

    outgoing_seq: int = 0
    resume_seq: int = 0
    connection_id: str = ""

    def next_outgoing(self) -> int:
        self.outgoing_seq += 1
        return self.outgoing_seq


class MessageRouter:
    """Routes inbound frames to pending requests or event subscribers."""

    def __init__(self, cursor: SequenceCursor | None = None) -> None:
        self.cursor = cursor or SequenceCursor()
        self._pending: dict[int, asyncio.Future[Any]] = {}
        self._subscriptions: dict[str, list[EventHandler]] = {}

    # =========================================================================
    # Subscriptions
    # =========================================================================

    def on_event(self, name: str | BroadcastEvent, handler: EventHandler) -> Subscription:
        """Subscribe to one broadcast event name (``"*"`` for all of them)."""
        key = name.value if isinstance(name, BroadcastEvent) else name
        self._subscriptions.setdefault(key, []).append(handler)

        def remove() -> None:
            handlers = self._subscriptions.get(key)
            if handlers and handler in handlers:
                handlers.remove(handler)
                if not handlers:
                    del self._subscriptions[key]

        return Subscription(remove)

    def on_any(self, handler: EventHandler) -> Subscription:
        """Subscribe to every broadcast event."""
        return self.on_event(WILDCARD, handler)

    def subscriber_count(self, name: str | None = None) -> int:
        if name is None:
            return sum(len(h) for h in self._subscriptions.values())
        return len(self._subscriptions.get(name, []))

    # =========================================================================
    # Pending requests
    # =========================================================================

    def expect_reply(self, seq: int) -> asyncio.Future[Any]:
        """Register a pending request; the returned future gets the reply data."""
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[seq] = future
        return future

    def discard(self, seq: int) -> None:
        """Forget a pending request without settling it."""
        self._pending.pop(seq, None)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def fail_pending(self, exc: BaseException) -> int:
        """Fail every pending request with ``exc``. Returns how many were failed."""
        pending = list(self._pending.values())
        self._pending.clear()
        count = 0
        for future in pending:
            if not future.done():
                future.set_exception(exc)
                count += 1
        if count:
            logger.debug(f"Failed {count} pending request(s): {exc}")
        return count

    # =========================================================================
    # Dispatch
    # =========================================================================

    async def dispatch(self, frame: InboundFrame) -> None:
        """Route one decoded frame."""
        if isinstance(frame, ReplyFrame):
            self._dispatch_reply(frame)
        elif isinstance(frame, EventFrame):
            await self._dispatch_event(frame)
        elif isinstance(frame, MalformedFrame):
            logger.warning(f"Dropping malformed frame: {frame.reason} (frame: {frame.raw[:80]})")

    def _dispatch_reply(self, frame: ReplyFrame) -> None:
        future = self._pending.pop(frame.seq_reply, None)
        if future is None:
            logger.debug(f"No pending request for seq_reply={frame.seq_reply}, dropping")
            return
        if future.done():
            return

        if frame.is_error:
            logger.warning(f"Error reply for seq {frame.seq_reply}: {frame.error}")
            future.set_exception(RemoteError(frame.error_message(), data=frame.error))
        else:
            future.set_result(frame.data)

    async def _dispatch_event(self, frame: EventFrame) -> None:
        if frame.seq is not None:
            self.cursor.resume_seq = frame.seq + 1

        if frame.event == BroadcastEvent.HELLO.value:
            connection_id = frame.data.get("connection_id")
            if connection_id:
                self.cursor.connection_id = str(connection_id)

        # Copy so handlers can unsubscribe while being called
        handlers = list(self._subscriptions.get(frame.event, []))
        handlers += self._subscriptions.get(WILDCARD, [])

        if not handlers:
            logger.debug(f"No subscribers for event {frame.event}")

        for handler in handlers:
            try:
                result = handler(frame.event, frame.data)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(f"Error in subscriber for {frame.event}")
