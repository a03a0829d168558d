"""Prediction correlation with fallback polling.

``PredictionTracker.wait_for(job_id)`` settles exactly once, from whichever
of these gets there first:
- Event: a classified / classification-failure broadcast for the recording
- Poll: ``fetch_state(job_id)`` every ``poll_interval`` returns a terminal state
- Deadline: ``timeout`` seconds pass

The winner cancels the deadline and the poll task. A poll result or event
that arrives after settlement is discarded. When the deadline wins and
polling only ever got 404s, the error is PredictionNotFoundError, a
PredictionTimeoutError subclass.
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol

import httpx
from pydantic import ValidationError

from .config import DEFAULT_POLL_INTERVAL, DEFAULT_PREDICTION_TIMEOUT
from .errors import (
    APIError,
    DuplicateWaitError,
    PredictionFailedError,
    PredictionNotFoundError,
    PredictionTimeoutError,
    SessionClosedError,
)
from .models import JobOutcome, JobSnapshot
from .protocol.events import BroadcastEvent
from .router import EventHandler, Subscription

logger = logging.getLogger(__name__)

FetchState = Callable[[str], Awaitable[dict[str, Any]]]


class EventSource(Protocol):
    """Anything events can be subscribed on (router, connection, client)."""

    def on_event(self, name: str | BroadcastEvent, handler: EventHandler) -> Subscription: ...


@dataclass
class PendingPrediction:
    """A caller waiting for one recording's prediction."""

    job_id: str
    future: asyncio.Future[dict[str, Any]]
    timeout: float
    deadline: asyncio.TimerHandle | None = None
    poll_task: asyncio.Task[None] | None = None
    observed: bool = False
    attempts: int = 0


def _is_not_found(error: Exception) -> bool:
    if isinstance(error, APIError):
        return error.is_not_found
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code == 404
    return False


class PredictionTracker:
    """Waits for predictions by recording id.

    Only one wait per recording id may be outstanding; a second concurrent
    wait_for() for the same id raises DuplicateWaitError.
    """

    def __init__(
        self,
        fetch_state: FetchState | None = None,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        default_timeout: float = DEFAULT_PREDICTION_TIMEOUT,
    ) -> None:
        """Initialize the tracker.

        Args:
            fetch_state: Async function returning the recording's current
                state; None disables the poll path
            poll_interval: Seconds between polls
            default_timeout: Deadline used when wait_for() gets no timeout
        """
        self._fetch_state = fetch_state
        self.poll_interval = poll_interval
        self.default_timeout = default_timeout
        self._pending: dict[str, PendingPrediction] = {}
        self._subscriptions: list[Subscription] = []
        self._closed = False

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def is_waiting(self, job_id: str | int) -> bool:
        return str(job_id) in self._pending

    # =========================================================================
    # Event path
    # =========================================================================

    def attach(self, source: EventSource) -> None:
        """Listen for classification events on ``source``."""
        for event in (
            BroadcastEvent.RECORDING_CLASSIFIED,
            BroadcastEvent.RECORDING_CLASSIFICATION_FAILURE,
        ):
            self._subscriptions.append(source.on_event(event, self.handle_event))

    def detach(self) -> None:
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions.clear()

    def handle_event(self, name: str, data: dict[str, Any]) -> bool:
        """Settle the matching waiter from a broadcast event.

        Returns:
            True if a waiter was settled
        """
        job_id = data.get("audio_id") or data.get("id")
        if job_id is None:
            return False
        key = str(job_id)

        if name == BroadcastEvent.RECORDING_CLASSIFIED.value:
            logger.debug(f"Recording {key} classified")
            return self._settle(key, result=data)

        if name == BroadcastEvent.RECORDING_CLASSIFICATION_FAILURE.value:
            logger.debug(f"Recording {key} classification failed")
            error = PredictionFailedError(key, data.get("message") or "Unknown error", data=data)
            return self._settle(key, error=error)

        return False

    # =========================================================================
    # Waiting
    # =========================================================================

    async def wait_for(self, job_id: str | int, timeout: float | None = None) -> dict[str, Any]:
        """Wait for the prediction of one recording.

        Args:
            job_id: Recording id
            timeout: Seconds before giving up (default: ``default_timeout``)

        Returns:
            The classified recording payload (from the event or the poll)

        Raises:
            DuplicateWaitError: If a wait for this id is already outstanding
            PredictionFailedError: If classification failed
            PredictionTimeoutError: If nothing terminal arrived in time
            PredictionNotFoundError: If, by the deadline, polling never saw
                the recording (a PredictionTimeoutError subclass)
            SessionClosedError: If the tracker is closed while waiting
            APIError: If a poll fails with anything but 404
        """
        if self._closed:
            raise SessionClosedError()

        key = str(job_id)
        if key in self._pending:
            raise DuplicateWaitError(key)

        timeout = self.default_timeout if timeout is None else timeout
        loop = asyncio.get_running_loop()
        pending = PendingPrediction(job_id=key, future=loop.create_future(), timeout=timeout)
        self._pending[key] = pending

        pending.deadline = loop.call_later(timeout, self._expire, key)
        if self._fetch_state is not None:
            max_attempts = max(1, math.floor(round(timeout / self.poll_interval, 9)))
            pending.poll_task = asyncio.create_task(
                self._poll(pending, self._fetch_state, max_attempts), name=f"theodor-poll-{key}"
            )

        logger.debug(f"Waiting for prediction on recording {key} (timeout {timeout:g}s)")

        try:
            return await pending.future
        finally:
            # Covers callers that cancel the wait itself
            if self._pending.get(key) is pending:
                del self._pending[key]
            self._cancel_timers(pending)

    def cancel_all(self, reason: str = "Session closed") -> int:
        """Settle every outstanding wait with SessionClosedError.

        Returns:
            Number of waits settled
        """
        count = 0
        for key in list(self._pending):
            if self._settle(key, error=SessionClosedError(reason)):
                count += 1
        return count

    def close(self) -> int:
        """Refuse new waits, settle outstanding ones, drop event subscriptions."""
        self._closed = True
        self.detach()
        return self.cancel_all()

    def _expire(self, key: str) -> None:
        pending = self._pending.get(key)
        if pending is None:
            return

        error: PredictionTimeoutError
        if pending.attempts and not pending.observed:
            logger.warning(f"Recording {key} never became visible before the deadline")
            error = PredictionNotFoundError(key, pending.attempts, pending.timeout)
        else:
            logger.warning(f"Prediction timeout for recording {key}")
            error = PredictionTimeoutError(key, pending.timeout)
        self._settle(key, error=error)

    def _settle(
        self,
        key: str,
        *,
        result: dict[str, Any] | None = None,
        error: BaseException | None = None,
    ) -> bool:
        pending = self._pending.get(key)
        if pending is None or pending.future.done():
            return False

        del self._pending[key]
        self._cancel_timers(pending)

        if error is not None:
            pending.future.set_exception(error)
        else:
            pending.future.set_result(result or {})
        return True

    def _cancel_timers(self, pending: PendingPrediction) -> None:
        if pending.deadline is not None:
            pending.deadline.cancel()
        task = pending.poll_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    # =========================================================================
    # Poll path
    # =========================================================================

    async def _poll(
        self, pending: PendingPrediction, fetch_state: FetchState, max_attempts: int
    ) -> None:
        """Poll until terminal, a hard error, or attempts run out.

        Each attempt is followed by a full interval, so the attempts span the
        whole timeout. Running out settles nothing: the event path and the
        deadline stay armed.
        """
        key = pending.job_id

        for attempt in range(1, max_attempts + 1):
            if pending.future.done():
                return

            try:
                raw = await fetch_state(key)
                snapshot = JobSnapshot.model_validate(raw)
            except ValidationError as e:
                self._settle(key, error=e)
                return
            except Exception as e:
                if not _is_not_found(e):
                    logger.warning(f"Polling recording {key} failed: {e}")
                    self._settle(key, error=e)
                    return
                logger.debug(f"Recording {key} not visible yet (attempt {attempt}/{max_attempts})")
            else:
                pending.observed = True
                outcome = snapshot.outcome()
                if outcome == JobOutcome.SUCCEEDED:
                    self._settle(key, result=raw)
                    return
                if outcome == JobOutcome.FAILED:
                    error = PredictionFailedError(key, snapshot.failure_message(), data=raw)
                    self._settle(key, error=error)
                    return

            pending.attempts = attempt
            await asyncio.sleep(self.poll_interval)

        logger.debug(f"Polling for recording {key} exhausted, waiting for event or deadline")
