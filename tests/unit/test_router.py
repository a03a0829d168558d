"""Unit tests for MessageRouter.

Tests frame routing:
- Replies settle pending requests by seq_reply
- Events advance the resume cursor and reach subscribers
- Malformed frames are dropped
"""

from __future__ import annotations

import asyncio

import pytest

from theodor_sdk.errors import RemoteError, SessionClosedError
from theodor_sdk.protocol import BroadcastEvent, decode_frame
from theodor_sdk.router import MessageRouter, SequenceCursor

# =============================================================================
# Replies
# =============================================================================


class TestReplies:
    """Tests for reply correlation."""

    @pytest.mark.asyncio
    async def test_reply_settles_pending_request(self) -> None:
        """A reply resolves the request registered under its seq."""
        router = MessageRouter()
        future = router.expect_reply(5)

        await router.dispatch(decode_frame('{"seq_reply": 5, "data": {"ok": true}}'))

        assert future.result() == {"ok": True}
        assert router.pending_count == 0

    @pytest.mark.asyncio
    async def test_error_reply_raises_remote_error(self) -> None:
        """An error reply fails its request with RemoteError."""
        router = MessageRouter()
        future = router.expect_reply(2)

        await router.dispatch(decode_frame('{"seq_reply": 2, "error": {"message": "Denied"}}'))

        with pytest.raises(RemoteError, match="Denied"):
            future.result()

    @pytest.mark.asyncio
    async def test_unmatched_reply_is_dropped(self) -> None:
        """A reply nobody waits for changes nothing."""
        router = MessageRouter()
        future = router.expect_reply(1)

        await router.dispatch(decode_frame('{"seq_reply": 99, "data": {}}'))

        assert not future.done()
        assert router.pending_count == 1

    @pytest.mark.asyncio
    async def test_fail_pending(self) -> None:
        """fail_pending fails every outstanding request."""
        router = MessageRouter()
        first = router.expect_reply(1)
        second = router.expect_reply(2)

        assert router.fail_pending(SessionClosedError()) == 2

        for future in (first, second):
            with pytest.raises(SessionClosedError):
                future.result()
        assert router.pending_count == 0

    @pytest.mark.asyncio
    async def test_discard_forgets_request(self) -> None:
        """Discarding a request is idempotent."""
        router = MessageRouter()
        router.expect_reply(3)

        router.discard(3)
        router.discard(3)

        assert router.pending_count == 0


# =============================================================================
# Events
# =============================================================================


class TestEvents:
    """Tests for broadcast event dispatch."""

    @pytest.mark.asyncio
    async def test_event_reaches_subscriber(self) -> None:
        """Subscribers get the event name and payload."""
        router = MessageRouter()
        received = []
        router.on_event(BroadcastEvent.RECORDING_CREATED, lambda n, d: received.append((n, d)))

        await router.dispatch(
            decode_frame('{"event": "audio_recording_created", "data": {"id": "r1"}}')
        )

        assert received == [("audio_recording_created", {"id": "r1"})]

    @pytest.mark.asyncio
    async def test_async_subscriber_is_awaited(self) -> None:
        """Coroutine subscribers are awaited."""
        router = MessageRouter()
        received = []

        async def handler(name: str, data: dict) -> None:
            await asyncio.sleep(0)
            received.append(name)

        router.on_event("status_change", handler)
        await router.dispatch(decode_frame('{"event": "status_change", "data": {}}'))

        assert received == ["status_change"]

    @pytest.mark.asyncio
    async def test_wildcard_runs_after_named(self) -> None:
        """Named subscribers run before wildcard ones."""
        router = MessageRouter()
        calls = []
        router.on_any(lambda n, d: calls.append("any"))
        router.on_event("status_change", lambda n, d: calls.append("named"))

        await router.dispatch(decode_frame('{"event": "status_change", "data": {}}'))

        assert calls == ["named", "any"]

    @pytest.mark.asyncio
    async def test_event_advances_resume_cursor(self) -> None:
        """The cursor points one past the last server seq seen."""
        cursor = SequenceCursor()
        router = MessageRouter(cursor)

        await router.dispatch(decode_frame('{"event": "status_change", "data": {}, "seq": 41}'))

        assert cursor.resume_seq == 42

    @pytest.mark.asyncio
    async def test_event_without_seq_keeps_cursor(self) -> None:
        """Events without a seq leave the resume cursor alone."""
        router = MessageRouter()
        router.cursor.resume_seq = 10

        await router.dispatch(decode_frame('{"event": "status_change", "data": {}}'))

        assert router.cursor.resume_seq == 10

    @pytest.mark.asyncio
    async def test_hello_records_connection_id(self) -> None:
        """The hello event sets the connection id."""
        router = MessageRouter()

        await router.dispatch(
            decode_frame('{"event": "hello", "data": {"connection_id": "abc"}, "seq": 0}')
        )

        assert router.cursor.connection_id == "abc"
        assert router.cursor.resume_seq == 1

    @pytest.mark.asyncio
    async def test_unsubscribe(self) -> None:
        """Unsubscribing stops delivery and can be repeated."""
        router = MessageRouter()
        received = []
        subscription = router.on_event("status_change", lambda n, d: received.append(n))

        subscription.unsubscribe()
        subscription.unsubscribe()
        await router.dispatch(decode_frame('{"event": "status_change", "data": {}}'))

        assert received == []
        assert not subscription.active
        assert router.subscriber_count() == 0

    @pytest.mark.asyncio
    async def test_failing_subscriber_does_not_stop_others(self) -> None:
        """A raising subscriber does not block the others."""
        router = MessageRouter()
        received = []

        def broken(name: str, data: dict) -> None:
            raise RuntimeError("boom")

        router.on_event("status_change", broken)
        router.on_event("status_change", lambda n, d: received.append(n))

        await router.dispatch(decode_frame('{"event": "status_change", "data": {}}'))

        assert received == ["status_change"]

    @pytest.mark.asyncio
    async def test_malformed_frame_is_dropped(self) -> None:
        """Malformed frames reach no subscriber or request."""
        router = MessageRouter()
        received = []
        router.on_any(lambda n, d: received.append(n))
        future = router.expect_reply(1)

        await router.dispatch(decode_frame("garbage"))

        assert received == []
        assert not future.done()


class TestSequenceCursor:
    """Tests for outgoing sequence numbers."""

    def test_outgoing_starts_at_one_and_increases(self) -> None:
        """Outgoing seqs start at 1 and count up."""
        cursor = SequenceCursor()

        assert [cursor.next_outgoing() for _ in range(3)] == [1, 2, 3]
