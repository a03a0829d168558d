"""Unit tests for TheodorClient wiring (REST + real-time + prediction waits)."""

from __future__ import annotations

import asyncio
from pathlib import Path

import httpx
import pytest

from theodor_sdk.api import RecordingsAPI
from theodor_sdk.client import TheodorClient
from theodor_sdk.config import ClientConfig
from theodor_sdk.errors import ConfigurationError, PredictionFailedError, SessionClosedError


def make_client(handler, fake_server=None, **overrides) -> TheodorClient:
    values = {
        "token": "tok",
        "base_url": "http://theodor.test",
        "poll_interval": 0.02,
        "reconnect_delay": 0.01,
    }
    values.update(overrides)
    config = ClientConfig(**values)
    api = RecordingsAPI(config, transport=httpx.MockTransport(handler))
    connector = fake_server.connect if fake_server is not None else None
    return TheodorClient(config, connector=connector, api=api)


class TestTheodorClient:
    """Tests for the client facade."""

    @pytest.mark.asyncio
    async def test_analyze_and_wait_settles_from_event(
        self, tmp_path: Path, fake_server, eventually
    ) -> None:
        """Upload then wait resolves from the classified broadcast."""
        audio = tmp_path / "beat.wav"
        audio.write_bytes(b"RIFF")

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                return httpx.Response(201, json={"id": "rec-1"})
            return httpx.Response(200, json={"id": "rec-1", "murmur": "pending"})

        client = make_client(handler, fake_server)
        await client.connect()
        await client.connection.wait_until_open(timeout=1.0)

        task = asyncio.create_task(
            client.analyze_recording(audio, "heart", wait_for_prediction=True, timeout=2.0)
        )
        await eventually(lambda: client.predictions.is_waiting("rec-1"))
        fake_server.latest.push(
            {
                "event": "audio_recording_classified",
                "data": {"audio_id": "rec-1", "murmur": "normal", "rhythm": "rhythmic"},
                "seq": 3,
            }
        )

        result = await task
        assert result["murmur"] == "normal"
        await client.close()

    @pytest.mark.asyncio
    async def test_failure_event_raises(self, fake_server, eventually) -> None:
        """A classification failure broadcast fails the wait."""
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"id": "rec-2", "murmur": "pending"})

        client = make_client(handler, fake_server)
        await client.connect()
        await client.connection.wait_until_open(timeout=1.0)

        task = asyncio.create_task(client.wait_for_prediction("rec-2", timeout=2.0))
        await eventually(lambda: client.predictions.is_waiting("rec-2"))
        fake_server.latest.push(
            {
                "event": "audio_recording_classification_failure",
                "data": {"id": "rec-2", "message": "Too noisy"},
            }
        )

        with pytest.raises(PredictionFailedError, match="Too noisy"):
            await task
        await client.close()

    @pytest.mark.asyncio
    async def test_poll_only_without_websocket(self) -> None:
        """Without a socket the wait is resolved by polling alone."""
        responses = iter(
            [
                httpx.Response(404, json={"message": "Not found"}),
                httpx.Response(200, json={"id": "rec-3", "murmur": "murmur"}),
            ]
        )

        def handler(request: httpx.Request) -> httpx.Response:
            return next(responses)

        client = make_client(handler, use_websocket=False)
        await client.connect()

        result = await client.wait_for_prediction("rec-3", timeout=1.0)

        assert result == {"id": "rec-3", "murmur": "murmur"}
        assert client.connection is None
        with pytest.raises(ConfigurationError):
            client.on("audio_recording_created", lambda n, d: None)
        await client.close()

    @pytest.mark.asyncio
    async def test_connect_without_token_is_skipped(self, fake_server) -> None:
        """No token means no real-time connection attempt."""
        client = make_client(lambda r: httpx.Response(200, json={}), fake_server, token=None)

        await client.connect()

        assert fake_server.urls == []
        await client.close()

    @pytest.mark.asyncio
    async def test_events_reach_subscribers(self, fake_server, eventually) -> None:
        """Broadcasts reach handlers registered on the client."""
        client = make_client(lambda r: httpx.Response(200, json={}), fake_server)
        received = []
        client.on("audio_recording_created", lambda name, data: received.append(data))

        async with client:
            await client.connection.wait_until_open(timeout=1.0)
            fake_server.latest.push({"event": "audio_recording_created", "data": {"id": "r9"}})
            await eventually(lambda: received)

        assert received == [{"id": "r9"}]
        assert client.connection.is_closed

    @pytest.mark.asyncio
    async def test_close_cancels_outstanding_waits(self, fake_server) -> None:
        """Closing the client fails waits still in flight."""
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"murmur": "pending"})

        client = make_client(handler, fake_server)
        await client.connect()

        task = asyncio.create_task(client.wait_for_prediction("rec-4", timeout=5.0))
        await asyncio.sleep(0.01)
        await client.close()

        with pytest.raises(SessionClosedError):
            await task

    @pytest.mark.asyncio
    async def test_set_token_updates_rest_and_socket(self, fake_server) -> None:
        """A new token is used by both REST and the socket."""
        client = make_client(lambda r: httpx.Response(200, json={}), fake_server, token=None)

        client.set_token("new-token")

        assert client.api.token == "new-token"
        assert client.connection.config.token == "new-token"
        await client.close()
