"""Theodor command line client.

Usage:
    theodor listen                           # Print broadcast events as JSON lines
    theodor listen -e audio_recording_classified
    theodor analyze beat.wav --site heart    # Upload a recording
    theodor analyze beat.wav --site heart --wait --timeout 60
    theodor recording <id>                   # Show a recording
    theodor wait <id>                        # Wait for a recording's prediction
    theodor exams --page 0 --page-size 20    # List exams

The token comes from --token or THEODOR_API_KEY.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import Any

import click

from .client import TheodorClient
from .config import ENV_API_KEY, ENV_API_VERSION, ENV_BASE_URL, ClientConfig
from .connection import LifecycleHook
from .errors import TheodorError
from .protocol.events import RecordingSite
from .router import WILDCARD


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, ensure_ascii=False, default=str))


def _run(coro: Any) -> Any:
    """Run a coroutine, turning SDK errors into a non-zero exit."""
    try:
        return asyncio.run(coro)
    except TheodorError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    except KeyboardInterrupt:
        click.echo("\nShutting down", err=True)
        sys.exit(130)


@click.group()
@click.option("--base-url", envvar=ENV_BASE_URL, default=None, help="Service root URL")
@click.option("--token", envvar=ENV_API_KEY, default=None, help="API token")
@click.option("--api-version", envvar=ENV_API_VERSION, default=None, help="API version segment")
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(
    ctx: click.Context,
    base_url: str | None,
    token: str | None,
    api_version: str | None,
    debug: bool,
) -> None:
    """Theodor - heart, lung and abdomen sound analysis."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    ctx.obj = ClientConfig.from_env(base_url=base_url, token=token, api_version=api_version)


@main.command()
@click.option("--event", "-e", "events", multiple=True, help="Event name to show (repeatable)")
@click.pass_obj
def listen(config: ClientConfig, events: tuple[str, ...]) -> None:
    """Print broadcast events until interrupted."""
    if not config.token:
        raise click.UsageError(f"A token is required (--token or {ENV_API_KEY})")

    async def run() -> None:
        async with TheodorClient(config) as client:

            def print_event(name: str, data: dict[str, Any]) -> None:
                click.echo(json.dumps({"event": name, "data": data}, default=str))

            for name in events or (WILDCARD,):
                client.on(name, print_event)

            client.add_listener(LifecycleHook.CONNECTED, lambda: click.echo("Connected", err=True))
            client.add_listener(
                LifecycleHook.RECONNECTED, lambda: click.echo("Reconnected", err=True)
            )
            client.add_listener(
                LifecycleHook.CLOSED,
                lambda failures: click.echo(f"Disconnected ({failures})", err=True),
            )

            click.echo("Listening, press Ctrl+C to stop", err=True)
            await asyncio.Event().wait()

    _run(run())


@main.command()
@click.argument("file_path", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--site",
    required=True,
    type=click.Choice([s.value for s in RecordingSite]),
    help="Body site of the recording",
)
@click.option("--exam-id", default=None, help="Attach the recording to an exam")
@click.option("--wait", "wait_for_prediction", is_flag=True, help="Wait for the prediction")
@click.option("--timeout", type=float, default=None, help="Seconds to wait (with --wait)")
@click.pass_obj
def analyze(
    config: ClientConfig,
    file_path: str,
    site: str,
    exam_id: str | None,
    wait_for_prediction: bool,
    timeout: float | None,
) -> None:
    """Upload an audio file for analysis."""

    async def run() -> dict[str, Any]:
        async with TheodorClient(config) as client:
            return await client.analyze_recording(
                file_path,
                site,
                exam_id=exam_id,
                wait_for_prediction=wait_for_prediction,
                timeout=timeout,
            )

    _echo_json(_run(run()))


@main.command()
@click.argument("recording_id")
@click.pass_obj
def recording(config: ClientConfig, recording_id: str) -> None:
    """Show a recording and its classification state."""

    async def run() -> dict[str, Any]:
        config.use_websocket = False
        async with TheodorClient(config) as client:
            return await client.get_recording(recording_id)

    _echo_json(_run(run()))


@main.command()
@click.argument("recording_id")
@click.option("--timeout", type=float, default=None, help="Seconds before giving up")
@click.pass_obj
def wait(config: ClientConfig, recording_id: str, timeout: float | None) -> None:
    """Wait for a recording's prediction."""

    async def run() -> dict[str, Any]:
        async with TheodorClient(config) as client:
            return await client.wait_for_prediction(recording_id, timeout=timeout)

    _echo_json(_run(run()))


@main.command()
@click.option("--page", default=0, help="Page number")
@click.option("--page-size", default=100, help="Exams per page")
@click.pass_obj
def exams(config: ClientConfig, page: int, page_size: int) -> None:
    """List exams, newest first."""

    async def run() -> dict[str, Any]:
        config.use_websocket = False
        async with TheodorClient(config) as client:
            return await client.get_exams(page=page, page_size=page_size)

    _echo_json(_run(run()))


if __name__ == "__main__":
    main()
