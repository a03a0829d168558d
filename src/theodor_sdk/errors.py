"""Exception hierarchy for the Theodor SDK.

Errors fall into a few families:
- ConfigurationError: bad client settings, raised before any I/O
- TransportError: the socket could not carry a frame
- RemoteError: the server reported a failure for a specific request or job
- PredictionTimeoutError (and PredictionNotFoundError): a wait reached its deadline
- SessionClosedError: the session was closed while work was outstanding
"""

from __future__ import annotations

from typing import Any


class TheodorError(Exception):
    """Base class for all SDK errors."""


class ConfigurationError(TheodorError, ValueError):
    """Raised when client settings are invalid (e.g. unknown URL scheme)."""


class TransportError(TheodorError):
    """Raised when a frame could not be delivered over the connection."""


class RequestCancelledError(TransportError):
    """Raised for a correlated request dropped because its connection went away."""


class RemoteError(TheodorError):
    """A failure reported by the server for one request or job."""

    def __init__(self, message: str, data: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.data = data


class APIError(RemoteError):
    """A failed REST call.

    ``status_code`` is None when no response was received at all.
    """

    def __init__(self, message: str, status_code: int | None = None, data: Any = None) -> None:
        super().__init__(message, data)
        self.status_code = status_code

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404


class PredictionFailedError(RemoteError):
    """The server reported that classification of a recording failed."""

    def __init__(self, job_id: str, message: str, data: Any = None) -> None:
        super().__init__(f"Classification failed for recording {job_id}: {message}", data)
        self.job_id = job_id
        self.reason = message


class PredictionTimeoutError(TheodorError, TimeoutError):
    """No prediction arrived before the wait deadline."""

    def __init__(
        self, job_id: str, timeout: float | None = None, message: str | None = None
    ) -> None:
        if message is None:
            detail = f" after {timeout:g}s" if timeout is not None else ""
            message = f"Prediction timeout for recording {job_id}{detail}"
        super().__init__(message)
        self.job_id = job_id
        self.timeout = timeout


class PredictionNotFoundError(PredictionTimeoutError):
    """The deadline passed and polling never saw the recording at all."""

    def __init__(self, job_id: str, attempts: int, timeout: float | None = None) -> None:
        super().__init__(
            job_id, timeout, f"Recording {job_id} not found after {attempts} poll attempts"
        )
        self.attempts = attempts


class DuplicateWaitError(TheodorError):
    """A wait for this recording is already outstanding."""

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Already waiting for a prediction on recording {job_id}")
        self.job_id = job_id


class SessionClosedError(TheodorError):
    """The session was closed; outstanding requests and waits are abandoned."""

    def __init__(self, message: str = "Session closed") -> None:
        super().__init__(message)
