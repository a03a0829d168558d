"""REST client for the Theodor API.

Plain request/response calls over httpx. The real-time layer only needs two
of them: submitting a recording (``analyze_recording`` / ``analyze_base64``)
and fetching its current state (``get_recording``).
"""

from __future__ import annotations

import logging
import platform
from pathlib import Path
from typing import Any

import httpx

from .config import SDK_VERSION, ClientConfig
from .errors import APIError
from .protocol.events import RecordingSite

logger = logging.getLogger(__name__)

USER_AGENT = (
    f"TheodorPythonSDK/{SDK_VERSION} Python/{platform.python_version()} "
    f"{platform.system()}/{platform.release()}"
)


def validate_site(site: str | RecordingSite) -> str:
    """Return the site's wire value.

    Raises:
        ValueError: If the site is not heart, lung or abdomen
    """
    try:
        return RecordingSite(site).value
    except ValueError:
        allowed = ", ".join(s.value for s in RecordingSite)
        raise ValueError(f"Invalid recording site. Must be one of: {allowed}") from None


def _error_from_response(error: httpx.HTTPStatusError) -> APIError:
    response = error.response
    try:
        data: Any = response.json()
    except ValueError:
        data = response.text

    message = str(error)
    if isinstance(data, dict):
        message = data.get("message") or data.get("detailed_error") or message

    logger.debug(f"API error {response.status_code}: {data}")
    return APIError(
        f"Theodor API Error ({response.status_code}): {message}",
        status_code=response.status_code,
        data=data,
    )


class RecordingsAPI:
    """Async client for the REST endpoints.

    Usage:
        api = RecordingsAPI(ClientConfig(token="..."))
        recording = await api.analyze_recording("beat.wav", site="heart")
        state = await api.get_recording(recording["id"])
        await api.aclose()
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config or ClientConfig()
        self._http_client = httpx.AsyncClient(
            base_url=self.config.api_url,
            timeout=self.config.request_timeout,
            headers={"X-Requested-With": "XMLHttpRequest", "User-Agent": USER_AGENT},
            transport=transport,
        )
        if self.config.token:
            self.set_token(self.config.token)

    @property
    def token(self) -> str | None:
        return self.config.token

    def set_token(self, token: str) -> None:
        """Use ``token`` as the bearer credential for every following call."""
        self.config.token = token
        self._http_client.headers["Authorization"] = f"Bearer {token}"

    async def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        """Execute a request and return the decoded JSON body."""
        try:
            response = await self._http_client.request(method, url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise _error_from_response(e) from e
        except httpx.RequestError as e:
            logger.debug(f"Network error on {method} {url}: {e}")
            raise APIError(f"Theodor API Network Error: {e}") from e

        if not response.content:
            return {}
        return response.json()

    # =========================================================================
    # Authentication
    # =========================================================================

    async def login(self, login_id: str, password: str) -> dict[str, Any]:
        """Log in with credentials and adopt the returned token."""
        data = await self._request(
            "POST", "/users/login", json={"login_id": login_id, "password": password}
        )
        token = data.get("token")
        if token:
            self.set_token(token)
        return data

    # =========================================================================
    # Recordings
    # =========================================================================

    async def analyze_recording(
        self,
        file_path: str | Path,
        site: str | RecordingSite,
        exam_id: str | None = None,
    ) -> dict[str, Any]:
        """Upload an audio file for analysis.

        Returns:
            The created recording; its ``id`` is what predictions are keyed on
        """
        site_value = validate_site(site)
        path = Path(file_path)
        if not path.is_file():
            raise FileNotFoundError(f"Audio file not found: {path}")

        form: dict[str, str] = {"site": site_value}
        if exam_id:
            form["exam_id"] = exam_id

        return await self._request(
            "POST",
            "/recordings/analyse",
            data=form,
            files={"upload_file": (path.name, path.read_bytes())},
        )

    async def analyze_base64(
        self,
        data: str,
        mime_type: str,
        size: int,
        site: str | RecordingSite,
        exam_id: str | None = None,
        enhanced: bool = False,
    ) -> dict[str, Any]:
        """Submit base64-encoded audio for analysis."""
        if not data:
            raise ValueError("Base64 data is required")
        if not mime_type:
            raise ValueError("MIME type is required")
        if not size:
            raise ValueError("Size is required")

        payload: dict[str, Any] = {
            "data": data,
            "mime_type": mime_type,
            "size": size,
            "site": validate_site(site),
            "a_dvc": False,
        }
        if exam_id:
            payload["exam_id"] = exam_id
        if enhanced:
            payload["enhanced"] = True

        return await self._request("POST", "/recordings/analyseBase64", json=payload)

    async def get_recording(self, recording_id: str | int) -> dict[str, Any]:
        """Fetch a recording, including its classification state."""
        return await self._request("GET", f"/recordings/{recording_id}")

    # =========================================================================
    # Exams
    # =========================================================================

    async def get_exams(
        self,
        page: int = 0,
        page_size: int = 100,
        order_by: str = "created_at",
        order_direction: int = 0,
    ) -> dict[str, Any]:
        """List exams. ``order_direction`` is 0 for descending, 1 for ascending."""
        params = {
            "page": page,
            "page_size": page_size,
            "order_by": order_by,
            "order_direction": order_direction,
        }
        return await self._request("GET", "/exams", params=params)

    async def get_exam(self, exam_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/exams/{exam_id}")

    async def create_exam(self, exam_data: dict[str, Any]) -> dict[str, Any]:
        return await self._request("POST", "/exams", json=exam_data)

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._http_client.aclose()
