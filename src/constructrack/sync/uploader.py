"""Async HTTP uploader delivering queued photos to the remote store."""

import json
from dataclasses import dataclass
from typing import Any, Awaitable, Protocol

import httpx

from constructrack import __version__


@dataclass
class UploadResult:
    """Result of a single delivery attempt."""

    success: bool
    remote_locator: str | None = None
    error: str | None = None
    permanent: bool = False


class Uploader(Protocol):
    """Anything that can durably write one payload to remote storage.

    Must be safe to call again with the same arguments: the queue retries
    attempts whose outcome was ambiguous.
    """

    def upload(
        self, payload: bytes, destination: str, item_id: str | None = None
    ) -> Awaitable[UploadResult]: ...


class HttpUploader:
    """Uploads photos to the Constructrack server over HTTP.

    Makes exactly one request per call. Retrying is the sync engine's job,
    so a failed attempt is reported straight back as an UploadResult:
    client errors (4xx) are marked permanent, server errors (5xx) and
    transport errors are transient.
    """

    def __init__(
        self,
        server_url: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the uploader.

        Args:
            server_url: Base URL of the server (e.g., http://localhost:8000)
            timeout: Request timeout in seconds
            transport: Optional httpx transport, mainly for tests
        """
        self.server_url = server_url.rstrip("/")
        self.timeout = timeout

        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            transport=transport,
            headers={
                "User-Agent": f"constructrack-agent/{__version__}",
            },
        )

    async def upload(
        self,
        payload: bytes,
        destination: str,
        item_id: str | None = None,
    ) -> UploadResult:
        """Upload one photo to its destination key.

        Args:
            payload: Raw image bytes
            destination: Remote storage path, passed through untouched
            item_id: Queue item id, sent as idempotency key when known

        Returns:
            UploadResult with the remote locator or the error
        """
        filename = destination.rsplit("/", 1)[-1] or "photo.jpg"
        files = {"file": (filename, payload, "image/jpeg")}
        form_data = {"destination": destination}
        headers = {}
        if item_id:
            form_data["item_id"] = item_id
            headers["Idempotency-Key"] = item_id

        try:
            response = await self._client.post(
                f"{self.server_url}/api/uploads/",
                files=files,
                data=form_data,
                headers=headers,
            )
        except httpx.ConnectError as e:
            return UploadResult(success=False, error=f"Connection error: {e}")
        except httpx.TimeoutException as e:
            return UploadResult(success=False, error=f"Timeout: {e}")
        except httpx.HTTPError as e:
            return UploadResult(success=False, error=f"HTTP error: {e}")

        if response.status_code in (200, 201):
            try:
                body = response.json()
            except json.JSONDecodeError:
                return UploadResult(success=True)
            locator = (body.get("url") or body.get("locator")) if isinstance(body, dict) else None
            return UploadResult(success=True, remote_locator=locator)

        # 4xx errors - the server will keep refusing this item
        if 400 <= response.status_code < 500:
            return UploadResult(
                success=False,
                error=f"Client error: {response.status_code} - {response.text}",
                permanent=True,
            )

        return UploadResult(success=False, error=f"Server error: {response.status_code}")

    async def check_server(self, timeout: float = 5.0) -> bool:
        """Check if the server is reachable.

        Returns:
            True if server responds to health check, False otherwise
        """
        try:
            response = await self._client.get(
                f"{self.server_url}/health/ready",
                timeout=httpx.Timeout(timeout),
            )
            return response.status_code == 200
        except httpx.HTTPError:
            return False

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        await self._client.aclose()

    async def __aenter__(self) -> "HttpUploader":
        """Enter async context manager."""
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        """Exit async context manager."""
        await self.close()
