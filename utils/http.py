"""
Authenticated API client.

Issues a single GET with an Authorization header and returns status, headers
and body. Status handling (retry, fail) is left to the caller.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

import httpx
import orjson

from utils.auth import Credential
from utils.errors import ApiRequestError, ParseError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


@dataclass(frozen=True)
class ApiResponse:
    url: str
    status: int
    headers: httpx.Headers = field(default_factory=httpx.Headers)
    body: bytes = b""

    def __post_init__(self) -> None:
        if not isinstance(self.headers, httpx.Headers):
            object.__setattr__(self, "headers", httpx.Headers(self.headers))

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def rate_limited(self) -> bool:
        return self.status == 429

    @property
    def retry_after(self) -> Optional[float]:
        """Server-supplied wait hint in seconds, if present and numeric."""
        value = self.headers.get("retry-after")
        if value is None:
            return None
        try:
            seconds = float(value)
        except ValueError:
            return None
        return max(seconds, 0.0)

    def json(self) -> Any:
        try:
            return orjson.loads(self.body)
        except orjson.JSONDecodeError as e:
            raise ParseError(f"Invalid JSON from {self.url}: {e}") from e

    def text(self, limit: int = 200) -> str:
        text = self.body.decode("utf-8", errors="replace")
        return text if len(text) <= limit else text[:limit] + "..."


class ApiClient:
    """Thin wrapper over a shared httpx.AsyncClient.

    Supports use as an async context manager.
    """

    def __init__(
        self,
        base_url: str = "",
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout),
            transport=transport,
            headers={"Accept": "application/json"},
        )

    async def get(
        self,
        url: str,
        credential: Credential,
        params: Optional[Mapping[str, Any]] = None,
    ) -> ApiResponse:
        """Issue one authenticated GET request.

        Raises:
            ApiRequestError: On connection errors and timeouts
        """
        headers = {"Authorization": credential.header_value}
        try:
            response = await self._client.get(url, params=params, headers=headers)
        except httpx.TimeoutException as e:
            raise ApiRequestError(f"Request timed out: {e}", url=url) from e
        except httpx.RequestError as e:
            raise ApiRequestError(f"Request failed: {type(e).__name__}: {e}", url=url) from e

        logger.debug("GET %s -> %d", response.request.url, response.status_code)
        return ApiResponse(
            url=str(response.request.url),
            status=response.status_code,
            headers=response.headers,
            body=response.content,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
