"""Async HTTP client used to reach the external text-generation service."""
import asyncio
import logging
from typing import Dict, Any, Optional
import httpx
from httpx import AsyncClient, Response, TimeoutException, RequestError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
MAX_RETRIES = 3
RETRY_DELAY = 1.0


class HTTPError(Exception):
    """Transport-level failure with status code (0 when no response arrived)."""
    def __init__(self, status_code: int, message: str, response: Optional[Response] = None):
        self.status_code = status_code
        self.response = response
        super().__init__(f"HTTP {status_code}: {message}")


class AsyncHTTPClient:
    """httpx wrapper with retries on connection problems and status checking."""

    def __init__(self, timeout: float = DEFAULT_TIMEOUT, max_retries: int = MAX_RETRIES,
                 headers: Optional[Dict[str, str]] = None, retry_delay: float = RETRY_DELAY):
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.headers = headers or {}
        self.retry_delay = retry_delay
        self._client: Optional[AsyncClient] = None

    async def __aenter__(self):
        self._client = AsyncClient(
            timeout=httpx.Timeout(self.timeout),
            headers=self.headers,
            limits=httpx.Limits(max_keepalive_connections=5, max_connections=10)
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _make_request(self, method: str, url: str, **kwargs) -> Response:
        if not self._client:
            raise RuntimeError("Client not initialized. Use async context manager.")

        last_error = None
        for attempt in range(self.max_retries):
            try:
                response = await self._client.request(method, url, **kwargs)
            except (TimeoutException, RequestError) as e:
                last_error = e
                logger.warning(f"HTTP request attempt {attempt + 1} failed: {e}")
                if attempt < self.max_retries - 1:
                    await asyncio.sleep(self.retry_delay * (2 ** attempt))
                continue

            # Non-2xx responses are not retried
            if response.status_code >= 400:
                raise HTTPError(response.status_code, f"{method} {url} - {response.text[:200]}", response)
            return response

        raise HTTPError(0, f"Request failed after {self.max_retries} attempts: {last_error}")

    async def post_json(self, url: str, data: Optional[Dict[str, Any]] = None, **kwargs) -> Dict[str, Any]:
        """POST a JSON body and decode the JSON reply."""
        if data is not None:
            kwargs["json"] = data
        response = await self._make_request("POST", url, **kwargs)
        try:
            return response.json()
        except ValueError as e:
            raise HTTPError(response.status_code, f"Invalid JSON response: {e}", response)


async def post_json(
    url: str,
    data: Optional[Dict[str, Any]] = None,
    timeout: float = DEFAULT_TIMEOUT,
    headers: Optional[Dict[str, str]] = None,
    max_retries: int = MAX_RETRIES,
) -> Dict[str, Any]:
    """One-off POST with a fresh client."""
    async with AsyncHTTPClient(timeout=timeout, headers=headers, max_retries=max_retries) as client:
        return await client.post_json(url, data)
