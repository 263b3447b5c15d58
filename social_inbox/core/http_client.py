"""
Platform HTTP Client

One pooled httpx.AsyncClient per adapter registry. Transient failures
(connect errors, timeouts, 408/429/5xx) are retried with exponential
backoff; credential rejections surface as AuthError so callers can refresh
the token once, anything else as PlatformAPIError.
"""
import asyncio
import logging
from typing import Any, Dict, Optional

import httpx

from social_inbox.core.config import get_settings
from social_inbox.core.errors import AuthError, PlatformAPIError

logger = logging.getLogger(__name__)

RETRYABLE_STATUSES = frozenset({408, 429, 500, 502, 503, 504})
AUTH_STATUSES = frozenset({401, 403})


class HTTPClientConfig:
    """Timeouts, pool sizes and retry budget; unset values come from settings."""

    def __init__(self, timeout: Optional[float] = None, max_retries: Optional[int] = None,
                 backoff_base: float = 0.3):
        settings = get_settings()
        self.timeout = settings.http_timeout if timeout is None else timeout
        self.max_retries = settings.http_max_retries if max_retries is None else max_retries
        self.backoff_base = backoff_base
        self.limits = httpx.Limits(max_connections=100, max_keepalive_connections=20)
        self.headers = {'User-Agent': 'Social-Inbox/1.0'}

    def backoff(self, attempt: int) -> float:
        return self.backoff_base * (2 ** (attempt - 1))


class HTTPClient:
    """Async JSON client for platform APIs."""

    def __init__(self, config: Optional[HTTPClientConfig] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config or HTTPClientConfig()
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                limits=self.config.limits,
                timeout=httpx.Timeout(self.config.timeout),
                headers=self.config.headers,
                follow_redirects=True,
                transport=self._transport
            )
        return self._client

    async def close(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """
        Send a request, retrying transient failures.

        Raises:
            AuthError: on 401/403
            PlatformAPIError: on any other error status, or once transport retries run out
        """
        attempt = 0
        while True:
            try:
                response = await self.client.request(method, url, **kwargs)
                reason = None if response.status_code not in RETRYABLE_STATUSES else f"status {response.status_code}"
            except (httpx.ConnectError, httpx.TimeoutException) as e:
                if attempt >= self.config.max_retries:
                    raise PlatformAPIError(f"{method} {url} failed: {e}") from e
                response, reason = None, str(e)

            if reason is None or attempt >= self.config.max_retries:
                break
            attempt += 1
            delay = self.config.backoff(attempt)
            logger.warning(f"{method} {url} -> {reason}; retry {attempt}/{self.config.max_retries} in {delay:.1f}s")
            await asyncio.sleep(delay)

        if response.status_code in AUTH_STATUSES:
            raise AuthError(
                f"{method} {url} rejected credentials ({response.status_code})",
                details={"status_code": response.status_code}
            )
        if response.is_error:
            raise PlatformAPIError(
                f"{method} {url} returned {response.status_code}",
                status_code=response.status_code,
                details={"body": response.text[:500]}
            )
        return response

    async def get_json(self, url: str, **kwargs) -> Dict[str, Any]:
        return (await self.request('GET', url, **kwargs)).json()

    async def post_json(self, url: str, **kwargs) -> Dict[str, Any]:
        return (await self.request('POST', url, **kwargs)).json()

    async def put_json(self, url: str, **kwargs) -> Dict[str, Any]:
        return (await self.request('PUT', url, **kwargs)).json()
