"""
HTTP transport for music-catalog.

Provider adapters never talk to aiohttp directly: they receive an object
implementing the Transport protocol (request + resolve_redirect). The
default implementation, HttpTransport, wraps a lazily created
aiohttp.ClientSession. Tests substitute an in-memory fake.

Failure Translation:
    - DNS, connection, TLS and timeout failures -> TransportError
    - Non-2xx responses are RETURNED (status_code set); the adapter
      inspects the body and raises RemoteAPIError with the provider's
      own error code/message when there is one.

Usage:
    async with HttpTransport(timeout=30) as transport:
        response = await transport.request(
            "https://api.deezer.com/track/3135556",
            query={"output": "json"}
        )
        print(response.status_code, response.body["title"])
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Mapping, Protocol

import aiohttp

from music_catalog.core.exceptions import TransportError
from music_catalog.core.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class HttpResponse:
    """
    Minimal response shape handed to provider adapters.

    Attributes:
        status_code: HTTP status code.
        body: Decoded JSON (dict/list) for JSON responses, text otherwise.
        url: Final URL after redirects.
    """
    status_code: int
    body: Any
    url: str

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class Transport(Protocol):
    """Interface consumed by provider adapters and the Dispatcher."""

    async def request(
        self,
        url: str,
        method: str = "GET",
        headers: Mapping[str, str] | None = None,
        query: Mapping[str, Any] | None = None,
        json_body: Any = None,
        provider: str = "http",
    ) -> HttpResponse:
        ...  # pragma: no cover

    async def resolve_redirect(self, url: str) -> str | None:
        ...  # pragma: no cover


class HttpTransport:
    """
    aiohttp-backed implementation of the Transport protocol.

    One ClientSession is shared by every adapter built from the same
    transport. The session is created on first use so the transport can
    be constructed outside a running event loop.

    Attributes:
        timeout: Total timeout in seconds applied to every request.
    """

    def __init__(self, timeout: float = 30.0, user_agent: str | None = None) -> None:
        self.timeout = timeout
        self._headers = {"User-Agent": user_agent} if user_agent else {}
        self._session: aiohttp.ClientSession | None = None

    async def __aenter__(self) -> "HttpTransport":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                headers=self._headers,
            )
        return self._session

    async def close(self) -> None:
        """Close the underlying session. Safe to call multiple times."""
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def request(
        self,
        url: str,
        method: str = "GET",
        headers: Mapping[str, str] | None = None,
        query: Mapping[str, Any] | None = None,
        json_body: Any = None,
        provider: str = "http",
    ) -> HttpResponse:
        """
        Perform an HTTP request and decode the body.

        Args:
            url: Absolute URL.
            method: HTTP method. Default "GET".
            headers: Extra request headers.
            query: Query parameters. None values are dropped; other values
                   are converted with str().
            json_body: Optional JSON request body.
            provider: Provider name recorded on TransportError.

        Returns:
            HttpResponse with JSON-decoded body when the server says JSON.

        Raises:
            TransportError: If no response could be obtained.
        """
        params = {k: str(v) for k, v in (query or {}).items() if v is not None}
        session = self._get_session()
        try:
            async with session.request(
                method, url, headers=headers, params=params, json=json_body
            ) as response:
                if "json" in response.content_type:
                    body = await response.json(content_type=None)
                else:
                    body = await response.text()
                return HttpResponse(
                    status_code=response.status, body=body, url=str(response.url)
                )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(
                f"{method} {url} failed: {e.__class__.__name__} {e}".rstrip(),
                provider=provider,
                cause=e,
                details={"url": url, "method": method},
            ) from e

    async def resolve_redirect(self, url: str) -> str | None:
        """
        Follow redirects for a short link and return the final URL.

        Args:
            url: Short link (e.g., "https://link.deezer.com/s/30Bqd0WA8jnxB2PIMumVG").

        Returns:
            The final URL, or None if the request failed. Failures are
            logged, not raised: a short link that cannot be expanded is
            treated like unrecognized input.
        """
        session = self._get_session()
        try:
            async with session.get(url, allow_redirects=True) as response:
                return str(response.url)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Failed to resolve short link {url}: {e}")
            return None
