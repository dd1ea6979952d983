"""Transport client: one timeout-bounded HTTP round trip, classified.

``TransportClient.execute`` performs exactly one request. It does not retry,
cache or refresh credentials; those are layered on top. Its job is to turn
every way a request can fail into the right :mod:`tether.core.errors` type:

===========================  ======================  ===========
Condition                    Raised                  Retryable
===========================  ======================  ===========
4xx other than 429           ``ClientError``         no
429                          ``RateLimited``         yes
5xx                          ``ServerError``         yes
connect / read / protocol    ``NetworkError``        yes
deadline exceeded            ``Timeout``             yes
===========================  ======================  ===========

Payload shape follows ``content-type``: JSON for ``*json*`` media types,
text otherwise, ``None`` for an empty body.

Example::

    async with TransportClient("https://consultas.anvisa.gov.br/api",
                               provider="registry.public") as transport:
        payload = await transport.get("/produto/1012345678901")
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Any

import httpx

from tether.core.errors import (
    ClientError,
    NetworkError,
    RateLimited,
    ServerError,
    TetherError,
    Timeout,
)
from tether.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TIMEOUT = 30.0
MAX_ERROR_BODY = 2_000


@dataclass
class IntegrationRequest:
    """An outbound request. ``path`` is relative to the base URL unless absolute."""

    method: str
    path: str
    params: dict[str, Any] | None = None
    json: Any = None
    content: bytes | str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    timeout: float | None = None


def parse_retry_after(value: str | None, *, now: datetime | None = None) -> float | None:
    """Seconds to wait from a ``Retry-After`` header (delta-seconds or HTTP-date)."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    now = now or datetime.now(UTC)
    return max(0.0, (when - now).total_seconds())


def decode_payload(response: httpx.Response) -> Any:
    """JSON when the media type says so, text otherwise, None when empty."""
    if not response.content:
        return None
    content_type = response.headers.get("content-type", "").lower()
    if "json" in content_type:
        try:
            return response.json()
        except json.JSONDecodeError:
            return response.text
    return response.text


class TransportClient:
    """Async HTTP client with a per-request deadline and typed errors.

    Owns its ``httpx.AsyncClient`` unless one is injected. Use as an async
    context manager or call :meth:`aclose`.

    Args:
        base_url: Prefix for relative request paths
        provider: Logical tag attached to every error's context
        timeout: Default deadline in seconds
        headers: Headers sent with every request
        client: Pre-built ``httpx.AsyncClient`` (not closed by us)
        transport: ``httpx`` transport for the owned client (tests pass
            ``httpx.MockTransport``)
    """

    def __init__(
        self,
        base_url: str = "",
        *,
        provider: str = "http",
        timeout: float = DEFAULT_TIMEOUT,
        headers: dict[str, str] | None = None,
        client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.provider = provider
        self.timeout = timeout
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            headers={"Accept": "application/json", **(headers or {})},
            transport=transport,
            timeout=None,
        )
        self._closed = False

    # ── Lifecycle ────────────────────────────────────────────────────

    async def aclose(self) -> None:
        if self._owns_client and not self._closed:
            await self._client.aclose()
        self._closed = True

    async def __aenter__(self) -> TransportClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # ── Requests ─────────────────────────────────────────────────────

    def url_for(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        if not path.startswith("/"):
            path = f"/{path}"
        return f"{self.base_url}{path}"

    async def execute(self, request: IntegrationRequest) -> Any:
        """Perform one request and return its decoded payload.

        Raises:
            ClientError, RateLimited, ServerError, NetworkError, Timeout
        """
        url = self.url_for(request.path)
        deadline = request.timeout if request.timeout is not None else self.timeout
        method = request.method.upper()

        try:
            async with asyncio.timeout(deadline):
                response = await self._client.request(
                    method,
                    url,
                    params=request.params,
                    json=request.json if request.content is None else None,
                    content=request.content,
                    headers=request.headers or None,
                )
        except TimeoutError as e:
            raise self._tag(
                Timeout(f"{method} {url} exceeded {deadline}s deadline", timeout=deadline, cause=e),
                method,
                url,
            ) from e
        except httpx.TimeoutException as e:
            raise self._tag(
                Timeout(f"{method} {url} timed out: {e}", timeout=deadline, cause=e),
                method,
                url,
            ) from e
        except httpx.TransportError as e:
            raise self._tag(
                NetworkError(f"{method} {url} failed: {type(e).__name__}: {e}", cause=e),
                method,
                url,
            ) from e

        logger.debug(
            "transport.response",
            provider=self.provider,
            method=method,
            url=url,
            status=response.status_code,
        )

        if response.status_code >= 400:
            raise self._tag(self._classify(response, method, url), method, url)

        return decode_payload(response)

    async def get(self, path: str, *, params: dict[str, Any] | None = None, **kwargs: Any) -> Any:
        return await self.execute(IntegrationRequest("GET", path, params=params, **kwargs))

    async def post(self, path: str, *, json: Any = None, **kwargs: Any) -> Any:
        return await self.execute(IntegrationRequest("POST", path, json=json, **kwargs))

    async def put(self, path: str, *, json: Any = None, **kwargs: Any) -> Any:
        return await self.execute(IntegrationRequest("PUT", path, json=json, **kwargs))

    async def delete(self, path: str, **kwargs: Any) -> Any:
        return await self.execute(IntegrationRequest("DELETE", path, **kwargs))

    # ── Classification ───────────────────────────────────────────────

    @staticmethod
    def _classify(response: httpx.Response, method: str, url: str) -> TetherError:
        status = response.status_code
        body = response.text[:MAX_ERROR_BODY] if response.content else None
        reason = response.reason_phrase or "error"
        message = f"{method} {url} returned {status} {reason}"
        if status == 429:
            return RateLimited(
                message,
                retry_after=parse_retry_after(response.headers.get("retry-after")),
                body=body,
            )
        if status >= 500:
            return ServerError(message, http_status=status, body=body)
        return ClientError(message, http_status=status, body=body)

    def _tag(self, error: TetherError, method: str, url: str) -> TetherError:
        return error.with_context(provider=self.provider, method=method, url=url)


__all__ = [
    "DEFAULT_TIMEOUT",
    "IntegrationRequest",
    "TransportClient",
    "decode_payload",
    "parse_retry_after",
]
