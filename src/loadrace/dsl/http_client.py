"""Instrumented HTTP executor: one request, timed, never retried."""

from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import aiohttp

if TYPE_CHECKING:
    from collections.abc import Callable

    from loadrace._internal.types import Headers, JsonBody

_NOT_PARSED = object()


def _noop_callback(metric: RequestMetric) -> None:
    """Default no-op metric callback."""


@dataclass
class RequestMetric:
    """Raw metric emitted for every HTTP request.

    Attributes:
        timestamp: Monotonic timestamp when the request started.
        name: Logical name for metric grouping (the step name).
        method: HTTP method (GET, POST, etc.).
        url: Full request URL.
        status_code: HTTP response status code (0 if the request failed).
        latency_ms: Response time in milliseconds.
        content_length: Response body size in bytes.
        error: ``"ExcType: message"`` if the request failed, None otherwise.
        user_id: Virtual user that made the request.
    """

    timestamp: float
    name: str
    method: str
    url: str
    status_code: int
    latency_ms: float
    content_length: int
    error: str | None = None
    user_id: int = 0

    @property
    def is_error(self) -> bool:
        """True for transport failures and HTTP statuses >= 400."""
        return self.error is not None or self.status_code >= 400


@dataclass
class HttpResult:
    """Outcome of a single executed request.

    The body is read in full before the result is built, so the result can
    be inspected by checks and extraction rules after the connection is
    released.

    Attributes:
        status: HTTP status code, 0 on transport failure.
        body: Raw response body.
        latency_ms: Time from send to fully-read body, in milliseconds.
        headers: Response headers.
        error: ``"ExcType: message"`` on transport failure, else None.
    """

    status: int
    body: bytes = b""
    latency_ms: float = 0.0
    headers: dict[str, str] = field(default_factory=dict)
    error: str | None = None
    _json: Any = field(default=_NOT_PARSED, repr=False, compare=False)

    @property
    def transport_error(self) -> bool:
        """True if no HTTP response was obtained."""
        return self.error is not None

    @property
    def text(self) -> str:
        """Body decoded as UTF-8, undecodable bytes replaced."""
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> JsonBody:
        """Parse the body as JSON, caching the result.

        Raises:
            ValueError: If the body is not valid JSON.
        """
        if self._json is _NOT_PARSED:
            self._json = json.loads(self.body)
        return self._json


class HttpClient:
    """Instrumented async HTTP client wrapping ``aiohttp.ClientSession``.

    Every request is timed and emits a ``RequestMetric`` through
    ``metric_callback``. Transport failures (connection refused, timeouts,
    protocol errors) never raise out of :meth:`execute`; they come back as
    an ``HttpResult`` with ``status == 0`` and ``error`` set. There are no
    automatic retries.

    Attributes:
        base_url: Base URL prepended to all request paths.
        headers: Headers applied to every request made by this client.
    """

    def __init__(
        self,
        base_url: str,
        headers: Headers | None = None,
        metric_callback: Callable[[RequestMetric], None] | None = None,
        user_id: int = 0,
        timeout: float = 30.0,
        connector: aiohttp.BaseConnector | None = None,
    ) -> None:
        """Initialize the HTTP client.

        Args:
            base_url: Base URL prepended to all request paths.
            headers: Default headers applied to every request.
            metric_callback: Callback invoked with a ``RequestMetric``
                after each request. Defaults to a no-op.
            user_id: Virtual user identifier for metric tagging.
            timeout: Per-request timeout in seconds.
            connector: Optional connector shared between clients. A shared
                connector is not closed when this client exits.
        """
        self.base_url = base_url.rstrip("/")
        self.headers: Headers = dict(headers or {})
        self._metric_callback = metric_callback or _noop_callback
        self._user_id = user_id
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._connector = connector
        self._session: aiohttp.ClientSession | None = None

    async def __aenter__(self) -> HttpClient:
        """Open the underlying aiohttp session."""
        self._session = aiohttp.ClientSession(
            timeout=self._timeout,
            connector=self._connector,
            connector_owner=self._connector is None,
        )
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object | None,
    ) -> None:
        """Close the underlying aiohttp session."""
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def execute(
        self,
        method: str,
        path: str,
        *,
        name: str | None = None,
        json_body: JsonBody = None,
        headers: Headers | None = None,
    ) -> HttpResult:
        """Send one HTTP request and read the full response.

        Args:
            method: HTTP method (GET, POST, etc.).
            path: URL path appended to ``base_url``. Absolute URLs are used
                as-is.
            name: Logical name for metric grouping. Defaults to the path.
            json_body: Optional JSON-serialisable request body.
            headers: Per-request headers layered over the client headers.

        Returns:
            The request outcome, including transport failures.

        Raises:
            RuntimeError: If the client is used outside of an async context
                manager.
        """
        if self._session is None:
            msg = "HttpClient must be used as an async context manager"
            raise RuntimeError(msg)

        url = path if path.startswith(("http://", "https://")) else f"{self.base_url}{path}"
        merged_headers = {**self.headers, **(headers or {})}
        kwargs: dict[str, Any] = {"headers": merged_headers}
        if json_body is not None:
            kwargs["json"] = json_body

        start = time.monotonic()
        result: HttpResult
        try:
            async with self._session.request(method, url, **kwargs) as resp:
                body = await resp.read()
                result = HttpResult(
                    status=resp.status,
                    body=body,
                    headers=dict(resp.headers),
                )
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
            result = HttpResult(status=0, error=f"{type(exc).__name__}: {exc}")
        result.latency_ms = (time.monotonic() - start) * 1000

        self._metric_callback(
            RequestMetric(
                timestamp=start,
                name=name or path,
                method=method,
                url=url,
                status_code=result.status,
                latency_ms=result.latency_ms,
                content_length=len(result.body),
                error=result.error,
                user_id=self._user_id,
            )
        )
        return result
