"""Shared test fixtures for LoadRace test suite."""

from __future__ import annotations

import asyncio
import logging
import socket
import threading
from typing import TYPE_CHECKING

import pytest
from aiohttp import web

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable, Iterator


# =============================================================================
# Pytest configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-apply markers based on test directory structure."""
    for item in items:
        test_path = str(item.fspath)
        if "/unit/" in test_path:
            item.add_marker(pytest.mark.unit)
        elif "/integration/" in test_path:
            item.add_marker(pytest.mark.integration)
        elif "/e2e/" in test_path:
            item.add_marker(pytest.mark.e2e)


# =============================================================================
# Network utilities
# =============================================================================


def _get_free_port() -> int:
    """Find an available port on localhost."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("", 0))
        s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        return s.getsockname()[1]


# =============================================================================
# Echo HTTP Server handlers
# =============================================================================


async def _echo_handler(request: web.Request) -> web.Response:
    """Echo back request details as JSON."""
    body = await request.read()
    return web.json_response(
        {
            "method": request.method,
            "path": str(request.path),
            "query": dict(request.query),
            "headers": dict(request.headers),
            "body": body.decode("utf-8", errors="replace"),
        },
        status=200,
    )


async def _delay_handler(request: web.Request) -> web.Response:
    """Respond after a configurable delay (query param: ?delay=0.5)."""
    delay = float(request.query.get("delay", "0.1"))
    await asyncio.sleep(delay)
    return web.json_response({"delayed_by": delay})


async def _error_handler(request: web.Request) -> web.Response:
    """Return a configurable error status (query param: ?status=500)."""
    status = int(request.query.get("status", "500"))
    return web.json_response({"error": True}, status=status)


async def _health_handler(request: web.Request) -> web.Response:
    """Simple health check endpoint."""
    return web.json_response({"status": "ok"})


async def _session_handler(request: web.Request) -> web.Response:
    """Issue a server-side session id (query param: ?id=abc)."""
    session_id = request.query.get("id", "server-session")
    return web.json_response({"data": {"sessionId": session_id, "count": 3}}, status=201)


async def _malformed_handler(request: web.Request) -> web.Response:
    """Return a 200 whose body is not JSON."""
    return web.Response(text="<html>not json</html>", content_type="text/html")


async def _no_session_handler(request: web.Request) -> web.Response:
    """Return valid JSON without a session id."""
    return web.json_response({"data": {}})


def _create_echo_app() -> web.Application:
    """Build the echo server app with all test routes."""
    app = web.Application()
    app.router.add_route("*", "/echo{path:.*}", _echo_handler)
    app.router.add_get("/delay", _delay_handler)
    app.router.add_route("*", "/error", _error_handler)
    app.router.add_get("/health", _health_handler)
    app.router.add_route("*", "/session", _session_handler)
    app.router.add_route("*", "/malformed", _malformed_handler)
    app.router.add_route("*", "/no-session", _no_session_handler)
    return app


# =============================================================================
# Shop server: one contended unit of stock
# =============================================================================


class ShopState:
    """In-memory shop with a fixed stock of a single variant.

    ``POST /api/v1/cart/add`` accepts any ``X-Session-Id`` and answers
    with a server-issued session id. ``POST /api/v1/orders/from-cart``
    requires that server-issued id and consumes one unit of stock.

    With ``locked=True`` the stock check and decrement happen under a lock
    (a correct server). With ``locked=False`` the handler reads the stock,
    yields, then writes it back, so concurrent orders oversell.
    """

    def __init__(self, stock: int = 1, *, locked: bool = True) -> None:
        self.stock = stock
        self.locked = locked
        self.carts: dict[str, str] = {}
        self.orders_created = 0
        self.order_session_headers: list[str] = []
        self.order_payloads: list[dict] = []
        self._lock = asyncio.Lock()

    async def add_to_cart(self, request: web.Request) -> web.Response:
        client_session = request.headers.get("X-Session-Id", "")
        if not client_session:
            return web.json_response({"error": "missing session"}, status=400)
        payload = await request.json()
        server_session = f"srv-{client_session}"
        self.carts[server_session] = payload.get("variantId", "")
        return web.json_response({"data": {"sessionId": server_session}}, status=201)

    async def order_from_cart(self, request: web.Request) -> web.Response:
        session = request.headers.get("X-Session-Id", "")
        self.order_session_headers.append(session)
        self.order_payloads.append(await request.json())
        if session not in self.carts:
            return web.json_response({"error": "unknown cart"}, status=400)
        if self.locked:
            async with self._lock:
                return self._take_unit()
        observed = self.stock
        await asyncio.sleep(0.05)
        if observed <= 0:
            return web.json_response({"error": "out of stock"}, status=409)
        self.stock = observed - 1
        self.orders_created += 1
        return web.json_response({"data": {"orderId": self.orders_created}}, status=201)

    def _take_unit(self) -> web.Response:
        if self.stock <= 0:
            return web.json_response({"error": "out of stock"}, status=409)
        self.stock -= 1
        self.orders_created += 1
        return web.json_response({"data": {"orderId": self.orders_created}}, status=201)

    def create_app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/api/v1/cart/add", self.add_to_cart)
        app.router.add_post("/api/v1/orders/from-cart", self.order_from_cart)
        return app


# =============================================================================
# Fixtures
# =============================================================================


async def _start_app(app: web.Application) -> tuple[web.AppRunner, str]:
    port = _get_free_port()
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", port)
    await site.start()
    return runner, f"http://127.0.0.1:{port}"


@pytest.fixture
async def echo_server() -> AsyncIterator[str]:
    """Aiohttp echo server fixture.

    Returns the base URL (e.g., 'http://127.0.0.1:54321').
    """
    runner, url = await _start_app(_create_echo_app())
    yield url
    await runner.cleanup()


@pytest.fixture
def shop_state() -> ShopState:
    """A correct shop with one unit in stock."""
    return ShopState(stock=1, locked=True)


@pytest.fixture
def racy_shop_state() -> ShopState:
    """A shop without inventory locking and one unit in stock."""
    return ShopState(stock=1, locked=False)


@pytest.fixture
async def shop_server(shop_state: ShopState) -> AsyncIterator[str]:
    runner, url = await _start_app(shop_state.create_app())
    yield url
    await runner.cleanup()


@pytest.fixture
async def racy_shop_server(racy_shop_state: ShopState) -> AsyncIterator[str]:
    runner, url = await _start_app(racy_shop_state.create_app())
    yield url
    await runner.cleanup()


@pytest.fixture
def closed_port_url() -> str:
    """A URL nothing listens on."""
    return f"http://127.0.0.1:{_get_free_port()}"


# =============================================================================
# Sync fixtures for blocking runner and CLI tests
# =============================================================================


def _serve_in_thread(app_factory: Callable[[], web.Application]) -> Iterator[str]:
    """Run an aiohttp app in a background thread, yielding its base URL."""
    port = _get_free_port()
    started = threading.Event()
    loop_holder: list[asyncio.AbstractEventLoop] = []

    def _thread_target() -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        runner = web.AppRunner(app_factory())
        loop.run_until_complete(runner.setup())
        site = web.TCPSite(runner, "127.0.0.1", port)
        loop.run_until_complete(site.start())
        loop_holder.append(loop)
        started.set()
        loop.run_forever()
        loop.run_until_complete(runner.cleanup())
        loop.close()

    thread = threading.Thread(target=_thread_target, daemon=True)
    thread.start()
    started.wait(timeout=5.0)

    yield f"http://127.0.0.1:{port}"

    if loop_holder:
        loop_holder[0].call_soon_threadsafe(loop_holder[0].stop)
    thread.join(timeout=5.0)


@pytest.fixture
def sync_echo_server() -> Iterator[str]:
    """Echo server running in a background thread for blocking callers.

    The runner and CLI start their own event loop, so the server cannot
    share the test's loop.
    """
    yield from _serve_in_thread(_create_echo_app)


@pytest.fixture
def sync_shop_server() -> Iterator[str]:
    """Correct shop with one unit in stock, in a background thread."""
    yield from _serve_in_thread(lambda: ShopState(stock=1, locked=True).create_app())


@pytest.fixture
def sync_racy_shop_server() -> Iterator[str]:
    """Racy shop with one unit in stock, in a background thread."""
    yield from _serve_in_thread(lambda: ShopState(stock=1, locked=False).create_app())


# =============================================================================
# Log capture
# =============================================================================


class _ListHandler(logging.Handler):
    def __init__(self) -> None:
        super().__init__(level=logging.DEBUG)
        self.records: list[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)


@pytest.fixture
def loadrace_logs() -> Iterator[list[logging.LogRecord]]:
    """Records emitted under the ``loadrace`` logger namespace.

    Attached directly to the namespace logger, so it works whether or not
    ``setup_logging`` disabled propagation to the root logger.
    """
    logger = logging.getLogger("loadrace")
    handler = _ListHandler()
    previous_level = logger.level
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    yield handler.records
    logger.removeHandler(handler)
    logger.setLevel(previous_level)
