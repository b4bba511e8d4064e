"""
Forwarding engine: one client request in, one streamed upstream response out.

The request body is handed to httpx as an async stream and the upstream body
is relayed as raw bytes, so neither side is ever buffered in full. Every
upstream call goes through one shared ``httpx.AsyncClient`` whose pool keeps
keep-alive connections per origin.

Cancellation contract: the task serving a request owns its upstream
exchange. If the client goes away before upstream headers arrive the send is
cancelled; if it goes away mid-stream the pending upstream read is cancelled
and the upstream response is closed, which releases or evicts the pooled
connection.
"""

import asyncio
import logging
import time
from typing import AsyncIterator, Optional

import httpx
from fastapi import Request
from fastapi.responses import Response, StreamingResponse
from opentelemetry import trace
from starlette.requests import ClientDisconnect
from starlette.types import Receive, Scope, Send

from ai_proxy.exceptions import (
    RequestConstructionFailed,
    RequestReadTimeout,
    UpstreamUnreachable,
)
from ai_proxy.proxy.errors import error_category, log_upstream_failure
from ai_proxy.proxy.headers import (
    client_address,
    is_event_stream,
    sanitize_request_headers,
    sanitize_response_headers,
    strip_hop_by_hop,
)
from ai_proxy.routing import Route
from ai_proxy.utils.traced_requests import traced_request
from ai_proxy.vars import (
    FLUSH_INTERVAL,
    IDLE_TIMEOUT,
    MAX_KEEPALIVE_CONNECTIONS,
    REQUEST_READ_TIMEOUT,
    SLOW_REQUEST_SECONDS,
    UPSTREAM_CONNECT_TIMEOUT,
)

logger = logging.getLogger("uvicorn.error")
tracer = trace.get_tracer(__name__)

# nginx convention for "client closed request"
CLIENT_CLOSED_REQUEST = 499


class ClientDisconnected(Exception):
    """The client went away before the upstream answered."""


def build_upstream_client(
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    client = httpx.AsyncClient(
        transport=transport,
        # No read/write limit: streams may run for as long as upstream sends.
        timeout=httpx.Timeout(None, connect=UPSTREAM_CONNECT_TIMEOUT),
        limits=httpx.Limits(
            max_connections=None,
            max_keepalive_connections=MAX_KEEPALIVE_CONNECTIONS,
            keepalive_expiry=IDLE_TIMEOUT,
        ),
        follow_redirects=False,
    )
    # Upstream sees only the caller's headers, not httpx's Accept-Encoding
    # and User-Agent defaults.
    client.headers.clear()
    return client


def build_upstream_url(route: Route, residual: str, query: str) -> str:
    url = f"{route.origin}{residual}"
    if query:
        url = f"{url}?{query}"
    return url


def _has_body(request: Request) -> bool:
    if "transfer-encoding" in request.headers:
        return True
    return request.headers.get("content-length", "0").strip() not in ("", "0")


async def _next_chunk(chunks: AsyncIterator[bytes]) -> Optional[bytes]:
    try:
        return await chunks.__anext__()
    except StopAsyncIteration:
        return None


async def _cancel_and_wait(task: asyncio.Task) -> None:
    if not task.done():
        task.cancel()
    await asyncio.wait({task})
    if not task.cancelled():
        task.exception()


async def _wait_for_disconnect(
    request: Request, body_sent: Optional[asyncio.Event] = None
) -> None:
    if body_sent is not None:
        # The body upload owns the receive channel until it is complete.
        await body_sent.wait()
    while True:
        message = await request.receive()
        if message["type"] == "http.disconnect":
            return


class Exchange:
    """State of one upstream response while it is relayed to the client."""

    def __init__(
        self,
        upstream: httpx.Response,
        route: Route,
        path: str,
        client: str,
        started: float,
    ):
        self.upstream = upstream
        self.route = route
        self.path = path
        self.client = client
        self.started = started
        self.pending: Optional[asyncio.Task] = None
        self.client_disconnected = False
        self.failed = False
        self._closed = False

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            if self.pending is not None:
                await _cancel_and_wait(self.pending)
                self.pending = None
        finally:
            await self.upstream.aclose()
            self._log_completion()

    def _log_completion(self) -> None:
        duration = time.monotonic() - self.started
        status = self.upstream.status_code
        if self.client_disconnected:
            logger.info(
                f"[RES] {status} | {duration:.3f}s | {self.path} -> {self.route.origin}"
                f" | client disconnected, upstream closed"
            )
        elif status != 200 or duration > SLOW_REQUEST_SECONDS:
            logger.info(
                f"[RES] {status} | {duration:.3f}s | {self.path} -> {self.route.origin}"
            )


class UpstreamStreamingResponse(StreamingResponse):
    """
    Streams an upstream body and closes the upstream exchange when done.

    Closing runs after Starlette has torn down its disconnect-watching task
    group, so it is never inside a cancelled scope.
    """

    def __init__(self, exchange: Exchange, content, **kwargs):
        super().__init__(content, **kwargs)
        self.exchange = exchange

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            try:
                await self.body_iterator.aclose()
            finally:
                await self.exchange.close()


class Forwarder:
    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        flush_interval: float = FLUSH_INTERVAL,
        read_timeout: float = REQUEST_READ_TIMEOUT,
    ):
        self._client = client or build_upstream_client()
        self.flush_interval = flush_interval
        self.read_timeout = read_timeout

    async def aclose(self) -> None:
        await self._client.aclose()

    async def forward(self, request: Request, route: Route, residual: str) -> Response:
        """
        Proxy ``request`` to ``route`` with ``residual`` as the upstream path.

        Raises ``RequestConstructionFailed`` or ``UpstreamUnreachable``; both
        are turned into client responses by the registered error handlers.
        """
        loop = asyncio.get_running_loop()
        started = time.monotonic()
        deadline = loop.time() + self.read_timeout
        client = client_address(request)
        path = request.url.path
        query = request.scope.get("query_string", b"").decode("latin-1")
        target = build_upstream_url(route, residual, query)
        has_body = _has_body(request)
        body_sent = asyncio.Event() if has_body else None

        with traced_request(
            tracer,
            operation="proxy_request",
            client=client,
            target_host=route.host,
            start_message=f"[Proxy] {request.method} {path} -> {route.host}{residual}",
            extra_attrs={"proxy.method": request.method},
            level=logging.DEBUG,
        ) as span:
            try:
                outbound = self._client.build_request(
                    request.method,
                    target,
                    headers=sanitize_request_headers(request.headers.items(), route),
                    content=(
                        self._request_body(request, deadline, body_sent)
                        if has_body
                        else None
                    ),
                )
            except (httpx.InvalidURL, ValueError, TypeError) as exc:
                span.set_attribute("proxy.error", "request_construction")
                raise RequestConstructionFailed(
                    f"Cannot build {request.method} request for {route.host}", exc
                ) from exc

            try:
                upstream = await self._send(request, outbound, body_sent)
            except (ClientDisconnected, ClientDisconnect):
                span.set_attribute("proxy.error", "client_disconnected")
                logger.info(
                    f"[RES] {CLIENT_CLOSED_REQUEST} | {path} -> {route.origin}"
                    f" | client disconnected before upstream answered"
                )
                return Response(status_code=CLIENT_CLOSED_REQUEST)
            except (httpx.TransportError, RequestReadTimeout) as exc:
                span.set_attribute("proxy.error", error_category(exc))
                raise UpstreamUnreachable(route.host, exc) from exc

            span.set_attribute("proxy.status_code", upstream.status_code)

        upstream_headers = upstream.headers.multi_items()
        headers = sanitize_response_headers(strip_hop_by_hop(upstream_headers))
        exchange = Exchange(upstream, route, path, client, started)
        immediate = self.flush_interval <= 0 or is_event_stream(upstream_headers)

        response = UpstreamStreamingResponse(
            exchange,
            self._relay(exchange, immediate),
            status_code=upstream.status_code,
        )
        response.raw_headers = [
            (name.lower().encode("latin-1"), value.encode("latin-1"))
            for name, value in headers
        ]
        return response

    async def _request_body(
        self,
        request: Request,
        deadline: float,
        body_sent: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[bytes]:
        loop = asyncio.get_running_loop()
        chunks = request.stream().__aiter__()
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise RequestReadTimeout(f"request body not received within {self.read_timeout}s")
            try:
                chunk = await asyncio.wait_for(_next_chunk(chunks), remaining)
            except asyncio.TimeoutError:
                raise RequestReadTimeout(
                    f"request body not received within {self.read_timeout}s"
                ) from None
            if chunk is None:
                if body_sent is not None:
                    body_sent.set()
                return
            if chunk:
                yield chunk

    async def _send(
        self,
        request: Request,
        outbound: httpx.Request,
        body_sent: Optional[asyncio.Event],
    ) -> httpx.Response:
        """
        Send ``outbound`` while watching the client connection.

        For uploads the watcher starts once ``body_sent`` is set; until then a
        disconnect surfaces from the body stream as ``ClientDisconnect``.
        """
        send_task = asyncio.create_task(self._client.send(outbound, stream=True))
        watcher = asyncio.create_task(_wait_for_disconnect(request, body_sent))
        try:
            done, _pending = await asyncio.wait(
                {send_task, watcher}, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            send_task.cancel()
            watcher.cancel()
            raise

        if send_task in done:
            await _cancel_and_wait(watcher)
            return send_task.result()

        await _cancel_and_wait(send_task)
        if not send_task.cancelled() and send_task.exception() is None:
            await send_task.result().aclose()
        raise ClientDisconnected()

    async def _relay(self, exchange: Exchange, immediate: bool) -> AsyncIterator[bytes]:
        """
        Yield the upstream body in arrival order.

        With ``immediate`` every chunk is passed on as soon as it arrives.
        Otherwise chunks are coalesced and flushed no later than
        ``flush_interval`` seconds after the first buffered byte.
        """
        chunks = exchange.upstream.aiter_raw().__aiter__()
        try:
            if immediate:
                async for chunk in chunks:
                    yield chunk
                return

            loop = asyncio.get_running_loop()
            buffer = bytearray()
            flush_at = 0.0
            while True:
                if exchange.pending is None:
                    exchange.pending = asyncio.create_task(_next_chunk(chunks))
                timeout = max(flush_at - loop.time(), 0.0) if buffer else None
                done, _ = await asyncio.wait({exchange.pending}, timeout=timeout)
                if not done:
                    yield bytes(buffer)
                    buffer.clear()
                    continue

                task, exchange.pending = exchange.pending, None
                chunk = task.result()
                if chunk is None:
                    break
                if not buffer:
                    flush_at = loop.time() + self.flush_interval
                buffer += chunk
                if loop.time() >= flush_at:
                    yield bytes(buffer)
                    buffer.clear()
            if buffer:
                yield bytes(buffer)
        except (httpx.HTTPError, httpx.StreamError) as exc:
            # Status and headers are already on the wire; all that is left is
            # ending the stream.
            exchange.failed = True
            log_upstream_failure(exchange.client, exchange.route.host, exc)
        except (asyncio.CancelledError, GeneratorExit):
            exchange.client_disconnected = True
            raise
