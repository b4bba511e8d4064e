"""
Translation of proxy failures into client responses and log records.

Clients get a status code and a fixed, structured message; the underlying
exception (which may name internal addresses) only goes to the log.
"""

import logging

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from ai_proxy.exceptions import (
    ProxyError,
    RequestConstructionFailed,
    RequestReadTimeout,
    RouteNotFound,
    UpstreamUnreachable,
)
from ai_proxy.proxy.headers import client_address

logger = logging.getLogger("uvicorn.error")

GENERIC_INTERNAL_MESSAGE = "Internal proxy error"

# Ordered most specific first: ConnectTimeout is both a TimeoutException and
# a TransportError.
_CATEGORIES = (
    (RequestReadTimeout, "request read timeout"),
    (httpx.ConnectTimeout, "connect timeout"),
    (httpx.ConnectError, "connection failed"),
    (httpx.TimeoutException, "timeout"),
    (httpx.RemoteProtocolError, "protocol error"),
    (httpx.LocalProtocolError, "protocol error"),
    (httpx.ReadError, "connection reset"),
    (httpx.WriteError, "connection reset"),
    (httpx.NetworkError, "network error"),
)


def error_category(exc: BaseException) -> str:
    """A fixed phrase describing ``exc`` that is safe to show to clients."""
    for exc_type, category in _CATEGORIES:
        if isinstance(exc, exc_type):
            return category
    return "upstream error"


def error_body(message: str) -> dict:
    return {"error": {"message": message, "type": "proxy_error"}}


def log_upstream_failure(client: str, host: str, exc: BaseException) -> None:
    logger.error(f"[ERROR] Client: {client} | Target: {host} | Error: {exc!r}")


def translate(exc: ProxyError, client: str) -> Response:
    """Log ``exc`` and build the response the client receives for it."""
    if isinstance(exc, RouteNotFound):
        logger.info(f"[404] Path: {exc.path} | IP: {client}")
        return PlainTextResponse("Not Found", status_code=404)

    if isinstance(exc, UpstreamUnreachable):
        log_upstream_failure(client, exc.host, exc.cause or exc)
        message = f"Proxy Connection Error: {error_category(exc.cause or exc)}"
        return JSONResponse(error_body(message), status_code=exc.status_code)

    if isinstance(exc, RequestConstructionFailed):
        logger.error(f"[ERROR] Client: {client} | Request construction failed: {exc}")
    else:
        logger.error(f"[ERROR] Client: {client} | {type(exc).__name__}: {exc}")
    return JSONResponse(
        error_body(GENERIC_INTERNAL_MESSAGE), status_code=exc.status_code
    )


async def proxy_error_handler(request: Request, exc: ProxyError) -> Response:
    return translate(exc, client_address(request))


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ProxyError, proxy_error_handler)
