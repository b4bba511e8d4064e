"""
Header rewriting around the forwarding step.

Both passes are pure functions over ``(name, value)`` pairs: they never
mutate their input, keep repeated headers in order and are fully determined
by the route and the incoming headers.
"""

from typing import Iterable, List, Tuple

from fastapi import Request

from ai_proxy.routing import Route

HeaderList = List[Tuple[str, str]]

DENIED_EXACT_HEADERS = frozenset(
    {
        "host",
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailers",
        "transfer-encoding",
        "upgrade",
        # client IP as set by CDNs in front of the proxy
        "ali-cdn-real-ip",
        "true-client-ip",
    }
)

# "forward" catches Forwarded, "x-forwarded-" the X-Forwarded-* family.
DENIED_HEADER_PREFIXES = ("cf-", "forward", "cdn", "x-real-ip", "x-forwarded-")

# Per-leg transport headers of the upstream response; the server frames the
# client-side response itself.
HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "proxy-connection",
        "te",
        "trailer",
        "trailers",
        "transfer-encoding",
        "upgrade",
    }
)


def _connection_tokens(headers: HeaderList) -> set:
    tokens = set()
    for name, value in headers:
        if name.lower() == "connection":
            tokens.update(t.strip().lower() for t in value.split(",") if t.strip())
    return tokens


def is_denied_request_header(name: str) -> bool:
    lower = name.lower()
    if lower in DENIED_EXACT_HEADERS:
        return True
    return lower.startswith(DENIED_HEADER_PREFIXES)


def sanitize_request_headers(
    headers: Iterable[Tuple[str, str]], route: Route
) -> HeaderList:
    """
    Headers to send upstream for a client request routed to ``route``.

    Drops the denylisted names and prefixes (case-insensitively), every
    forwarding header (never appended to), and anything the client's
    Connection header marks as hop-by-hop. Host is set to the origin host.
    """
    incoming = list(headers)
    listed = _connection_tokens(incoming)

    sanitized: HeaderList = [("host", route.host)]
    for name, value in incoming:
        if is_denied_request_header(name) or name.lower() in listed:
            continue
        sanitized.append((name, value))
    return sanitized


def strip_hop_by_hop(headers: Iterable[Tuple[str, str]]) -> HeaderList:
    incoming = list(headers)
    listed = _connection_tokens(incoming)
    return [
        (name, value)
        for name, value in incoming
        if name.lower() not in HOP_BY_HOP_HEADERS and name.lower() not in listed
    ]


def is_event_stream(headers: Iterable[Tuple[str, str]]) -> bool:
    return any(
        name.lower() == "content-type" and "event-stream" in value.lower()
        for name, value in headers
    )


def sanitize_response_headers(headers: Iterable[Tuple[str, str]]) -> HeaderList:
    """
    Headers to send to the client for an upstream response.

    Additive only: disables intermediate buffering on every response and,
    for event streams, forces ``Cache-Control: no-cache`` and
    ``Connection: keep-alive``. Nothing else upstream sent is removed.
    """
    incoming = list(headers)
    forced = [("x-accel-buffering", "no")]
    if is_event_stream(incoming):
        forced += [("cache-control", "no-cache"), ("connection", "keep-alive")]

    overridden = {name for name, _ in forced}
    sanitized = [(n, v) for n, v in incoming if n.lower() not in overridden]
    sanitized.extend(forced)
    return sanitized


def client_address(request: Request) -> str:
    """Best-known client address, preferring what the CDN in front reports."""
    cdn_ip = request.headers.get("ali-cdn-real-ip")
    if cdn_ip:
        return cdn_ip
    xff = request.headers.get("x-forwarded-for")
    if xff:
        return xff.split(",")[0].strip()
    return request.client.host if request.client else "unknown"
