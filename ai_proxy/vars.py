import os

SERVICE_NAME = os.getenv("SERVICE_NAME", "ai-api-proxy")
VERSION = "1.2.0"

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "7890"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "info").lower()

# Seconds between flushes of buffered (non event-stream) response bodies.
# Zero or negative relays every chunk as soon as it arrives.
FLUSH_INTERVAL = float(os.getenv("FLUSH_INTERVAL", "0.1"))

# Upper bound for receiving a full client request (headers + body).
REQUEST_READ_TIMEOUT = float(os.getenv("REQUEST_READ_TIMEOUT", "600"))
UPSTREAM_CONNECT_TIMEOUT = float(os.getenv("UPSTREAM_CONNECT_TIMEOUT", "30"))
# Idle keep-alive time for pooled upstream and inbound client connections.
IDLE_TIMEOUT = float(os.getenv("IDLE_TIMEOUT", "60"))
MAX_KEEPALIVE_CONNECTIONS = int(os.getenv("MAX_KEEPALIVE_CONNECTIONS", "100"))

SLOW_REQUEST_SECONDS = float(os.getenv("SLOW_REQUEST_SECONDS", "5"))

OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT")
OTLP_HEADERS = os.getenv("OTLP_HEADERS", "")


def _parse_route_mapping(raw: str) -> dict:
    mapping: dict = {}
    if not raw:
        return mapping
    for entry in raw.split(","):
        entry = entry.strip()
        if not entry:
            continue
        if "=" in entry:
            prefix, origin = entry.split("=", 1)
            prefix = prefix.strip()
            origin = origin.strip()
            if prefix and origin:
                mapping[prefix] = origin
    return mapping


# "/prefix=https://origin,..." replaces the built-in provider table when set.
PROXY_ROUTES = _parse_route_mapping(os.getenv("PROXY_ROUTES", ""))
