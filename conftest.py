# Ensure tests import the package from this directory first, whether pytest
# is started from the repository root or from inside ai_proxy/.
import json
import os
import sys

import httpx
import pytest
from fastapi.testclient import TestClient

SERVICE_ROOT = os.path.dirname(__file__)

if SERVICE_ROOT not in sys.path:
    sys.path.insert(0, SERVICE_ROOT)

from ai_proxy.proxy import Forwarder, build_upstream_client  # noqa: E402
from ai_proxy.routing import RouteTable  # noqa: E402

TEST_ROUTES = {
    "/openai": "https://api.openai.com",
    "/openrouter": "https://openrouter.ai/api",
    "/local": "http://127.0.0.1:9000",
}


class StreamingBody(httpx.AsyncByteStream):
    """Response body served chunk by chunk, like a real upstream connection."""

    def __init__(self, content: bytes = b"", chunk_size: int = 65536):
        self.content = content
        self.chunk_size = chunk_size
        self.closed = False

    async def __aiter__(self):
        for start in range(0, len(self.content), self.chunk_size):
            yield self.content[start : start + self.chunk_size]

    async def aclose(self):
        self.closed = True


def upstream_response(status_code=200, headers=None, content=b"", json_body=None):
    """
    Build a fake upstream response with an unread, streaming body.

    ``httpx.Response(content=...)`` reads its body eagerly, which leaves
    nothing for ``aiter_raw`` to relay.
    """
    headers = list(headers.items() if isinstance(headers, dict) else headers or [])
    if json_body is not None:
        content = json.dumps(json_body).encode()
        headers.append(("content-type", "application/json"))
    if not any(name.lower() == "content-length" for name, _ in headers):
        headers.append(("content-length", str(len(content))))
    return httpx.Response(status_code, headers=headers, stream=StreamingBody(content))


class RecordingUpstream:
    """Fake upstream origin: records every request and answers via ``handler``."""

    def __init__(self):
        self.requests = []
        self.bodies = []
        self.handler = lambda request: upstream_response(json_body={"ok": True})

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        self.bodies.append(request.content)
        response = self.handler(request)
        if not isinstance(response, httpx.Response):
            response = await response
        return response

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]


@pytest.fixture
def route_table():
    return RouteTable.from_mapping(TEST_ROUTES)


@pytest.fixture
def upstream():
    return RecordingUpstream()


@pytest.fixture
def forwarder(upstream):
    return Forwarder(
        build_upstream_client(httpx.MockTransport(upstream)), flush_interval=0
    )


@pytest.fixture
def proxy_app(route_table, forwarder):
    from ai_proxy.server import create_app

    return create_app(route_table=route_table, forwarder=forwarder, instrument=False)


@pytest.fixture
def client(proxy_app):
    return TestClient(proxy_app)
