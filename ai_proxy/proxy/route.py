import logging

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse, PlainTextResponse, Response

from ai_proxy.home import ROBOTS_TXT, render_home
from ai_proxy.proxy.headers import client_address
from ai_proxy.routing import match_route

router = APIRouter()
logger = logging.getLogger("uvicorn.error")

PROXY_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]


def request_path(request: Request) -> str:
    """The path as the client sent it, percent-escapes intact."""
    raw_path = request.scope.get("raw_path")
    if raw_path:
        return raw_path.split(b"?", 1)[0].decode("latin-1")
    return request.url.path


@router.get("/", response_class=HTMLResponse)
@router.get("/index.html", response_class=HTMLResponse)
async def home(request: Request):
    return HTMLResponse(render_home(request.app.state.route_table))


@router.get("/robots.txt", response_class=PlainTextResponse)
async def robots():
    return PlainTextResponse(ROBOTS_TXT)


@router.api_route("/{path:path}", methods=PROXY_METHODS)
async def proxy_all(request: Request, path: str) -> Response:
    """Catch-all route that forwards to the origin registered for the prefix."""
    target_path = request_path(request)
    logger.info(f"[REQ] {request.method} {target_path} from {client_address(request)}")

    # RouteNotFound propagates to the registered handler (404, no upstream contact).
    match = match_route(request.app.state.route_table, target_path)
    return await request.app.state.forwarder.forward(
        request, match.route, match.residual
    )
