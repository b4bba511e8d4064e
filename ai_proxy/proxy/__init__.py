"""
Reverse proxy core: header rewriting, forwarding engine and error translation.

Request flow::

    client -> route.proxy_all -> routing.match_route
           -> headers.sanitize_request_headers -> Forwarder.forward (httpx)
           -> headers.sanitize_response_headers -> streamed back to client

Failures raise ``ai_proxy.exceptions.ProxyError`` subclasses which
``errors.register_error_handlers`` turns into 404/500/502 responses.
"""

from .forwarder import Forwarder, build_upstream_client
from .errors import register_error_handlers

__all__ = ["Forwarder", "build_upstream_client", "register_error_handlers"]
