"""
Exception taxonomy of the proxy.

Every failure a client can observe maps to exactly one ``ProxyError``
subclass; the status code travels with the exception and the translation to
an HTTP response lives in ``ai_proxy.proxy.errors``.
"""

from typing import Optional


class RouteConfigurationError(ValueError):
    """Raised at startup when the static route table is invalid."""


class ProxyError(Exception):
    status_code: int = 500

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class RouteNotFound(ProxyError):
    """No configured prefix matches the request path."""

    status_code = 404

    def __init__(self, path: str):
        super().__init__(f"No route for path {path!r}")
        self.path = path


class UpstreamUnreachable(ProxyError):
    """Connecting to, or reading from, the upstream origin failed."""

    status_code = 502

    def __init__(self, host: str, cause: BaseException):
        super().__init__(f"Upstream {host} unreachable: {cause!r}", cause)
        self.host = host


class RequestConstructionFailed(ProxyError):
    """The outbound request could not be built from the client request."""

    status_code = 500


class RequestReadTimeout(Exception):
    """The client did not finish sending its request body in time."""
