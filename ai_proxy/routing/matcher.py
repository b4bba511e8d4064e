from typing import NamedTuple

from ai_proxy.exceptions import RouteNotFound
from ai_proxy.routing.table import Route, RouteTable


class RouteMatch(NamedTuple):
    route: Route
    residual: str


def match_route(table: RouteTable, path: str) -> RouteMatch:
    """
    Resolve ``path`` to its route and the path left after the prefix.

    ``/openai`` and ``/openai/v1/models`` both match ``/openai``; the residuals
    are ``/`` and ``/v1/models``. ``/openaix`` does not match. The table holds
    single-segment prefixes only, so the first segment is an exact index and
    at most one route can ever match.
    """
    if not path.startswith("/"):
        raise RouteNotFound(path)

    segment = path[1:].split("/", 1)[0]
    route = table.get(segment)
    if route is None:
        raise RouteNotFound(path)

    residual = path[len(route.prefix):]
    if not residual:
        residual = "/"
    return RouteMatch(route, residual)
