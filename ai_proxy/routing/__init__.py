from .table import DEFAULT_ROUTES, Route, RouteTable, load_route_table
from .matcher import RouteMatch, match_route

__all__ = [
    "DEFAULT_ROUTES",
    "Route",
    "RouteTable",
    "load_route_table",
    "RouteMatch",
    "match_route",
]
