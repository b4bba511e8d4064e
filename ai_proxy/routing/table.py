"""
Static route table: path prefix -> upstream origin.

The table is built and validated once at process start and never mutated
afterwards, so it is shared between requests without any locking. Prefixes
form a flat namespace: each one is a single top-level path segment, and
validation rejects duplicates and nesting instead of relying on lookup order.
"""

from dataclasses import dataclass
from typing import Dict, Iterator, Mapping, Optional, Tuple
from urllib.parse import urlsplit

from ai_proxy.exceptions import RouteConfigurationError

DEFAULT_ROUTES: Dict[str, str] = {
    "/openai": "https://api.openai.com",
    "/claude": "https://api.anthropic.com",
    "/gemini": "https://generativelanguage.googleapis.com",
    "/meta": "https://www.meta.ai/api",
    "/groq": "https://api.groq.com/openai",
    "/xai": "https://api.x.ai",
    "/cohere": "https://api.cohere.ai",
    "/huggingface": "https://api-inference.huggingface.co",
    "/together": "https://api.together.xyz",
    "/novita": "https://api.novita.ai",
    "/portkey": "https://api.portkey.ai",
    "/fireworks": "https://api.fireworks.ai",
    "/openrouter": "https://openrouter.ai/api",
    "/cerebras": "https://api.cerebras.ai",
}


@dataclass(frozen=True)
class Route:
    prefix: str
    origin: str

    @property
    def host(self) -> str:
        """``host[:port]`` of the origin, used as the outbound Host header."""
        return urlsplit(self.origin).netloc

    @property
    def base_path(self) -> str:
        """Path component of the origin ("" for a bare scheme+host)."""
        return urlsplit(self.origin).path

    @property
    def segment(self) -> str:
        return self.prefix[1:]


def _validate_prefix(prefix: str) -> None:
    if not isinstance(prefix, str) or not prefix.startswith("/"):
        raise RouteConfigurationError(f"Prefix {prefix!r} must start with '/'")
    if prefix == "/":
        raise RouteConfigurationError("The root path '/' cannot be used as a prefix")
    if prefix.endswith("/"):
        raise RouteConfigurationError(f"Prefix {prefix!r} must not end with '/'")


def _validate_segment(prefix: str) -> None:
    segment = prefix[1:]
    if "/" in segment:
        raise RouteConfigurationError(
            f"Prefix {prefix!r} must be a single top-level path segment"
        )
    if "?" in segment or "#" in segment:
        raise RouteConfigurationError(f"Prefix {prefix!r} contains '?' or '#'")


def _validate_origin(prefix: str, origin: str) -> None:
    if not isinstance(origin, str):
        raise RouteConfigurationError(f"Origin for {prefix!r} must be a string")
    parts = urlsplit(origin)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise RouteConfigurationError(
            f"Origin {origin!r} for {prefix!r} must be an absolute http(s) URL"
        )
    if origin.endswith("/"):
        raise RouteConfigurationError(
            f"Origin {origin!r} for {prefix!r} must not end with '/'"
        )
    if parts.query or parts.fragment or "?" in origin or "#" in origin:
        raise RouteConfigurationError(
            f"Origin {origin!r} for {prefix!r} must not carry a query or fragment"
        )


class RouteTable:
    """Immutable, validated set of routes ordered by prefix."""

    __slots__ = ("_routes", "_by_segment")

    def __init__(self, routes):
        routes = sorted(routes, key=lambda r: str(r.prefix))
        for route in routes:
            _validate_prefix(route.prefix)
            _validate_origin(route.prefix, route.origin)

        seen = set()
        for route in routes:
            if route.prefix in seen:
                raise RouteConfigurationError(f"Duplicate prefix {route.prefix!r}")
            seen.add(route.prefix)
        for outer in routes:
            for inner in routes:
                if inner.prefix.startswith(outer.prefix + "/"):
                    raise RouteConfigurationError(
                        f"Prefix {inner.prefix!r} is nested under {outer.prefix!r}"
                    )

        for route in routes:
            _validate_segment(route.prefix)

        self._routes: Tuple[Route, ...] = tuple(routes)
        self._by_segment: Mapping[str, Route] = {r.segment: r for r in routes}

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, str]) -> "RouteTable":
        return cls(Route(prefix, origin) for prefix, origin in mapping.items())

    def get(self, segment: str) -> Optional[Route]:
        return self._by_segment.get(segment)

    def items(self) -> Iterator[Tuple[str, str]]:
        for route in self._routes:
            yield route.prefix, route.origin

    def __iter__(self) -> Iterator[Route]:
        return iter(self._routes)

    def __len__(self) -> int:
        return len(self._routes)

    def __repr__(self) -> str:
        return f"RouteTable({[r.prefix for r in self._routes]!r})"


def load_route_table(mapping: Optional[Mapping[str, str]] = None) -> RouteTable:
    """Build the process route table from injected mapping, env, or defaults."""
    if mapping is None:
        from ai_proxy.vars import PROXY_ROUTES

        mapping = PROXY_ROUTES or DEFAULT_ROUTES
    return RouteTable.from_mapping(mapping)
