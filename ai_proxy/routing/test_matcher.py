import pytest

from ai_proxy.exceptions import RouteNotFound
from ai_proxy.routing import DEFAULT_ROUTES, RouteTable, match_route


@pytest.fixture
def default_table():
    return RouteTable.from_mapping(DEFAULT_ROUTES)


@pytest.mark.parametrize("prefix", sorted(DEFAULT_ROUTES))
def test_bare_prefix_maps_to_root(default_table, prefix):
    match = match_route(default_table, prefix)
    assert match.route.prefix == prefix
    assert match.route.origin == DEFAULT_ROUTES[prefix]
    assert match.residual == "/"


@pytest.mark.parametrize("prefix", sorted(DEFAULT_ROUTES))
def test_prefix_with_rest_is_stripped(default_table, prefix):
    match = match_route(default_table, f"{prefix}/v1/chat/completions")
    assert match.route.prefix == prefix
    assert match.residual == "/v1/chat/completions"


def test_trailing_slash_keeps_root(default_table):
    assert match_route(default_table, "/openai/").residual == "/"


def test_double_slash_after_prefix_preserved_verbatim(default_table):
    # The client's own path is kept as is; the matcher adds no slashes.
    assert match_route(default_table, "/openai//v1").residual == "//v1"


@pytest.mark.parametrize(
    "path",
    ["/unknown/x", "/openaix", "/openaix/v1", "/", "", "openai/v1", "/OPENAI/v1"],
)
def test_unmatched_paths_raise(default_table, path):
    with pytest.raises(RouteNotFound) as exc_info:
        match_route(default_table, path)
    assert exc_info.value.path == path
    assert exc_info.value.status_code == 404


def test_matching_is_repeatable(default_table):
    first = match_route(default_table, "/claude/v1/messages")
    for _ in range(5):
        assert match_route(default_table, "/claude/v1/messages") == first


def test_percent_escapes_are_kept_in_residual(default_table):
    match = match_route(default_table, "/gemini/v1/models/a%2Fb:generate")
    assert match.residual == "/v1/models/a%2Fb:generate"
