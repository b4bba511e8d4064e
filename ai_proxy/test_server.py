import pytest
from fastapi.testclient import TestClient

from ai_proxy.exceptions import RouteConfigurationError
from ai_proxy.home import render_home
from ai_proxy.proxy import Forwarder
from ai_proxy.routing import RouteTable
from ai_proxy.server import create_app, parse_args
from ai_proxy.vars import HOST, PORT, VERSION


def test_homepage_shows_version(client):
    r = client.get("/")
    assert f"AI API Proxy v{VERSION}" in r.text


def test_homepage_escapes_origins():
    page = render_home(RouteTable.from_mapping({"/x": "https://x.example.com/a&b"}))
    assert "https://x.example.com/a&amp;b" in page


def test_invalid_route_table_fails_at_startup(monkeypatch):
    monkeypatch.setattr("ai_proxy.vars.PROXY_ROUTES", {"/bad/": "https://x.example.com"})
    with pytest.raises(RouteConfigurationError):
        create_app(instrument=False)


def test_nested_prefixes_fail_at_startup(monkeypatch):
    monkeypatch.setattr(
        "ai_proxy.vars.PROXY_ROUTES",
        {"/a": "https://a.example.com", "/a/b": "https://b.example.com"},
    )
    with pytest.raises(RouteConfigurationError):
        create_app(instrument=False)


def test_lifespan_owns_forwarder(route_table):
    app = create_app(route_table=route_table, instrument=False)
    assert app.state.forwarder is None

    with TestClient(app) as client:
        assert isinstance(app.state.forwarder, Forwarder)
        assert client.get("/robots.txt").status_code == 200

    assert app.state.forwarder is None


def test_injected_forwarder_is_kept(proxy_app, forwarder):
    with TestClient(proxy_app):
        assert proxy_app.state.forwarder is forwarder
    assert proxy_app.state.forwarder is forwarder


def test_metrics_endpoint(route_table, forwarder, upstream):
    app = create_app(route_table=route_table, forwarder=forwarder, instrument=True)
    with TestClient(app) as client:
        client.get("/openai/v1/models")
        r = client.get("/metrics")

    assert r.status_code == 200
    assert "fastapi_app_info" in r.text
    # /metrics is served locally, never proxied.
    assert [str(req.url) for req in upstream.requests] == ["https://api.openai.com/v1/models"]


class TestParseArgs:
    def test_defaults(self):
        args = parse_args([])
        assert args.port == PORT
        assert args.host == HOST

    def test_port_positional(self):
        assert parse_args(["8080"]).port == 8080

    def test_host_option(self):
        assert parse_args(["--host", "127.0.0.1", "9001"]).host == "127.0.0.1"

    def test_rejects_non_numeric_port(self):
        with pytest.raises(SystemExit):
            parse_args(["http"])
