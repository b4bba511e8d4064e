import importlib


def test_proxy_routes_parsing(monkeypatch):
    monkeypatch.setenv(
        "PROXY_ROUTES", "/local=http://127.0.0.1:9000, /echo=https://echo.example.com,"
    )
    import ai_proxy.vars as vars_module

    importlib.reload(vars_module)

    mapping = getattr(vars_module, "PROXY_ROUTES", None)
    assert mapping == {
        "/local": "http://127.0.0.1:9000",
        "/echo": "https://echo.example.com",
    }


def test_proxy_routes_skips_malformed_entries(monkeypatch):
    monkeypatch.setenv("PROXY_ROUTES", "/nothing,=https://x.example.com,/ok=http://a")
    import ai_proxy.vars as vars_module

    importlib.reload(vars_module)

    assert vars_module.PROXY_ROUTES == {"/ok": "http://a"}


def test_defaults(monkeypatch):
    for name in ("PROXY_ROUTES", "PORT", "FLUSH_INTERVAL", "IDLE_TIMEOUT"):
        monkeypatch.delenv(name, raising=False)
    import ai_proxy.vars as vars_module

    importlib.reload(vars_module)

    assert vars_module.PROXY_ROUTES == {}
    assert vars_module.PORT == 7890
    assert vars_module.FLUSH_INTERVAL == 0.1
    assert vars_module.IDLE_TIMEOUT == 60.0
