from fastapi import FastAPI
from fastapi.testclient import TestClient

from sheetmerge.api.middleware.error_shaping import SafeErrorMiddleware
from sheetmerge.api.middleware.request_context import RateLimitMiddleware, RequestContextMiddleware
from sheetmerge.api.observability.metrics import normalize_path


def _app(**rate_limit):
    app = FastAPI()

    @app.get("/tables")
    def tables():
        return {"tables": []}

    @app.get("/boom")
    def boom():
        raise RuntimeError("secret connection string")

    @app.get("/health/live")
    def live():
        return {"status": "ok"}

    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(RateLimitMiddleware, **rate_limit)
    app.add_middleware(SafeErrorMiddleware)
    return app


def test_rate_limit_per_client():
    c = TestClient(_app(enabled=True, rpm=10))
    headers = {"X-Forwarded-For": "1.2.3.4"}

    codes = [c.get("/tables", headers=headers).status_code for _ in range(11)]
    assert codes[:10] == [200] * 10
    assert codes[10] == 429

    # other clients and probes are unaffected
    assert c.get("/tables", headers={"X-Forwarded-For": "5.6.7.8"}).status_code == 200
    assert c.get("/health/live", headers=headers).status_code == 200


def test_rate_limit_off_by_default():
    c = TestClient(_app())
    assert all(c.get("/tables").status_code == 200 for _ in range(15))


def test_unhandled_errors_are_shaped():
    c = TestClient(_app())
    r = c.get("/boom", headers={"X-Request-Id": "rid-1"})
    assert r.status_code == 500
    assert r.json() == {"code": "internal_error", "message": "Internal Server Error", "request_id": "rid-1"}
    assert "secret" not in r.text
    assert "Traceback" not in r.text


def test_normalize_path_collapses_ids():
    assert normalize_path("/tables/tbl12/fields") == "/tables/:table/fields"
    assert normalize_path("/api/v1/tables/abc-def/fields") == "/api/v1/tables/:table/fields"
    assert normalize_path("/presets/weekly/merge") == "/presets/:name/merge"
    assert normalize_path("/api/v1/presets/weekly") == "/api/v1/presets/:name"
    assert normalize_path("/merge") == "/merge"
    assert normalize_path("") == "/"


def _request(client_ip):
    from starlette.requests import Request

    return Request({
        "type": "http",
        "method": "GET",
        "scheme": "http",
        "server": ("testserver", 80),
        "path": "/tables",
        "query_string": b"",
        "headers": [(b"x-forwarded-for", client_ip.encode())],
        "client": ("127.0.0.1", 1234),
    })


def test_rate_limit_forgets_clients_from_past_windows(monkeypatch):
    import asyncio

    from starlette.responses import PlainTextResponse

    from sheetmerge.api.middleware import request_context

    async def call_next(request):
        return PlainTextResponse("ok")

    mw = RateLimitMiddleware(FastAPI(), enabled=True, rpm=10)
    now = [600.0]
    monkeypatch.setattr(request_context.time, "time", lambda: now[0])

    for ip in ("1.1.1.1", "2.2.2.2", "3.3.3.3"):
        asyncio.run(mw.dispatch(_request(ip), call_next))
    assert set(mw._bucket) == {"1.1.1.1", "2.2.2.2", "3.3.3.3"}

    now[0] += 60
    asyncio.run(mw.dispatch(_request("4.4.4.4"), call_next))
    assert mw._bucket == {"4.4.4.4": (11, 1)}
