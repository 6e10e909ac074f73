from __future__ import annotations

import logging
import time
import uuid
from typing import Callable

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response

from sheetmerge.api.observability.metrics import (
    HTTP_REQUESTS_TOTAL,
    HTTP_REQUEST_DURATION_SECONDS,
    normalize_path,
)

log = logging.getLogger("sheetmerge.request")

# probes and scrapes are not worth a log line each
_QUIET_PREFIXES = ("/health", "/metrics", "/api/v1/health")


def _json_log(event: str, **fields):
    # Structured log in a single line; request bodies are never logged.
    msg = {"event": event, **fields}
    log.info("%s", msg)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Request ID + one structured log line per request.

    Adds:
      request.state.request_id
      response header: X-Request-Id
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        rid = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = rid

        start = time.time()
        resp = await call_next(request)
        dur_ms = int((time.time() - start) * 1000)

        resp.headers["X-Request-Id"] = rid

        # Prometheus metrics (low-cardinality path)
        p = normalize_path(request.url.path)
        m = request.method.upper()
        s = str(getattr(resp, "status_code", 0))
        HTTP_REQUESTS_TOTAL.labels(method=m, path=p, status=s).inc()
        HTTP_REQUEST_DURATION_SECONDS.labels(method=m, path=p).observe(dur_ms / 1000.0)

        if not request.url.path.startswith(_QUIET_PREFIXES):
            _json_log(
                "request",
                request_id=rid,
                method=request.method,
                path=request.url.path,
                status_code=resp.status_code,
                duration_ms=dur_ms,
            )
        return resp


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Very small in-memory rate limit (best-effort), per client ip and minute.
    Controlled by:
      SHEETMERGE_RATE_LIMIT_ENABLED=true/false
      SHEETMERGE_RATE_LIMIT_RPM=120  (requests per minute)
    Health probes and the metrics scrape are never limited.
    """

    def __init__(self, app, enabled: bool = False, rpm: int = 120):
        super().__init__(app)
        self.enabled = enabled
        self.rpm = max(10, int(rpm))
        self._bucket = {}  # key -> (window_start_epoch_minute, count)

    def _key(self, request: Request) -> str:
        xf = request.headers.get("x-forwarded-for")
        if xf:
            return xf.split(",")[0].strip()
        return request.client.host if request.client else "unknown"

    def _prune(self, minute: int) -> None:
        """Drop clients whose window is older than the current minute."""
        stale = [k for k, (win, _) in self._bucket.items() if win < minute]
        for k in stale:
            del self._bucket[k]

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if not self.enabled or request.url.path.startswith(_QUIET_PREFIXES):
            return await call_next(request)

        key = self._key(request)
        minute = int(time.time() // 60)

        win, cnt = self._bucket.get(key, (minute, 0))
        if win != minute:
            win, cnt = minute, 0
        if key not in self._bucket or self._bucket[key][0] != minute:
            self._prune(minute)

        cnt += 1
        self._bucket[key] = (win, cnt)

        if cnt > self.rpm:
            return JSONResponse(status_code=429, content={"code": "rate_limited", "message": "Rate limit exceeded"})

        return await call_next(request)
