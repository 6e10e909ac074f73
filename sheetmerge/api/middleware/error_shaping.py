from __future__ import annotations

import logging
import traceback
from typing import Callable, Dict

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response

from sheetmerge.core.merge.errors import MergeError, MergeErrorKind

log = logging.getLogger("sheetmerge.errors")

STATUS_BY_KIND: Dict[MergeErrorKind, int] = {
    MergeErrorKind.INVALID_INPUT: 400,
    MergeErrorKind.NOT_FOUND: 404,
    MergeErrorKind.SCAN_FAILED: 502,
    MergeErrorKind.FIELD_CREATION_FAILED: 502,
    MergeErrorKind.INSERT_FAILED: 502,
    MergeErrorKind.TARGET_PREPARATION_FAILED: 502,
}


def _request_id(request: Request):
    return getattr(request.state, "request_id", None) or request.headers.get("x-request-id")


async def merge_error_handler(request: Request, exc: MergeError) -> JSONResponse:
    """Shape a MergeError as {"code", "message", "context"}; the chained store error stays server-side."""
    status = STATUS_BY_KIND.get(exc.kind, 500)
    if status >= 500:
        log.warning("merge failed upstream rid=%s path=%s: %s (cause=%r)", _request_id(request), request.url.path, exc, exc.__cause__)
    payload = {"code": exc.kind.value, "message": exc.message, "context": exc.context}
    rid = _request_id(request)
    if rid:
        payload["request_id"] = rid
    return JSONResponse(status_code=status, content=payload)


class SafeErrorMiddleware(BaseHTTPMiddleware):
    """
    - Never return stack traces to clients
    - Preserve request_id if present
    - Log traceback server-side
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except Exception as e:
            rid = _request_id(request)
            log.error(
                "Unhandled error: %s rid=%s path=%s\n%s",
                str(e),
                rid,
                request.url.path,
                traceback.format_exc(),
            )
            payload = {"code": "internal_error", "message": "Internal Server Error"}
            if rid:
                payload["request_id"] = rid
            return JSONResponse(status_code=500, content=payload)
