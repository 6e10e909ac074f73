"""Prometheus metrics scrape endpoint.

Read-only: exposes merge, scan and HTTP counters for Prometheus-compatible
collectors, plus a JSON view of the named health counters.
"""

from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from sheetmerge.core.observability.metrics import snapshot_named

router = APIRouter()


@router.get("/metrics", include_in_schema=False)
def prometheus_metrics() -> Response:
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


@router.get("/metrics/named")
def named_metrics():
    return {"counters": snapshot_named()}
