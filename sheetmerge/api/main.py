from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from sheetmerge.api.endpoints import health, merge, presets, tables
from sheetmerge.api.endpoints import metrics_export
from sheetmerge.api.middleware.error_shaping import SafeErrorMiddleware, merge_error_handler
from sheetmerge.api.middleware.request_context import RateLimitMiddleware, RequestContextMiddleware
from sheetmerge.core.config import Settings, load_settings
from sheetmerge.core.merge.errors import MergeError
from sheetmerge.core.store.memory import InMemoryTabularStore

log = logging.getLogger("sheetmerge")


def build_store(settings: Settings) -> InMemoryTabularStore:
    if settings.seed_file is None:
        return InMemoryTabularStore()
    if not settings.seed_file.exists():
        log.warning("seed file %s does not exist; starting with an empty store", settings.seed_file)
        return InMemoryTabularStore()
    store = InMemoryTabularStore.from_file(settings.seed_file)
    log.info("seeded store from %s", settings.seed_file)
    return store


settings = load_settings()
log.setLevel(settings.log_level)

app = FastAPI(
    title="Sheet Merge API",
    version="0.1.0",
)
app.state.settings = settings
app.state.store = build_store(settings)

# ------------------------------------------------------------
# Middleware stack (ORDER MATTERS)
# Note: Starlette reverses add_middleware order: the LAST call = OUTERMOST wrapper.
# Desired runtime order (outermost → innermost):
#   SafeErrorMiddleware → CORSMiddleware → RateLimit → RequestContext → handler
# ------------------------------------------------------------

# Request context (request_id + metrics increment)
app.add_middleware(RequestContextMiddleware)

# Rate limiting (off by default)
app.add_middleware(RateLimitMiddleware, enabled=settings.rate_limit_enabled, rpm=settings.rate_limit_rpm)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# SafeErrorMiddleware LAST = outermost (catches all exceptions from inner middleware)
app.add_middleware(SafeErrorMiddleware)

app.add_exception_handler(MergeError, merge_error_handler)


# ------------------------------------------------------------
# Unversioned
# ------------------------------------------------------------
app.include_router(health.router)
app.include_router(metrics_export.router)
app.include_router(merge.router)
app.include_router(tables.router)
app.include_router(presets.router)


# ------------------------------------------------------------
# Versioned
#   - health defines its own /api/v1/* routes
#   - metrics stay unversioned (scrape target)
# ------------------------------------------------------------
app.include_router(merge.router, prefix="/api/v1")
app.include_router(tables.router, prefix="/api/v1")
app.include_router(presets.router, prefix="/api/v1")


@app.get("/health")
def health_check():
    return {"status": "healthy"}
