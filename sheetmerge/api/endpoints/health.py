from __future__ import annotations

from fastapi import APIRouter, Depends
from starlette.responses import JSONResponse

from sheetmerge.api.deps import get_settings, get_store
from sheetmerge.core.config import Settings
from sheetmerge.core.observability.metrics import inc_named
from sheetmerge.core.store.base import StoreError, TabularStore

router = APIRouter()


# ------------------------------------------------------------
# Unversioned health
# ------------------------------------------------------------
@router.get("/health/live")
async def live():
    inc_named("health_live")
    return {"status": "ok"}


@router.get("/health/ready")
async def ready(store: TabularStore = Depends(get_store), settings: Settings = Depends(get_settings)):
    return await _readiness(store, settings)


# ------------------------------------------------------------
# Versioned health
# ------------------------------------------------------------
@router.get("/api/v1/health/live")
async def liveness():
    inc_named("health_live")
    return {"status": "alive"}


@router.get("/api/v1/health/ready")
async def readiness(store: TabularStore = Depends(get_store), settings: Settings = Depends(get_settings)):
    return await _readiness(store, settings)


async def _readiness(store: TabularStore, settings: Settings):
    """
    Ready when the store answers and the workspace (preset file home) is writable.
    """
    inc_named("health_ready")
    problems: list[str] = []

    try:
        tables = await store.list_tables()
    except StoreError as e:
        problems.append(f"store_unavailable:{type(e).__name__}")
        tables = []

    try:
        settings.workspace_dir.mkdir(parents=True, exist_ok=True)
        probe = settings.workspace_dir / ".sheetmerge_ready_check.tmp"
        probe.write_text("ok", encoding="utf-8")
        probe.unlink()
    except OSError:
        problems.append(f"workspace_not_writable:{settings.workspace_dir}")

    if problems:
        return JSONResponse(
            status_code=503,
            content={"status": "not_ready", "problems": problems},
        )

    return {"status": "ready", "env": settings.env, "tables": len(tables)}
