from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from sheetmerge.api.deps import get_orchestrator, get_preset_store
from sheetmerge.api.endpoints.merge import run_merge
from sheetmerge.core.merge.models import MergeRequest, MergeResult
from sheetmerge.core.merge.orchestrator import MergeOrchestrator
from sheetmerge.core.presets.store import MergePreset, MergePresetStore

router = APIRouter(prefix="/presets", tags=["presets"])


class SavePresetRequest(BaseModel):
    name: str
    request: MergeRequest


def _missing(name: str) -> HTTPException:
    return HTTPException(
        status_code=404,
        detail={"code": "preset_not_found", "message": f"no preset named {name!r} (it may have expired)"},
    )


def _get_or_404(presets: MergePresetStore, name: str) -> MergePreset:
    preset = presets.get(name)
    if preset is None:
        raise _missing(name)
    return preset


@router.post("", status_code=201)
def save_preset(body: SavePresetRequest, presets: MergePresetStore = Depends(get_preset_store)) -> Dict[str, Any]:
    try:
        preset = presets.save(body.name, body.request)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail={"code": "invalid_input", "message": str(exc)}) from exc
    return preset.to_dict()


@router.get("")
def list_presets(presets: MergePresetStore = Depends(get_preset_store)) -> Dict[str, Any]:
    return {"presets": [p.to_dict() for p in presets.list()]}


@router.get("/{name}")
def get_preset(name: str, presets: MergePresetStore = Depends(get_preset_store)) -> Dict[str, Any]:
    return _get_or_404(presets, name).to_dict()


@router.delete("/{name}")
def delete_preset(name: str, presets: MergePresetStore = Depends(get_preset_store)) -> Dict[str, Any]:
    if not presets.delete(name):
        raise _missing(name)
    return {"deleted": name}


@router.post("/{name}/merge", response_model=MergeResult)
async def run_preset(
    name: str,
    presets: MergePresetStore = Depends(get_preset_store),
    orchestrator: MergeOrchestrator = Depends(get_orchestrator),
) -> MergeResult:
    preset = _get_or_404(presets, name)
    return await run_merge(orchestrator, preset.request)
