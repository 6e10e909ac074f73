from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Set

from fastapi import APIRouter, Depends, HTTPException

from sheetmerge.api.deps import get_orchestrator
from sheetmerge.core.merge.models import MergeMode, MergeRequest, MergeResult
from sheetmerge.core.merge.orchestrator import MergeOrchestrator

router = APIRouter(tags=["merge"])

# Targets with a merge in flight. The engine itself takes no locks; two merges
# writing the same table would interleave records, so the HTTP layer refuses
# the second one instead.
_active_targets: Set[str] = set()


async def _target_key(orchestrator: MergeOrchestrator, req: MergeRequest) -> str:
    if req.mode == MergeMode.CREATE:
        return "new:" + (req.new_table_name or "").strip().casefold()
    target = await orchestrator.resolve_target(req)
    return "id:" + target.id


@asynccontextmanager
async def target_guard(orchestrator: MergeOrchestrator, req: MergeRequest) -> AsyncIterator[None]:
    key = await _target_key(orchestrator, req)
    if key in _active_targets:
        raise HTTPException(
            status_code=409,
            detail={"code": "target_busy", "message": "another merge is writing to this target table"},
        )
    _active_targets.add(key)
    try:
        yield
    finally:
        _active_targets.discard(key)


async def run_merge(orchestrator: MergeOrchestrator, req: MergeRequest) -> MergeResult:
    async with target_guard(orchestrator, req):
        return await orchestrator.merge(req)


@router.post("/merge", response_model=MergeResult)
async def merge_tables(
    req: MergeRequest,
    orchestrator: MergeOrchestrator = Depends(get_orchestrator),
) -> MergeResult:
    return await run_merge(orchestrator, req)
