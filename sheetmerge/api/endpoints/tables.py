from __future__ import annotations

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException

from sheetmerge.api.deps import get_store
from sheetmerge.core.store.base import StoreError, TabularStore

router = APIRouter(prefix="/tables", tags=["tables"])


@router.get("")
async def list_tables(store: TabularStore = Depends(get_store)) -> Dict[str, Any]:
    try:
        tables = await store.list_tables()
    except StoreError as exc:
        raise HTTPException(status_code=502, detail={"code": "store_unavailable", "message": str(exc)}) from exc
    return {"tables": [t.summary() for t in tables]}


@router.get("/{table_id}/fields")
async def list_fields(table_id: str, store: TabularStore = Depends(get_store)) -> Dict[str, Any]:
    try:
        table = await store.get_table(table_id)
    except StoreError as exc:
        raise HTTPException(status_code=502, detail={"code": "store_unavailable", "message": str(exc)}) from exc
    if table is None:
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": f"table {table_id} does not exist"})

    fields: List[Dict[str, Any]] = [f.to_dict() for f in table.fields]
    return {"table_id": table.id, "table_name": table.name, "fields": fields}
