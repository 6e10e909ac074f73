"""Tabular store port.

The merge engine only talks to a host document through this protocol. Every
operation is a suspension point; callers await them one at a time.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol, Sequence

from sheetmerge.core.store.models import Field, FieldSpec, Record, ScanPage, Table


class StoreError(Exception):
    """Any failure reported by a tabular store."""


class TableNotFoundError(StoreError):
    def __init__(self, table_id: str):
        self.table_id = table_id
        super().__init__(f"table not found: {table_id}")


class FieldNotFoundError(StoreError):
    def __init__(self, table_id: str, field_id: str):
        self.table_id = table_id
        self.field_id = field_id
        super().__init__(f"field not found: {field_id} (table={table_id})")


class TabularStore(Protocol):
    async def list_tables(self) -> List[Table]:
        ...

    async def get_table(self, table_id: str) -> Optional[Table]:
        ...

    async def create_table(self, name: str, field_specs: Sequence[FieldSpec]) -> Table:
        ...

    async def delete_table(self, table_id: str) -> None:
        ...

    async def list_fields(self, table_id: str) -> List[Field]:
        ...

    async def create_field(self, table_id: str, spec: FieldSpec) -> Field:
        ...

    async def delete_field(self, table_id: str, field_id: str) -> None:
        ...

    async def add_options(self, table_id: str, field_id: str, names: Sequence[str]) -> Field:
        ...

    async def scan_records(self, table_id: str, page_size: int, cursor: Optional[str] = None) -> ScanPage:
        ...

    async def insert_records(self, table_id: str, value_maps: Sequence[Dict[str, Any]]) -> List[Record]:
        ...

    async def delete_records(self, table_id: str, record_ids: Sequence[str]) -> None:
        ...
