from __future__ import annotations

import itertools
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import yaml

from sheetmerge.core.store.base import FieldNotFoundError, StoreError, TableNotFoundError
from sheetmerge.core.store.models import (
    Field,
    FieldSpec,
    FieldType,
    Option,
    Record,
    ScanPage,
    Table,
    is_select_type,
)
from sheetmerge.core.store.values import decode_cell


@dataclass
class _FieldState:
    id: str
    name: str
    type: str
    is_primary: bool = False
    options: List[Option] = field(default_factory=list)

    def snapshot(self) -> Field:
        return Field(
            id=self.id,
            name=self.name,
            type=self.type,
            is_primary=self.is_primary,
            options=list(self.options),
        )


@dataclass
class _TableState:
    id: str
    name: str
    description: str = ""
    fields: List[_FieldState] = field(default_factory=list)
    # record id -> raw cell values keyed by field name
    records: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    def snapshot(self) -> Table:
        return Table(
            id=self.id,
            name=self.name,
            description=self.description,
            fields=[f.snapshot() for f in self.fields],
        )

    def field_named(self, name: str) -> Optional[_FieldState]:
        return next((f for f in self.fields if f.name == name), None)


class InMemoryTabularStore:
    """Reference TabularStore keeping a whole document in process memory.

    Mirrors the host's observable behavior: store-assigned ids, unique field
    names per table, a non-deletable primary field, cursor pagination, and
    select cells stored as {id, name}.
    """

    def __init__(self):
        self._tables: Dict[str, _TableState] = {}
        self._ids = itertools.count(1)

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}{next(self._ids)}"

    def _table(self, table_id: str) -> _TableState:
        t = self._tables.get(table_id)
        if t is None:
            raise TableNotFoundError(table_id)
        return t

    def _new_field(self, spec: FieldSpec, *, is_primary: bool = False) -> _FieldState:
        name = (spec.name or "").strip()
        if not name:
            raise StoreError("field name must not be empty")
        options: List[Option] = []
        if is_select_type(spec.type):
            seen = set()
            for opt_name in spec.options:
                if opt_name in seen:
                    continue
                seen.add(opt_name)
                options.append(Option(id=self._next_id("opt"), name=opt_name))
        return _FieldState(
            id=self._next_id("fld"),
            name=name,
            type=spec.type,
            is_primary=is_primary,
            options=options,
        )

    # ------------------------------------------------------------------
    # tables
    # ------------------------------------------------------------------

    async def list_tables(self) -> List[Table]:
        return [t.snapshot() for t in self._tables.values()]

    async def get_table(self, table_id: str) -> Optional[Table]:
        t = self._tables.get(table_id)
        return t.snapshot() if t else None

    async def create_table(self, name: str, field_specs: Sequence[FieldSpec], description: str = "") -> Table:
        return self._create_table(name, field_specs, description=description).snapshot()

    def _create_table(self, name: str, field_specs: Sequence[FieldSpec], description: str = "") -> _TableState:
        name = (name or "").strip()
        if not name:
            raise StoreError("table name must not be empty")

        specs = list(field_specs) or [FieldSpec(name="Title", type=FieldType.TEXT.value)]
        names = [s.name for s in specs]
        dupes = sorted({n for n in names if names.count(n) > 1})
        if dupes:
            raise StoreError(f"duplicate field names: {', '.join(dupes)}")

        state = _TableState(id=self._next_id("tbl"), name=name, description=description)
        state.fields = [self._new_field(s, is_primary=(i == 0)) for i, s in enumerate(specs)]
        self._tables[state.id] = state
        return state

    async def delete_table(self, table_id: str) -> None:
        self._table(table_id)
        del self._tables[table_id]

    # ------------------------------------------------------------------
    # fields
    # ------------------------------------------------------------------

    async def list_fields(self, table_id: str) -> List[Field]:
        return [f.snapshot() for f in self._table(table_id).fields]

    async def create_field(self, table_id: str, spec: FieldSpec) -> Field:
        t = self._table(table_id)
        if t.field_named(spec.name.strip()) is not None:
            raise StoreError(f"field name already exists: {spec.name}")
        fs = self._new_field(spec)
        t.fields.append(fs)
        return fs.snapshot()

    async def delete_field(self, table_id: str, field_id: str) -> None:
        t = self._table(table_id)
        fs = next((f for f in t.fields if f.id == field_id), None)
        if fs is None:
            raise FieldNotFoundError(table_id, field_id)
        if fs.is_primary:
            raise StoreError("the primary field cannot be deleted")
        t.fields.remove(fs)
        for raw in t.records.values():
            raw.pop(fs.name, None)

    async def add_options(self, table_id: str, field_id: str, names: Sequence[str]) -> Field:
        t = self._table(table_id)
        fs = next((f for f in t.fields if f.id == field_id), None)
        if fs is None:
            raise FieldNotFoundError(table_id, field_id)
        if not is_select_type(fs.type):
            raise StoreError(f"field {fs.name} does not carry options")
        existing = {o.name for o in fs.options}
        for n in names:
            if n and n not in existing:
                fs.options.append(Option(id=self._next_id("opt"), name=n))
                existing.add(n)
        return fs.snapshot()

    # ------------------------------------------------------------------
    # records
    # ------------------------------------------------------------------

    async def scan_records(self, table_id: str, page_size: int, cursor: Optional[str] = None) -> ScanPage:
        t = self._table(table_id)
        if page_size < 1:
            raise StoreError(f"invalid page size: {page_size}")
        try:
            start = int(cursor) if cursor else 0
        except ValueError as e:
            raise StoreError(f"invalid cursor: {cursor!r}") from e

        ids = list(t.records.keys())
        window = ids[start:start + page_size]
        types = {f.name: f.type for f in t.fields}

        records = []
        for rid in window:
            values = {}
            for name, raw in t.records[rid].items():
                decoded = decode_cell(types.get(name, ""), raw)
                if decoded is not None:
                    values[name] = decoded
            records.append(Record(id=rid, values=values))

        end = start + len(window)
        has_more = end < len(ids)
        return ScanPage(records=records, has_more=has_more, next_cursor=str(end) if has_more else None)

    async def insert_records(self, table_id: str, value_maps: Sequence[Dict[str, Any]]) -> List[Record]:
        t = self._table(table_id)
        # validate the whole batch before writing anything
        prepared = [self._prepare_row(t, vm) for vm in value_maps]
        out = []
        for raw in prepared:
            rid = self._next_id("rec")
            t.records[rid] = raw
            out.append(Record(id=rid))
        return out

    async def delete_records(self, table_id: str, record_ids: Sequence[str]) -> None:
        t = self._table(table_id)
        missing = [rid for rid in record_ids if rid not in t.records]
        if missing:
            raise StoreError(f"records not found: {', '.join(missing)}")
        for rid in record_ids:
            del t.records[rid]

    def _prepare_row(self, t: _TableState, value_map: Dict[str, Any], *, by_name: bool = False) -> Dict[str, Any]:
        raw: Dict[str, Any] = {}
        for name, value in value_map.items():
            fs = t.field_named(name)
            if fs is None:
                raise StoreError(f"unknown field {name!r} in table {t.name!r}")
            if value is None:
                continue
            if fs.type == FieldType.SINGLE_SELECT.value:
                raw[name] = self._resolve_option(fs, value, by_name=by_name)
            elif fs.type == FieldType.MULTI_SELECT.value:
                items = value if isinstance(value, list) else [value]
                raw[name] = [self._resolve_option(fs, v, by_name=by_name) for v in items]
            else:
                raw[name] = value
        return raw

    def _resolve_option(self, fs: _FieldState, value: Any, *, by_name: bool) -> Dict[str, str]:
        if isinstance(value, dict):
            key_id, key_name = value.get("id"), value.get("name")
        elif by_name:
            key_id, key_name = None, value
        else:
            key_id, key_name = value, None

        for opt in fs.options:
            if (key_id is not None and opt.id == key_id) or (key_id is None and opt.name == key_name):
                return opt.to_dict()
        raise StoreError(f"unknown option {value!r} for field {fs.name!r}")

    # ------------------------------------------------------------------
    # seeding
    # ------------------------------------------------------------------

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "InMemoryTabularStore":
        """Build a store from {"tables": [{name, description, fields, records}]}.

        Fields are {name, type, options: [names]}; the first field is the
        primary field. Select cells in records are given by option name.
        """
        store = cls()
        for tdoc in doc.get("tables") or []:
            specs = [
                FieldSpec(
                    name=str(f["name"]),
                    type=str(f.get("type") or FieldType.TEXT.value),
                    options=[str(o) for o in f.get("options") or []],
                )
                for f in tdoc.get("fields") or []
            ]
            t = store._create_table(str(tdoc["name"]), specs, description=str(tdoc.get("description") or ""))
            for row in tdoc.get("records") or []:
                t.records[store._next_id("rec")] = store._prepare_row(t, row, by_name=True)
        return store

    @classmethod
    def from_file(cls, path: Path) -> "InMemoryTabularStore":
        text = Path(path).read_text(encoding="utf-8")
        if Path(path).suffix.lower() == ".json":
            doc = json.loads(text)
        else:
            doc = yaml.safe_load(text)
        if not isinstance(doc, dict):
            raise StoreError(f"seed document {path} must be a mapping")
        return cls.from_document(doc)
