"""Merge strategies.

    create    : new table from the reconciled schema, then every source's records
    overwrite : empty an existing table (records, then all non-primary fields),
                recreate the reconciled fields on it, then every source's records
    append    : existing table keeps its schema; matching fields are filled,
                the rest of each source record is dropped

Sources are processed strictly one after another, page by page, and every
store call is awaited before the next one is issued. The first unrecovered
store error aborts the merge; records already inserted stay in the target.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Set, TypeVar

from sheetmerge.core.merge.errors import MergeError, MergeErrorKind, invalid_input, not_found
from sheetmerge.core.merge.events import MergeEvent
from sheetmerge.core.merge.models import (
    FALLBACK_FIELD_SUFFIX,
    MERGE_SOURCE_FIELD,
    CanonicalFieldSpec,
    FieldScope,
    MergeMode,
    MergeRequest,
    MergeResult,
)
from sheetmerge.core.merge.reconciler import FieldReconciler
from sheetmerge.core.merge.scanner import TableScanner
from sheetmerge.core.merge.transformer import RecordTransformer, TransformStats, append_mapping, missing_options
from sheetmerge.core.observability.metrics import MERGED_RECORDS_TOTAL, MERGES_TOTAL
from sheetmerge.core.store.base import StoreError, TabularStore
from sheetmerge.core.store.models import Field, FieldSpec, FieldType, Table, is_select_type

log = logging.getLogger("sheetmerge.merge")

T = TypeVar("T")


@dataclass
class _MergeRun:
    mode: MergeMode
    events: List[MergeEvent] = field(default_factory=list)
    stats: TransformStats = field(default_factory=TransformStats)
    merged: List[str] = field(default_factory=list)
    truncated: List[str] = field(default_factory=list)
    records: int = 0

    def emit(self, event_type, table: Optional[Table] = None, **payload: Any) -> None:
        self.events.append(
            MergeEvent.mk(
                event_type,
                self.mode.value,
                table_id=table.id if table else None,
                table_name=table.name if table else None,
                payload=payload,
            )
        )


async def _store_call(kind: MergeErrorKind, operation: str, call: Awaitable[T], **context: Any) -> T:
    try:
        return await call
    except StoreError as e:
        raise MergeError(kind, f"{operation} failed: {e}", operation=operation, **context) from e


def _next_free(base: str, taken: Set[str], *, sep: str = "_", start: int = 2) -> str:
    n = start
    while f"{base}{sep}{n}" in taken:
        n += 1
    return f"{base}{sep}{n}"


class MergeOrchestrator:
    def __init__(
        self,
        store: TabularStore,
        *,
        scanner: Optional[TableScanner] = None,
        insert_batch_size: int = 100,
    ):
        if int(insert_batch_size) < 1:
            raise ValueError(f"insert_batch_size must be >= 1, got {insert_batch_size}")
        self.store = store
        self.scanner = scanner or TableScanner(store)
        self.insert_batch_size = int(insert_batch_size)

    @classmethod
    def from_settings(cls, store: TabularStore, settings) -> "MergeOrchestrator":
        scanner = TableScanner(
            store,
            page_size=settings.scan_page_size,
            max_pages=settings.scan_max_pages,
            page_delay_seconds=settings.scan_page_delay_seconds,
        )
        return cls(store, scanner=scanner, insert_batch_size=settings.insert_batch_size)

    async def merge(self, request: MergeRequest) -> MergeResult:
        mode = MergeMode(request.mode)
        run = _MergeRun(mode=mode)
        log.info("merge start mode=%s sources=%s", mode.value, request.source_table_ids)

        try:
            sources = await self._resolve_sources(request.source_table_ids)
            run.emit("MergeStarted", sources=[s.name for s in sources])
            if mode == MergeMode.CREATE:
                result = await self._merge_create(request, sources, run)
            elif mode == MergeMode.OVERWRITE:
                result = await self._merge_overwrite(request, sources, run)
            else:
                result = await self._merge_append(request, sources, run)
        except MergeError as e:
            MERGES_TOTAL.labels(mode=mode.value, status="failed").inc()
            log.error("merge failed mode=%s: %s", mode.value, e)
            raise

        MERGES_TOTAL.labels(mode=mode.value, status="ok").inc()
        MERGED_RECORDS_TOTAL.labels(mode=mode.value).inc(run.records)
        log.info(
            "merge done mode=%s target=%s records=%d dropped_options=%d",
            mode.value,
            result.table_name,
            run.records,
            run.stats.dropped_options,
        )
        return result

    # ------------------------------------------------------------------
    # resolution
    # ------------------------------------------------------------------

    async def _resolve_sources(self, table_ids: Sequence[str]) -> List[Table]:
        ids = [str(t).strip() for t in table_ids or []]
        if not ids:
            raise invalid_input("select at least one source table", operation="resolve_sources")
        if any(not t for t in ids):
            raise invalid_input("source table ids must not be blank", operation="resolve_sources")
        dupes = sorted({t for t in ids if ids.count(t) > 1})
        if dupes:
            raise invalid_input(f"duplicate source tables: {', '.join(dupes)}", operation="resolve_sources")

        tables = []
        for tid in ids:
            table = await _store_call(MergeErrorKind.NOT_FOUND, "get_table", self.store.get_table(tid), table_id=tid)
            if table is None:
                raise not_found(f"source table {tid} does not exist", operation="resolve_sources", table_id=tid)
            tables.append(table)
        return tables

    async def resolve_target(self, request: MergeRequest) -> Table:
        tid = (request.target_table_id or "").strip()
        if tid:
            table = await _store_call(MergeErrorKind.NOT_FOUND, "get_table", self.store.get_table(tid), table_id=tid)
            if table is None:
                raise not_found(f"target table {tid} does not exist", operation="resolve_target", table_id=tid)
            return table

        name = (request.target_table_name or "").strip()
        if not name:
            raise invalid_input("a target table id or name is required", operation="resolve_target")

        tables = await _store_call(MergeErrorKind.NOT_FOUND, "list_tables", self.store.list_tables())
        match = next((t for t in tables if t.name == name), None)
        if match is None:
            match = next((t for t in tables if t.name.casefold() == name.casefold()), None)
        if match is None:
            raise not_found(f"no table named {name!r}", operation="resolve_target", table_name=name)
        return match

    # ------------------------------------------------------------------
    # shared record pipeline
    # ------------------------------------------------------------------

    async def _merge_sources(
        self,
        run: _MergeRun,
        target: Table,
        sources: Sequence[Table],
        mapping_for: Callable[[Table], Dict[str, str]],
        target_fields: Dict[str, Field],
        transformer: RecordTransformer,
        *,
        create_missing_options: bool = False,
    ) -> None:
        for src in sources:
            scan = await self.scanner.scan(src)
            if scan.truncated:
                run.truncated.append(src.name)
                run.emit("ScanTruncated", src, records=len(scan.records), pages=scan.pages)

            mapping = mapping_for(src)
            if create_missing_options:
                await self._add_missing_options(target, scan.records, mapping, target_fields, src)

            rows = [transformer.transform(r, src.name, mapping, target_fields, run.stats) for r in scan.records]
            inserted = await self._insert(target, rows, src)
            run.records += inserted
            run.merged.append(src.name)
            run.emit("SourceMerged", src, records=inserted, pages=scan.pages, truncated=scan.truncated)

    async def _add_missing_options(self, target: Table, records, mapping, target_fields: Dict[str, Field], src: Table):
        for field_name, names in missing_options(records, mapping, target_fields).items():
            fld = target_fields[field_name]
            log.info("adding %d options to field=%s on table=%s", len(names), field_name, target.name)
            target_fields[field_name] = await _store_call(
                MergeErrorKind.FIELD_CREATION_FAILED,
                "add_options",
                self.store.add_options(target.id, fld.id, names),
                table_id=src.id,
                table_name=src.name,
                field_name=field_name,
            )

    async def _insert(self, target: Table, rows: List[Dict[str, Any]], src: Table) -> int:
        inserted = 0
        for i in range(0, len(rows), self.insert_batch_size):
            batch = rows[i:i + self.insert_batch_size]
            try:
                await self.store.insert_records(target.id, batch)
            except StoreError as e:
                raise MergeError(
                    MergeErrorKind.INSERT_FAILED,
                    f"inserting records from {src.name} into {target.name} failed: {e}",
                    operation="insert_records",
                    table_id=src.id,
                    table_name=src.name,
                ) from e
            inserted += len(batch)
        return inserted

    async def _live_fields(self, target: Table) -> List[Field]:
        return await _store_call(
            MergeErrorKind.NOT_FOUND,
            "list_fields",
            self.store.list_fields(target.id),
            table_id=target.id,
            table_name=target.name,
        )

    def _result(self, run: _MergeRun, target: Table, fields: Sequence[Field]) -> MergeResult:
        run.emit("MergeCompleted", target, records=run.records, fields=len(fields))
        return MergeResult(
            table_id=target.id,
            table_name=target.name,
            mode=run.mode,
            total_records=None if run.mode == MergeMode.APPEND else run.records,
            added_records=run.records if run.mode == MergeMode.APPEND else None,
            total_fields=len(fields),
            merged_tables=list(run.merged),
            truncated_tables=list(run.truncated),
            dropped_options=run.stats.dropped_options,
            issues=list(run.stats.issues),
            events=[e.to_dict() for e in run.events],
        )

    # ------------------------------------------------------------------
    # create
    # ------------------------------------------------------------------

    async def _merge_create(self, request: MergeRequest, sources: List[Table], run: _MergeRun) -> MergeResult:
        name = (request.new_table_name or "").strip()
        if not name:
            raise invalid_input("the merged table name must not be empty", operation="create")

        existing = await _store_call(MergeErrorKind.NOT_FOUND, "list_tables", self.store.list_tables())
        if any(t.name == name for t in existing):
            raise invalid_input(f"a table named {name!r} already exists", operation="create", table_name=name)

        schema = FieldReconciler(
            ordering=request.field_ordering,
            suffix_exclusive=request.suffix_exclusive_fields,
        ).reconcile(sources)

        # every field and option id has to exist before records are mapped
        target = await _store_call(
            MergeErrorKind.FIELD_CREATION_FAILED,
            "create_table",
            self.store.create_table(name, schema.field_specs()),
            table_name=name,
        )
        created = await self._live_fields(target)

        # the store may adjust names on creation; follow it positionally
        actual: Dict[str, str] = {}
        for i, spec in enumerate(schema.fields):
            actual[spec.name] = created[i].name if i < len(created) else spec.name

        run.emit("TargetPrepared", target, fields=[f.name for f in created])
        await self._merge_sources(
            run,
            target,
            sources,
            lambda src: {orig: actual[canon] for orig, canon in schema.mapping_for(src.id).items()},
            {f.name: f for f in created},
            RecordTransformer(attribution_field=actual[MERGE_SOURCE_FIELD]),
        )
        return self._result(run, target, await self._live_fields(target))

    # ------------------------------------------------------------------
    # overwrite
    # ------------------------------------------------------------------

    async def _merge_overwrite(self, request: MergeRequest, sources: List[Table], run: _MergeRun) -> MergeResult:
        target = await self.resolve_target(request)
        if any(s.id == target.id for s in sources):
            raise invalid_input(
                "the overwrite target cannot also be a source table",
                operation="overwrite",
                table_id=target.id,
                table_name=target.name,
            )

        await self._clear_records(target)
        primary = await self._drop_non_primary_fields(target)

        schema = FieldReconciler(
            ordering=request.field_ordering,
            suffix_exclusive=request.suffix_exclusive_fields,
        ).reconcile(sources)

        taken: Set[str] = {primary.name} if primary else set()
        actual: Dict[str, str] = {}
        for spec in schema.fields:
            if primary is not None and spec.name == primary.name:
                if spec.type == primary.type and spec.scope != FieldScope.RESERVED:
                    await self._adopt_primary(target, primary, spec)
                    actual[spec.name] = primary.name
                    continue
                name = _next_free(spec.name, taken)
            else:
                name = spec.name
            created = await self._create_field(target, spec, name, taken)
            taken.add(created.name)
            actual[spec.name] = created.name

        live = await self._live_fields(target)
        run.emit("TargetPrepared", target, fields=[f.name for f in live])
        await self._merge_sources(
            run,
            target,
            sources,
            lambda src: {orig: actual[canon] for orig, canon in schema.mapping_for(src.id).items()},
            {f.name: f for f in live},
            RecordTransformer(attribution_field=actual[MERGE_SOURCE_FIELD]),
        )
        return self._result(run, target, await self._live_fields(target))

    async def _clear_records(self, target: Table) -> None:
        removed = 0
        while True:
            scan = await self.scanner.scan(target)
            ids = [r.id for r in scan.records]
            if ids:
                await _store_call(
                    MergeErrorKind.TARGET_PREPARATION_FAILED,
                    "delete_records",
                    self.store.delete_records(target.id, ids),
                    table_id=target.id,
                    table_name=target.name,
                )
                removed += len(ids)
            if not scan.truncated or not ids:
                break
        log.info("cleared %d records from table=%s", removed, target.name)

    async def _drop_non_primary_fields(self, target: Table) -> Optional[Field]:
        primary = None
        for f in await self._live_fields(target):
            if f.is_primary:
                primary = f
                continue
            await _store_call(
                MergeErrorKind.TARGET_PREPARATION_FAILED,
                "delete_field",
                self.store.delete_field(target.id, f.id),
                table_id=target.id,
                table_name=target.name,
                field_name=f.name,
            )
        return primary

    async def _adopt_primary(self, target: Table, primary: Field, spec: CanonicalFieldSpec) -> None:
        if not is_select_type(primary.type):
            return
        names = [o.name for o in spec.options if primary.option_id_for(o.name) is None]
        if names:
            await _store_call(
                MergeErrorKind.FIELD_CREATION_FAILED,
                "add_options",
                self.store.add_options(target.id, primary.id, names),
                table_id=target.id,
                table_name=target.name,
                field_name=primary.name,
            )

    async def _create_field(self, target: Table, spec: CanonicalFieldSpec, name: str, taken: Set[str]) -> Field:
        try:
            return await self.store.create_field(target.id, spec.to_field_spec(name))
        except StoreError as first:
            fallback = _next_free(name, taken, sep=FALLBACK_FIELD_SUFFIX, start=1)
            log.warning("creating field %r failed (%s); retrying as %r", name, first, fallback)

        try:
            return await self.store.create_field(target.id, spec.to_field_spec(fallback))
        except StoreError as e:
            raise MergeError(
                MergeErrorKind.FIELD_CREATION_FAILED,
                f"field {name!r} could not be created, not even as {fallback!r}: {e}",
                operation="create_field",
                table_id=target.id,
                table_name=target.name,
                field_name=spec.name,
            ) from e

    # ------------------------------------------------------------------
    # append
    # ------------------------------------------------------------------

    async def _merge_append(self, request: MergeRequest, sources: List[Table], run: _MergeRun) -> MergeResult:
        target = await self.resolve_target(request)

        fields = await self._live_fields(target)
        if not any(f.name == MERGE_SOURCE_FIELD for f in fields):
            await _store_call(
                MergeErrorKind.FIELD_CREATION_FAILED,
                "create_field",
                self.store.create_field(target.id, FieldSpec(name=MERGE_SOURCE_FIELD, type=FieldType.TEXT.value)),
                table_id=target.id,
                table_name=target.name,
                field_name=MERGE_SOURCE_FIELD,
            )
            fields = await self._live_fields(target)

        run.emit("TargetPrepared", target, fields=[f.name for f in fields])
        mapping = append_mapping(fields)
        await self._merge_sources(
            run,
            target,
            sources,
            lambda src: mapping,
            {f.name: f for f in fields},
            RecordTransformer(),
            create_missing_options=request.create_missing_options,
        )
        return self._result(run, target, await self._live_fields(target))
