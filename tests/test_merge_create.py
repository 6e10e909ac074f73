from __future__ import annotations

import asyncio

import pytest

from sheetmerge.core.merge.errors import MergeError, MergeErrorKind
from sheetmerge.core.merge.models import MERGE_SOURCE_FIELD, MergeMode, MergeRequest
from sheetmerge.core.merge.orchestrator import MergeOrchestrator
from sheetmerge.core.merge.scanner import TableScanner
from sheetmerge.core.store.base import StoreError
from sheetmerge.core.store.memory import InMemoryTabularStore


ROUND_TRIP_DOC = {
    "tables": [
        {"name": "A", "fields": [{"name": "Title", "type": "text"}],
         "records": [{"Title": "x"}, {"Title": "y"}]},
        {"name": "B", "fields": [{"name": "Title", "type": "text"},
                                 {"name": "Status", "type": "singleSelect", "options": ["Open"]}],
         "records": [{"Title": "z", "Status": "Open"}]},
    ]
}


def _ids(store, *names):
    tables = {t.name: t.id for t in asyncio.run(store.list_tables())}
    return [tables[n] for n in names]


def _rows(store, table_id):
    page = asyncio.run(store.scan_records(table_id, 100))
    return [r.values for r in page.records]


def _merge(orchestrator, **kwargs):
    return asyncio.run(orchestrator.merge(MergeRequest(**kwargs)))


def test_create_round_trip():
    store = InMemoryTabularStore.from_document(ROUND_TRIP_DOC)
    orch = MergeOrchestrator(store, scanner=TableScanner(store, page_delay_seconds=0))

    res = _merge(orch, source_table_ids=_ids(store, "A", "B"), new_table_name="Merged")

    assert res.mode == MergeMode.CREATE
    assert res.table_name == "Merged"
    assert res.total_records == 3
    assert res.added_records is None
    assert res.total_fields == 3
    assert res.merged_tables == ["A", "B"]

    fields = asyncio.run(store.list_fields(res.table_id))
    assert [f.name for f in fields] == ["Title", "Status", MERGE_SOURCE_FIELD]
    assert fields[0].is_primary

    rows = _rows(store, res.table_id)
    assert [(r["Title"].value, r[MERGE_SOURCE_FIELD].value) for r in rows] == [("x", "A"), ("y", "A"), ("z", "B")]
    status = rows[2]["Status"].option
    assert status.name == "Open"
    # option id belongs to the new table, not to table B
    assert status.id == fields[1].options[0].id


def test_create_promotes_types_and_unions_options(store, orchestrator):
    res = _merge(orchestrator, source_table_ids=_ids(store, "Sales East", "Sales West"), new_table_name="All Sales")

    fields = {f.name: f for f in asyncio.run(store.list_fields(res.table_id))}
    assert list(fields) == ["Title", "Status", "Amount", "Region", "Owner", MERGE_SOURCE_FIELD]
    assert fields["Amount"].type == "text"
    assert [o.name for o in fields["Status"].options] == ["Open", "Closed", "Pending"]

    rows = _rows(store, res.table_id)
    assert [r["Status"].option.name for r in rows] == ["Open", "Closed", "Pending"]
    assert rows[1].get("Region") is None
    assert rows[2]["Owner"].value == "peter"


def test_single_source_create_copies_table(store, orchestrator):
    res = _merge(orchestrator, source_table_ids=_ids(store, "Sales West"), new_table_name="West Copy")
    assert res.total_records == 1
    assert [f.name for f in asyncio.run(store.list_fields(res.table_id))] == [
        "Title", "Status", "Amount", "Owner", MERGE_SOURCE_FIELD,
    ]


def test_create_reports_events_in_order(store, orchestrator):
    res = _merge(orchestrator, source_table_ids=_ids(store, "Sales East", "Sales West"), new_table_name="Merged")
    kinds = [e["event_type"] for e in res.events]
    assert kinds == ["MergeStarted", "TargetPrepared", "SourceMerged", "SourceMerged", "MergeCompleted"]
    assert res.events[2]["payload"]["records"] == 2


def test_create_marks_truncated_sources(store):
    orch = MergeOrchestrator(store, scanner=TableScanner(store, page_size=1, max_pages=1, page_delay_seconds=0))
    res = _merge(orch, source_table_ids=_ids(store, "Sales East", "Sales West"), new_table_name="Partial")

    assert res.truncated_tables == ["Sales East"]
    assert res.total_records == 2
    assert "ScanTruncated" in [e["event_type"] for e in res.events]


@pytest.mark.parametrize("name", ["", "   ", None])
def test_blank_table_name_rejected(store, orchestrator, name):
    with pytest.raises(MergeError) as ei:
        _merge(orchestrator, source_table_ids=_ids(store, "Sales East"), new_table_name=name)
    assert ei.value.kind == MergeErrorKind.INVALID_INPUT


def test_existing_table_name_rejected(store, orchestrator):
    with pytest.raises(MergeError) as ei:
        _merge(orchestrator, source_table_ids=_ids(store, "Sales East"), new_table_name="Archive")
    assert ei.value.kind == MergeErrorKind.INVALID_INPUT
    assert len(asyncio.run(store.list_tables())) == 3


def test_source_list_validation(store, orchestrator):
    east = _ids(store, "Sales East")[0]
    for ids, kind in (
        ([], MergeErrorKind.INVALID_INPUT),
        ([east, " "], MergeErrorKind.INVALID_INPUT),
        ([east, east], MergeErrorKind.INVALID_INPUT),
        ([east, "tbl999"], MergeErrorKind.NOT_FOUND),
    ):
        with pytest.raises(MergeError) as ei:
            _merge(orchestrator, source_table_ids=ids, new_table_name="Merged")
        assert ei.value.kind == kind, ids


class _FailingInsertStore(InMemoryTabularStore):
    async def insert_records(self, table_id, value_maps):
        if any(vm.get(MERGE_SOURCE_FIELD) == "Sales West" for vm in value_maps):
            raise StoreError("quota exceeded")
        return await super().insert_records(table_id, value_maps)


def test_insert_failure_aborts_but_keeps_earlier_sources(sample_doc):
    store = _FailingInsertStore.from_document(sample_doc)
    orch = MergeOrchestrator(store, scanner=TableScanner(store, page_delay_seconds=0))

    with pytest.raises(MergeError) as ei:
        _merge(orch, source_table_ids=_ids(store, "Sales East", "Sales West"), new_table_name="Merged")

    err = ei.value
    assert err.kind == MergeErrorKind.INSERT_FAILED
    assert err.table_name == "Sales West"
    assert err.to_dict()["cause"] == "quota exceeded"

    merged = _ids(store, "Merged")[0]
    assert len(_rows(store, merged)) == 2


def test_insert_batches_respect_batch_size(store):
    sizes = []
    original = store.insert_records

    async def spy(table_id, value_maps):
        sizes.append(len(value_maps))
        return await original(table_id, value_maps)

    store.insert_records = spy
    orch = MergeOrchestrator(store, scanner=TableScanner(store, page_delay_seconds=0), insert_batch_size=1)
    _merge(orch, source_table_ids=_ids(store, "Sales East", "Sales West"), new_table_name="Merged")

    assert sizes == [1, 1, 1]
