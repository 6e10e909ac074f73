from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from sheetmerge.core.merge.errors import MergeErrorKind
from sheetmerge.core.merge.models import MERGE_SOURCE_FIELD
from sheetmerge.core.observability.metrics import OPTION_RESOLUTION_FAILURES_TOTAL
from sheetmerge.core.store.models import Field, FieldType, Record, is_select_type
from sheetmerge.core.store.values import CellValue, encode_cell, option_names

log = logging.getLogger("sheetmerge.transform")

_MAX_ISSUES = 50


@dataclass
class TransformStats:
    records: int = 0
    dropped_options: int = 0
    issues: List[Dict[str, Any]] = field(default_factory=list)

    def option_miss(self, *, table_name: str, field_name: str, option_name: Optional[str]) -> None:
        self.dropped_options += 1
        OPTION_RESOLUTION_FAILURES_TOTAL.inc()
        if len(self.issues) < _MAX_ISSUES:
            self.issues.append(
                {
                    "code": MergeErrorKind.OPTION_RESOLUTION_FAILED.value,
                    "table_name": table_name,
                    "field_name": field_name,
                    "option": option_name,
                }
            )


class RecordTransformer:
    """Maps one source record onto the target field layout.

    Option ids are local to a field, so select values are re-resolved by option
    name against the target field's live option list. Unresolvable options are
    dropped (single-select: cell left empty) and counted, never raised.
    """

    def __init__(self, *, attribution_field: str = MERGE_SOURCE_FIELD):
        self.attribution_field = attribution_field

    def transform(
        self,
        record: Record,
        source_table_name: str,
        field_name_mapping: Mapping[str, str],
        target_fields: Mapping[str, Field],
        stats: Optional[TransformStats] = None,
    ) -> Dict[str, Any]:
        stats = stats if stats is not None else TransformStats()
        out: Dict[str, Any] = {}

        for source_name, target_name in field_name_mapping.items():
            if target_name == self.attribution_field:
                continue
            value = record.values.get(source_name)
            if value is None:
                continue
            target = target_fields.get(target_name)
            if target is None:
                continue

            converted = self._convert(value, target, source_table_name, stats)
            if converted is not None:
                out[target_name] = converted

        out[self.attribution_field] = source_table_name
        stats.records += 1
        return out

    def _convert(self, value: CellValue, target: Field, table_name: str, stats: TransformStats) -> Any:
        if target.type == FieldType.SINGLE_SELECT.value:
            names = option_names(value)
            if not names:
                stats.option_miss(table_name=table_name, field_name=target.name, option_name=None)
                return None
            oid = target.option_id_for(names[0])
            if oid is None:
                log.warning("option %r not found on field=%s (source=%s)", names[0], target.name, table_name)
                stats.option_miss(table_name=table_name, field_name=target.name, option_name=names[0])
            return oid

        if target.type == FieldType.MULTI_SELECT.value:
            ids = []
            for name in option_names(value):
                oid = target.option_id_for(name)
                if oid is None:
                    log.warning("option %r not found on field=%s (source=%s)", name, target.name, table_name)
                    stats.option_miss(table_name=table_name, field_name=target.name, option_name=name)
                    continue
                ids.append(oid)
            return ids or None

        return encode_cell(value)


def append_mapping(target_fields: Sequence[Field], *, attribution_field: str = MERGE_SOURCE_FIELD) -> Dict[str, str]:
    """Same-name mapping onto an existing target; source fields without a counterpart are dropped."""
    return {f.name: f.name for f in target_fields if f.name != attribution_field}


def missing_options(
    records: Sequence[Record],
    field_name_mapping: Mapping[str, str],
    target_fields: Mapping[str, Field],
) -> Dict[str, List[str]]:
    """Option names referenced by `records` that the mapped select target fields lack."""
    out: Dict[str, List[str]] = {}
    for record in records:
        for source_name, target_name in field_name_mapping.items():
            target = target_fields.get(target_name)
            value = record.values.get(source_name)
            if target is None or value is None or not is_select_type(target.type):
                continue
            names = option_names(value)
            if target.type == FieldType.SINGLE_SELECT.value:
                names = names[:1]
            for name in names:
                if target.option_id_for(name) is None and name not in out.setdefault(target.name, []):
                    out[target.name].append(name)
    return {k: v for k, v in out.items() if v}
