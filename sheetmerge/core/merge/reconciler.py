"""Field schema reconciliation across source tables.

Builds one canonical target schema out of N source field lists:

  - fields are keyed by name; a name seen in two or more tables is "common",
    a name seen in exactly one table is "exclusive"
  - differing types for a common name collapse to the more general type of
    the fixed priority order (lower index wins, unknown types last)
  - select options are unioned by name, first-seen option wins
  - common fields come first, exclusive fields follow, the reserved
    attribution field is always last
  - canonical names are unique; exclusive collisions are resolved with
    `<name>_<table>` and then `<name>_<table>_<n>`

Pure computation over already fetched metadata: nothing here touches a store.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Set

from sheetmerge.core.merge.errors import invalid_input
from sheetmerge.core.merge.models import (
    MERGE_SOURCE_FIELD,
    CanonicalFieldSpec,
    CanonicalSchema,
    FieldOrdering,
    FieldScope,
    reserved_field_spec,
)
from sheetmerge.core.store.models import FieldType, Option, Table, is_select_type

log = logging.getLogger("sheetmerge.reconcile")

TYPE_PRIORITY: List[str] = [
    FieldType.TEXT.value,
    FieldType.NUMBER.value,
    FieldType.DATE.value,
    FieldType.SINGLE_SELECT.value,
    FieldType.MULTI_SELECT.value,
    FieldType.ATTACHMENT.value,
    FieldType.LINK.value,
    FieldType.CURRENCY.value,
    FieldType.PROGRESS.value,
    FieldType.RATING.value,
    FieldType.USER.value,
    FieldType.DEPARTMENT.value,
    FieldType.GROUP.value,
    FieldType.ONE_WAY_LINK.value,
    FieldType.TWO_WAY_LINK.value,
]
_RANK = {t: i for i, t in enumerate(TYPE_PRIORITY)}


def type_rank(field_type: str) -> int:
    return _RANK.get(field_type, len(TYPE_PRIORITY))


def promote(a: str, b: str) -> str:
    """Return the more general of two field types.

    Ties between two unknown types break on the type string so the result does
    not depend on argument order.
    """
    return min((a, b), key=lambda t: (type_rank(t), t))


def merge_options(existing: Sequence[Option], incoming: Sequence[Option]) -> List[Option]:
    """Union two option lists by name, keeping the first-seen entry per name."""
    out: List[Option] = []
    seen: Set[str] = set()
    for opt in list(existing) + list(incoming):
        if opt.name in seen:
            continue
        seen.add(opt.name)
        out.append(opt)
    return out


@dataclass
class _Tally:
    name: str
    type: str
    count: int = 0
    options: List[Option] = field(default_factory=list)
    table_ids: List[str] = field(default_factory=list)
    # position at which the name was seen for the second time
    common_seq: Optional[int] = None


def _claim_name(base: str, table_name: str, claimed: Set[str], *, force_suffix: bool) -> str:
    if not force_suffix and base not in claimed:
        return base
    candidate = f"{base}_{table_name}"
    n = 2
    unique = candidate
    while unique in claimed:
        unique = f"{candidate}_{n}"
        n += 1
    return unique


class FieldReconciler:
    def __init__(
        self,
        *,
        ordering: FieldOrdering = FieldOrdering.FIRST_SOURCE,
        suffix_exclusive: bool = False,
        reserved_name: str = MERGE_SOURCE_FIELD,
    ):
        self.ordering = ordering
        self.suffix_exclusive = bool(suffix_exclusive)
        self.reserved_name = reserved_name

    def _tally(self, tables: Sequence[Table]) -> Dict[str, _Tally]:
        tallies: Dict[str, _Tally] = {}
        seq = 0
        for table in tables:
            for f in table.fields:
                if f.name == self.reserved_name:
                    log.debug("skipping reserved field in source table=%s", table.name)
                    continue
                t = tallies.get(f.name)
                if t is None:
                    t = tallies[f.name] = _Tally(name=f.name, type=f.type)
                elif t.type != f.type:
                    t.type = promote(t.type, f.type)
                t.count += 1
                if t.count == 2:
                    t.common_seq = seq
                    seq += 1
                t.table_ids.append(table.id)
                if is_select_type(f.type):
                    t.options = merge_options(t.options, f.options)
        return tallies

    def _common_order(self, tables: Sequence[Table], tallies: Dict[str, _Tally]) -> List[str]:
        common = [name for name, t in tallies.items() if t.count > 1]
        if self.ordering == FieldOrdering.DISCOVERY:
            return sorted(common, key=lambda name: tallies[name].common_seq)
        common_set = set(common)
        first = [f.name for f in tables[0].fields if f.name in common_set]
        first_set = set(first)
        return first + [name for name in common if name not in first_set]

    def reconcile(self, tables: Sequence[Table], *, taken_names: Iterable[str] = ()) -> CanonicalSchema:
        """Compute the canonical schema for `tables`, in the given order.

        `taken_names` are names already occupied on the target; exclusive
        fields are steered away from them.
        """
        if not tables:
            raise invalid_input("at least one source table is required", operation="reconcile")

        tallies = self._tally(tables)
        fields: List[CanonicalFieldSpec] = []
        mapping: Dict[tuple, str] = {}

        for name in self._common_order(tables, tallies):
            t = tallies[name]
            fields.append(
                CanonicalFieldSpec(
                    name=name,
                    type=t.type,
                    scope=FieldScope.COMMON,
                    options=list(t.options) if is_select_type(t.type) else [],
                    source_name=name,
                )
            )
            for tid in t.table_ids:
                mapping[(tid, name)] = name

        claimed: Set[str] = set(taken_names) | {self.reserved_name} | {f.name for f in fields}
        for table in tables:
            for f in table.fields:
                t = tallies.get(f.name)
                if t is None or t.count != 1:
                    continue
                new_name = _claim_name(f.name, table.name, claimed, force_suffix=self.suffix_exclusive)
                claimed.add(new_name)
                if new_name != f.name:
                    log.debug("exclusive field renamed %r -> %r (table=%s)", f.name, new_name, table.name)
                fields.append(
                    CanonicalFieldSpec(
                        name=new_name,
                        type=t.type,
                        scope=FieldScope.EXCLUSIVE,
                        options=list(t.options) if is_select_type(t.type) else [],
                        source_name=f.name,
                        owner_table_id=table.id,
                    )
                )
                mapping[(table.id, f.name)] = new_name

        fields.append(reserved_field_spec())

        log.info(
            "reconciled %d source tables into %d fields (common=%d exclusive=%d)",
            len(tables),
            len(fields),
            sum(1 for f in fields if f.scope == FieldScope.COMMON),
            sum(1 for f in fields if f.scope == FieldScope.EXCLUSIVE),
        )
        return CanonicalSchema(fields=fields, mapping=mapping)

