from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from sheetmerge.core.store.models import FieldSpec, FieldType, Option, is_select_type

# Reserved attribution field; filled with the originating table name per record.
MERGE_SOURCE_FIELD = "merge source"

# Fallback suffix used when a target field cannot be created under its own name.
FALLBACK_FIELD_SUFFIX = "_备用"


class MergeMode(str, Enum):
    CREATE = "create"
    OVERWRITE = "overwrite"
    APPEND = "append"


class FieldOrdering(str, Enum):
    # common fields in the first source table's own order
    FIRST_SOURCE = "first_source"
    # common fields in the order they turned out to be common, i.e. the order
    # of their second occurrence while walking the sources
    DISCOVERY = "discovery"


class FieldScope(str, Enum):
    COMMON = "common"
    EXCLUSIVE = "exclusive"
    RESERVED = "reserved"


class MergeRequest(BaseModel):
    source_table_ids: List[str] = Field(default_factory=list)
    mode: MergeMode = MergeMode.CREATE

    # create
    new_table_name: Optional[str] = None
    # overwrite / append: id wins over name when both are given
    target_table_id: Optional[str] = None
    target_table_name: Optional[str] = None

    field_ordering: FieldOrdering = FieldOrdering.FIRST_SOURCE
    suffix_exclusive_fields: bool = False
    create_missing_options: bool = False


class MergeResult(BaseModel):
    table_id: str
    table_name: str
    mode: MergeMode
    total_records: Optional[int] = None
    added_records: Optional[int] = None
    total_fields: int
    merged_tables: List[str] = Field(default_factory=list)
    truncated_tables: List[str] = Field(default_factory=list)
    dropped_options: int = 0
    issues: List[Dict[str, Any]] = Field(default_factory=list)
    events: List[Dict[str, Any]] = Field(default_factory=list)


@dataclass(frozen=True)
class CanonicalFieldSpec:
    name: str
    type: str
    scope: FieldScope
    options: List[Option] = field(default_factory=list)
    # name of the field in its source table(s); differs from `name` when renamed
    source_name: Optional[str] = None
    owner_table_id: Optional[str] = None

    def to_field_spec(self, name: Optional[str] = None) -> FieldSpec:
        opts = [o.name for o in self.options] if is_select_type(self.type) else []
        return FieldSpec(name=name or self.name, type=self.type, options=opts)


@dataclass(frozen=True)
class CanonicalSchema:
    fields: List[CanonicalFieldSpec]
    # (source table id, original field name) -> canonical field name
    mapping: Dict[Tuple[str, str], str] = field(default_factory=dict)

    @property
    def names(self) -> List[str]:
        return [f.name for f in self.fields]

    def spec_named(self, name: str) -> Optional[CanonicalFieldSpec]:
        return next((f for f in self.fields if f.name == name), None)

    def mapping_for(self, table_id: str) -> Dict[str, str]:
        return {orig: canon for (tid, orig), canon in self.mapping.items() if tid == table_id}

    def field_specs(self) -> List[FieldSpec]:
        return [f.to_field_spec() for f in self.fields]


def reserved_field_spec() -> CanonicalFieldSpec:
    return CanonicalFieldSpec(name=MERGE_SOURCE_FIELD, type=FieldType.TEXT.value, scope=FieldScope.RESERVED)
