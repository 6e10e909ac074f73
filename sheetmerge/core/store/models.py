from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from sheetmerge.core.store.values import CellValue


class FieldType(str, Enum):
    TEXT = "text"
    NUMBER = "number"
    DATE = "date"
    SINGLE_SELECT = "singleSelect"
    MULTI_SELECT = "multiSelect"
    ATTACHMENT = "attachment"
    LINK = "link"
    CURRENCY = "currency"
    PROGRESS = "progress"
    RATING = "rating"
    USER = "user"
    DEPARTMENT = "department"
    GROUP = "group"
    ONE_WAY_LINK = "oneWayLink"
    TWO_WAY_LINK = "twoWayLink"


SELECT_TYPES = frozenset({FieldType.SINGLE_SELECT.value, FieldType.MULTI_SELECT.value})


def is_select_type(field_type: str) -> bool:
    return field_type in SELECT_TYPES


@dataclass(frozen=True)
class Option:
    # id is store-assigned and only meaningful inside the owning field
    id: str
    name: str

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name}


@dataclass(frozen=True)
class Field:
    id: str
    name: str
    type: str
    is_primary: bool = False
    options: List[Option] = field(default_factory=list)

    def option_id_for(self, name: str) -> Optional[str]:
        for opt in self.options:
            if opt.name == name:
                return opt.id
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "is_primary": self.is_primary,
            "options": [o.to_dict() for o in self.options],
        }


@dataclass(frozen=True)
class Table:
    id: str
    name: str
    description: str = ""
    fields: List[Field] = field(default_factory=list)

    @property
    def primary_field(self) -> Optional[Field]:
        return next((f for f in self.fields if f.is_primary), None)

    def field_by_name(self, name: str) -> Optional[Field]:
        return next((f for f in self.fields if f.name == name), None)

    def summary(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "fields_count": len(self.fields),
        }


@dataclass(frozen=True)
class Record:
    id: str
    values: Dict[str, CellValue] = field(default_factory=dict)


@dataclass(frozen=True)
class ScanPage:
    records: List[Record]
    has_more: bool
    next_cursor: Optional[str] = None


@dataclass(frozen=True)
class FieldSpec:
    """Field definition handed to the store when creating tables or fields.

    Options are carried by name only; the store assigns fresh ids.
    """

    name: str
    type: str
    options: List[str] = field(default_factory=list)
