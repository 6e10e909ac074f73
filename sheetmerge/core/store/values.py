"""Cell value variants.

Raw cell payloads coming out of a store are decoded once, against the type of
the field they belong to, into one of the variants below. Everything past the
store boundary works with these variants only.

    text / number / date        -> ScalarValue
    singleSelect  {id, name}    -> SingleSelectValue
    multiSelect   [{id, name}]  -> MultiSelectValue
    anything else               -> OpaqueValue (copied through untouched)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Optional, Tuple, Union

_SCALAR_TYPES = ("text", "number", "date")


@dataclass(frozen=True)
class OptionRef:
    name: str
    id: Optional[str] = None


@dataclass(frozen=True)
class ScalarValue:
    value: Any


@dataclass(frozen=True)
class SingleSelectValue:
    option: OptionRef


@dataclass(frozen=True)
class MultiSelectValue:
    options: Tuple[OptionRef, ...]


@dataclass(frozen=True)
class OpaqueValue:
    raw: Any


CellValue = Union[ScalarValue, SingleSelectValue, MultiSelectValue, OpaqueValue]


def _option_ref(raw: Any) -> Optional[OptionRef]:
    if isinstance(raw, dict):
        name = raw.get("name")
        if name is None:
            return None
        oid = raw.get("id")
        return OptionRef(name=str(name), id=str(oid) if oid is not None else None)
    if isinstance(raw, str) and raw:
        return OptionRef(name=raw)
    return None


def decode_cell(field_type: str, raw: Any) -> Optional[CellValue]:
    """Decode one raw cell. Returns None for null/absent cells."""
    if raw is None:
        return None

    if field_type in _SCALAR_TYPES:
        return ScalarValue(raw)

    if field_type == "singleSelect":
        ref = _option_ref(raw)
        return SingleSelectValue(ref) if ref is not None else OpaqueValue(raw)

    if field_type == "multiSelect":
        items = raw if isinstance(raw, list) else [raw]
        refs = [r for r in (_option_ref(x) for x in items) if r is not None]
        return MultiSelectValue(tuple(refs))

    return OpaqueValue(raw)


def encode_cell(value: CellValue) -> Any:
    """Inverse of decode_cell, producing the shape a store hands back on reads."""
    if isinstance(value, ScalarValue):
        return value.value
    if isinstance(value, SingleSelectValue):
        return {"id": value.option.id, "name": value.option.name}
    if isinstance(value, MultiSelectValue):
        return [{"id": o.id, "name": o.name} for o in value.options]
    return value.raw


def option_names(value: CellValue) -> List[str]:
    """Option names carried by a value, used when re-resolving options by name.

    A plain text scalar counts as a single option name.
    """
    if isinstance(value, SingleSelectValue):
        return [value.option.name]
    if isinstance(value, MultiSelectValue):
        return [o.name for o in value.options]
    if isinstance(value, ScalarValue) and isinstance(value.value, str) and value.value:
        return [value.value]
    return []
