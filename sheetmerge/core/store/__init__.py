"""Tabular store boundary: the protocol the merge engine talks to, its data
model, and the in-memory reference implementation."""

from sheetmerge.core.store.base import FieldNotFoundError, StoreError, TableNotFoundError, TabularStore
from sheetmerge.core.store.memory import InMemoryTabularStore
from sheetmerge.core.store.models import Field, FieldSpec, FieldType, Option, Record, ScanPage, Table

__all__ = [
    "Field",
    "FieldNotFoundError",
    "FieldSpec",
    "FieldType",
    "InMemoryTabularStore",
    "Option",
    "Record",
    "ScanPage",
    "StoreError",
    "Table",
    "TableNotFoundError",
    "TabularStore",
]
