"""Merge engine: schema reconciliation, paginated scans, record transformation
and the create / overwrite / append strategies that drive them.

Nothing in this package reaches a store on its own; a TabularStore is always
handed in by the caller.
"""

from sheetmerge.core.merge.errors import MergeError, MergeErrorKind
from sheetmerge.core.merge.models import (
    MERGE_SOURCE_FIELD,
    CanonicalFieldSpec,
    CanonicalSchema,
    FieldOrdering,
    FieldScope,
    MergeMode,
    MergeRequest,
    MergeResult,
)
from sheetmerge.core.merge.orchestrator import MergeOrchestrator
from sheetmerge.core.merge.reconciler import FieldReconciler, promote
from sheetmerge.core.merge.scanner import ScanResult, TableScanner
from sheetmerge.core.merge.transformer import RecordTransformer, TransformStats

__all__ = [
    "MERGE_SOURCE_FIELD",
    "CanonicalFieldSpec",
    "CanonicalSchema",
    "FieldOrdering",
    "FieldReconciler",
    "FieldScope",
    "MergeError",
    "MergeErrorKind",
    "MergeMode",
    "MergeOrchestrator",
    "MergeRequest",
    "MergeResult",
    "RecordTransformer",
    "ScanResult",
    "TableScanner",
    "TransformStats",
    "promote",
]
