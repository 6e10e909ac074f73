"""Typed merge errors.

Every failure surfaced by the merge engine is a MergeError carrying a kind and
the context that produced it. Turning it into user-facing text is left to the
HTTP boundary.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class MergeErrorKind(str, Enum):
    INVALID_INPUT = "invalid_input"
    NOT_FOUND = "not_found"
    SCAN_FAILED = "scan_failed"
    FIELD_CREATION_FAILED = "field_creation_failed"
    INSERT_FAILED = "insert_failed"
    TARGET_PREPARATION_FAILED = "target_preparation_failed"
    # non-fatal: recorded as an issue, never raised by the engine
    OPTION_RESOLUTION_FAILED = "option_resolution_failed"


class MergeError(Exception):
    def __init__(
        self,
        kind: MergeErrorKind,
        message: str,
        *,
        operation: Optional[str] = None,
        table_id: Optional[str] = None,
        table_name: Optional[str] = None,
        field_name: Optional[str] = None,
    ):
        self.kind = kind
        self.message = message
        self.operation = operation
        self.table_id = table_id
        self.table_name = table_name
        self.field_name = field_name
        super().__init__(message)

    @property
    def context(self) -> Dict[str, Any]:
        ctx = {
            "operation": self.operation,
            "table_id": self.table_id,
            "table_name": self.table_name,
            "field_name": self.field_name,
        }
        return {k: v for k, v in ctx.items() if v is not None}

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"code": self.kind.value, "message": self.message, "context": self.context}
        if self.__cause__ is not None:
            out["cause"] = str(self.__cause__)
        return out

    def __str__(self) -> str:
        ctx = " ".join(f"{k}={v}" for k, v in self.context.items())
        return f"{self.kind.value}: {self.message}" + (f" ({ctx})" if ctx else "")


def invalid_input(message: str, **context: Any) -> MergeError:
    return MergeError(MergeErrorKind.INVALID_INPUT, message, **context)


def not_found(message: str, **context: Any) -> MergeError:
    return MergeError(MergeErrorKind.NOT_FOUND, message, **context)
