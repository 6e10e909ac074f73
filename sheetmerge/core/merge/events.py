from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional


EventType = Literal[
    "MergeStarted",
    "TargetPrepared",
    "SourceMerged",
    "ScanTruncated",
    "MergeCompleted",
]


def now_utc_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class MergeEvent:
    event_type: EventType
    ts: str
    mode: str
    table_id: Optional[str] = None
    table_name: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)

    @staticmethod
    def mk(
        event_type: EventType,
        mode: str,
        table_id: Optional[str] = None,
        table_name: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> "MergeEvent":
        return MergeEvent(
            event_type=event_type,
            ts=now_utc_iso(),
            mode=mode,
            table_id=table_id,
            table_name=table_name,
            payload=payload or {},
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
