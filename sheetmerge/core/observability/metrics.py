from __future__ import annotations

from collections import Counter
from typing import Dict

from prometheus_client import Counter as PromCounter

# Named counters (custom)
_NAMED = Counter()

MERGES_TOTAL = PromCounter(
    "sheetmerge_merges_total",
    "Merge invocations by mode and outcome",
    ["mode", "status"],
)

MERGED_RECORDS_TOTAL = PromCounter(
    "sheetmerge_merged_records_total",
    "Records inserted into merge targets",
    ["mode"],
)

SCAN_PAGES_TOTAL = PromCounter(
    "sheetmerge_scan_pages_total",
    "Record pages fetched by table scans",
)

SCAN_TRUNCATIONS_TOTAL = PromCounter(
    "sheetmerge_scan_truncations_total",
    "Table scans cut short by the page cap",
)

OPTION_RESOLUTION_FAILURES_TOTAL = PromCounter(
    "sheetmerge_option_resolution_failures_total",
    "Select options that could not be resolved on the target field",
)


def reset_metrics() -> None:
    """
    Test helper: clears named counters to avoid cross-test leakage.
    """
    _NAMED.clear()


def inc_named(name: str, value: int = 1) -> None:
    """
    Increment a named counter (used by health endpoints, etc.).
    """
    if not name:
        return
    _NAMED[name] += int(value)


def snapshot_named() -> Dict[str, int]:
    return dict(_NAMED)
