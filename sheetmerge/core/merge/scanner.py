from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from sheetmerge.core.merge.errors import MergeError, MergeErrorKind
from sheetmerge.core.observability.metrics import SCAN_PAGES_TOTAL, SCAN_TRUNCATIONS_TOTAL
from sheetmerge.core.store.base import TabularStore
from sheetmerge.core.store.models import Record, Table

log = logging.getLogger("sheetmerge.scan")

MAX_PAGE_SIZE = 100


@dataclass
class ScanResult:
    table_id: str
    table_name: str
    records: List[Record] = field(default_factory=list)
    pages: int = 0
    truncated: bool = False


class TableScanner:
    """Cursor-driven full read of one table.

    Pages are requested one at a time with a fixed pause in between, and the
    number of pages is capped. Hitting the cap returns what was read so far
    with `truncated=True`; any page error aborts the scan.
    """

    def __init__(
        self,
        store: TabularStore,
        *,
        page_size: int = 50,
        max_pages: int = 50,
        page_delay_seconds: float = 0.2,
    ):
        if not 1 <= int(page_size) <= MAX_PAGE_SIZE:
            raise ValueError(f"page_size must be within 1..{MAX_PAGE_SIZE}, got {page_size}")
        if int(max_pages) < 1:
            raise ValueError(f"max_pages must be >= 1, got {max_pages}")
        self.store = store
        self.page_size = int(page_size)
        self.max_pages = int(max_pages)
        self.page_delay_seconds = max(0.0, float(page_delay_seconds))

    async def scan(self, table: Table) -> ScanResult:
        result = ScanResult(table_id=table.id, table_name=table.name)
        cursor: Optional[str] = None
        has_more = True

        while has_more and result.pages < self.max_pages:
            try:
                page = await self.store.scan_records(table.id, self.page_size, cursor)
            except Exception as e:
                log.error("page %d of table=%s failed: %s", result.pages + 1, table.name, e)
                raise MergeError(
                    MergeErrorKind.SCAN_FAILED,
                    f"reading page {result.pages + 1} failed: {e}",
                    operation="scan",
                    table_id=table.id,
                    table_name=table.name,
                ) from e

            result.records.extend(page.records)
            result.pages += 1
            SCAN_PAGES_TOTAL.inc()
            has_more = bool(page.has_more)
            cursor = page.next_cursor

            if has_more and result.pages < self.max_pages and self.page_delay_seconds:
                await asyncio.sleep(self.page_delay_seconds)

        if has_more:
            result.truncated = True
            SCAN_TRUNCATIONS_TOTAL.inc()
            log.warning(
                "table=%s has more than %d pages; scan truncated at %d records",
                table.name,
                self.max_pages,
                len(result.records),
            )

        log.info("scanned table=%s records=%d pages=%d", table.name, len(result.records), result.pages)
        return result
