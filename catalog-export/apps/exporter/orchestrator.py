"""
Pagination Orchestrator - Concurrent Page Dispatch

Splits the record space into [offset, offset + max) windows, dispatches every
page at once and lets the rate limiter decide how many actually run. A failed
page never cancels its siblings; it is collected into the run outcome.

Only a SinkIOError escapes: the output file is shared, so a write failure
ends the whole run.
"""

import asyncio
import logging
from typing import Optional, Union

from apps.exporter.fetcher import PageFetcher
from apps.exporter.sink import JsonArraySink
from utils.errors import SinkIOError
from utils.schemas import FailedPage, PageResult, RequestSpec, RunOutcome


def page_offsets(total_records: int, page_size: int) -> list[int]:
    """Offsets 0, max, 2*max, ... while offset <= total_records."""
    if page_size <= 0:
        raise ValueError(f"Page size must be positive, got {page_size}")
    return list(range(0, total_records + 1, page_size))


class PaginationOrchestrator:
    """Fetches all pages of a run and finalizes the sink."""

    def __init__(
        self,
        fetcher: PageFetcher,
        sink: JsonArraySink,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.fetcher = fetcher
        self.sink = sink
        self.logger = logger or logging.getLogger(__name__)

    async def _settle(self, spec: RequestSpec, offset: int) -> Union[PageResult, FailedPage]:
        try:
            return await self.fetcher.fetch_page(spec, offset)
        except SinkIOError:
            raise
        except Exception as e:
            correlation_id = getattr(e, "correlation_id", None)
            self.logger.error(
                "Page %s to %s failed: %s",
                f"{offset:,}",
                f"{offset + spec.page_size:,}",
                e,
                extra={"correlation_id": correlation_id},
            )
            return FailedPage(
                start=offset,
                end=offset + spec.page_size,
                error_type=type(e).__name__,
                error=str(e),
                correlation_id=correlation_id,
            )

    async def fetch_all(self, spec: RequestSpec, total_records: int) -> RunOutcome:
        """Fetch every page of total_records and close the output file.

        Args:
            spec: Base request; query 'max' is the page size
            total_records: Total reported by the count probe

        Returns:
            RunOutcome with per-page results and failures

        Raises:
            SinkIOError: If the output file could not be written or closed
        """
        offsets = page_offsets(total_records, spec.page_size)
        self.logger.info(
            "Dispatching %d page requests for %s records.", len(offsets), f"{total_records:,}"
        )

        try:
            async with asyncio.TaskGroup() as group:
                tasks = [group.create_task(self._settle(spec, offset)) for offset in offsets]
        except ExceptionGroup as group_error:
            sink_errors = [e for e in group_error.exceptions if isinstance(e, SinkIOError)]
            if sink_errors:
                raise sink_errors[0] from group_error
            raise

        settled = [task.result() for task in tasks]
        pages = [item for item in settled if isinstance(item, PageResult)]
        failed = [item for item in settled if isinstance(item, FailedPage)]
        downloaded = sum(page.count for page in pages)

        sink_result = await self.sink.finalize()
        if sink_result.saved:
            self.logger.info("Total Records Downloaded: %s", f"{downloaded:,}")

        return RunOutcome(
            records_written=downloaded,
            pages=pages,
            failed_pages=failed,
            saved=sink_result.saved,
            output_file=sink_result.path,
        )
