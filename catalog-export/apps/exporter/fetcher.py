"""
Page Fetcher - One Bounded Request per Call

Issues the count probe and the data page requests through the transport
(rate limiter, JSON check, polling check, retries) and turns responses into
RecordCount / PageResult values.

Features:
- Fresh correlation id per logical request, shared by all its attempts
- Records of a successful page are handed to the sink, in response order,
  before the page result is returned
- Failures propagate unchanged so the orchestrator can record them
"""

import logging
from typing import Any, Optional

from apps.exporter.sink import JsonArraySink
from utils.errors import RecordCountError
from utils.http import Transport
from utils.schemas import PageResult, RecordCount, RequestSpec

TOTAL_COUNT_HEADER = "x-total-count"
PAGING_REQUEST_ID_HEADER = "x-paging-request-id"


class PageFetcher:
    """
    Fetches single pages of the catalog.

    Handles:
    - Count probe (max=1) reading the total and paging session headers
    - Page requests for one [offset, offset + max) window
    - Streaming page records into the sink
    """

    def __init__(
        self,
        transport: Transport,
        sink: Optional[JsonArraySink] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.transport = transport
        self.sink = sink
        self.logger = logger or logging.getLogger(__name__)

    async def get_record_count(self, spec: RequestSpec) -> RecordCount:
        """Request a single record so the total count can be read from headers.

        Raises:
            RecordCountError: If the total count header is missing or not a number
            TransportError: If the probe request failed terminally
        """
        probe = spec.with_query(max=1).with_correlation_id()
        extra = {"correlation_id": probe.correlation_id}
        self.logger.info("Requesting single record to determine count of available.", extra=extra)

        response = await self.transport.send(probe)

        raw_total = response.headers.get(TOTAL_COUNT_HEADER)
        try:
            total = int(raw_total)  # type: ignore[arg-type]
        except (TypeError, ValueError) as e:
            raise RecordCountError(
                f"Response did not carry a usable {TOTAL_COUNT_HEADER} header: {raw_total!r}"
            ) from e

        result = RecordCount(
            total=total,
            paging_request_id=response.headers.get(PAGING_REQUEST_ID_HEADER) or None,
            correlation_id=response.correlation_id,
        )

        message = [f"Total Records [{TOTAL_COUNT_HEADER!r}]: {result.total:,}"]
        if result.paging_request_id is not None:
            message.append(f"Paging request id [{PAGING_REQUEST_ID_HEADER!r}]: {result.paging_request_id}")
        self.logger.info(" ".join(message), extra=extra)
        return result

    async def fetch_page(self, spec: RequestSpec, offset: int) -> PageResult:
        """Fetch the page starting at offset and stream its records to the sink.

        Args:
            spec: Base request; its query 'max' is the page size
            offset: First record of the window

        Returns:
            PageResult for the window

        Raises:
            TransportError: If the request failed terminally
            SinkIOError: If the records could not be written
        """
        page = spec.with_query(offset=offset).with_correlation_id()
        extra = {"correlation_id": page.correlation_id}
        end = offset + page.page_size
        self.logger.info("Records Requested: %s to %s.", f"{offset:,}", f"{end:,}", extra=extra)

        response = await self.transport.send(page)

        records: list[Any] = response.data if isinstance(response.data, list) else []
        result = PageResult(
            count=len(records),
            start=offset,
            end=end,
            duration_ms=response.timings.duration_ms if response.timings else None,
            sent=response.timings.sent if response.timings else None,
            correlation_id=response.correlation_id,
        )
        self.logger.info(
            "Records Requested: %s to %s. Duration ms: %s. Records Returned: %s.",
            f"{result.start:,}",
            f"{result.end:,}",
            f"{result.duration_ms:.0f}" if result.duration_ms is not None else None,
            f"{result.count:,}",
            extra=extra,
        )

        if records and self.sink is not None:
            await self.sink.write_many(records)
        return result
