"""
Export Job - One Full or Incremental Catalog Export

Sequences a run:
1. Resolve the incremental filter (UPDATED_SINCE setting, else the run cursor)
2. Probe the record count with a single-record request
3. Fetch every page concurrently into the JSON array output file
4. Store the cursor only when every page succeeded

Exit codes:
- 0: every page fetched, or nothing to download
- 1: the count probe, a page or the output file failed
- 2: required configuration missing
"""

import logging
from contextlib import AsyncExitStack
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import httpx

from apps.exporter.cursor import CursorStore
from apps.exporter.fetcher import PageFetcher
from apps.exporter.orchestrator import PaginationOrchestrator
from apps.exporter.sink import JsonArraySink
from utils.config import Settings
from utils.errors import ConfigurationError, RecordCountError, SinkIOError, TransportError
from utils.http import Transport, build_client
from utils.ratelimit import RateLimiter
from utils.retry import RetryPolicy
from utils.schemas import ExportReport, RequestSpec

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2

logger = logging.getLogger(__name__)


def build_base_spec(settings: Settings, updated_since: Optional[str] = None) -> RequestSpec:
    """Build the immutable request every page request is derived from."""
    return RequestSpec(
        base_url=settings.BASE_URL,
        uri_template=settings.URI_TEMPLATE,
        path_params={"orgId": settings.ORG_ID},
        query={
            "transformName": settings.TRANSFORM_NAME,
            "updatedSince": updated_since,
            "offset": None,
            "max": settings.PAGE_MAX,
            "system": settings.SYSTEM,
            "pagingRequestId": None,
        },
        body=settings.REQUEST_BODY,
        method=settings.REQUEST_METHOD,
        bearer=settings.BEARER,
        timeout=settings.REQUEST_TIMEOUT,
    )


async def run_export(
    settings: Settings,
    *,
    client: Optional[httpx.AsyncClient] = None,
    limiter: Optional[RateLimiter] = None,
    retry_policy: Optional[RetryPolicy] = None,
    started_at: Optional[datetime] = None,
    logger: logging.Logger = logger,
) -> ExportReport:
    """
    Run one export and report how it ended.

    Args:
        settings: Resolved application settings
        client: Shared HTTP client; one is created (and closed) when omitted
        limiter: Rate limiter; built from settings when omitted
        retry_policy: Retry policy; built from settings when omitted
        started_at: Run start time, used for file names and the cursor
        logger: Logger the run components log through

    Returns:
        ExportReport with status and exit code
    """
    started_at = started_at or datetime.now(timezone.utc)
    logger.info("Start %s - v%s", settings.APP_NAME, settings.APP_VERSION)

    try:
        settings.require_api()
    except ConfigurationError as e:
        logger.error("Invalid configuration: %s", e)
        return ExportReport(status="invalid_config", exit_code=EXIT_CONFIG)

    logger.debug("Options: %s", settings.model_dump_json())

    try:
        async with AsyncExitStack() as stack:
            if client is None:
                client = await stack.enter_async_context(build_client(settings.RATE_MAX_CONCURRENT))
            return await _export(
                settings,
                client=client,
                limiter=limiter or RateLimiter.from_settings(settings, logger=logger.getChild("ratelimit")),
                retry_policy=retry_policy or RetryPolicy.from_settings(settings, logger=logger.getChild("retry")),
                started_at=started_at,
                logger=logger,
            )
    finally:
        logger.info("End %s - v%s", settings.APP_NAME, settings.APP_VERSION)


async def _export(
    settings: Settings,
    *,
    client: httpx.AsyncClient,
    limiter: RateLimiter,
    retry_policy: RetryPolicy,
    started_at: datetime,
    logger: logging.Logger,
) -> ExportReport:
    cursor_store = CursorStore(settings.CURSOR_PATH, logger=logger.getChild("cursor"))

    updated_since = settings.UPDATED_SINCE
    if updated_since is None:
        updated_since = cursor_store.load(settings.ORG_ID)
    spec = build_base_spec(settings, updated_since)

    transport = Transport(
        client,
        limiter,
        retry_policy,
        retry_status_codes=settings.RETRY_STATUS_CODES,
        logger=logger.getChild("http"),
    )

    logger.info("Calling catalog API")
    try:
        count = await PageFetcher(transport, logger=logger.getChild("fetcher")).get_record_count(spec)
    except (TransportError, RecordCountError) as e:
        logger.error(
            "Could not determine record count: %s",
            e,
            extra={"correlation_id": getattr(e, "correlation_id", None)},
        )
        return ExportReport(status="failed", exit_code=EXIT_FAILED)

    if count.total <= 0:
        logger.info("No records to download")
        return ExportReport(status="empty", exit_code=EXIT_OK, total_records=count.total)

    spec = spec.with_query(pagingRequestId=count.paging_request_id)
    output_file = Path(settings.OUTPUT_DIR) / settings.output_filename(started_at)

    try:
        async with JsonArraySink(output_file, settings.INCLUDE_BOM, logger=logger.getChild("sink")) as sink:
            fetcher = PageFetcher(transport, sink, logger=logger.getChild("fetcher"))
            orchestrator = PaginationOrchestrator(fetcher, sink, logger=logger.getChild("orchestrator"))
            outcome = await orchestrator.fetch_all(spec, count.total)
    except SinkIOError as e:
        logger.error("Output file failed, run aborted: %s", e)
        return ExportReport(status="failed", exit_code=EXIT_FAILED, total_records=count.total)

    if outcome.failed_pages:
        logger.error(
            "Failed to complete download. %d requests failed. Failed offsets: %s",
            len(outcome.failed_pages),
            ", ".join(str(page.start) for page in outcome.failed_pages),
        )
        return ExportReport(
            status="partial", exit_code=EXIT_FAILED, total_records=count.total, outcome=outcome
        )

    cursor_store.store(settings.ORG_ID, started_at)
    return ExportReport(status="completed", exit_code=EXIT_OK, total_records=count.total, outcome=outcome)
