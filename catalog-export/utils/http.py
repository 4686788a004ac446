"""
HTTP Transport - Rate-Limited, Validated, Retried Requests

Composes the request stages around a shared httpx.AsyncClient:

    retry( polling_check( expect_json( rate_limited( raw_call ))))

- raw_call: sends the request, captures machine-time timings and classifies
  failures (NetworkError when no response, ServerError/ResponseError by status)
- rate_limited: holds a limiter permit for the duration of each attempt
- expect_json: parses the body; a non-empty body that is not JSON is NotJSONError
- polling_check: a body with status IN_PROGRESS is StillProcessingError
- retry: RetryPolicy decides whether to attempt again

Each stage takes a RequestSpec and returns a TransportResponse or raises a
classified TransportError.

Usage:
    async with httpx.AsyncClient() as client:
        transport = Transport(client, limiter, RetryPolicy())
        response = await transport.send(spec)
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional

import httpx
import orjson

from utils.errors import NetworkError, NotJSONError, ResponseError, ServerError, StillProcessingError
from utils.ratelimit import RateLimiter
from utils.retry import Handler, RetryPolicy
from utils.schemas import RequestSpec, Timings, TransportResponse

POLLING_STATUS = "IN_PROGRESS"

logger = logging.getLogger(__name__)


def _api_errors(response: httpx.Response) -> list[Any]:
    """Pull the API's error messages out of an error response body, if any."""
    try:
        body = orjson.loads(response.content)
    except orjson.JSONDecodeError:
        return []
    if isinstance(body, dict) and isinstance(body.get("errors"), list):
        return body["errors"]
    return []


def make_raw_call(
    client: httpx.AsyncClient,
    retry_status_codes: Iterable[int] = (429,),
    logger: logging.Logger = logger,
) -> Handler:
    """Build the innermost stage: one HTTP exchange with timings.

    Args:
        client: Shared client (connection pooling, keep-alive)
        retry_status_codes: Status codes besides 5xx that are worth retrying
        logger: Logger for request/response debug lines

    Returns:
        Handler issuing the request described by a RequestSpec
    """
    retryable = frozenset(retry_status_codes)

    async def raw_call(spec: RequestSpec) -> TransportResponse:
        params = spec.params
        logger.debug(
            "REQUEST: %s %s Params: %s",
            spec.method,
            spec.url,
            params,
            extra={"correlation_id": spec.correlation_id},
        )
        sent = datetime.now(timezone.utc)
        try:
            response = await client.request(
                spec.method,
                spec.url,
                params=params or None,
                json=spec.json_body,
                headers=spec.headers,
                timeout=spec.timeout,
            )
        except httpx.TimeoutException as e:
            raise NetworkError(f"Request timed out: {e!r}", spec.correlation_id) from e
        except httpx.TransportError as e:
            raise NetworkError(f"No response received: {e!r}", spec.correlation_id) from e

        received = datetime.now(timezone.utc)
        timings = Timings(
            sent=sent,
            received=received,
            duration_ms=(received - sent).total_seconds() * 1000,
        )
        logger.debug(
            "RESPONSE: Status: %d:%s Duration ms: %.0f.",
            response.status_code,
            response.reason_phrase,
            timings.duration_ms,
            extra={"correlation_id": spec.correlation_id},
        )

        if response.is_error:
            error_cls = (
                ServerError
                if response.status_code >= 500 or response.status_code in retryable
                else ResponseError
            )
            raise error_cls(
                f"Request failed with status code {response.status_code}",
                status_code=response.status_code,
                correlation_id=spec.correlation_id,
                api_errors=_api_errors(response),
            )

        return TransportResponse(
            status_code=response.status_code,
            headers={key.lower(): value for key, value in response.headers.items()},
            data=response.text,
            params=params,
            timings=timings,
            correlation_id=spec.correlation_id,
        )

    return raw_call


def rate_limited(limiter: RateLimiter) -> Callable[[Handler], Handler]:
    def stage(handler: Handler) -> Handler:
        async def limited(spec: RequestSpec) -> TransportResponse:
            async with limiter.limit():
                return await handler(spec)

        return limited

    return stage


def expect_json(handler: Handler) -> Handler:
    """Parse JSON bodies; sometimes the API answers 200 with something else."""

    async def parsed(spec: RequestSpec) -> TransportResponse:
        response = await handler(spec)
        if spec.response_type != "json":
            return response
        if isinstance(response.data, (str, bytes)) and len(response.data):
            try:
                data = orjson.loads(response.data)
            except orjson.JSONDecodeError as e:
                raise NotJSONError("Request did not return JSON", spec.correlation_id) from e
            return response.model_copy(update={"data": data})
        return response

    return parsed


def polling_check(handler: Handler) -> Handler:
    """Report IN_PROGRESS bodies as failures so they are retried."""

    async def checked(spec: RequestSpec) -> TransportResponse:
        response = await handler(spec)
        status = response.data.get("status") if isinstance(response.data, dict) else None
        if isinstance(status, str) and status.casefold() == POLLING_STATUS.casefold():
            raise StillProcessingError("Report IN_PROGRESS", spec.correlation_id)
        return response

    return checked


class Transport:
    """Sends RequestSpecs through the full stage chain."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        limiter: RateLimiter,
        retry_policy: RetryPolicy,
        retry_status_codes: Iterable[int] = (429,),
        logger: Optional[logging.Logger] = None,
        raw_call: Optional[Handler] = None,
    ) -> None:
        """
        Initialize the transport.

        Args:
            client: Shared httpx client
            limiter: Rate limiter gating every attempt
            retry_policy: Retry decisions and backoff
            retry_status_codes: Status codes besides 5xx classified as ServerError
            logger: Logger for request/response lines
            raw_call: Replacement for the innermost HTTP stage
        """
        self.logger = logger or logging.getLogger(__name__)
        raw = raw_call or make_raw_call(client, retry_status_codes, self.logger)
        self._send: Handler = retry_policy.wrap(
            polling_check(expect_json(rate_limited(limiter)(raw)))
        )

    async def send(self, spec: RequestSpec) -> TransportResponse:
        return await self._send(spec)


def build_client(max_connections: int = 10) -> httpx.AsyncClient:
    """Create the shared client with keep-alive connection pooling."""
    limits = httpx.Limits(max_keepalive_connections=max_connections, max_connections=max_connections)
    return httpx.AsyncClient(limits=limits, follow_redirects=True)
