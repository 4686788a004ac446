"""
Retry Policy - Classified Retries with tenacity

Decides whether a failed request is attempted again and how long to wait:

- StillProcessingError and NotJSONError are always retried
- NetworkError and ServerError are retried while attempts remain
- Anything else (4xx responses, programming errors) is terminal immediately

Attempt ceilings are per error class and count total attempts, the first
one included: max_attempts when a response was received, no_response_max_attempts
when none was. Once the ceiling for the latest error is reached the error is
re-raised to the caller unchanged.

Usage:
    policy = RetryPolicy(max_attempts=5, no_response_max_attempts=4)
    send = policy.wrap(handler)
    response = await send(spec)
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    wait_exponential,
    wait_fixed,
    wait_incrementing,
)
from tenacity.wait import wait_base

from utils.errors import NetworkError, NotJSONError, StillProcessingError, TransportError
from utils.schemas import RequestSpec, TransportResponse

Handler = Callable[[RequestSpec], Awaitable[TransportResponse]]

BACKOFF_TYPES = ("exponential", "linear", "static")


def build_wait(backoff: str, base: float, maximum: float) -> wait_base:
    """Map a backoff name onto a tenacity wait strategy.

    Args:
        backoff: One of 'exponential', 'linear' or 'static'
        base: Base delay in seconds
        maximum: Upper bound for a single delay in seconds

    Returns:
        tenacity wait strategy
    """
    if backoff == "exponential":
        return wait_exponential(multiplier=base, max=maximum)
    if backoff == "linear":
        return wait_incrementing(start=base, increment=base, max=maximum)
    if backoff == "static":
        return wait_fixed(base)
    raise ValueError(f"Unknown backoff type {backoff!r}, expected one of {BACKOFF_TYPES}")


class RetryPolicy:
    """Bounded retry loop around a request handler."""

    def __init__(
        self,
        max_attempts: int = 5,
        no_response_max_attempts: int = 4,
        backoff: str = "exponential",
        backoff_base: float = 1.0,
        backoff_max: float = 60.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.max_attempts = max_attempts
        self.no_response_max_attempts = no_response_max_attempts
        self.wait = build_wait(backoff, backoff_base, backoff_max)
        self._sleep = sleep
        self.logger = logger or logging.getLogger(__name__)

    @staticmethod
    def should_retry(error: BaseException) -> bool:
        if isinstance(error, (StillProcessingError, NotJSONError)):
            return True
        return isinstance(error, TransportError) and error.retryable

    def ceiling_for(self, error: BaseException) -> int:
        if isinstance(error, NetworkError):
            return self.no_response_max_attempts
        return self.max_attempts

    def _stop(self, retry_state: RetryCallState) -> bool:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        if error is None:
            return True
        if retry_state.attempt_number < self.ceiling_for(error):
            return False

        label = "No Response Errors" if isinstance(error, NetworkError) else "Response Errors"
        self.logger.error(
            "Maximum retries reached for %s after attempt #%d.",
            label,
            retry_state.attempt_number,
            extra={"correlation_id": getattr(error, "correlation_id", None)},
        )
        return True

    def _before_sleep(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        self.logger.warning(
            "Retry attempt #%d failed with %s: %s. Retrying request in %.2fs.",
            retry_state.attempt_number,
            type(error).__name__,
            error,
            retry_state.upcoming_sleep,
            extra={"correlation_id": getattr(error, "correlation_id", None)},
        )

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=self._stop,
            wait=self.wait,
            retry=retry_if_exception(self.should_retry),
            before_sleep=self._before_sleep,
            sleep=self._sleep,
            reraise=True,
        )

    async def call(self, handler: Handler, spec: RequestSpec) -> TransportResponse:
        """Run handler(spec) until it succeeds or a terminal failure is reached.

        Raises:
            TransportError: The classified error of the last attempt
        """
        async for attempt in self._retrying():
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    self.logger.debug(
                        "Attempt #%d",
                        attempt.retry_state.attempt_number,
                        extra={"correlation_id": spec.correlation_id},
                    )
                return await handler(spec)
        raise AssertionError("unreachable: tenacity re-raises on stop")

    def wrap(self, handler: Handler) -> Handler:
        async def retried(spec: RequestSpec) -> TransportResponse:
            return await self.call(handler, spec)

        return retried

    @classmethod
    def from_settings(cls, settings: Any, **kwargs: Any) -> "RetryPolicy":
        return cls(
            max_attempts=settings.RETRY_MAX_ATTEMPTS,
            no_response_max_attempts=settings.RETRY_NO_RESPONSE_MAX_ATTEMPTS,
            backoff=settings.RETRY_BACKOFF,
            backoff_base=settings.RETRY_BACKOFF_BASE,
            backoff_max=settings.RETRY_BACKOFF_MAX,
            **kwargs,
        )
