"""
Error Taxonomy - Classified Failures for the Export Pipeline

Transport errors are classified at the point they happen so the retry policy
and the orchestrator can decide what to do without inspecting raw HTTP state:

- NetworkError: no response received (timeout, connection refused/reset)
- ServerError: response received with a retryable status code
- ResponseError: response received with a non-retryable status code
- NotJSONError: body was expected to be JSON and failed to parse
- StillProcessingError: the API reported the data is not ready yet

Run-level errors (SinkIOError, RecordCountError, ConfigurationError) end the run.
"""

from typing import Any, Optional


class ExportError(Exception):
    """Base class for all catalog export errors."""


class ConfigurationError(ExportError):
    """Required configuration is missing or invalid."""


class TransportError(ExportError):
    """A request failed; carries the correlation id of the request chain."""

    retryable = False

    def __init__(self, message: str, correlation_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.correlation_id = correlation_id


class NetworkError(TransportError):
    """No response was received."""

    retryable = True


class ResponseError(TransportError):
    """A response was received with an error status."""

    def __init__(
        self,
        message: str,
        status_code: int,
        correlation_id: Optional[str] = None,
        api_errors: Optional[list[Any]] = None,
    ) -> None:
        super().__init__(message, correlation_id)
        self.status_code = status_code
        self.api_errors = api_errors or []

    def __str__(self) -> str:
        message = super().__str__()
        if self.api_errors:
            return f"{message} API errors: {self.api_errors}"
        return message


class ServerError(ResponseError):
    """A response was received with a retryable status (5xx or configured)."""

    retryable = True


class NotJSONError(TransportError):
    """The response body was not valid JSON."""

    retryable = True


class StillProcessingError(TransportError):
    """The API answered with status IN_PROGRESS."""

    retryable = True


class CursorValidationError(ExportError):
    """The persisted run cursor is malformed or belongs to another organization."""


class SinkIOError(ExportError):
    """Writing the output file failed."""


class RecordCountError(ExportError):
    """The total record count could not be determined."""
