"""
Pydantic Schemas - Data Validation Models

Defines the value types passed between the export pipeline stages:
- RequestSpec: immutable description of one API call
- TransportResponse: a response that made it through the transport stages
- RecordCount / PageResult / FailedPage / RunOutcome: fetch results
- SinkResult: outcome of closing the output file
- ExportReport: final status and exit code of a run
- RunCursor: the persisted "last successful run" record

Usage:
    from utils.schemas import RequestSpec

    page_spec = base_spec.with_query(offset=1000).with_correlation_id(uuid4().hex)
"""

from datetime import datetime
from typing import Any, Literal, Optional
from uuid import uuid4

from pydantic import UUID4, BaseModel, ConfigDict, Field, SecretStr, field_validator


class RequestSpec(BaseModel):
    """Immutable description of one logical API call.

    Built once from settings; per-call values (offset, max, correlation id)
    are applied with the with_* helpers, which return new instances.
    """

    model_config = ConfigDict(frozen=True)

    base_url: str
    uri_template: str
    path_params: dict[str, str] = Field(default_factory=dict)
    query: dict[str, Any] = Field(default_factory=dict)
    body: Optional[dict[str, Any]] = None
    method: str = "GET"
    bearer: SecretStr = SecretStr("")
    timeout: float = 180.0
    correlation_id: Optional[str] = None
    response_type: str = "json"

    @property
    def path(self) -> str:
        return self.uri_template.format_map(self.path_params)

    @property
    def url(self) -> str:
        return f"{self.base_url.rstrip('/')}/{self.path.lstrip('/')}"

    @property
    def params(self) -> dict[str, Any]:
        """Query parameters with unset values omitted."""
        return {key: value for key, value in self.query.items() if value is not None}

    @property
    def json_body(self) -> Optional[dict[str, Any]]:
        if not self.body:
            return None
        body = {key: value for key, value in self.body.items() if value is not None}
        return body or None

    @property
    def headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.bearer.get_secret_value()}"}

    @property
    def page_size(self) -> int:
        return int(self.query.get("max") or 0)

    def with_query(self, **overrides: Any) -> "RequestSpec":
        return self.model_copy(update={"query": {**self.query, **overrides}})

    def with_correlation_id(self, correlation_id: Optional[str] = None) -> "RequestSpec":
        return self.model_copy(update={"correlation_id": correlation_id or str(uuid4())})


class Timings(BaseModel):
    """Wall-clock timing of one HTTP exchange (machine time, not server time)."""

    sent: datetime
    received: datetime
    duration_ms: float


class TransportResponse(BaseModel):
    """A response as seen by the transport stages."""

    model_config = ConfigDict(frozen=True)

    status_code: int
    headers: dict[str, str] = Field(default_factory=dict)
    data: Any = None
    params: dict[str, Any] = Field(default_factory=dict)
    timings: Optional[Timings] = None
    correlation_id: Optional[str] = None


class RecordCount(BaseModel):
    """Result of the single-record count probe."""

    total: int
    paging_request_id: Optional[str] = None
    correlation_id: Optional[str] = None


class PageResult(BaseModel):
    """Outcome of one successful page fetch; window is [start, end)."""

    model_config = ConfigDict(frozen=True)

    count: int
    start: int
    end: int
    duration_ms: Optional[float] = None
    sent: Optional[datetime] = None
    correlation_id: Optional[str] = None


class FailedPage(BaseModel):
    """A page that reached a terminal failure."""

    model_config = ConfigDict(frozen=True)

    start: int
    end: int
    error_type: str
    error: str
    correlation_id: Optional[str] = None


class SinkResult(BaseModel):
    """What the streaming sink reports when it is finalized."""

    saved: bool
    path: str
    records_written: int = 0


class RunOutcome(BaseModel):
    """Aggregate of all page results for one orchestrated run.

    saved is True only when at least one record was written and the output
    file was closed without error.
    """

    records_written: int = 0
    pages: list[PageResult] = Field(default_factory=list)
    failed_pages: list[FailedPage] = Field(default_factory=list)
    saved: bool = False
    output_file: Optional[str] = None

    @property
    def complete(self) -> bool:
        return not self.failed_pages


class ExportReport(BaseModel):
    """What one export run ended with, mapped to a process exit code."""

    status: Literal["completed", "partial", "empty", "failed", "invalid_config"]
    exit_code: int
    total_records: Optional[int] = None
    outcome: Optional[RunOutcome] = None


class RunCursor(BaseModel):
    """Persisted last-successful-run record: {"orgid": ..., "updatedSince": ...}."""

    orgid: UUID4
    updatedSince: str

    @field_validator("updatedSince")
    @classmethod
    def validate_iso_timestamp(cls, v: str) -> str:
        try:
            datetime.fromisoformat(v)
        except ValueError as e:
            raise ValueError(f"updatedSince must be an ISO-8601 timestamp: {v!r}") from e
        return v

    def belongs_to(self, org_id: str) -> bool:
        return str(self.orgid).lower() == org_id.strip().lower()
