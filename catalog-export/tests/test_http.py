import asyncio
from typing import Callable

import httpx
import orjson
import pytest

from tests.helpers import ORG_A, RecordingSleep, make_spec
from utils.errors import NetworkError, NotJSONError, ResponseError, ServerError, StillProcessingError
from utils.http import Transport, expect_json, make_raw_call, polling_check
from utils.ratelimit import RateLimiter
from utils.retry import RetryPolicy
from utils.schemas import RequestSpec, TransportResponse


def _send(
    handler: Callable[[httpx.Request], httpx.Response],
    spec: RequestSpec,
    limiter: RateLimiter | None = None,
    retry_status_codes: tuple[int, ...] = (429,),
) -> TransportResponse:
    async def run() -> TransportResponse:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            transport = Transport(
                client,
                limiter or RateLimiter(),
                RetryPolicy(max_attempts=4, no_response_max_attempts=2, sleep=RecordingSleep()),
                retry_status_codes=retry_status_codes,
            )
            return await transport.send(spec)

    return asyncio.run(run())


class Counter:
    def __init__(self, responses: list[httpx.Response | Exception]) -> None:
        self.responses = responses
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        index = min(len(self.requests), len(self.responses)) - 1
        result = self.responses[index]
        if isinstance(result, Exception):
            raise result
        return result


def test_request_is_built_from_spec() -> None:
    handler = Counter([httpx.Response(200, json=[{"id": 1}], headers={"X-Total-Count": "1"})])
    spec = make_spec(query={"max": 1000, "offset": 2000, "updatedSince": None}).with_correlation_id("cid-1")

    response = _send(handler, spec)

    request = handler.requests[0]
    assert request.url.path == f"/content-discovery/v2/organizations/{ORG_A}/catalog-content"
    assert dict(request.url.params) == {"max": "1000", "offset": "2000"}
    assert request.headers["Authorization"] == "Bearer secret-token"
    assert response.data == [{"id": 1}]
    assert response.headers["x-total-count"] == "1"
    assert response.correlation_id == "cid-1"
    assert response.timings is not None and response.timings.duration_ms >= 0


def test_request_body_omits_unset_values() -> None:
    handler = Counter([httpx.Response(200, json=[])])

    _send(handler, make_spec(method="POST", body={"filter": "x", "unused": None}))

    assert orjson.loads(handler.requests[0].content) == {"filter": "x"}


def test_not_json_body_is_retried_until_ceiling() -> None:
    handler = Counter([httpx.Response(200, text="<html>maintenance</html>")])

    with pytest.raises(NotJSONError):
        _send(handler, make_spec())

    assert len(handler.requests) == 4


def test_empty_body_is_not_a_json_failure() -> None:
    handler = Counter([httpx.Response(200, text="")])

    response = _send(handler, make_spec())

    assert response.data == ""
    assert len(handler.requests) == 1


def test_in_progress_is_polled_until_ready() -> None:
    handler = Counter(
        [
            httpx.Response(200, json={"status": "IN_PROGRESS"}),
            httpx.Response(200, json={"status": "in_progress"}),
            httpx.Response(200, json=[{"id": 7}]),
        ]
    )

    response = _send(handler, make_spec())

    assert response.data == [{"id": 7}]
    assert len(handler.requests) == 3


def test_server_error_is_retried_then_surfaced() -> None:
    handler = Counter([httpx.Response(503, json={"errors": [{"message": "try later"}]})])

    with pytest.raises(ServerError) as excinfo:
        _send(handler, make_spec())

    assert len(handler.requests) == 4
    assert "try later" in str(excinfo.value)


def test_configured_status_code_is_retryable() -> None:
    handler = Counter([httpx.Response(429), httpx.Response(200, json=[])])

    _send(handler, make_spec())

    assert len(handler.requests) == 2


def test_client_error_is_not_retried() -> None:
    handler = Counter([httpx.Response(401, json={"errors": [{"code": "unauthorized"}]})])

    with pytest.raises(ResponseError) as excinfo:
        _send(handler, make_spec())

    assert not isinstance(excinfo.value, ServerError)
    assert excinfo.value.status_code == 401
    assert excinfo.value.api_errors == [{"code": "unauthorized"}]
    assert len(handler.requests) == 1


def test_connection_errors_use_no_response_ceiling() -> None:
    handler = Counter([httpx.ConnectError("connection refused")])

    with pytest.raises(NetworkError) as excinfo:
        _send(handler, make_spec().with_correlation_id("cid-9"))

    assert len(handler.requests) == 2
    assert excinfo.value.correlation_id == "cid-9"


def test_timeouts_are_network_errors() -> None:
    handler = Counter([httpx.ReadTimeout("timed out"), httpx.Response(200, json=[])])

    response = _send(handler, make_spec())

    assert response.data == []
    assert len(handler.requests) == 2


def test_every_attempt_takes_a_rate_limit_permit() -> None:
    limiter = RateLimiter(reservoir=10)
    handler = Counter([httpx.Response(500), httpx.Response(500), httpx.Response(200, json=[])])

    _send(handler, make_spec(), limiter=limiter)

    assert limiter.reservoir == 7
    assert limiter.in_flight == 0


def test_json_check_runs_before_polling_check() -> None:
    async def raw(spec: RequestSpec) -> TransportResponse:
        return TransportResponse(status_code=200, data='{"status": "IN_PROGRESS"}')

    with pytest.raises(StillProcessingError):
        asyncio.run(polling_check(expect_json(raw))(make_spec()))


def test_non_json_response_type_skips_parsing() -> None:
    async def raw(spec: RequestSpec) -> TransportResponse:
        return TransportResponse(status_code=200, data="a,b,c")

    response = asyncio.run(expect_json(raw)(make_spec(response_type="text")))

    assert response.data == "a,b,c"


def test_raw_call_classifies_5xx_without_configured_codes() -> None:
    async def run() -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(502))
        async with httpx.AsyncClient(transport=transport) as client:
            await make_raw_call(client, retry_status_codes=())(make_spec())

    with pytest.raises(ServerError):
        asyncio.run(run())
