import asyncio

import pytest

from tests.helpers import RecordingSleep, make_response, make_spec
from utils.errors import NetworkError, NotJSONError, ResponseError, ServerError, StillProcessingError
from utils.retry import RetryPolicy, build_wait
from utils.schemas import RequestSpec, TransportResponse


class FlakyHandler:
    """Fails with the given errors in order, then succeeds."""

    def __init__(self, errors: list[Exception]) -> None:
        self.errors = list(errors)
        self.calls = 0

    async def __call__(self, spec: RequestSpec) -> TransportResponse:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return make_response([{"id": 1}], spec=spec)


class AlwaysFailing:
    def __init__(self, make_error) -> None:
        self.make_error = make_error
        self.calls = 0

    async def __call__(self, spec: RequestSpec) -> TransportResponse:
        self.calls += 1
        raise self.make_error()


def _policy(sleep: RecordingSleep, **kwargs) -> RetryPolicy:
    values = {"max_attempts": 5, "no_response_max_attempts": 3, "sleep": sleep}
    values.update(kwargs)
    return RetryPolicy(**values)


def test_network_errors_stop_at_no_response_ceiling() -> None:
    sleep = RecordingSleep()
    handler = AlwaysFailing(lambda: NetworkError("connection refused", "cid-1"))

    with pytest.raises(NetworkError):
        asyncio.run(_policy(sleep).call(handler, make_spec()))

    assert handler.calls == 3


def test_server_errors_stop_at_response_ceiling() -> None:
    sleep = RecordingSleep()
    handler = AlwaysFailing(lambda: ServerError("boom", status_code=500))

    with pytest.raises(ServerError) as excinfo:
        asyncio.run(_policy(sleep).call(handler, make_spec()))

    assert handler.calls == 5
    assert excinfo.value.status_code == 500


def test_still_processing_resolves_before_ceiling() -> None:
    handler = FlakyHandler([StillProcessingError("Report IN_PROGRESS")] * 3)

    response = asyncio.run(_policy(RecordingSleep()).call(handler, make_spec()))

    assert handler.calls == 4
    assert response.data == [{"id": 1}]


def test_still_processing_exhausts_at_ceiling() -> None:
    handler = FlakyHandler([StillProcessingError("Report IN_PROGRESS")] * 5)

    with pytest.raises(StillProcessingError):
        asyncio.run(_policy(RecordingSleep()).call(handler, make_spec()))

    assert handler.calls == 5


def test_not_json_is_retried() -> None:
    handler = FlakyHandler([NotJSONError("Request did not return JSON")])

    asyncio.run(_policy(RecordingSleep()).call(handler, make_spec()))

    assert handler.calls == 2


def test_non_retryable_response_is_terminal_immediately() -> None:
    sleep = RecordingSleep()
    handler = AlwaysFailing(lambda: ResponseError("not found", status_code=404))

    with pytest.raises(ResponseError):
        asyncio.run(_policy(sleep).call(handler, make_spec()))

    assert handler.calls == 1
    assert sleep.delays == []


def test_unexpected_errors_are_not_retried() -> None:
    handler = AlwaysFailing(lambda: KeyError("bug"))

    with pytest.raises(KeyError):
        asyncio.run(_policy(RecordingSleep()).call(handler, make_spec()))

    assert handler.calls == 1


@pytest.mark.parametrize(
    ("backoff", "expected"),
    [
        ("exponential", [1.0, 2.0, 4.0, 8.0]),
        ("linear", [1.0, 2.0, 3.0, 4.0]),
        ("static", [1.0, 1.0, 1.0, 1.0]),
    ],
)
def test_backoff_strategies(backoff: str, expected: list[float]) -> None:
    sleep = RecordingSleep()
    handler = AlwaysFailing(lambda: ServerError("unavailable", status_code=503))
    policy = _policy(sleep, backoff=backoff, backoff_base=1.0, backoff_max=60.0)

    with pytest.raises(ServerError):
        asyncio.run(policy.call(handler, make_spec()))

    assert sleep.delays == expected


def test_backoff_is_capped() -> None:
    sleep = RecordingSleep()
    handler = AlwaysFailing(lambda: ServerError("unavailable", status_code=503))
    policy = _policy(sleep, backoff_base=10.0, backoff_max=15.0)

    with pytest.raises(ServerError):
        asyncio.run(policy.call(handler, make_spec()))

    assert max(sleep.delays) == 15.0


def test_unknown_backoff_type_is_rejected() -> None:
    with pytest.raises(ValueError):
        build_wait("fibonacci", 1.0, 10.0)


def test_retries_are_logged_with_correlation_id(caplog: pytest.LogCaptureFixture) -> None:
    handler = FlakyHandler([ServerError("unavailable", status_code=503, correlation_id="cid-42")])

    with caplog.at_level("WARNING", logger="utils.retry"):
        asyncio.run(_policy(RecordingSleep()).call(handler, make_spec()))

    retry_records = [r for r in caplog.records if "Retry attempt #1" in r.getMessage()]
    assert retry_records
    assert retry_records[0].correlation_id == "cid-42"
