"""Test doubles shared across the test modules."""

import asyncio
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from utils.config import Settings
from utils.schemas import RequestSpec, Timings, TransportResponse

ORG_A = "5c2c1f9e-8d3b-4f6a-9a51-3e1f8b7d2c40"
ORG_B = "9f0e7a62-1b4c-4d8e-b2a3-6c5d4e3f2a10"


class FakeClock:
    """Monotonic clock whose sleep advances time instantly."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        self.now += max(0.0, delay)
        await asyncio.sleep(0)


class RecordingSleep:
    """Async sleep replacement that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def make_spec(**overrides: Any) -> RequestSpec:
    values: dict[str, Any] = {
        "base_url": "https://api.example.test",
        "uri_template": "/content-discovery/v2/organizations/{orgId}/catalog-content",
        "path_params": {"orgId": ORG_A},
        "query": {"max": 1000, "offset": None, "updatedSince": None},
        "bearer": "secret-token",
        "timeout": 5.0,
    }
    values.update(overrides)
    return RequestSpec(**values)


def make_response(
    data: Any = None,
    headers: Optional[dict[str, str]] = None,
    spec: Optional[RequestSpec] = None,
) -> TransportResponse:
    now = datetime.now(timezone.utc)
    return TransportResponse(
        status_code=200,
        headers=headers or {},
        data=data,
        params=spec.params if spec else {},
        timings=Timings(sent=now, received=now, duration_ms=12.0),
        correlation_id=spec.correlation_id if spec else None,
    )


class FakeTransport:
    """Transport double answering each RequestSpec through a callable."""

    def __init__(self, answer: Callable[[RequestSpec], Any]) -> None:
        self.answer = answer
        self.sent: list[RequestSpec] = []

    async def send(self, spec: RequestSpec) -> TransportResponse:
        self.sent.append(spec)
        await asyncio.sleep(0)
        result = self.answer(spec)
        if isinstance(result, BaseException):
            raise result
        if isinstance(result, TransportResponse):
            return result
        return make_response(result, spec=spec)


def make_settings(tmp_path: Any, **overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "ORG_ID": ORG_A,
        "BASE_URL": "https://api.example.test",
        "BEARER": "secret-token",
        "OUTPUT_DIR": str(tmp_path / "results"),
        "OUTPUT_FILENAME": "catalog.json",
        "CURSOR_PATH": str(tmp_path / "lastrun.json"),
        "LOG_DIR": str(tmp_path / "logs"),
        "RATE_MIN_TIME": 0.0,
        "RETRY_BACKOFF_BASE": 0.0,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)
