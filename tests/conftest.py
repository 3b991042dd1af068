"""Shared fixtures: a recording context factory and a fake aiohttp session."""

from __future__ import annotations

import json
from typing import Any, Callable, Dict, List, Optional

import pytest

from minionbench.context import ExecutionContext, headless_context
from minionbench.store import InMemoryItemStore


class Recorder:
    """Collects report_metric calls and log lines from a context."""

    def __init__(self) -> None:
        self.reports: List[Dict[str, Any]] = []
        self.lines: List[str] = []

    def report_metric(self, latency_ms, success, *, category, operation, error=None):
        self.reports.append(
            {"latency_ms": latency_ms, "success": success, "category": category, "operation": operation,
             "error": error}
        )

    def log(self, line: str) -> None:
        self.lines.append(line)


async def no_sleep(ms: float) -> None:
    return None


def stop_after(n: int) -> Callable[[], bool]:
    """Stop predicate that turns true on its (n+1)-th poll."""
    calls = {"n": 0}

    def should_stop() -> bool:
        calls["n"] += 1
        return calls["n"] > n

    return should_stop


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


@pytest.fixture
def store() -> InMemoryItemStore:
    return InMemoryItemStore()


@pytest.fixture
def make_ctx(recorder: Recorder, store: InMemoryItemStore):
    def _make(seed: int = 1, should_stop: Optional[Callable[[], bool]] = None, item_store=None) -> ExecutionContext:
        return headless_context(
            item_store if item_store is not None else store,
            seed=seed,
            should_stop=should_stop or (lambda: False),
            sleep=no_sleep,
            log_sink=recorder.log,
            report_metric=recorder.report_metric,
        )

    return _make


class FakeResponse:
    """Mimics the parts of an aiohttp response the package reads."""

    def __init__(self, status: int, json_data: Any = None):
        self.status = status
        self._json_data = json_data

    async def json(self):
        return self._json_data

    async def text(self):
        return json.dumps(self._json_data)


class _RespCM:
    def __init__(self, resp: FakeResponse, exc: Optional[BaseException] = None):
        self._resp = resp
        self._exc = exc

    async def __aenter__(self):
        if self._exc is not None:
            raise self._exc
        return self._resp

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeSession:
    """Records requests and answers from a queue of (status, body) pairs."""

    def __init__(self, responses: Optional[List[Any]] = None):
        self.responses = list(responses or [])
        self.requests: List[Dict[str, Any]] = []
        self.closed = False

    def _next(self) -> _RespCM:
        if not self.responses:
            return _RespCM(FakeResponse(200, {}))
        nxt = self.responses.pop(0)
        if isinstance(nxt, BaseException):
            return _RespCM(FakeResponse(0), exc=nxt)
        status, body = nxt
        return _RespCM(FakeResponse(status, body))

    def request(self, method: str, url: str, **kwargs: Any) -> _RespCM:
        self.requests.append({"method": method, "url": url, **kwargs})
        return self._next()

    def post(self, url: str, **kwargs: Any) -> _RespCM:
        return self.request("POST", url, **kwargs)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()
