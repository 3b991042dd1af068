# Copyright (c) 2025 Vahab Jabrayilov (vjabrayilov@cs.columbia.edu)
# Copyright (c) 2025 DAPLab of Columbia University (https://daplab.cs.columbia.edu/)
# Copyright (c) 2025 The Trustees of Columbia University in the City of New York

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol

from .prng import SeededRandom
from .store import ItemStore, SnapshotItemStore
from .types import OperationCategory

logger = logging.getLogger("minionbench.run")

LineSink = Callable[[str], None]
SleepFn = Callable[[float], Awaitable[None]]


class ReportMetric(Protocol):
    def __call__(
        self,
        latency_ms: float,
        success: bool,
        *,
        category: OperationCategory = OperationCategory.ACTION,
        operation: str = "operation",
        error: Optional[str] = None,
    ) -> None: ...


class RunLog:
    """Behavior-facing log sink.

    Callable with a plain string, or structured through ``action``, ``result``, ``error``
    and ``metric``. Every line goes to ``sink`` and to the ``minionbench.run`` logger.
    """

    def __init__(self, sink: Optional[LineSink] = None):
        self.sink = sink
        self.metrics: Dict[str, float] = {}

    def _emit(self, level: int, line: str) -> None:
        logger.log(level, line)
        if self.sink is not None:
            self.sink(line)

    def __call__(self, message: str) -> None:
        self.info(message)

    def info(self, message: str) -> None:
        self._emit(logging.INFO, message)

    def action(self, name: str, target: Optional[str] = None, args: Optional[Dict[str, Any]] = None) -> None:
        line = f"-> {name}"
        if target:
            line += f" {target}"
        if args:
            line += " " + ", ".join(f"{k}={v!r}" for k, v in args.items())
        self._emit(logging.DEBUG, line)

    def result(self, success: bool, message: str, latency_ms: Optional[float] = None) -> None:
        line = f"{'ok' if success else 'FAIL'}: {message}"
        if latency_ms is not None:
            line += f" ({latency_ms:.0f}ms)"
        self._emit(logging.INFO if success else logging.WARNING, line)

    def error(self, message: str, code: Optional[str] = None) -> None:
        self._emit(logging.ERROR, f"ERROR{f' [{code}]' if code else ''}: {message}")

    def metric(self, name: str, value: float, op: str = "set") -> None:
        if op == "inc":
            self.metrics[name] = self.metrics.get(name, 0) + value
        elif op == "set":
            self.metrics[name] = value
        else:
            raise ValueError(f"unknown metric op {op!r}")


@dataclass
class ExecutionContext:
    """Capabilities handed to a behavior for one run."""

    random: SeededRandom
    store: ItemStore
    log: RunLog
    should_stop: Callable[[], bool]
    sleep: SleepFn
    report_metric: Optional[ReportMetric] = None
    variant: str = "headless"

    def report(
        self,
        category: OperationCategory,
        operation: str,
        latency_ms: float,
        success: bool,
        error: Optional[str] = None,
    ) -> None:
        if self.report_metric is not None:
            self.report_metric(latency_ms, success, category=category, operation=operation, error=error)


def stop_aware_sleep(stop: asyncio.Event) -> SleepFn:
    """Sleep that returns as soon as ``stop`` is set."""

    async def sleep(ms: float) -> None:
        if stop.is_set():
            return
        try:
            await asyncio.wait_for(stop.wait(), timeout=max(0.0, ms) / 1000.0)
        except asyncio.TimeoutError:
            pass

    return sleep


def print_sink(message: str) -> None:
    print(f"[{time.strftime('%H:%M:%S')}] {message}", flush=True)


def headless_context(
    store: ItemStore,
    *,
    seed: int,
    should_stop: Callable[[], bool],
    sleep: SleepFn,
    log_sink: Optional[LineSink] = print_sink,
    report_metric: Optional[ReportMetric] = None,
) -> ExecutionContext:
    """Context for CLI/worker processes: reads go straight to the store."""
    return ExecutionContext(
        random=SeededRandom(seed),
        store=store,
        log=RunLog(log_sink),
        should_stop=should_stop,
        sleep=sleep,
        report_metric=report_metric,
        variant="headless",
    )


def interactive_context(
    store: ItemStore,
    *,
    seed: int,
    should_stop: Callable[[], bool],
    sleep: SleepFn,
    log_sink: Optional[LineSink] = None,
    report_metric: Optional[ReportMetric] = None,
    max_age_s: float = 1.0,
) -> ExecutionContext:
    """Context for UI hosts: reads come from a snapshot cache, lines feed the UI log."""
    if not isinstance(store, SnapshotItemStore):
        store = SnapshotItemStore(store, max_age_s=max_age_s)
    return ExecutionContext(
        random=SeededRandom(seed),
        store=store,
        log=RunLog(log_sink),
        should_stop=should_stop,
        sleep=sleep,
        report_metric=report_metric,
        variant="interactive",
    )


CONTEXT_VARIANTS = {
    "headless": headless_context,
    "interactive": interactive_context,
}
