# Copyright (c) 2025 Vahab Jabrayilov (vjabrayilov@cs.columbia.edu)
# Copyright (c) 2025 DAPLab of Columbia University (https://daplab.cs.columbia.edu/)
# Copyright (c) 2025 The Trustees of Columbia University in the City of New York

from __future__ import annotations

import asyncio
import contextlib
import inspect
import json
import logging
import threading
import time
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

import aiohttp

from .collector import LatencyCollector, batch_metrics
from .config import ReporterConfig
from .errors import DeliveryFailure
from .types import AggregateMetrics, OperationCategory, Sample

logger = logging.getLogger(__name__)

FlushSink = Callable[[List[Sample]], Union[None, Awaitable[None]]]
RecordObserver = Callable[[Sample], None]


class JsonlSink:
    """Flush sink appending one JSON object per sample to a file."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self.written = 0

    def __call__(self, batch: List[Sample]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as f:
            for s in batch:
                f.write(json.dumps(s.to_json(), sort_keys=True) + "\n")
        self.written += len(batch)


class LatencyReporter:
    """Collector wrapper with a timer and buffer-size flush policy.

    A flush first drains the collector (one atomic swap) and only then delivers the batch,
    so each sample lands in exactly one batch no matter how the timer, the size trigger and
    the shutdown flush interleave. Delivery is at-most-once: a batch whose sink fails is
    logged and dropped.
    """

    def __init__(
        self,
        cfg: Optional[ReporterConfig] = None,
        *,
        on_flush: Optional[FlushSink] = None,
        on_record: Optional[RecordObserver] = None,
        collector: Optional[LatencyCollector] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.cfg = cfg or ReporterConfig()
        self.on_flush = on_flush
        self.on_record = on_record
        self.collector = collector or LatencyCollector()

        self._session = session
        self._owns_session = session is None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._timer: Optional[asyncio.Task] = None
        self._pending: Set[asyncio.Task] = set()
        self._flush_scheduled = threading.Event()

        self.flushes = 0
        self.delivered = 0
        self.dropped = 0

    @property
    def running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    # -- lifecycle -------------------------------------------------------

    async def start(self) -> None:
        if self.running or not self.cfg.enabled:
            return
        self._loop = asyncio.get_running_loop()
        self._timer = asyncio.create_task(self._tick(), name="latency-reporter-timer")

    async def stop(self) -> None:
        """Disarm the timer, wait for in-flight flushes, then flush what is left."""
        if self._timer is not None:
            self._timer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._timer
            self._timer = None
        await self._wait_pending()
        await self.flush()
        await self._wait_pending()
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> "LatencyReporter":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    async def _tick(self) -> None:
        interval = self.cfg.flush_interval_ms / 1000.0
        while True:
            await asyncio.sleep(interval)
            await self.flush()

    # -- recording -------------------------------------------------------

    def record(
        self,
        category: OperationCategory | str,
        operation: str,
        latency_ms: float,
        success: bool,
        error: Optional[str] = None,
    ) -> Optional[Sample]:
        if not self.cfg.enabled:
            return None
        sample = Sample(
            category=OperationCategory(category),
            operation=operation,
            latency_ms=max(0.0, float(latency_ms)),
            success=bool(success),
            timestamp=time.time() * 1000.0,
            error=error,
        )
        self.collector.record(sample)

        if self.cfg.debug:
            logger.info(
                "%s %s:%s - %.1fms", "+" if success else "x", sample.category.value, operation, sample.latency_ms
            )
        if self.on_record is not None:
            self.on_record(sample)

        if self.collector.count() >= self.cfg.max_buffer_size:
            self._schedule_flush()
        return sample

    def _schedule_flush(self) -> None:
        if self._flush_scheduled.is_set():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is not None:
            self._flush_scheduled.set()
            self._spawn_flush()
        elif self._loop is not None and not self._loop.is_closed():
            # Recorded from a worker thread; the task is created on the reporter's loop so
            # stop() can wait for it.
            self._flush_scheduled.set()
            self._loop.call_soon_threadsafe(self._spawn_flush)
        else:
            logger.debug("buffer full but no event loop; flush deferred to stop()")

    def _spawn_flush(self) -> None:
        task = asyncio.get_running_loop().create_task(self.flush())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _wait_pending(self) -> None:
        # one loop pass so flushes handed over from threads get their task first
        await asyncio.sleep(0)
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # -- flushing --------------------------------------------------------

    async def flush(self) -> int:
        """Drain the buffer and deliver it. Returns the number of samples drained."""
        self._flush_scheduled.clear()
        batch = self.collector.drain()
        if not batch:
            return 0

        self.flushes += 1
        if self.cfg.debug:
            suffix = f" (client: {self.cfg.client_id})" if self.cfg.client_id else ""
            logger.info("flushing %d records%s", len(batch), suffix)

        ok = True
        if self.on_flush is not None:
            try:
                res = self.on_flush(batch)
                if inspect.isawaitable(res):
                    await res
            except Exception:
                ok = False
                logger.exception("on_flush sink failed; dropped %d samples", len(batch))

        if self.cfg.report_url:
            try:
                await self._post(batch)
            except (DeliveryFailure, aiohttp.ClientError, asyncio.TimeoutError) as e:
                ok = False
                logger.error("failed to report metrics: %s", e)

        if ok:
            self.delivered += len(batch)
        else:
            self.dropped += len(batch)
        return len(batch)

    def payload(self, batch: List[Sample]) -> Dict[str, Any]:
        return {
            "clientId": self.cfg.client_id,
            "timestamp": time.time() * 1000.0,
            "records": [s.to_json() for s in batch],
            "metrics": batch_metrics(batch).to_json(),
        }

    async def _post(self, batch: List[Sample]) -> None:
        url = self.cfg.report_url
        assert url is not None
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=30))
        headers = {"Content-Type": "application/json"}
        async with self._session.post(url, json=self.payload(batch), headers=headers) as resp:
            if resp.status >= 300:
                raise DeliveryFailure(url, f"HTTP {resp.status}", status=resp.status)

    # -- pass-through ----------------------------------------------------

    def metrics(self) -> AggregateMetrics:
        return self.collector.metrics()

    def snapshot(self) -> List[Sample]:
        return self.collector.snapshot()

    def reset(self) -> None:
        self.collector.reset()
