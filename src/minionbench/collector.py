# Copyright (c) 2025 Vahab Jabrayilov (vjabrayilov@cs.columbia.edu)
# Copyright (c) 2025 DAPLab of Columbia University (https://daplab.cs.columbia.edu/)
# Copyright (c) 2025 The Trustees of Columbia University in the City of New York

from __future__ import annotations

import math
import threading
import time
from array import array
from typing import Dict, Iterable, List, Mapping, Optional

import numpy as np

from .types import AggregateMetrics, CategoryMetrics, OperationCategory, Sample


def percentile(sorted_latencies: np.ndarray, p: float) -> float:
    """Nearest-rank percentile of an ascending array; ``p`` is a fraction in [0, 1].

    Index is ``ceil(n * p) - 1`` clamped to ``[0, n - 1]``. Empty input gives 0.
    """
    n = len(sorted_latencies)
    if n == 0:
        return 0.0
    idx = min(max(math.ceil(n * p) - 1, 0), n - 1)
    return float(sorted_latencies[idx])


def _mean(x: np.ndarray) -> float:
    return float(np.mean(x)) if len(x) else 0.0


def _sorted_latencies(samples: Iterable[Sample]) -> np.ndarray:
    return np.sort(np.array([s.latency_ms for s in samples if s.success], dtype=np.float64))


def _aggregate(
    counts: Mapping[OperationCategory, int],
    latencies: Mapping[OperationCategory, np.ndarray],
    window_s: float,
) -> AggregateMetrics:
    """Build metrics from per-category counts and sorted successful latencies."""
    total = sum(counts.values())
    by_type = {}
    for cat in OperationCategory:
        type_lat = latencies.get(cat, np.empty(0))
        by_type[cat] = CategoryMetrics(
            count=counts.get(cat, 0),
            success_count=len(type_lat),
            error_count=counts.get(cat, 0) - len(type_lat),
            latency_mean=_mean(type_lat),
            latency_p95=percentile(type_lat, 0.95),
        )

    lat = np.sort(np.concatenate([latencies.get(c, np.empty(0)) for c in OperationCategory]))
    return AggregateMetrics(
        total_count=total,
        success_count=len(lat),
        error_count=total - len(lat),
        latency_p50=percentile(lat, 0.50),
        latency_p95=percentile(lat, 0.95),
        latency_p99=percentile(lat, 0.99),
        latency_min=float(lat[0]) if len(lat) else 0.0,
        latency_max=float(lat[-1]) if len(lat) else 0.0,
        latency_mean=_mean(lat),
        ops_per_second=total / max(1.0, window_s),
        by_type=by_type,
    )


def _metrics_over(samples: List[Sample], window_s: float) -> AggregateMetrics:
    counts = {c: 0 for c in OperationCategory}
    for s in samples:
        counts[s.category] += 1
    latencies = {c: _sorted_latencies(s for s in samples if s.category == c) for c in OperationCategory}
    return _aggregate(counts, latencies, window_s)


def compute_metrics(samples: List[Sample], window_start: float, now: Optional[float] = None) -> AggregateMetrics:
    """Aggregate metrics over ``samples``.

    ``window_start`` and ``now`` are ``time.monotonic()`` readings; throughput divides by at
    least one second so the first instant of a window never divides by zero.
    """
    now = time.monotonic() if now is None else now
    return _metrics_over(samples, now - window_start)


def batch_metrics(batch: List[Sample]) -> AggregateMetrics:
    """Metrics for one flushed batch; throughput is over the batch's own timestamp span."""
    if not batch:
        return _metrics_over(batch, 1.0)
    stamps = [s.timestamp for s in batch]
    return _metrics_over(batch, (max(stamps) - min(stamps)) / 1000.0)


class MetricsAccumulator:
    """Running totals for a whole run without keeping the samples.

    Only per-category counts and the successful latencies (8 bytes each, needed for exact
    percentiles) are retained.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counts: Dict[OperationCategory, int] = {c: 0 for c in OperationCategory}
        self._latencies: Dict[OperationCategory, array] = {c: array("d") for c in OperationCategory}
        self.window_start = time.monotonic()

    def add(self, sample: Sample) -> None:
        with self._lock:
            self._counts[sample.category] += 1
            if sample.success:
                self._latencies[sample.category].append(sample.latency_ms)

    def count(self) -> int:
        with self._lock:
            return sum(self._counts.values())

    def metrics(self, now: Optional[float] = None) -> AggregateMetrics:
        now = time.monotonic() if now is None else now
        with self._lock:
            counts = dict(self._counts)
            latencies = {c: np.sort(np.array(a, dtype=np.float64)) for c, a in self._latencies.items()}
        return _aggregate(counts, latencies, now - self.window_start)


class LatencyCollector:
    """Append-only buffer of samples with on-demand aggregation.

    The buffer is only ever replaced wholesale (``clear``, ``reset``, ``drain``); all access
    goes through one lock so threads and coroutines can record while another caller drains.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._samples: List[Sample] = []
        self._window_start = time.monotonic()

    @property
    def window_start(self) -> float:
        return self._window_start

    def record(self, sample: Sample) -> None:
        with self._lock:
            self._samples.append(sample)

    def snapshot(self) -> List[Sample]:
        with self._lock:
            return list(self._samples)

    def drain(self) -> List[Sample]:
        """Swap in an empty buffer and return the previous one."""
        with self._lock:
            batch, self._samples = self._samples, []
        return batch

    def clear(self) -> None:
        with self._lock:
            self._samples = []

    def reset(self) -> None:
        with self._lock:
            self._samples = []
            self._window_start = time.monotonic()

    def count(self) -> int:
        with self._lock:
            return len(self._samples)

    def __len__(self) -> int:
        return self.count()

    def metrics(self) -> AggregateMetrics:
        return compute_metrics(self.snapshot(), self._window_start)
