# Copyright (c) 2025 Vahab Jabrayilov (vjabrayilov@cs.columbia.edu)
# Copyright (c) 2025 DAPLab of Columbia University (https://daplab.cs.columbia.edu/)
# Copyright (c) 2025 The Trustees of Columbia University in the City of New York

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


class OperationCategory(str, enum.Enum):
    QUERY = "query"
    MUTATION = "mutation"
    ACTION = "action"


class RunState(str, enum.Enum):
    NOT_STARTED = "not_started"
    INITIALIZING = "initializing"
    RUNNING = "running"
    COMPLETED = "completed"
    STOPPED = "stopped"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (RunState.COMPLETED, RunState.STOPPED, RunState.FAILED)


@dataclass(frozen=True)
class Sample:
    """One timed operation outcome."""

    category: OperationCategory
    operation: str
    latency_ms: float
    success: bool
    timestamp: float  # wall clock, ms since epoch
    error: Optional[str] = None

    def to_json(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "type": OperationCategory(self.category).value,
            "functionName": self.operation,
            "latencyMs": self.latency_ms,
            "success": self.success,
            "timestamp": self.timestamp,
        }
        if self.error is not None:
            d["error"] = self.error
        return d

    @classmethod
    def from_json(cls, d: Dict[str, Any]) -> "Sample":
        return cls(
            category=OperationCategory(d["type"]),
            operation=d["functionName"],
            latency_ms=float(d["latencyMs"]),
            success=bool(d["success"]),
            timestamp=float(d["timestamp"]),
            error=d.get("error"),
        )


@dataclass
class CategoryMetrics:
    count: int = 0
    success_count: int = 0
    error_count: int = 0
    latency_mean: float = 0.0
    latency_p95: float = 0.0

    def to_json(self) -> Dict[str, Any]:
        return {
            "count": self.count,
            "successCount": self.success_count,
            "errorCount": self.error_count,
            "latencyMean": self.latency_mean,
            "latencyP95": self.latency_p95,
        }


@dataclass
class AggregateMetrics:
    """Summary statistics over a buffer of samples.

    Latency figures (milliseconds) cover successful samples only; counts cover both outcomes.
    """

    total_count: int = 0
    success_count: int = 0
    error_count: int = 0

    # Latency statistics (ms)
    latency_p50: float = 0.0
    latency_p95: float = 0.0
    latency_p99: float = 0.0
    latency_min: float = 0.0
    latency_max: float = 0.0
    latency_mean: float = 0.0

    # Samples per second over the window (a flushed batch uses its own timestamp span)
    ops_per_second: float = 0.0

    by_type: Dict[OperationCategory, CategoryMetrics] = field(
        default_factory=lambda: {c: CategoryMetrics() for c in OperationCategory}
    )

    def to_json(self) -> Dict[str, Any]:
        return {
            "totalCount": self.total_count,
            "successCount": self.success_count,
            "errorCount": self.error_count,
            "latencyP50": self.latency_p50,
            "latencyP95": self.latency_p95,
            "latencyP99": self.latency_p99,
            "latencyMin": self.latency_min,
            "latencyMax": self.latency_max,
            "latencyMean": self.latency_mean,
            "opsPerSecond": self.ops_per_second,
            "byType": {c.value: m.to_json() for c, m in self.by_type.items()},
        }


@dataclass
class RunResult:
    """Outcome of one behavior run."""

    behavior: str
    seed: int
    state: RunState
    started_at: float
    ended_at: float
    n_samples: int = 0
    metrics: Optional[AggregateMetrics] = None
    error: Optional[str] = None

    # Values behaviors recorded with ctx.log.metric
    log_metrics: Dict[str, float] = field(default_factory=dict)

    @property
    def wall_time_s(self) -> float:
        return max(0.0, self.ended_at - self.started_at)

    def to_json(self) -> Dict[str, Any]:
        return {
            "behavior": self.behavior,
            "seed": self.seed,
            "state": self.state.value,
            "started_at": self.started_at,
            "ended_at": self.ended_at,
            "wall_time_s": self.wall_time_s,
            "n_samples": self.n_samples,
            "metrics": self.metrics.to_json() if self.metrics is not None else None,
            "error": self.error,
            "log_metrics": dict(self.log_metrics),
        }
