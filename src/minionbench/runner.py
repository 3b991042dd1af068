# Copyright (c) 2025 Vahab Jabrayilov (vjabrayilov@cs.columbia.edu)
# Copyright (c) 2025 DAPLab of Columbia University (https://daplab.cs.columbia.edu/)
# Copyright (c) 2025 The Trustees of Columbia University in the City of New York

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import platform
import signal
import socket
import subprocess
import time
from collections import deque
from dataclasses import asdict
from pathlib import Path
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional

from .behavior import Behavior, validate_config
from .collector import MetricsAccumulator
from .config import ReporterConfig, RunConfig, StoreConfig
from .context import CONTEXT_VARIANTS, RunLog, print_sink, stop_aware_sleep
from .errors import ConfigError, RunFailure
from .prng import time_seed
from .reporter import JsonlSink, LatencyReporter
from .store import HttpItemStore, InMemoryItemStore, ItemStore
from .types import OperationCategory, RunResult, RunState

logger = logging.getLogger(__name__)


class Runner:
    """Drives one selected behavior at a time.

    ``start`` spawns the run as a task and ``stop`` only raises the cooperative stop flag;
    ``wait`` returns once the in-flight iteration has finished and the reporter's final
    flush is done.
    """

    def __init__(
        self,
        behaviors: Mapping[str, Behavior],
        store: ItemStore,
        *,
        reporter: Optional[LatencyReporter] = None,
        context: str = "headless",
        echo: Optional[Callable[[str], None]] = None,
        max_log_lines: int = 200,
    ):
        if context not in CONTEXT_VARIANTS:
            raise ConfigError(f"unknown context variant {context!r}")
        self.behaviors = dict(behaviors)
        self.store = store
        self.reporter = reporter or LatencyReporter()
        self.context = context
        self.echo = echo
        self.logs: Deque[str] = deque(maxlen=max_log_lines)

        self.selected = next(iter(self.behaviors), "")
        self.state = RunState.NOT_STARTED
        self.seed: Optional[int] = None
        self.last_result: Optional[RunResult] = None

        self._stop = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._run_log: Optional[RunLog] = None

    # -- controls --------------------------------------------------------

    @property
    def running(self) -> bool:
        return self.state in (RunState.INITIALIZING, RunState.RUNNING)

    def log(self, message: str) -> None:
        self.logs.append(f"[{time.strftime('%H:%M:%S')}] {message}")
        if self.echo is not None:
            self.echo(message)

    def clear_logs(self) -> None:
        self.logs.clear()

    def select(self, key: str) -> None:
        if key not in self.behaviors:
            raise KeyError(f"unknown behavior {key!r}; available: {', '.join(self.behaviors)}")
        self.selected = key

    def start(self, seed: Optional[int] = None, config: Optional[Mapping[str, Any]] = None) -> Optional[asyncio.Task]:
        """Spawn the selected behavior. Returns None when a run is already in progress."""
        if self.running or (self._task is not None and not self._task.done()):
            return None
        self._stop.clear()
        self.clear_logs()
        self._task = asyncio.create_task(self._run(seed, config), name=f"minion-{self.selected}")
        return self._task

    def stop(self) -> None:
        if not self._stop.is_set():
            self._stop.set()
            self.log("Stop requested...")

    async def wait(self) -> Optional[RunResult]:
        if self._task is not None:
            return await self._task
        return self.last_result

    def status(self) -> Dict[str, Any]:
        return {
            "behavior": self.selected,
            "state": self.state.value,
            "running": self.running,
            "seed": self.seed,
            "buffered": self.reporter.collector.count(),
            "metrics": self.reporter.metrics().to_json(),
            "log_metrics": self.log_metrics(),
        }

    def log_metrics(self) -> Dict[str, float]:
        """Values the current or last run recorded through ``ctx.log.metric``."""
        return dict(self._run_log.metrics) if self._run_log is not None else {}

    # -- the run ---------------------------------------------------------

    async def run(self, seed: Optional[int] = None, config: Optional[Mapping[str, Any]] = None) -> RunResult:
        """Run the selected behavior to completion, stop or failure."""
        self._stop.clear()
        self.clear_logs()
        return await self._run(seed, config)

    async def _run(self, seed: Optional[int], config: Optional[Mapping[str, Any]]) -> RunResult:
        behavior = self.behaviors[self.selected]
        self.seed = time_seed() if seed is None else seed
        self.state = RunState.INITIALIZING
        self.log(f"Starting {behavior.name} (seed={self.seed})...")

        totals = MetricsAccumulator()
        self._run_log = None

        def report_metric(latency_ms, success, *, category=OperationCategory.ACTION, operation=behavior.key,
                          error=None):
            sample = self.reporter.record(category, operation, latency_ms, success, error=error)
            if sample is not None:
                totals.add(sample)

        make_context = CONTEXT_VARIANTS[self.context]
        started = time.time()
        error: Optional[str] = None
        phase = "config"
        try:
            cfg = validate_config(behavior.config_schema, config)
            ctx = make_context(
                self.store,
                seed=self.seed,
                should_stop=self._stop.is_set,
                sleep=stop_aware_sleep(self._stop),
                log_sink=self.log,
                report_metric=report_metric,
            )
            self._run_log = ctx.log
            await self.reporter.start()

            phase = "init"
            await behavior.init(ctx, cfg)
            if not self._stop.is_set():
                phase = "run"
                self.state = RunState.RUNNING
                await behavior.run(ctx, cfg)
            self.state = RunState.STOPPED if self._stop.is_set() else RunState.COMPLETED
        except asyncio.CancelledError:
            self.state = RunState.STOPPED
            raise
        except Exception as e:
            failure = RunFailure(behavior.key, phase, e)
            error = str(failure)
            self.state = RunState.FAILED
            logger.error("%s", failure, exc_info=e)
            self.log(f"ERROR: {e}")
        finally:
            await self.reporter.stop()
            self.log("Stopped")
            self.last_result = RunResult(
                behavior=behavior.key,
                seed=self.seed,
                state=self.state,
                started_at=started,
                ended_at=time.time(),
                n_samples=totals.count(),
                metrics=totals.metrics(),
                error=error,
                log_metrics=self.log_metrics(),
            )
        return self.last_result


# -- trial helper used by the CLI and scripts -------------------------------


def _write_json(path: Path, obj: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        json.dump(obj, f, indent=2, sort_keys=True)


def _try_run(cmd: List[str]) -> Optional[str]:
    try:
        out = subprocess.check_output(cmd, stderr=subprocess.STDOUT, text=True)
        return out.strip()
    except (OSError, subprocess.CalledProcessError):
        return None


def _collect_env_snapshot() -> Dict[str, Any]:
    """Lightweight host metadata stored next to each run."""
    return {
        "hostname": socket.gethostname(),
        "python": platform.python_version(),
        "platform": platform.platform(),
        "git_commit": _try_run(["git", "rev-parse", "HEAD"]),
        "timestamp": time.strftime("%Y-%m-%d %H:%M:%S"),
    }


def make_store(cfg: StoreConfig, seed: int = 0) -> ItemStore:
    if cfg.kind == "http":
        return HttpItemStore(cfg.base_url, timeout_s=cfg.timeout_s)
    if cfg.kind == "memory":
        return InMemoryItemStore(latency_ms=cfg.latency_ms, failure_rate=cfg.failure_rate, seed=seed)
    raise ConfigError(f"unknown store kind {cfg.kind!r}")


async def run_trial(
    *,
    run: RunConfig,
    rep: ReporterConfig,
    store_cfg: StoreConfig,
    run_id: str,
    behaviors: Mapping[str, Behavior],
    store: Optional[ItemStore] = None,
    echo: Optional[Callable[[str], None]] = print_sink,
) -> Path:
    """Run one behavior and write ``summary.json``, ``samples.jsonl`` and ``env.json``.

    Artifacts go under ``<out_dir>/<behavior>/<run_id>``. The run ends when the behavior
    returns, after ``run.duration_s`` seconds, or on SIGINT/SIGTERM.
    """
    out = Path(run.out_dir) / run.behavior / run_id
    out.mkdir(parents=True, exist_ok=True)
    _write_json(out / "env.json", _collect_env_snapshot())

    seed = time_seed() if run.seed is None else run.seed
    owns_store = store is None
    store = store or make_store(store_cfg, seed=seed)
    reporter = LatencyReporter(rep, on_flush=JsonlSink(out / "samples.jsonl"))
    runner = Runner(behaviors, store, reporter=reporter, context=run.context, echo=echo)
    runner.select(run.behavior)

    loop = asyncio.get_running_loop()
    handles = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, runner.stop)
            handles.append(sig)
    timer = loop.call_later(run.duration_s, runner.stop) if run.duration_s else None

    try:
        task = runner.start(seed=seed, config=run.behavior_config)
        assert task is not None
        result = await runner.wait()
    finally:
        if timer is not None:
            timer.cancel()
        for sig in handles:
            loop.remove_signal_handler(sig)
        if owns_store and isinstance(store, HttpItemStore):
            await store.close()

    assert result is not None
    summary = result.to_json()
    summary.update(
        {
            "run_id": run_id,
            "run": asdict(run),
            "reporter": asdict(rep),
            "store": asdict(store_cfg),
            "flushes": reporter.flushes,
            "delivered": reporter.delivered,
            "dropped": reporter.dropped,
            "logs": list(runner.logs),
            "timestamp": time.strftime("%Y-%m-%d %H:%M:%S"),
        }
    )
    _write_json(out / "summary.json", summary)
    return out
