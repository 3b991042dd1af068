from __future__ import annotations

import asyncio
import json

import pytest

from minionbench.behavior import Behavior
from minionbench.collector import compute_metrics
from minionbench.config import ReporterConfig, RunConfig, StoreConfig
from minionbench.errors import ConfigError
from minionbench.reporter import LatencyReporter
from minionbench.runner import Runner, make_store, run_trial
from minionbench.store import HttpItemStore, InMemoryItemStore
from minionbench.types import RunState
from minionbench.workloads import BEHAVIORS


class Collect:
    def __init__(self):
        self.samples = []

    def __call__(self, batch):
        self.samples.extend(batch)


class Counting(Behavior):
    key = "counting"
    name = "Counting"

    async def run(self, ctx, config):
        ctx.log.metric("items", 2, op="inc")
        ctx.log.metric("items", 3, op="inc")
        ctx.log.metric("phase", 1)


class Boom(Behavior):
    key = "boom"
    name = "Boom"

    async def run(self, ctx, config):
        ctx.report("action", "tick", 1.0, True)
        raise RuntimeError("kaboom")


def make_runner(store=None, sink=None, **kwargs):
    behaviors = dict(BEHAVIORS, boom=Boom(), counting=Counting())
    reporter = LatencyReporter(ReporterConfig(flush_interval_ms=60_000), on_flush=sink or Collect())
    return Runner(behaviors, store or InMemoryItemStore(), reporter=reporter, **kwargs)


@pytest.mark.asyncio
async def test_seeder_run_completes_and_flushes():
    sink = Collect()
    store = InMemoryItemStore()
    runner = make_runner(store, sink)
    runner.select("seeder")
    result = await runner.run(seed=1, config={"count": 25, "batch_size": 10})

    assert result.state is RunState.COMPLETED
    assert runner.state is RunState.COMPLETED
    assert result.seed == 1
    assert result.n_samples == 3
    assert result.metrics.total_count == 3
    assert result.error is None
    assert [s.operation for s in sink.samples] == ["batch-create"] * 3
    assert await store.count() == 25
    assert runner.logs[0].endswith("Starting Seeder (seed=1)...")
    assert runner.logs[-1].endswith("Stopped")


@pytest.mark.asyncio
async def test_stop_right_after_start_ends_before_any_operation():
    sink = Collect()
    runner = make_runner(sink=sink)
    runner.select("reader")
    task = runner.start(seed=3)
    assert task is not None
    runner.stop()
    result = await runner.wait()

    assert result.state is RunState.STOPPED
    assert result.n_samples == 0
    assert sink.samples == []
    assert not runner.running


@pytest.mark.asyncio
async def test_stop_mid_run_keeps_samples():
    sink = Collect()
    store = InMemoryItemStore()
    await store.create_items([{"title": f"t{i}"} for i in range(5)])
    runner = make_runner(store, sink)
    runner.select("mixed")
    runner.start(seed=8)
    await asyncio.sleep(0.3)
    assert runner.running
    assert runner.state is RunState.RUNNING
    runner.stop()
    result = await asyncio.wait_for(runner.wait(), timeout=2)

    assert result.state is RunState.STOPPED
    assert result.n_samples > 0
    # final flush delivered everything recorded
    assert len(sink.samples) == result.n_samples
    assert result.metrics.total_count == result.n_samples
    expected = compute_metrics(sink.samples, 0.0, now=0.0)
    assert result.metrics.latency_p50 == expected.latency_p50
    assert result.metrics.latency_p99 == expected.latency_p99
    assert result.metrics.error_count == expected.error_count


@pytest.mark.asyncio
async def test_failing_behavior_is_marked_failed():
    sink = Collect()
    runner = make_runner(sink=sink)
    runner.select("boom")
    result = await runner.run(seed=1)

    assert result.state is RunState.FAILED
    assert "boom failed during run: kaboom" in result.error
    assert any("ERROR: kaboom" in line for line in runner.logs)
    # the sample recorded before the failure still reaches the sink
    assert [s.operation for s in sink.samples] == ["tick"]
    assert not runner.reporter.running


@pytest.mark.asyncio
async def test_invalid_config_fails_before_init():
    store = InMemoryItemStore()
    runner = make_runner(store)
    runner.select("seeder")
    result = await runner.run(seed=1, config={"count": 0})
    assert result.state is RunState.FAILED
    assert "during config" in result.error
    assert store.calls == {}


@pytest.mark.asyncio
async def test_select_and_double_start():
    runner = make_runner()
    with pytest.raises(KeyError):
        runner.select("nope")

    runner.select("reader")
    first = runner.start(seed=1)
    assert first is not None
    assert runner.start(seed=2) is None
    runner.stop()
    await runner.wait()

    again = runner.start(seed=2)
    assert again is not None
    runner.stop()
    result = await runner.wait()
    assert result.seed == 2


@pytest.mark.asyncio
async def test_time_seed_when_none_given():
    runner = make_runner()
    runner.select("seeder")
    result = await runner.run(config={"count": 1, "batch_size": 1})
    assert 0 <= result.seed <= 0xFFFFFFFF
    assert runner.status()["seed"] == result.seed


@pytest.mark.asyncio
async def test_interactive_context_reads_from_snapshot():
    store = InMemoryItemStore()
    await store.create_items([{"title": f"t{i}", "status": "active"} for i in range(5)])
    runner = make_runner(store, context="interactive")
    runner.select("reader")
    runner.start(seed=5)
    await asyncio.sleep(0.3)
    runner.stop()
    result = await runner.wait()

    assert result.state is RunState.STOPPED
    assert result.n_samples > 0
    assert store.calls.get("list_items", 0) >= 1
    for op in ("count", "items_by_status", "items_by_priority", "random_item"):
        assert op not in store.calls


@pytest.mark.asyncio
async def test_log_metrics_surface_on_result_and_status():
    runner = make_runner()
    assert runner.status()["log_metrics"] == {}
    runner.select("counting")
    result = await runner.run(seed=1)
    assert result.state is RunState.COMPLETED
    assert result.log_metrics == {"items": 5, "phase": 1}
    assert result.to_json()["log_metrics"] == {"items": 5, "phase": 1}
    assert runner.status()["log_metrics"] == {"items": 5, "phase": 1}


def test_unknown_context_variant_rejected():
    with pytest.raises(ConfigError):
        make_runner(context="kiosk")


@pytest.mark.asyncio
async def test_status_shape():
    runner = make_runner()
    status = runner.status()
    assert status["state"] == "not_started"
    assert status["running"] is False
    assert status["behavior"] == "seeder"
    assert status["metrics"]["totalCount"] == 0


def test_make_store_kinds():
    assert isinstance(make_store(StoreConfig(kind="memory")), InMemoryItemStore)
    assert isinstance(make_store(StoreConfig(kind="http", base_url="http://x")), HttpItemStore)
    with pytest.raises(ConfigError):
        make_store(StoreConfig(kind="sqlite"))


@pytest.mark.asyncio
async def test_run_trial_writes_artifacts(tmp_path):
    run = RunConfig(behavior="seeder", seed=5, out_dir=str(tmp_path),
                    behavior_config={"count": 20, "batch_size": 10})
    out = await run_trial(run=run, rep=ReporterConfig(), store_cfg=StoreConfig(), run_id="t1",
                          behaviors=BEHAVIORS, echo=None)

    assert out == tmp_path / "seeder" / "t1"
    assert (out / "env.json").exists()
    lines = (out / "samples.jsonl").read_text(encoding="utf-8").splitlines()
    assert len(lines) == 2
    assert json.loads(lines[0])["functionName"] == "batch-create"

    summary = json.loads((out / "summary.json").read_text(encoding="utf-8"))
    assert summary["state"] == "completed"
    assert summary["run_id"] == "t1"
    assert summary["seed"] == 5
    assert summary["n_samples"] == 2
    assert summary["delivered"] == 2
    assert summary["metrics"]["totalCount"] == 2
    assert summary["run"]["behavior_config"] == {"count": 20, "batch_size": 10}
    assert summary["log_metrics"] == {}


@pytest.mark.asyncio
async def test_run_trial_duration_stops_run(tmp_path):
    store = InMemoryItemStore()
    run = RunConfig(behavior="reader", seed=2, out_dir=str(tmp_path), duration_s=0.2)
    out = await asyncio.wait_for(
        run_trial(run=run, rep=ReporterConfig(), store_cfg=StoreConfig(), run_id="d1",
                  behaviors=BEHAVIORS, store=store, echo=None),
        timeout=5,
    )
    summary = json.loads((out / "summary.json").read_text(encoding="utf-8"))
    assert summary["state"] == "stopped"
    assert summary["n_samples"] > 0
