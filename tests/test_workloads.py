from __future__ import annotations

from collections import Counter

import pytest

from conftest import Recorder, no_sleep, stop_after
from minionbench.behavior import validate_config
from minionbench.context import headless_context
from minionbench.prng import SeededRandom
from minionbench.store import InMemoryItemStore
from minionbench.types import OperationCategory
from minionbench.workloads import (
    BEHAVIORS,
    TAGS,
    TITLES,
    MixedBehavior,
    ReaderBehavior,
    SeederBehavior,
    WriterBehavior,
    manifest,
    random_item_data,
)

Q = OperationCategory.QUERY
M = OperationCategory.MUTATION

READ_OPS = {"list-items", "items-by-status", "items-by-priority", "random-item", "item-count"}


def cfg(behavior, **overrides):
    return validate_config(behavior.config_schema, overrides)


class TrackingStore(InMemoryItemStore):
    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.updated = []

    async def update_item(self, item_id, data):
        self.updated.append(item_id)
        await super().update_item(item_id, data)


def test_random_item_data_shape():
    rng = SeededRandom(4)
    for i in range(50):
        d = random_item_data(rng, str(i), max_tags=2, project_id=3)
        assert d["title"].rsplit(" #", 1)[0] in TITLES
        assert d["title"].endswith(f"#{i}")
        assert d["status"] in ("pending", "active", "completed")
        assert 1 <= d["priority"] <= 5
        assert len(d["tags"]) <= 2
        assert set(d["tags"]) <= set(TAGS)
        assert d["project_id"] == 3


@pytest.mark.asyncio
async def test_seeder_batches(make_ctx, recorder, store):
    seeder = SeederBehavior()
    await seeder.init(make_ctx(), cfg(seeder, count=25, batch_size=10))
    assert store.calls["create_items"] == 3
    assert await store.count() == 25
    assert len(recorder.reports) == 3
    assert all(r["operation"] == "batch-create" and r["category"] is M for r in recorder.reports)
    assert any("Seeding complete: 25 items" in line for line in recorder.lines)


@pytest.mark.asyncio
async def test_seeder_honors_stop_between_batches(make_ctx, recorder, store):
    seeder = SeederBehavior()
    await seeder.init(make_ctx(should_stop=stop_after(1)), cfg(seeder, count=25, batch_size=10))
    assert store.calls["create_items"] == 1
    assert await store.count() == 10
    assert any("Stopped at 10/25 items" in line for line in recorder.lines)


@pytest.mark.asyncio
async def test_seeder_run_phase_is_a_no_op(make_ctx, recorder, store):
    seeder = SeederBehavior()
    await seeder.run(make_ctx(), cfg(seeder))
    assert store.calls == {}
    assert recorder.reports == []


@pytest.mark.asyncio
@pytest.mark.parametrize("key", ["seeder", "reader", "writer", "mixed"])
async def test_stop_before_start_does_nothing(key, make_ctx, recorder, store):
    behavior = BEHAVIORS[key]
    ctx = make_ctx(should_stop=lambda: True)
    config = cfg(behavior)
    await behavior.init(ctx, config)
    if key != "seeder":
        await behavior.run(ctx, config)
    assert recorder.reports == []
    assert sum(store.calls.values()) == 0


@pytest.mark.asyncio
async def test_reader_init_counts_items(make_ctx, recorder):
    reader = ReaderBehavior()
    await reader.init(make_ctx(), cfg(reader))
    (rep,) = recorder.reports
    assert rep["operation"] == "item-count"
    assert any("Run the Seeder first" in line for line in recorder.lines)


@pytest.mark.asyncio
async def test_reader_only_reads(make_ctx, recorder, store):
    await store.create_items([random_item_data(SeededRandom(1), str(i)) for i in range(20)])
    reader = ReaderBehavior()
    await reader.run(make_ctx(should_stop=stop_after(200)), cfg(reader))

    assert len(recorder.reports) == 200
    assert all(r["category"] is Q and r["success"] for r in recorder.reports)
    ops = Counter(r["operation"] for r in recorder.reports)
    assert set(ops) == READ_OPS
    assert await store.count() == 20


@pytest.mark.asyncio
async def test_writer_updates_only_its_own_items(recorder):
    store = TrackingStore()
    preexisting = set(await store.create_items([{"title": f"old {i}"} for i in range(5)]))

    def make():
        return headless_context(
            store, seed=9, should_stop=stop_after(300), sleep=no_sleep,
            log_sink=recorder.log, report_metric=recorder.report_metric,
        )

    writer = WriterBehavior()
    await writer.run(make(), cfg(writer))

    ops = Counter(r["operation"] for r in recorder.reports)
    assert set(ops) == {"create-item", "update-item"}
    assert sum(ops.values()) == 300
    # roughly 30% creates, plus the forced first create
    assert 50 <= ops["create-item"] <= 140
    assert store.updated
    assert not set(store.updated) & preexisting
    assert all(r["success"] for r in recorder.reports)


@pytest.mark.asyncio
async def test_writer_partitions_by_project(make_ctx, store):
    writer = WriterBehavior()
    await writer.run(make_ctx(should_stop=stop_after(100)), cfg(writer, create_ratio=1, num_projects=4))
    items = await store.list_items()
    assert len(items) == 100
    assert {i.project_id for i in items} <= {0, 1, 2, 3}


@pytest.mark.asyncio
async def test_mixed_read_ratio(make_ctx, recorder, store):
    await store.create_items([random_item_data(SeededRandom(2), str(i)) for i in range(10)])
    mixed = MixedBehavior()
    await mixed.run(make_ctx(seed=77, should_stop=stop_after(1000)), cfg(mixed))

    assert len(recorder.reports) == 1000
    reads = sum(1 for r in recorder.reports if r["category"] is Q)
    assert 640 <= reads <= 760
    writes = {r["operation"] for r in recorder.reports if r["category"] is M}
    assert writes == {"create-item", "update-item"}


@pytest.mark.asyncio
async def test_mixed_write_only_creates_before_updating(make_ctx, recorder):
    mixed = MixedBehavior()
    await mixed.run(make_ctx(should_stop=stop_after(50)), cfg(mixed, read_ratio=0))
    ops = [r["operation"] for r in recorder.reports]
    assert ops[0] == "create-item"
    assert set(ops) <= {"create-item", "update-item"}


@pytest.mark.asyncio
@pytest.mark.parametrize("key", ["reader", "writer", "mixed"])
async def test_same_seed_same_operation_sequence(key):
    behavior = BEHAVIORS[key]

    async def trace(seed):
        rec = Recorder()
        store = InMemoryItemStore()
        await store.create_items([random_item_data(SeededRandom(0), str(i)) for i in range(10)])
        ctx = headless_context(
            store, seed=seed, should_stop=stop_after(150), sleep=no_sleep,
            log_sink=rec.log, report_metric=rec.report_metric,
        )
        await behavior.run(ctx, cfg(behavior))
        return [r["operation"] for r in rec.reports]

    assert await trace(1234) == await trace(1234)
    assert await trace(1234) != await trace(4321)


@pytest.mark.asyncio
async def test_failing_store_keeps_the_loop_going(make_ctx, recorder):
    failing = InMemoryItemStore(failure_rate=1.0)
    writer = WriterBehavior()
    await writer.run(make_ctx(should_stop=stop_after(20), item_store=failing), cfg(writer))
    assert len(recorder.reports) == 20
    assert all(not r["success"] for r in recorder.reports)
    # nothing was created so every iteration retried a create
    assert {r["operation"] for r in recorder.reports} == {"create-item"}
    assert all(r["error"] for r in recorder.reports)


@pytest.mark.asyncio
async def test_sleeps_between_iterations(recorder, store):
    waits = []

    async def sleep(ms):
        waits.append(ms)

    ctx = headless_context(store, seed=3, should_stop=stop_after(40), sleep=sleep,
                           log_sink=recorder.log, report_metric=recorder.report_metric)
    await ReaderBehavior().run(ctx, {"log_every": 50})
    assert len(waits) == 40
    assert all(20 <= w < 100 for w in waits)


def test_manifest_lists_behaviors():
    m = manifest()
    assert m["key"] == "items"
    assert [b["key"] for b in m["behaviors"]] == ["seeder", "reader", "writer", "mixed"]
    seeder = m["behaviors"][0]
    assert seeder["configSchema"]["defaults"] == {"count": 100, "batch_size": 10}
    mixed = m["behaviors"][3]
    assert mixed["configSchema"]["defaults"] == {"read_ratio": 0.7}
