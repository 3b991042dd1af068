# Copyright (c) 2025 Vahab Jabrayilov (vjabrayilov@cs.columbia.edu)
# Copyright (c) 2025 DAPLab of Columbia University (https://daplab.cs.columbia.edu/)
# Copyright (c) 2025 The Trustees of Columbia University in the City of New York

"""Items workloads: seeder, reader, writer and a mixed read/write driver."""

from __future__ import annotations

import time
from typing import Any, Dict, List, Optional

from .behavior import Behavior, ConfigField, timed
from .context import ExecutionContext
from .prng import SeededRandom
from .store import STATUSES
from .types import OperationCategory

Q = OperationCategory.QUERY
M = OperationCategory.MUTATION

TITLES = [
    "Review quarterly report",
    "Update documentation",
    "Fix login bug",
    "Design new feature",
    "Write unit tests",
    "Deploy to staging",
    "Code review PR",
    "Refactor auth module",
    "Add analytics tracking",
    "Optimize database queries",
    "Setup CI/CD pipeline",
    "Create API endpoints",
    "Implement caching",
    "Update dependencies",
    "Write integration tests",
]

TAGS = [
    "urgent",
    "backend",
    "frontend",
    "bug",
    "feature",
    "docs",
    "testing",
    "infra",
    "security",
    "performance",
]


def random_item_data(
    rng: SeededRandom,
    title_suffix: str,
    *,
    max_tags: int = 3,
    with_description: bool = False,
    project_id: Optional[int] = None,
) -> Dict[str, Any]:
    title = f"{rng.pick(TITLES)} #{title_suffix}"
    data: Dict[str, Any] = {
        "title": title,
        "status": rng.pick(STATUSES),
        "priority": rng.int(1, 6),
    }
    data["tags"] = rng.sample(TAGS, rng.int(0, max_tags + 1))
    if with_description and rng.next() > 0.3:
        data["description"] = f"Description for {title}"
    if project_id is not None:
        data["project_id"] = project_id
    return data


def _elapsed(t0: float) -> int:
    return round(time.monotonic() - t0)


class SeederBehavior(Behavior):
    key = "seeder"
    name = "Seeder"
    description = "Creates test items with random data (configurable count and batch size)"
    category = "seeder"
    config_schema = {
        "count": ConfigField("number", "Number of items to create", default=100, min=1, max=10000, integer=True),
        "batch_size": ConfigField("number", "Number of items per batch insert", default=10, min=1, max=100,
                                  integer=True),
    }

    async def init(self, ctx: ExecutionContext, config: Dict[str, Any]) -> None:
        count, batch_size = config["count"], config["batch_size"]
        ctx.log(f"Starting seeder - creating {count} items in batches of {batch_size}...")

        t0 = time.monotonic()
        created = 0
        every = max(1, count // 10)
        while created < count:
            if ctx.should_stop():
                ctx.log(f"Stopped at {created}/{count} items")
                return

            n = min(batch_size, count - created)
            batch = [
                random_item_data(ctx.random, str(created + i + 1), with_description=True)
                for i in range(n)
            ]
            await timed(ctx, M, "batch-create", lambda: ctx.store.create_items(batch))
            created += n

            if created % every == 0 or created == count:
                elapsed = _elapsed(t0)
                ctx.log(f"Progress: {created}/{count} items ({elapsed}s, {round(created / max(1, elapsed))}/s)")

            await ctx.sleep(50)

        ctx.log(f"Seeding complete: {count} items in {_elapsed(t0)}s")

    async def run(self, ctx: ExecutionContext, config: Dict[str, Any]) -> None:
        ctx.log("Seeder complete - no run phase needed")


class ReaderBehavior(Behavior):
    key = "reader"
    name = "Reader"
    description = "Query-only workload - reads items by status and priority"
    category = "reader"
    config_schema = {
        "log_every": ConfigField("number", "Log a read result every N iterations", default=50, min=1, integer=True),
    }

    async def init(self, ctx: ExecutionContext, config: Dict[str, Any]) -> None:
        if ctx.should_stop():
            return
        ctx.log("Reader initialized - will read items without modifications")
        ok, n = await timed(ctx, Q, "item-count", ctx.store.count)
        if ok:
            ctx.log(f"Found {n} items")
            if n == 0:
                ctx.log("WARNING: No items found. Run the Seeder first!")

    async def run(self, ctx: ExecutionContext, config: Dict[str, Any]) -> None:
        ctx.log("Starting read loop...")
        log_every = config["log_every"]
        rng = ctx.random

        iterations = 0
        t0 = time.monotonic()
        while not ctx.should_stop():
            iterations += 1
            verbose = iterations % log_every == 1

            op = rng.int(0, 5)
            if op == 0:
                ok, items = await timed(ctx, Q, "list-items", ctx.store.list_items)
                if ok and verbose:
                    ctx.log(f"Read all: {len(items)} items")
            elif op == 1:
                status = rng.pick(STATUSES)
                ok, items = await timed(ctx, Q, "items-by-status", lambda: ctx.store.items_by_status(status))
                if ok and verbose:
                    ctx.log(f'Read by status "{status}": {len(items)} items')
            elif op == 2:
                priority = rng.int(1, 6)
                ok, items = await timed(ctx, Q, "items-by-priority", lambda: ctx.store.items_by_priority(priority))
                if ok and verbose:
                    ctx.log(f"Read by priority {priority}: {len(items)} items")
            elif op == 3:
                ok, item = await timed(ctx, Q, "random-item", lambda: ctx.store.random_item(rng))
                if ok and verbose:
                    ctx.log(f"Random item: {item.title if item else 'none'}")
            else:
                ok, n = await timed(ctx, Q, "item-count", ctx.store.count)
                if ok and verbose:
                    ctx.log(f"Item count: {n}")

            if iterations % 100 == 0:
                ctx.log(f"Completed {iterations} reads ({round(iterations / max(1, _elapsed(t0)))}/s)")

            await ctx.sleep(rng.int(20, 100))

        ctx.log(f"Reader complete: {iterations} reads in {_elapsed(t0)}s")


class WriterBehavior(Behavior):
    """Create/update workload.

    Updates only target items this run created, so the loop never needs a listing read.
    """

    key = "writer"
    name = "Writer"
    description = "Write-heavy workload - creates and updates items (30/70 split)"
    category = "writer"
    config_schema = {
        "create_ratio": ConfigField("number", "Probability that an iteration creates instead of updates",
                                    default=0.3, min=0, max=1),
        "num_projects": ConfigField("number", "Number of projects to partition across (0 = no partitioning)",
                                    default=0, min=0, max=1000, integer=True),
    }

    async def init(self, ctx: ExecutionContext, config: Dict[str, Any]) -> None:
        if ctx.should_stop():
            return
        ctx.log("Writer initialized")
        if config["num_projects"] > 0:
            ctx.log(f"Partitioning creates across {config['num_projects']} projects")

    async def run(self, ctx: ExecutionContext, config: Dict[str, Any]) -> None:
        ctx.log("Starting write loop...")
        rng = ctx.random
        create_ratio = config["create_ratio"]
        num_projects = config["num_projects"]

        created_ids: List[str] = []
        iterations = creates = updates = 0
        t0 = time.monotonic()
        while not ctx.should_stop():
            iterations += 1

            if rng.next() < create_ratio or not created_ids:
                project_id = rng.int(0, num_projects) if num_projects > 0 else None
                data = random_item_data(rng, str(iterations), max_tags=2, project_id=project_id)
                ok, item_id = await timed(ctx, M, "create-item", lambda: ctx.store.create_item(data))
                if ok:
                    created_ids.append(item_id)
                    creates += 1
                    if iterations % 50 == 1:
                        ctx.log(f"Created: {data['title']}")
            else:
                item_id = rng.pick(created_ids)
                patch: Dict[str, Any] = {}
                if rng.next() < 0.5:
                    patch["status"] = rng.pick(STATUSES)
                if rng.next() < 0.3:
                    patch["priority"] = rng.int(1, 6)
                if rng.next() < 0.2:
                    patch["tags"] = rng.sample(TAGS, rng.int(0, 3))
                ok, _ = await timed(ctx, M, "update-item", lambda: ctx.store.update_item(item_id, patch))
                if ok:
                    updates += 1
                    if iterations % 50 == 1:
                        ctx.log(f"Updated: {item_id}")

            if iterations % 100 == 0:
                rate = round(iterations / max(1, _elapsed(t0)))
                ctx.log(f"Progress: {creates} creates, {updates} updates ({rate} ops/s)")

            await ctx.sleep(rng.int(50, 200))

        ctx.log(f"Writer complete: {creates} creates, {updates} updates in {_elapsed(t0)}s")


class MixedBehavior(Behavior):
    key = "mixed"
    name = "Mixed"
    description = "70% reads, 30% writes - realistic workload simulation"
    category = "mixed"
    config_schema = {
        "read_ratio": ConfigField("number", "Probability that an iteration reads", default=0.7, min=0, max=1),
    }

    async def init(self, ctx: ExecutionContext, config: Dict[str, Any]) -> None:
        if ctx.should_stop():
            return
        ctx.log("Mixed workload initialized")
        ok, n = await timed(ctx, Q, "item-count", ctx.store.count)
        if ok and n == 0:
            ctx.log("WARNING: No items found. Run the Seeder first for best results!")

    async def run(self, ctx: ExecutionContext, config: Dict[str, Any]) -> None:
        read_ratio = config["read_ratio"]
        ctx.log(f"Starting mixed workload ({read_ratio:.0%} reads, {1 - read_ratio:.0%} writes)...")
        rng = ctx.random

        created_ids: List[str] = []
        iterations = reads = writes = 0
        t0 = time.monotonic()
        while not ctx.should_stop():
            iterations += 1

            if rng.next() < read_ratio:
                op = rng.int(0, 4)
                if op == 0:
                    await timed(ctx, Q, "list-items", ctx.store.list_items)
                elif op == 1:
                    status = rng.pick(STATUSES)
                    await timed(ctx, Q, "items-by-status", lambda: ctx.store.items_by_status(status))
                elif op == 2:
                    priority = rng.int(1, 6)
                    await timed(ctx, Q, "items-by-priority", lambda: ctx.store.items_by_priority(priority))
                else:
                    await timed(ctx, Q, "random-item", lambda: ctx.store.random_item(rng))
                reads += 1
            else:
                op = rng.int(0, 3)
                if op == 0 or not created_ids:
                    data = random_item_data(rng, str(iterations), max_tags=2)
                    ok, item_id = await timed(ctx, M, "create-item", lambda: ctx.store.create_item(data))
                    if ok:
                        created_ids.append(item_id)
                        if iterations % 100 == 1:
                            ctx.log(f"Created: {data['title']}")
                else:
                    item_id = rng.pick(created_ids)
                    patch = {"status": rng.pick(STATUSES), "priority": rng.int(1, 6)}
                    await timed(ctx, M, "update-item", lambda: ctx.store.update_item(item_id, patch))
                writes += 1

            if iterations % 200 == 0:
                rate = round(iterations / max(1, _elapsed(t0)))
                ctx.log(f"Progress: {reads} reads, {writes} writes "
                        f"({round(100 * reads / iterations)}% reads, {rate} ops/s)")

            await ctx.sleep(rng.int(30, 150))

        read_pct = round(100 * reads / iterations) if iterations else 0
        ctx.log(f"Mixed workload complete: {reads} reads, {writes} writes ({read_pct}% reads) in {_elapsed(t0)}s")


BEHAVIORS: Dict[str, Behavior] = {
    b.key: b for b in (SeederBehavior(), ReaderBehavior(), WriterBehavior(), MixedBehavior())
}


def manifest() -> Dict[str, Any]:
    return {
        "key": "items",
        "name": "Items Benchmark",
        "description": "Generic items/tasks benchmark. Tests CRUD operations, filtering by status/priority, "
                       "and batch operations.",
        "behaviors": [b.info() for b in BEHAVIORS.values()],
    }
