# Copyright (c) 2025 Vahab Jabrayilov (vjabrayilov@cs.columbia.edu)
# Copyright (c) 2025 DAPLab of Columbia University (https://daplab.cs.columbia.edu/)
# Copyright (c) 2025 The Trustees of Columbia University in the City of New York

"""Run a behavior x seed matrix and write results to ./runs.

Examples
--------
python scripts/run_matrix.py --behaviors reader writer mixed --seeds 1 2 3 --duration 20
python scripts/run_matrix.py --base-url http://127.0.0.1:8000 --duration 60

Without --base-url the runs use the in-memory store (with --latency-ms simulated latency),
which is handy for checking the harness itself. The seeder runs once up front so the other
behaviors have data to read.

If you run it without installation from the repo root, it will add ./src to PYTHONPATH automatically.
"""

from __future__ import annotations

import argparse
import asyncio
import time
from pathlib import Path
import sys

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC = REPO_ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from tqdm import tqdm

from minionbench.config import ReporterConfig, RunConfig, StoreConfig
from minionbench.runner import make_store, run_trial
from minionbench.workloads import BEHAVIORS


async def run_all(args: argparse.Namespace) -> None:
    store_cfg = StoreConfig(latency_ms=args.latency_ms)
    if args.base_url:
        store_cfg.kind, store_cfg.base_url = "http", args.base_url
    # One store for the whole matrix so seeded items are visible to later runs.
    store = make_store(store_cfg)
    rep = ReporterConfig(flush_interval_ms=args.flush_interval_ms)

    seed_run = RunConfig(behavior="seeder", seed=0, out_dir=args.out_dir,
                         behavior_config={"count": args.seed_items, "batch_size": 50})
    await run_trial(run=seed_run, rep=rep, store_cfg=store_cfg, run_id=time.strftime("%Y%m%d_%H%M%S"),
                    behaviors=BEHAVIORS, store=store, echo=None)

    cells = [(b, s) for b in args.behaviors for s in args.seeds]
    for behavior, seed in tqdm(cells, desc="runs"):
        run = RunConfig(behavior=behavior, seed=seed, duration_s=args.duration, out_dir=args.out_dir)
        rid = f"{time.strftime('%Y%m%d_%H%M%S')}_s{seed}"
        await run_trial(run=run, rep=rep, store_cfg=store_cfg, run_id=rid, behaviors=BEHAVIORS,
                        store=store, echo=None)

    close = getattr(store, "close", None)
    if close is not None:
        await close()


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("--behaviors", nargs="+", default=["reader", "writer", "mixed"], choices=sorted(BEHAVIORS))
    ap.add_argument("--seeds", nargs="+", type=int, default=[1, 2, 3])
    ap.add_argument("--duration", type=float, default=10.0)
    ap.add_argument("--out-dir", default="runs")
    ap.add_argument("--base-url", default=None)
    ap.add_argument("--latency-ms", type=float, default=5.0)
    ap.add_argument("--seed-items", type=int, default=500)
    ap.add_argument("--flush-interval-ms", type=int, default=5000)
    args = ap.parse_args()

    asyncio.run(run_all(args))
    print("Done.")


if __name__ == "__main__":
    main()
