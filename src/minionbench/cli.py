# Copyright (c) 2025 Vahab Jabrayilov (vjabrayilov@cs.columbia.edu)
# Copyright (c) 2025 DAPLab of Columbia University (https://daplab.cs.columbia.edu/)
# Copyright (c) 2025 The Trustees of Columbia University in the City of New York

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import time
from dataclasses import asdict
from typing import Any, Dict, List

import yaml

from .config import ReporterConfig, RunConfig, StoreConfig, load_run_config
from .errors import ConfigError
from .runner import run_trial
from .workloads import BEHAVIORS, manifest


def _parse_sets(pairs: List[str]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep:
            raise ConfigError(f"--set expects key=value, got {pair!r}")
        out[key] = yaml.safe_load(value)
    return out


def main() -> None:
    p = argparse.ArgumentParser(prog="minionbench", description="Seeded workload driver with latency reporting")
    p.add_argument("--log-level", default="INFO", help="Python logging level")
    sub = p.add_subparsers(dest="cmd", required=True)

    runp = sub.add_parser("run", help="Run one behavior")
    runp.add_argument("behavior", nargs="?", default=None, help=f"One of: {', '.join(BEHAVIORS)}")
    runp.add_argument("--config", default=None, help="Path to YAML config")
    runp.add_argument("--seed", type=int, default=None, help="PRNG seed (default: wall clock)")
    runp.add_argument("--duration", type=float, default=None, help="Stop after this many seconds")
    runp.add_argument("--run-id", default=None, help="Override run id")
    runp.add_argument("--base-url", default=None, help="Items service URL (switches to the HTTP store)")
    runp.add_argument("--report-url", default=None, help="POST flushed batches to this URL")
    runp.add_argument("--interactive", action="store_true", help="Read through the snapshot cache")
    runp.add_argument("--set", dest="sets", action="append", default=[], metavar="KEY=VALUE",
                      help="Behavior setting, repeatable")

    sub.add_parser("list", help="Print the behavior manifest as JSON")

    ap = sub.add_parser("print-config", help="Print the parsed config for debugging")
    ap.add_argument("--config", required=True)

    args = p.parse_args()
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.cmd == "list":
        print(json.dumps(manifest(), indent=2))
        return

    if args.cmd == "print-config":
        run, rep, store = load_run_config(args.config)
        print(json.dumps({"run": asdict(run), "reporter": asdict(rep), "store": asdict(store)}, indent=2))
        return

    if args.config:
        run, rep, store = load_run_config(args.config)
    else:
        run, rep, store = RunConfig(), ReporterConfig(), StoreConfig()

    if args.behavior is not None:
        run.behavior = args.behavior.lower()
    if run.behavior not in BEHAVIORS:
        p.error(f"unknown behavior {run.behavior!r}; available: {', '.join(BEHAVIORS)}")
    if args.seed is not None:
        run.seed = args.seed
    if args.duration is not None:
        run.duration_s = args.duration
    if args.base_url:
        store.kind, store.base_url = "http", args.base_url
    if args.report_url:
        rep.report_url = args.report_url
    if args.interactive:
        run.context = "interactive"
    run.behavior_config.update(_parse_sets(args.sets))

    run_id = args.run_id or time.strftime("%Y%m%d_%H%M%S")
    if rep.client_id is None:
        rep.client_id = f"cli-{run.behavior}-{run_id}"

    out = asyncio.run(run_trial(run=run, rep=rep, store_cfg=store, run_id=run_id, behaviors=BEHAVIORS))
    print(str(out))


if __name__ == "__main__":
    main()
