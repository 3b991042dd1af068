# Copyright (c) 2025 Vahab Jabrayilov (vjabrayilov@cs.columbia.edu)
# Copyright (c) 2025 DAPLab of Columbia University (https://daplab.cs.columbia.edu/)
# Copyright (c) 2025 The Trustees of Columbia University in the City of New York

"""Aggregate summaries under ./runs and generate plots.

Usage
-----
python scripts/analyze_results.py --runs runs --out runs/plots

Writes summary.csv, operations.csv (per-operation percentiles over every samples.jsonl)
and two figures. If you did not install the package, the script will automatically add
./src to PYTHONPATH when run from the repo root.
"""

from __future__ import annotations

import argparse
from pathlib import Path
import sys

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC = REPO_ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

import matplotlib.pyplot as plt
import pandas as pd

from minionbench.analysis import load_run_dir, load_samples, per_operation, summarize, throughput_series


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("--runs", required=True, help="Directory containing run subfolders with summary.json")
    ap.add_argument("--out", required=True, help="Output directory for tables and figures")
    args = ap.parse_args()

    out = Path(args.out)
    out.mkdir(parents=True, exist_ok=True)

    summ = summarize(load_run_dir(args.runs))
    summ.to_csv(out / "summary.csv", index=False)

    frames = [load_samples(p) for p in sorted(Path(args.runs).glob("**/samples.jsonl"))]
    frames = [f for f in frames if not f.empty]
    if frames:
        samples = pd.concat(frames, ignore_index=True)
        ops = per_operation(samples)
        ops.to_csv(out / "operations.csv", index=False)

        plt.figure()
        ops.set_index("operation")[["p50_ms", "p95_ms", "p99_ms"]].plot.bar(ax=plt.gca())
        plt.ylabel("Latency (ms)")
        plt.tight_layout()
        plt.savefig(out / "latency_by_operation.png", dpi=200)

        plt.figure()
        throughput_series(samples).plot(ax=plt.gca())
        plt.ylabel("Operations / s")
        plt.tight_layout()
        plt.savefig(out / "throughput.png", dpi=200)

    if "behavior" in summ.columns and "latencyP99" in summ.columns:
        plt.figure()
        for behavior, g in summ.groupby("behavior"):
            plt.plot(range(len(g)), g["latencyP99"], marker="o", label=behavior)
        plt.xlabel("Run")
        plt.ylabel("P99 latency (ms)")
        plt.legend()
        plt.tight_layout()
        plt.savefig(out / "p99_latency_ms.png", dpi=200)

    print(f"Wrote {out}")


if __name__ == "__main__":
    main()
