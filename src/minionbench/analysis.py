# Copyright (c) 2025 Vahab Jabrayilov (vjabrayilov@cs.columbia.edu)
# Copyright (c) 2025 DAPLab of Columbia University (https://daplab.cs.columbia.edu/)
# Copyright (c) 2025 The Trustees of Columbia University in the City of New York

from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, List

import numpy as np
import pandas as pd

from .collector import percentile


def load_run_dir(run_dir: str | Path) -> pd.DataFrame:
    """One row per ``summary.json`` under ``run_dir``, metrics flattened to columns."""
    run_dir = Path(run_dir)
    rows: List[Dict] = []
    for p in sorted(run_dir.glob("**/summary.json")):
        with p.open("r", encoding="utf-8") as f:
            d = json.load(f)
        metrics = d.pop("metrics", None) or {}
        d.pop("logs", None)
        for k, v in metrics.items():
            if k != "byType":
                d[k] = v
        rows.append(d)
    if not rows:
        raise FileNotFoundError(f"No summary.json files under {run_dir}")
    return pd.DataFrame(rows)


def summarize(df: pd.DataFrame) -> pd.DataFrame:
    keep = [
        "behavior", "run_id", "seed", "state", "wall_time_s", "n_samples",
        "totalCount", "successCount", "errorCount",
        "latencyP50", "latencyP95", "latencyP99", "latencyMean", "opsPerSecond",
    ]
    cols = [c for c in keep if c in df.columns]
    out = df[cols].copy()
    out.sort_values([c for c in ("behavior", "run_id") if c in out.columns], inplace=True)
    return out


def load_samples(path: str | Path) -> pd.DataFrame:
    """Read a ``samples.jsonl`` file written by ``JsonlSink``."""
    df = pd.read_json(path, lines=True, convert_dates=False)
    if df.empty:
        return df
    df["time"] = pd.to_datetime(df["timestamp"], unit="ms")
    return df


def per_operation(samples: pd.DataFrame) -> pd.DataFrame:
    """Counts and nearest-rank latency percentiles per operation name."""
    rows = []
    for (op_type, name), g in samples.groupby(["type", "functionName"]):
        ok = np.sort(g.loc[g["success"], "latencyMs"].to_numpy(dtype=np.float64))
        rows.append(
            {
                "type": op_type,
                "operation": name,
                "count": len(g),
                "errors": int((~g["success"]).sum()),
                "p50_ms": percentile(ok, 0.50),
                "p95_ms": percentile(ok, 0.95),
                "p99_ms": percentile(ok, 0.99),
                "mean_ms": float(ok.mean()) if len(ok) else 0.0,
            }
        )
    return pd.DataFrame(rows)


def throughput_series(samples: pd.DataFrame, freq: str = "1s") -> pd.Series:
    """Samples completed per ``freq`` bucket."""
    return samples.set_index("time").resample(freq).size()
