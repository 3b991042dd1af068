# Copyright (c) 2025 Vahab Jabrayilov (vjabrayilov@cs.columbia.edu)
# Copyright (c) 2025 DAPLab of Columbia University (https://daplab.cs.columbia.edu/)
# Copyright (c) 2025 The Trustees of Columbia University in the City of New York


from __future__ import annotations

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .errors import ConfigError


@dataclass
class ReporterConfig:
    flush_interval_ms: int = 5000
    max_buffer_size: int = 100

    # POST target for flushed batches (JSON)
    report_url: Optional[str] = None
    client_id: Optional[str] = None

    # Log every recorded sample
    debug: bool = False
    enabled: bool = True


@dataclass
class StoreConfig:
    kind: str = "memory"          # "memory" or "http"
    base_url: str = "http://127.0.0.1:8000"
    timeout_s: float = 30.0

    # In-memory store knobs for dry runs
    latency_ms: float = 0.0
    failure_rate: float = 0.0


@dataclass
class RunConfig:
    behavior: str = "mixed"
    seed: Optional[int] = None

    # Stop the run after this long; None runs until the behavior returns or SIGINT
    duration_s: Optional[float] = None
    out_dir: str = "runs"

    # "headless" reads the store directly, "interactive" reads through a snapshot cache
    context: str = "headless"

    # Validated against the behavior's config schema before the run starts
    behavior_config: Dict[str, Any] = field(default_factory=dict)


def load_yaml(path: str | Path) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _build(cls, section: str, raw: Dict[str, Any]):
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ConfigError(f"unknown keys in '{section}': {', '.join(unknown)}", unknown)
    return cls(**raw)


def load_run_config(path: str | Path) -> tuple[RunConfig, ReporterConfig, StoreConfig]:
    cfg = load_yaml(path)
    run = _build(RunConfig, "run", cfg.get("run", {}) or {})
    rep = _build(ReporterConfig, "reporter", cfg.get("reporter", {}) or {})
    store = _build(StoreConfig, "store", cfg.get("store", {}) or {})
    if store.kind not in ("memory", "http"):
        raise ConfigError(f"store.kind must be 'memory' or 'http', got {store.kind!r}")
    if run.context not in ("headless", "interactive"):
        raise ConfigError(f"run.context must be 'headless' or 'interactive', got {run.context!r}")
    return run, rep, store
