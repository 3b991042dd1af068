# Copyright (c) 2025 Vahab Jabrayilov (vjabrayilov@cs.columbia.edu)
# Copyright (c) 2025 DAPLab of Columbia University (https://daplab.cs.columbia.edu/)
# Copyright (c) 2025 The Trustees of Columbia University in the City of New York

from __future__ import annotations

import abc
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple, TypeVar

from .errors import ConfigError
from .types import OperationCategory

if TYPE_CHECKING:
    from .context import ExecutionContext

T = TypeVar("T")

FIELD_TYPES = ("number", "string", "boolean")


@dataclass(frozen=True)
class ConfigField:
    """One declared behavior setting."""

    type: str = "number"
    description: Optional[str] = None
    default: Any = None
    min: Optional[float] = None
    max: Optional[float] = None
    integer: bool = False

    def to_json(self, name: str) -> Dict[str, Any]:
        d: Dict[str, Any] = {"name": name, "type": self.type}
        if self.description is not None:
            d["description"] = self.description
        if self.default is not None:
            d["default"] = self.default
        if self.min is not None:
            d["minimum"] = self.min
        if self.max is not None:
            d["maximum"] = self.max
        return d


ConfigSchema = Mapping[str, ConfigField]

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _coerce(f: ConfigField, value: Any) -> Any:
    if f.type == "boolean":
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.lower() in _TRUE | _FALSE:
            return value.lower() in _TRUE
        raise ValueError(f"expected boolean, got {value!r}")

    if f.type == "string":
        return str(value)

    # number
    if isinstance(value, bool):
        raise ValueError(f"expected number, got {value!r}")
    num = float(value)
    if f.integer:
        if not num.is_integer():
            raise ValueError(f"expected integer, got {value!r}")
        return int(num)
    return num


def validate_config(schema: Optional[ConfigSchema], raw: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Apply defaults and check ``raw`` against ``schema``.

    Raises ``ConfigError`` listing every failing field. Keys missing from the schema are
    rejected rather than ignored.
    """
    schema = schema or {}
    raw = dict(raw or {})
    problems: List[str] = [f"{k}: unknown setting" for k in sorted(set(raw) - set(schema))]
    out: Dict[str, Any] = {}

    for name, f in schema.items():
        if f.type not in FIELD_TYPES:
            raise ConfigError(f"{name}: unsupported field type {f.type!r}")
        value = raw.get(name)
        if value is None:
            value = f.default
        if value is None:
            problems.append(f"{name}: required")
            continue
        try:
            value = _coerce(f, value)
        except (TypeError, ValueError) as e:
            problems.append(f"{name}: {e}")
            continue
        if f.type == "number":
            if f.min is not None and value < f.min:
                problems.append(f"{name}: {value} < minimum {f.min}")
                continue
            if f.max is not None and value > f.max:
                problems.append(f"{name}: {value} > maximum {f.max}")
                continue
        out[name] = value

    if problems:
        raise ConfigError("invalid behavior config: " + "; ".join(problems), problems)
    return out


def config_info(schema: Optional[ConfigSchema]) -> Dict[str, Any]:
    """Field list and defaults, the shape form generators consume."""
    schema = schema or {}
    return {
        "fields": [f.to_json(name) for name, f in schema.items()],
        "defaults": {name: f.default for name, f in schema.items() if f.default is not None},
    }


class Behavior(abc.ABC):
    """A named two-phase workload.

    Behaviors are descriptors: every piece of run state lives in locals of ``init``/``run``
    or in the context, so one instance can serve any number of runs.
    """

    key: str = ""
    name: str = ""
    description: str = ""
    category: str = "mixed"  # seeder | reader | writer | mixed
    config_schema: ConfigSchema = {}

    async def init(self, ctx: "ExecutionContext", config: Dict[str, Any]) -> None:
        """One-shot setup. Must return early once ``ctx.should_stop()`` is true."""

    @abc.abstractmethod
    async def run(self, ctx: "ExecutionContext", config: Dict[str, Any]) -> None:
        """Main loop; polls ``ctx.should_stop()`` once per iteration."""

    def info(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "key": self.key,
            "name": self.name,
            "description": self.description,
            "category": self.category,
        }
        if self.config_schema:
            d["configSchema"] = config_info(self.config_schema)
        return d


async def timed(
    ctx: "ExecutionContext",
    category: OperationCategory,
    operation: str,
    fn: Callable[[], Awaitable[T]],
) -> Tuple[bool, Optional[T]]:
    """Run one operation, report its latency and turn a failure into a failed sample.

    Returns ``(success, result)``; ``result`` is None when the operation raised.
    """
    t0 = time.perf_counter()
    try:
        result = await fn()
    except Exception as e:
        latency_ms = (time.perf_counter() - t0) * 1000.0
        ctx.log.error(f"{operation} failed: {e}", code=type(e).__name__)
        ctx.report(category, operation, latency_ms, False, error=str(e))
        return False, None
    ctx.report(category, operation, (time.perf_counter() - t0) * 1000.0, True)
    return True, result
