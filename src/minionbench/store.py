# Copyright (c) 2025 Vahab Jabrayilov (vjabrayilov@cs.columbia.edu)
# Copyright (c) 2025 DAPLab of Columbia University (https://daplab.cs.columbia.edu/)
# Copyright (c) 2025 The Trustees of Columbia University in the City of New York

"""Items data-access capability used by the workloads.

Three implementations share the ``ItemStore`` protocol: an in-process store for dry runs and
tests, a JSON/REST client over aiohttp, and a snapshot wrapper that serves reads from a
cached copy refreshed on demand.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence

import aiohttp

from .errors import OperationFailure
from .prng import SeededRandom

logger = logging.getLogger(__name__)

STATUSES = ("pending", "active", "completed")


@dataclass
class Item:
    id: str
    title: str
    status: str = "pending"
    priority: int = 3  # 1 (highest) .. 5
    description: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    project_id: Optional[int] = None
    owner_id: Optional[str] = None
    created_at: float = 0.0
    updated_at: float = 0.0

    @classmethod
    def from_json(cls, d: Dict[str, Any]) -> "Item":
        return cls(
            id=str(d.get("id") or d.get("_id")),
            title=d["title"],
            status=d.get("status", "pending"),
            priority=int(d.get("priority", 3)),
            description=d.get("description"),
            tags=list(d.get("tags") or []),
            project_id=d.get("projectId"),
            owner_id=d.get("ownerId"),
            created_at=float(d.get("createdAt") or 0.0),
            updated_at=float(d.get("updatedAt") or 0.0),
        )


def _to_wire(data: Dict[str, Any]) -> Dict[str, Any]:
    keys = {"project_id": "projectId", "owner_id": "ownerId"}
    return {keys.get(k, k): v for k, v in data.items() if v is not None}


class ItemStore(Protocol):
    async def create_item(self, data: Dict[str, Any]) -> str: ...

    async def create_items(self, items: Sequence[Dict[str, Any]]) -> List[str]: ...

    async def update_item(self, item_id: str, data: Dict[str, Any]) -> None: ...

    async def delete_item(self, item_id: str) -> None: ...

    async def list_items(self, limit: int = 1000, project_id: Optional[int] = None) -> List[Item]: ...

    async def items_by_status(self, status: str) -> List[Item]: ...

    async def items_by_priority(self, priority: int) -> List[Item]: ...

    async def random_item(self, rng: SeededRandom) -> Optional[Item]: ...

    async def count(self) -> int: ...


class InMemoryItemStore:
    """Dict-backed store with optional simulated latency and failures."""

    def __init__(self, *, latency_ms: float = 0.0, failure_rate: float = 0.0, seed: int = 0):
        self.latency_ms = latency_ms
        self.failure_rate = failure_rate
        self._rng = SeededRandom(seed)
        self._items: Dict[str, Item] = {}
        self._ids = itertools.count(1)
        self.calls: Dict[str, int] = {}

    async def _op(self, name: str) -> None:
        self.calls[name] = self.calls.get(name, 0) + 1
        if self.latency_ms > 0:
            await asyncio.sleep(self.latency_ms / 1000.0)
        if self.failure_rate > 0 and self._rng.next() < self.failure_rate:
            logger.debug("injecting failure into %s", name)
            raise OperationFailure(name, "injected failure")

    def _new(self, data: Dict[str, Any], now: float) -> Item:
        item = Item(
            id=f"item_{next(self._ids)}",
            title=data["title"],
            status=data.get("status") or "pending",
            priority=int(data.get("priority") or 3),
            description=data.get("description"),
            tags=list(data.get("tags") or []),
            project_id=data.get("project_id"),
            owner_id=data.get("owner_id"),
            created_at=now,
            updated_at=now,
        )
        self._items[item.id] = item
        return item

    async def create_item(self, data: Dict[str, Any]) -> str:
        await self._op("create_item")
        return self._new(data, time.time() * 1000.0).id

    async def create_items(self, items: Sequence[Dict[str, Any]]) -> List[str]:
        await self._op("create_items")
        now = time.time() * 1000.0
        return [self._new(d, now).id for d in items]

    async def update_item(self, item_id: str, data: Dict[str, Any]) -> None:
        await self._op("update_item")
        item = self._items.get(item_id)
        if item is None:
            raise OperationFailure("update_item", f"item {item_id} not found")
        for k, v in data.items():
            if v is not None:
                setattr(item, k, v)
        item.updated_at = time.time() * 1000.0

    async def delete_item(self, item_id: str) -> None:
        await self._op("delete_item")
        if self._items.pop(item_id, None) is None:
            raise OperationFailure("delete_item", f"item {item_id} not found")

    async def list_items(self, limit: int = 1000, project_id: Optional[int] = None) -> List[Item]:
        await self._op("list_items")
        items = [i for i in self._items.values() if project_id is None or i.project_id == project_id]
        items.sort(key=lambda i: i.created_at, reverse=True)
        return items[:limit]

    async def items_by_status(self, status: str) -> List[Item]:
        await self._op("items_by_status")
        return [i for i in self._items.values() if i.status == status]

    async def items_by_priority(self, priority: int) -> List[Item]:
        await self._op("items_by_priority")
        return [i for i in self._items.values() if i.priority == priority]

    async def random_item(self, rng: SeededRandom) -> Optional[Item]:
        await self._op("random_item")
        if not self._items:
            return None
        return rng.pick(list(self._items.values()))

    async def count(self) -> int:
        await self._op("count")
        return len(self._items)


class HttpItemStore:
    """JSON/REST client for a hosted items service.

    Non-2xx responses raise ``OperationFailure``; timeouts are the session's
    (``aiohttp.ClientTimeout``), the workloads impose none of their own.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout_s: float = 30.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self._session = session
        self._owns_session = session is None

    def _sess(self) -> aiohttp.ClientSession:
        if self._session is None:
            connector = aiohttp.TCPConnector(limit=0, ttl_dns_cache=60)
            timeout = aiohttp.ClientTimeout(total=self.timeout_s)
            self._session = aiohttp.ClientSession(connector=connector, timeout=timeout)
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    async def _request(self, op: str, method: str, path: str, **kwargs: Any) -> Any:
        url = self.base_url + path
        try:
            async with self._sess().request(method, url, **kwargs) as resp:
                if resp.status >= 300:
                    raise OperationFailure(op, f"HTTP {resp.status}", status=resp.status)
                if resp.status == 204:
                    return None
                return await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise OperationFailure(op, str(e) or type(e).__name__) from e

    async def create_item(self, data: Dict[str, Any]) -> str:
        out = await self._request("create_item", "POST", "/items", json=_to_wire(data))
        return str(out["id"])

    async def create_items(self, items: Sequence[Dict[str, Any]]) -> List[str]:
        body = {"items": [_to_wire(d) for d in items]}
        out = await self._request("create_items", "POST", "/items/batch", json=body)
        return [str(x) for x in out["ids"]]

    async def update_item(self, item_id: str, data: Dict[str, Any]) -> None:
        await self._request("update_item", "PATCH", f"/items/{item_id}", json=_to_wire(data))

    async def delete_item(self, item_id: str) -> None:
        await self._request("delete_item", "DELETE", f"/items/{item_id}")

    async def list_items(self, limit: int = 1000, project_id: Optional[int] = None) -> List[Item]:
        params: Dict[str, Any] = {"limit": limit}
        if project_id is not None:
            params["projectId"] = project_id
        out = await self._request("list_items", "GET", "/items", params=params)
        return [Item.from_json(d) for d in out]

    async def items_by_status(self, status: str) -> List[Item]:
        out = await self._request("items_by_status", "GET", "/items", params={"status": status})
        return [Item.from_json(d) for d in out]

    async def items_by_priority(self, priority: int) -> List[Item]:
        out = await self._request("items_by_priority", "GET", "/items", params={"priority": priority})
        return [Item.from_json(d) for d in out]

    async def random_item(self, rng: SeededRandom) -> Optional[Item]:
        items = await self.list_items()
        return rng.pick(items) if items else None

    async def count(self) -> int:
        out = await self._request("count", "GET", "/items/count")
        return int(out["count"])


class SnapshotItemStore:
    """Serves reads from a cached snapshot of ``inner.list_items()``.

    The snapshot is replaced wholesale by ``refresh()``, so readers never see a partial
    update. Reads refresh when the snapshot is older than ``max_age_s``; writes go through
    to ``inner`` and mark the snapshot stale.
    """

    def __init__(self, inner: ItemStore, *, max_age_s: float = 1.0, limit: int = 1000,
                 project_id: Optional[int] = None):
        self.inner = inner
        self.max_age_s = max_age_s
        self.limit = limit
        self.project_id = project_id
        self._items: List[Item] = []
        self._fetched_at: Optional[float] = None
        self.refreshes = 0

    async def refresh(self) -> List[Item]:
        items = await self.inner.list_items(limit=self.limit, project_id=self.project_id)
        self._items = list(items)
        self._fetched_at = time.monotonic()
        self.refreshes += 1
        return self._items

    async def _snapshot(self) -> List[Item]:
        if self._fetched_at is None or time.monotonic() - self._fetched_at > self.max_age_s:
            return await self.refresh()
        return self._items

    def _stale(self) -> None:
        self._fetched_at = None

    async def create_item(self, data: Dict[str, Any]) -> str:
        if self.project_id is not None:
            data = {"project_id": self.project_id, **data}
        out = await self.inner.create_item(data)
        self._stale()
        return out

    async def create_items(self, items: Sequence[Dict[str, Any]]) -> List[str]:
        if self.project_id is not None:
            items = [{"project_id": self.project_id, **d} for d in items]
        out = await self.inner.create_items(items)
        self._stale()
        return out

    async def update_item(self, item_id: str, data: Dict[str, Any]) -> None:
        await self.inner.update_item(item_id, data)
        self._stale()

    async def delete_item(self, item_id: str) -> None:
        await self.inner.delete_item(item_id)
        self._stale()

    async def list_items(self, limit: int = 1000, project_id: Optional[int] = None) -> List[Item]:
        items = await self._snapshot()
        if project_id is not None:
            items = [i for i in items if i.project_id == project_id]
        return list(items[:limit])

    async def items_by_status(self, status: str) -> List[Item]:
        return [i for i in await self._snapshot() if i.status == status]

    async def items_by_priority(self, priority: int) -> List[Item]:
        return [i for i in await self._snapshot() if i.priority == priority]

    async def random_item(self, rng: SeededRandom) -> Optional[Item]:
        items = await self._snapshot()
        return rng.pick(items) if items else None

    async def count(self) -> int:
        return len(await self._snapshot())
