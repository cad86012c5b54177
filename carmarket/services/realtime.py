"""
Live dealership feed for admin dashboards.

Local state is a reducer over typed change events. An event whose row is
older than the cached row is discarded, so a slow database read racing a
push never overwrites newer state.
"""
import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Set, Any, Optional, Iterable

import anyio
import structlog
from fastapi import WebSocket


log = structlog.get_logger(__name__)

INSERT = "INSERT"
UPDATE = "UPDATE"
DELETE = "DELETE"

TOMBSTONE = "_deleted"


@dataclass(frozen=True)
class ChangeEvent:
    type: str  # INSERT|UPDATE|DELETE
    record: Dict[str, Any]
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def key(self):
        return self.record.get("id")

    def to_json(self) -> dict:
        return {"type": self.type, "record": self.record}


def _stamp(record: Optional[Dict[str, Any]]):
    """Ordering key of a row: (updated_at, version)."""
    if not record:
        return None
    value = record.get("updated_at")
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if isinstance(value, datetime) and value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return (value or datetime.min.replace(tzinfo=timezone.utc), int(record.get("version") or 0))


def is_tombstone(row: Dict[str, Any]) -> bool:
    return bool(row.get(TOMBSTONE))


def live_rows(state: Dict[Any, Dict[str, Any]]) -> Dict[Any, Dict[str, Any]]:
    return {k: v for k, v in state.items() if not is_tombstone(v)}


def reduce(state: Dict[Any, Dict[str, Any]], event: ChangeEvent) -> Dict[Any, Dict[str, Any]]:
    """Return the state after applying event; the input mapping is not mutated.

    A DELETE leaves a tombstone stamped no older than the row it removed, so
    an INSERT or UPDATE for that row arriving late is discarded like any
    other stale change.
    """
    key = event.key
    if key is None:
        return state
    if event.type not in (INSERT, UPDATE, DELETE):
        raise ValueError(f"Unknown change type {event.type!r}")
    cached = state.get(key)
    if event.type == DELETE:
        stamp = _stamp(event.record)
        if cached is not None:
            if is_tombstone(cached) and _stamp(cached) >= stamp:
                return state
            stamp = max(stamp, _stamp(cached))
        new_state = dict(state)
        new_state[key] = {"id": key, TOMBSTONE: True, "updated_at": stamp[0], "version": stamp[1]}
        return new_state
    if cached is not None:
        newest, incoming = _stamp(cached), _stamp(event.record)
        if newest > incoming or (is_tombstone(cached) and newest == incoming):
            log.debug("stale_change_discarded", key=key, type=event.type)
            return state
    new_state = dict(state)
    new_state[key] = dict(event.record)
    return new_state


def reduce_all(state: Dict[Any, Dict[str, Any]], events: Iterable[ChangeEvent]) -> Dict[Any, Dict[str, Any]]:
    for event in events:
        state = reduce(state, event)
    return state


class DealershipFeed:
    def __init__(self) -> None:
        self._subscribers: Set[WebSocket] = set()
        self._snapshot: Dict[Any, Dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    def snapshot(self) -> list:
        rows = list(live_rows(self._snapshot).values())
        rows.sort(key=lambda r: r.get("created_at") or "", reverse=True)
        return rows

    def clear(self) -> None:
        self._snapshot = {}

    def apply(self, event: ChangeEvent) -> None:
        self._snapshot = reduce(self._snapshot, event)

    def prime(self, records: Iterable[Dict[str, Any]]) -> None:
        """Merge rows read from the database; rows older than pushed state are ignored."""
        for record in records:
            self.apply(ChangeEvent(UPDATE, record))

    async def subscribe(self, ws: WebSocket) -> None:
        async with self._lock:
            self._subscribers.add(ws)

    async def unsubscribe(self, ws: WebSocket) -> None:
        async with self._lock:
            self._subscribers.discard(ws)

    async def publish(self, event: ChangeEvent) -> None:
        self.apply(event)
        data = {"event": "dealership_change", "data": event.to_json()}
        async with self._lock:
            targets = list(self._subscribers)
        for ws in targets:
            try:
                await ws.send_json(data)
            except Exception as e:
                # Dead socket; the receive loop will unsubscribe it
                log.info("feed_send_failed", error=str(e))


# Global singleton feed
feed = DealershipFeed()


def publish_change(change_type: str, record: Dict[str, Any]) -> None:
    """Publish from synchronous route code running in a worker thread."""
    event = ChangeEvent(change_type, record)
    try:
        anyio.from_thread.run(feed.publish, event)
    except RuntimeError:
        # Not inside an AnyIO worker thread (scripts, direct calls): keep the snapshot current
        feed.apply(event)
