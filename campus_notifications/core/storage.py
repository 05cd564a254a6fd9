"""
Shared key-value storage with storage-event semantics.

A StorageArea is what one origin's localStorage is to browser tabs: every
session opens its own StorageHandle on the same area, writes through it,
and is told (via a "storage" event) when ANOTHER handle changes a key. The
writing handle never hears about its own writes.

Two areas are provided:
  - MemoryStorageArea: handles in the same process, events delivered
    synchronously on write.
  - SqlStorageArea: handles in any process sharing one database; foreign
    writes are discovered by polling, so `requires_polling` is True. Async
    code polls with `acollect()` and hands the result to `deliver()`.
"""
from __future__ import annotations

import asyncio
import logging
import threading
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

from sqlalchemy.engine import Engine

from campus_notifications.core.database import Base, create_session_factory, create_storage_engine
from campus_notifications.core.events import EventTarget
from campus_notifications.models.storage_entry import StorageEntry

logger = logging.getLogger(__name__)

STORAGE_EVENT = "storage"

T = TypeVar("T")


@dataclass(frozen=True)
class StorageEvent:
    key: str
    old_value: Optional[str]
    new_value: Optional[str]   # None when the key was removed


StorageListener = Callable[[StorageEvent], None]


class StorageHandle:
    """One session's view of a storage area."""

    requires_polling = False
    # True when reads and writes hit a database and belong off the event loop
    blocking_io = False

    def __init__(self) -> None:
        self.handle_id = uuid.uuid4().hex
        self._events = EventTarget()
        self.closed = False

    def get_item(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set_item(self, key: str, value: str) -> None:
        raise NotImplementedError

    def remove_item(self, key: str) -> None:
        raise NotImplementedError

    def collect(self) -> List[StorageEvent]:
        """Events for foreign writes not seen yet, without delivering them."""
        return []

    def deliver(self, events: List[StorageEvent]) -> int:
        for event in events:
            self._deliver(event)
        return len(events)

    def poll(self) -> int:
        """Deliver events for foreign writes not seen yet. Returns the number delivered."""
        return self.deliver(self.collect())

    # Async callers go through these so database-backed handles never block the loop.

    async def _offload(self, fn: Callable[..., T], *args: Any) -> T:
        if self.blocking_io:
            return await asyncio.to_thread(fn, *args)
        return fn(*args)

    async def aget_item(self, key: str) -> Optional[str]:
        return await self._offload(self.get_item, key)

    async def aset_item(self, key: str, value: str) -> None:
        await self._offload(self.set_item, key, value)

    async def acollect(self) -> List[StorageEvent]:
        return await self._offload(self.collect)

    def add_listener(self, listener: StorageListener) -> None:
        self._events.add_listener(STORAGE_EVENT, listener)

    def remove_listener(self, listener: StorageListener) -> None:
        self._events.remove_listener(STORAGE_EVENT, listener)

    def close(self) -> None:
        self.closed = True
        self._events.clear()

    def _deliver(self, event: StorageEvent) -> None:
        if not self.closed:
            self._events.dispatch(STORAGE_EVENT, event)


class StorageArea:
    def open(self) -> StorageHandle:
        raise NotImplementedError

    def dispose(self) -> None:
        pass


# ---------------------------------------------------------------------------
# In-process area
# ---------------------------------------------------------------------------

class MemoryStorageHandle(StorageHandle):
    def __init__(self, area: "MemoryStorageArea") -> None:
        super().__init__()
        self._area = area

    def get_item(self, key: str) -> Optional[str]:
        return self._area._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._area._write(self, key, str(value))

    def remove_item(self, key: str) -> None:
        self._area._write(self, key, None)

    def close(self) -> None:
        super().close()
        self._area._detach(self)


class MemoryStorageArea(StorageArea):
    """Storage shared by handles living in one process."""

    def __init__(self) -> None:
        self._data: Dict[str, str] = {}
        self._handles: List[MemoryStorageHandle] = []

    def open(self) -> MemoryStorageHandle:
        handle = MemoryStorageHandle(self)
        self._handles.append(handle)
        return handle

    def _detach(self, handle: MemoryStorageHandle) -> None:
        if handle in self._handles:
            self._handles.remove(handle)

    def _write(self, source: MemoryStorageHandle, key: str, value: Optional[str]) -> None:
        old_value = self._data.get(key)
        if value is None:
            if key not in self._data:
                return
            del self._data[key]
        else:
            self._data[key] = value
        event = StorageEvent(key=key, old_value=old_value, new_value=value)
        for handle in list(self._handles):
            if handle is not source:
                handle._deliver(event)


# ---------------------------------------------------------------------------
# Database-backed area
# ---------------------------------------------------------------------------

class SqlStorageHandle(StorageHandle):
    """
    Handle on a database-backed area.

    Every call is a blocking database round trip, so async callers run them
    in a worker thread (`blocking_io`). `_seen` is guarded by a lock for that
    reason; events are still delivered by whoever calls `deliver()`.
    """

    requires_polling = True
    blocking_io = True

    def __init__(self, area: "SqlStorageArea") -> None:
        super().__init__()
        self._area = area
        self._lock = threading.Lock()
        # key -> (version, writer_id, value) as last observed by this handle
        self._seen: Dict[str, Tuple[int, str, str]] = self._area._read_all()

    def get_item(self, key: str) -> Optional[str]:
        with self._area.session_factory() as db:
            entry = db.get(StorageEntry, key)
            return entry.value if entry else None

    def set_item(self, key: str, value: str) -> None:
        value = str(value)
        with self._area.session_factory() as db:
            entry = db.get(StorageEntry, key)
            if entry:
                entry.value = value
                entry.version = (entry.version or 0) + 1
                entry.writer_id = self.handle_id
            else:
                entry = StorageEntry(key=key, value=value, version=1, writer_id=self.handle_id)
                db.add(entry)
            db.commit()
            with self._lock:
                self._seen[key] = (entry.version, self.handle_id, value)

    def remove_item(self, key: str) -> None:
        with self._area.session_factory() as db:
            entry = db.get(StorageEntry, key)
            if entry:
                db.delete(entry)
                db.commit()
        with self._lock:
            self._seen.pop(key, None)

    def collect(self) -> List[StorageEvent]:
        if self.closed:
            return []
        current = self._area._read_all()
        events: List[StorageEvent] = []
        with self._lock:
            for key, (version, writer_id, value) in current.items():
                previous = self._seen.get(key)
                if previous is not None and previous[0] == version and previous[1] == writer_id:
                    continue
                if writer_id != self.handle_id:
                    events.append(StorageEvent(key=key, old_value=previous[2] if previous else None, new_value=value))
            for key in set(self._seen) - set(current):
                events.append(StorageEvent(key=key, old_value=self._seen[key][2], new_value=None))
            self._seen = current
        return events


class SqlStorageArea(StorageArea):
    """Storage shared by every process pointing at the same database URL."""

    def __init__(self, url: Optional[str] = None, *, engine: Optional[Engine] = None) -> None:
        if engine is None:
            if not url:
                raise ValueError("SqlStorageArea needs a database URL or an engine")
            engine = create_storage_engine(url)
        self.engine = engine
        self.session_factory = create_session_factory(engine)
        Base.metadata.create_all(bind=engine, tables=[StorageEntry.__table__])

    def open(self) -> SqlStorageHandle:
        return SqlStorageHandle(self)

    def dispose(self) -> None:
        self.engine.dispose()

    def _read_all(self) -> Dict[str, Tuple[int, str, str]]:
        with self.session_factory() as db:
            rows = db.query(StorageEntry.key, StorageEntry.version, StorageEntry.writer_id, StorageEntry.value).all()
        return {row.key: (row.version, row.writer_id, row.value) for row in rows}


# ---------------------------------------------------------------------------
# Credentials kept in storage
# ---------------------------------------------------------------------------

class StoredToken:
    """
    Bearer credential read from shared storage and cached.

    `load()` reads the key once; storage events for that key keep the cache
    current afterwards, so request paths never touch the storage backend.
    Calling the instance returns the cached token, or `fallback` when the
    key is empty.
    """

    def __init__(self, storage: StorageHandle, key: str, fallback: Optional[str] = None) -> None:
        self.storage = storage
        self.key = key
        self.fallback = fallback
        self._value: Optional[str] = None
        storage.add_listener(self._on_storage_change)

    async def load(self) -> Optional[str]:
        self._value = await self.storage.aget_item(self.key)
        return self()

    def _on_storage_change(self, event: StorageEvent) -> None:
        if event.key == self.key:
            self._value = event.new_value

    def __call__(self) -> Optional[str]:
        return self._value or self.fallback or None
