import asyncio
import inspect
import threading
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Generic, Hashable, List, Optional, Tuple, TypeVar

import structlog

log = structlog.get_logger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

DisposeCallback = Callable[[V, K], Optional[Awaitable[Any]]]


class LruCache(Generic[K, V]):
    """
    Process-local LRU map bounded by entry count and by total declared size.

    A bound of 0 disables that dimension. `on_dispose(value, key)` runs for
    every value that leaves the cache (eviction, delete, clear, replacement).
    Its failures, sync or async, are logged and never propagate.
    """

    def __init__(
        self,
        max_entries: int = 0,
        max_size_bytes: int = 0,
        on_dispose: Optional[DisposeCallback] = None,
    ):
        self.max_entries = max(0, max_entries)
        self.max_size_bytes = max(0, max_size_bytes)
        self.on_dispose = on_dispose
        self._entries: "OrderedDict[K, Tuple[V, int]]" = OrderedDict()
        self._total_size = 0
        self._lock = threading.RLock()
        self.log = log.bind(component="LruCache")

    @property
    def size(self) -> int:
        return len(self._entries)

    @property
    def total_size(self) -> int:
        return self._total_size

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: K) -> bool:
        return self.has(key)

    def has(self, key: K) -> bool:
        with self._lock:
            return key in self._entries

    def get(self, key: K) -> Optional[V]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            self._entries.move_to_end(key)
            return entry[0]

    def set(self, key: K, value: V, size: int = 0) -> None:
        if size < 0:
            raise ValueError(f"Cache entry size must be non-negative, got {size}")

        disposed: List[Tuple[K, V]] = []
        with self._lock:
            previous = self._entries.pop(key, None)
            if previous is not None:
                self._total_size -= previous[1]
                if previous[0] is not value:
                    disposed.append((key, previous[0]))
            self._entries[key] = (value, size)
            self._total_size += size
            disposed.extend(self._evict_locked())

        self._dispose_all(disposed, reason="evict")

    def delete(self, key: K) -> bool:
        with self._lock:
            entry = self._entries.pop(key, None)
            if entry is None:
                return False
            self._total_size -= entry[1]
        self._dispose(key, entry[0], reason="delete")
        return True

    def clear(self) -> None:
        with self._lock:
            disposed = [(key, value) for key, (value, _) in self._entries.items()]
            self._entries.clear()
            self._total_size = 0
        self._dispose_all(disposed, reason="clear")

    def _over_bounds(self) -> bool:
        if self.max_entries > 0 and len(self._entries) > self.max_entries:
            return True
        if self.max_size_bytes > 0 and self._total_size > self.max_size_bytes:
            return True
        return False

    def _evict_locked(self) -> List[Tuple[K, V]]:
        evicted: List[Tuple[K, V]] = []
        while self._entries and self._over_bounds():
            key, (value, entry_size) = self._entries.popitem(last=False)
            self._total_size -= entry_size
            evicted.append((key, value))
            self.log.debug("Evicted cache entry", key=str(key), size=entry_size)
        return evicted

    def _dispose_all(self, entries: List[Tuple[K, V]], reason: str) -> None:
        for key, value in entries:
            self._dispose(key, value, reason=reason)

    def _dispose(self, key: K, value: V, reason: str) -> None:
        if self.on_dispose is None:
            return
        try:
            result = self.on_dispose(value, key)
        except Exception as e:
            self.log.warning("Cache dispose callback failed", key=str(key), reason=reason, error=str(e))
            return
        if inspect.isawaitable(result):
            self._track_async_dispose(key, result, reason)

    def _track_async_dispose(self, key: K, awaitable: Awaitable[Any], reason: str) -> None:
        def _report(task: "asyncio.Future[Any]") -> None:
            if task.cancelled():
                return
            error = task.exception()
            if error is not None:
                self.log.warning("Async cache dispose callback failed", key=str(key), reason=reason, error=str(error))

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is not None:
            asyncio.ensure_future(awaitable).add_done_callback(_report)
            return

        async def _await() -> Any:
            return await awaitable

        try:
            asyncio.run(_await())
        except Exception as e:
            self.log.warning("Async cache dispose callback failed", key=str(key), reason=reason, error=str(e))
