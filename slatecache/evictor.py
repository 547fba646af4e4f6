"""Size-bounded eviction of files kept in a local cache folder."""

from __future__ import annotations

import logging
import os
import queue
import random
import threading
import time
from pathlib import Path
from typing import Optional, Union

from slatecache.object_store import CacheStats

logger = logging.getLogger(__name__)

PathLike = Union[str, "os.PathLike[str]"]

_QUEUE_CAPACITY = 100


class EvictorCore:
    """Tracks cached files and removes old ones when the cache grows too large.

    Eviction approximates LRU with a pick-of-two strategy: two tracked files
    are chosen at random and the one accessed longer ago is removed.
    """

    def __init__(
        self,
        root_folder: PathLike,
        max_cache_size_bytes: int,
        stats: Optional[CacheStats] = None,
        batch_factor: int = 10,
    ) -> None:
        self.root_folder = Path(root_folder)
        self.max_cache_size_bytes = max_cache_size_bytes
        self.stats = stats if stats is not None else CacheStats()
        self.batch_factor = batch_factor
        self._entries: dict[Path, tuple[float, int]] = {}
        self._entries_lock = threading.Lock()
        self._track_lock = threading.Lock()
        self._cache_size_bytes = 0
        self._rng = random.Random()

    @property
    def cache_size_bytes(self) -> int:
        """Total bytes of the tracked files."""
        with self._entries_lock:
            return self._cache_size_bytes

    def __len__(self) -> int:
        with self._entries_lock:
            return len(self._entries)

    def __contains__(self, path: object) -> bool:
        with self._entries_lock:
            return Path(path) in self._entries  # type: ignore[arg-type]

    def scan_entries(self, evict: bool) -> None:
        """Walk the cache folder and track every file with its last access time."""
        for dirpath, _dirnames, filenames in os.walk(self.root_folder, onerror=self._walk_error):
            for name in filenames:
                path = Path(dirpath) / name
                try:
                    info = path.stat()
                except OSError as err:
                    logger.warning("evictor: failed to get the metadata of the cache file: %s", err)
                    continue
                self.track_entry_accessed(path, info.st_size, info.st_atime, evict)

    @staticmethod
    def _walk_error(err: OSError) -> None:
        logger.warning("evictor: failed to walk the cache folder: %s", err)

    def track_entry_accessed(
        self,
        path: PathLike,
        size: int,
        accessed_time: Optional[float] = None,
        evict: bool = False,
    ) -> int:
        """Record an access and, if asked, evict files; return the bytes evicted."""
        if accessed_time is None:
            accessed_time = time.time()
        path = Path(path)
        with self._track_lock:
            with self._entries_lock:
                if path not in self._entries:
                    self._cache_size_bytes += size
                self._entries[path] = (accessed_time, size)
                self._sync_stats()
                over_limit = self._cache_size_bytes > self.max_cache_size_bytes

            if not evict or not over_limit:
                return 0

            total = 0
            for _ in range(self.batch_factor):
                evicted = self._maybe_evict_once()
                if evicted == 0:
                    break
                total += evicted
            return total

    def _sync_stats(self) -> None:
        self.stats.cache_keys = len(self._entries)
        self.stats.cache_bytes = self._cache_size_bytes

    def _maybe_evict_once(self) -> int:
        target = self.pick_evict_target()
        if target is None:
            return 0
        path, size = target
        try:
            path.unlink()
        except FileNotFoundError as err:
            logger.warning("evictor: failed to remove the cache file: %s", err)
        except OSError as err:
            logger.warning("evictor: failed to remove the cache file: %s", err)
            return 0

        logger.debug("evictor: evicted cache file: %s, bytes: %d", path, size)
        with self._entries_lock:
            if self._entries.pop(path, None) is not None:
                self._cache_size_bytes -= size
            self.stats.evicted_bytes += size
            self.stats.evicted_keys += 1
            self._sync_stats()
        return size

    def pick_evict_target(self) -> Optional[tuple[Path, int]]:
        """Pick two random tracked files and return the older one with its size."""
        with self._entries_lock:
            if len(self._entries) < 2:
                return None
            (path0, (atime0, size0)), (path1, (atime1, size1)) = self._rng.sample(
                list(self._entries.items()), 2
            )
        if atime0 <= atime1:
            return path0, size0
        return path1, size1


_STOP = object()


class FsCacheEvictor:
    """Runs an :class:`EvictorCore` in background threads.

    Accesses reported through :meth:`track_entry_accessed` are queued and
    applied by a worker thread; another thread rescans the cache folder at
    start and then every ``scan_interval`` seconds, if one is given.
    """

    def __init__(
        self,
        root_folder: PathLike,
        max_cache_size_bytes: int,
        scan_interval: Optional[float] = None,
        stats: Optional[CacheStats] = None,
    ) -> None:
        self.root_folder = Path(root_folder)
        self.max_cache_size_bytes = max_cache_size_bytes
        self.scan_interval = scan_interval
        self.stats = stats if stats is not None else CacheStats()
        self.core: Optional[EvictorCore] = None
        self._queue: "queue.Queue[object]" = queue.Queue(maxsize=_QUEUE_CAPACITY)
        self._stop_event = threading.Event()
        self._state_lock = threading.Lock()
        self._evict_thread: Optional[threading.Thread] = None
        self._scan_thread: Optional[threading.Thread] = None

    def start(self) -> None:
        """Start the background scan and eviction threads."""
        with self._state_lock:
            if self.core is not None:
                raise RuntimeError("evictor already started")
            core = EvictorCore(self.root_folder, self.max_cache_size_bytes, self.stats)
            self.core = core
            self._scan_thread = threading.Thread(
                target=self._background_scan, args=(core,), daemon=True
            )
            self._evict_thread = threading.Thread(
                target=self._background_evict, args=(core,), daemon=True
            )
            self._scan_thread.start()
            self._evict_thread.start()

    def started(self) -> bool:
        """Whether :meth:`start` has been called."""
        with self._state_lock:
            return self.core is not None

    def _background_scan(self, core: EvictorCore) -> None:
        core.scan_entries(True)
        if self.scan_interval is None:
            return
        while not self._stop_event.wait(self.scan_interval):
            core.scan_entries(True)

    def _background_evict(self, core: EvictorCore) -> None:
        while True:
            work = self._queue.get()
            if work is _STOP:
                return
            path, size, evict = work  # type: ignore[misc]
            core.track_entry_accessed(path, size, time.time(), evict)

    def track_entry_accessed(self, path: PathLike, size: int, evict: bool) -> None:
        """Queue an access for the evictor; ignored until the evictor is started."""
        if not self.started():
            return
        self._queue.put((Path(path), size, evict))

    def stop(self) -> None:
        """Process queued accesses, then stop the background threads."""
        with self._state_lock:
            evict_thread, scan_thread = self._evict_thread, self._scan_thread
        if evict_thread is None:
            return
        self._stop_event.set()
        self._queue.put(_STOP)
        evict_thread.join()
        if scan_thread is not None:
            scan_thread.join()
        with self._state_lock:
            self._evict_thread = None
            self._scan_thread = None