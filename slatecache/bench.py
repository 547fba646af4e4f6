"""A mixed put/get workload runner for a key-value database."""

from __future__ import annotations

import logging
import random
import threading
import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Mapping, NamedTuple, Optional, Protocol

logger = logging.getLogger(__name__)

STAT_DUMP_INTERVAL = 10.0
"""Seconds between stat dumps to the log."""

STAT_DUMP_LOOKBACK = 60.0
"""Seconds of completed windows summed in each stat dump."""

REPORT_INTERVAL = 0.1
"""Seconds between a task's reports and between checks for a stat dump."""

WINDOW_SIZE = 10.0
"""Length in seconds of each stats window."""

MAX_WINDOWS = 180
"""How many windows the stats recorder keeps."""


class KeyGenerator(Protocol):
    """Produces keys for the benchmark."""

    def next_key(self) -> bytes:
        """Return the next key."""


class Database(Protocol):
    """The operations the benchmark performs on a database."""

    def put(self, key: bytes, value: bytes, **options: Any) -> Any: ...

    def get(self, key: bytes) -> Any: ...


class RandomKeyGenerator:
    """Generates random keys of a fixed length."""

    def __init__(self, key_len: int) -> None:
        if key_len < 0:
            raise ValueError("key length must not be negative")
        self.key_len = key_len
        self._rng = random.Random()

    def next_key(self) -> bytes:
        """Return a fresh random key."""
        return self._rng.randbytes(self.key_len)


class FixedSetKeyGenerator:
    """Draws keys at random from a fixed set of random keys."""

    def __init__(self, key_len: int, key_count: int) -> None:
        generator = RandomKeyGenerator(key_len)
        self.keys: list[bytes] = [generator.next_key() for _ in range(key_count)]
        self._rng = random.Random()

    def next_key(self) -> bytes:
        """Return one of the fixed keys; raise IndexError if the set is empty."""
        return self._rng.choice(self.keys)


@dataclass
class Window:
    """Puts and gets counted in the time span ``start``..``end``."""

    start: float
    end: float
    puts: int = 0
    gets: int = 0


class OperationsSummary(NamedTuple):
    """Operations summed over completed windows between ``start`` and ``end``."""

    start: float
    end: float
    puts: int
    gets: int


class StatsRecorder:
    """Thread-safe totals of puts and gets, kept also in rolling time windows.

    The newest window comes first. At most ``max_windows`` are kept.
    """

    def __init__(self, window_size: float = WINDOW_SIZE, max_windows: int = MAX_WINDOWS) -> None:
        self.window_size = window_size
        self.max_windows = max_windows
        self._lock = threading.Lock()
        self._puts = 0
        self._gets = 0
        self._windows: deque[Window] = deque()

    def _maybe_roll_window(self, now: float) -> None:
        if not self._windows:
            self._windows.appendleft(Window(now, now + self.window_size))
            return
        front = self._windows[0]
        while now >= front.end:
            front = Window(front.end, front.end + self.window_size)
            self._windows.appendleft(front)
            while len(self._windows) > self.max_windows:
                self._windows.pop()

    def record_puts(self, now: float, count: int) -> None:
        """Add ``count`` puts made at time ``now``."""
        with self._lock:
            self._maybe_roll_window(now)
            self._windows[0].puts += count
            self._puts += count

    def record_gets(self, now: float, count: int) -> None:
        """Add ``count`` gets made at time ``now``."""
        with self._lock:
            self._maybe_roll_window(now)
            self._windows[0].gets += count
            self._gets += count

    def puts(self) -> int:
        """Total puts recorded."""
        with self._lock:
            return self._puts

    def gets(self) -> int:
        """Total gets recorded."""
        with self._lock:
            return self._gets

    def windows(self) -> list[Window]:
        """Copies of the kept windows, newest first."""
        with self._lock:
            return [Window(w.start, w.end, w.puts, w.gets) for w in self._windows]

    def operations_since(self, lookback: float) -> Optional[OperationsSummary]:
        """Sum completed windows starting within ``lookback`` of the active window.

        The active window is left out; its start is the end of the summed span.
        Returns None before anything has been recorded.
        """
        with self._lock:
            if not self._windows:
                return None
            windows = iter(self._windows)
            active = next(windows)
            end = start = active.start
            puts = gets = 0
            for window in windows:
                if window.start >= end - lookback:
                    puts += window.puts
                    gets += window.gets
                    start = window.start
            return OperationsSummary(start, end, puts, gets)


class _Task:
    def __init__(
        self,
        key_generator: KeyGenerator,
        val_len: int,
        write_options: Mapping[str, Any],
        num_keys: Optional[int],
        duration: Optional[float],
        put_percentage: int,
        stats: StatsRecorder,
        db: Database,
    ) -> None:
        self.key_generator = key_generator
        self.val_len = val_len
        self.write_options = write_options
        self.num_keys = num_keys
        self.duration = duration
        self.put_percentage = put_percentage
        self.stats = stats
        self.db = db

    def run(self) -> None:
        rng = random.Random()
        puts = gets = 0
        duration = float("inf") if self.duration is None else self.duration
        num_keys = float("inf") if self.num_keys is None else self.num_keys
        start = time.monotonic()
        last_report = start
        while self.stats.puts() < num_keys and time.monotonic() - start < duration:
            key = self.key_generator.next_key()
            if rng.randrange(100) < self.put_percentage:
                self.db.put(key, rng.randbytes(self.val_len), **self.write_options)
                puts += 1
            else:
                self.db.get(key)
                gets += 1
            if time.monotonic() - last_report >= REPORT_INTERVAL:
                last_report = time.monotonic()
                self.stats.record_puts(last_report, puts)
                self.stats.record_gets(last_report, gets)
                puts = gets = 0


def _dump_stats(stats: StatsRecorder, stop: threading.Event) -> None:
    last_dump: Optional[float] = None
    first_dump_start: Optional[float] = None
    while not stop.wait(REPORT_INTERVAL):
        summary = stats.operations_since(STAT_DUMP_LOOKBACK)
        if summary is None:
            continue
        interval = summary.end - summary.start
        if last_dump is None:
            should_print = interval >= STAT_DUMP_INTERVAL
        else:
            should_print = summary.end - last_dump >= STAT_DUMP_INTERVAL
        if first_dump_start is None:
            first_dump_start = summary.start
        if should_print:
            put_rate = summary.puts / interval if interval else 0.0
            get_rate = summary.gets / interval if interval else 0.0
            logger.info(
                "stats dump [elapsed %.3f, put/s: %.3f, get/s: %.3f, window: %.1fs, "
                "total puts: %d, total gets: %d]",
                summary.end - first_dump_start,
                put_rate,
                get_rate,
                interval,
                stats.puts(),
                stats.gets(),
            )
            last_dump = summary.end


class DbBench:
    """Runs ``concurrency`` workers that mix puts and gets against a database.

    Each worker stops once ``num_rows`` puts have been recorded in total or
    ``duration`` seconds have passed, whichever comes first.
    """

    def __init__(
        self,
        key_gen_supplier: Callable[[], KeyGenerator],
        val_len: int,
        concurrency: int,
        num_rows: Optional[int],
        duration: Optional[float],
        put_percentage: int,
        db: Database,
        write_options: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self.key_gen_supplier = key_gen_supplier
        self.val_len = val_len
        self.concurrency = concurrency
        self.num_rows = num_rows
        self.duration = duration
        self.put_percentage = put_percentage
        self.db = db
        self.write_options = dict(write_options or {})

    def run(self) -> StatsRecorder:
        """Run the workers to completion and return the recorded stats."""
        stats = StatsRecorder()
        stop = threading.Event()
        dumper = threading.Thread(target=_dump_stats, args=(stats, stop), daemon=True)
        tasks = [
            _Task(
                self.key_gen_supplier(),
                self.val_len,
                self.write_options,
                self.num_rows,
                self.duration,
                self.put_percentage,
                stats,
                self.db,
            )
            for _ in range(self.concurrency)
        ]
        dumper.start()
        try:
            with ThreadPoolExecutor(max_workers=max(self.concurrency, 1)) as pool:
                futures = [pool.submit(task.run) for task in tasks]
                for future in futures:
                    future.result()
        finally:
            stop.set()
            dumper.join()
        return stats