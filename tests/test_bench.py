import threading

import pytest

from slatecache.bench import (
    MAX_WINDOWS,
    WINDOW_SIZE,
    DbBench,
    FixedSetKeyGenerator,
    RandomKeyGenerator,
    StatsRecorder,
    Window,
)


class FakeDb:
    def __init__(self):
        self.lock = threading.Lock()
        self.puts = []
        self.gets = []
        self.options = []

    def put(self, key, value, **options):
        with self.lock:
            self.puts.append((key, value))
            self.options.append(options)

    def get(self, key):
        with self.lock:
            self.gets.append(key)
        return None


def test_random_key_generator_length():
    generator = RandomKeyGenerator(16)
    keys = [generator.next_key() for _ in range(20)]
    assert all(len(key) == 16 for key in keys)
    assert len(set(keys)) > 1


def test_random_key_generator_rejects_negative_length():
    with pytest.raises(ValueError):
        RandomKeyGenerator(-1)


def test_fixed_set_key_generator_draws_from_set():
    generator = FixedSetKeyGenerator(8, 5)
    assert len(generator.keys) == 5
    assert all(len(key) == 8 for key in generator.keys)
    drawn = {generator.next_key() for _ in range(200)}
    assert drawn <= set(generator.keys)


def test_fixed_set_key_generator_empty_set():
    generator = FixedSetKeyGenerator(8, 0)
    with pytest.raises(IndexError):
        generator.next_key()


def test_stats_recorder_empty():
    recorder = StatsRecorder()
    assert recorder.operations_since(60.0) is None
    assert recorder.puts() == 0
    assert recorder.gets() == 0


def test_stats_recorder_totals():
    recorder = StatsRecorder()
    recorder.record_puts(0.0, 5)
    recorder.record_gets(0.0, 7)
    recorder.record_puts(1.0, 2)
    assert recorder.puts() == 7
    assert recorder.gets() == 7


def test_active_window_excluded():
    recorder = StatsRecorder()
    recorder.record_puts(0.0, 5)
    summary = recorder.operations_since(60.0)
    assert summary.start == summary.end == 0.0
    assert summary.puts == 0
    assert summary.gets == 0


def test_window_rolls_over():
    recorder = StatsRecorder()
    recorder.record_puts(0.0, 5)
    recorder.record_gets(0.0, 3)
    recorder.record_puts(WINDOW_SIZE, 1)
    windows = recorder.windows()
    assert windows[0] == Window(WINDOW_SIZE, 2 * WINDOW_SIZE, 1, 0)
    assert windows[1] == Window(0.0, WINDOW_SIZE, 5, 3)
    summary = recorder.operations_since(60.0)
    assert summary.start == 0.0
    assert summary.end == WINDOW_SIZE
    assert summary.puts == 5
    assert summary.gets == 3


def test_lookback_limits_windows():
    recorder = StatsRecorder()
    recorder.record_puts(0.0, 1)
    recorder.record_puts(WINDOW_SIZE, 2)
    recorder.record_puts(2 * WINDOW_SIZE, 4)
    recorder.record_puts(3.5 * WINDOW_SIZE, 8)
    windows = recorder.windows()
    assert windows[0].start == 3 * WINDOW_SIZE
    summary = recorder.operations_since(1.5 * WINDOW_SIZE)
    assert summary.start == 2 * WINDOW_SIZE
    assert summary.end == 3 * WINDOW_SIZE
    assert summary.puts == 4
    everything = recorder.operations_since(60.0)
    assert everything.puts == 1 + 2 + 4
    assert everything.start == 0.0


def test_windows_are_capped():
    recorder = StatsRecorder()
    recorder.record_puts(0.0, 1)
    recorder.record_puts(WINDOW_SIZE * 500, 1)
    windows = recorder.windows()
    assert len(windows) == MAX_WINDOWS
    starts = [w.start for w in windows]
    assert starts == sorted(starts, reverse=True)
    assert recorder.puts() == 2


def test_bench_puts_until_rows_recorded():
    db = FakeDb()
    bench = DbBench(
        lambda: RandomKeyGenerator(4),
        val_len=32,
        concurrency=2,
        num_rows=1,
        duration=5.0,
        put_percentage=100,
        db=db,
        write_options={"await_durable": False},
    )
    stats = bench.run()
    assert stats.puts() >= 1
    assert db.gets == []
    assert len(db.puts) >= stats.puts()
    assert all(len(key) == 4 and len(value) == 32 for key, value in db.puts)
    assert all(options == {"await_durable": False} for options in db.options)


def test_bench_only_gets_for_duration():
    db = FakeDb()
    generator = FixedSetKeyGenerator(6, 3)
    bench = DbBench(
        lambda: generator,
        val_len=8,
        concurrency=1,
        num_rows=None,
        duration=0.3,
        put_percentage=0,
        db=db,
    )
    stats = bench.run()
    assert db.puts == []
    assert len(db.gets) > 0
    assert set(db.gets) <= set(generator.keys)
    assert stats.puts() == 0
    assert stats.gets() <= len(db.gets)


def test_bench_propagates_db_errors():
    class FailingDb(FakeDb):
        def get(self, key):
            raise RuntimeError("boom")

    bench = DbBench(
        lambda: RandomKeyGenerator(4),
        val_len=8,
        concurrency=1,
        num_rows=None,
        duration=1.0,
        put_percentage=0,
        db=FailingDb(),
    )
    with pytest.raises(RuntimeError, match="boom"):
        bench.run()