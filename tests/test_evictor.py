import os
from pathlib import Path

import pytest

from slatecache.evictor import EvictorCore, FsCacheEvictor
from slatecache.object_store import CacheStats


def gen_rand_file(folder: Path, name: str, size: int) -> Path:
    path = folder / name
    path.write_bytes(os.urandom(size))
    return path


def test_evictor(tmp_path):
    stats = CacheStats()
    evictor = EvictorCore(tmp_path, 1024 * 2, stats)
    evictor.batch_factor = 2

    path0 = gen_rand_file(tmp_path, "file0", 1024)
    assert evictor.track_entry_accessed(path0, 1024, None, True) == 0

    path1 = gen_rand_file(tmp_path, "file1", 1024)
    assert evictor.track_entry_accessed(path1, 1024, None, True) == 0

    path2 = gen_rand_file(tmp_path, "file2", 1024)
    assert evictor.track_entry_accessed(path2, 1024, None, True) == 2048

    remaining = [p for p in tmp_path.iterdir() if p.is_file()]
    assert len(remaining) == 1
    assert evictor.cache_size_bytes == 1024
    assert stats.evicted_bytes == 2048
    assert stats.evicted_keys == 2
    assert stats.cache_keys == 1
    assert stats.cache_bytes == 1024


def test_evictor_pick(tmp_path):
    evictor = EvictorCore(tmp_path, 1024 * 2)
    path0 = gen_rand_file(tmp_path, "file0", 1024)
    gen_rand_file(tmp_path, "file1", 1025)
    os.utime(path0, (0, path0.stat().st_mtime))

    evictor.scan_entries(False)

    target_path, size = evictor.pick_evict_target()
    assert target_path == path0
    assert size == 1024


def test_evictor_rescan(tmp_path):
    evictor = EvictorCore(tmp_path, 1024 * 2)
    gen_rand_file(tmp_path, "file0", 1024)
    gen_rand_file(tmp_path, "file1", 1025)

    evictor.scan_entries(False)
    assert evictor.cache_size_bytes == 2049
    evictor.scan_entries(False)
    assert evictor.cache_size_bytes == 2049
    assert len(evictor) == 2


def test_pick_needs_two_entries(tmp_path):
    evictor = EvictorCore(tmp_path, 10)
    assert evictor.pick_evict_target() is None
    evictor.track_entry_accessed(tmp_path / "a", 5, 1.0, False)
    assert evictor.pick_evict_target() is None


def test_missing_file_is_still_untracked(tmp_path):
    evictor = EvictorCore(tmp_path, 100)
    a = tmp_path / "a"
    b = tmp_path / "b"
    assert evictor.track_entry_accessed(a, 80, 1.0, True) == 0
    assert evictor.track_entry_accessed(b, 80, 2.0, True) == 80
    assert a not in evictor
    assert b in evictor
    assert evictor.cache_size_bytes == 80


def test_no_eviction_without_flag(tmp_path):
    evictor = EvictorCore(tmp_path, 10)
    assert evictor.track_entry_accessed(tmp_path / "a", 50, 1.0, False) == 0
    assert evictor.track_entry_accessed(tmp_path / "b", 50, 2.0, False) == 0
    assert evictor.cache_size_bytes == 100
    assert evictor.stats.cache_keys == 2


def test_background_evictor_tracks_after_start(tmp_path):
    evictor = FsCacheEvictor(tmp_path, 1024 * 1024)
    path = gen_rand_file(tmp_path, "late", 10)
    evictor.track_entry_accessed(path, 10, False)
    assert evictor.started() is False
    assert evictor.stats.cache_keys == 0

    evictor.start()
    assert evictor.started() is True
    evictor.track_entry_accessed(tmp_path / "other", 7, False)
    evictor.stop()

    assert evictor.core.cache_size_bytes == 17
    assert path in evictor.core
    assert evictor.stats.cache_keys == 2


def test_background_evictor_cannot_start_twice(tmp_path):
    evictor = FsCacheEvictor(tmp_path, 1024)
    evictor.start()
    try:
        with pytest.raises(RuntimeError):
            evictor.start()
    finally:
        evictor.stop()
    assert evictor.started() is True


def test_background_evictor_evicts(tmp_path):
    evictor = FsCacheEvictor(tmp_path, 1024)
    evictor.start()
    paths = [gen_rand_file(tmp_path, f"f{i}", 1024) for i in range(3)]
    for path in paths:
        evictor.track_entry_accessed(path, 1024, True)
    evictor.stop()
    assert evictor.core.cache_size_bytes <= 1024
    assert evictor.stats.evicted_keys >= 2
    assert len([p for p in tmp_path.iterdir() if p.is_file()]) == len(evictor.core)