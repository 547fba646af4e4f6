"""Object store primitives, a cache-folder evictor, write batches and a workload benchmarker."""

__version__ = "0.1.0"