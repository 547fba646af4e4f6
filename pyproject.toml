[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "slatecache"
version = "0.1.0"
description = "Object store primitives, a size-bounded cache-folder evictor, write batches and a key-value workload benchmarker."
requires-python = ">=3.10"
dependencies = []
keywords = [
    "object-store",
    "cache",
    "eviction",
    "key-value",
    "write-batch",
    "benchmark",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Database",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["slatecache"]

[tool.hatch.build.targets.sdist]
include = ["slatecache", "tests", "README.md"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
