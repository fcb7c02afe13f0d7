[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "distlab"
version = "0.1.0"
description = "Building blocks for distributed systems: a simulated RPC network, a deduplicating key/value service, and a MapReduce coordinator and worker."
requires-python = ">=3.10"
dependencies = []
keywords = [
    "distributed-systems",
    "mapreduce",
    "rpc",
    "key-value",
    "linearizability",
    "simulation",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: Education",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Distributed Computing",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["distlab"]

[tool.hatch.build.targets.sdist]
include = ["distlab", "tests", "README.md"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
