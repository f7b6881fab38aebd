[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "relaykit"
version = "0.1.0"
description = "LMDB-backed key-value store, time-ordered index scanners and relay access-control helpers"
requires-python = ">=3.10"
keywords = ["lmdb", "key-value", "scanner", "index", "rate-limiter", "nostr", "relay"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Database :: Database Engines/Servers",
    "Topic :: Software Development :: Libraries :: Python Modules",
]
dependencies = [
    "lmdb",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["relaykit"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
