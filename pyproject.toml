[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "bdjuno"
version = "3.0.0"
description = "Indexing modules that turn Cosmos SDK chain data (staking, slashing, governance, mint, token prices) into database records"
requires-python = ">=3.10"
keywords = ["cosmos", "blockchain", "indexer", "staking", "governance", "bech32"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Database",
]
dependencies = [
    "pyyaml",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["bdjuno"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
