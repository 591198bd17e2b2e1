[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "boostrelay"
version = "0.1.0"
description = "Relay core for proposer/builder separation: beacon-node client, relay database and data-export tools"
requires-python = ">=3.10"
keywords = ["ethereum", "mev-boost", "relay", "beacon-node", "proposer-builder-separation", "postgresql"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP :: HTTP Servers",
    "Topic :: Database",
]
dependencies = [
    "requests>=2.28",
    "sqlalchemy>=2.0",
]

[project.optional-dependencies]
test = [
    "pytest>=7.0",
]

[project.scripts]
boostrelay = "boostrelay.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["boostrelay"]

[tool.hatch.build.targets.sdist]
include = ["boostrelay", "tests", "pyproject.toml"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
