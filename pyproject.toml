[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "stonegate"
version = "1.2.0"
description = "Schema registry, archive handling, dependency analysis and schema deployment helpers for a multi-tenant PostgreSQL gateway"
requires-python = ">=3.10"
dependencies = []
keywords = ["postgresql", "schema", "migrations", "multi-tenant", "gateway", "changelog"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Database",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["stonegate"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
