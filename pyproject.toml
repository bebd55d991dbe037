[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "shipyard"
version = "0.1.0"
description = "State store, lifecycle reconciler, event bus, service templates and noVNC sidecars for a self-hosted deployment platform"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "deployment",
    "containers",
    "reconciler",
    "key-value",
    "templates",
    "vnc",
    "self-hosted",
]
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
    "Topic :: System :: Systems Administration",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["shipyard"]

[tool.pytest.ini_options]
addopts = "-ra"
