[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "colmena"
version = "0.5.0"
description = "Building blocks for NixOS deployments: goals, limits, options, job tracking, flake resolution and nix-eval-jobs evaluation"
requires-python = ">=3.10"
dependencies = []
keywords = ["nix", "nixos", "deployment", "flakes", "nix-eval-jobs", "asyncio"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Framework :: AsyncIO",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Systems Administration",
]

[project.optional-dependencies]
test = ["pytest", "pytest-asyncio"]

[tool.hatch.build.targets.wheel]
packages = ["colmena"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
