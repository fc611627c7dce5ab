[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "codchi"
version = "0.1.0"
description = "Helpers for NixOS code machines in LXD or Incus containers, and a nix supervisor that restarts deadlocked builds"
requires-python = ">=3.10"
keywords = ["nix", "nixos", "lxd", "incus", "containers", "desktop-entries"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development",
    "Topic :: System :: Systems Administration",
]
dependencies = [
    "psutil",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
ndd = "codchi.ndd:main"

[tool.hatch.build.targets.wheel]
packages = ["codchi"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
