[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "moshkit"
version = "0.1.0"
description = "State-synchronisation transport pieces for a roaming terminal session: compression, fragments, packets, sender and receiver, plus server front-end helpers."
requires-python = ">=3.10"
dependencies = []
keywords = ["terminal", "udp", "roaming", "remote-shell", "state-synchronization", "transport"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking",
    "Topic :: Terminals",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["moshkit"]

[tool.hatch.build.targets.sdist]
include = ["moshkit", "tests", "README.md", "pyproject.toml"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
