[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "reactornet"
version = "0.1.0"
description = "Reactor-style event loop for non-blocking TCP, UDP and Unix socket servers, with pluggable frame codecs"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "networking",
    "event-loop",
    "reactor",
    "selectors",
    "tcp",
    "udp",
    "unix-socket",
    "codec",
    "framing",
    "non-blocking",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Operating System :: POSIX :: Linux",
    "Operating System :: MacOS",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["reactornet"]

[tool.hatch.build.targets.sdist]
include = ["reactornet", "tests", "README.md"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
