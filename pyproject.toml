[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "oplink"
version = "0.1.0"
description = "Master/slave link protocol over a shared 9-bit multidrop serial bus, with an in-memory bus for simulation and tests"
requires-python = ">=3.10"
dependencies = []
keywords = ["serial", "uart", "lin", "multidrop", "protocol", "crc16", "embedded", "simulation"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Embedded Systems",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["oplink"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 88
target-version = "py310"
