[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "patternbench"
version = "0.1.0"
description = "Interleaved shared-file write benchmark with an in-process message-passing layer"
requires-python = ">=3.10"
dependencies = []
keywords = ["benchmark", "parallel-io", "interleaved", "filesystem", "bandwidth"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Science/Research",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Benchmark",
    "Topic :: System :: Filesystems",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
patternbench = "patternbench.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["patternbench"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
