[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "skatenode"
version = "0.1.0"
description = "Node-side DNS, cordon and SSH helpers and cluster state tracking for small podman-based clusters"
requires-python = ">=3.10"
keywords = ["podman", "cluster", "dns", "ssh", "node", "state"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Clustering",
]
dependencies = [
    "paramiko",
    "filelock",
    "termcolor",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["skatenode"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
