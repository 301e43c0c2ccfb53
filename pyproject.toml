[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "aurora"
version = "0.2.0"
description = "Event enrichment, distribution, IOC matching and Sigma match evidence for host security telemetry"
requires-python = ">=3.10"
keywords = ["security", "sigma", "ioc", "detection", "telemetry", "enrichment"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Information Technology",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Security",
    "Topic :: System :: Monitoring",
]
dependencies = [
    "pyyaml",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["aurora"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
