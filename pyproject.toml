[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "hlexporter"
version = "0.1.0"
description = "Metrics exporter for Hyperliquid nodes: block, proposal, EVM, validator and software-version metrics over Prometheus and OTLP/HTTP"
requires-python = ">=3.10"
keywords = ["hyperliquid", "prometheus", "otlp", "metrics", "exporter", "validator", "monitoring"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Environment :: No Input/Output (Daemon)",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Monitoring",
]
dependencies = [
    "python-dotenv",
    "requests",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
hl_exporter = "hlexporter.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["hlexporter"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
