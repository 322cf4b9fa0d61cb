[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "exwallet"
version = "0.1.0"
description = "Exchange wallet workers: confirmed block scanning, deposit discovery and withdrawal broadcasting against a chains-union backend"
requires-python = ">=3.10"
dependencies = []
keywords = ["wallet", "exchange", "ethereum", "eip-1559", "deposits", "withdrawals", "block-scanner"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: Financial and Insurance Industry",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Office/Business :: Financial",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["exwallet"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
