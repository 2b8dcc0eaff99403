[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "flowfeatures"
version = "0.1.0"
description = "Per-flow statistics and per-packet feature extraction from pcap captures"
requires-python = ">=3.10"
dependencies = []
keywords = ["pcap", "network", "flows", "traffic", "features", "statistics"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: Science/Research",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking :: Monitoring",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
pcap-stats = "flowfeatures.pcap_stats:main"
first-n-packets = "flowfeatures.first_n_packets:main"

[tool.hatch.build.targets.wheel]
packages = ["flowfeatures"]

[tool.pytest.ini_options]
addopts = "-ra"
