[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "nodeprov"
version = "0.1.0"
description = "Node provisioning logic for clusters: pod filtering, batching, topology spreading, bin packing and capacity gauges."
requires-python = ">=3.10"
keywords = ["kubernetes", "provisioning", "bin-packing", "scheduling", "autoscaling", "topology"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Clustering",
]
dependencies = [
    "cachetools",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["nodeprov"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
