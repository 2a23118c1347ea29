[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "lvmpv"
version = "0.1.0"
description = "Node-local LVM volume provisioning: volume, snapshot and node controllers, storage responses and usage reporting"
requires-python = ">=3.10"
dependencies = []
keywords = ["lvm", "csi", "persistent-volume", "storage", "controller", "snapshot", "workqueue"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Filesystems",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["lvmpv"]

[tool.hatch.build.targets.sdist]
include = ["lvmpv", "tests", "README.md", "pyproject.toml"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
