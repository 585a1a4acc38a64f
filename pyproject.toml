[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "ofcontrib"
version = "0.1.0"
description = "Feature flag providers and hooks: flagd and ConfigCat providers, metrics and trace hooks, and value validators"
requires-python = ">=3.10"
dependencies = []
keywords = ["feature-flags", "feature-toggles", "flagd", "configcat", "hooks", "telemetry"]
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
    "Topic :: Software Development :: Libraries :: Python Modules",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["ofcontrib"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
