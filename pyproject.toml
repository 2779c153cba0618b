[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "sinkhole"
version = "0.1.0"
description = "Building blocks for a blocking DNS proxy: a chain of resolvers with custom entries, conditional and parallel upstreams, query logging, statistics and metrics."
requires-python = ">=3.10"
keywords = [
    "dns",
    "dns-proxy",
    "dns-over-https",
    "dns-over-tls",
    "resolver",
    "ad-blocking",
    "query-log",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: Name Service (DNS)",
    "Topic :: System :: Networking",
    "Topic :: Software Development :: Libraries :: Python Modules",
]
dependencies = [
    "dnspython>=2.3",
    "httpx>=0.24",
]

[project.optional-dependencies]
test = [
    "pytest>=7.0",
    "respx>=0.20",
]

[tool.hatch.build.targets.wheel]
packages = ["sinkhole"]

[tool.hatch.build.targets.sdist]
include = ["sinkhole", "tests", "README.md", "pyproject.toml"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP", "SIM"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
ignore_missing_imports = true
