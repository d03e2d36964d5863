[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "appledb"
version = "0.1.0"
description = "Collect code-signing entitlements from mounted Apple firmware images and serve them from a searchable database"
requires-python = ">=3.10"
keywords = ["entitlements", "mach-o", "ipsw", "ios", "macos", "code-signing"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Environment :: Web Environment",
    "Framework :: FastAPI",
    "Intended Audience :: Developers",
    "Intended Audience :: Information Technology",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Security",
]
dependencies = [
    "fastapi",
    "uvicorn",
    "httpx",
    "pyyaml",
]

[project.optional-dependencies]
test = [
    "pytest",
    "httpx",
]

[project.scripts]
appledb = "appledb.cli:main"
appledb-server = "appledb.server:main"
appledb-migrate = "appledb.schema:main"

[tool.hatch.build.targets.wheel]
packages = ["appledb"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
