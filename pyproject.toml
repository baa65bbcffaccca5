[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "combox"
version = "0.1.0"
description = "Backend building blocks for the Combox chat service: locale catalogs, JSON logging, e-mail delivery, Valkey-backed state and events, PostgreSQL repositories and migrations."
requires-python = ">=3.10"
keywords = ["chat", "messaging", "valkey", "redis", "postgresql", "i18n", "e2e"]
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
    "Topic :: Communications :: Chat",
]
dependencies = [
    "redis>=5.0",
    "httpx>=0.27",
]

[project.optional-dependencies]
test = [
    "pytest>=8.0",
    "respx>=0.21",
]

[tool.hatch.build.targets.wheel]
packages = ["combox"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
