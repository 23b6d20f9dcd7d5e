[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "hftdesk"
version = "0.1.0"
description = "Paper-trading desk: market data books, risk checks, simulated execution, monitoring API and EMA backtests"
requires-python = ">=3.10"
keywords = [
    "trading",
    "paper-trading",
    "order-book",
    "risk-management",
    "backtesting",
    "market-data",
    "zeromq",
]
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
    "Framework :: AsyncIO",
    "Topic :: Office/Business :: Financial :: Investment",
]
dependencies = [
    "pyzmq",
    "redis",
    "websockets",
    "starlette",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
    "httpx",
]

[project.scripts]
hftdesk-risk = "hftdesk.risk:main"
hftdesk-execution = "hftdesk.execution_service:main"

[tool.hatch.build.targets.wheel]
packages = ["hftdesk"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
ignore_missing_imports = true
