[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "rpcgate"
version = "0.1.0"
description = "A firewalled HTTP and WebSocket gateway in front of a blockchain RPC node, with job-driven access rules and webhook notifications"
requires-python = ">=3.11"
dependencies = [
    "aiohttp",
]
keywords = ["rpc", "gateway", "proxy", "firewall", "websocket", "blockchain", "webhook"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Framework :: AsyncIO",
    "Framework :: aiohttp",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: Proxy Servers",
    "Topic :: System :: Networking :: Firewalls",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[project.scripts]
rpcgate = "rpcgate.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["rpcgate"]

[tool.hatch.build.targets.sdist]
include = ["rpcgate", "tests", "pyproject.toml", "README.md"]

[tool.pytest.ini_options]
addopts = "-ra"
