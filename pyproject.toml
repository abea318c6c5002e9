[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "demokit"
version = "0.1.0"
description = "Chat-server bot services for flight departure tracking and mission operations"
requires-python = ">=3.10"
dependencies = []
keywords = ["chat", "slash-commands", "bots", "flights", "missions", "subscriptions"]
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

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["demokit"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
