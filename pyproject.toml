[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "llmquota"
version = "0.1.0"
description = "Report Claude Code and Codex quota windows, price token usage per window, and manage the Claude status-line cache hook"
requires-python = ">=3.10"
dependencies = []
keywords = ["claude", "codex", "quota", "rate-limit", "cli", "usage"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Utilities",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
llm-quota = "llmquota.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["llmquota"]

[tool.pytest.ini_options]
addopts = "-ra"
