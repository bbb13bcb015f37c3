"""Dev task entry points (lint, format, type-check, test); installed as console scripts by pyproject.toml."""

import subprocess
import sys

SOURCES = ["infragraph", "tests"]


def _call(*args: str) -> int:
    return subprocess.run([sys.executable, "-m", *args]).returncode


def _run(*args: str) -> None:
    """Run ``python -m <args>``; exit with its code."""
    sys.exit(_call(*args))


def lint() -> None:
    """ruff check over the package and tests."""
    _run("ruff", "check", *SOURCES)


def lint_fix() -> None:
    _run("ruff", "check", "--fix", *SOURCES)


def format() -> None:
    _run("ruff", "format", *SOURCES)


def type_check() -> None:
    """pyright over the package only."""
    _run("pyright", "infragraph")


def test() -> None:
    _run("pytest", "tests/", "-v")


def test_cov() -> None:
    """pytest with a line coverage report for the package."""
    _run("pytest", "tests/", "--cov=infragraph", "--cov-report=term-missing", "-v")


def check() -> None:
    """Lint, type-check and test; stops at the first failing step."""
    for step in (("ruff", "check", *SOURCES), ("pyright", "infragraph"), ("pytest", "tests/")):
        code = _call(*step)
        if code:
            sys.exit(code)
