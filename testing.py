"""Test utilities."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pathlib
import sys
import textwrap
import time


def engine_cmd(script: str) -> list[str]:
    """Command line running a Python snippet in place of ffmpeg."""
    return [sys.executable, "-c", textwrap.dedent(script)]


def fake_engine(script: str) -> Callable[[str, Any, pathlib.Path], list[str]]:
    """build_cmd replacement: the snippet gets the HLS output dir as sys.argv[1]."""

    def build_cmd(source_address: str, profile: Any, output_dir: pathlib.Path) -> list[str]:
        return [*engine_cmd(script), str(output_dir)]

    return build_cmd


def wait_for(predicate: Callable[[], bool], timeout: float = 5.0, interval: float = 0.02) -> bool:
    """Poll predicate until it returns True or timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


def run_tests(test_file: str) -> None:
    """Run pytest on a test file with standard flags.

    Usage:
        if __name__ == "__main__":
            from testing import run_tests
            run_tests(__file__)
    """
    import pytest

    sys.exit(
        pytest.main(
            [
                test_file,
                "-v",
                "-s",
                "--log-level=DEBUG",
                "-W",
                "ignore::pytest.PytestAssertRewriteWarning",
                *sys.argv[1:],
            ]
        )
    )
