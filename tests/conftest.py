"""Shared fixtures: canned ps output and a counting runner."""

import shutil

import pytest

from pytend.table import ProcessTableCache

SAMPLE_PS_OUTPUT = """\
  PID  PPID %CPU   RSS     ELAPSED COMMAND
    1     0  0.0  1200  1-02:03:04 /sbin/init splash
  100     1  1.5  2048       05:06 /usr/bin/python3 -m  server --flag "a b"
  101   100  2.0  1024       00:10 worker   --id 1
  102   101  0.5   512       00:05 helper
  200     1 10.0  4096    02:00:00 nginx: master process
  300   999  0.0   100       00:01 orphan
"""

requires_ps = pytest.mark.skipif(shutil.which("ps") is None, reason="ps is not installed")


class CountingRunner:
    """Stands in for the ps invocation and counts how often it ran."""

    def __init__(self, output: str = SAMPLE_PS_OUTPUT) -> None:
        self.output = output
        self.calls = 0

    def __call__(self) -> str:
        self.calls += 1
        return self.output


@pytest.fixture
def runner() -> CountingRunner:
    return CountingRunner()


@pytest.fixture
def sample_cache(runner: CountingRunner) -> ProcessTableCache:
    return ProcessTableCache(runner=runner)
