"""Verification Test: Load Test - many descendants under one supervised process.

Spawns a scaled-down crowd of sleeping children (more outside CI) and checks
the tree walk and aggregation stay complete and quick with one ps run per tick.
"""

import os
import subprocess
import time
from contextlib import suppress

import pytest
from conftest import requires_ps

from pytend.table import ProcessTableCache
from pytend.usage import UsageReporter


@pytest.fixture
def dummy_processes():
    """
    Spawn sleeping children of this test process.

    In CI environments, we scale down the number of processes to avoid
    resource exhaustion while still validating the behavior with many processes.
    """
    is_ci = os.environ.get("CI", "false").lower() == "true"
    num_processes = 100 if is_ci else 300

    processes = []
    try:
        for _ in range(num_processes):
            processes.append(subprocess.Popen(["sleep", "30"]))
        yield processes
    finally:
        for p in processes:
            with suppress(ProcessLookupError):
                p.kill()
        for p in processes:
            p.wait(timeout=5.0)


@requires_ps
class TestLoadTest:
    """Load test verification suite tests."""

    def test_tree_includes_every_child(self, dummy_processes):
        """Test every spawned child is found below this process."""
        reporter = UsageReporter(ProcessTableCache())

        children = reporter.tree.children(os.getpid())

        assert {p.pid for p in dummy_processes} <= children

    def test_aggregation_is_fast(self, dummy_processes):
        """Test a tick's worth of queries over a large tree completes quickly."""
        cache = ProcessTableCache()
        reporter = UsageReporter(cache)

        start = time.perf_counter()
        cache.snapshot()
        for _ in range(50):
            reporter.cpu_usage(os.getpid(), include_children=True)
            reporter.memory_usage(os.getpid(), include_children=True)
        elapsed = time.perf_counter() - start

        assert reporter.memory_usage(os.getpid(), include_children=True) >= reporter.memory_usage(
            os.getpid()
        )
        assert elapsed < 5.0, f"50 aggregations over {len(dummy_processes)} children took {elapsed:.2f}s"
