"""Tests for ProcessTree and UsageReporter."""

import os
import signal
import subprocess
import time
from contextlib import suppress

import pytest
from conftest import requires_ps

from pytend.table import ProcessTableCache
from pytend.usage import ProcessTree, UsageReporter


@pytest.fixture
def reporter(sample_cache) -> UsageReporter:
    return UsageReporter(sample_cache)


class TestProcessTree:
    """Tests for descendant computation."""

    def test_children_are_transitive(self, sample_cache):
        """Test grandchildren are included (100 -> 101 -> 102)."""
        tree = ProcessTree(sample_cache)

        assert tree.children(100) == {101, 102}

    def test_children_of_init(self, sample_cache):
        """Test the whole tree below pid 1, excluding the orphan with a missing parent."""
        tree = ProcessTree(sample_cache)

        assert tree.children(1) == {100, 101, 102, 200}

    def test_leaf_and_absent_pids_have_no_children(self, sample_cache):
        """Test leaves and unknown pids give an empty set."""
        tree = ProcessTree(sample_cache)

        assert tree.children(102) == set()
        assert tree.children(4242) == set()

    def test_missing_parent_is_not_an_error(self, sample_cache):
        """Test a ppid pointing at no known process is just a lookup key."""
        tree = ProcessTree(sample_cache)

        assert tree.children(999) == {300}

    def test_self_parented_pid_terminates(self):
        """Test a pid listing itself as parent (pid 0 on some systems) does not loop."""
        cache = ProcessTableCache(runner=lambda: "0 0 0.0 0 00:00 kernel_task\n5 0 0.0 0 00:01 launchd\n")
        tree = ProcessTree(cache)

        assert tree.children(0) == {5}


class TestUsageReporter:
    """Tests for usage figures."""

    def test_cpu_usage_single_process(self, reporter):
        """Test cpu_usage without children is the process's own figure."""
        assert reporter.cpu_usage(100) == 1.5
        assert reporter.cpu_usage(100, include_children=False) == 1.5

    def test_cpu_usage_includes_descendants(self, reporter):
        """Test include_children adds every descendant's cpu percent."""
        assert reporter.cpu_usage(100, include_children=True) == pytest.approx(1.5 + 2.0 + 0.5)

    def test_memory_usage_includes_descendants(self, reporter):
        """Test include_children adds every descendant's resident memory."""
        assert reporter.memory_usage(100) == 2048.0
        assert reporter.memory_usage(100, include_children=True) == 2048.0 + 1024.0 + 512.0

    def test_aggregate_equals_own_plus_children(self, reporter, sample_cache):
        """Test the aggregate is own usage plus the sum over children()."""
        table = sample_cache.snapshot()
        children = reporter.tree.children(1)
        expected = reporter.cpu_usage(1) + sum(table[pid].cpu_percent for pid in children)

        assert reporter.cpu_usage(1, include_children=True) == pytest.approx(expected)

    def test_absent_pid_is_none(self, reporter):
        """Test lookups for a pid missing from the table return None, not 0."""
        assert reporter.cpu_usage(4242) is None
        assert reporter.cpu_usage(4242, include_children=True) is None
        assert reporter.memory_usage(4242) is None
        assert reporter.running_time(4242) is None
        assert reporter.command_of(4242) is None

    def test_absent_child_contributes_zero(self, sample_cache):
        """Test a descendant missing from the table adds nothing."""

        class StaleTree(ProcessTree):
            def children(self, pid):
                return {101, 4242}

        reporter = UsageReporter(sample_cache, tree=StaleTree(sample_cache))

        assert reporter.cpu_usage(100, include_children=True) == pytest.approx(1.5 + 2.0)

    def test_running_time(self, reporter):
        """Test running_time comes from the parsed etime column."""
        assert reporter.running_time(1) == 93784
        assert reporter.running_time(100) == 306
        assert reporter.running_time(200) == 7200

    def test_command_of(self, reporter):
        """Test command_of returns the untruncated command line."""
        assert reporter.command_of(100) == '/usr/bin/python3 -m  server --flag "a b"'

    def test_tree_records(self, reporter):
        """Test tree_records lists the root first, then its descendants."""
        records = reporter.tree_records(100)

        assert [r.pid for r in records] == [100, 101, 102]

    def test_queries_share_one_capture(self, reporter, runner):
        """Test many queries in one tick cost a single ps run."""
        reporter.cpu_usage(100, include_children=True)
        reporter.memory_usage(100, include_children=True)
        reporter.running_time(100)
        reporter.command_of(100)

        assert runner.calls == 1

    @requires_ps
    def test_real_grandchild_is_found(self):
        """Test a live shell and the sleep it forked both show up below this process."""
        shell = subprocess.Popen(["sh", "-c", "sleep 30 & wait"])
        grandchildren: set[int] = set()
        try:
            cache = ProcessTableCache()
            reporter = UsageReporter(cache)
            deadline = time.monotonic() + 5.0
            while time.monotonic() < deadline:
                cache.reset()
                grandchildren = reporter.tree.children(shell.pid)
                if grandchildren:
                    break
                time.sleep(0.05)

            assert grandchildren
            assert {shell.pid} | grandchildren <= reporter.tree.children(os.getpid())
            assert reporter.cpu_usage(os.getpid(), include_children=True) is not None
        finally:
            for pid in grandchildren:
                with suppress(ProcessLookupError):
                    os.kill(pid, signal.SIGKILL)
            shell.kill()
            shell.wait()
