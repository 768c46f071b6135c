"""Process tree walking and resource usage figures.

All answers are relative to the cache's current tick. A pid missing from the
table yields None; callers decide whether that means the process is gone.
"""

from collections import defaultdict

from pytend.models import ProcessRecord
from pytend.table import ProcessTableCache


class ProcessTree:
    """Parent to children relationships derived from a process table."""

    def __init__(self, cache: ProcessTableCache) -> None:
        self._cache = cache

    def _children_by_parent(self) -> dict[int, list[int]]:
        by_parent: dict[int, list[int]] = defaultdict(list)
        for record in self._cache.snapshot().values():
            by_parent[record.ppid].append(record.pid)
        return by_parent

    def children(self, pid: int) -> set[int]:
        """Return every descendant of pid (children, grandchildren, ...)."""
        by_parent = self._children_by_parent()
        descendants: set[int] = set()
        pending = list(by_parent.get(pid, ()))
        while pending:
            child = pending.pop()
            # pid 0 lists itself as its own parent on some systems
            if child == pid or child in descendants:
                continue
            descendants.add(child)
            pending.extend(by_parent.get(child, ()))
        return descendants


class UsageReporter:
    """CPU, memory, running time and command line of supervised processes."""

    def __init__(self, cache: ProcessTableCache, tree: ProcessTree | None = None) -> None:
        self._cache = cache
        self.tree = tree or ProcessTree(cache)

    def _record(self, pid: int) -> ProcessRecord | None:
        return self._cache.snapshot().get(pid)

    def _aggregate(self, pid: int, include_children: bool, attr: str) -> float | None:
        table = self._cache.snapshot()
        record = table.get(pid)
        if record is None:
            return None

        total = float(getattr(record, attr))
        if include_children:
            for child_pid in self.tree.children(pid):
                child = table.get(child_pid)
                if child is not None:
                    total += getattr(child, attr)
        return total

    def cpu_usage(self, pid: int, include_children: bool = False) -> float | None:
        """CPU percent of pid, plus its descendants if include_children."""
        return self._aggregate(pid, include_children, "cpu_percent")

    def memory_usage(self, pid: int, include_children: bool = False) -> float | None:
        """Resident memory in KB of pid, plus its descendants if include_children."""
        return self._aggregate(pid, include_children, "resident_memory_kb")

    def running_time(self, pid: int) -> int | None:
        """Seconds since pid started."""
        record = self._record(pid)
        return record.elapsed_seconds if record is not None else None

    def command_of(self, pid: int) -> str | None:
        """Full command line of pid."""
        record = self._record(pid)
        return record.command if record is not None else None

    def tree_records(self, pid: int) -> list[ProcessRecord]:
        """Records of pid and all of its descendants present in the table."""
        table = self._cache.snapshot()
        pids = [pid, *sorted(self.tree.children(pid))]
        return [table[p] for p in pids if p in table]
