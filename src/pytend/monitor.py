"""Tick-driven usage sampling for one supervised process tree."""

import threading
from queue import Queue

import psutil

from pytend.config import settings
from pytend.liveness import is_alive
from pytend.log import get_logger
from pytend.models import TreeSnapshot
from pytend.table import ProcessTableCache
from pytend.usage import UsageReporter

logger = get_logger(__name__)

MIN_POLL_RATE = 0.1


class UsageMonitor:
    """
    Samples a process tree once per tick and pushes snapshots to a Queue.

    Every tick starts by resetting the process table cache, so all figures in
    one snapshot come from a single ps run. Runs in a separate daemon thread.
    """

    def __init__(
        self,
        update_queue: Queue[TreeSnapshot],
        root_pid: int,
        poll_rate: float | None = None,
        cache: ProcessTableCache | None = None,
    ) -> None:
        """
        Initialize the UsageMonitor.

        Args:
            update_queue: Thread-safe queue to push snapshots to.
            root_pid: Pid of the supervised process whose tree is sampled.
            poll_rate: Tick length in seconds. Defaults to settings.poll_rate.
            cache: Process table cache to use. A private one is created if omitted.
        """
        self._queue = update_queue
        self._root_pid = root_pid
        self._poll_rate = max(MIN_POLL_RATE, settings.poll_rate if poll_rate is None else poll_rate)
        self._cache = cache or ProcessTableCache()
        self._reporter = UsageReporter(self._cache)
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        # First call returns 0.0 per core
        psutil.cpu_percent(percpu=True)

    @property
    def root_pid(self) -> int:
        return self._root_pid

    @property
    def poll_rate(self) -> float:
        """Get the current poll rate."""
        return self._poll_rate

    @poll_rate.setter
    def poll_rate(self, value: float) -> None:
        """Set the poll rate."""
        self._poll_rate = max(MIN_POLL_RATE, value)

    @property
    def is_running(self) -> bool:
        """Check if the monitor thread is running."""
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the monitoring thread."""
        if self.is_running:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._poll_loop,
            daemon=True,
            name="UsageMonitor",
        )
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        """
        Stop the monitoring thread.

        Args:
            timeout: How long to wait for thread to stop (seconds).
        """
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def _poll_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self._queue.put(self.collect())
            except Exception:
                logger.warning("usage_tick_failed", root_pid=self._root_pid, exc_info=True)

            self._stop_event.wait(timeout=self._poll_rate)

    def collect(self) -> TreeSnapshot:
        """Start a new tick and sample the tree."""
        self._cache.reset()
        reporter = self._reporter
        pid = self._root_pid

        mem = psutil.virtual_memory()

        return TreeSnapshot(
            root_pid=pid,
            alive=is_alive(pid),
            processes=reporter.tree_records(pid),
            cpu_percent=reporter.cpu_usage(pid, include_children=True),
            resident_memory_kb=reporter.memory_usage(pid, include_children=True),
            running_time=reporter.running_time(pid),
            cpu_percent_per_core=psutil.cpu_percent(percpu=True),
            memory_total=mem.total,
            memory_used=mem.used,
            memory_percent=mem.percent,
        )
