"""pytend-top - terminal view of a supervised process tree."""

import argparse
from enum import Enum
from queue import Empty, Queue

from textual.app import App, ComposeResult
from textual.containers import Container, Horizontal
from textual.widgets import DataTable, Footer, Static

from pytend.log import configure_logging, get_logger
from pytend.models import ProcessRecord, TreeSnapshot
from pytend.monitor import UsageMonitor

logger = get_logger(__name__)


class SortKey(Enum):
    """Sort keys for the process table."""

    CPU = "cpu"
    MEM = "mem"
    PID = "pid"
    TIME = "time"


def format_bytes(size: float) -> str:
    """Format bytes as human-readable string."""
    for unit in ["B", "K", "M", "G", "T"]:
        if size < 1024:
            return f"{size:5.1f}{unit}" if unit != "B" else f"{int(size):5d}{unit}"
        size = size / 1024
    return f"{size:.1f}P"


def format_elapsed(seconds: int | None) -> str:
    """Format seconds the way ps prints etime: [[dd-]hh:]mm:ss."""
    if seconds is None:
        return "-"
    days, rest = divmod(seconds, 86400)
    hours, rest = divmod(rest, 3600)
    minutes, secs = divmod(rest, 60)
    if days:
        return f"{days}-{hours:02d}:{minutes:02d}:{secs:02d}"
    if hours:
        return f"{hours:02d}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


def _bar(percent: float, color: str) -> str:
    bar_len = min(int(percent / 5), 20)
    return f"[{color}]█[/{color}]" * bar_len + "[dim]░[/dim]" * (20 - bar_len)


class HeaderStats(Static):
    """Header widget: host CPU and memory next to the supervised tree's totals."""

    DEFAULT_CSS = """
    HeaderStats {
        height: auto;
        min-height: 5;
        padding: 1;
        background: $surface;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._snapshot: TreeSnapshot | None = None

    def compose(self) -> ComposeResult:
        yield Horizontal(
            Static(self._get_host_info(), id="host-info"),
            Static(self._get_tree_info(), id="tree-info"),
        )

    def update_stats(self, snapshot: TreeSnapshot) -> None:
        """Update the statistics from a tree snapshot."""
        self._snapshot = snapshot
        try:
            self.query_one("#host-info", Static).update(self._get_host_info())
            self.query_one("#tree-info", Static).update(self._get_tree_info())
        except Exception:
            pass  # Widget not mounted yet

    def _get_host_info(self) -> str:
        snapshot = self._snapshot
        if snapshot is None:
            return "Loading host info..."
        lines = [
            f"CPU{i:<2} \\[{_bar(usage, 'green')}] {usage:5.1f}%"
            for i, usage in enumerate(snapshot.cpu_percent_per_core)
        ]
        lines.append(
            f"Mem\\[{_bar(snapshot.memory_percent, 'cyan')}] "
            f"{snapshot.memory_used / 1024**3:.1f}G/{snapshot.memory_total / 1024**3:.1f}G"
        )
        return "\n".join(lines)

    def _get_tree_info(self) -> str:
        snapshot = self._snapshot
        if snapshot is None:
            return "Loading process tree..."
        if not snapshot.alive or snapshot.cpu_percent is None:
            return f"PID {snapshot.root_pid}: [red]not running[/red]"
        return (
            f"PID {snapshot.root_pid}: [green]running[/green] for {format_elapsed(snapshot.running_time)}\n"
            f"Processes: {len(snapshot.processes)}\n"
            f"Tree CPU: {snapshot.cpu_percent:5.1f}%\n"
            f"Tree RSS: {format_bytes((snapshot.resident_memory_kb or 0) * 1024)}"
        )


class ProcessTable(Container):
    """Container for the process tree table."""

    DEFAULT_CSS = """
    ProcessTable {
        height: 1fr;
        border: solid $primary;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._current_pids: set[int] = set()
        self._sort_key: SortKey = SortKey.CPU
        self._sort_reverse: bool = True

    @property
    def sort_key(self) -> SortKey:
        """Get current sort key."""
        return self._sort_key

    def cycle_sort(self) -> SortKey:
        """Cycle to the next sort key and return it."""
        keys = list(SortKey)
        self._sort_key = keys[(keys.index(self._sort_key) + 1) % len(keys)]
        self._sort_reverse = self._sort_key is not SortKey.PID
        return self._sort_key

    def compose(self) -> ComposeResult:
        yield DataTable(id="process-table")

    def on_mount(self) -> None:
        table = self.query_one("#process-table", DataTable)
        table.cursor_type = "row"

        table.add_column("PID", key="pid", width=8)
        table.add_column("PPID", key="ppid", width=8)
        table.add_column("CPU%", key="cpu", width=8)
        table.add_column("RES", key="rss", width=8)
        table.add_column("ELAPSED", key="elapsed", width=12)
        table.add_column("Command", key="command")

    def update_processes(self, processes: list[ProcessRecord]) -> None:
        """
        Update the table with the records of one tick.

        Rows of processes that left the tree are removed; the rest are
        updated in place.
        """
        table = self.query_one("#process-table", DataTable)
        records = self._sort_processes(processes)
        new_pids = {record.pid for record in records}

        for pid in self._current_pids - new_pids:
            try:
                table.remove_row(str(pid))
            except Exception:
                pass  # Row may not exist

        for record in records:
            cells = self._cells(record)
            row_key = str(record.pid)
            try:
                if record.pid in self._current_pids:
                    for column, value in zip(("pid", "ppid", "cpu", "rss", "elapsed", "command"), cells):
                        table.update_cell(row_key, column, value)
                else:
                    table.add_row(*cells, key=row_key)
            except Exception:
                pass  # Row vanished or already exists

        self._current_pids = new_pids

    def _sort_processes(self, processes: list[ProcessRecord]) -> list[ProcessRecord]:
        key_func = {
            SortKey.CPU: lambda r: r.cpu_percent,
            SortKey.MEM: lambda r: r.resident_memory_kb,
            SortKey.PID: lambda r: r.pid,
            SortKey.TIME: lambda r: r.elapsed_seconds,
        }
        return sorted(processes, key=key_func[self._sort_key], reverse=self._sort_reverse)

    @staticmethod
    def _cells(record: ProcessRecord) -> tuple[str, ...]:
        return (
            str(record.pid),
            str(record.ppid),
            f"{record.cpu_percent:5.1f}",
            format_bytes(record.resident_memory_kb * 1024),
            format_elapsed(record.elapsed_seconds),
            record.command[:60],
        )


class PytendTopApp(App):
    """Terminal viewer for one supervised process tree."""

    TITLE = "pytend-top"
    SUB_TITLE = "Supervised Process Tree"

    CSS = """
    Screen {
        layout: vertical;
    }

    #header-stats {
        dock: top;
        height: auto;
        min-height: 6;
    }

    Horizontal {
        height: auto;
    }

    #host-info {
        width: 1fr;
        padding-right: 2;
    }

    #tree-info {
        width: 1fr;
        padding-left: 2;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("f6", "sort", "Sort"),
    ]

    def __init__(self, root_pid: int, poll_rate: float | None = None) -> None:
        super().__init__()
        self._update_queue: Queue[TreeSnapshot] = Queue()
        self._monitor = UsageMonitor(self._update_queue, root_pid, poll_rate=poll_rate)

    def compose(self) -> ComposeResult:
        yield HeaderStats(id="header-stats")
        yield ProcessTable()
        yield Footer()

    def on_mount(self) -> None:
        self._monitor.start()
        self.set_interval(0.5, self._check_for_updates)

    def _check_for_updates(self) -> None:
        """Drain the queue and show the most recent snapshot."""
        snapshot = None
        while True:
            try:
                snapshot = self._update_queue.get_nowait()
            except Empty:
                break

        if snapshot is not None:
            self._update_ui(snapshot)

    def _update_ui(self, snapshot: TreeSnapshot) -> None:
        try:
            self.query_one("#header-stats", HeaderStats).update_stats(snapshot)
            self.query_one(ProcessTable).update_processes(snapshot.processes)
        except Exception:
            logger.debug("ui_update_failed", exc_info=True)

    def action_sort(self) -> None:
        """Cycle through sort keys."""
        new_sort_key = self.query_one(ProcessTable).cycle_sort()
        self.notify(f"Sort: {new_sort_key.value.upper()}")

    def action_quit(self) -> None:
        """Stop the monitor and exit."""
        self._monitor.stop()
        self.exit()


def main(argv: list[str] | None = None) -> None:
    """Entry point for pytend-top."""
    parser = argparse.ArgumentParser(prog="pytend-top", description=__doc__)
    parser.add_argument("pid", type=int, help="pid of the supervised process")
    parser.add_argument("--poll-rate", type=float, default=None, help="seconds between ticks")
    args = parser.parse_args(argv)

    configure_logging()
    PytendTopApp(args.pid, poll_rate=args.poll_rate).run()


if __name__ == "__main__":
    main()
