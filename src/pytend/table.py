"""Process table capture and parsing.

The table comes from one BSD-style ``ps`` invocation per tick. Running ``ps``
means a fork and an exec, so the parsed result is memoized until the owner of
the cache declares a tick boundary with :meth:`ProcessTableCache.reset`.
"""

import os
import re
import subprocess
import threading
from collections.abc import Callable, Mapping
from types import MappingProxyType

from pytend.config import settings
from pytend.errors import ProcessTableError
from pytend.log import get_logger
from pytend.models import ProcessRecord

logger = get_logger(__name__)

# Column order requested from ps. The command column comes last because it
# is the only one that may contain whitespace.
PS_FIELDS = ("pid", "ppid", "pcpu", "rss", "etime", "command")
COMMAND_COLUMN = PS_FIELDS.index("command")

# [[dd-]hh:]mm:ss
_ELAPSED_RE = re.compile(r"(?:(?:(\d+)-)?(\d\d):)?(\d\d):(\d\d)")


def parse_elapsed_time(value: str) -> int:
    """
    Convert a ps ``etime`` field into seconds.

    Missing day and hour groups count as zero. Anything that does not match
    ``[[days-]hours:]minutes:seconds`` yields 0 instead of raising.
    """
    match = _ELAPSED_RE.search(value)
    if match is None:
        return 0
    days, hours, minutes, seconds = (int(group or 0) for group in match.groups())
    return ((days * 24 + hours) * 60 + minutes) * 60 + seconds


def _to_float(value: str) -> float:
    try:
        return float(value)
    except ValueError:
        return 0.0


def _to_int(value: str) -> int:
    try:
        return int(value)
    except ValueError:
        return 0


def parse_ps_line(line: str) -> ProcessRecord | None:
    """
    Parse one line of ps output.

    Leading fields are whitespace separated; everything from the command
    column to the end of the line is kept verbatim as the command. Returns
    None for lines without a numeric pid (the header, blank lines).
    """
    chunks = line.rstrip("\r\n").split(None, COMMAND_COLUMN)
    if len(chunks) < COMMAND_COLUMN:
        return None

    try:
        pid = int(chunks[0])
    except ValueError:
        return None

    return ProcessRecord(
        pid=pid,
        ppid=_to_int(chunks[1]),
        cpu_percent=_to_float(chunks[2]),
        resident_memory_kb=_to_float(chunks[3]),
        elapsed_seconds=parse_elapsed_time(chunks[4]),
        command=chunks[COMMAND_COLUMN].rstrip() if len(chunks) > COMMAND_COLUMN else "",
    )


def parse_ps_output(output: str) -> dict[int, ProcessRecord]:
    """Parse a full ps listing into a pid -> record mapping."""
    table: dict[int, ProcessRecord] = {}
    for line in output.splitlines():
        record = parse_ps_line(line)
        if record is not None:
            table[record.pid] = record
    return table


def run_ps() -> str:
    """Run the process listing and return its raw text output."""
    command = [settings.ps_binary, "axo", ",".join(PS_FIELDS)]
    # C locale keeps pcpu as "1.5", never "1,5"
    env = {**os.environ, "LC_ALL": "C"}
    try:
        completed = subprocess.run(
            command,
            capture_output=True,
            text=True,
            check=True,
            env=env,
        )
    except (OSError, subprocess.CalledProcessError) as e:
        logger.warning("process_listing_failed", command=command, error=str(e))
        raise ProcessTableError(f"cannot list processes with {command[0]!r}: {e}") from e
    return completed.stdout


class ProcessTableCache:
    """
    Tick-scoped memo of the OS process table.

    The first :meth:`snapshot` call of a tick runs ps; later calls return the
    same mapping until :meth:`reset` is called. Capture and memoization happen
    under a lock, so concurrent first calls trigger a single ps run.
    """

    def __init__(self, runner: Callable[[], str] | None = None) -> None:
        """
        Initialize the cache.

        Args:
            runner: Callable returning raw ps output. Defaults to running ps.
        """
        self._runner = runner or run_ps
        self._lock = threading.Lock()
        self._snapshot: Mapping[int, ProcessRecord] | None = None

    def snapshot(self) -> Mapping[int, ProcessRecord]:
        """Return the current tick's process table, capturing it if needed."""
        with self._lock:
            if self._snapshot is None:
                self._snapshot = MappingProxyType(parse_ps_output(self._runner()))
            return self._snapshot

    def reset(self) -> None:
        """Drop the memoized table; the next query captures a fresh one."""
        with self._lock:
            self._snapshot = None

    def get(self, pid: int) -> ProcessRecord | None:
        """Return the record for pid in the current tick, or None."""
        return self.snapshot().get(pid)
