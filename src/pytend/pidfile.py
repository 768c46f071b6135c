"""PID-file handling: one decimal integer, mode 0644, caller supplied path."""

import os
from typing import Protocol

from pytend.config import settings
from pytend.log import get_logger

logger = get_logger(__name__)

PID_FILE_MODE = 0o644


class WarningLogger(Protocol):
    def warning(self, event: str, *args, **kwargs): ...


def write_pid_file(path: str | os.PathLike, pid: int) -> None:
    """Truncate path and write pid into it."""
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, PID_FILE_MODE)
    with open(fd, "w") as stream:
        stream.write(str(pid))


def can_write_pid_file(path: str | os.PathLike, log: WarningLogger | None = None) -> bool:
    """Create and immediately remove path to prove it is writable by this process."""
    log = log or logger
    try:
        with open(path, "a"):
            pass
        os.unlink(path)
    except OSError as e:
        log.warning(f"{type(e).__name__} - {e}")
        return False
    return True


def delete_if_exists(path: str | os.PathLike | None, attempts: int | None = None) -> None:
    """
    Remove a PID-file if it is still there.

    A missing file is fine. Permission errors are retried a few times, then
    reported as a warning; this never raises for either case.
    """
    if not path:
        return

    attempts = attempts or settings.pid_file_delete_attempts
    for attempt in range(1, attempts + 1):
        try:
            os.unlink(path)
            return
        except FileNotFoundError:
            return
        except PermissionError:
            if attempt == attempts:
                logger.warning("pid_file_delete_denied", path=str(path), attempts=attempts)
