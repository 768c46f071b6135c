"""Signal-based process existence probe."""

import os


def is_alive(pid: int) -> bool:
    """
    Check whether a process with the given pid exists.

    Sends signal 0. EPERM still proves existence; only ESRCH means the process
    is gone. Any other OSError propagates. Zero and negative values name
    process groups, not processes, so they are never alive.
    """
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True
