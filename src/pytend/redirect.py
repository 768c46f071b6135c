"""Standard stream redirection for launched daemons."""

import os
import subprocess
from collections.abc import Iterator
from contextlib import ExitStack, contextmanager
from typing import IO, Any

APPEND_MODE = "ab"


@contextmanager
def redirected_streams(
    stdin: str | os.PathLike | None = None,
    stdout: str | os.PathLike | None = None,
    stderr: str | os.PathLike | None = None,
    directory: str | os.PathLike | None = None,
) -> Iterator[dict[str, Any]]:
    """
    Open redirection targets and yield them as subprocess.Popen keyword arguments.

    stdout and stderr are opened in append mode. When both name the same
    target, stderr is pointed at stdout so the two stay interleaved. Streams
    without a target are inherited. Relative targets are taken relative to
    directory, the working directory the child will run in. Files are closed
    on exit, which is safe once the child holds its own copies.
    """

    def target(path: str | os.PathLike) -> str:
        return os.path.join(directory, path) if directory else os.fspath(path)

    with ExitStack() as stack:
        streams: dict[str, IO[bytes] | int | None] = {"stdin": None, "stdout": None, "stderr": None}

        if stdin is not None:
            streams["stdin"] = stack.enter_context(open(target(stdin), "rb"))

        if stdout is not None and stderr is not None and target(stdout) == target(stderr):
            streams["stdout"] = stack.enter_context(open(target(stdout), APPEND_MODE))
            streams["stderr"] = subprocess.STDOUT
        else:
            if stdout is not None:
                streams["stdout"] = stack.enter_context(open(target(stdout), APPEND_MODE))
            if stderr is not None:
                streams["stderr"] = stack.enter_context(open(target(stderr), APPEND_MODE))

        yield streams
