"""Daemonizing and blocking execution, caller side.

Both operations hand the real work to helper generations started with
``python -m pytend.generation``. The caller (generation 0) talks to its helper
through two anonymous pipes:

* the request pipe, on which it writes one pickled GenerationRequest;
* the handoff pipe, on which the helper writes its answer (the daemon's pid as
  decimal text, or one serialized ExecutionResult) and then closes.

An empty handoff read means the helper gave up before answering.
"""

import os
import pickle
import shlex
import subprocess
import sys
import threading
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from pathlib import Path

from pytend.config import settings
from pytend.errors import ConfigurationError, DaemonizationError
from pytend.log import get_logger
from pytend.models import ExecutionResult, GenerationRequest, SpawnOptions
from pytend.privileges import ResolvedIdentity

logger = get_logger(__name__)

GENERATION_MODULE = "pytend.generation"
# Directory holding the pytend package, made importable for helper generations
PACKAGE_ROOT = str(Path(__file__).resolve().parent.parent)


def split_command(command: str) -> list[str]:
    """Split a command string into argv with shell quoting rules, without a shell."""
    try:
        argv = shlex.split(command)
    except ValueError as e:
        raise ConfigurationError(f"cannot parse command {command!r}: {e}") from e
    if not argv:
        raise ConfigurationError("empty command")
    return argv


def build_environment(
    base: Mapping[str, str],
    options: SpawnOptions,
    identity: ResolvedIdentity | None = None,
) -> dict[str, str]:
    """Environment for the final command: base, then HOME, PWD and configured variables."""
    environment = dict(base)
    if identity is not None and identity.uid is not None and identity.home:
        environment["HOME"] = identity.home
    if options.working_directory:
        # same PWD a shell would report after cd
        environment["PWD"] = str(options.working_directory)
    environment.update({str(key): str(value) for key, value in options.environment.items()})
    return environment


def serialize_result(result: ExecutionResult) -> bytes:
    """Encode an ExecutionResult for the result pipe."""
    return pickle.dumps(
        {"stdout": result.stdout, "stderr": result.stderr, "exit_code": result.exit_code}
    )


def deserialize_result(payload: bytes) -> ExecutionResult:
    """Decode a result pipe payload. An empty payload is a clean, silent exit."""
    if not payload:
        return ExecutionResult(stdout=b"", stderr=b"", exit_code=0)
    data = pickle.loads(payload)
    return ExecutionResult(
        stdout=data["stdout"],
        stderr=data["stderr"],
        exit_code=data["exit_code"],
    )


def _helper_environment() -> dict[str, str]:
    environment = dict(os.environ)
    path = environment.get("PYTHONPATH", "")
    if PACKAGE_ROOT not in path.split(os.pathsep):
        environment["PYTHONPATH"] = os.pathsep.join(p for p in (PACKAGE_ROOT, path) if p)
    return environment


def _send_request(fd: int, request: GenerationRequest) -> None:
    try:
        with open(fd, "wb") as stream:
            pickle.dump(request, stream)
    except BrokenPipeError:
        logger.warning("generation_request_not_delivered", command=request.command)


@contextmanager
def _start_generation(mode: str, request: GenerationRequest) -> Iterator[tuple[subprocess.Popen, int]]:
    """Start a helper generation, send it the request, yield it with the handoff read end."""
    request_read, request_write = os.pipe()
    handoff_read, handoff_write = os.pipe()
    try:
        process = subprocess.Popen(
            [
                settings.python_executable or sys.executable,
                "-m",
                GENERATION_MODULE,
                mode,
                str(request_read),
                str(handoff_write),
            ],
            pass_fds=(request_read, handoff_write),
            env=_helper_environment(),
        )
    except BaseException:
        for fd in (request_write, handoff_read):
            os.close(fd)
        raise
    finally:
        # the helper owns these ends now
        os.close(request_read)
        os.close(handoff_write)

    try:
        _send_request(request_write, request)
        yield process, handoff_read
    finally:
        os.close(handoff_read)


def _read_all(fd: int) -> bytes:
    chunks = []
    while chunk := os.read(fd, 65536):
        chunks.append(chunk)
    return b"".join(chunks)


def daemonize(command: str, options: SpawnOptions | None = None) -> int:
    """
    Launch command as a detached daemon and return its pid.

    The daemon runs in its own session under the configured identity, with
    the configured working directory, environment and stream redirections.
    Its pid is written to options.pid_file before this returns.

    Raises:
        ConfigurationError: The command string is empty or malformed.
        DaemonizationError: The launcher failed before handing back a pid.
    """
    options = options or SpawnOptions()
    split_command(command)
    request = GenerationRequest(command=command, options=options, environment=dict(os.environ))

    with _start_generation("daemonize", request) as (launcher, handoff):
        # reap the launcher when it exits so it never lingers as a zombie
        threading.Thread(
            target=launcher.wait,
            daemon=True,
            name=f"reap-{launcher.pid}",
        ).start()
        payload = _read_all(handoff)

    try:
        pid = int(payload.decode("ascii").strip())
    except (UnicodeDecodeError, ValueError):
        pid = 0

    if pid <= 0:
        raise DaemonizationError(f"failed to daemonize {command!r}")

    logger.debug("daemonized", command=command, pid=pid)
    return pid


def execute_blocking(command: str, options: SpawnOptions | None = None) -> ExecutionResult:
    """
    Run command to completion and capture its output and exit status.

    The command runs with stdin bound to /dev/null, under the configured
    identity, working directory and environment. Failures before the command
    is running come back as a diagnostic on stderr with exit status 127.

    Raises:
        ConfigurationError: The command string is empty or malformed.
    """
    options = options or SpawnOptions()
    split_command(command)
    request = GenerationRequest(command=command, options=options, environment=dict(os.environ))

    with _start_generation("execute", request) as (runner, result_pipe):
        payload = _read_all(result_pipe)
        runner.wait()

    return deserialize_result(payload)
