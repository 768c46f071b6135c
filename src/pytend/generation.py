"""Helper generations for daemonizing and blocking execution.

Started by pytend.spawn as ``python -m pytend.generation MODE REQUEST_FD HANDOFF_FD``.
Each run reads one GenerationRequest from REQUEST_FD, starts the final command
(generation 2), writes a single answer to HANDOFF_FD and exits.

``daemonize``: drop to the target identity, check the pid file is writable,
start the command in a new session with its streams redirected, record its
pid in the pid file and on the handoff pipe. Any failure exits non-zero with
nothing written, which the caller reads as an empty handoff.

``execute``: start the command as the target identity with stdin on
/dev/null and stdout/stderr on fresh pipes, collect both streams and the exit
status, and write them as one serialized ExecutionResult.
"""

import argparse
import os
import pickle
import subprocess
import sys

from pytend.errors import PytendError
from pytend.log import configure_logging, get_logger
from pytend.models import ExecutionResult, GenerationRequest
from pytend.pidfile import can_write_pid_file, write_pid_file
from pytend.privileges import ResolvedIdentity, apply_identity, drop_privileges, resolve_identity
from pytend.redirect import redirected_streams
from pytend.spawn import build_environment, serialize_result, split_command

logger = get_logger(__name__)

# Exit status reported when the command could not be started at all
COMMAND_FAILURE_STATUS = 127


def receive_request(fd: int) -> GenerationRequest:
    """Read the pickled request generation 0 sent over the request pipe."""
    with open(fd, "rb") as stream:
        return pickle.load(stream)


def launch_daemon(request: GenerationRequest, handoff_fd: int) -> int:
    """Start request.command as a daemon and report its pid. Returns an exit status."""
    options = request.options

    with open(handoff_fd, "wb") as handoff:
        try:
            identity = drop_privileges(options.uid, options.gid, options.supplementary_groups)
        except PytendError as e:
            logger.error("privilege_drop_failed", command=request.command, error=str(e))
            return 1

        # fail now rather than leave a daemon behind whose pid cannot be recorded
        if options.pid_file and not can_write_pid_file(options.pid_file, logger):
            return 1

        environment = build_environment(request.environment, options, identity)
        try:
            argv = split_command(request.command)
            with redirected_streams(
                options.stdin,
                options.stdout,
                options.stderr,
                directory=options.working_directory,
            ) as streams:
                daemon = subprocess.Popen(
                    argv,
                    cwd=options.working_directory,
                    env=environment,
                    start_new_session=True,
                    **streams,
                )
        except (PytendError, OSError, subprocess.SubprocessError) as e:
            logger.error("daemon_start_failed", command=request.command, error=str(e))
            return 1

        if options.pid_file:
            try:
                write_pid_file(options.pid_file, daemon.pid)
            except OSError as e:
                logger.error("pid_file_write_failed", path=options.pid_file, error=str(e))
                daemon.kill()
                return 1

        handoff.write(str(daemon.pid).encode("ascii"))

    return 0


def _command_setup(identity: ResolvedIdentity | None, working_directory: str | None):
    """Child-side steps before exec: assume the identity, then enter the directory."""

    def setup() -> None:
        if identity is not None:
            # the environment was already built for the child
            apply_identity(identity, environ={})
        if working_directory:
            os.chdir(working_directory)

    return setup


def run_command(request: GenerationRequest) -> ExecutionResult:
    """Run request.command to completion and capture what it produced."""
    options = request.options
    try:
        identity = resolve_identity(options.privileges)
        environment = build_environment(request.environment, options, identity)
        process = subprocess.Popen(
            split_command(request.command),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            env=environment,
            preexec_fn=_command_setup(identity, options.working_directory),
        )
    except (PytendError, OSError, subprocess.SubprocessError) as e:
        return ExecutionResult(
            stdout=b"",
            stderr=f"Exception in command process: {e}.\n".encode(),
            exit_code=COMMAND_FAILURE_STATUS,
        )

    # drain both pipes while waiting; a full pipe would otherwise stall the command
    stdout, stderr = process.communicate()
    return ExecutionResult(stdout=stdout, stderr=stderr, exit_code=process.returncode)


def execute(request: GenerationRequest, result_fd: int) -> int:
    """Run request.command and write the serialized result. Returns an exit status."""
    result = run_command(request)
    with open(result_fd, "wb") as result_pipe:
        result_pipe.write(serialize_result(result))
    return 0


def main(argv: list[str] | None = None) -> int:
    """Entry point of a helper generation."""
    parser = argparse.ArgumentParser(prog="python -m pytend.generation")
    parser.add_argument("mode", choices=("daemonize", "execute"))
    parser.add_argument("request_fd", type=int)
    parser.add_argument("handoff_fd", type=int)
    args = parser.parse_args(argv)

    configure_logging()
    request = receive_request(args.request_fd)

    if args.mode == "daemonize":
        return launch_daemon(request, args.handoff_fd)
    return execute(request, args.handoff_fd)


if __name__ == "__main__":
    sys.exit(main())
