"""Data models for pytend."""

from dataclasses import dataclass, field


@dataclass(slots=True, frozen=True)
class ProcessRecord:
    """One row of the OS process table."""

    pid: int
    ppid: int  # lookup key only, may name a pid missing from the snapshot
    cpu_percent: float
    resident_memory_kb: float
    elapsed_seconds: int
    command: str


@dataclass(slots=True, frozen=True)
class ExecutionResult:
    """Captured outcome of a blocking command execution."""

    stdout: bytes = b""
    stderr: bytes = b""
    exit_code: int = 0  # negative when the command was killed by a signal


@dataclass(slots=True, frozen=True)
class PrivilegeSpec:
    """Target identity, by name. Resolved in the process that assumes it."""

    uid: str | None = None
    gid: str | None = None
    supplementary_groups: tuple[str, ...] = ()


@dataclass(slots=True)
class SpawnOptions:
    """Per-invocation settings for daemonizing or executing a command."""

    uid: str | None = None
    gid: str | None = None
    supplementary_groups: tuple[str, ...] = ()
    working_directory: str | None = None
    environment: dict[str, str] = field(default_factory=dict)
    stdin: str | None = None
    stdout: str | None = None
    stderr: str | None = None
    pid_file: str | None = None

    @property
    def privileges(self) -> PrivilegeSpec:
        """The identity part of these options."""
        return PrivilegeSpec(
            uid=self.uid,
            gid=self.gid,
            supplementary_groups=tuple(self.supplementary_groups),
        )


@dataclass(slots=True)
class GenerationRequest:
    """What generation 0 ships to a helper generation over the request pipe."""

    command: str
    options: SpawnOptions
    environment: dict[str, str]  # the caller's environment at request time


@dataclass(slots=True)
class TreeSnapshot:
    """Usage of one supervised process tree, taken during a single tick."""

    root_pid: int
    alive: bool
    processes: list[ProcessRecord]
    cpu_percent: float | None
    resident_memory_kb: float | None
    running_time: int | None
    cpu_percent_per_core: list[float]
    memory_total: int
    memory_used: int
    memory_percent: float
