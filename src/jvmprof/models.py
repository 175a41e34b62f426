"""Data models for jvmprof."""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from pathlib import Path

import psutil

TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"


def timestamp_token(now: datetime | None = None) -> str:
    """Return the second-resolution token used in artifact filenames."""
    return (now or datetime.now()).strftime(TIMESTAMP_FORMAT)


@dataclass(slots=True, frozen=True)
class TargetProcess:
    """Immutable description of the JVM process being profiled."""

    pid: int
    display_name: str  # main class or jar, as `jps -l` would print it
    command_line: str
    discovered_at: datetime = field(default_factory=datetime.now)

    def is_alive(self) -> bool:
        """Check whether the process still exists and is not a zombie."""
        try:
            return psutil.Process(self.pid).status() != psutil.STATUS_ZOMBIE
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            # AccessDenied on status() still proves the pid exists
            return psutil.pid_exists(self.pid)


@dataclass(slots=True, frozen=True)
class ToolInstallation:
    """An extracted async-profiler distribution."""

    platform: str
    version: str
    install_dir: Path
    source_url: str
    verified: bool = False

    @property
    def current(self) -> Path:
        """Path of the "current" pointer inside the install directory."""
        return self.install_dir / "current"

    @property
    def asprof(self) -> Path:
        """Path of the sampling tool launcher."""
        return self.current / "bin" / "asprof"

    @property
    def jfrconv(self) -> Path:
        """Path of the recording converter script."""
        return self.current / "bin" / "jfrconv"

    @property
    def converter_jar(self) -> Path:
        """Path of the standalone converter jar shipped with older releases."""
        return self.current / "bin" / "converter.jar"


class ArtifactKind(Enum):
    """Kinds of files written to the results directory, keyed by extension."""

    FLAME_GRAPH = ".html"
    RECORDING = ".jfr"
    THREAD_DUMP = ".txt"
    GC_LOG = ".log"
    TELEMETRY_EXPORT = ".json"

    @property
    def label(self) -> str:
        """Human-readable label for listings."""
        return _KIND_LABELS[self]

    @classmethod
    def from_path(cls, path: Path) -> "ArtifactKind | None":
        """Return the kind matching the file extension, or None."""
        for kind in cls:
            if path.suffix == kind.value:
                return kind
        return None


_KIND_LABELS = {
    ArtifactKind.FLAME_GRAPH: "Flame Graph",
    ArtifactKind.RECORDING: "JFR Recording",
    ArtifactKind.THREAD_DUMP: "Thread Dump",
    ArtifactKind.GC_LOG: "GC Log",
    ArtifactKind.TELEMETRY_EXPORT: "OTLP Export",
}


@dataclass(slots=True, frozen=True)
class Artifact:
    """A result file. Never mutated after creation."""

    path: Path
    kind: ArtifactKind
    created_at: datetime
    size: int

    @classmethod
    def from_path(cls, path: Path) -> "Artifact | None":
        """Build an Artifact from a file on disk, or None for unknown kinds."""
        kind = ArtifactKind.from_path(path)
        if kind is None:
            return None
        stat = path.stat()
        return cls(
            path=path,
            kind=kind,
            created_at=datetime.fromtimestamp(stat.st_mtime),
            size=stat.st_size,
        )


class ProblemCategory(Enum):
    """Up-front hint about what the operator is investigating."""

    GENERAL = "0"
    PERFORMANCE = "1"
    MEMORY = "2"
    CONCURRENCY = "3"
    GARBAGE_COLLECTION = "4"
    IO = "5"

    @property
    def title(self) -> str:
        """Display title of the category."""
        return _CATEGORY_INFO[self][0]

    @property
    def suggested_approach(self) -> str:
        """Profiling approach suggested for the category."""
        return _CATEGORY_INFO[self][1]


_CATEGORY_INFO = {
    ProblemCategory.GENERAL: ("General Analysis", "CPU"),
    ProblemCategory.PERFORMANCE: ("Performance Bottlenecks", "CPU"),
    ProblemCategory.MEMORY: ("Memory-Related Problems", "Memory"),
    ProblemCategory.CONCURRENCY: ("Concurrency/Threading Issues", "Lock/Threading"),
    ProblemCategory.GARBAGE_COLLECTION: ("Garbage Collection Problems", "GC Analysis"),
    ProblemCategory.IO: ("I/O and Network Bottlenecks", "I/O Analysis"),
}


class ControllerState(Enum):
    """States of the interactive session."""

    SELECTING_PROCESS = "selecting-process"
    READY_AT_MENU = "ready-at-menu"
    EXECUTING_ACTION = "executing-action"
    TERMINATED = "terminated"


@dataclass(slots=True, frozen=True)
class Session:
    """State threaded through the session controller."""

    installation: ToolInstallation
    results_dir: Path
    target: TargetProcess | None = None
    problem_category: ProblemCategory | None = None
    state: ControllerState = ControllerState.SELECTING_PROCESS
    pending_target: TargetProcess | None = None  # re-discovered candidate

    def transition(self, state: ControllerState, **changes) -> "Session":
        """Return a copy of the session in the given state."""
        return replace(self, state=state, **changes)
