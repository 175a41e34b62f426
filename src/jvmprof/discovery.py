"""Discovery and validation of target JVM processes."""

import logging
import os
from collections.abc import Callable, Iterable
from pathlib import PurePath

import psutil

from jvmprof.errors import NoProcessFound, NotTargetRuntime, ProcessNotFound, SelectionCancelled
from jvmprof.models import TargetProcess
from jvmprof.terminal import Terminal

logger = logging.getLogger(__name__)

JVM_EXECUTABLES = frozenset({"java", "java.exe", "javaw.exe"})

# Main classes of JDK helper tools that run as JVMs themselves.
HELPER_MAIN_CLASSES = frozenset(
    {
        "sun.tools.jps.Jps",
        "sun.tools.jcmd.JCmd",
        "sun.tools.jstat.Jstat",
        "sun.tools.jstack.JStack",
        "sun.tools.jinfo.JInfo",
        "sun.tools.jmap.JMap",
    }
)

# Launcher options whose value is a separate argument.
OPTIONS_WITH_VALUE = frozenset(
    {
        "-cp",
        "-classpath",
        "--class-path",
        "-p",
        "--module-path",
        "--upgrade-module-path",
        "--add-modules",
        "--add-opens",
        "--add-exports",
        "--add-reads",
        "--patch-module",
        "--limit-modules",
    }
)

ATTRS = ["pid", "name", "cmdline"]

Matcher = Callable[[str, list[str]], bool]


def is_jvm(name: str, cmdline: list[str]) -> bool:
    """Check whether a process name/command line belongs to a JVM."""
    if name in JVM_EXECUTABLES:
        return True
    return bool(cmdline) and PurePath(cmdline[0]).name in JVM_EXECUTABLES


def display_name(name: str, cmdline: list[str]) -> str:
    """
    Derive the name `jps -l` would show: the jar path or main class.

    Falls back to the process name when the command line has no main entry.
    """
    args = iter(cmdline[1:])
    for arg in args:
        if arg in ("-jar", "-m", "--module"):
            return next(args, name)
        if arg in OPTIONS_WITH_VALUE:
            next(args, None)
            continue
        if arg.startswith("-"):
            continue
        return arg
    return name


class ProcessDiscovery:
    """
    Finds target processes using psutil.

    Handles NoSuchProcess, AccessDenied and ZombieProcess errors by skipping
    the affected process, like the process table of a system monitor.
    """

    def __init__(
        self,
        matcher: Matcher = is_jvm,
        process_iter: Callable[..., Iterable[psutil.Process]] = psutil.process_iter,
        own_pid: int | None = None,
    ) -> None:
        """
        Initialize discovery.

        Args:
            matcher: Predicate on (name, cmdline) selecting target processes.
            process_iter: Source of processes, psutil.process_iter by default.
            own_pid: Pid to exclude. Defaults to the current process.
        """
        self._matcher = matcher
        self._process_iter = process_iter
        self._own_pid = os.getpid() if own_pid is None else own_pid

    def discover(self) -> list[TargetProcess]:
        """List candidate target processes, ordered by pid."""
        candidates: list[TargetProcess] = []
        for proc in self._process_iter(attrs=ATTRS):
            try:
                with proc.oneshot():
                    info = proc.info
                    pid = info.get("pid", 0)
                    name = info.get("name") or ""
                    cmdline = info.get("cmdline") or []
                    if pid == self._own_pid or not self._matcher(name, cmdline):
                        continue
                    label = display_name(name, cmdline)
                    if label in HELPER_MAIN_CLASSES:
                        continue
                    candidates.append(
                        TargetProcess(
                            pid=pid,
                            display_name=label,
                            command_line=" ".join(cmdline) if cmdline else name,
                        )
                    )
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                # Process died mid-iteration or belongs to someone else
                continue
        logger.debug("Discovered %d candidate process(es)", len(candidates))
        return sorted(candidates, key=lambda target: target.pid)

    def validate(self, pid: int) -> TargetProcess:
        """
        Check that a pid is alive and is a target runtime.

        Raises:
            ProcessNotFound: The process does not exist or is not accessible.
            NotTargetRuntime: The process is not a JVM.
        """
        try:
            proc = psutil.Process(pid)
            with proc.oneshot():
                if proc.status() == psutil.STATUS_ZOMBIE:
                    raise ProcessNotFound(f"Process {pid} does not exist or is not accessible")
                name = proc.name()
                cmdline = proc.cmdline()
        except (psutil.NoSuchProcess, psutil.ZombieProcess, psutil.AccessDenied) as exc:
            raise ProcessNotFound(f"Process {pid} does not exist or is not accessible") from exc

        if not self._matcher(name, cmdline):
            raise NotTargetRuntime(f"Process {pid} is not a Java process")
        return TargetProcess(
            pid=pid,
            display_name=display_name(name, cmdline),
            command_line=" ".join(cmdline) if cmdline else name,
        )

    def find_by_name(self, name: str, exclude_pid: int | None = None) -> TargetProcess | None:
        """
        Find a process whose display name contains the given name.

        This is a plain substring match and may pick an unrelated process that
        happens to share the name.
        """
        for candidate in self.discover():
            if candidate.pid != exclude_pid and name in candidate.display_name:
                return candidate
        return None


def select_target(discovery: ProcessDiscovery, terminal: Terminal) -> TargetProcess:
    """
    Let the operator pick the process to profile.

    Raises:
        NoProcessFound: Nothing to profile.
        SelectionCancelled: The operator declined the only candidate.
        ProcessNotFound, NotTargetRuntime: A manually entered pid is invalid.
    """
    terminal.heading("Step 1: Available Java Processes")
    candidates = discovery.discover()

    if not candidates:
        raise NoProcessFound("No Java processes found running on this system.")

    if len(candidates) == 1:
        target = candidates[0]
        terminal.success("Found single Java process:")
        terminal.say(f"  PID: {target.pid}")
        terminal.say(f"  Name: {target.display_name}")
        terminal.say()
        if not terminal.confirm("Do you want to profile this process?"):
            raise SelectionCancelled("Profiling cancelled by user.")
        return target

    terminal.success(f"Found {len(candidates)} Java processes:")
    terminal.say()
    for index, candidate in enumerate(candidates, start=1):
        terminal.say(f"  {index}) PID: {candidate.pid} - {candidate.display_name}")
    terminal.say()
    terminal.say("0) Manual PID entry")
    terminal.say()

    selection = terminal.ask_index(f"Select a process to profile (0-{len(candidates)}): ", len(candidates))
    if selection == 0:
        pid = terminal.ask_int("Enter the PID of the Java process to profile: ")
        return discovery.validate(pid)

    target = candidates[selection - 1]
    terminal.success("Selected process:")
    terminal.say(f"  PID: {target.pid}")
    terminal.say(f"  Name: {target.display_name}")
    return target
