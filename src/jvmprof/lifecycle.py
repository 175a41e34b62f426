"""Graceful and forced termination of the target process."""

import logging
import time
from collections.abc import Callable
from enum import Enum

import psutil

from jvmprof.errors import LifecycleError
from jvmprof.models import TargetProcess
from jvmprof.terminal import Terminal

logger = logging.getLogger(__name__)

RESTART_NOTE = "Note: You may need to restart your application to continue profiling"


class TerminationOutcome(Enum):
    """Final state reported by a termination request."""

    CANCELLED = "cancelled"
    NOT_RUNNING = "not-running"
    TERMINATED = "terminated"
    FORCE_KILLED = "force-killed"
    LEFT_RUNNING = "left-running"


def _is_gone(proc: psutil.Process) -> bool:
    """Check whether a process has exited. Unreaped zombies count as exited."""
    try:
        return proc.status() == psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return True
    except psutil.AccessDenied:
        return False


class LifecycleController:
    """
    Terminates the target after explicit operator confirmation.

    Never retries on its own and never signals without at least one
    confirmation.
    """

    def __init__(
        self,
        terminal: Terminal,
        graceful_timeout: int = 10,
        sleep: Callable[[float], None] = time.sleep,
        process_factory: Callable[[int], psutil.Process] = psutil.Process,
    ) -> None:
        """
        Initialize the controller.

        Args:
            terminal: Operator terminal.
            graceful_timeout: Seconds to wait for SIGTERM to take effect.
            sleep: Sleep function used between liveness polls.
            process_factory: Builds a psutil.Process for a pid.
        """
        self._terminal = terminal
        self._graceful_timeout = graceful_timeout
        self._sleep = sleep
        self._process_factory = process_factory

    def terminate(self, target: TargetProcess) -> TerminationOutcome:
        """
        Ask how to terminate the target, then do it.

        Raises:
            LifecycleError: A signal could not be delivered.
        """
        self._terminal.warn("Kill Current Process")
        self._terminal.say("=============================")
        self._terminal.info("Current process being profiled:")
        self._terminal.say(f"  PID: {target.pid}")
        self._terminal.say(f"  Name: {target.display_name}")
        self._terminal.say()

        try:
            proc = self._process_factory(target.pid)
        except psutil.NoSuchProcess:
            proc = None
        if proc is None or _is_gone(proc):
            self._terminal.warn(f"Process {target.pid} is not running or not accessible")
            return TerminationOutcome.NOT_RUNNING

        self._show_details(proc)
        self._terminal.error("WARNING: This will terminate the Java process!")
        self._terminal.warn("This action cannot be undone and may cause data loss.")
        self._terminal.say()
        self._terminal.info("Kill options:")
        self._terminal.say("  1) Graceful shutdown (SIGTERM) - Recommended")
        self._terminal.say("  2) Force kill (SIGKILL) - Use if process is unresponsive")
        self._terminal.say("  0) Cancel - Return to main menu")
        self._terminal.say()

        choice = self._terminal.ask_index("Select kill method (0-2): ", 2)
        if choice == 0:
            self._terminal.say("Kill operation cancelled")
            return TerminationOutcome.CANCELLED
        if choice == 1:
            return self._graceful(proc, target)

        self._terminal.error("FORCE KILL WARNING")
        self._terminal.warn("This will immediately terminate the process without cleanup!")
        if not self._terminal.confirm(f"Are you sure you want to force kill process {target.pid}?"):
            self._terminal.say("Force kill cancelled")
            return TerminationOutcome.CANCELLED
        outcome = self._force(proc, target)
        self._terminal.say()
        self._terminal.warn(RESTART_NOTE)
        return outcome

    def _show_details(self, proc: psutil.Process) -> None:
        """Print owner and command line when they are readable."""
        try:
            with proc.oneshot():
                details = f"{proc.pid} ppid={proc.ppid()} user={proc.username()} {' '.join(proc.cmdline())}"
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            return
        self._terminal.info("Process details:")
        self._terminal.say(f"  {details}")
        self._terminal.say()

    def _graceful(self, proc: psutil.Process, target: TargetProcess) -> TerminationOutcome:
        """Send SIGTERM, wait, and offer escalation if the process survives."""
        self._terminal.info(f"Sending SIGTERM to process {target.pid}...")
        try:
            proc.terminate()
        except psutil.NoSuchProcess:
            self._terminal.warn(f"Process {target.pid} no longer exists")
            return TerminationOutcome.NOT_RUNNING
        except psutil.AccessDenied as exc:
            raise LifecycleError(
                f"Failed to send SIGTERM to process {target.pid}",
                [f"You may need elevated privileges: sudo kill {target.pid}"],
            ) from exc

        logger.info("SIGTERM sent to pid %d", target.pid)
        self._terminal.success("SIGTERM sent successfully")
        self._terminal.say("Waiting for process to terminate gracefully...")
        for _ in range(self._graceful_timeout):
            if _is_gone(proc):
                self._terminal.say()
                self._terminal.success(f"Process {target.pid} terminated gracefully")
                self._terminal.warn(RESTART_NOTE)
                return TerminationOutcome.TERMINATED
            self._terminal.tick()
            self._sleep(1)
        self._terminal.say()

        if _is_gone(proc):
            self._terminal.success(f"Process {target.pid} terminated gracefully")
            self._terminal.warn(RESTART_NOTE)
            return TerminationOutcome.TERMINATED

        self._terminal.warn(f"Process is still running after {self._graceful_timeout} seconds")
        if not self._terminal.confirm("Would you like to force kill it?"):
            self._terminal.say("Process left running")
            return TerminationOutcome.LEFT_RUNNING
        return self._force(proc, target)

    def _force(self, proc: psutil.Process, target: TargetProcess) -> TerminationOutcome:
        """Send SIGKILL."""
        self._terminal.info(f"Sending SIGKILL to process {target.pid}...")
        try:
            proc.kill()
        except psutil.NoSuchProcess:
            self._terminal.warn(f"Process {target.pid} no longer exists")
            return TerminationOutcome.NOT_RUNNING
        except psutil.AccessDenied as exc:
            raise LifecycleError(
                f"Failed to force kill process {target.pid}",
                [f"You may need elevated privileges: sudo kill -9 {target.pid}"],
            ) from exc
        logger.info("SIGKILL sent to pid %d", target.pid)
        self._terminal.success(f"Process {target.pid} force killed")
        return TerminationOutcome.FORCE_KILLED
