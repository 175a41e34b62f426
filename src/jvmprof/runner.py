"""Execution of external tools (asprof, jcmd, jstat, jstack, curl, java)."""

import logging
import os
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

# Exit status reported when the executable itself cannot be started.
NOT_FOUND_EXIT = 127


@dataclass(slots=True, frozen=True)
class CommandResult:
    """Outcome of one external command."""

    argv: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        """True when the command exited with status 0."""
        return self.returncode == 0


class CommandRunner:
    """Runs external commands synchronously and locates executables."""

    def __init__(self, java_home: Path | None = None) -> None:
        """
        Initialize the runner.

        Args:
            java_home: JDK to search for jcmd/jstat/jstack before PATH.
        """
        self._java_home = java_home or _env_java_home()

    def which(self, name: str) -> str | None:
        """Return the full path of an executable, or None if absent."""
        if self._java_home is not None:
            candidate = self._java_home / "bin" / name
            if candidate.is_file() and os.access(candidate, os.X_OK):
                return str(candidate)
        return shutil.which(name)

    def run(
        self,
        argv: list[str],
        stdout_path: Path | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        """
        Run a command and wait for it to finish.

        Args:
            argv: Command and arguments.
            stdout_path: Redirect stdout and stderr into this file when set.
            timeout: Seconds before the command is killed.

        Returns:
            The command result. A missing executable yields exit status 127.
        """
        logger.debug("Running %s", " ".join(argv))
        try:
            if stdout_path is not None:
                with stdout_path.open("w") as out:
                    completed = subprocess.run(
                        argv, stdout=out, stderr=subprocess.STDOUT, text=True, timeout=timeout
                    )
                return CommandResult(tuple(argv), completed.returncode)
            completed = subprocess.run(argv, capture_output=True, text=True, timeout=timeout)
        except FileNotFoundError:
            logger.debug("Executable not found: %s", argv[0])
            return CommandResult(tuple(argv), NOT_FOUND_EXIT, stderr=f"{argv[0]}: not found")
        except subprocess.TimeoutExpired:
            logger.warning("Command timed out after %ss: %s", timeout, argv[0])
            return CommandResult(tuple(argv), -1, stderr="timed out")
        return CommandResult(tuple(argv), completed.returncode, completed.stdout, completed.stderr)

    def run_interactive(self, argv: list[str], env: dict[str, str] | None = None) -> int:
        """Run a command attached to the current terminal and return its exit status."""
        logger.debug("Launching %s", " ".join(argv))
        try:
            return subprocess.run(argv, env=env).returncode
        except FileNotFoundError:
            return NOT_FOUND_EXIT


def _env_java_home() -> Path | None:
    """Return JAVA_HOME from the environment, if set."""
    value = os.environ.get("JAVA_HOME")
    return Path(value) if value else None
