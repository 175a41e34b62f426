"""Browsing, previewing and converting files in the results directory."""

import logging
from collections import Counter, deque
from collections.abc import Callable
from pathlib import Path

import typer

from jvmprof.errors import ArtifactError, ConverterUnavailable
from jvmprof.models import Artifact, ArtifactKind, ToolInstallation
from jvmprof.runner import CommandRunner
from jvmprof.strategies import Strategy, StrategyOutcome, run_strategies
from jvmprof.terminal import Terminal

logger = logging.getLogger(__name__)

THREAD_DUMP_PREVIEW_LINES = 200
GC_LOG_PREVIEW_LINES = 50

RECORDING_VIEWERS = (
    "JDK Mission Control",
    "JProfiler",
    "VisualVM",
    "jfrconv (included with async-profiler)",
)

CONVERTER_MODES = {
    "html": ("-o", "html"),
    "heatmap": ("--cpu", "-o", "heatmap"),
}


def format_bytes(size: float) -> str:
    """Format bytes as human-readable string."""
    for unit in ["B", "K", "M", "G", "T"]:
        if size < 1024:
            return f"{size:.1f}{unit}" if unit != "B" else f"{int(size)}{unit}"
        size = size / 1024
    return f"{size:.1f}P"


def convert_recording(
    installation: ToolInstallation,
    runner: CommandRunner,
    source: Path,
    destination: Path,
    mode: str = "html",
) -> StrategyOutcome:
    """
    Convert a JFR recording with jfrconv, falling back to converter.jar.

    Raises:
        ConverterUnavailable: Neither converter is installed.
    """
    strategies: list[Strategy] = []

    if installation.jfrconv.is_file():

        def with_jfrconv() -> StrategyOutcome:
            argv = [str(installation.jfrconv), *CONVERTER_MODES[mode], str(source), str(destination)]
            return _conversion_outcome(runner.run(argv).returncode, destination)

        strategies.append(Strategy("jfrconv", with_jfrconv))

    if mode == "html" and installation.converter_jar.is_file() and runner.which("java"):

        def with_converter_jar() -> StrategyOutcome:
            argv = ["java", "-jar", str(installation.converter_jar), "jfr2flame", str(source), str(destination)]
            return _conversion_outcome(runner.run(argv).returncode, destination)

        strategies.append(Strategy("converter.jar", with_converter_jar))

    if not strategies:
        raise ConverterUnavailable(f"JFR converter not found. Recording location: {source}")
    return run_strategies(strategies)


def _conversion_outcome(returncode: int, destination: Path) -> StrategyOutcome:
    """Treat a conversion as successful when it exits 0 and writes a file."""
    if returncode == 0 and destination.is_file() and destination.stat().st_size > 0:
        return StrategyOutcome.success(destination)
    return StrategyOutcome.failure(f"converter exited with status {returncode}")


class ArtifactManager:
    """Enumerates result files and dispatches them by kind."""

    def __init__(
        self,
        results_dir: Path,
        terminal: Terminal,
        runner: CommandRunner,
        installation: ToolInstallation | None = None,
        opener: Callable[[str], int] = typer.launch,
        platform: str = "linux-x64",
    ) -> None:
        """
        Initialize the manager.

        Args:
            results_dir: Flat directory holding the artifacts.
            terminal: Operator terminal.
            runner: Runs the recording converters.
            installation: async-profiler installation providing converters.
            opener: Opens a file in the platform's default viewer, returning 0 on success.
            platform: Platform tag, used to decide whether to auto-open results.
        """
        self.results_dir = results_dir
        self._terminal = terminal
        self._runner = runner
        self._installation = installation
        self._opener = opener
        self._platform = platform

    def list_artifacts(self) -> list[Artifact]:
        """Return known artifacts, most recent first."""
        if not self.results_dir.is_dir():
            return []
        artifacts = []
        for path in self.results_dir.iterdir():
            if not path.is_file():
                continue
            try:
                artifact = Artifact.from_path(path)
            except OSError:
                continue  # removed while listing
            if artifact is not None:
                artifacts.append(artifact)
        return sorted(artifacts, key=lambda a: (a.created_at, a.path.name), reverse=True)

    def summary(self, artifacts: list[Artifact] | None = None) -> dict[ArtifactKind, int]:
        """Count artifacts per kind, including kinds with no files."""
        artifacts = self.list_artifacts() if artifacts is None else artifacts
        counts = Counter(artifact.kind for artifact in artifacts)
        return {kind: counts.get(kind, 0) for kind in ArtifactKind}

    def recent(self, limit: int = 5) -> list[Artifact]:
        """Return the newest artifacts."""
        return self.list_artifacts()[:limit]

    def show_recent(self, limit: int = 5) -> None:
        """Print the newest artifacts after an action completes."""
        recent = self.recent(limit)
        if not recent:
            self._terminal.say("No profiling files found")
            return
        self._terminal.warn(f"Generated files in {self.results_dir}:")
        for artifact in recent:
            self._terminal.say(f"  {artifact.path.name} ({format_bytes(artifact.size)})")

    def browse(self) -> None:
        """List artifacts and let the operator open one. 0 returns to the menu."""
        artifacts = self.list_artifacts()
        self._terminal.warn(f"Recent profiling results in {self.results_dir}:")
        self._terminal.say()
        if not artifacts:
            self._terminal.say("No profiling files found")
            return

        self._terminal.success("Select a file to open/explore:")
        self._terminal.say()
        for index, artifact in enumerate(artifacts, start=1):
            created = artifact.created_at.strftime("%b %d %H:%M")
            self._terminal.say(
                f"{index:2d}) {artifact.kind.label} - {artifact.path.name} "
                f"({format_bytes(artifact.size)}) - {created}"
            )

        self._terminal.say()
        self._terminal.info("File type summary:")
        for kind, count in self.summary(artifacts).items():
            self._terminal.say(f"  {kind.value} files ({kind.label}): {count}")
        self._terminal.say()
        self._terminal.say("0) Return to main menu")
        self._terminal.say()

        choice = self._terminal.ask_index(f"Select a file to open (0-{len(artifacts)}): ", len(artifacts))
        if choice == 0:
            self._terminal.say("Returning to main menu...")
            return

        try:
            self.select(artifacts[choice - 1])
        except ArtifactError as exc:
            self._terminal.report(exc)

    def select(self, artifact: Artifact) -> None:
        """Dispatch an artifact to the handler for its kind."""
        self._terminal.success(f"Selected: {artifact.path.name}")
        self._terminal.say()
        handlers = {
            ArtifactKind.FLAME_GRAPH: self._open_flame_graph,
            ArtifactKind.RECORDING: self._offer_conversion,
            ArtifactKind.THREAD_DUMP: self._preview_thread_dump,
            ArtifactKind.GC_LOG: self._preview_gc_log,
            ArtifactKind.TELEMETRY_EXPORT: self._describe_export,
        }
        handlers[artifact.kind](artifact)

    def open_in_viewer(self, path: Path) -> bool:
        """Open a file with the default viewer, printing the path on failure."""
        self._terminal.info("Opening flame graph in browser...")
        if self._opener(str(path)) == 0:
            return True
        self._terminal.warn(f"Please open this file manually in a browser: {path}")
        return False

    def _open_flame_graph(self, artifact: Artifact) -> None:
        """Open an HTML flame graph."""
        self.open_in_viewer(artifact.path)

    def _offer_conversion(self, artifact: Artifact) -> None:
        """Describe a recording and optionally convert it to a flame graph."""
        self._terminal.info(f"JFR Recording: {artifact.path.name}")
        self._terminal.warn(f"File size: {format_bytes(artifact.size)}")
        self._terminal.say()
        self._terminal.info("You can analyze this JFR file with:")
        for number, viewer in enumerate(RECORDING_VIEWERS, start=1):
            self._terminal.say(f"  {number}. {viewer}")
        self._terminal.say()

        if not self._terminal.confirm("Would you like to convert it to a flame graph?"):
            self._terminal.warn(f"JFR file location: {artifact.path}")
            return
        if self._installation is None:
            raise ConverterUnavailable(f"JFR converter not found. Recording location: {artifact.path}")

        destination = artifact.path.with_suffix(".html")
        self._terminal.info("Converting JFR to flame graph...")
        outcome = convert_recording(self._installation, self._runner, artifact.path, destination)
        if not outcome.succeeded:
            raise ArtifactError(
                f"Failed to convert JFR file: {outcome.detail}",
                [f"Recording location: {artifact.path}", "Open it with JDK Mission Control instead."],
            )
        self._terminal.success(f"Flame graph created: {destination.name}")
        if self._platform == "macos":
            self.open_in_viewer(destination)

    def _preview_thread_dump(self, artifact: Artifact) -> None:
        """Show the head of a thread dump."""
        self._terminal.info(f"Thread Dump: {artifact.path.name}")
        self._terminal.warn(f"File size: {format_bytes(artifact.size)}")
        self._terminal.say()
        if not self._terminal.confirm("Would you like to view the thread dump?"):
            self._terminal.warn(f"Thread dump location: {artifact.path}")
            return
        lines = head(artifact.path, THREAD_DUMP_PREVIEW_LINES)
        self._print_preview("Thread dump content:", lines)
        remaining = count_lines(artifact.path) - len(lines)
        if remaining > 0:
            self._terminal.say(f"... {remaining} more lines in {artifact.path}")

    def _preview_gc_log(self, artifact: Artifact) -> None:
        """Show the tail of a GC log."""
        self._terminal.info(f"GC Log: {artifact.path.name}")
        self._terminal.warn(f"File size: {format_bytes(artifact.size)}")
        self._terminal.say()
        if not self._terminal.confirm(f"Would you like to view the last {GC_LOG_PREVIEW_LINES} lines of the GC log?"):
            self._terminal.warn(f"GC log location: {artifact.path}")
            return
        self._print_preview(f"GC log (last {GC_LOG_PREVIEW_LINES} lines):", tail(artifact.path, GC_LOG_PREVIEW_LINES))

    def _describe_export(self, artifact: Artifact) -> None:
        """Report the size of a telemetry export and how to import it."""
        self._terminal.info(f"OTLP Export: {artifact.path.name}")
        self._terminal.warn(f"File size: {format_bytes(artifact.size)}")
        self._terminal.say()
        self._terminal.info("This is an OpenTelemetry OTLP export file")
        self._terminal.warn("You can import this into OpenTelemetry-compatible systems")
        self._terminal.warn(f"File location: {artifact.path}")

    def _print_preview(self, title: str, lines: list[str]) -> None:
        """Print preview lines between separators."""
        self._terminal.info(title)
        self._terminal.say("====================")
        for line in lines:
            self._terminal.say(line)
        self._terminal.say("====================")


def head(path: Path, limit: int) -> list[str]:
    """Return the first lines of a text file."""
    lines = []
    try:
        with path.open(errors="replace") as handle:
            for line in handle:
                if len(lines) >= limit:
                    break
                lines.append(line.rstrip("\n"))
    except OSError as exc:
        raise ArtifactError(f"Cannot read {path.name}: {exc}", [f"File location: {path}"]) from exc
    return lines


def tail(path: Path, limit: int) -> list[str]:
    """Return the last lines of a text file."""
    try:
        with path.open(errors="replace") as handle:
            return [line.rstrip("\n") for line in deque(handle, maxlen=limit)]
    except OSError as exc:
        raise ArtifactError(f"Cannot read {path.name}: {exc}", [f"File location: {path}"]) from exc


def count_lines(path: Path) -> int:
    """Count the lines of a text file."""
    try:
        with path.open(errors="replace") as handle:
            return sum(1 for _ in handle)
    except OSError as exc:
        raise ArtifactError(f"Cannot read {path.name}: {exc}", [f"File location: {path}"]) from exc
