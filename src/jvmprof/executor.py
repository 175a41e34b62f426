"""Execution of profiling actions against the target process."""

import logging
import re
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from functools import singledispatchmethod
from pathlib import Path

from jvmprof.actions import (
    AllEvents,
    CompositeMemoryWorkflow,
    FallbackSampling,
    GcLogCollection,
    Heatmap,
    JfrRecordingAction,
    MethodTracing,
    SamplingAction,
    StructuredRecording,
    TelemetryExport,
    ThreadDump,
)
from jvmprof.artifacts import RECORDING_VIEWERS, convert_recording
from jvmprof.errors import ActionError, ArtifactError, ToolInvocationFailed, ToolUnavailable
from jvmprof.models import Session, TargetProcess, ToolInstallation, timestamp_token
from jvmprof.runner import NOT_FOUND_EXIT, CommandRunner
from jvmprof.strategies import Strategy, StrategyOutcome, run_strategies
from jvmprof.terminal import Terminal

logger = logging.getLogger(__name__)

DEFAULT_JAVA_VERSION = 17
GC_POLL_INTERVAL = 1
GC_PROGRESS_INTERVAL = 10

_VM_VERSION_RE = re.compile(r"(?:JDK|version)\s+(?:1\.)?(\d+)")
_CMDLINE_VERSION_RE = re.compile(r"j(?:dk|ava)-?(\d+)")

ALTERNATIVE_ACTION = "Alternative: Try option 2 (Memory Allocation Profiling) which works on all platforms"

GC_FAILURE_HINTS = (
    "The JVM doesn't have GC logging enabled",
    "Insufficient permissions to access GC logs",
    "The Java version doesn't support dynamic GC logging",
)


@dataclass(slots=True, frozen=True)
class ActionResult:
    """Files produced by one action."""

    title: str
    artifacts: tuple[Path, ...] = ()
    detail: str = ""


@dataclass(slots=True, frozen=True)
class _Run:
    """Per-execution context shared by the handlers."""

    target: TargetProcess
    installation: ToolInstallation
    results_dir: Path
    token: str

    def path(self, slug: str, extension: str) -> Path:
        """Artifact path `{slug}-{token}.{extension}` in the results directory."""
        return self.results_dir / f"{slug}-{self.token}.{extension}"


def resolve_duration(
    value: int | str | None,
    default: int,
    unit: str = "seconds",
    warn: Callable[[str], None] | None = None,
) -> int:
    """
    Validate a duration entered by the operator.

    Empty input selects the default silently. Non-numeric or non-positive
    input selects the default with a warning.

    Args:
        value: Raw duration, as typed or as passed programmatically.
        default: Documented default of the action.
        unit: Unit name used in the warning.
        warn: Called with the warning text, in addition to logging it.
    """
    if value is None:
        return default
    if isinstance(value, bool):
        parsed = None
    elif isinstance(value, int):
        parsed = value
    else:
        text = value.strip()
        if not text:
            return default
        parsed = int(text) if text.isascii() and text.isdigit() else None

    if parsed is not None and parsed >= 1:
        return parsed

    message = f"Invalid duration {value!r}. Using default {default} {unit}."
    logger.warning(message)
    if warn is not None:
        warn(message)
    return default


def wait_with_progress(
    seconds: int,
    interval: int,
    sleep: Callable[[float], None],
    on_tick: Callable[[int], None],
) -> None:
    """
    Block for a number of seconds, calling on_tick after each interval.

    Args:
        seconds: Total time to wait.
        interval: Seconds between progress callbacks.
        sleep: Sleep function.
        on_tick: Receives the seconds remaining.
    """
    remaining = seconds
    while remaining > 0:
        step = min(interval, remaining)
        sleep(step)
        remaining -= step
        on_tick(remaining)


def sampling_remediation(platform: str) -> list[str]:
    """Remediation lines for a failed async-profiler run."""
    if platform == "macos":
        lines = [
            "On macOS, some profiling modes have limitations",
            "Try using --all-user flag for CPU profiling",
            "Use allocation profiling instead of native memory profiling",
        ]
    else:
        lines = [
            "Check if you have sufficient permissions: sudo sysctl kernel.perf_event_paranoid=1",
            "sudo sysctl kernel.kptr_restrict=0",
            "Try running with sudo for full system profiling",
            "Use --all-user flag to profile only user-space code",
        ]
    return [*lines, ALTERNATIVE_ACTION]


class ActionExecutor:
    """Runs profiling actions, one handler per action family."""

    def __init__(
        self,
        runner: CommandRunner,
        terminal: Terminal,
        platform: str,
        sleep: Callable[[float], None] = time.sleep,
        now: Callable[[], datetime] = datetime.now,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the executor.

        Args:
            runner: Runs asprof, jcmd, jstat and jstack.
            terminal: Operator terminal for progress and warnings.
            platform: Platform tag from detect_platform.
            sleep: Sleep function used for timed waits.
            now: Clock used for timestamp tokens and log lines.
            monotonic: Clock used for polling deadlines.
        """
        self._runner = runner
        self._terminal = terminal
        self._platform = platform
        self._sleep = sleep
        self._now = now
        self._monotonic = monotonic

    def execute(self, action, session: Session) -> ActionResult:
        """
        Run one action against the session's target.

        Raises:
            ActionError: The installation is not verified, no target is
                selected, or the action failed after all fallbacks.
        """
        if not session.installation.verified:
            raise ActionError(
                "async-profiler installation is not verified",
                ["Restart the session to provision async-profiler."],
            )
        if session.target is None:
            raise ActionError("No target process selected", ["Restart the session and select a process."])

        session.results_dir.mkdir(parents=True, exist_ok=True)
        run = _Run(
            target=session.target,
            installation=session.installation,
            results_dir=session.results_dir,
            token=timestamp_token(self._now()),
        )
        logger.info("Executing %s against pid %d", type(action).__name__, run.target.pid)
        return self._handle(action, run)

    @singledispatchmethod
    def _handle(self, action, run: _Run) -> ActionResult:
        raise TypeError(f"Unsupported action: {type(action).__name__}")

    @_handle.register
    def _(self, action: SamplingAction, run: _Run) -> ActionResult:
        duration = self._duration(action.duration, action.default_duration)
        output = run.path(action.slug, "html")
        self._terminal.success(f"Starting {action.title} for {duration} seconds...")
        self._sample(
            run,
            output,
            duration,
            event=action.event,
            extra_flags=action.extra_flags,
            user_space=action.user_space_on_macos,
        )
        self._terminal.success(f"Flame graph created: {output.name}")
        return ActionResult(action.title, (output,))

    @_handle.register
    def _(self, action: CompositeMemoryWorkflow, run: _Run) -> ActionResult:
        self._terminal.success(f"Starting {action.title}...")
        produced: list[Path] = []
        for number, step in enumerate(action.steps, start=1):
            self._terminal.info(f"Step {number}: {step.title} ({step.duration}s)...")
            output = run.path(step.slug, "html")
            try:
                self._sample(run, output, step.duration, event=step.event, extra_flags=step.extra_flags)
            except ActionError as exc:
                logger.warning("Composite step %s failed: %s", step.slug, exc.message)
                self._terminal.warn(f"Step {number} failed, skipping: {exc.message}")
                continue
            produced.append(output)

        if not produced:
            raise ToolInvocationFailed(
                f"{action.title} failed: no step completed",
                sampling_remediation(self._platform),
            )
        self._terminal.success("Complete memory analysis finished! Check these files:")
        for path in produced:
            self._terminal.say(f"- {path.name}")
        return ActionResult(action.title, tuple(produced))

    @_handle.register
    def _(self, action: StructuredRecording, run: _Run) -> ActionResult:
        duration = self._duration(action.duration, action.default_duration)
        output = run.results_dir / f"recording-{duration}s-{run.token}.jfr"
        self._terminal.info(f"Starting JFR recording for {duration} seconds...")
        self._sample(run, output, duration, output_format="jfr")
        self._terminal.success(f"JFR recording completed: {output.name}")
        self._terminal.warn("You can analyze this JFR file with:")
        for viewer in RECORDING_VIEWERS:
            self._terminal.say(f"  - {viewer}")
        return ActionResult(action.title, (output,))

    @_handle.register
    def _(self, action: Heatmap, run: _Run) -> ActionResult:
        duration = self._duration(action.duration, action.default_duration)
        recording = run.path("profile", "jfr")
        heatmap = run.path("heatmap-cpu", "html")
        self._terminal.info("Step 1: Generating JFR recording...")
        self._sample(run, recording, duration, output_format="jfr")
        self._terminal.info("Step 2: Converting JFR to heatmap...")
        produced = self._convert(run, recording, heatmap, mode="heatmap")
        if heatmap in produced:
            self._terminal.success(f"Heatmap generated: {heatmap.name}")
        return ActionResult(action.title, produced)

    @_handle.register
    def _(self, action: AllEvents, run: _Run) -> ActionResult:
        duration = self._duration(action.duration, action.default_duration)
        recording = run.path("all-events", "jfr")
        flame_graph = run.path("all-events", "html")
        self._terminal.info("This will collect all possible events simultaneously (CPU, alloc, lock, wall)")
        self._terminal.info("Step 1: Recording all events to JFR format...")
        self._sample(run, recording, duration, extra_flags=("--all",), output_format="jfr")
        self._terminal.info("Step 2: Converting JFR to HTML flame graph...")
        produced = self._convert(run, recording, flame_graph, mode="html")

        self._terminal.success("All events profiling completed!")
        self._terminal.warn("Generated files:")
        self._terminal.say(f"  - JFR recording: {recording}")
        if flame_graph in produced:
            self._terminal.say(f"  - HTML flame graph: {flame_graph}")
        else:
            self._terminal.say("  - HTML conversion skipped (use JFR analysis tools instead)")
        return ActionResult(action.title, produced)

    @_handle.register
    def _(self, action: TelemetryExport, run: _Run) -> ActionResult:
        duration = self._duration(action.duration, action.default_duration)
        output = run.path("otlp-export", "json")
        self._terminal.info("Generating OTLP format for OpenTelemetry integration...")
        self._sample(run, output, duration, output_format="otlp")
        self._terminal.success(f"OTLP export completed: {output.name}")
        self._terminal.warn("This file can be imported into OpenTelemetry-compatible systems")
        self._terminal.info(f"File size: {output.stat().st_size} bytes")
        return ActionResult(action.title, (output,))

    @_handle.register
    def _(self, action: JfrRecordingAction, run: _Run) -> ActionResult:
        self._terminal.success(f"Starting {action.title}...")
        gate = self.unmet_gate(action, run.target)
        if gate is not None:
            self._terminal.warn(gate)
            self._terminal.info("Falling back to standard async-profiler profiling...")
            fallback = action.gate_fallback or action.failure_fallback
            output = self._fallback_sample(run, fallback, action.default_duration * action.seconds_per_unit)
            return ActionResult(action.title, (output,), detail=gate)

        amount = self._duration(action.duration, action.default_duration, action.duration_unit)
        seconds = amount * action.seconds_per_unit
        recording = run.path(action.slug, "jfr")
        if isinstance(action, MethodTracing):
            self._terminal.info(f"Method pattern: {action.pattern}")
        if action.retention is not None:
            self._terminal.info(
                f"Max size: {action.retention.max_size}, Max age: {action.retention.max_age}"
            )

        def with_jcmd() -> StrategyOutcome:
            return self._jfr_recording(run, action, recording, seconds)

        def with_async_profiler() -> StrategyOutcome:
            output = self._fallback_sample(run, action.failure_fallback, seconds)
            return StrategyOutcome.success(output)

        def announce_fallback(strategy: Strategy, outcome: StrategyOutcome) -> None:
            if strategy.name == "jcmd":
                self._terminal.warn(f"jcmd failed ({outcome.detail}), falling back to async-profiler...")

        outcome = run_strategies(
            [Strategy("jcmd", with_jcmd), Strategy("async-profiler", with_async_profiler)],
            on_failure=announce_fallback,
        )
        if outcome.strategy == "jcmd":
            self._terminal.success(f"{action.title} completed: {recording.name}")
            if action.note:
                self._terminal.info(action.note)
        return ActionResult(action.title, outcome.artifacts, outcome.detail)

    @_handle.register
    def _(self, action: GcLogCollection, run: _Run) -> ActionResult:
        duration = self._duration(action.duration, action.default_duration)
        output = run.results_dir / f"gc-{duration}s-{run.token}.log"
        self._terminal.success("Collecting Garbage Collection Logs...")
        self._terminal.info(f"Collecting GC logs for {duration} seconds...")

        def announce_fallback(strategy: Strategy, outcome: StrategyOutcome) -> None:
            if strategy.name == "jcmd":
                self._terminal.warn("jcmd approach failed, using jstat for GC monitoring...")

        outcome = run_strategies(
            [
                Strategy("jcmd", lambda: self._gc_log_via_jcmd(run, output, duration)),
                Strategy("jstat", lambda: self._gc_log_via_jstat(run, output, duration)),
            ],
            on_failure=announce_fallback,
        )
        if not outcome.succeeded:
            output.unlink(missing_ok=True)
            raise ToolInvocationFailed(
                f"GC log collection failed: {outcome.detail}",
                [f"This might happen if: {hint}" for hint in GC_FAILURE_HINTS],
            )
        if not outcome.artifacts:
            self._terminal.warn("No GC activity was recorded during the collection window")
            return ActionResult(action.title, (), outcome.detail)

        lines = output.read_text(errors="replace").splitlines()
        self._terminal.success(f"GC log collection completed: {output.name}")
        self._terminal.warn("Log summary:")
        self._terminal.say(f"  File: {output}")
        self._terminal.say(f"  Size: {len(lines)} lines")
        self._terminal.say(f"  Duration: {duration} seconds")
        self._terminal.info("Sample log entries (first 5 lines):")
        for line in lines[:5]:
            self._terminal.say(line)
        return ActionResult(action.title, outcome.artifacts)

    @_handle.register
    def _(self, action: ThreadDump, run: _Run) -> ActionResult:
        output = run.path("threaddump", "txt")
        self._terminal.success("Creating Thread Dump...")

        def with_jstack() -> StrategyOutcome:
            jstack = self._runner.which("jstack")
            if jstack is None:
                return StrategyOutcome.failure("jstack not available")
            self._terminal.info("Using jstack to generate thread dump...")
            result = self._runner.run([jstack, str(run.target.pid)], stdout_path=output)
            return _file_outcome(result.returncode, output)

        def with_async_profiler() -> StrategyOutcome:
            self._terminal.info("Using async-profiler to capture thread stacks...")
            argv = self._asprof_argv(run, output, 1, event="cpu", output_format="text")
            result = self._runner.run(argv)
            return _file_outcome(result.returncode, output)

        def announce_fallback(strategy: Strategy, outcome: StrategyOutcome) -> None:
            if strategy.name == "jstack":
                self._terminal.warn(f"{outcome.detail}, trying async-profiler...")

        outcome = run_strategies(
            [Strategy("jstack", with_jstack), Strategy("async-profiler", with_async_profiler)],
            on_failure=announce_fallback,
        )
        if not outcome.succeeded:
            output.unlink(missing_ok=True)
            raise ToolInvocationFailed(
                "Thread dump failed with both jstack and async-profiler",
                ["Make sure the target JVM is running as the same user.", *sampling_remediation(self._platform)],
            )
        line_count = len(output.read_text(errors="replace").splitlines())
        self._terminal.success(f"Thread dump completed: {output.name} ({line_count} lines)")
        return ActionResult(action.title, outcome.artifacts)

    def detect_java_version(self, target: TargetProcess) -> int:
        """
        Return the major Java version of the target.

        Asks the JVM through `jcmd VM.version`, then looks for a version in
        the command line, and assumes 17 when both fail.
        """
        jcmd = self._runner.which("jcmd")
        if jcmd is not None:
            result = self._runner.run([jcmd, str(target.pid), "VM.version"])
            if result.ok:
                match = _VM_VERSION_RE.search(result.stdout)
                if match:
                    return int(match.group(1))
        match = _CMDLINE_VERSION_RE.search(target.command_line)
        if match:
            return int(match.group(1))
        logger.info("Could not detect Java version of pid %d, assuming %d", target.pid, DEFAULT_JAVA_VERSION)
        return DEFAULT_JAVA_VERSION

    def _duration(self, value, default: int, unit: str = "seconds") -> int:
        return resolve_duration(value, default, unit, warn=self._terminal.warn)

    def unmet_gate(
        self, action: JfrRecordingAction | type[JfrRecordingAction], target: TargetProcess
    ) -> str | None:
        """Describe the version or platform requirement the target misses, if any."""
        if action.min_java is not None:
            version = self.detect_java_version(target)
            if version < action.min_java:
                return f"This feature requires Java {action.min_java}+. Current version: {version}"
        if action.linux_only and not self._platform.startswith("linux"):
            return f"{action.title} is only available on Linux"
        return None

    def _asprof_argv(
        self,
        run: _Run,
        output: Path,
        duration: int,
        event: str | None = None,
        extra_flags: tuple[str, ...] = (),
        output_format: str | None = None,
        user_space: bool = False,
    ) -> list[str]:
        argv = [str(run.installation.asprof)]
        if event is not None:
            argv += ["-e", event]
        argv += ["-d", str(duration), *extra_flags]
        if user_space and self._platform == "macos":
            argv.append("--all-user")
        if output_format is not None:
            argv += ["-o", output_format]
        argv += ["-f", str(output), str(run.target.pid)]
        return argv

    def _sample(
        self,
        run: _Run,
        output: Path,
        duration: int,
        event: str | None = None,
        extra_flags: tuple[str, ...] = (),
        output_format: str | None = None,
        user_space: bool = False,
    ) -> Path:
        """
        Run async-profiler and return the output path.

        Raises:
            ToolUnavailable: asprof is missing from the installation.
            ToolInvocationFailed: asprof failed or wrote nothing.
        """
        argv = self._asprof_argv(run, output, duration, event, extra_flags, output_format, user_space)
        result = self._runner.run(argv)
        if result.returncode == NOT_FOUND_EXIT:
            raise ToolUnavailable(
                f"asprof not found at {run.installation.asprof}",
                [f"Delete {run.installation.install_dir} and restart the session to reinstall async-profiler."],
            )
        if not result.ok:
            raise ToolInvocationFailed(
                f"Profiling failed with exit code: {result.returncode}",
                sampling_remediation(self._platform),
            )
        if not output.is_file():
            raise ToolInvocationFailed(
                f"Profiling produced no output file: {output.name}",
                sampling_remediation(self._platform),
            )
        return output

    def _fallback_sample(self, run: _Run, fallback: FallbackSampling, seconds: int) -> Path:
        duration = fallback.duration or seconds
        extension = "jfr" if fallback.output_format == "jfr" else "html"
        output = run.path(fallback.slug, extension)
        output_format = None if fallback.output_format == "html" else fallback.output_format
        self._sample(run, output, duration, fallback.event, fallback.extra_flags, output_format)
        self._terminal.success(f"Fallback profiling completed: {output.name}")
        return output

    def _convert(self, run: _Run, recording: Path, destination: Path, mode: str) -> tuple[Path, ...]:
        """Convert a recording, keeping the recording when conversion is impossible."""
        try:
            outcome = convert_recording(run.installation, self._runner, recording, destination, mode)
        except ArtifactError as exc:
            self._terminal.report(exc)
            return (recording,)
        if not outcome.succeeded:
            destination.unlink(missing_ok=True)
            self._terminal.warn(f"Conversion failed ({outcome.detail}). Recording kept: {recording.name}")
            return (recording,)
        return (recording, destination)

    def _jfr_recording(self, run: _Run, action: JfrRecordingAction, recording: Path, seconds: int) -> StrategyOutcome:
        """Start a named recording with jcmd, wait for it, then stop it."""
        jcmd = self._runner.which("jcmd")
        if jcmd is None:
            return StrategyOutcome.failure("jcmd not found")

        pid = str(run.target.pid)
        argv = [jcmd, pid, "JFR.start", f"name={action.recording_name}", f"duration={seconds}s"]
        if action.settings is not None:
            argv.append(f"settings={action.settings}")
        if action.retention is not None:
            argv += action.retention.render()
        argv += [toggle.render() for toggle in action.events if toggle.enabled]
        argv.append(f"filename={recording}")

        result = self._runner.run(argv)
        if not result.ok:
            return StrategyOutcome.failure(f"JFR.start exited with status {result.returncode}")

        self._terminal.success("JFR recording started successfully")
        if action.duration_unit == "minutes":
            self._terminal.say(f"Recording for {seconds // 60} minutes...")

            def progress(remaining: int) -> None:
                self._terminal.info(f"Recording... {remaining // 60} minutes remaining")

        else:
            self._terminal.say(f"Recording for {seconds} seconds...")

            def progress(remaining: int) -> None:
                self._terminal.tick()

        wait_with_progress(seconds, action.tick_seconds, self._sleep, progress)
        self._terminal.say()

        stop = self._runner.run([jcmd, pid, "JFR.stop", f"name={action.recording_name}"])
        if not stop.ok:
            # the recording also ends on its own once the duration elapses
            logger.warning("JFR.stop for %s exited with status %d", action.recording_name, stop.returncode)
        return StrategyOutcome.success(recording)

    def _gc_log_via_jcmd(self, run: _Run, output: Path, duration: int) -> StrategyOutcome:
        """Enable GC logging into the output file through unified logging."""
        jcmd = self._runner.which("jcmd")
        if jcmd is None:
            return StrategyOutcome.failure("jcmd not found")

        pid = str(run.target.pid)
        self._terminal.info("Attempting to enable GC logging via jcmd...")
        result = self._runner.run([jcmd, pid, "VM.log", f"output={output}", "what=gc"])
        if not result.ok:
            output.unlink(missing_ok=True)
            return StrategyOutcome.failure(f"VM.log exited with status {result.returncode}")

        self._terminal.success("GC logging enabled via jcmd")
        wait_with_progress(duration, GC_PROGRESS_INTERVAL, self._sleep, lambda remaining: self._terminal.tick())
        self._terminal.say()
        self._runner.run([jcmd, pid, "VM.log", f"output={output}", "what=all=off"])

        if output.is_file() and output.stat().st_size > 0:
            return StrategyOutcome.success(output)
        output.unlink(missing_ok=True)
        return StrategyOutcome.success(detail="no GC activity recorded")

    def _gc_log_via_jstat(self, run: _Run, output: Path, duration: int) -> StrategyOutcome:
        """
        Poll `jstat -gc` once per second and write the samples as CSV.

        The file is only created once the first sample arrives.
        """
        jstat = self._runner.which("jstat")
        if jstat is None:
            return StrategyOutcome.failure("jstat not found")

        self._terminal.info("Using jstat to collect GC statistics...")
        samples = 0
        deadline = self._monotonic() + duration
        while self._monotonic() < deadline:
            result = self._runner.run([jstat, "-gc", str(run.target.pid)])
            lines = [line for line in result.stdout.splitlines() if line.strip()]
            if result.ok and len(lines) >= 2:
                stamp = self._now().strftime("%Y-%m-%d %H:%M:%S")
                with output.open("a") as log:
                    if samples == 0:
                        log.write("# GC Statistics collected via jstat\n")
                        log.write(f"# Timestamp,{','.join(lines[0].split())}\n")
                    log.write(f"{stamp},{','.join(lines[-1].split())}\n")
                samples += 1
            self._sleep(GC_POLL_INTERVAL)

        if samples == 0:
            return StrategyOutcome.failure("jstat returned no samples")
        self._terminal.success("GC statistics collection completed")
        return StrategyOutcome.success(output, detail=f"{samples} samples")


def _file_outcome(returncode: int, output: Path) -> StrategyOutcome:
    """Success only for exit status 0 and a non-empty output file."""
    if returncode == 0 and output.is_file() and output.stat().st_size > 0:
        return StrategyOutcome.success(output)
    return StrategyOutcome.failure(f"exited with status {returncode}")
