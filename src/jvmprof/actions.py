"""Catalog of profiling actions.

Each action is an immutable record carrying its own parameters. The
executor has one handler per action family; the menu maps numbers to
builders that prompt for parameters and return an action.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import ClassVar, Union

from jvmprof.models import ProblemCategory
from jvmprof.terminal import Terminal

Duration = int | str | None


@dataclass(slots=True, frozen=True)
class EventToggle:
    """One JFR event setting, rendered as `name#key=value,...`."""

    name: str
    enabled: bool = True
    threshold: str | None = None
    stack_trace: bool | None = None
    period: str | None = None
    throttle: str | None = None
    cutoff: str | None = None

    def render(self) -> str:
        """Render the toggle as a jcmd JFR.start argument."""
        parts = [f"enabled={_flag(self.enabled)}"]
        if self.threshold is not None:
            parts.append(f"threshold={self.threshold}")
        if self.stack_trace is not None:
            parts.append(f"stackTrace={_flag(self.stack_trace)}")
        if self.period is not None:
            parts.append(f"period={self.period}")
        if self.throttle is not None:
            parts.append(f"throttle={self.throttle}")
        if self.cutoff is not None:
            parts.append(f"cutoff={self.cutoff}")
        return f"{self.name}#{','.join(parts)}"


@dataclass(slots=True, frozen=True)
class RetentionPolicy:
    """Size and age bounds of a disk-backed recording."""

    max_size: str
    max_age: str
    disk: bool = True

    def render(self) -> list[str]:
        """Render the policy as jcmd JFR.start arguments."""
        return [f"disk={_flag(self.disk)}", f"maxsize={self.max_size}", f"maxage={self.max_age}"]


def _flag(value: bool) -> str:
    """Render a boolean the way jcmd expects it."""
    return "true" if value else "false"


def _toggles(*names: str, **settings) -> tuple[EventToggle, ...]:
    """Build toggles sharing the same settings."""
    return tuple(EventToggle(name, **settings) for name in names)


ENHANCED_MEMORY_EVENTS = _toggles(
    "jdk.ObjectAllocationInNewTLAB",
    "jdk.ObjectAllocationOutsideTLAB",
    "jdk.ObjectAllocationSample",
    "jdk.GCHeapSummary",
    "jdk.GCConfiguration",
    "jdk.YoungGenerationConfiguration",
    "jdk.OldGenerationConfiguration",
    "jdk.GCCollectorG1GC",
    "jdk.G1HeapRegionInformation",
)

CPU_TIME_EVENTS = _toggles(
    "jdk.CPUTimeSample",
    "jdk.ExecutionSample",
    "jdk.NativeMethodSample",
    "jdk.ThreadCPULoad",
)

METHOD_TRACING_EVENTS = (
    EventToggle("jdk.MethodSample"),
    EventToggle("jdk.MethodEntry", threshold="1ms"),
    EventToggle("jdk.MethodExit", threshold="1ms"),
    EventToggle("jdk.ExecutionSample"),
)

ADVANCED_EVENTS = (
    EventToggle("jdk.ObjectAllocationInNewTLAB"),
    EventToggle("jdk.ObjectAllocationOutsideTLAB"),
    EventToggle("jdk.ObjectAllocationSample", throttle="1000/s"),
    EventToggle("jdk.GCHeapSummary"),
    EventToggle("jdk.GCConfiguration"),
    EventToggle("jdk.ExecutionSample"),
    EventToggle("jdk.ThreadCPULoad"),
    EventToggle("jdk.ThreadContextSwitchRate"),
    *_toggles(
        "jdk.JavaMonitorEnter",
        "jdk.JavaMonitorWait",
        "jdk.ThreadPark",
        "jdk.SocketRead",
        "jdk.SocketWrite",
        "jdk.FileRead",
        "jdk.FileWrite",
        threshold="10ms",
    ),
)

ALLOCATION_BUFFER_EVENTS = (
    *_toggles(
        "jdk.ObjectAllocationInNewTLAB",
        "jdk.ObjectAllocationOutsideTLAB",
        "jdk.ObjectAllocationSample",
        stack_trace=True,
    ),
    EventToggle("jdk.TLABAllocation"),
    EventToggle("jdk.TLABWaste"),
    EventToggle("jdk.GCHeapSummary", period="10s"),
    EventToggle("jdk.GCCollectorG1GC"),
    EventToggle("jdk.G1HeapRegionInformation"),
    EventToggle("jdk.G1HeapRegionTypeChange"),
    EventToggle("jdk.OldObjectSample", cutoff="0ms"),
    EventToggle("jdk.ClassLoaderStatistics", period="30s"),
)


# Sampling actions (async-profiler)


@dataclass(slots=True, frozen=True)
class SamplingAction:
    """A single async-profiler run producing an HTML flame graph."""

    duration: Duration = None

    title: ClassVar[str] = "CPU Profiling"
    slug: ClassVar[str] = "cpu-flamegraph"
    default_duration: ClassVar[int] = 30
    event: ClassVar[str | None] = None
    extra_flags: ClassVar[tuple[str, ...]] = ()
    user_space_on_macos: ClassVar[bool] = False


@dataclass(slots=True, frozen=True)
class CpuSample(SamplingAction):
    """CPU flame graph, restricted to user space on macOS."""

    user_space_on_macos: ClassVar[bool] = True


@dataclass(slots=True, frozen=True)
class AllocSample(SamplingAction):
    """Heap allocation flame graph."""

    title: ClassVar[str] = "Memory Allocation Profiling"
    slug: ClassVar[str] = "allocation-flamegraph"
    event: ClassVar[str | None] = "alloc"


@dataclass(slots=True, frozen=True)
class LockSample(SamplingAction):
    """Lock contention flame graph."""

    title: ClassVar[str] = "Lock Contention Profiling"
    slug: ClassVar[str] = "lock-flamegraph"
    event: ClassVar[str | None] = "lock"


@dataclass(slots=True, frozen=True)
class WallClock(SamplingAction):
    """Wall-clock flame graph, including threads that are blocked or sleeping."""

    title: ClassVar[str] = "Wall Clock Profiling"
    slug: ClassVar[str] = "wall-flamegraph"
    event: ClassVar[str | None] = "wall"


@dataclass(slots=True, frozen=True)
class NativeMemory(SamplingAction):
    """Flame graph of native (malloc) allocations."""

    title: ClassVar[str] = "Native Memory Profiling"
    slug: ClassVar[str] = "native-memory"
    event: ClassVar[str | None] = "nativemem"


@dataclass(slots=True, frozen=True)
class InvertedFlame(SamplingAction):
    """CPU flame graph drawn with callers at the top."""

    title: ClassVar[str] = "Inverted Flame Graph"
    slug: ClassVar[str] = "inverted-flamegraph"
    extra_flags: ClassVar[tuple[str, ...]] = ("--inverted",)


@dataclass(slots=True, frozen=True)
class CustomDurationCpu(SamplingAction):
    """CPU flame graph for a duration chosen by the operator."""

    title: ClassVar[str] = "Custom Duration CPU Profiling"
    user_space_on_macos: ClassVar[bool] = True


@dataclass(slots=True, frozen=True)
class LeakDetection(SamplingAction):
    """Long allocation run sampling every megabyte to expose leaks."""

    title: ClassVar[str] = "Memory Leak Detection"
    slug: ClassVar[str] = "memory-leak"
    default_duration: ClassVar[int] = 300
    event: ClassVar[str | None] = "alloc"
    extra_flags: ClassVar[tuple[str, ...]] = ("--alloc", "1m")


@dataclass(slots=True, frozen=True)
class CompositeStep:
    """One sub-run of a composite workflow."""

    title: str
    slug: str
    duration: int
    event: str | None = "alloc"
    extra_flags: tuple[str, ...] = ()


MEMORY_WORKFLOW_STEPS = (
    CompositeStep("Quick memory allocation baseline", "memory-baseline", 30),
    CompositeStep("Heap profiling", "heap-analysis", 60),
    CompositeStep("Memory leak detection", "memory-leak-complete", 300, extra_flags=("--alloc", "1m")),
)


@dataclass(slots=True, frozen=True)
class CompositeMemoryWorkflow:
    """Baseline, heap and leak runs under one timestamp token."""

    steps: tuple[CompositeStep, ...] = MEMORY_WORKFLOW_STEPS

    title: ClassVar[str] = "Complete Memory Analysis Workflow"


# Recording and export actions (async-profiler output formats)


@dataclass(slots=True, frozen=True)
class StructuredRecording:
    """async-profiler run written as a JFR file."""

    duration: Duration = None

    title: ClassVar[str] = "JFR Recording"
    default_duration: ClassVar[int] = 60


@dataclass(slots=True, frozen=True)
class Heatmap:
    """JFR recording converted to an interactive heatmap."""

    duration: Duration = None

    title: ClassVar[str] = "Interactive Heatmap"
    default_duration: ClassVar[int] = 60


@dataclass(slots=True, frozen=True)
class AllEvents:
    """CPU, allocation and lock events in one JFR file."""

    duration: Duration = None

    title: ClassVar[str] = "All Events Profiling"
    default_duration: ClassVar[int] = 30


@dataclass(slots=True, frozen=True)
class TelemetryExport:
    """Profile exported in OpenTelemetry OTLP format."""

    duration: Duration = None

    title: ClassVar[str] = "OpenTelemetry OTLP Export"
    default_duration: ClassVar[int] = 60


# Recordings driven through jcmd


@dataclass(slots=True, frozen=True)
class FallbackSampling:
    """async-profiler run used when a jcmd recording is not possible.

    A duration of None reuses the duration resolved for the recording.
    """

    slug: str
    event: str | None = None
    extra_flags: tuple[str, ...] = ()
    output_format: str = "html"
    duration: int | None = None


@dataclass(slots=True, frozen=True)
class JfrRecordingAction:
    """A named JFR recording started and stopped through jcmd."""

    duration: Duration = None
    events: tuple[EventToggle, ...] = ()
    retention: RetentionPolicy | None = None

    title: ClassVar[str] = "JFR Recording"
    slug: ClassVar[str] = "recording"
    recording_name: ClassVar[str] = "recording"
    default_duration: ClassVar[int] = 60
    duration_unit: ClassVar[str] = "seconds"
    settings: ClassVar[str | None] = None
    min_java: ClassVar[int | None] = None
    linux_only: ClassVar[bool] = False
    tick_seconds: ClassVar[int] = 10
    gate_fallback: ClassVar[FallbackSampling | None] = None
    failure_fallback: ClassVar[FallbackSampling] = FallbackSampling("recording-fallback")
    note: ClassVar[str] = ""

    @property
    def seconds_per_unit(self) -> int:
        """Seconds in one unit of the duration prompt."""
        return 60 if self.duration_unit == "minutes" else 1


@dataclass(slots=True, frozen=True)
class EnhancedMemoryRecording(JfrRecordingAction):
    """Allocation, TLAB and GC events on Java 21+."""

    events: tuple[EventToggle, ...] = ENHANCED_MEMORY_EVENTS

    title: ClassVar[str] = "Enhanced JFR Memory Profiling"
    slug: ClassVar[str] = "enhanced-memory"
    recording_name: ClassVar[str] = "memory-analysis"
    default_duration: ClassVar[int] = 120
    settings: ClassVar[str | None] = "profile"
    min_java: ClassVar[int | None] = 21
    tick_seconds: ClassVar[int] = 10
    gate_fallback: ClassVar[FallbackSampling | None] = FallbackSampling("memory-fallback", "alloc", duration=60)
    failure_fallback: ClassVar[FallbackSampling] = FallbackSampling("memory-enhanced-fallback", "alloc")


@dataclass(slots=True, frozen=True)
class CpuTimeSampling(JfrRecordingAction):
    """CPU-time sampling recording, Java 25+ on Linux."""

    events: tuple[EventToggle, ...] = CPU_TIME_EVENTS

    title: ClassVar[str] = "Java 25 CPU-Time Profiling"
    slug: ClassVar[str] = "cpu-time-java25"
    recording_name: ClassVar[str] = "cpu-time-analysis"
    default_duration: ClassVar[int] = 60
    min_java: ClassVar[int | None] = 25
    linux_only: ClassVar[bool] = True
    tick_seconds: ClassVar[int] = 5
    gate_fallback: ClassVar[FallbackSampling | None] = FallbackSampling("cpu-fallback", duration=60)
    failure_fallback: ClassVar[FallbackSampling] = FallbackSampling("cpu-time-fallback")
    note: ClassVar[str] = "This recording includes native code execution time"


@dataclass(slots=True, frozen=True)
class MethodTracing(JfrRecordingAction):
    """Method timing and tracing on Java 25+."""

    events: tuple[EventToggle, ...] = METHOD_TRACING_EVENTS
    pattern: str = "*"

    title: ClassVar[str] = "Java 25 Method Tracing"
    slug: ClassVar[str] = "method-trace-java25"
    recording_name: ClassVar[str] = "method-trace-analysis"
    default_duration: ClassVar[int] = 30
    min_java: ClassVar[int | None] = 25
    tick_seconds: ClassVar[int] = 1
    gate_fallback: ClassVar[FallbackSampling | None] = FallbackSampling("method-fallback", duration=60)
    failure_fallback: ClassVar[FallbackSampling] = FallbackSampling("method-trace-fallback")
    note: ClassVar[str] = "This recording includes detailed method entry/exit timing"


@dataclass(slots=True, frozen=True)
class AdvancedCustomRecording(JfrRecordingAction):
    """I/O, locking, GC and allocation events with a retention policy."""

    events: tuple[EventToggle, ...] = ADVANCED_EVENTS
    retention: RetentionPolicy | None = RetentionPolicy("500MB", "10m")

    title: ClassVar[str] = "Advanced JFR with Custom Events"
    slug: ClassVar[str] = "advanced-custom"
    recording_name: ClassVar[str] = "advanced-analysis"
    default_duration: ClassVar[int] = 120
    tick_seconds: ClassVar[int] = 5
    failure_fallback: ClassVar[FallbackSampling] = FallbackSampling(
        "advanced-fallback", extra_flags=("--all",), output_format="jfr"
    )
    note: ClassVar[str] = "This recording includes I/O, locking, GC, and allocation events"


@dataclass(slots=True, frozen=True)
class AllocationBufferLeakAnalysis(JfrRecordingAction):
    """Long TLAB and old-object recording for leak hunting, measured in minutes."""

    events: tuple[EventToggle, ...] = ALLOCATION_BUFFER_EVENTS
    retention: RetentionPolicy | None = RetentionPolicy("1GB", "30m")

    title: ClassVar[str] = "JFR Memory Leak Analysis with TLAB tracking"
    slug: ClassVar[str] = "memory-leak-tlab"
    recording_name: ClassVar[str] = "memory-leak-analysis"
    default_duration: ClassVar[int] = 10
    duration_unit: ClassVar[str] = "minutes"
    tick_seconds: ClassVar[int] = 60
    failure_fallback: ClassVar[FallbackSampling] = FallbackSampling(
        "memory-leak-fallback", "alloc", ("--alloc", "1m")
    )
    note: ClassVar[str] = "Analyze with JProfiler, VisualVM, or Mission Control for leak detection"


# Diagnostics


@dataclass(slots=True, frozen=True)
class GcLogCollection:
    """Unified GC logging for a while, falling back to jstat polling."""

    duration: Duration = None

    title: ClassVar[str] = "Garbage Collection Log"
    default_duration: ClassVar[int] = 300


@dataclass(slots=True, frozen=True)
class ThreadDump:
    """Instant snapshot of every thread stack."""

    title: ClassVar[str] = "Thread Dump"


# Session-level actions


@dataclass(slots=True, frozen=True)
class ListArtifacts:
    """Browse the results directory."""

    title: ClassVar[str] = "View recent results"


@dataclass(slots=True, frozen=True)
class TerminateProcess:
    """Stop the target process."""

    title: ClassVar[str] = "Kill current process"


@dataclass(slots=True, frozen=True)
class Exit:
    """End the session."""

    title: ClassVar[str] = "Exit profiler"


ProfilingAction = Union[
    CpuSample,
    AllocSample,
    LockSample,
    WallClock,
    NativeMemory,
    InvertedFlame,
    CustomDurationCpu,
    LeakDetection,
    CompositeMemoryWorkflow,
    StructuredRecording,
    Heatmap,
    AllEvents,
    TelemetryExport,
    EnhancedMemoryRecording,
    CpuTimeSampling,
    MethodTracing,
    AdvancedCustomRecording,
    AllocationBufferLeakAnalysis,
    GcLogCollection,
    ThreadDump,
    ListArtifacts,
    TerminateProcess,
    Exit,
]


# Menu


@dataclass(slots=True, frozen=True)
class MenuEntry:
    """A numbered menu line and the builder producing its action."""

    number: int
    label: str
    tool: str
    section: str
    build: Callable[[Terminal], ProfilingAction] = field(repr=False)
    gated: type[JfrRecordingAction] | None = None

    def render(self) -> str:
        """Format the entry as a menu line."""
        return f"{self.number}. {self.label} [{self.tool}]"


def _ask_duration(default: int, unit: str = "seconds") -> Callable[[Terminal], str]:
    """Return a prompt asking for a duration with the given default."""

    def ask(terminal: Terminal) -> str:
        return terminal.ask(f"Enter duration in {unit} (default: {default}): ")

    return ask


def _build_custom_cpu(terminal: Terminal) -> CustomDurationCpu:
    """Ask for the CPU profiling duration."""
    return CustomDurationCpu(duration=terminal.ask("Enter duration in seconds (default: 30): "))


def _build_recording(terminal: Terminal) -> StructuredRecording:
    """Ask for the JFR recording duration."""
    return StructuredRecording(duration=_ask_duration(60)(terminal))


def _build_export(terminal: Terminal) -> TelemetryExport:
    """Ask for the OTLP export duration."""
    return TelemetryExport(duration=_ask_duration(60)(terminal))


def _build_enhanced_memory(terminal: Terminal) -> EnhancedMemoryRecording:
    """Ask for the memory recording duration."""
    return EnhancedMemoryRecording(duration=_ask_duration(120)(terminal))


def _build_cpu_time(terminal: Terminal) -> CpuTimeSampling:
    """Ask for the CPU-time recording duration."""
    return CpuTimeSampling(duration=_ask_duration(60)(terminal))


def _build_method_tracing(terminal: Terminal) -> MethodTracing:
    """Ask for the tracing duration and the method pattern."""
    duration = _ask_duration(30)(terminal)
    terminal.warn("Enter method pattern to trace (e.g., 'com.example.*' or '*' for all):")
    pattern = terminal.ask("Method pattern: ") or "*"
    return MethodTracing(duration=duration, pattern=pattern)


def _build_advanced(terminal: Terminal) -> AdvancedCustomRecording:
    """Ask for the duration and the retention limits."""
    duration = _ask_duration(120)(terminal)
    max_size = terminal.ask("Enter max recording size (e.g., 100MB, default: 500MB): ") or "500MB"
    max_age = terminal.ask("Enter max age for events (e.g., 5m, 1h, default: 10m): ") or "10m"
    return AdvancedCustomRecording(duration=duration, retention=RetentionPolicy(max_size, max_age))


def _build_allocation_buffer(terminal: Terminal) -> AllocationBufferLeakAnalysis:
    """Ask for the leak analysis duration in minutes."""
    return AllocationBufferLeakAnalysis(duration=_ask_duration(10, "minutes")(terminal))


def _build_gc_log(terminal: Terminal) -> GcLogCollection:
    """Ask for the GC log collection duration."""
    return GcLogCollection(duration=_ask_duration(300)(terminal))


ASYNC_PROFILER = "Async-Profiler"
JCMD = "jcmd"
SYSTEM = "System tools"

MENU = (
    MenuEntry(1, "CPU Profiling (30s)", ASYNC_PROFILER, ASYNC_PROFILER, lambda t: CpuSample()),
    MenuEntry(2, "Memory Allocation Profiling (30s)", ASYNC_PROFILER, ASYNC_PROFILER, lambda t: AllocSample()),
    MenuEntry(3, "Lock Contention Profiling (30s)", ASYNC_PROFILER, ASYNC_PROFILER, lambda t: LockSample()),
    MenuEntry(4, "Wall Clock Profiling (30s)", ASYNC_PROFILER, ASYNC_PROFILER, lambda t: WallClock()),
    MenuEntry(5, "Native Memory Profiling (30s)", ASYNC_PROFILER, ASYNC_PROFILER, lambda t: NativeMemory()),
    MenuEntry(6, "Inverted Flame Graph (30s)", ASYNC_PROFILER, ASYNC_PROFILER, lambda t: InvertedFlame()),
    MenuEntry(7, "Custom Duration CPU Profiling", ASYNC_PROFILER, ASYNC_PROFILER, _build_custom_cpu),
    MenuEntry(8, "Memory Leak Detection (5min)", ASYNC_PROFILER, ASYNC_PROFILER, lambda t: LeakDetection()),
    MenuEntry(
        9, "Complete Memory Analysis Workflow", ASYNC_PROFILER, ASYNC_PROFILER, lambda t: CompositeMemoryWorkflow()
    ),
    MenuEntry(10, "JFR Recording (custom duration)", ASYNC_PROFILER, ASYNC_PROFILER, _build_recording),
    MenuEntry(11, "Interactive Heatmap (60s)", "Async-Profiler + jfrconv", ASYNC_PROFILER, lambda t: Heatmap()),
    MenuEntry(12, "All Events Profiling (30s)", ASYNC_PROFILER, ASYNC_PROFILER, lambda t: AllEvents()),
    MenuEntry(13, "OpenTelemetry OTLP Export", ASYNC_PROFILER, ASYNC_PROFILER, _build_export),
    MenuEntry(
        14, "Enhanced JFR Memory Profiling (Java 21+)", JCMD, JCMD, _build_enhanced_memory, EnhancedMemoryRecording
    ),
    MenuEntry(15, "Java 25 CPU-Time Profiling (Linux only)", JCMD, JCMD, _build_cpu_time, CpuTimeSampling),
    MenuEntry(16, "Java 25 Method Tracing", JCMD, JCMD, _build_method_tracing, MethodTracing),
    MenuEntry(17, "Advanced JFR with Custom Events", JCMD, JCMD, _build_advanced),
    MenuEntry(18, "JFR Memory Leak Analysis with TLAB tracking", JCMD, JCMD, _build_allocation_buffer),
    MenuEntry(19, "Garbage Collection Log (custom duration)", "jcmd/jstat", JCMD, _build_gc_log),
    MenuEntry(20, "Thread Dump (instant snapshot)", "jstack/Async-Profiler", SYSTEM, lambda t: ThreadDump()),
    MenuEntry(21, "View recent results", "Built-in File Explorer", SYSTEM, lambda t: ListArtifacts()),
    MenuEntry(22, "Kill current process", "kill", SYSTEM, lambda t: TerminateProcess()),
    MenuEntry(0, "Exit profiler", "", SYSTEM, lambda t: Exit()),
)

MENU_BY_NUMBER = {entry.number: entry for entry in MENU}
MAX_MENU_NUMBER = max(MENU_BY_NUMBER)

_RECOMMENDATIONS = {
    ProblemCategory.GENERAL: (1, 7, 12),
    ProblemCategory.PERFORMANCE: (1, 7, 12),
    ProblemCategory.MEMORY: (2, 8, 5, 12),
    ProblemCategory.CONCURRENCY: (3, 4),
    ProblemCategory.GARBAGE_COLLECTION: (19, 11, 2),
    ProblemCategory.IO: (4, 11),
}


def recommended(category: ProblemCategory | None) -> list[MenuEntry]:
    """Return the menu entries recommended for a problem category."""
    if category is None:
        return []
    return [MENU_BY_NUMBER[number] for number in _RECOMMENDATIONS[category]]
