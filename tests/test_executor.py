"""Tests for the action executor."""

from dataclasses import replace
from pathlib import Path

import pytest

from fakes import FIXED_NOW, FIXED_TOKEN, FakeRunner, exits_with, make_terminal, output_of, writes_output
from jvmprof.actions import (
    AdvancedCustomRecording,
    AllEvents,
    AllocationBufferLeakAnalysis,
    AllocSample,
    CompositeMemoryWorkflow,
    CpuSample,
    CpuTimeSampling,
    CustomDurationCpu,
    EnhancedMemoryRecording,
    GcLogCollection,
    Heatmap,
    LeakDetection,
    StructuredRecording,
    TelemetryExport,
    ThreadDump,
)
from jvmprof.errors import ActionError, ToolInvocationFailed, ToolUnavailable
from jvmprof.executor import (
    ALTERNATIVE_ACTION,
    ActionExecutor,
    resolve_duration,
    sampling_remediation,
    wait_with_progress,
)
from jvmprof.models import TargetProcess
from jvmprof.runner import CommandResult

JSTAT_OUTPUT = (
    " S0C    S1C    S0U    S1U      EC       EU        OC         OU\n"
    "1024.0 1024.0  0.0   512.0   8192.0   4096.0   20480.0    10240.0\n"
)


def make_executor(runner, clock, platform="linux-x64", answers=()):
    terminal = make_terminal(*answers)
    executor = ActionExecutor(
        runner,
        terminal,
        platform,
        sleep=clock.sleep,
        now=lambda: FIXED_NOW,
        monotonic=clock.monotonic,
    )
    return executor, terminal


class TestResolveDuration:
    """Tests for duration validation."""

    def test_empty_input_uses_default_silently(self):
        """Pressing Enter selects the default without a warning."""
        warnings = []
        assert resolve_duration("", 30, warn=warnings.append) == 30
        assert resolve_duration(None, 30, warn=warnings.append) == 30
        assert warnings == []

    @pytest.mark.parametrize("value", ["abc", "0", "-5", "1.5", "\u00b2", "\u00b9\u2070", "\u0661\u0662", 0, -1])
    def test_invalid_input_uses_default_with_warning(self, value):
        """Non-numeric and non-positive values fall back to the default."""
        warnings = []

        assert resolve_duration(value, 60, warn=warnings.append) == 60
        assert len(warnings) == 1
        assert "Using default 60 seconds" in warnings[0]

    def test_valid_input(self):
        """Positive integers are used as given."""
        assert resolve_duration(" 45 ", 30) == 45
        assert resolve_duration(90, 30) == 90

    def test_unit_in_warning(self):
        """The warning names the unit of the prompt."""
        warnings = []
        resolve_duration("x", 10, unit="minutes", warn=warnings.append)

        assert "10 minutes" in warnings[0]


def test_wait_with_progress_ticks_each_interval(clock):
    """Progress is reported after each interval with the time remaining."""
    remaining = []
    wait_with_progress(25, 10, clock.sleep, remaining.append)

    assert clock.sleeps == [10, 10, 5]
    assert remaining == [15, 5, 0]


def test_sampling_remediation_mentions_alternative():
    """Both platforms point at allocation profiling as an alternative."""
    assert sampling_remediation("linux-x64")[-1] == ALTERNATIVE_ACTION
    assert sampling_remediation("macos")[-1] == ALTERNATIVE_ACTION
    assert any("perf_event_paranoid" in line for line in sampling_remediation("linux-arm64"))


class TestPreconditions:
    """Tests for checks made before any tool runs."""

    def test_unverified_installation_is_refused(self, runner, clock, session):
        """Nothing runs until the installation is verified."""
        executor, _ = make_executor(runner, clock)
        unverified = replace(session, installation=replace(session.installation, verified=False))

        with pytest.raises(ActionError, match="not verified"):
            executor.execute(CpuSample(), unverified)

        assert runner.calls == []

    def test_missing_target_is_refused(self, runner, clock, session):
        """An action needs a target."""
        executor, _ = make_executor(runner, clock)

        with pytest.raises(ActionError, match="No target"):
            executor.execute(CpuSample(), replace(session, target=None))


class TestSamplingActions:
    """Tests for single async-profiler runs."""

    def test_cpu_sample_writes_timestamped_flame_graph(self, runner, clock, session):
        """CPU profiling produces cpu-flamegraph-<token>.html in the results directory."""
        runner.on("asprof", writes_output())
        executor, terminal = make_executor(runner, clock)

        result = executor.execute(CpuSample(), session)

        expected = session.results_dir / f"cpu-flamegraph-{FIXED_TOKEN}.html"
        assert result.artifacts == (expected,)
        assert expected.read_text() == "<html>flame</html>"
        argv = runner.calls[0]
        assert argv[0] == str(session.installation.asprof)
        assert argv[argv.index("-d") + 1] == "30"
        assert argv[-1] == "4821"
        assert "-e" not in argv
        assert "Starting CPU Profiling for 30 seconds..." in output_of(terminal)

    def test_event_and_extra_flags(self, runner, clock, session):
        """Leak detection samples allocations with a 1m interval for 300 seconds."""
        runner.on("asprof", writes_output())
        executor, _ = make_executor(runner, clock)

        result = executor.execute(LeakDetection(), session)

        argv = runner.calls[0]
        assert argv[argv.index("-e") + 1] == "alloc"
        assert argv[argv.index("-d") + 1] == "300"
        assert argv[argv.index("--alloc") + 1] == "1m"
        assert result.artifacts[0].name == f"memory-leak-{FIXED_TOKEN}.html"

    def test_invalid_custom_duration_falls_back(self, runner, clock, session):
        """A non-numeric duration runs for the default and warns."""
        runner.on("asprof", writes_output())
        executor, terminal = make_executor(runner, clock)

        executor.execute(CustomDurationCpu(duration="abc"), session)

        argv = runner.calls[0]
        assert argv[argv.index("-d") + 1] == "30"
        assert "Invalid duration 'abc'" in output_of(terminal)

    def test_superscript_duration_falls_back(self, runner, clock, session):
        """Digit-like characters that are not ASCII digits select the default."""
        runner.on("asprof", writes_output())
        executor, terminal = make_executor(runner, clock)

        executor.execute(CustomDurationCpu(duration="¹⁰"), session)

        argv = runner.calls[0]
        assert argv[argv.index("-d") + 1] == "30"
        assert "Invalid duration" in output_of(terminal)

    def test_user_space_flag_only_on_macos(self, runner, clock, session):
        """CPU sampling restricts itself to user space on macOS."""
        runner.on("asprof", writes_output())
        mac, _ = make_executor(runner, clock, platform="macos")
        mac.execute(CpuSample(), session)
        linux, _ = make_executor(runner, clock)
        linux.execute(CpuSample(), session)

        assert "--all-user" in runner.calls[0]
        assert "--all-user" not in runner.calls[1]

    def test_non_zero_exit_is_reported_with_remediation(self, runner, clock, session):
        """A failing asprof run raises with platform remediation."""
        runner.on("asprof", exits_with(1))
        executor, _ = make_executor(runner, clock)

        with pytest.raises(ToolInvocationFailed) as excinfo:
            executor.execute(AllocSample(), session)

        assert "exit code: 1" in excinfo.value.message
        assert ALTERNATIVE_ACTION in excinfo.value.remediation

    def test_missing_asprof(self, runner, clock, session):
        """A missing launcher is reported as an unavailable tool."""
        executor, _ = make_executor(runner, clock)

        with pytest.raises(ToolUnavailable):
            executor.execute(CpuSample(), session)

    def test_no_output_file(self, runner, clock, session):
        """Exit status 0 without a file still counts as a failure."""
        runner.on("asprof", exits_with(0))
        executor, _ = make_executor(runner, clock)

        with pytest.raises(ToolInvocationFailed, match="no output file"):
            executor.execute(CpuSample(), session)


class TestCompositeWorkflow:
    """Tests for the three-step memory workflow."""

    def test_all_steps_share_one_token(self, runner, clock, session):
        """Baseline, heap and leak files share the timestamp token."""
        runner.on("asprof", writes_output())
        executor, _ = make_executor(runner, clock)

        result = executor.execute(CompositeMemoryWorkflow(), session)

        assert [path.name for path in result.artifacts] == [
            f"memory-baseline-{FIXED_TOKEN}.html",
            f"heap-analysis-{FIXED_TOKEN}.html",
            f"memory-leak-complete-{FIXED_TOKEN}.html",
        ]
        assert [call[call.index("-d") + 1] for call in runner.calls] == ["30", "60", "300"]

    def test_failed_step_is_skipped(self, runner, clock, session):
        """A failing step is reported and the remaining steps still run."""
        succeed = writes_output()

        def fail_heap_step(argv, stdout_path):
            if any("heap-analysis" in arg for arg in argv):
                return CommandResult(tuple(argv), 1)
            return succeed(argv, stdout_path)

        runner.on("asprof", fail_heap_step)
        executor, terminal = make_executor(runner, clock)

        result = executor.execute(CompositeMemoryWorkflow(), session)

        assert len(result.artifacts) == 2
        assert len(runner.calls) == 3
        assert "Step 2 failed, skipping" in output_of(terminal)

    def test_all_steps_failing_raises(self, runner, clock, session):
        """The workflow fails only when no step produced a file."""
        runner.on("asprof", exits_with(1))
        executor, _ = make_executor(runner, clock)

        with pytest.raises(ToolInvocationFailed):
            executor.execute(CompositeMemoryWorkflow(), session)


class TestRecordingFormats:
    """Tests for async-profiler JFR and OTLP output."""

    def test_structured_recording_name_includes_duration(self, runner, clock, session):
        """Recordings are named recording-<D>s-<token>.jfr."""
        runner.on("asprof", writes_output("jfr"))
        executor, _ = make_executor(runner, clock)

        result = executor.execute(StructuredRecording(duration="45"), session)

        assert result.artifacts[0].name == f"recording-45s-{FIXED_TOKEN}.jfr"
        argv = runner.calls[0]
        assert argv[argv.index("-o") + 1] == "jfr"

    def test_telemetry_export(self, runner, clock, session):
        """OTLP export writes a JSON file."""
        runner.on("asprof", writes_output("{}"))
        executor, _ = make_executor(runner, clock)

        result = executor.execute(TelemetryExport(), session)

        assert result.artifacts[0].name == f"otlp-export-{FIXED_TOKEN}.json"
        assert runner.calls[0][runner.calls[0].index("-o") + 1] == "otlp"

    def test_heatmap_converts_with_jfrconv(self, runner, clock, session):
        """The recording is converted into heatmap-cpu-<token>.html."""
        jfrconv = session.installation.jfrconv
        jfrconv.parent.mkdir(parents=True)
        jfrconv.write_text("#!/bin/sh\n")

        def convert(argv, stdout_path):
            Path(argv[-1]).write_text("<html>heatmap</html>")
            return CommandResult(tuple(argv), 0)

        runner.on("asprof", writes_output("jfr")).on("jfrconv", convert)
        executor, _ = make_executor(runner, clock)

        result = executor.execute(Heatmap(), session)

        assert [path.name for path in result.artifacts] == [
            f"profile-{FIXED_TOKEN}.jfr",
            f"heatmap-cpu-{FIXED_TOKEN}.html",
        ]
        assert runner.calls[1][1:4] == ["--cpu", "-o", "heatmap"]

    def test_all_events_keeps_recording_without_converter(self, runner, clock, session):
        """Without a converter the recording is kept and guidance is printed."""
        runner.on("asprof", writes_output("jfr"))
        executor, terminal = make_executor(runner, clock)

        result = executor.execute(AllEvents(), session)

        assert [path.name for path in result.artifacts] == [f"all-events-{FIXED_TOKEN}.jfr"]
        assert "--all" in runner.calls[0]
        assert "JFR converter not found" in output_of(terminal)
        assert "HTML conversion skipped" in output_of(terminal)


class TestJfrRecordings:
    """Tests for recordings driven through jcmd."""

    def test_version_gate_falls_back_to_sampling(self, runner, clock, session):
        """A Java 17 target gets an allocation flame graph instead of the Java 21 recording."""
        runner.on("jcmd", exits_with(0, stdout="OpenJDK 64-Bit Server VM version 17.0.9+9\nJDK 17.0.9\n"))
        runner.on("asprof", writes_output())
        executor, terminal = make_executor(runner, clock)

        result = executor.execute(EnhancedMemoryRecording(), session)

        assert result.artifacts[0].name == f"memory-fallback-{FIXED_TOKEN}.html"
        asprof = runner.calls[-1]
        assert asprof[asprof.index("-e") + 1] == "alloc"
        assert asprof[asprof.index("-d") + 1] == "60"
        assert "requires Java 21+. Current version: 17" in output_of(terminal)
        assert not any("JFR.start" in call for call in runner.calls)

    def test_linux_only_gate(self, runner, clock, session):
        """CPU-time sampling is refused on macOS even for Java 25."""
        runner.on("jcmd", exits_with(0, stdout="JDK 25.0.1\n"))
        runner.on("asprof", writes_output())
        executor, terminal = make_executor(runner, clock, platform="macos")

        result = executor.execute(CpuTimeSampling(), session)

        assert result.artifacts[0].name == f"cpu-fallback-{FIXED_TOKEN}.html"
        assert "only available on Linux" in output_of(terminal)

    def test_recording_with_retention_and_events(self, runner, clock, session):
        """JFR.start carries retention, enabled events and the output filename."""
        runner.on("jcmd", exits_with(0))
        executor, terminal = make_executor(runner, clock)

        result = executor.execute(AdvancedCustomRecording(duration="12"), session)

        recording = session.results_dir / f"advanced-custom-{FIXED_TOKEN}.jfr"
        assert result.artifacts == (recording,)
        start, stop = runner.calls
        assert start[1:5] == ["4821", "JFR.start", "name=advanced-analysis", "duration=12s"]
        assert ["disk=true", "maxsize=500MB", "maxage=10m"] == start[5:8]
        assert "jdk.SocketRead#enabled=true,threshold=10ms" in start
        assert start[-1] == f"filename={recording}"
        assert stop[1:] == ["4821", "JFR.stop", "name=advanced-analysis"]
        assert sum(clock.sleeps) == 12
        assert "I/O, locking, GC" in output_of(terminal)

    def test_jcmd_failure_falls_back_to_async_profiler(self, runner, clock, session):
        """A failed JFR.start falls back to an async-profiler recording."""
        runner.on("jcmd", exits_with(1))
        runner.on("asprof", writes_output("jfr"))
        executor, terminal = make_executor(runner, clock)

        result = executor.execute(AdvancedCustomRecording(duration="20"), session)

        assert result.artifacts[0].name == f"advanced-fallback-{FIXED_TOKEN}.jfr"
        asprof = runner.calls[-1]
        assert "--all" in asprof
        assert asprof[asprof.index("-d") + 1] == "20"
        assert "falling back to async-profiler" in output_of(terminal)

    def test_minute_based_duration(self, runner, clock, session):
        """The allocation buffer analysis prompts in minutes."""
        runner.on("jcmd", exits_with(0))
        executor, terminal = make_executor(runner, clock)

        executor.execute(AllocationBufferLeakAnalysis(duration="2"), session)

        assert "duration=120s" in runner.calls[0]
        assert clock.sleeps == [60, 60]
        assert "Recording... 1 minutes remaining" in output_of(terminal)

    def test_stop_failure_is_not_fatal(self, runner, clock, session):
        """The recording ends by itself, so a failing JFR.stop is only logged."""

        def jcmd(argv, stdout_path):
            return CommandResult(tuple(argv), 1 if "JFR.stop" in argv else 0)

        runner.on("jcmd", jcmd)
        executor, _ = make_executor(runner, clock)

        result = executor.execute(AdvancedCustomRecording(duration="1"), session)

        assert result.artifacts[0].suffix == ".jfr"


class TestJavaVersionDetection:
    """Tests for detect_java_version."""

    def test_from_vm_version(self, runner, clock, target):
        """jcmd VM.version is authoritative."""
        runner.on("jcmd", exits_with(0, stdout="OpenJDK 64-Bit Server VM version 21.0.2+13-LTS\nJDK 21.0.2\n"))
        executor, _ = make_executor(runner, clock)

        assert executor.detect_java_version(target) == 21

    def test_legacy_version_string(self, runner, clock, target):
        """1.8 style versions map to 8."""
        runner.on("jcmd", exits_with(0, stdout="JDK 1.8.0_392\n"))
        executor, _ = make_executor(runner, clock)

        assert executor.detect_java_version(target) == 8

    def test_from_command_line(self, clock):
        """Without jcmd the version is read from the JDK path."""
        executor, _ = make_executor(FakeRunner(tools=()), clock)
        target = TargetProcess(pid=1, display_name="app.jar", command_line="/opt/jdk-25/bin/java -jar app.jar")

        assert executor.detect_java_version(target) == 25

    def test_default(self, clock, target):
        """Unknown versions are assumed to be 17."""
        executor, _ = make_executor(FakeRunner(tools=()), clock)

        assert executor.detect_java_version(target) == 17


class TestGcLogCollection:
    """Tests for GC log collection and its jstat fallback."""

    def test_jcmd_unified_logging(self, runner, clock, session):
        """VM.log writes into the output file and is switched off afterwards."""

        def jcmd(argv, stdout_path):
            if "what=gc" in argv:
                output = argv[3].removeprefix("output=")
                Path(output).write_text("[0.5s][info][gc] GC(0) Pause Young 24M->8M 3.1ms\n")
            return CommandResult(tuple(argv), 0)

        runner.on("jcmd", jcmd)
        executor, terminal = make_executor(runner, clock)

        result = executor.execute(GcLogCollection(duration="30"), session)

        log = session.results_dir / f"gc-30s-{FIXED_TOKEN}.log"
        assert result.artifacts == (log,)
        assert runner.calls[-1][-1] == "what=all=off"
        assert sum(clock.sleeps) == 30
        assert "Pause Young" in output_of(terminal)

    def test_jcmd_without_activity_leaves_no_empty_file(self, runner, clock, session):
        """An empty log is deleted and reported as no GC activity."""
        runner.on("jcmd", exits_with(0))
        executor, terminal = make_executor(runner, clock)

        result = executor.execute(GcLogCollection(duration="5"), session)

        assert result.artifacts == ()
        assert not (session.results_dir / f"gc-5s-{FIXED_TOKEN}.log").exists()
        assert "No GC activity" in output_of(terminal)

    def test_jstat_fallback_writes_csv(self, runner, clock, session):
        """When jcmd fails, jstat is polled once per second."""
        runner.on("jcmd", exits_with(1)).on("jstat", exits_with(0, stdout=JSTAT_OUTPUT))
        executor, terminal = make_executor(runner, clock)

        result = executor.execute(GcLogCollection(duration="3"), session)

        log = session.results_dir / f"gc-3s-{FIXED_TOKEN}.log"
        assert result.artifacts == (log,)
        lines = log.read_text().splitlines()
        assert lines[0] == "# GC Statistics collected via jstat"
        assert lines[1] == "# Timestamp,S0C,S1C,S0U,S1U,EC,EU,OC,OU"
        assert lines[2] == "2026-03-14 09:26:53,1024.0,1024.0,0.0,512.0,8192.0,4096.0,20480.0,10240.0"
        assert len(lines) == 5
        assert "using jstat" in output_of(terminal)

    def test_both_strategies_failing_leaves_no_file(self, runner, clock, session):
        """No zero-byte log is left behind when nothing could be collected."""
        runner.on("jcmd", exits_with(1)).on("jstat", exits_with(1))
        executor, _ = make_executor(runner, clock)

        with pytest.raises(ToolInvocationFailed) as excinfo:
            executor.execute(GcLogCollection(duration="2"), session)

        assert list(session.results_dir.iterdir()) == []
        assert any("GC logging enabled" in line for line in excinfo.value.remediation)


class TestThreadDump:
    """Tests for thread dumps."""

    def test_jstack(self, runner, clock, session):
        """jstack output is redirected into the dump file."""

        def jstack(argv, stdout_path):
            stdout_path.write_text('"main" #1 prio=5\n"GC Thread#0" os_prio=0\n')
            return CommandResult(tuple(argv), 0)

        runner.on("jstack", jstack)
        executor, terminal = make_executor(runner, clock)

        result = executor.execute(ThreadDump(), session)

        assert result.artifacts[0].name == f"threaddump-{FIXED_TOKEN}.txt"
        assert runner.programs() == ["jstack"]
        assert "(2 lines)" in output_of(terminal)

    def test_falls_back_to_async_profiler(self, runner, clock, session):
        """A failing jstack is replaced by a one-second text sample."""

        def jstack(argv, stdout_path):
            stdout_path.write_text("")
            return CommandResult(tuple(argv), 1)

        runner.on("jstack", jstack).on("asprof", writes_output("--- stack ---\n"))
        executor, _ = make_executor(runner, clock)

        result = executor.execute(ThreadDump(), session)

        assert result.artifacts[0].read_text() == "--- stack ---\n"
        asprof = runner.calls[-1]
        assert asprof[asprof.index("-d") + 1] == "1"
        assert asprof[asprof.index("-o") + 1] == "text"

    def test_both_failing_removes_file(self, runner, clock, session):
        """No partial dump is left when both tools fail."""

        def jstack(argv, stdout_path):
            stdout_path.write_text("")
            return CommandResult(tuple(argv), 1)

        runner.on("jstack", jstack).on("asprof", exits_with(1))
        executor, _ = make_executor(runner, clock)

        with pytest.raises(ToolInvocationFailed):
            executor.execute(ThreadDump(), session)

        assert list(session.results_dir.iterdir()) == []

