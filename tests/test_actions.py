"""Tests for the action catalog and menu."""

import pytest

from fakes import make_terminal
from jvmprof.actions import (
    ALLOCATION_BUFFER_EVENTS,
    MAX_MENU_NUMBER,
    MENU,
    MENU_BY_NUMBER,
    AdvancedCustomRecording,
    AllocationBufferLeakAnalysis,
    CpuSample,
    CpuTimeSampling,
    CustomDurationCpu,
    EnhancedMemoryRecording,
    EventToggle,
    Exit,
    GcLogCollection,
    MethodTracing,
    RetentionPolicy,
    recommended,
)
from jvmprof.models import ProblemCategory


class TestEventToggle:
    """Tests for JFR event rendering."""

    def test_enabled_only(self):
        """Disabled toggles are switched off explicitly."""
        assert EventToggle("jdk.ExecutionSample").render() == "jdk.ExecutionSample#enabled=true"

    def test_all_settings(self):
        """Settings are rendered in a fixed order."""
        toggle = EventToggle(
            "jdk.Custom", threshold="10ms", stack_trace=True, period="10s", throttle="1000/s", cutoff="0ms"
        )

        assert toggle.render() == (
            "jdk.Custom#enabled=true,threshold=10ms,stackTrace=true,period=10s,throttle=1000/s,cutoff=0ms"
        )

    def test_allocation_buffer_events_capture_stacks(self):
        """Allocation events of the leak analysis record stack traces."""
        rendered = [toggle.render() for toggle in ALLOCATION_BUFFER_EVENTS]

        assert "jdk.ObjectAllocationInNewTLAB#enabled=true,stackTrace=true" in rendered
        assert "jdk.OldObjectSample#enabled=true,cutoff=0ms" in rendered


def test_retention_policy_render():
    assert RetentionPolicy("1GB", "30m").render() == ["disk=true", "maxsize=1GB", "maxage=30m"]


def test_actions_are_frozen():
    """Actions are immutable records."""
    action = CpuSample()

    with pytest.raises(AttributeError):
        action.duration = 10


class TestMenu:
    """Tests for menu numbering and builders."""

    def test_numbers_are_contiguous(self):
        """Entries 1-22 plus 0 for exit."""
        assert sorted(MENU_BY_NUMBER) == list(range(0, 23))
        assert MAX_MENU_NUMBER == 22

    def test_render(self):
        """Entries render as numbered lines with their tool."""
        assert MENU_BY_NUMBER[11].render() == "11. Interactive Heatmap (60s) [Async-Profiler + jfrconv]"

    def test_fixed_entries_do_not_prompt(self):
        """Fixed-duration entries build without asking anything."""
        terminal = make_terminal()

        assert isinstance(MENU_BY_NUMBER[1].build(terminal), CpuSample)
        assert isinstance(MENU_BY_NUMBER[0].build(terminal), Exit)

    def test_custom_duration_keeps_raw_input(self):
        """Validation happens at execution time, so the raw answer is kept."""
        action = MENU_BY_NUMBER[7].build(make_terminal("abc"))

        assert action == CustomDurationCpu(duration="abc")

    def test_method_tracing_pattern_defaults_to_everything(self):
        """An empty pattern traces every method."""
        action = MENU_BY_NUMBER[16].build(make_terminal("", ""))

        assert isinstance(action, MethodTracing)
        assert action.pattern == "*"

    def test_advanced_recording_retention(self):
        """Empty answers keep the documented retention bounds."""
        action = MENU_BY_NUMBER[17].build(make_terminal("90", "", "5m"))

        assert isinstance(action, AdvancedCustomRecording)
        assert action.duration == "90"
        assert action.retention == RetentionPolicy("500MB", "5m")

    def test_minute_prompt(self):
        """The leak analysis prompt asks for minutes."""
        terminal = make_terminal("15")
        action = MENU_BY_NUMBER[18].build(terminal)

        assert action == AllocationBufferLeakAnalysis(duration="15")
        assert terminal._reader.prompts == ["Enter duration in minutes (default: 10): "]

    def test_gc_log_prompt(self):
        """The raw answer is kept for later validation."""
        assert MENU_BY_NUMBER[19].build(make_terminal("")) == GcLogCollection(duration="")

    def test_sections_group_entries(self):
        """Entries appear grouped by tool section."""
        sections = [entry.section for entry in MENU]

        assert sections.index("jcmd") > sections.index("Async-Profiler")
        assert sections[-1] == "System tools"


class TestRecommendations:
    """Tests for problem category recommendations."""

    def test_memory(self):
        """Memory problems recommend allocation and leak profiling."""
        assert [entry.number for entry in recommended(ProblemCategory.MEMORY)] == [2, 8, 5, 12]

    def test_gc(self):
        """GC problems recommend the GC log first."""
        assert [entry.number for entry in recommended(ProblemCategory.GARBAGE_COLLECTION)] == [19, 11, 2]

    def test_none(self):
        """Without a category nothing is recommended."""
        assert recommended(None) == []


def test_gated_entries():
    """Only the version or platform gated recordings carry their gate class."""
    gated = {entry.number: entry.gated for entry in MENU if entry.gated is not None}

    assert gated == {14: EnhancedMemoryRecording, 15: CpuTimeSampling, 16: MethodTracing}
