"""Interactive profiling session: the menu-driven state machine."""

import logging
import os
from collections.abc import Callable
from pathlib import Path

import typer

from jvmprof.actions import MAX_MENU_NUMBER, MENU, MENU_BY_NUMBER, Exit, ListArtifacts, TerminateProcess, recommended
from jvmprof.artifacts import ArtifactManager
from jvmprof.config import Settings
from jvmprof.discovery import ProcessDiscovery, select_target
from jvmprof.errors import ActionError, ArtifactError, DiscoveryError, LifecycleError
from jvmprof.executor import ActionExecutor
from jvmprof.lifecycle import LifecycleController
from jvmprof.models import ArtifactKind, ControllerState, ProblemCategory, Session, TargetProcess, ToolInstallation
from jvmprof.provisioner import ToolProvisioner, detect_platform, provisioner_from_settings
from jvmprof.runner import CommandRunner
from jvmprof.terminal import Terminal

logger = logging.getLogger(__name__)

BANNER = "Java Application Profiler"
RULE = "==========================================="

_CATEGORY_DESCRIPTIONS = {
    ProblemCategory.PERFORMANCE: "CPU hotspots, inefficient algorithms, unnecessary allocations, string operations",
    ProblemCategory.MEMORY: "memory leaks, heap usage, object retention, off-heap issues",
    ProblemCategory.CONCURRENCY: "lock contention, thread pool issues, deadlocks, context switching",
    ProblemCategory.GARBAGE_COLLECTION: "GC pressure, long pauses, generational issues",
    ProblemCategory.IO: "blocking operations, connection leaks, serialization issues",
}

_LINUX_CAPABILITIES = (
    "Full CPU profiling (user + kernel space)",
    "Memory allocation profiling",
    "Native memory profiling",
    "Lock contention profiling",
    "Wall clock profiling",
    "Hardware performance counters",
    "JFR format with OpenTelemetry support",
)

_MACOS_CAPABILITIES = (
    "CPU profiling (limited to user space)",
    "Memory allocation profiling",
    "Native memory profiling",
    "Lock contention profiling",
    "Wall clock profiling",
    "JFR format with OpenTelemetry support",
)


def _running_as_root() -> bool:
    return os.geteuid() == 0


class SessionController:
    """
    Drives one profiling session.

    SELECTING_PROCESS -> READY_AT_MENU -> EXECUTING_ACTION -> READY_AT_MENU
    ... -> TERMINATED. Discovery and provisioning errors propagate to the
    caller; action, artifact and lifecycle errors are reported and the menu
    is shown again.
    """

    def __init__(
        self,
        terminal: Terminal,
        discovery: ProcessDiscovery,
        provisioner: ToolProvisioner,
        executor: ActionExecutor,
        lifecycle: LifecycleController,
        runner: CommandRunner,
        platform: str,
        version: str,
        results_dir: Path,
        opener: Callable[[str], int] = typer.launch,
        is_alive: Callable[[TargetProcess], bool] = TargetProcess.is_alive,
        is_root: Callable[[], bool] = _running_as_root,
    ) -> None:
        """
        Initialize the controller.

        Args:
            terminal: Operator terminal.
            discovery: Finds and validates target processes.
            provisioner: Installs async-profiler.
            executor: Runs profiling actions.
            lifecycle: Terminates the target.
            runner: Command runner handed to the artifact manager.
            platform: Platform tag.
            version: async-profiler version to install.
            results_dir: Directory receiving artifacts.
            opener: Opens files in the default viewer.
            is_alive: Liveness predicate for the target.
            is_root: Reports whether the session runs with elevated privileges.
        """
        self._terminal = terminal
        self._discovery = discovery
        self._provisioner = provisioner
        self._executor = executor
        self._lifecycle = lifecycle
        self._runner = runner
        self._platform = platform
        self._version = version
        self._results_dir = results_dir
        self._opener = opener
        self._is_alive = is_alive
        self._is_root = is_root
        self._artifacts: ArtifactManager | None = None
        self.session: Session | None = None
        self.exit_code = 0

    def run(self) -> int:
        """
        Run the session until the operator exits or the target is lost.

        Returns:
            0 after an explicit exit, 1 when the session ended because the
            target disappeared.

        Raises:
            DiscoveryError: No usable target process.
            ProvisioningError: async-profiler could not be installed.
        """
        self._terminal.success(f"{BANNER} - Organized by Tool Categories")
        self._terminal.say("=================================================")
        category = self.ask_problem_category()
        target = select_target(self._discovery, self._terminal)
        self._terminal.success(f"Ready to profile process {target.pid}")

        installation = self.provision()
        self.report_capabilities()

        self._results_dir.mkdir(parents=True, exist_ok=True)
        self._artifacts = ArtifactManager(
            self._results_dir,
            self._terminal,
            self._runner,
            installation,
            opener=self._opener,
            platform=self._platform,
        )
        session = Session(
            installation=installation,
            results_dir=self._results_dir,
            target=target,
            problem_category=category,
        ).transition(ControllerState.READY_AT_MENU)

        while session.state is not ControllerState.TERMINATED:
            self.session = session
            session = self.step(session)
        self.session = session
        return self.exit_code

    def step(self, session: Session) -> Session:
        """Advance the state machine by one transition."""
        if session.state is ControllerState.SELECTING_PROCESS:
            return self._select(session)
        if session.state is ControllerState.READY_AT_MENU:
            return self._at_menu(session)
        return session

    def ask_problem_category(self) -> ProblemCategory:
        """Ask what the operator is investigating."""
        self._terminal.heading("Step 0: Problem Identification")
        self._terminal.say("What specific performance problem are you trying to solve?")
        self._terminal.say()
        self._terminal.info("Problem Categories:")
        for category in ProblemCategory:
            if category is ProblemCategory.GENERAL:
                continue
            self._terminal.say(
                f"  {category.value}) {category.title} ({_CATEGORY_DESCRIPTIONS[category]})"
            )
        self._terminal.say("  0) Not sure / General performance analysis")
        self._terminal.say()

        choice = self._terminal.ask_index("Select the problem category you're investigating (0-5): ", 5)
        category = ProblemCategory(str(choice))
        self._terminal.success(f"Selected problem category: {category.title}")
        self._terminal.success(f"Suggested profiling approach: {category.suggested_approach}")
        self._terminal.say()
        return category

    def provision(self) -> ToolInstallation:
        """Install async-profiler if needed."""
        self._terminal.heading("Step 2: Setting up async-profiler")
        self._terminal.success(f"Using profiler directory: {self._provisioner.install_dir}")
        already_installed = (self._provisioner.install_dir / "current").exists()
        if not already_installed:
            self._terminal.say(f"Downloading async-profiler {self._version} for {self._platform}...")
        installation = self._provisioner.ensure_installed(self._platform, self._version)
        if already_installed:
            self._terminal.success(f"Async-profiler already available at {installation.install_dir}")
        else:
            self._terminal.success(f"Async-profiler downloaded successfully to {installation.install_dir}")
        return installation

    def report_capabilities(self) -> None:
        """Print what profiling modes the platform supports."""
        self._terminal.info("Platform Capabilities Check:")
        self._terminal.say("-----")
        if self._platform == "macos":
            self._terminal.warn("Platform: macOS")
            for capability in _MACOS_CAPABILITIES:
                self._terminal.say(f"  + {capability}")
            self._terminal.say("  - Hardware performance counters (Linux only)")
            self._terminal.say()
            self._terminal.info("Note: macOS profiling is limited to user-space code only")
        else:
            self._terminal.warn("Platform: Linux")
            for capability in _LINUX_CAPABILITIES:
                self._terminal.say(f"  + {capability}")
            if self._is_root():
                self._terminal.say("  + Running with elevated privileges")
            else:
                self._terminal.warn("For optimal profiling, consider running with elevated privileges")
        self._terminal.say()

    def render_menu(self, session: Session) -> None:
        """Print the action menu, recommended entries first."""
        target = session.target
        category = session.problem_category
        self._terminal.say()
        self._terminal.info(RULE)
        self._terminal.warn(f"Profiling Options for PID: {target.pid}")
        self._terminal.warn(f"Process: {target.display_name}")
        if category is not None:
            self._terminal.warn(f"Problem Category: {category.title}")
            self._terminal.warn(f"Suggested Approach: {category.suggested_approach}")
        self._terminal.info(RULE)

        highlighted = recommended(category)
        if highlighted:
            self._terminal.success("*** RECOMMENDED FOR YOUR PROBLEM ***")
            for entry in highlighted:
                self._terminal.say(f"{entry.render()} *")
            self._terminal.say()
            self._terminal.info("Other Options:")

        section = None
        for entry in MENU:
            if entry.section != section:
                section = entry.section
                self._terminal.say()
                self._terminal.success(f"=== {section.upper()} OPTIONS ===")
            line = f"{entry.number}. {entry.label}" if entry.number == 0 else entry.render()
            self._terminal.say(line)
        self._terminal.info(RULE)

    def _select(self, session: Session) -> Session:
        """Adopt a re-discovered candidate, or let the operator pick again."""
        try:
            if session.pending_target is not None:
                target = self._discovery.validate(session.pending_target.pid)
                self._terminal.success(f"Switched to PID: {target.pid}")
            else:
                target = select_target(self._discovery, self._terminal)
        except DiscoveryError as exc:
            self._terminal.report(exc)
            self.exit_code = 1
            return session.transition(ControllerState.TERMINATED, pending_target=None)
        return session.transition(ControllerState.READY_AT_MENU, target=target, pending_target=None)

    def _at_menu(self, session: Session) -> Session:
        """Check the target, show the menu and run the chosen action."""
        if not self._is_alive(session.target):
            return self._reattach(session)

        self.render_menu(session)
        number = self._terminal.ask_index(f"Select profiling option (0-{MAX_MENU_NUMBER}): ", MAX_MENU_NUMBER)
        entry = MENU_BY_NUMBER[number]
        if entry.gated is not None and self._executor.unmet_gate(entry.gated, session.target) is not None:
            # the executor reports the gate and falls back; nothing to ask for
            action = entry.gated()
        else:
            action = entry.build(self._terminal)
        if isinstance(action, Exit):
            self._terminal.success("Exiting profiler. Goodbye!")
            self.exit_code = 0
            return session.transition(ControllerState.TERMINATED)

        session = session.transition(ControllerState.EXECUTING_ACTION)
        self._dispatch(action, session)
        self._terminal.say()
        self._terminal.pause()
        return session.transition(ControllerState.READY_AT_MENU)

    def _dispatch(self, action, session: Session) -> None:
        """Run one action, reporting recoverable errors."""
        if isinstance(action, ListArtifacts):
            self._artifacts.browse()
            return
        if isinstance(action, TerminateProcess):
            try:
                outcome = self._lifecycle.terminate(session.target)
            except LifecycleError as exc:
                self._terminal.report(exc)
                return
            logger.info("Termination of pid %d: %s", session.target.pid, outcome.value)
            return

        try:
            result = self._executor.execute(action, session)
        except (ActionError, ArtifactError) as exc:
            logger.warning("%s failed: %s", type(action).__name__, exc.message)
            self._terminal.report(exc)
            return

        self._terminal.success("Profiling completed!")
        self._artifacts.show_recent()
        if self._platform == "macos":
            flame_graphs = [path for path in result.artifacts if path.suffix == ArtifactKind.FLAME_GRAPH.value]
            if flame_graphs:
                self._artifacts.open_in_viewer(flame_graphs[-1])

    def _reattach(self, session: Session) -> Session:
        """Offer to switch to a process with the same name after the target vanished."""
        target = session.target
        self._terminal.error(f"Warning: Process {target.pid} is no longer running!")
        self._terminal.say("The process may have been terminated or restarted.")

        candidate = self._discovery.find_by_name(target.display_name, exclude_pid=target.pid)
        if candidate is None:
            self._terminal.say("Please restart the profiler when your application is running.")
            self.exit_code = 1
            return session.transition(ControllerState.TERMINATED)

        self._terminal.warn(f"Found similar process with new PID: {candidate.pid}")
        if not self._terminal.confirm("Switch to the new PID?"):
            self._terminal.say("Please restart the profiler with the correct PID.")
            self.exit_code = 1
            return session.transition(ControllerState.TERMINATED)
        return session.transition(ControllerState.SELECTING_PROCESS, pending_target=candidate)


def build_controller(settings: Settings, terminal: Terminal) -> SessionController:
    """
    Wire a session controller from settings.

    Raises:
        UnsupportedPlatform: The host has no async-profiler build.
    """
    runner = CommandRunner(settings.java_home)
    platform = detect_platform()
    return SessionController(
        terminal=terminal,
        discovery=ProcessDiscovery(),
        provisioner=provisioner_from_settings(settings, runner),
        executor=ActionExecutor(runner, terminal, platform),
        lifecycle=LifecycleController(terminal, settings.graceful_timeout),
        runner=runner,
        platform=platform,
        version=settings.profiler_version,
        results_dir=settings.resolved_results_dir,
    )
