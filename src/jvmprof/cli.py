"""Command-line entry point for jvmprof."""

import logging
from pathlib import Path
from typing import Annotated

import typer

from jvmprof.config import get_settings
from jvmprof.errors import DiscoveryError, LaunchError, ProvisioningError, SelectionCancelled
from jvmprof.launcher import (
    DEFAULT_HEAP,
    DEFAULT_MAIN_CLASS,
    DEFAULT_PROFILE,
    Framework,
    GcAlgorithm,
    LaunchOptions,
    ProfilingMode,
    launch as launch_application,
    plan_launch,
)
from jvmprof.logs import configure_logging
from jvmprof.runner import CommandRunner
from jvmprof.session import build_controller
from jvmprof.terminal import Terminal

logger = logging.getLogger(__name__)

INTERRUPTED_EXIT = 130

app = typer.Typer(
    name="jvmprof",
    help="Interactive async-profiler sessions for running JVM processes",
    add_completion=False,
    no_args_is_help=True,
)


@app.callback()
def configure(
    log_level: Annotated[
        str | None,
        typer.Option("--log-level", help="Diagnostic log level (default: JVMPROF_LOG_LEVEL or WARNING)"),
    ] = None,
) -> None:
    """Profile running JVM processes with async-profiler."""
    configure_logging(log_level or get_settings().log_level)


@app.command()
def session() -> None:
    """Start an interactive profiling session."""
    settings = get_settings()
    terminal = Terminal()
    try:
        exit_code = build_controller(settings, terminal).run()
    except SelectionCancelled as exc:
        terminal.say(exc.message)
        raise typer.Exit(0)
    except (DiscoveryError, ProvisioningError) as exc:
        terminal.report(exc)
        raise typer.Exit(1)
    except (KeyboardInterrupt, EOFError):
        terminal.say()
        terminal.warn("Session interrupted")
        raise typer.Exit(INTERRUPTED_EXIT)
    raise typer.Exit(exit_code)


@app.command()
def launch(
    mode: Annotated[
        ProfilingMode,
        typer.Option("--mode", "-m", help="Profiling mode the run is prepared for"),
    ] = ProfilingMode.CPU,
    framework: Annotated[
        Framework,
        typer.Option("--framework", "-f", help="Application framework"),
    ] = Framework.AUTO,
    jar: Annotated[
        Path | None,
        typer.Option("--jar", "-j", help="Path to the application JAR file", dir_okay=False),
    ] = None,
    main_class: Annotated[
        str,
        typer.Option("--class", "-c", help="Main class to run when there is no JAR"),
    ] = DEFAULT_MAIN_CLASS,
    heap: Annotated[str, typer.Option("--heap", "-h", help="Heap size")] = DEFAULT_HEAP,
    profile: Annotated[
        str,
        typer.Option("--profile", "-p", help="Spring profile or Quarkus profile to activate"),
    ] = DEFAULT_PROFILE,
    gc_log: Annotated[bool, typer.Option("--gc-log", help="Enable GC logging")] = False,
    virtual_threads: Annotated[
        bool,
        typer.Option("--virtual-threads", help="Enable virtual threads (Java 21+)"),
    ] = False,
    gc: Annotated[GcAlgorithm, typer.Option("--gc", help="Garbage collector")] = GcAlgorithm.AUTO,
    preview: Annotated[bool, typer.Option("--preview", help="Enable preview features (Java 21+)")] = False,
    dry_run: Annotated[bool, typer.Option("--dry-run", help="Print the command without running it")] = False,
) -> None:
    """Run a Spring Boot or Quarkus application with profiling-friendly JVM flags."""
    settings = get_settings()
    terminal = Terminal()
    runner = CommandRunner(settings.java_home)
    options = LaunchOptions(
        mode=mode,
        framework=framework,
        jar=jar,
        main_class=main_class,
        heap=heap,
        profile=profile,
        gc_log=gc_log,
        virtual_threads=virtual_threads,
        gc=gc,
        preview=preview,
    )
    try:
        plan = plan_launch(options, runner)
    except LaunchError as exc:
        terminal.report(exc)
        raise typer.Exit(1)

    for note in plan.notes:
        terminal.warn(note)
    terminal.info(f"Starting {plan.framework.value} application")
    terminal.info(f"Profile mode: {mode.value}")
    terminal.info(f"Profile: {profile}")
    terminal.info(f"Java version: {plan.java_version}")
    terminal.info(f"GC algorithm: {plan.gc.value}")
    if plan.gc_log_file:
        terminal.info(f"GC logging enabled: {plan.gc_log_file}")
    terminal.info(f"JVM Flags: {' '.join(plan.jvm_flags)}")
    for name, value in plan.env.items():
        terminal.say(f"{name}={value}")
    terminal.say(" ".join(plan.argv))

    if dry_run:
        return
    try:
        status = launch_application(plan, runner)
    except KeyboardInterrupt:
        raise typer.Exit(INTERRUPTED_EXIT)
    if status == 0:
        terminal.success("Application completed!")
    raise typer.Exit(status)


def main() -> None:
    """Entry point for the jvmprof command."""
    app()


if __name__ == "__main__":
    main()
