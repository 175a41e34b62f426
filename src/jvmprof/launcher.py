"""Launching a JVM application with profiling-friendly flags."""

import logging
import os
import re
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from pathlib import Path

import psutil

from jvmprof.errors import LaunchError
from jvmprof.models import timestamp_token
from jvmprof.runner import CommandRunner

logger = logging.getLogger(__name__)

DEFAULT_MAIN_CLASS = "info.jab.ms.MainApplication"
DEFAULT_HEAP = "512m"
DEFAULT_PROFILE = "default"
APP_LOG_CATEGORY = "info.jab.ms"
HTTP_PORT = 8080
FALLBACK_CPU_COUNT = 4

_JAVA_VERSION_RE = re.compile(r'version "(\d+)(?:\.(\d+))?')


class ProfilingMode(str, Enum):
    """async-profiler event recorded while the application runs."""

    CPU = "cpu"
    ALLOC = "alloc"
    WALL = "wall"
    LOCK = "lock"


class Framework(str, Enum):
    """Application framework, detected when AUTO."""

    AUTO = "auto"
    SPRINGBOOT = "springboot"
    QUARKUS = "quarkus"


class GcAlgorithm(str, Enum):
    """Garbage collector, chosen by Java version when AUTO."""

    AUTO = "auto"
    G1 = "g1"
    ZGC = "zgc"
    PARALLEL = "parallel"
    SERIAL = "serial"


class RunMode(Enum):
    """How the application is started."""

    JAR = "jar"
    MAVEN = "maven"
    MAIN_CLASS = "class"


@dataclass(slots=True, frozen=True)
class LaunchOptions:
    """Options of the `launch` command."""

    mode: ProfilingMode = ProfilingMode.CPU
    framework: Framework = Framework.AUTO
    jar: Path | None = None
    main_class: str = DEFAULT_MAIN_CLASS
    heap: str = DEFAULT_HEAP
    profile: str = DEFAULT_PROFILE
    gc_log: bool = False
    virtual_threads: bool = False
    gc: GcAlgorithm = GcAlgorithm.AUTO
    preview: bool = False


@dataclass(slots=True, frozen=True)
class LaunchPlan:
    """Everything needed to start the application."""

    run_mode: RunMode
    argv: list[str]
    framework: Framework
    java_version: int
    gc: GcAlgorithm
    jvm_flags: list[str]
    app_args: list[str]
    env: dict[str, str] = field(default_factory=dict)
    jar: Path | None = None
    gc_log_file: str | None = None
    notes: list[str] = field(default_factory=list)


def detect_framework(requested: Framework, jar: Path | None, project_dir: Path) -> Framework:
    """
    Resolve `auto` to a concrete framework.

    Looks at pom.xml dependencies, then at the jar name (or the jars in
    target/), and defaults to Spring Boot.
    """
    if requested is not Framework.AUTO:
        return requested

    pom = project_dir / "pom.xml"
    if pom.is_file():
        content = pom.read_text(errors="replace")
        if "spring-boot-starter" in content:
            logger.info("Detected Spring Boot from pom.xml")
            return Framework.SPRINGBOOT
        if "quarkus-universe-bom" in content or "quarkus-bom" in content:
            logger.info("Detected Quarkus from pom.xml")
            return Framework.QUARKUS

    if jar is not None:
        if "spring-boot" in jar.name:
            logger.info("Detected Spring Boot from JAR name")
            return Framework.SPRINGBOOT
        if "quarkus" in jar.name or "runner" in jar.name:
            logger.info("Detected Quarkus from JAR name")
            return Framework.QUARKUS
    else:
        target = project_dir / "target"
        if any(target.glob("*-runner.jar")):
            logger.info("Detected Quarkus from runner JAR")
            return Framework.QUARKUS
        if any(target.glob("*spring-boot*.jar")):
            logger.info("Detected Spring Boot from JAR files")
            return Framework.SPRINGBOOT

    logger.warning("Could not detect framework, defaulting to Spring Boot")
    return Framework.SPRINGBOOT


def default_jar(framework: Framework, project_dir: Path) -> Path:
    """Pick the application jar from target/, or the conventional name."""
    target = project_dir / "target"
    if framework is Framework.QUARKUS:
        found = sorted(target.glob("*-runner.jar"))
        fallback = f"{project_dir.resolve().name}-1.0-SNAPSHOT-runner.jar"
    else:
        found = sorted(target.glob("*spring-boot*.jar"))
        fallback = f"{project_dir.resolve().name}-1.0-SNAPSHOT.jar"
    return found[0] if found else target / fallback


def parse_java_version(output: str) -> int | None:
    """Extract the major version from `java -version` output (1.8 -> 8)."""
    match = _JAVA_VERSION_RE.search(output)
    if not match:
        return None
    major = int(match.group(1))
    if major == 1 and match.group(2):
        return int(match.group(2))
    return major


def detect_java_version(runner: CommandRunner) -> int:
    """
    Ask the `java` on PATH for its version.

    Raises:
        LaunchError: java is missing or its version cannot be parsed.
    """
    java = runner.which("java")
    if java is None:
        raise LaunchError("Java not found in PATH", ["Install a JDK or set JAVA_HOME."])
    result = runner.run([java, "-version"])
    version = parse_java_version(result.stderr or result.stdout)
    if version is None:
        raise LaunchError("Could not determine the Java version", [f"Check the output of `{java} -version`."])
    logger.info("Detected Java version: %d", version)
    return version


def select_gc(requested: GcAlgorithm, java_version: int) -> GcAlgorithm:
    """Resolve `auto`: G1 on Java 17+, Parallel below."""
    if requested is not GcAlgorithm.AUTO:
        return requested
    selected = GcAlgorithm.G1 if java_version >= 17 else GcAlgorithm.PARALLEL
    logger.info("Auto-selected %s for Java %d", selected.value, java_version)
    return selected


def gc_flags(gc: GcAlgorithm, java_version: int) -> list[str]:
    """JVM flags selecting and tuning the garbage collector."""
    if gc is GcAlgorithm.G1:
        flags = ["-XX:+UseG1GC", "-XX:MaxGCPauseMillis=200", "-XX:G1HeapRegionSize=16m"]
        if java_version >= 21:
            flags += ["-XX:G1MixedGCCountTarget=8", "-XX:G1HeapWastePercent=10"]
        return flags
    if gc is GcAlgorithm.ZGC:
        if java_version >= 21:
            return ["-XX:+UseZGC"]
        if java_version >= 17:
            return ["-XX:+UseZGC", "-XX:+UnlockExperimentalVMOptions"]
        logger.warning("ZGC requires Java 17+. Falling back to G1GC")
        return ["-XX:+UseG1GC", "-XX:MaxGCPauseMillis=200"]
    if gc is GcAlgorithm.PARALLEL:
        return ["-XX:+UseParallelGC"]
    if gc is GcAlgorithm.SERIAL:
        return ["-XX:+UseSerialGC"]
    return []


def gc_log_flags(java_version: int, log_file: str) -> list[str]:
    """GC logging flags in the syntax the Java version understands."""
    if java_version >= 21:
        return [f"-Xlog:gc*,heap*,ergo*:{log_file}:time,tags,level", "-Xlog:gc+heap=info"]
    if java_version >= 11:
        return [f"-Xlog:gc*:{log_file}:time,tags"]
    return ["-XX:+PrintGC", "-XX:+PrintGCDetails", "-XX:+PrintGCTimeStamps", f"-Xloggc:{log_file}"]


def jvm_flags(
    options: LaunchOptions,
    java_version: int,
    gc: GcAlgorithm,
    cpu_count: int,
    gc_log_file: str | None = None,
) -> list[str]:
    """
    Assemble the JVM flags for a profiling-friendly run.

    Args:
        options: Launch options, already adjusted for the Java version.
        java_version: Major Java version.
        gc: Concrete garbage collector.
        cpu_count: Logical CPUs, used to size the virtual thread scheduler.
        gc_log_file: GC log filename when GC logging is enabled.
    """
    flags = [
        f"-Xms{options.heap}",
        f"-Xmx{options.heap}",
        "-XX:+UnlockDiagnosticVMOptions",
        "-XX:+DebugNonSafepoints",
        "-XX:+PreserveFramePointer",
        "-Djdk.attach.allowAttachSelf=true",
    ]
    flags += gc_flags(gc, java_version)
    if java_version >= 21:
        flags.append("-XX:+UseStringDeduplication")
    if options.virtual_threads:
        flags += [
            f"-Djdk.virtualThreadScheduler.parallelism={cpu_count}",
            f"-Djdk.virtualThreadScheduler.maxPoolSize={cpu_count * 256}",
        ]
    if options.preview:
        flags.append("--enable-preview")
    if gc_log_file is not None:
        flags += gc_log_flags(java_version, gc_log_file)
    return flags


def app_args(framework: Framework, profile: str, virtual_threads: bool) -> list[str]:
    """Framework-specific application arguments."""
    if framework is Framework.QUARKUS:
        args = [
            f"-Dquarkus.profile={profile}",
            f'-Dquarkus.log.category."{APP_LOG_CATEGORY}".level=DEBUG',
            f"-Dquarkus.http.port={HTTP_PORT}",
        ]
        if virtual_threads:
            args.append("-Dquarkus.virtual-threads.enabled=true")
        return args

    args = [
        f"--spring.profiles.active={profile}",
        f"--logging.level.{APP_LOG_CATEGORY}=DEBUG",
        f"--server.port={HTTP_PORT}",
    ]
    if virtual_threads:
        args.append("--spring.threads.virtual.enabled=true")
    return args


def _maven_classpath(runner: CommandRunner) -> str:
    """Resolve the dependency classpath with Maven, if available."""
    mvn = runner.which("mvn")
    if mvn is None:
        return ""
    result = runner.run([mvn, "dependency:build-classpath", "-Dmdep.outputFile=/dev/stdout", "-q"])
    return result.stdout.strip() if result.ok else ""


def plan_launch(
    options: LaunchOptions,
    runner: CommandRunner,
    project_dir: Path = Path("."),
    cpu_count: int | None = None,
    now: datetime | None = None,
) -> LaunchPlan:
    """
    Work out how to start the application.

    Runs the jar when it exists, Maven when the project has a pom.xml and mvn
    is installed, and the main class otherwise.

    Raises:
        LaunchError: Java is not installed.
    """
    notes: list[str] = []
    framework = detect_framework(options.framework, options.jar, project_dir)
    java_version = detect_java_version(runner)

    if options.virtual_threads and java_version < 21:
        notes.append(
            f"Virtual threads require Java 21+. Current version: {java_version}. Disabling virtual threads."
        )
        options = replace(options, virtual_threads=False)
    if options.preview and java_version < 21:
        notes.append(
            f"Preview features flag requires Java 21+. Current version: {java_version}. Disabling preview features."
        )
        options = replace(options, preview=False)
    for note in notes:
        logger.warning(note)

    gc = select_gc(options.gc, java_version)
    jar = options.jar or default_jar(framework, project_dir)
    cpu_count = cpu_count or psutil.cpu_count(logical=True) or FALLBACK_CPU_COUNT
    gc_log_file = f"gc-{timestamp_token(now)}.log" if options.gc_log else None

    flags = jvm_flags(options, java_version, gc, cpu_count, gc_log_file)
    args = app_args(framework, options.profile, options.virtual_threads)
    java = runner.which("java") or "java"

    jar_exists = (jar if jar.is_absolute() else project_dir / jar).is_file()
    mvn = runner.which("mvn")
    has_maven = (project_dir / "pom.xml").is_file() and mvn is not None

    if jar_exists:
        run_mode = RunMode.JAR
        argv = [java, *flags, "-jar", str(jar), *args]
        env: dict[str, str] = {}
    elif has_maven:
        run_mode = RunMode.MAVEN
        joined = " ".join(args)
        if framework is Framework.QUARKUS:
            argv = [mvn, "quarkus:dev", f"-Dquarkus.args={joined}"]
        else:
            argv = [
                mvn,
                "spring-boot:run",
                f"-Dspring-boot.run.profiles={options.profile}",
                f"-Dspring-boot.run.arguments={joined}",
            ]
        env = {"JAVA_TOOL_OPTIONS": " ".join(flags)}
    else:
        run_mode = RunMode.MAIN_CLASS
        classpath = "target/classes"
        dependencies = _maven_classpath(runner)
        if dependencies:
            classpath = f"{classpath}{os.pathsep}{dependencies}"
        argv = [java, *flags, "-cp", classpath, options.main_class, *args]
        env = {}

    return LaunchPlan(
        run_mode=run_mode,
        argv=argv,
        framework=framework,
        java_version=java_version,
        gc=gc,
        jvm_flags=flags,
        app_args=args,
        env=env,
        jar=jar,
        gc_log_file=gc_log_file,
        notes=notes,
    )


def launch(plan: LaunchPlan, runner: CommandRunner) -> int:
    """Start the application in the foreground and return its exit status."""
    env = {**os.environ, **plan.env} if plan.env else None
    return runner.run_interactive(plan.argv, env=env)
