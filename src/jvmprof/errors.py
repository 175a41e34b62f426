"""Error taxonomy for jvmprof.

Every error carries a message and at least one remediation line that the
terminal renders beneath it.
"""


class ProfilerError(Exception):
    """Base class for all jvmprof errors."""

    default_remediation: tuple[str, ...] = ()

    def __init__(self, message: str, remediation: list[str] | None = None) -> None:
        """
        Initialize the error.

        Args:
            message: Categorized diagnostic shown to the operator.
            remediation: Actionable follow-ups (commands, menu options, paths).
        """
        super().__init__(message)
        self.message = message
        self.remediation = list(remediation) if remediation else list(self.default_remediation)


class DiscoveryError(ProfilerError):
    """No usable target process. Fatal to the session."""


class NoProcessFound(DiscoveryError):
    """No JVM process is running."""

    default_remediation = (
        "Start your application first, for example: ./mvnw spring-boot:run",
        "Or launch it with profiling flags: jvmprof launch",
        "Then run jvmprof session again.",
    )


class ProcessNotFound(DiscoveryError):
    """The selected pid does not exist or is not accessible."""

    default_remediation = ("Check the pid with `jps -l` and try again.",)


class NotTargetRuntime(DiscoveryError):
    """The selected pid is not a JVM."""

    default_remediation = ("Pick a pid listed by `jps -l`.",)


class SelectionCancelled(DiscoveryError):
    """The operator declined to profile the offered process."""

    default_remediation = ("Run jvmprof session again when ready.",)


class ProvisioningError(ProfilerError):
    """The profiler distribution could not be installed. Fatal to the session."""


class UnsupportedPlatform(ProvisioningError):
    """No async-profiler build exists for this OS/architecture."""

    default_remediation = ("Supported platforms: linux-x64, linux-arm64, macos.",)


class DownloadFailed(ProvisioningError):
    """The archive could not be fetched or was too small to be genuine."""

    default_remediation = (
        "Check network access to github.com and retry.",
        "Or download the archive manually into the profiler directory.",
    )


class ExtractionFailed(ProvisioningError):
    """The downloaded archive could not be unpacked."""

    default_remediation = ("Delete the profiler directory and retry.",)


class NoTransportAvailable(ProvisioningError):
    """None of the configured HTTP clients can be used."""

    default_remediation = ("Install curl, or set JVMPROF_TRANSPORTS=httpx,curl.",)


class ActionError(ProfilerError):
    """A profiling action failed. Recovered locally; the session continues."""


class ToolUnavailable(ActionError):
    """An external tool needed by the action is missing."""

    default_remediation = ("Make sure a JDK is installed and its bin/ directory is on PATH.",)


class ToolInvocationFailed(ActionError):
    """An external tool exited with a non-zero status."""


class ArtifactError(ProfilerError):
    """A result file could not be read or converted. Degrades to guidance."""


class ConverterUnavailable(ArtifactError):
    """Neither jfrconv nor converter.jar is present."""

    default_remediation = (
        "Open the recording with JDK Mission Control, JProfiler or VisualVM.",
    )


class LifecycleError(ProfilerError):
    """Signalling the target failed."""

    default_remediation = ("You may need elevated privileges, or the process may already be gone.",)


class LaunchError(ProfilerError):
    """The target application could not be launched."""
