"""Download and installation of the async-profiler distribution."""

import logging
import platform as host_platform
import stat
import tarfile
import zipfile
from collections.abc import Sequence
from pathlib import Path
from typing import Protocol

import httpx

from jvmprof.config import MIN_ARCHIVE_BYTES, Settings
from jvmprof.errors import (
    DownloadFailed,
    ExtractionFailed,
    NoTransportAvailable,
    UnsupportedPlatform,
)
from jvmprof.models import ToolInstallation
from jvmprof.runner import CommandRunner

logger = logging.getLogger(__name__)

SUPPORTED_PLATFORMS = {
    ("linux", "x86_64"): "linux-x64",
    ("linux", "amd64"): "linux-x64",
    ("linux", "aarch64"): "linux-arm64",
    ("linux", "arm64"): "linux-arm64",
    ("darwin", "x86_64"): "macos",
    ("darwin", "arm64"): "macos",
}


def detect_platform(system: str | None = None, machine: str | None = None) -> str:
    """
    Map OS and CPU architecture to an async-profiler platform tag.

    Raises:
        UnsupportedPlatform: No release exists for the combination.
    """
    system = (system or host_platform.system()).lower()
    machine = (machine or host_platform.machine()).lower()
    tag = SUPPORTED_PLATFORMS.get((system, machine))
    if tag is None:
        raise UnsupportedPlatform(f"Unsupported platform: {system}/{machine}")
    logger.info("Detected platform: %s", tag)
    return tag


def archive_name(platform: str, version: str) -> str:
    """Return the release archive filename for a platform."""
    extension = "zip" if platform == "macos" else "tar.gz"
    return f"async-profiler-{version}-{platform}.{extension}"


class Transport(Protocol):
    """An HTTP client able to save a URL to a file."""

    name: str

    def available(self) -> bool:
        """Check whether the client can be used on this host."""
        ...

    def fetch(self, url: str, destination: Path) -> None:
        """Download url into destination, raising DownloadFailed on error."""
        ...


class HttpxTransport:
    """In-process download with httpx."""

    name = "httpx"

    def __init__(self, timeout: float = 120.0, transport: httpx.BaseTransport | None = None) -> None:
        """
        Initialize the transport.

        Args:
            timeout: Request timeout in seconds.
            transport: Optional httpx transport the client sends requests through.
        """
        self._timeout = timeout
        self._transport = transport

    def available(self) -> bool:
        """httpx is a hard dependency, so it is always available."""
        return True

    def fetch(self, url: str, destination: Path) -> None:
        """Stream the response body into destination."""
        try:
            with httpx.Client(
                timeout=httpx.Timeout(self._timeout),
                follow_redirects=True,
                transport=self._transport,
            ) as client:
                with client.stream("GET", url) as response:
                    response.raise_for_status()
                    with destination.open("wb") as out:
                        for chunk in response.iter_bytes():
                            out.write(chunk)
        except httpx.HTTPError as exc:
            raise DownloadFailed(f"Download failed: {exc}") from exc


class CurlTransport:
    """Download with the curl command-line client."""

    name = "curl"

    def __init__(self, runner: CommandRunner, timeout: float = 120.0) -> None:
        """Initialize the transport."""
        self._runner = runner
        self._timeout = timeout

    def available(self) -> bool:
        """Check that curl is on PATH."""
        return self._runner.which("curl") is not None

    def fetch(self, url: str, destination: Path) -> None:
        """Run curl, following redirects and failing on HTTP errors."""
        result = self._runner.run(
            ["curl", "-fsSL", "-o", str(destination), url],
            timeout=self._timeout,
        )
        if not result.ok:
            raise DownloadFailed(f"curl exited with status {result.returncode}: {result.stderr.strip()}")


def build_transports(settings: Settings, runner: CommandRunner) -> list[Transport]:
    """Instantiate the transports named in settings, in order."""
    factories = {
        "httpx": lambda: HttpxTransport(settings.download_timeout),
        "curl": lambda: CurlTransport(runner, settings.download_timeout),
    }
    transports = []
    for name in settings.transports:
        factory = factories.get(name)
        if factory is None:
            logger.warning("Ignoring unknown transport %r", name)
            continue
        transports.append(factory())
    return transports


class ToolProvisioner:
    """Installs async-profiler into a directory, at most once."""

    def __init__(
        self,
        install_dir: Path,
        transports: Sequence[Transport],
        base_url: str,
        min_archive_bytes: int = MIN_ARCHIVE_BYTES,
    ) -> None:
        """
        Initialize the provisioner.

        Args:
            install_dir: Directory holding the extracted release and "current".
            transports: HTTP clients tried in order; the first available wins.
            base_url: Release download URL prefix.
            min_archive_bytes: Smallest payload accepted as a real archive.
        """
        self.install_dir = install_dir
        self._transports = list(transports)
        self._base_url = base_url.rstrip("/")
        self._min_archive_bytes = min_archive_bytes

    def source_url(self, platform: str, version: str) -> str:
        """Return the release URL for a platform and version."""
        return f"{self._base_url}/v{version}/{archive_name(platform, version)}"

    def ensure_installed(self, platform: str, version: str) -> ToolInstallation:
        """
        Make sure async-profiler is installed, downloading it if needed.

        A no-op when the "current" pointer already exists.

        Raises:
            NoTransportAvailable: No configured HTTP client can be used.
            DownloadFailed: The download failed or the payload is too small.
            ExtractionFailed: The archive could not be unpacked.
        """
        url = self.source_url(platform, version)
        installation = ToolInstallation(
            platform=platform,
            version=version,
            install_dir=self.install_dir,
            source_url=url,
            verified=True,
        )
        if installation.current.exists():
            logger.info("async-profiler already available at %s", self.install_dir)
            return installation

        transport = self._select_transport()
        self.install_dir.mkdir(parents=True, exist_ok=True)
        self._remove_stale_archives()

        archive = self.install_dir / archive_name(platform, version)
        try:
            logger.info("Downloading %s with %s", url, transport.name)
            transport.fetch(url, archive)
            self._check_payload(archive)
            extracted = self._extract(archive)
        finally:
            archive.unlink(missing_ok=True)

        self._point_current(extracted)
        logger.info("async-profiler installed to %s", self.install_dir)
        return installation

    def _select_transport(self) -> Transport:
        """Return the first available transport."""
        for transport in self._transports:
            if transport.available():
                return transport
        names = ", ".join(t.name for t in self._transports) or "none configured"
        raise NoTransportAvailable(f"No HTTP client available ({names})")

    def _remove_stale_archives(self) -> None:
        """Delete archives left over from earlier failed attempts."""
        for pattern in ("async-profiler-*.tar.gz", "async-profiler-*.zip"):
            for stale in self.install_dir.glob(pattern):
                stale.unlink(missing_ok=True)

    def _check_payload(self, archive: Path) -> None:
        """Reject missing or suspiciously small downloads."""
        if not archive.is_file():
            raise DownloadFailed(f"Download failed: file {archive.name} not found")
        size = archive.stat().st_size
        if size < self._min_archive_bytes:
            raise DownloadFailed(
                f"Download failed: file is too small ({size} bytes). "
                "This usually means a redirect or error page was downloaded."
            )

    def _extract(self, archive: Path) -> Path:
        """Unpack the archive and return the top-level directory it created."""
        before = {path.name for path in self.install_dir.iterdir()}
        try:
            if archive.name.endswith(".zip"):
                with zipfile.ZipFile(archive) as bundle:
                    bundle.extractall(self.install_dir)
            else:
                with tarfile.open(archive, "r:gz") as bundle:
                    bundle.extractall(self.install_dir, filter="data")
        except (tarfile.TarError, zipfile.BadZipFile, OSError) as exc:
            raise ExtractionFailed(f"Failed to extract {archive.name}: {exc}") from exc

        expected = self.install_dir / archive.name.removesuffix(".tar.gz").removesuffix(".zip")
        if expected.is_dir():
            return expected
        created = [
            path
            for path in self.install_dir.iterdir()
            if path.is_dir() and path.name not in before
        ]
        if len(created) != 1:
            raise ExtractionFailed(f"Unexpected layout in {archive.name}")
        return created[0]

    def _point_current(self, extracted: Path) -> None:
        """(Re)create the "current" symlink and mark launchers executable."""
        current = self.install_dir / "current"
        if current.is_symlink() or current.exists():
            current.unlink()
        current.symlink_to(extracted.name, target_is_directory=True)

        bin_dir = extracted / "bin"
        if bin_dir.is_dir():
            # zip archives do not preserve the executable bit
            for tool in bin_dir.iterdir():
                if tool.is_file():
                    tool.chmod(tool.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)


def provisioner_from_settings(settings: Settings, runner: CommandRunner) -> ToolProvisioner:
    """Build a provisioner configured from settings."""
    return ToolProvisioner(
        install_dir=settings.profiler_dir,
        transports=build_transports(settings, runner),
        base_url=settings.download_base_url,
        min_archive_bytes=settings.min_archive_bytes,
    )
