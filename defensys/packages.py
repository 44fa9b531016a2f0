"""
Detection and installation of the tools the routines depend on.
"""

import logging
import re
import shutil

from defensys.branding import ds_print
from defensys.commands import run_command
from defensys.exceptions import PreconditionError

logger = logging.getLogger(__name__)

INSTALL_TIMEOUT = 600


class PackageInstaller:
    """
    Query and install OS packages with whichever of dnf / apt-get exists.

    RPM-based hosts are checked with ``rpm -q``, Debian-based ones with
    ``dpkg -s``.
    """

    def __init__(self):
        self.dnf_avail = shutil.which("dnf") is not None
        self.apt_avail = shutil.which("apt-get") is not None
        self.rpm_avail = shutil.which("rpm") is not None
        self.dpkg_avail = shutil.which("dpkg") is not None

    def _validate_package_name(self, package: str) -> bool:
        """Validate package name to prevent command injection."""
        return re.match(r"^[a-zA-Z0-9.+\-_]+$", package) is not None

    def is_installed(self, package: str) -> bool:
        if self.rpm_avail and run_command(["rpm", "-q", package], timeout=30).ok:
            return True
        if self.dpkg_avail and run_command(["dpkg", "-s", package], timeout=30).ok:
            return True
        return False

    def is_available(self, package: str) -> bool:
        """Whether the configured repositories carry ``package``."""
        if self.dnf_avail:
            return run_command(["dnf", "-q", "info", package], timeout=120).ok
        if self.apt_avail:
            return run_command(["apt-cache", "show", package], timeout=60).ok
        return False

    def install(self, *packages: str) -> None:
        """
        Install ``packages``.

        Raises:
            PreconditionError: If no supported package manager exists or installation fails
        """
        for package in packages:
            if not self._validate_package_name(package):
                raise PreconditionError(f"Invalid package name: {package}")

        if self.dnf_avail:
            commands = [["dnf", "install", "-y", *packages]]
        elif self.apt_avail:
            commands = [["apt-get", "update"], ["apt-get", "install", "-y", *packages]]
        else:
            raise PreconditionError(
                f"Unsupported package manager. Please install {' '.join(packages)} manually."
            )

        ds_print(f"Installing {', '.join(packages)}...", "thinking")
        for cmd in commands:
            result = run_command(cmd, timeout=INSTALL_TIMEOUT)
            if not result.ok:
                raise PreconditionError(
                    f"Installation of {' '.join(packages)} failed: {result.output or result.returncode}"
                )
        ds_print(f"Installed {', '.join(packages)}", "success")

    def ensure_tool(self, tool: str, package: str | None = None) -> None:
        """
        Install ``package`` (default: ``tool``) unless ``tool`` is already on PATH.

        Raises:
            PreconditionError: If the tool is still missing afterwards
        """
        if shutil.which(tool):
            logger.debug("%s already available", tool)
            return
        self.install(package or tool)
        if not shutil.which(tool):
            raise PreconditionError(f"{tool} is still not available after installing {package or tool}")
