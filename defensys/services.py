"""
systemd service control.
"""

import logging
import time

from defensys.commands import CommandResult, run_command

logger = logging.getLogger(__name__)


class ServiceController:
    """
    Thin wrapper over ``systemctl``.

    Args:
        timeout: Seconds allowed for each systemctl call
        clock: Monotonic clock, replaceable in tests
        sleep: Sleep function, replaceable in tests
    """

    def __init__(self, timeout: float = 30, clock=time.monotonic, sleep=time.sleep):
        self.timeout = timeout
        self._clock = clock
        self._sleep = sleep

    def _systemctl(self, *args: str) -> CommandResult:
        return run_command(["systemctl", *args], timeout=self.timeout)

    def unit_exists(self, name: str) -> bool:
        """Whether systemd knows a unit called ``name``."""
        result = self._systemctl("list-unit-files", f"{name}.service", "--no-legend")
        return result.ok and bool(result.stdout.strip())

    def is_enabled(self, name: str) -> bool:
        return self._systemctl("is-enabled", "--quiet", name).ok

    def is_active(self, name: str) -> bool:
        result = self._systemctl("is-active", name)
        return result.stdout.strip() == "active"

    def enable(self, name: str) -> CommandResult:
        logger.info("Enabling %s", name)
        return self._systemctl("enable", name)

    def start(self, name: str) -> CommandResult:
        logger.info("Starting %s", name)
        return self._systemctl("start", name)

    def stop(self, name: str) -> CommandResult:
        logger.info("Stopping %s", name)
        return self._systemctl("stop", name)

    def restart(self, name: str) -> CommandResult:
        logger.info("Restarting %s", name)
        return self._systemctl("restart", name)

    def reload(self, name: str) -> CommandResult:
        return self._systemctl("reload", name)

    def wait_active(self, name: str, timeout: float = 5.0, poll: float = 0.5) -> bool:
        """
        Poll ``is-active`` until the unit is active or ``timeout`` expires.

        Returns:
            True if the unit became active in time
        """
        deadline = self._clock() + timeout
        while True:
            if self.is_active(name):
                return True
            if self._clock() >= deadline:
                logger.warning("%s not active after %.1fs", name, timeout)
                return False
            self._sleep(poll)

    def ensure_running(self, name: str) -> bool:
        """Enable and start ``name`` if needed. Returns whether it is active."""
        if not self.is_enabled(name):
            self.enable(name)
        if not self.is_active(name):
            self.start(name)
        return self.is_active(name)
