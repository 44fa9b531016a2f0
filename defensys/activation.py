"""
How an edited configuration is put into effect.

An activation captures the service state before the mutation, applies the
new configuration, and restores the service after a rollback.
"""

import logging

from defensys.commands import run_command
from defensys.exceptions import ApplyError, PreconditionError, RollbackError
from defensys.services import ServiceController

logger = logging.getLogger(__name__)


class Activation:
    """Base activation: nothing to apply."""

    #: Service name for audit entries, if any
    service_name: str | None = None

    def capture(self) -> None:
        """Record the pre-mutation state. Called once, before anything changes."""

    def apply(self) -> None:
        """
        Raises:
            ApplyError: If the new configuration could not be put into effect
        """

    def restore(self) -> None:
        """
        Bring the service back to its captured state after the snapshot is restored.

        Raises:
            RollbackError: If that fails
        """

    def describe(self) -> str:
        return "none"


class NoActivation(Activation):
    """Files that take effect on next read (login.defs, pwquality.conf, ...)."""
    pass


class ServiceActivation(Activation):
    """
    Restart a systemd service and wait for it to report active.

    Args:
        controller: Service controller
        name: Unit name
        timeout: Seconds to wait for the unit to become active after restart
    """

    def __init__(self, controller: ServiceController, name: str, timeout: float = 5.0):
        self.controller = controller
        self.service_name = name
        self.timeout = timeout
        self.was_active: bool | None = None

    def capture(self) -> None:
        self.was_active = self.controller.is_active(self.service_name)
        logger.debug("%s active before mutation: %s", self.service_name, self.was_active)

    def apply(self) -> None:
        result = self.controller.restart(self.service_name)
        if not result.ok:
            raise ApplyError(
                f"Failed to restart {self.service_name}: {result.output or result.returncode}"
            )
        if not self.controller.wait_active(self.service_name, self.timeout):
            raise ApplyError(f"{self.service_name} did not become active within {self.timeout}s")

    def restore(self) -> None:
        name = self.service_name
        if self.was_active:
            result = self.controller.restart(name)
            if not result.ok or not self.controller.wait_active(name, self.timeout):
                raise RollbackError(
                    f"{name} did not come back with the restored configuration. "
                    "Manual intervention required."
                )
        elif self.controller.is_active(name):
            self.controller.stop(name)

    def describe(self) -> str:
        return f"restart {self.service_name}"


class CommandActivation(Activation):
    """
    Run a command that loads the new configuration, e.g. ``sysctl --system``.

    On rollback the same command is run again so the restored file is
    loaded back.
    """

    def __init__(self, command: list[str], service_name: str | None = None, timeout: float = 60):
        self.command = list(command)
        self.service_name = service_name
        self.timeout = timeout

    def _run(self):
        try:
            return run_command(self.command, timeout=self.timeout)
        except PreconditionError as e:
            raise ApplyError(str(e)) from e

    def apply(self) -> None:
        result = self._run()
        if not result.ok:
            raise ApplyError(f"{' '.join(self.command)} failed: {result.output or result.returncode}")

    def restore(self) -> None:
        try:
            result = self._run()
        except ApplyError as e:
            raise RollbackError(str(e)) from e
        if not result.ok:
            raise RollbackError(
                f"{' '.join(self.command)} failed with the restored configuration: "
                f"{result.output or result.returncode}"
            )

    def describe(self) -> str:
        return " ".join(self.command)
