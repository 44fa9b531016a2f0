"""
Thin wrapper around subprocess for the external tools defensys drives.
"""

import logging
import shutil
import subprocess
from dataclasses import dataclass

from defensys.exceptions import PreconditionError

DEFAULT_TIMEOUT = 60

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Outcome of one external command."""

    command: list
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        """stdout and stderr combined, for diagnostics."""
        return "\n".join(part for part in (self.stdout.strip(), self.stderr.strip()) if part)


def run_command(
    cmd: list[str],
    timeout: float | None = DEFAULT_TIMEOUT,
    input: str | None = None,
) -> CommandResult:
    """
    Run ``cmd`` and capture its output.

    Args:
        cmd: Command and arguments
        timeout: Seconds before the command is abandoned (None waits forever)
        input: Text sent to the command's stdin

    Returns:
        CommandResult. A timeout is reported as return code 124.

    Raises:
        PreconditionError: If the executable does not exist
    """
    logger.debug("Running: %s", " ".join(cmd))
    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=timeout,
            input=input,
        )
    except FileNotFoundError as e:
        raise PreconditionError(f"Required tool not found: {cmd[0]}") from e
    except subprocess.TimeoutExpired:
        logger.warning("Command timed out after %ss: %s", timeout, " ".join(cmd))
        return CommandResult(cmd, 124, "", f"timed out after {timeout}s")

    return CommandResult(cmd, result.returncode, result.stdout or "", result.stderr or "")


def tool_available(name: str) -> bool:
    """Whether ``name`` is on PATH."""
    return shutil.which(name) is not None


def require_tools(*names: str) -> None:
    """
    Raises:
        PreconditionError: If any of ``names`` is not on PATH
    """
    missing = [name for name in names if not tool_available(name)]
    if missing:
        raise PreconditionError(f"Required tool(s) not found: {', '.join(missing)}")
