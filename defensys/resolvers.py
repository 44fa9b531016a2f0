"""
Effective-value resolution.

A resolver answers "what value of this setting is actually in force?". It
prefers the owning service's own test facility, which accounts for include
files, repeated keywords and compiled-in defaults, then falls back to the
last active line of the configuration file, then to a documented default.
When nothing yields a value the result is UNKNOWN, which callers treat as
non-compliant.

Each tool's output is parsed by one function here so that a format change
in the tool is fixed in one place.
"""

import logging
import socket
from dataclasses import dataclass
from enum import Enum

from defensys.commands import run_command
from defensys.directives import ConfigTarget, Directive, find_active_value, read_text
from defensys.exceptions import PreconditionError

logger = logging.getLogger(__name__)


class ValueSource(Enum):
    """Where a resolved value came from."""

    EFFECTIVE = "effective"
    FILE = "file"
    DEFAULT = "default"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ResolvedValue:
    """
    Result of resolving one setting.

    Attributes:
        value: The value, or None when unknown
        source: Where the value came from
        tool_error: Why the service's test facility could not be used, if it failed
    """

    value: str | None
    source: ValueSource
    tool_error: str | None = None

    @property
    def known(self) -> bool:
        return self.value is not None

    def describe(self) -> str:
        if self.value is None:
            return "unknown"
        if self.source is ValueSource.EFFECTIVE:
            return self.value
        return f"{self.value} ({self.source.value})"


class ToolFailure(Exception):
    """The service's test facility is missing or returned an error."""
    pass


def parse_sshd_test_output(output: str) -> dict[str, str]:
    """
    Parse ``sshd -T`` output.

    Schema: one ``keyword value...`` pair per line, keywords in lower case.
    Keywords that repeat (``allowusers``, ``denyusers``, ...) are joined with
    a single space in the order printed.
    """
    values: dict[str, str] = {}
    for raw in output.splitlines():
        line = raw.strip()
        if not line:
            continue
        keyword, _, value = line.partition(" ")
        keyword = keyword.lower()
        value = " ".join(value.split())
        if keyword in values and value:
            values[keyword] = f"{values[keyword]} {value}"
        else:
            values[keyword] = value
    return values


def parse_sysctl_value(output: str) -> str:
    """Parse ``sysctl -n`` output, collapsing tab-separated multi-values."""
    return " ".join(output.split())


class EffectiveValueResolver:
    """
    Resolve a directive's value from the config file, then a default.

    Subclasses add a tool query in :meth:`query_tool`.

    Args:
        defaults: Documented default values keyed by lower-case directive key
    """

    def __init__(self, defaults: dict[str, str] | None = None):
        self.defaults = {k.lower(): v for k, v in (defaults or {}).items()}

    def query_tool(self, target: ConfigTarget, directive: Directive) -> str | None:
        """
        Ask the service for the effective value.

        Returns:
            The value, or None when the tool has no such setting

        Raises:
            ToolFailure: If the tool is unavailable or errors
        """
        raise ToolFailure("no test facility")

    def resolve(self, target: ConfigTarget, directive: Directive) -> ResolvedValue:
        """Resolve ``directive`` against ``target``. Never raises for absence."""
        tool_error = None
        try:
            value = self.query_tool(target, directive)
            if value is not None:
                return ResolvedValue(value, ValueSource.EFFECTIVE)
        except ToolFailure as e:
            tool_error = str(e)
            logger.debug("Tool query for %s failed: %s", directive.key, e)

        text = read_text(target.path)
        value = find_active_value(text, directive)
        if value is not None:
            return ResolvedValue(value, ValueSource.FILE, tool_error)

        default = self.defaults.get(directive.key.lower())
        if default is not None:
            return ResolvedValue(default, ValueSource.DEFAULT, tool_error)

        return ResolvedValue(None, ValueSource.UNKNOWN, tool_error)


class FileResolver(EffectiveValueResolver):
    """Resolver for files with no test facility (login.defs, chrony.conf, ...)."""

    def query_tool(self, target: ConfigTarget, directive: Directive) -> str | None:
        raise ToolFailure("file-only resolver")


class FileContentResolver(EffectiveValueResolver):
    """Resolves to the whole file content; used for managed whole-file configs."""

    def resolve(self, target: ConfigTarget, directive: Directive) -> ResolvedValue:
        if not target.path.exists():
            return ResolvedValue(None, ValueSource.UNKNOWN)
        return ResolvedValue(read_text(target.path), ValueSource.FILE)


class SshdResolver(EffectiveValueResolver):
    """
    Resolve sshd settings through ``sshd -T``.

    The connection parameters (user, host, addr) makes sshd evaluate Match blocks
    the way they would apply to a root login from this host.
    """

    def __init__(self, defaults: dict[str, str] | None = None, user: str = "root", timeout: float = 15):
        super().__init__(defaults)
        self.user = user
        self.timeout = timeout

    def _primary_address(self) -> str:
        try:
            result = run_command(["hostname", "-I"], timeout=5)
        except PreconditionError:
            return "127.0.0.1"
        addresses = result.stdout.split() if result.ok else []
        if not addresses:
            logger.warning("Could not determine host IP address, using 127.0.0.1 for sshd -T")
            return "127.0.0.1"
        return addresses[0]

    def effective_config(self, target: ConfigTarget) -> dict[str, str]:
        """
        Raises:
            ToolFailure: If sshd is missing or rejects the configuration
        """
        cmd = [
            "sshd", "-T", "-f", str(target.path),
            "-C", f"user={self.user}",
            "-C", f"host={socket.gethostname()}",
            "-C", f"addr={self._primary_address()}",
        ]
        try:
            result = run_command(cmd, timeout=self.timeout)
        except PreconditionError as e:
            raise ToolFailure(str(e)) from e
        if not result.ok:
            raise ToolFailure(result.output or f"sshd -T exited with {result.returncode}")
        return parse_sshd_test_output(result.stdout)

    def query_tool(self, target: ConfigTarget, directive: Directive) -> str | None:
        return self.effective_config(target).get(directive.key.lower())


class SysctlResolver(EffectiveValueResolver):
    """Resolve kernel parameters through ``sysctl -n``."""

    def query_tool(self, target: ConfigTarget, directive: Directive) -> str | None:
        try:
            result = run_command(["sysctl", "-n", directive.key], timeout=10)
        except PreconditionError as e:
            raise ToolFailure(str(e)) from e
        if not result.ok:
            raise ToolFailure(result.output or f"sysctl exited with {result.returncode}")
        return parse_sysctl_value(result.stdout)
