"""
Syntax validators for edited configuration files.

A validator runs after the edit and before any service sees the new file.
Where the owning daemon ships a test mode it is used; otherwise the file is
checked in Python.
"""

import re
from dataclasses import dataclass, field
from pathlib import Path

from defensys.commands import CommandResult, run_command
from defensys.directives import read_text
from defensys.exceptions import PreconditionError

PROC_SYS = Path("/proc/sys")


@dataclass
class ValidationReport:
    """Result of validating one configuration file."""

    passed: bool
    diagnostics: list = field(default_factory=list)

    @property
    def summary(self) -> str:
        return "; ".join(self.diagnostics) if self.diagnostics else "ok"


class ConfigValidator:
    """Base class for configuration validators."""

    def validate(self, path: Path) -> ValidationReport:
        """
        Validate the configuration file at ``path``.

        Args:
            path: File to check

        Returns:
            ValidationReport. Never raises for invalid content.
        """
        raise NotImplementedError("Subclasses must implement validate()")


class NullValidator(ConfigValidator):
    """Accepts anything; used for targets with no syntax to break."""

    def validate(self, path: Path) -> ValidationReport:
        return ValidationReport(True)


class CommandValidator(ConfigValidator):
    """
    Validate by running a daemon's test mode.

    ``command`` may contain ``{path}``, replaced with the file being checked.
    A missing tool is reported as a failed validation, never as a pass.
    """

    command: tuple = ()
    timeout: float = 30

    def build_command(self, path: Path) -> list[str]:
        return [part.format(path=path) for part in self.command]

    def check_output(self, result: CommandResult) -> ValidationReport:
        if result.ok:
            return ValidationReport(True)
        message = result.output or f"{result.command[0]} exited with {result.returncode}"
        return ValidationReport(False, message.splitlines())

    def validate(self, path: Path) -> ValidationReport:
        cmd = self.build_command(Path(path))
        try:
            result = run_command(cmd, timeout=self.timeout)
        except PreconditionError as e:
            return ValidationReport(False, [str(e)])
        return self.check_output(result)


class SshdValidator(CommandValidator):
    """Validator for sshd_config."""

    command = ("sshd", "-t", "-f", "{path}")


class LogrotateValidator(CommandValidator):
    """Validator for logrotate snippets (debug mode does not rotate)."""

    command = ("logrotate", "-d", "{path}")

    def check_output(self, result: CommandResult) -> ValidationReport:
        report = super().check_output(result)
        if not report.passed:
            return report
        # logrotate -d exits 0 on some parse errors and only prints them
        errors = [line for line in result.output.splitlines() if line.lower().startswith("error")]
        return ValidationReport(not errors, errors)


class Fail2banValidator(CommandValidator):
    """Validator for fail2ban jails; checks the whole fail2ban configuration."""

    command = ("fail2ban-client", "-t")


class ChronyValidator(CommandValidator):
    """Validator for chrony.conf (``-p`` prints the parsed config and exits)."""

    command = ("chronyd", "-p", "-f", "{path}")


class KeyValueValidator(ConfigValidator):
    """
    Line-syntax check for ``key<sep>value`` files such as pwquality.conf
    and login.defs.
    """

    line_pattern = re.compile(r"^\s*[A-Za-z_][\w.-]*\s*(=\s*\S.*|\s+\S.*|=?\s*)$")

    def validate(self, path: Path) -> ValidationReport:
        diagnostics = []
        text = read_text(path)
        for number, line in enumerate(text.splitlines(), start=1):
            stripped = line.strip()
            if not stripped or stripped.startswith("#"):
                continue
            if not self.line_pattern.match(line):
                diagnostics.append(f"line {number}: unparseable: {stripped}")
        return ValidationReport(not diagnostics, diagnostics)


class SysctlValidator(ConfigValidator):
    """
    Validator for sysctl.d snippets.

    Every active line must be ``key = value`` and name a parameter the
    running kernel knows.
    """

    line_pattern = re.compile(r"^\s*-?([\w./-]+)\s*=\s*(\S.*)$")

    def __init__(self, proc_root: Path = PROC_SYS):
        self.proc_root = Path(proc_root)

    def validate(self, path: Path) -> ValidationReport:
        diagnostics = []
        text = read_text(path)
        for number, line in enumerate(text.splitlines(), start=1):
            stripped = line.strip()
            if not stripped or stripped.startswith(("#", ";")):
                continue
            match = self.line_pattern.match(line)
            if not match:
                diagnostics.append(f"line {number}: not a key = value assignment: {stripped}")
                continue
            key = match.group(1)
            if self.proc_root.exists() and not (self.proc_root / key.replace(".", "/")).exists():
                diagnostics.append(f"line {number}: unknown kernel parameter: {key}")
        return ValidationReport(not diagnostics, diagnostics)


class PamValidator(ConfigValidator):
    """
    Validator for PAM stacks: every active line must have a known module
    type, a control field and a module path.
    """

    TYPES = ("auth", "account", "password", "session", "-auth", "-account", "-password", "-session")

    def validate(self, path: Path) -> ValidationReport:
        diagnostics = []
        text = read_text(path)
        for number, line in enumerate(text.splitlines(), start=1):
            stripped = line.strip()
            if not stripped or stripped.startswith("#"):
                continue
            if stripped.startswith("@include"):
                continue
            parts = stripped.split()
            if parts[0] not in self.TYPES:
                diagnostics.append(f"line {number}: unknown module type '{parts[0]}'")
                continue
            if len(parts) < 2:
                diagnostics.append(f"line {number}: missing control field")
                continue
            if parts[1].startswith("["):
                if "]" not in stripped:
                    diagnostics.append(f"line {number}: unterminated control field")
                    continue
                rest = stripped.split("]", 1)[1].split()
            else:
                rest = parts[2:]
            if not rest:
                diagnostics.append(f"line {number}: missing module path")
        return ValidationReport(not diagnostics, diagnostics)


# Validator registry
VALIDATORS = {
    "sshd": SshdValidator(),
    "logrotate": LogrotateValidator(),
    "fail2ban": Fail2banValidator(),
    "chrony": ChronyValidator(),
    "sysctl": SysctlValidator(),
    "pam": PamValidator(),
    "keyvalue": KeyValueValidator(),
    "none": NullValidator(),
}


def get_validator(config_type: str) -> ConfigValidator:
    """Get validator for a specific config type."""
    validator = VALIDATORS.get(config_type)
    if not validator:
        raise ValueError(f"No validator found for config type: {config_type}")
    return validator
