"""
Password policy: complexity (pwquality), history (PAM), aging (login.defs)
and the inactivity lock applied to new accounts.
"""

import glob
import logging
import re
from pathlib import Path

from defensys.commands import run_command
from defensys.compliance import ExactMatch
from defensys.directives import ConfigTarget, Directive, InsertionPolicy, read_text
from defensys.engine import Requirement
from defensys.exceptions import PreconditionError
from defensys.resolvers import FileContentResolver, FileResolver
from defensys.routines.base import RoutineContext
from defensys.templates import render, template_context
from defensys.validators import KeyValueValidator, PamValidator

logger = logging.getLogger(__name__)

PAM_MODULE_DIRS = (
    "/usr/lib64/security",
    "/usr/lib/security",
    "/lib/security",
    "/lib/*-linux-gnu/security",
    "/usr/lib/*-linux-gnu/security",
)

PWQUALITY_LINE = "password    requisite     pam_pwquality.so retry=3 enforce_for_root"
PWHISTORY_LINE = "password    required      pam_pwhistory.so remember={remember} retry=3 enforce_for_root use_authtok"

_PAM_UNIX_PASSWORD = re.compile(r"^\s*password\s+(\[[^\]]*\]|\S+)\s+pam_unix\.so")
_REMEMBER_OPTION = re.compile(r"\s+remember=\d+")


def pam_module_available(module: str) -> bool:
    """Whether a PAM module (e.g. ``pam_pwhistory.so``) is installed."""
    return any(glob.glob(f"{directory}/{module}") for directory in PAM_MODULE_DIRS)


def harden_pam_stack(text: str, remember: int, use_pwhistory: bool) -> str:
    """
    Return ``text`` with pwquality enforcement and password history configured.

    - Any pam_pwquality line is replaced by a single ``requisite`` line placed
      after pam_cracklib, else before the pam_unix password line, else after
      the first password line.
    - With pam_pwhistory, a ``remember=N`` history line follows pwquality;
      otherwise ``remember=N`` goes on the pam_unix password line.
    - The pam_unix password line gets ``use_authtok``.

    Applying it twice gives the same result as applying it once.
    """
    newline = "\r\n" if "\r\n" in text else "\n"
    had_trailing_newline = text.endswith(("\n", "\r\n")) or not text
    lines = [line for line in text.splitlines() if "pam_pwquality.so" not in line]
    if use_pwhistory:
        lines = [line for line in lines if "pam_pwhistory.so" not in line]

    for i, line in enumerate(lines):
        if _PAM_UNIX_PASSWORD.match(line):
            line = _REMEMBER_OPTION.sub("", line.rstrip())
            if not re.search(r"\buse_authtok\b", line):
                line += " use_authtok"
            if not use_pwhistory:
                line += f" remember={remember}"
            lines[i] = line

    cracklib = next((i for i, line in enumerate(lines) if "pam_cracklib.so" in line), None)
    unix = next((i for i, line in enumerate(lines) if _PAM_UNIX_PASSWORD.match(line)), None)
    first_password = next(
        (i for i, line in enumerate(lines) if re.match(r"^\s*-?password\s", line)), None
    )
    if cracklib is not None:
        position = cracklib + 1
    elif unix is not None:
        position = unix
    elif first_password is not None:
        position = first_password + 1
    else:
        position = len(lines)

    block = [PWQUALITY_LINE]
    if use_pwhistory:
        block.append(PWHISTORY_LINE.format(remember=remember))
    lines[position:position] = block

    result = newline.join(lines)
    if had_trailing_newline:
        result += newline
    return result


def parse_useradd_defaults(output: str) -> dict[str, str]:
    """Parse ``useradd -D`` output (``KEY=value`` per line)."""
    values = {}
    for line in output.splitlines():
        key, sep, value = line.strip().partition("=")
        if sep:
            values[key] = value
    return values


def _ensure_pwquality_installed(rc: RoutineContext) -> None:
    installer = rc.packages
    if rc.dry_run:
        return
    if installer.is_installed("libpwquality") or installer.is_installed("libpam-pwquality"):
        return
    package = "libpwquality" if installer.dnf_avail else "libpam-pwquality"
    installer.install(package)


def configure_pwquality(rc: RoutineContext) -> int:
    policy = rc.settings.password_policy
    content = render("pwquality", **template_context(policy))
    directive = Directive(Path(policy.pwquality_conf).name, content, InsertionPolicy.REPLACE_WHOLE_BLOCK)
    outcome = rc.mutate(
        ConfigTarget(Path(policy.pwquality_conf), must_exist=False, mode=0o600, owner_uid=0, owner_gid=0),
        [Requirement(directive, ExactMatch(content))],
        resolver=FileContentResolver(),
        validator=KeyValueValidator(),
        description="password complexity rules",
    )
    return outcome.exit_code


def configure_pam(rc: RoutineContext) -> int:
    policy = rc.settings.password_policy
    use_pwhistory = pam_module_available("pam_pwhistory.so")
    if use_pwhistory:
        logger.info("Using pam_pwhistory for password history")
    else:
        rc.audit.info("pam_pwhistory not found; using the pam_unix remember option")

    exit_code = 0
    for pam_file in policy.pam_files:
        path = Path(pam_file)
        if not path.exists():
            rc.audit.warning(f"PAM file {path} not found. Skipping.")
            continue
        desired = harden_pam_stack(read_text(path), int(policy.remember), use_pwhistory)
        directive = Directive(path.name, desired, InsertionPolicy.REPLACE_WHOLE_BLOCK)
        outcome = rc.mutate(
            ConfigTarget(path),
            [Requirement(directive, ExactMatch(desired))],
            resolver=FileContentResolver(),
            validator=PamValidator(),
            description=f"pwquality and password history (remember={policy.remember})",
        )
        exit_code = max(exit_code, outcome.exit_code)
    return exit_code


def configure_login_defs(rc: RoutineContext) -> int:
    policy = rc.settings.password_policy
    aging = {
        "PASS_MAX_DAYS": policy.pass_max_days,
        "PASS_MIN_DAYS": policy.pass_min_days,
        "PASS_WARN_AGE": policy.pass_warn_age,
    }
    requirements = [
        Requirement(Directive(key, str(value), case_sensitive=True), ExactMatch(str(value)))
        for key, value in aging.items()
    ]
    outcome = rc.mutate(
        ConfigTarget(Path(policy.login_defs)),
        requirements,
        resolver=FileResolver(),
        validator=KeyValueValidator(),
        description="password aging",
    )
    return outcome.exit_code


def configure_inactivity_lock(rc: RoutineContext) -> int:
    days = str(rc.settings.password_policy.inactive_lock_days)
    current = parse_useradd_defaults(run_command(["useradd", "-D"], timeout=30).stdout).get("INACTIVE")
    if current == days:
        rc.audit.success(f"Default inactivity lock for new users is already {days} days")
        return 0
    rc.audit.warning(f"Default inactivity lock for new users is {current or 'unset'}, required {days}")
    if rc.dry_run:
        return 0
    if not rc.confirm(f"Set default inactivity lock for new users to {days} days?"):
        rc.audit.info("Inactivity lock change declined; no changes made")
        return 1
    result = run_command(["useradd", "-D", "-f", days], timeout=30)
    if not result.ok:
        rc.audit.warning(f"Failed to set useradd default inactivity lock period: {result.output}")
        return 1
    rc.audit.success(f"Set default user inactivity lock period to {days} days")
    return 0


def run(rc: RoutineContext) -> int:
    """Apply all password policy settings. Returns the worst exit code."""
    rc.require_root()
    try:
        _ensure_pwquality_installed(rc)
    except PreconditionError as e:
        rc.audit.error(str(e))
        return 1

    exit_code = 0
    for step in (configure_pwquality, configure_pam, configure_login_defs, configure_inactivity_lock):
        exit_code = max(exit_code, step(rc))
    if exit_code == 0:
        rc.audit.success("Password security policies are in place")
    return exit_code
