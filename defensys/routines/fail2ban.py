"""
Fail2Ban jail protecting sshd from brute-force logins.
"""

import re
import time
from pathlib import Path

from defensys.activation import CommandActivation
from defensys.commands import run_command
from defensys.compliance import ExactMatch
from defensys.directives import ConfigTarget, Directive, InsertionPolicy, read_text
from defensys.engine import Requirement
from defensys.exceptions import PreconditionError
from defensys.resolvers import FileContentResolver
from defensys.routines.base import RoutineContext
from defensys.routines.ssh import MATCH_BLOCK
from defensys.templates import render
from defensys.validators import Fail2banValidator

SERVICE = "fail2ban"
DEFAULT_SSH_PORT = "22"

_PORT_LINE = re.compile(r"^\s*Port\s+(\d+)", re.IGNORECASE)


def detect_ssh_port(sshd_config: str) -> str:
    """First active ``Port`` in sshd_config, or 22."""
    for line in read_text(sshd_config).splitlines():
        if re.match(MATCH_BLOCK, line, re.IGNORECASE):
            break
        match = _PORT_LINE.match(line)
        if match:
            return match.group(1)
    return DEFAULT_SSH_PORT


def run(rc: RoutineContext) -> int:
    rc.require_root()
    settings = rc.settings.fail2ban

    if not rc.dry_run:
        rc.packages.ensure_tool("fail2ban-client", "fail2ban")
        rc.audit.info("Ensuring Fail2Ban service is enabled and started...")
        if not rc.services.ensure_running(SERVICE):
            raise PreconditionError(
                "Fail2Ban service is not active. Check 'systemctl status fail2ban'"
            )
        rc.audit.success("Fail2Ban service is enabled and running")
        Path(settings.jail_file).parent.mkdir(parents=True, exist_ok=True)

    port = detect_ssh_port(rc.settings.ssh.config_file)
    rc.audit.info(
        f"SSH jail: port {port}, maxretry {settings.max_retry}, findtime {settings.find_time}, "
        f"bantime {settings.ban_time}, ignoreip {' '.join(settings.ignore_ips)}"
    )
    content = render(
        "fail2ban-sshd",
        port=port,
        max_retry=settings.max_retry,
        find_time=settings.find_time,
        ban_time=settings.ban_time,
        ignore_ips=settings.ignore_ips,
    )
    requirement = Requirement(
        Directive(Path(settings.jail_file).name, content, InsertionPolicy.REPLACE_WHOLE_BLOCK),
        ExactMatch(content),
    )
    outcome = rc.mutate(
        ConfigTarget(Path(settings.jail_file), must_exist=False, mode=0o644, owner_uid=0, owner_gid=0),
        [requirement],
        resolver=FileContentResolver(),
        validator=Fail2banValidator(),
        activation=CommandActivation(["fail2ban-client", "reload"], service_name=SERVICE),
        description="Fail2Ban SSH jail",
    )
    if not outcome.result.succeeded or rc.dry_run:
        return outcome.exit_code

    time.sleep(2)
    status = run_command(["fail2ban-client", "status", "sshd"], timeout=30)
    if status.ok:
        rc.audit.success("Fail2Ban 'sshd' jail is active")
    else:
        rc.audit.warning("Could not get status for the 'sshd' jail. It might not be active")
    return 0
