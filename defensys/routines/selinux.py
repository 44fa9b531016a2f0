"""
SELinux: enforcing mode and the unconfined_service_t audit.
"""

import os
from datetime import datetime
from pathlib import Path

from defensys.branding import console
from defensys.commands import run_command, tool_available
from defensys.compliance import ExactMatch
from defensys.directives import ConfigTarget, Directive
from defensys.engine import Requirement
from defensys.resolvers import FileResolver
from defensys.routines.base import RoutineContext
from defensys.validators import KeyValueValidator

UNCONFINED_DOMAIN = "unconfined_service_t"

INVESTIGATION_STEPS = [
    "Identify the package providing the service (e.g. 'rpm -qf /path/to/executable').",
    "Check if an SELinux policy module exists for it ('semodule -l | grep <service_name>').",
    "Search for existing booleans ('getsebool -a | grep <service_name>').",
    "Use 'audit2allow' on relevant AVC denials in /var/log/audit/audit.log to build custom rules if necessary.",
    "Consult distribution documentation and SELinux resources.",
]


def parse_sestatus(output: str) -> dict[str, str]:
    """
    Parse ``sestatus`` output.

    Schema: ``Field name:    value`` per line; keys lower-cased.
    """
    values = {}
    for line in output.splitlines():
        key, sep, value = line.partition(":")
        if sep:
            values[key.strip().lower()] = value.strip()
    return values


def parse_process_labels(output: str) -> list[tuple[int, str, str]]:
    """Parse ``ps -eo pid,label,comm`` into (pid, label, command) rows."""
    rows = []
    for line in output.splitlines()[1:]:
        parts = line.split(None, 2)
        if len(parts) < 3 or not parts[0].isdigit():
            continue
        rows.append((int(parts[0]), parts[1], parts[2]))
    return rows


def selinux_status() -> dict[str, str] | None:
    if not tool_available("sestatus"):
        return None
    return parse_sestatus(run_command(["sestatus"], timeout=30).stdout)


def enforce(rc: RoutineContext) -> int:
    """Switch a permissive SELinux to enforcing, now and across reboots."""
    status = selinux_status()
    if status is None:
        rc.audit.warning("'sestatus' command not found. Cannot verify or set SELinux mode.")
        return 1
    if status.get("selinux status") != "enabled":
        rc.audit.error("SELinux is disabled in the kernel. Manual configuration and reboot required to enable.")
        return 1

    exit_code = 0
    if status.get("current mode") != "enforcing":
        rc.audit.warning(f"SELinux is {status.get('current mode', 'in an unknown mode')}")
        if rc.dry_run:
            rc.audit.info("Dry run: would run 'setenforce 1'")
        elif rc.confirm("Set SELinux to enforcing mode now?"):
            result = run_command(["setenforce", "1"], timeout=30)
            if result.ok:
                rc.audit.success("SELinux set to enforcing mode")
            else:
                rc.audit.error(f"Failed to set SELinux to enforcing mode: {result.output}")
                exit_code = 1
        else:
            rc.audit.info("SELinux mode change declined")
            exit_code = 1
    else:
        rc.audit.success("SELinux is already in enforcing mode")

    outcome = rc.mutate(
        ConfigTarget(Path(rc.settings.selinux.config_file)),
        [Requirement(Directive("SELINUX", "enforcing", separator="="), ExactMatch("enforcing"))],
        resolver=FileResolver(),
        validator=KeyValueValidator(),
        description="persistent SELinux enforcing mode",
    )
    return max(exit_code, outcome.exit_code)


def audit_unconfined(rc: RoutineContext) -> int:
    """List processes in the unconfined_service_t domain. Returns 1 if any exist."""
    result = run_command(["ps", "-eo", "pid,label,comm"], timeout=30)
    if not result.ok:
        rc.audit.error("'ps' does not support the 'label' format. Cannot check SELinux contexts.")
        return 1

    unconfined = [row for row in parse_process_labels(result.stdout) if UNCONFINED_DOMAIN in row[1]]
    if not unconfined:
        rc.audit.success(f"No processes found running in the '{UNCONFINED_DOMAIN}' domain")
        return 0

    report = Path(rc.settings.selinux.report_dir) / (
        f"selinux_unconfined_audit_{datetime.now().strftime('%Y-%m-%d_%H:%M:%S')}.log"
    )
    lines = [f"{pid:<8} {label:<40} {command}" for pid, label, command in unconfined]
    rc.audit.warning(f"{len(unconfined)} unconfined service process(es) found:")
    for line in lines:
        rc.audit.info(line)
    try:
        report.write_text("PID      LABEL                                    COMMAND\n" + "\n".join(lines) + "\n")
        os.chmod(report, 0o600)
        rc.audit.info(f"Details logged to {report}")
    except OSError as e:
        rc.audit.warning(f"Could not write {report}: {e}")

    rc.audit.warning(
        f"Services running as '{UNCONFINED_DOMAIN}' might bypass fine-grained SELinux controls. "
        "Investigate them and apply specific policies."
    )
    console.print("\n[bold]Investigation steps:[/bold]")
    for number, step in enumerate(INVESTIGATION_STEPS, start=1):
        console.print(f"  {number}. {step}")
    return 1


def run(rc: RoutineContext) -> int:
    rc.require_root()
    rc.audit.info("Checking SELinux status and for unconfined services...")
    return max(enforce(rc), audit_unconfined(rc))
