"""
NTP time synchronization with chrony.
"""

import time
from pathlib import Path

from defensys.activation import ServiceActivation
from defensys.branding import console
from defensys.commands import run_command
from defensys.compliance import Present
from defensys.directives import ConfigTarget, Directive, InsertionPolicy
from defensys.engine import Requirement
from defensys.resolvers import FileResolver
from defensys.routines.base import RoutineContext
from defensys.validators import ChronyValidator

# Reference IDs chrony reports when it only follows the local clock
LOCAL_REFERENCE_IDS = ("127.127.1.0", "7F7F0100", "7F7F0101", "00000000")


def parse_chronyc_tracking(output: str) -> dict[str, str]:
    """
    Parse ``chronyc tracking`` output.

    Schema: ``Field name      : value`` per line. Keys are returned as printed.
    """
    values = {}
    for line in output.splitlines():
        key, sep, value = line.partition(":")
        if sep:
            values[key.strip()] = value.strip()
    return values


def is_synchronised(tracking: dict[str, str]) -> bool:
    reference = tracking.get("Reference ID", "").split(" ", 1)[0]
    leap = tracking.get("Leap status", "")
    if not reference or reference in LOCAL_REFERENCE_IDS:
        return False
    return "not synchronised" not in leap.lower()


def detect_service_name(rc: RoutineContext) -> str:
    """``chronyd`` on RHEL/Fedora, ``chrony`` on Debian/Ubuntu."""
    return "chrony" if rc.services.unit_exists("chrony") else "chronyd"


def pool_requirement(pool: str) -> Requirement:
    directive = Directive(
        "pool",
        f"{pool} iburst",
        InsertionPolicy.APPEND_IF_ABSENT,
        match=r"(?:server|pool)\s+",
        comment="# Default NTP server pool",
    )
    return Requirement(directive, Present())


def check_tracking(rc: RoutineContext) -> bool:
    rc.audit.info("Checking time synchronization status using 'chronyc tracking'...")
    result = run_command(["chronyc", "tracking"], timeout=30)
    if not result.ok:
        rc.audit.warning("Failed to get tracking status from chronyc")
        return False
    tracking = parse_chronyc_tracking(result.stdout)
    if is_synchronised(tracking):
        rc.audit.success("Chrony appears to be synchronized")
        return True
    rc.audit.warning(
        "Chrony is running but may not be synchronized to a valid external NTP source yet "
        f"(Reference ID: {tracking.get('Reference ID', '-')}, Leap status: {tracking.get('Leap status', '-')})"
    )
    return False


def run(rc: RoutineContext) -> int:
    rc.require_root()
    chrony = rc.settings.chrony
    if not rc.dry_run:
        rc.packages.ensure_tool("chronyc", "chrony")

    service = detect_service_name(rc)
    rc.audit.info(f"Using service name: {service}")

    outcome = rc.mutate(
        ConfigTarget(Path(chrony.config_file)),
        [pool_requirement(chrony.pool)],
        resolver=FileResolver(),
        validator=ChronyValidator(),
        activation=ServiceActivation(rc.services, service, rc.settings.restart_timeout),
        description=f"NTP pool {chrony.pool}",
    )
    if not outcome.result.succeeded or rc.dry_run:
        return outcome.exit_code

    if not rc.services.is_enabled(service):
        if rc.services.enable(service).ok:
            rc.audit.success(f"Enabled {service} service")
        else:
            rc.audit.warning(f"Failed to enable {service} service")
    if not rc.services.is_active(service):
        rc.audit.info(f"Starting {service} service...")
        if not rc.services.start(service).ok or not rc.services.wait_active(service, rc.settings.restart_timeout):
            rc.audit.error(f"Failed to start {service}. Check 'systemctl status {service}'")
            return 1
        rc.audit.info("Waiting a few seconds for chrony to stabilize...")
        time.sleep(chrony.settle_seconds)

    check_tracking(rc)
    sources = run_command(["chronyc", "sources"], timeout=30)
    if sources.ok:
        console.print(sources.stdout, markup=False)
    return 0
