"""
Compliance baseline: USB storage blacklist, Secure Boot status, SELinux
enforcement and an OpenSCAP XCCDF scan.
"""

import os
import pwd
import shutil
from datetime import datetime
from pathlib import Path

from rich.prompt import Prompt

from defensys.branding import console
from defensys.commands import run_command, tool_available
from defensys.compliance import Present
from defensys.directives import ConfigTarget, Directive, InsertionPolicy
from defensys.engine import MutationResult, Requirement
from defensys.resolvers import FileResolver
from defensys.routines import selinux
from defensys.routines.base import RoutineContext

USB_BLACKLIST_LINE = "install usb_storage /bin/false"
COMMON_PROFILES = {
    "Standard": "xccdf_org.ssgproject.content_profile_standard",
    "CIS Benchmark": "xccdf_org.ssgproject.content_profile_cis",
}
# oscap xccdf eval: 0 all rules pass, 2 at least one rule failed
SCAN_COMPLETED = (0, 2)


def find_scap_content(content_dir: str | Path) -> Path | None:
    """First SSG datastream, else first XCCDF file, under ``content_dir``."""
    root = Path(content_dir)
    if not root.is_dir():
        return None
    for pattern in ("ssg-*-ds.xml", "ssg-*-xccdf.xml"):
        found = sorted(root.rglob(pattern))
        if found:
            return found[0]
    return None


def report_owner_dir() -> tuple[Path, str | None]:
    """Home directory of the invoking sudo user, or /root."""
    sudo_user = os.environ.get("SUDO_USER")
    if sudo_user:
        home = Path("/home") / sudo_user
        if home.is_dir():
            return home, sudo_user
    return Path("/root"), None


def ensure_tools(rc: RoutineContext) -> None:
    installer = rc.packages
    missing = [p for p in ("scap-security-guide", "openscap-scanner") if not installer.is_installed(p)]
    if missing:
        installer.install(*missing)
    else:
        rc.audit.info("OpenSCAP tools are already installed")


def blacklist_usb_storage(rc: RoutineContext) -> int:
    directive = Directive(
        "install usb_storage",
        "/bin/false",
        InsertionPolicy.APPEND_IF_ABSENT,
        comment="# USB storage disabled for compliance",
    )
    outcome = rc.mutate(
        ConfigTarget(Path(rc.settings.openscap.usb_blacklist_file), must_exist=False, mode=0o644),
        [Requirement(directive, Present())],
        resolver=FileResolver(),
        description="USB storage blacklist (blocks most USB drives)",
    )
    if outcome.result is MutationResult.APPLIED_AND_VERIFIED:
        rc.audit.info("USB storage module blacklisted. Reboot may be required.")
    return outcome.exit_code


def secure_boot_status(rc: RoutineContext) -> None:
    if not tool_available("mokutil"):
        rc.audit.info("mokutil not found, skipping Secure Boot check")
        return
    result = run_command(["mokutil", "--sb-state"], timeout=30)
    rc.audit.info(f"Secure Boot: {result.output or 'unknown'}")
    rc.audit.info(
        "Note: enabling Secure Boot validation (mokutil --enable-validation) requires manual steps during reboot"
    )


def scan(rc: RoutineContext) -> int:
    settings = rc.settings.openscap
    content = find_scap_content(settings.content_dir)
    if content is None:
        rc.audit.error("Could not find SCAP Security Guide content (ds.xml or xccdf.xml). Cannot scan.")
        return 1
    rc.audit.info(f"Using SCAP content file: {content}")

    profile = settings.profile
    if not profile:
        info = run_command(["oscap", "info", str(content)], timeout=120)
        if not info.ok:
            rc.audit.error("Error running 'oscap info'")
            return 1
        console.print(info.stdout, markup=False)
        for name, profile_id in COMMON_PROFILES.items():
            console.print(f"  [cyan]{name}[/cyan]: {profile_id}")
        profile = Prompt.ask("Profile ID to scan with", default=COMMON_PROFILES["Standard"]).strip()
    if not profile:
        rc.audit.info("No profile selected. Aborting scan.")
        return 1

    stamp = datetime.now().strftime("%Y-%m-%d_%H:%M:%S")
    basename = f"system_compliance_report_{profile}_{stamp}"
    report_dir = Path(settings.report_dir)
    html_report = report_dir / f"{basename}.html"
    results_xml = report_dir / f"{basename}_results.xml"
    rc.audit.info(f"Starting scan with profile '{profile}'. This may take time...")

    result = run_command(
        ["oscap", "xccdf", "eval", "--profile", profile,
         "--results", str(results_xml), "--report", str(html_report), str(content)],
        timeout=None,
    )
    if result.returncode not in SCAN_COMPLETED:
        rc.audit.error(f"Compliance scan failed: {result.stderr.strip() or result.returncode}")
        rc.audit.info(f"Partial reports might be available in {report_dir}")
        return 1
    if result.returncode == 2:
        rc.audit.warning("Compliance scan completed; some rules failed")
    else:
        rc.audit.success("Compliance scan completed successfully")

    target_dir, user = report_owner_dir()
    copied = []
    for path in (html_report, results_xml):
        if path.exists():
            destination = target_dir / path.name
            shutil.copy2(path, destination)
            if user:
                entry = pwd.getpwnam(user)
                os.chown(destination, entry.pw_uid, entry.pw_gid)
            copied.append(destination)
    for path in copied:
        rc.audit.info(f"Report available at {path}")
    return 0


def run(rc: RoutineContext) -> int:
    rc.require_root()
    rc.audit.info("Starting system integrity and compliance hardening...")
    if not rc.dry_run:
        ensure_tools(rc)
    secure_boot_status(rc)
    exit_code = blacklist_usb_storage(rc)
    exit_code = max(exit_code, selinux.enforce(rc))

    if rc.dry_run:
        return exit_code
    if rc.confirm("Perform an OpenSCAP system compliance scan now?"):
        exit_code = max(exit_code, scan(rc))
    else:
        rc.audit.info("Skipping compliance scan")
    return exit_code
