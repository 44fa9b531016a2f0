"""
Bootloader configuration file permissions.
"""

from rich.table import Table

from defensys.branding import console
from defensys.permissions import PermissionAuditor, PermissionStatus
from defensys.routines.base import RoutineContext


def _findings_table(findings) -> Table:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("File")
    table.add_column("Mode")
    table.add_column("Owner")
    table.add_column("Status")
    styles = {
        PermissionStatus.SECURE: "[green]secure[/green]",
        PermissionStatus.INSECURE: "[red]insecure[/red]",
        PermissionStatus.ERROR: "[yellow]error[/yellow]",
    }
    for finding in findings:
        owner = f"{finding.uid}:{finding.gid}" if finding.uid is not None else "-"
        table.add_row(str(finding.path), finding.mode or "-", owner, styles[finding.status])
    return table


def run(rc: RoutineContext) -> int:
    """
    Check every known GRUB file against its maximum mode and root ownership,
    and fix the insecure ones if authorized. Missing files are expected
    (BIOS vs UEFI layouts) and ignored.
    """
    rc.require_root()
    grub = rc.settings.grub
    auditor = PermissionAuditor(grub.owner_uid, grub.owner_gid)
    rc.audit.info("Checking permissions for GRUB configuration files...")

    findings = [f for f in auditor.scan(grub.files) if f.status is not PermissionStatus.MISSING]
    if not findings:
        rc.audit.warning("No GRUB configuration files found")
        return 0
    console.print(_findings_table(findings))

    for finding in findings:
        if finding.status is PermissionStatus.SECURE:
            rc.audit.success(f"{finding.path} has secure permissions ({finding.mode}) and ownership")
        elif finding.status is PermissionStatus.INSECURE:
            rc.audit.warning(f"{finding.path} has insecure configuration: {'; '.join(finding.reasons)}")
        else:
            rc.audit.error(f"Manual investigation required for {finding.path}: {'; '.join(finding.reasons)}")

    to_fix = [f for f in findings if f.needs_fix]
    errors = [f for f in findings if f.status is PermissionStatus.ERROR]
    if not to_fix:
        return 1 if errors else 0

    if rc.dry_run:
        rc.audit.info(f"Dry run: would fix {len(to_fix)} file(s)")
        return 0
    if not rc.confirm("Fix insecure GRUB file permissions automatically?"):
        rc.audit.info("Remediation skipped by administrator. Please fix permissions manually.")
        return 1

    all_fixed = True
    for finding in to_fix:
        ceiling = grub.files[str(finding.path)]
        rc.audit.info(f"Setting {finding.path} to owner {grub.owner_uid}:{grub.owner_gid}, mode at most {ceiling}")
        after = auditor.fix_file(finding.path, ceiling)
        if after.status is PermissionStatus.SECURE:
            rc.audit.success(f"Remediation successful for {finding.path}")
        else:
            all_fixed = False
            rc.audit.error(f"Remediation FAILED for {finding.path}: {'; '.join(after.reasons)}")

    return 0 if all_fixed and not errors else 1
