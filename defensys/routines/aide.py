"""
AIDE file integrity baseline and check.
"""

import os
import shutil
from datetime import datetime
from pathlib import Path

from defensys.audit import AuditLog
from defensys.commands import run_command
from defensys.exceptions import PreconditionError
from defensys.routines.base import RoutineContext

# aide --check sets bits 0-2 of its exit status for added/removed/changed files
CHANGES_DETECTED = range(1, 8)


def interpret_check_exit(code: int) -> str:
    """``"clean"``, ``"changed"`` or ``"error"`` for an ``aide --check`` exit status."""
    if code == 0:
        return "clean"
    if code in CHANGES_DETECTED:
        return "changed"
    return "error"


def setup_check_log(log_dir: str | Path) -> Path:
    """Create the AIDE log directory (0700) and a fresh run log (0600)."""
    directory = Path(log_dir)
    directory.mkdir(parents=True, exist_ok=True)
    os.chmod(directory, 0o700)
    path = directory / f"aide-check-{datetime.now().strftime('%Y-%m-%d_%H:%M:%S')}.log"
    path.touch()
    os.chmod(path, 0o600)
    return path


def initialize_database(rc: RoutineContext, check_log: AuditLog) -> None:
    """
    Build the baseline database if none exists.

    Raises:
        PreconditionError: If initialization fails or leaves no new database
    """
    settings = rc.settings.aide
    database = Path(settings.database)
    if database.exists():
        rc.audit.success(f"Existing AIDE database found at {database}")
        check_log.info(f"Existing database found: {database}")
        return

    rc.audit.info("AIDE database not found. Running initialization (this may take a long time)...")
    result = run_command(["aide", "--init"], timeout=None)
    check_log.info(result.output)
    if not result.ok:
        check_log.error("AIDE initialization failed. Check /etc/aide.conf.")
        raise PreconditionError(
            f"AIDE initialization failed. Check the AIDE configuration and {check_log.path}"
        )

    new_database = Path(settings.new_database)
    if not new_database.exists():
        check_log.error(f"New database {new_database} not found after successful init.")
        raise PreconditionError(f"AIDE init ran, but the new database {new_database} was not found")
    try:
        shutil.move(str(new_database), str(database))
        os.chmod(database, 0o600)
    except OSError as e:
        check_log.error("Error moving new database.")
        raise PreconditionError(f"Failed to move {new_database} to {database}: {e}") from e
    check_log.info(f"Moved {new_database} to {database}.")
    rc.audit.success("AIDE database initialized successfully")


def run_check(rc: RoutineContext, check_log: AuditLog) -> int:
    database = Path(rc.settings.aide.database)
    if not database.exists():
        rc.audit.error(f"Cannot run check: AIDE database ({database}) does not exist. Initialize first.")
        return 1
    if not rc.confirm("Run an AIDE integrity check now?"):
        rc.audit.info("Skipping AIDE check as requested")
        check_log.info("User skipped AIDE check.")
        return 0

    rc.audit.info(f"Running AIDE integrity check against {database}...")
    check_log.info("Starting AIDE integrity check.")
    result = run_command(["aide", "--check"], timeout=None)
    check_log.info(result.output)
    check_log.info(f"AIDE check finished with exit code: {result.returncode}")

    verdict = interpret_check_exit(result.returncode)
    if verdict == "clean":
        rc.audit.success("System integrity verified. No changes detected.")
        check_log.info("Result: No differences found.")
        return 0
    if verdict == "changed":
        rc.audit.warning("ALERT: Changes detected in filesystem!")
        check_log.warning("Result: Differences found between database and filesystem.")
        rc.audit.info(f"Review the full report for details: {check_log.path}")
        return 0
    rc.audit.error(f"AIDE check encountered an error (exit code: {result.returncode})")
    check_log.error("Result: Error occurred during check.")
    return 1


def run(rc: RoutineContext) -> int:
    rc.require_root()
    if rc.dry_run:
        present = Path(rc.settings.aide.database).exists()
        rc.audit.info(f"Dry run: AIDE database {'present' if present else 'would be initialized'}")
        return 0

    rc.packages.ensure_tool("aide")
    check_log = AuditLog(setup_check_log(rc.settings.aide.log_dir), echo=False)
    rc.audit.info(f"AIDE check results will be logged to: {check_log.path}")
    try:
        initialize_database(rc, check_log)
        return run_check(rc, check_log)
    finally:
        check_log.close()
