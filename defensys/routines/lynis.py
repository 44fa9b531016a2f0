"""
Lynis system audit with warning and suggestion extraction.
"""

import re
from pathlib import Path

from rich.prompt import Prompt

from defensys.branding import console, ds_header
from defensys.commands import run_command, tool_available
from defensys.routines.base import RoutineContext

STALE_PID_FILE = Path("/var/run/lynis.pid")

_ANSI = re.compile(r"\x1b\[[0-9;]*m")

REPORT_OPTIONS = {
    "1": "Show full Lynis report",
    "2": "Show warnings from the scan",
    "3": "Show security hardening suggestions",
    "4": "Show both warnings and suggestions",
    "5": "Exit",
}


def _extract(output: str, marker: str) -> list[str]:
    found = []
    for line in _ANSI.sub("", output).splitlines():
        if marker not in line.upper():
            continue
        label, sep, rest = line.partition(":")
        if sep and marker in label.upper():
            # "Warning: <text>"; a bare "Warnings (3):" section header has no text
            if rest.strip():
                found.append(rest.strip())
        else:
            found.append(line.strip())
    return found


def extract_warnings(output: str) -> list[str]:
    """Lines Lynis flags as unsafe or warning."""
    return _extract(output, "UNSAFE") + _extract(output, "WARNING")


def extract_suggestions(output: str) -> list[str]:
    return _extract(output, "SUGGESTION")


def _show(title: str, items: list[str], empty: str) -> None:
    ds_header(title)
    if not items:
        console.print(f"[green]{empty}[/green]")
    for item in items:
        console.print(f"  • {item}", markup=False)


def show_report_options(output: str) -> None:
    while True:
        console.print("\n[bold]What would you like to do?[/bold]")
        for key, label in REPORT_OPTIONS.items():
            console.print(f"  {key}. {label}")
        choice = Prompt.ask("Choose an option", choices=list(REPORT_OPTIONS), default="5")
        if choice == "1":
            console.print(_ANSI.sub("", output), markup=False)
        if choice in ("2", "4"):
            _show("Warnings Found", extract_warnings(output), "No warnings found!")
        if choice in ("3", "4"):
            _show("Security Hardening Suggestions", extract_suggestions(output), "No security suggestions found!")
        if choice == "5":
            return


def run(rc: RoutineContext) -> int:
    rc.require_root()
    if not rc.dry_run:
        installer = rc.packages
        if not tool_available("lynis") and installer.dnf_avail and not installer.is_available("lynis"):
            installer.install("epel-release")
        installer.ensure_tool("lynis")
    if STALE_PID_FILE.exists() and not rc.dry_run:
        rc.audit.info("Removing stale Lynis PID file...")
        STALE_PID_FILE.unlink()

    if rc.dry_run or not rc.confirm("Run a Lynis system audit?"):
        rc.audit.info("Run 'lynis audit system' manually whenever needed")
        return 0

    rc.audit.info("Running Lynis system audit...")
    result = run_command(["lynis", "audit", "system"], timeout=None)
    if not result.ok:
        rc.audit.error(f"Lynis audit failed: {result.stderr.strip() or result.returncode}")
        return 1
    log_path = Path("lynis.log")
    log_path.write_text(result.stdout)
    rc.audit.success(
        f"Audit completed: {len(extract_warnings(result.stdout))} warning(s), "
        f"{len(extract_suggestions(result.stdout))} suggestion(s); output saved to {log_path.resolve()}"
    )
    show_report_options(result.stdout)
    return 0
