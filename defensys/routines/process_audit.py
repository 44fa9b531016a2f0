"""
Process audit: idle, sleeping and zombie processes.

Zombies cannot be killed themselves; their parents can be nudged with
SIGCHLD or, as a last resort, killed.
"""

import logging
import os
import signal
import time
from dataclasses import dataclass
from datetime import date
from pathlib import Path

import psutil
from rich.prompt import Prompt
from rich.table import Table

from defensys.audit import AuditLog
from defensys.branding import console, ds_header
from defensys.exceptions import PreconditionError
from defensys.routines.base import RoutineContext

logger = logging.getLogger(__name__)

MODES = ("idle", "sleeping", "zombie")

_PROCESS_ATTRS = ["pid", "ppid", "username", "status", "name", "cmdline", "memory_percent"]


@dataclass
class ProcessInfo:
    pid: int
    ppid: int
    user: str
    status: str
    name: str
    command: str
    cpu_percent: float = 0.0
    memory_percent: float = 0.0


def collect_processes(sample_interval: float = 0.5) -> list[ProcessInfo]:
    """
    Snapshot all processes with CPU usage measured over ``sample_interval``.
    Processes that exit or deny access while sampling are skipped.
    """
    procs = []
    for proc in psutil.process_iter(_PROCESS_ATTRS):
        try:
            proc.cpu_percent(None)
            procs.append(proc)
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
    if sample_interval:
        time.sleep(sample_interval)

    result = []
    for proc in procs:
        try:
            cpu = proc.cpu_percent(None)
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
        info = proc.info
        result.append(
            ProcessInfo(
                pid=info["pid"],
                ppid=info.get("ppid") or 0,
                user=info.get("username") or "?",
                status=info.get("status") or "?",
                name=info.get("name") or "?",
                command=" ".join(info.get("cmdline") or []) or info.get("name") or "?",
                cpu_percent=cpu,
                memory_percent=info.get("memory_percent") or 0.0,
            )
        )
    return sorted(result, key=lambda p: p.pid)


def idle_processes(processes: list[ProcessInfo]) -> list[ProcessInfo]:
    return [p for p in processes if p.cpu_percent == 0.0 and p.status != psutil.STATUS_ZOMBIE]


def sleeping_processes(processes: list[ProcessInfo]) -> list[ProcessInfo]:
    return [p for p in processes if p.status == psutil.STATUS_SLEEPING]


def zombie_processes(processes: list[ProcessInfo]) -> list[ProcessInfo]:
    return [p for p in processes if p.status == psutil.STATUS_ZOMBIE]


def zombie_parents(zombies: list[ProcessInfo]) -> list[int]:
    """Distinct parent PIDs of ``zombies``, never PID 0 or 1."""
    return sorted({z.ppid for z in zombies if z.ppid > 1})


def signal_parents(parents: list[int], sig: int, log: AuditLog) -> int:
    """
    Send ``sig`` to each parent that still exists.

    Returns:
        Number of processes signalled
    """
    sent = 0
    for ppid in parents:
        if not psutil.pid_exists(ppid):
            log.info(f"Parent PID {ppid} not found")
            continue
        try:
            name = psutil.Process(ppid).name()
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            name = "?"
        try:
            os.kill(ppid, sig)
        except OSError as e:
            log.warning(f"Failed to send {signal.Signals(sig).name} to {ppid} ({name}): {e}")
            continue
        log.info(f"Sent {signal.Signals(sig).name} to parent PID {ppid} ({name})")
        sent += 1
    return sent


def _table(processes: list[ProcessInfo], mode: str) -> Table:
    table = Table(show_header=True, header_style="bold magenta")
    if mode == "idle":
        columns = ("PID", "USER", "CPU%", "MEM%", "COMMAND")
        rows = [(str(p.pid), p.user, f"{p.cpu_percent:.1f}", f"{p.memory_percent:.1f}", p.name) for p in processes]
    elif mode == "sleeping":
        columns = ("PID", "STAT", "COMMAND")
        rows = [(str(p.pid), p.status, p.command) for p in processes]
    else:
        columns = ("PID", "PPID", "STAT", "COMMAND")
        rows = [(str(p.pid), str(p.ppid), p.status, p.name) for p in processes]
    for column in columns:
        table.add_column(column)
    for row in rows:
        table.add_row(*row)
    return table


def handle_zombies(rc: RoutineContext, zombies: list[ProcessInfo], log: AuditLog) -> int:
    log.info(
        "Zombie processes have exited but stay in the process table until their parent "
        "reads their exit status. To clear them the PARENT must be signalled or terminated."
    )
    parents = zombie_parents(zombies)
    if not parents:
        log.info("All zombies belong to PID 1; nothing to signal")
        return 0
    if rc.dry_run:
        log.info(f"Dry run: would signal parent PID(s) {', '.join(map(str, parents))}")
        return 0

    if rc.confirm("Send SIGCHLD to the parent processes? (less intrusive)"):
        if not rc.privileged:
            raise PreconditionError("Cannot send signals as non-root user")
        signal_parents(parents, signal.SIGCHLD, log)
        log.info("Check whether the zombies were cleared after signalling their parents")
        return 0
    if rc.confirm("KILL the parent processes with SIGKILL? (use with extreme caution)"):
        if not rc.privileged:
            raise PreconditionError("Cannot kill processes as non-root user")
        signal_parents(parents, signal.SIGKILL, log)
        return 0
    log.info("Skipping signal/kill actions for parent processes")
    return 0


def run(rc: RoutineContext, mode: str | None = None) -> int:
    if not rc.privileged:
        rc.audit.warning("Running as non-root: signalling parent processes will not be possible")
    if mode is None:
        mode = Prompt.ask("List which processes", choices=list(MODES), default="zombie")

    log_path = Path(rc.settings.process_audit.log_dir) / f"process_audit_{date.today().isoformat()}.log"
    log = AuditLog(log_path, echo=True)
    try:
        os.chmod(log_path, 0o600)
    except OSError as e:
        logger.debug("Could not restrict %s: %s", log_path, e)

    try:
        log.info(f"Process audit started ({mode})")
        processes = collect_processes()
        selected = {"idle": idle_processes, "sleeping": sleeping_processes, "zombie": zombie_processes}[mode](processes)

        ds_header(f"{mode.capitalize()} processes")
        if not selected:
            log.success(f"No {mode} processes found")
            return 0
        console.print(_table(selected, mode))
        log.info(f"{len(selected)} {mode} process(es) found")

        exit_code = 0
        if mode == "zombie":
            exit_code = handle_zombies(rc, selected, log)
        log.info("Process audit completed")
        console.print(f"\n[dim]Audit log saved to: {log_path}[/dim]")
        return exit_code
    finally:
        log.close()
