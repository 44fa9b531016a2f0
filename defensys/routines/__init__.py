"""
Hardening routines, in menu order.

Each routine takes a :class:`~defensys.routines.base.RoutineContext` and
returns a process exit code. The breached-password check is not listed here
because it takes a password instead of a context.
"""

from defensys.routines import (
    aide,
    chrony,
    fail2ban,
    grub,
    logrotate,
    lynis,
    openscap,
    password_policy,
    process_audit,
    pwned,
    selinux,
    ssh,
    sysctl,
)
from defensys.routines.base import Routine, RoutineContext

ROUTINES = [
    Routine("ssh-grace-time", "Set SSH LoginGraceTime", ssh.login_grace_time),
    Routine("ssh-client-alive", "Set SSH ClientAliveInterval / ClientAliveCountMax", ssh.client_alive),
    Routine("ssh-allow-users", "Restrict SSH logins with AllowUsers", ssh.allow_users),
    Routine("password-policy", "Enforce password complexity, history and aging", password_policy.run),
    Routine("sysctl-network", "Harden kernel network parameters", sysctl.run),
    Routine("grub-permissions", "Check GRUB configuration file permissions", grub.run),
    Routine("logrotate", "Rotate and protect security logs", logrotate.run),
    Routine("chrony", "Configure time synchronisation with chrony", chrony.run),
    Routine("fail2ban", "Protect SSH with a fail2ban jail", fail2ban.run),
    Routine("selinux", "Enforce SELinux and audit unconfined services", selinux.run),
    Routine("aide", "Initialise AIDE and check file integrity", aide.run),
    Routine("openscap", "Run an OpenSCAP compliance scan", openscap.run),
    Routine("lynis", "Run a Lynis security audit", lynis.run),
    Routine("process-audit", "List idle, sleeping or zombie processes", process_audit.run, needs_root=False),
]

_BY_NAME = {routine.name: routine for routine in ROUTINES}


def get_routine(name: str) -> Routine:
    """
    Raises:
        KeyError: If no routine has that name
    """
    return _BY_NAME[name]


__all__ = ["ROUTINES", "Routine", "RoutineContext", "get_routine"]
