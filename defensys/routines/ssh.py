"""
sshd hardening: LoginGraceTime, ClientAlive tuning and the AllowUsers whitelist.

All three edit ``sshd_config`` above its first ``Match`` block, validate
with ``sshd -t``, restart sshd and check the result with ``sshd -T``.
"""

from pathlib import Path

from defensys.activation import ServiceActivation
from defensys.compliance import Absent, ExactMatch, NumericRange
from defensys.directives import ConfigTarget, Directive, InsertionPolicy
from defensys.engine import Requirement
from defensys.exceptions import PreconditionError
from defensys.resolvers import SshdResolver
from defensys.routines.base import RoutineContext
from defensys.validators import SshdValidator

# Directives after a Match line apply only to matching connections
MATCH_BLOCK = r"^\s*Match\s"

CONFLICTING_ACCESS_KEYS = ("DenyUsers", "AllowGroups", "DenyGroups")


def sshd_directive(key: str, value, policy: InsertionPolicy = InsertionPolicy.REPLACE_IN_PLACE) -> Directive:
    return Directive(key, str(value), policy, " ", section_end=MATCH_BLOCK)


def _run_sshd_mutation(rc: RoutineContext, requirements: list, description: str) -> int:
    ssh = rc.settings.ssh
    outcome = rc.mutate(
        ConfigTarget(Path(ssh.config_file)),
        requirements,
        resolver=SshdResolver(),
        validator=SshdValidator(),
        activation=ServiceActivation(rc.services, ssh.service, rc.settings.restart_timeout),
        description=description,
    )
    return outcome.exit_code


def login_grace_time(rc: RoutineContext) -> int:
    """Limit LoginGraceTime to 1..N seconds (0 means unlimited and is rejected)."""
    desired = int(rc.settings.ssh.login_grace_time)
    requirement = Requirement(
        sshd_directive("LoginGraceTime", desired),
        NumericRange(maximum=desired),
    )
    return _run_sshd_mutation(rc, [requirement], f"LoginGraceTime {desired}")


def client_alive(rc: RoutineContext) -> int:
    """Disconnect idle sessions: ClientAliveInterval <= N, ClientAliveCountMax exactly M."""
    ssh = rc.settings.ssh
    interval = int(ssh.client_alive_interval)
    count = int(ssh.client_alive_count_max)
    requirements = [
        Requirement(sshd_directive("ClientAliveInterval", interval), NumericRange(maximum=interval)),
        Requirement(sshd_directive("ClientAliveCountMax", count), ExactMatch(str(count))),
    ]
    return _run_sshd_mutation(
        rc, requirements, f"ClientAliveInterval {interval}, ClientAliveCountMax {count}"
    )


def allow_users(rc: RoutineContext) -> int:
    """
    Restrict SSH logins to the configured users.

    Deny/Allow group and DenyUsers lines outside Match blocks are removed so
    the whitelist is the only access rule.
    """
    users = [str(u) for u in rc.settings.ssh.allowed_users]
    if not users:
        raise PreconditionError(
            "No allowed users configured (ssh.allowed_users); refusing to lock out every user"
        )
    whitelist = " ".join(users)
    requirements = [
        Requirement(sshd_directive("AllowUsers", whitelist), ExactMatch(whitelist, ordered=False)),
    ]
    requirements.extend(
        Requirement(sshd_directive(key, "", InsertionPolicy.REMOVE), Absent())
        for key in CONFLICTING_ACCESS_KEYS
    )
    return _run_sshd_mutation(rc, requirements, f"AllowUsers {whitelist}")
