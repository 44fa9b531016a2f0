"""
Kernel network hardening through a managed sysctl.d snippet.
"""

from pathlib import Path

from defensys.activation import CommandActivation
from defensys.compliance import ExactMatch
from defensys.directives import ConfigTarget, Directive, InsertionPolicy
from defensys.engine import Requirement
from defensys.resolvers import FileContentResolver, SysctlResolver
from defensys.routines.base import RoutineContext
from defensys.templates import render
from defensys.validators import SysctlValidator


def build_requirements(config_file: str, parameters: dict) -> list:
    """
    The snippet itself plus one check per kernel parameter.

    Only the snippet is written; each parameter is verified against the
    running kernel after ``sysctl --system``.
    """
    content = render("sysctl-network", parameters=parameters)
    requirements = [
        Requirement(
            Directive(Path(config_file).name, content, InsertionPolicy.REPLACE_WHOLE_BLOCK),
            ExactMatch(content),
            resolver=FileContentResolver(),
        )
    ]
    kernel = SysctlResolver()
    for key, value in parameters.items():
        requirements.append(
            Requirement(Directive(key, str(value), separator="="), ExactMatch(str(value)), kernel, edit=False)
        )
    return requirements


def run(rc: RoutineContext) -> int:
    sysctl = rc.settings.sysctl
    outcome = rc.mutate(
        ConfigTarget(Path(sysctl.config_file), must_exist=False, mode=0o644, owner_uid=0, owner_gid=0),
        build_requirements(sysctl.config_file, sysctl.parameters),
        resolver=SysctlResolver(),
        validator=SysctlValidator(),
        activation=CommandActivation(["sysctl", "--system"]),
        description="network hardening kernel parameters",
    )
    return outcome.exit_code
