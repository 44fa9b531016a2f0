"""
Log rotation for the authentication log.
"""

from pathlib import Path

from defensys.compliance import ExactMatch
from defensys.directives import ConfigTarget, Directive, InsertionPolicy
from defensys.engine import Requirement
from defensys.resolvers import FileContentResolver
from defensys.routines.base import RoutineContext
from defensys.templates import render, template_context
from defensys.validators import LogrotateValidator


def run(rc: RoutineContext) -> int:
    settings = rc.settings.logrotate
    content = render("logrotate-secure", **template_context(settings))
    requirement = Requirement(
        Directive(Path(settings.config_file).name, content, InsertionPolicy.REPLACE_WHOLE_BLOCK),
        ExactMatch(content),
    )
    outcome = rc.mutate(
        ConfigTarget(Path(settings.config_file), must_exist=False, mode=0o644, owner_uid=0, owner_gid=0),
        [requirement],
        resolver=FileContentResolver(),
        validator=LogrotateValidator(),
        description=f"log rotation for {settings.target_log}",
    )
    return outcome.exit_code
