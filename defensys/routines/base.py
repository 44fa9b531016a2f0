"""
Shared plumbing for hardening routines.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Callable

from defensys.activation import Activation, NoActivation
from defensys.audit import AuditLog
from defensys.authorization import AuthorizationProvider
from defensys.directives import ConfigTarget
from defensys.engine import MutationContext, MutationEngine, MutationOutcome
from defensys.exceptions import PreconditionError
from defensys.packages import PackageInstaller
from defensys.resolvers import EffectiveValueResolver
from defensys.services import ServiceController
from defensys.settings import Settings
from defensys.validators import ConfigValidator, NullValidator

logger = logging.getLogger(__name__)


@dataclass
class RoutineContext:
    """Collaborators handed to every routine."""

    settings: Settings
    audit: AuditLog
    authorization: AuthorizationProvider
    services: ServiceController = field(default_factory=ServiceController)
    packages: PackageInstaller = field(default_factory=PackageInstaller)
    dry_run: bool = False
    privileged: bool | None = None

    def __post_init__(self):
        if self.privileged is None:
            self.privileged = os.geteuid() == 0

    def require_root(self) -> None:
        """
        Raises:
            PreconditionError: If not running as root outside a dry run
        """
        if not self.privileged and not self.dry_run:
            raise PreconditionError("This routine must be run as root")

    def confirm(self, question: str) -> bool:
        return self.authorization.authorize(question)

    def mutate(
        self,
        target: ConfigTarget,
        requirements: list,
        resolver: EffectiveValueResolver,
        validator: ConfigValidator | None = None,
        activation: Activation | None = None,
        description: str = "",
    ) -> MutationOutcome:
        """Run one configuration change through the mutation engine."""
        context = MutationContext(
            target=target,
            requirements=requirements,
            resolver=resolver,
            audit=self.audit,
            authorization=self.authorization,
            validator=validator or NullValidator(),
            activation=activation or NoActivation(),
            description=description,
            privileged=self.privileged,
            dry_run=self.dry_run,
        )
        return MutationEngine(context).run()


@dataclass(frozen=True)
class Routine:
    """A named entry point shown in the CLI and menu."""

    name: str
    title: str
    run: Callable[[RoutineContext], int]
    needs_root: bool = True
