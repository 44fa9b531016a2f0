"""
Safe configuration mutation.

Every routine that edits a configuration file and then restarts or reloads
whatever reads it goes through :class:`MutationEngine`::

    Start -> Evaluate -> AwaitingAuthorization -> Backup -> Edit
          -> Validate -> Apply -> Verify -> Done

with Rollback reachable from Validate, Apply and Verify. A compliant target
ends at Evaluate, a denied one at AwaitingAuthorization. Nothing is written
before the snapshot has been taken and read back.
"""

import logging
import os
from dataclasses import dataclass, field
from enum import Enum

from defensys.activation import Activation, NoActivation
from defensys.audit import AuditLog
from defensys.authorization import AuthorizationProvider
from defensys.compliance import Policy
from defensys.directives import (
    ConfigTarget,
    Directive,
    InsertionPolicy,
    apply_directives,
    encode_text,
    read_text,
)
from defensys.exceptions import ApplyError, BackupError, PreconditionError, RollbackError
from defensys.resolvers import EffectiveValueResolver, ResolvedValue
from defensys.snapshot import ConfigSnapshot, atomic_write
from defensys.validators import ConfigValidator, NullValidator

logger = logging.getLogger(__name__)


class EngineState(Enum):
    START = "start"
    EVALUATE = "evaluate"
    AWAITING_AUTHORIZATION = "awaiting-authorization"
    BACKUP = "backup"
    EDIT = "edit"
    VALIDATE = "validate"
    APPLY = "apply"
    VERIFY = "verify"
    ROLLBACK = "rollback"
    DONE = "done"


class MutationResult(Enum):
    """Terminal outcome of one mutation attempt."""

    NO_CHANGE_NEEDED = "no-change-needed"
    APPLIED_AND_VERIFIED = "applied-and-verified"
    VERIFICATION_FAILED = "verification-failed"
    VALIDATION_FAILED = "validation-failed"
    RESTART_FAILED = "restart-failed"
    DENIED = "denied"
    BACKUP_FAILED = "backup-failed"
    EDIT_FAILED = "edit-failed"
    DRY_RUN = "dry-run"

    @property
    def exit_code(self) -> int:
        if self in (MutationResult.NO_CHANGE_NEEDED, MutationResult.APPLIED_AND_VERIFIED, MutationResult.DRY_RUN):
            return 0
        return 1

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0


@dataclass(frozen=True)
class Requirement:
    """
    One setting the target must satisfy.

    Attributes:
        directive: What to write into the file
        policy: How to judge the resolved value
        resolver: Overrides the context's resolver for this setting
        edit: Whether the directive is written. Requirements that only
            check an effect of another requirement's edit (e.g. a kernel
            parameter loaded from a whole-file sysctl snippet) set this False.
    """

    directive: Directive
    policy: Policy
    resolver: EffectiveValueResolver | None = None
    edit: bool = True

    @property
    def label(self) -> str:
        return self.directive.key


@dataclass
class MutationContext:
    """Everything one mutation needs. Passed explicitly, never global."""

    target: ConfigTarget
    requirements: list
    resolver: EffectiveValueResolver
    audit: AuditLog
    authorization: AuthorizationProvider
    validator: ConfigValidator = field(default_factory=NullValidator)
    activation: Activation = field(default_factory=NoActivation)
    description: str = ""
    privileged: bool | None = None
    dry_run: bool = False

    def __post_init__(self):
        if self.privileged is None:
            self.privileged = os.geteuid() == 0
        if not self.description:
            self.description = ", ".join(r.label for r in self.requirements)


@dataclass
class MutationOutcome:
    """What happened, for the caller and for tests."""

    result: MutationResult
    snapshot: ConfigSnapshot | None = None
    before: dict = field(default_factory=dict)
    after: dict = field(default_factory=dict)
    diagnostics: list = field(default_factory=list)
    trace: list = field(default_factory=list)

    @property
    def exit_code(self) -> int:
        return self.result.exit_code


class MutationEngine:
    """Runs one :class:`MutationContext` through the mutation protocol."""

    def __init__(self, context: MutationContext):
        self.ctx = context
        self.trace: list[EngineState] = []

    def _enter(self, state: EngineState) -> None:
        logger.debug("%s: %s", self.ctx.target.path, state.value)
        self.trace.append(state)

    def _resolve(self, requirement: Requirement) -> ResolvedValue:
        resolver = requirement.resolver or self.ctx.resolver
        return resolver.resolve(self.ctx.target, requirement.directive)

    def evaluate(self) -> tuple[dict, list]:
        """
        Resolve every requirement. Never writes anything.

        Returns:
            (resolved values by label, labels of non-compliant requirements)
        """
        values = {}
        failing = []
        for requirement in self.ctx.requirements:
            resolved = self._resolve(requirement)
            values[requirement.label] = resolved
            if not requirement.policy.check(resolved.value):
                failing.append(requirement.label)
        return values, failing

    def _check_preconditions(self) -> None:
        target = self.ctx.target
        if not self.ctx.privileged and not self.ctx.dry_run:
            raise PreconditionError("This operation must be run as root")
        if target.must_exist and not target.path.exists():
            raise PreconditionError(f"Configuration file not found: {target.path}")

    def _finish(self, outcome: MutationOutcome) -> MutationOutcome:
        self._enter(EngineState.DONE)
        outcome.trace = list(self.trace)
        return outcome

    def _rollback(self, snapshot: ConfigSnapshot, restart: bool) -> None:
        """
        Restore the snapshot and, if ``restart``, the service state.

        Raises:
            RollbackError: If either step fails
        """
        self._enter(EngineState.ROLLBACK)
        ctx = self.ctx
        try:
            snapshot.restore()
        except BackupError as e:
            ctx.audit.error(f"ROLLBACK FAILED for {ctx.target.path}: {e}. Manual intervention required.")
            raise RollbackError(str(e)) from e
        ctx.audit.warning(f"Restored {ctx.target.path} from {snapshot.backup_path or 'empty snapshot'}")
        if not restart:
            return
        try:
            ctx.activation.restore()
        except RollbackError as e:
            ctx.audit.error(f"ROLLBACK FAILED for {ctx.activation.describe()}: {e}")
            raise

    def run(self) -> MutationOutcome:
        """
        Execute the protocol.

        Returns:
            MutationOutcome describing the terminal state

        Raises:
            PreconditionError: Before anything is evaluated (not root, file missing)
            RollbackError: If a rollback could not complete
        """
        ctx = self.ctx
        target = ctx.target
        audit = ctx.audit
        service = ctx.activation.service_name or "-"

        self._enter(EngineState.START)
        self._check_preconditions()
        ctx.activation.capture()

        self._enter(EngineState.EVALUATE)
        before, failing = self.evaluate()
        for label, value in before.items():
            if value.tool_error:
                logger.info("Could not query effective %s (%s); used %s", label, value.tool_error, value.source.value)

        current_text = read_text(target.path)
        desired_text = apply_directives(
            current_text, [r.directive for r in ctx.requirements if r.edit]
        )
        attempted = ", ".join(
            f"{r.label}={r.directive.value}" for r in ctx.requirements
            if r.edit and r.directive.policy is not InsertionPolicy.REMOVE and "\n" not in r.directive.value
        ) or ctx.description

        if not failing:
            if desired_text != current_text:
                audit.warning(
                    f"{target.path}: effective values compliant but file text differs; not rewriting"
                )
            audit.success(f"{ctx.description} compliant in {target.path}")
            return self._finish(MutationOutcome(MutationResult.NO_CHANGE_NEEDED, before=before))

        for label in failing:
            audit.warning(
                f"{label} is {before[label].describe()} in {target.path}, "
                f"required {self._policy_of(label).describe()}"
            )

        if ctx.dry_run:
            diagnostics = [f"would set {attempted} in {target.path}"]
            audit.info(f"Dry run: {diagnostics[0]}")
            return self._finish(MutationOutcome(MutationResult.DRY_RUN, before=before, diagnostics=diagnostics))

        self._enter(EngineState.AWAITING_AUTHORIZATION)
        if not ctx.authorization.authorize(f"Apply {ctx.description} to {target.path}?"):
            audit.info(f"Change to {target.path} declined; no changes made")
            return self._finish(MutationOutcome(MutationResult.DENIED, before=before))

        self._enter(EngineState.BACKUP)
        try:
            snapshot = ConfigSnapshot.take(target.path)
        except BackupError as e:
            audit.error(f"Backup of {target.path} failed, aborting: {e}")
            return self._finish(
                MutationOutcome(MutationResult.BACKUP_FAILED, before=before, diagnostics=[str(e)])
            )
        if snapshot.backup_path:
            audit.info(f"Backup created: {snapshot.backup_path}")

        self._enter(EngineState.EDIT)
        if desired_text != current_text:
            mode = target.mode if target.mode is not None else snapshot.mode
            uid = target.owner_uid if target.owner_uid is not None else snapshot.uid
            gid = target.owner_gid if target.owner_gid is not None else snapshot.gid
            try:
                atomic_write(target.path, encode_text(desired_text), mode, uid, gid)
            except OSError as e:
                audit.error(f"Failed to write {target.path}: {e}")
                self._rollback(snapshot, restart=False)
                return self._finish(
                    MutationOutcome(MutationResult.EDIT_FAILED, snapshot, before, diagnostics=[str(e)])
                )
            audit.info(f"Set {attempted} in {target.path}")
        else:
            logger.info("%s already contains the desired directives", target.path)

        self._enter(EngineState.VALIDATE)
        report = ctx.validator.validate(target.path)
        if not report.passed:
            audit.error(f"Validation of {target.path} failed: {report.summary}")
            self._rollback(snapshot, restart=False)
            audit.error(f"{attempted}: validation failed, original configuration restored; {service} not restarted")
            return self._finish(
                MutationOutcome(MutationResult.VALIDATION_FAILED, snapshot, before, diagnostics=report.diagnostics)
            )

        self._enter(EngineState.APPLY)
        try:
            ctx.activation.apply()
        except ApplyError as e:
            audit.error(f"Apply ({ctx.activation.describe()}) failed: {e}")
            self._rollback(snapshot, restart=True)
            audit.error(f"{attempted}: {service} failed to apply, original configuration restored")
            return self._finish(
                MutationOutcome(MutationResult.RESTART_FAILED, snapshot, before, diagnostics=[str(e)])
            )

        self._enter(EngineState.VERIFY)
        after, still_failing = self.evaluate()
        if still_failing:
            diagnostics = [f"{label} is {after[label].describe()} after apply" for label in still_failing]
            audit.error(f"Verification failed for {target.path}: {'; '.join(diagnostics)}")
            self._rollback(snapshot, restart=True)
            audit.error(f"{attempted}: not in effect, original configuration restored")
            return self._finish(
                MutationOutcome(MutationResult.VERIFICATION_FAILED, snapshot, before, after, diagnostics)
            )

        audit.success(f"{attempted} applied and verified in {target.path} (service: {service})")
        return self._finish(MutationOutcome(MutationResult.APPLIED_AND_VERIFIED, snapshot, before, after))

    def _policy_of(self, label: str) -> Policy:
        return next(r.policy for r in self.ctx.requirements if r.label == label)


def run_mutation(context: MutationContext) -> MutationOutcome:
    """Convenience wrapper: ``MutationEngine(context).run()``."""
    return MutationEngine(context).run()
