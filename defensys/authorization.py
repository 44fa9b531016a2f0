"""
Authorization providers consulted before a configuration is changed.
"""

from rich.prompt import Confirm

from defensys.branding import console


class AuthorizationProvider:
    """Decides whether a proposed change may proceed."""

    def authorize(self, question: str) -> bool:
        raise NotImplementedError("Subclasses must implement authorize()")


class InteractiveAuthorization(AuthorizationProvider):
    """Ask the operator. Anything but an explicit yes is a denial."""

    def authorize(self, question: str) -> bool:
        try:
            return Confirm.ask(f"[bold yellow]{question}[/bold yellow]", default=False, console=console)
        except (EOFError, KeyboardInterrupt):
            console.print()
            return False


class AutoApprove(AuthorizationProvider):
    """``--yes``: approve every change."""

    def authorize(self, question: str) -> bool:
        return True


class AutoDeny(AuthorizationProvider):
    """``--no``: report only, never change anything."""

    def authorize(self, question: str) -> bool:
        return False
