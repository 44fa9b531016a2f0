import argparse
import getpass
import logging
import sys
from datetime import datetime
from pathlib import Path

from rich.prompt import Prompt
from rich.table import Table

from defensys.audit import AuditLog
from defensys.authorization import AutoApprove, AutoDeny, InteractiveAuthorization
from defensys.branding import VERSION, console, ds_header, ds_print, show_banner
from defensys.exceptions import HardeningError, PreconditionError, RollbackError
from defensys.routines import ROUTINES, Routine, RoutineContext, get_routine, process_audit, pwned
from defensys.settings import Settings, load_settings
from defensys.snapshot import list_backups

logger = logging.getLogger("defensys")

USER_AUDIT_LOG = Path.home() / ".defensys" / "audit.log"


class DefensysCLI:
    def __init__(
        self,
        settings: Settings,
        verbose: bool = False,
        assume: str | None = None,
        dry_run: bool = False,
    ):
        self.settings = settings
        self.verbose = verbose
        self.assume = assume
        self.dry_run = dry_run
        self._audit = None

    def _debug(self, message: str):
        """Print debug info only in verbose mode"""
        if self.verbose:
            console.print(f"[dim][DEBUG] {message}[/dim]")

    def _authorization(self):
        if self.assume == "yes":
            return AutoApprove()
        if self.assume == "no":
            return AutoDeny()
        return InteractiveAuthorization()

    def open_audit(self, allow_fallback: bool = False) -> AuditLog:
        """
        Open the central audit log once per run.

        Args:
            allow_fallback: Use the per-user log when the central one cannot
                be opened, for routines that do not need root
        """
        if self._audit is None:
            try:
                self._audit = AuditLog(self.settings.audit_log)
            except PreconditionError as e:
                if not allow_fallback:
                    raise
                logger.warning("%s", e)
                ds_print(f"Cannot write {self.settings.audit_log}; logging to {USER_AUDIT_LOG} instead", "warning")
                self._audit = AuditLog(USER_AUDIT_LOG)
            self._debug(f"Audit log: {self._audit.path}")
        return self._audit

    def context(self, allow_fallback: bool = False) -> RoutineContext:
        return RoutineContext(
            settings=self.settings,
            audit=self.open_audit(allow_fallback),
            authorization=self._authorization(),
            dry_run=self.dry_run,
        )

    def close(self) -> None:
        if self._audit is not None:
            self._audit.close()
            self._audit = None

    # --- Routines ---
    def run_routine(self, routine: Routine, **kwargs) -> int:
        ds_header(routine.title)
        if self.dry_run:
            ds_print("Dry run: nothing will be changed", "info")
        try:
            rc = self.context(allow_fallback=not routine.needs_root)
            if routine.needs_root:
                rc.require_root()
            exit_code = routine.run(rc, **kwargs)
        except RollbackError as e:
            ds_print(f"Rollback failed: {e}", "error")
            ds_print("Manual intervention required; see the audit log for the backup path", "error")
            return 1
        except HardeningError as e:
            ds_print(str(e), "error")
            return 1
        self._debug(f"{routine.name} finished with exit code {exit_code}")
        return exit_code

    def menu(self) -> int:
        """Numbered menu over every routine until the user quits."""
        show_banner()
        entries = [(r.title, r) for r in ROUTINES] + [("Check a password against known breaches", None)]
        exit_code = 0
        while True:
            console.print()
            table = Table(show_header=False, box=None)
            table.add_column("No.", style="green", justify="right")
            table.add_column("Routine")
            for number, (title, _) in enumerate(entries, start=1):
                table.add_row(str(number), title)
            table.add_row("q", "Exit")
            console.print(table)

            choices = [str(n) for n in range(1, len(entries) + 1)] + ["q"]
            try:
                choice = Prompt.ask("Select an option", choices=choices, show_choices=False)
            except (EOFError, KeyboardInterrupt):
                console.print()
                return exit_code
            if choice == "q":
                ds_print("Exiting.", "info")
                return exit_code

            _, routine = entries[int(choice) - 1]
            if routine is None:
                exit_code = self.pwned(None)
            else:
                exit_code = self.run_routine(routine)

    def pwned(self, password: str | None) -> int:
        """Breach check. Exit codes: 0 not found, 2 found, 3 API error, 1 usage."""
        if password is None:
            try:
                password = getpass.getpass("Enter the password to check: ")
            except (EOFError, KeyboardInterrupt):
                console.print()
                return 1
        if not password:
            ds_print("Password cannot be empty", "error")
            return 1
        return pwned.run(password, self.settings.pwned)

    def backups(self, path: str) -> int:
        artifacts = list_backups(path)
        if not artifacts:
            ds_print(f"No backups found for {path}", "info")
            return 0
        table = Table(title=f"Backups of {path}", show_header=True, header_style="bold cyan")
        table.add_column("Backup", style="green")
        table.add_column("Size", justify="right")
        table.add_column("Modified")
        for artifact in artifacts:
            st = artifact.stat()
            modified = datetime.fromtimestamp(st.st_mtime).strftime("%Y-%m-%d %H:%M:%S")
            table.add_row(str(artifact), str(st.st_size), modified)
        console.print(table)
        return 0


def _configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
        logger.addHandler(handler)
    logger.setLevel(level)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="defensys",
        description="Linux system hardening and auditing toolkit",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  sudo defensys menu
  sudo defensys ssh-grace-time
  sudo defensys --dry-run sysctl-network
  sudo defensys --yes chrony
  defensys process-audit --mode zombie
  defensys pwned
  defensys backups /etc/ssh/sshd_config

Settings are read from --config, $DEFENSYS_CONFIG, ~/.defensys/config.yaml
or /etc/defensys/config.yaml.
        """,
    )

    parser.add_argument("--version", "-V", action="version", version=f"defensys {VERSION}")
    parser.add_argument("--verbose", "-v", action="store_true", help="Show detailed output")
    parser.add_argument("--config", "-c", help="Settings file (YAML)")
    parser.add_argument(
        "--dry-run", action="store_true", help="Report what would change without changing it"
    )
    assume = parser.add_mutually_exclusive_group()
    assume.add_argument(
        "--yes", "-y", dest="assume", action="store_const", const="yes", help="Approve every change"
    )
    assume.add_argument(
        "--no", "-n", dest="assume", action="store_const", const="no", help="Deny every change"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("menu", help="Interactive numbered menu")

    for routine in ROUTINES:
        routine_parser = subparsers.add_parser(routine.name, help=routine.title)
        if routine.name == "process-audit":
            routine_parser.add_argument(
                "--mode", choices=list(process_audit.MODES), help="Which processes to list"
            )

    pwned_parser = subparsers.add_parser("pwned", help="Check a password against known breaches")
    pwned_parser.add_argument(
        "password", nargs="?", help="Password to check (prompted for when omitted)"
    )

    backups_parser = subparsers.add_parser("backups", help="List backups of a configuration file")
    backups_parser.add_argument("path", help="Configuration file path")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    if not args.command:
        show_banner()
        parser.print_help()
        return 1

    try:
        settings = load_settings(args.config)
    except HardeningError as e:
        ds_print(str(e), "error")
        return 1

    cli = DefensysCLI(settings, verbose=args.verbose, assume=args.assume, dry_run=args.dry_run)

    try:
        if args.command == "menu":
            return cli.menu()
        elif args.command == "pwned":
            return cli.pwned(args.password)
        elif args.command == "backups":
            return cli.backups(args.path)
        elif args.command == "process-audit":
            return cli.run_routine(get_routine(args.command), mode=args.mode)
        else:
            return cli.run_routine(get_routine(args.command))
    except HardeningError as e:
        ds_print(str(e), "error")
        return 1
    except KeyboardInterrupt:
        print("\n✗ Operation cancelled", file=sys.stderr)
        return 130
    finally:
        cli.close()


if __name__ == "__main__":
    sys.exit(main())
