"""
Console output helpers shared by every defensys command.
"""

from rich.console import Console
from rich.panel import Panel

VERSION = "1.2.0"

console = Console()

_STATUS_STYLES = {
    "info": ("[cyan]ℹ[/cyan]", "white"),
    "success": ("[green]✓[/green]", "green"),
    "warning": ("[yellow]⚠[/yellow]", "yellow"),
    "error": ("[red]✗[/red]", "red"),
    "thinking": ("[magenta]…[/magenta]", "dim"),
}


def ds_print(message: str, status: str = "info") -> None:
    """Print a status line prefixed with an icon for the given status."""
    icon, style = _STATUS_STYLES.get(status, _STATUS_STYLES["info"])
    console.print(f"{icon} [{style}]{message}[/{style}]")


def ds_header(title: str) -> None:
    """Print a section header."""
    console.print()
    console.print(f"[bold cyan]━━ {title} ━━[/bold cyan]")
    console.print()


def show_banner() -> None:
    console.print(
        Panel(
            "[bold]Linux System Hardening & Auditing Toolkit[/bold]\n"
            f"[dim]defensys {VERSION}[/dim]",
            title="Defensys",
            border_style="blue",
        )
    )
