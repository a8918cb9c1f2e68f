"""
Terminal UI utilities using Rich.

Provides:
- Colored console output
- Configuration and selector tables
- A SessionHost that presents server output in the terminal
"""

import json
from typing import Dict, List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from bazel_lsp.lsp.config import ServerConfig
from bazel_lsp.lsp.document_router import DocumentSelector, TextDocument
from bazel_lsp.lsp.session import SessionHost

# Global console instance
console = Console()

_MESSAGE_STYLES = {1: "bold red", 2: "yellow", 3: "cyan", 4: "dim"}
_SEVERITY = {1: "[red]error[/red]", 2: "[yellow]warning[/yellow]", 3: "info", 4: "hint"}


def print_success(message: str) -> None:
    """Print success message"""
    console.print(f"[bold green]✓ {message}[/bold green]")


def print_warning(message: str) -> None:
    """Print warning message"""
    console.print(f"[bold yellow]! {message}[/bold yellow]")


def print_error(message: str) -> None:
    """Print error message"""
    console.print(f"[bold red]✗ {message}[/bold red]")


def show_config(config: ServerConfig) -> None:
    """Display the resolved server configuration."""
    table = Table(title=config.name)

    table.add_column("Setting", style="cyan", no_wrap=True)
    table.add_column("Value", style="white")

    data = config.to_dict()
    for key in ("id", "executable", "args", "install_root", "debug", "debug_args",
                "startup_timeout", "shutdown_timeout", "watch", "env"):
        table.add_row(key, str(data[key]))

    console.print(table)
    show_selector(config.selector)


def show_selector(selector: DocumentSelector) -> None:
    table = Table(title="Document selector")

    table.add_column("#", style="dim")
    table.add_column("Language", style="cyan")
    table.add_column("Scheme", style="yellow")
    table.add_column("Pattern", style="green")

    for i, f in enumerate(selector.filters, 1):
        table.add_row(str(i), f.language or "*", f.scheme or "*", f.pattern or "*")

    console.print(table)


def show_match(
    document: TextDocument, selector: DocumentSelector, workspace_root: Optional[str] = None
) -> bool:
    """Show which filters accept the document. Returns the overall result."""
    table = Table(title=document.uri)

    table.add_column("#", style="dim")
    table.add_column("Filter", style="cyan")
    table.add_column("Match")

    matched = False
    for i, f in enumerate(selector.filters, 1):
        hit = f.matches(document, workspace_root)
        matched = matched or hit
        table.add_row(str(i), json.dumps(f.to_dict()), "[green]✓[/green]" if hit else "[red]✗[/red]")

    console.print(table)
    return matched


def show_capabilities(name: str, capabilities: Dict) -> None:
    panel = Panel(
        json.dumps(capabilities, indent=2, sort_keys=True),
        title=f"{name} capabilities",
        border_style="blue",
    )
    console.print(panel)


class ConsoleHost(SessionHost):
    """Presents server messages and diagnostics on the console."""

    def show_error(self, message: str):
        print_error(message)

    def show_message(self, message_type: int, message: str):
        style = _MESSAGE_STYLES.get(message_type, "white")
        console.print(f"[{style}]server: {message}[/{style}]")

    def publish_diagnostics(self, uri: str, diagnostics: List[Dict]):
        if not diagnostics:
            console.print(f"[dim]{uri}: clean[/dim]")
            return
        for diagnostic in diagnostics:
            start = diagnostic.get("range", {}).get("start", {})
            severity = _SEVERITY.get(diagnostic.get("severity", 1), "error")
            console.print(
                f"{uri}:{start.get('line', 0) + 1}:{start.get('character', 0) + 1} "
                f"{severity} {diagnostic.get('message', '')}"
            )
