import logging
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.box import ROUNDED, HEAVY, SIMPLE
from rich.text import Text
from rich.table import Table

from novelcli.domain.interfaces.user_interface import UserInterface

logger = logging.getLogger(__name__)

STATUS_STYLES = {
    "healthy": "green",
    "warning": "yellow",
    "degraded": "dark_orange",
    "critical": "red",
    "closed": "green",
    "half_open": "yellow",
    "open": "red",
}


def _styled(value: str) -> str:
    style = STATUS_STYLES.get(value)
    return f"[{style}]{value}[/{style}]" if style else value


class ConsoleDisplay(UserInterface):
    """Concrete implementation of UserInterface using the rich library for console output."""

    def __init__(self, console: Optional[Console] = None):
        """Initializes the rich Console."""
        self._console = console or Console()

    @property
    def console(self) -> Console:
        """Get the Rich console instance for direct operations."""
        return self._console

    def display_error(self, error_message: str, **kwargs: Any) -> None:
        """Displays an error message in a distinct style.

        Args:
            error_message: The error message to display.
        """
        panel = Panel(
            Text(error_message, style="white"),
            title="[bold red]Error[/bold red]",
            border_style="red",
            box=HEAVY,
            padding=(0, 1)
        )
        self.console.print(panel)

    def display_info(self, info_message: str, **kwargs: Any) -> None:
        """Displays an informational message.

        Args:
            info_message: The informational message to display.
        """
        panel = Panel(
            Text(info_message, style="white"),
            title="[bold blue]Info[/bold blue]",
            border_style="blue",
            box=SIMPLE,
            padding=(0, 1)
        )
        self.console.print(panel)

    def display_warning(self, warning_message: str, **kwargs: Any) -> None:
        """Displays a warning message.

        Args:
            warning_message: The warning message to display.
        """
        logger.warning(f"Display warning: {warning_message}")
        panel = Panel(
            Text(warning_message, style="white"),
            title="[bold yellow]Warning[/bold yellow]",
            border_style="yellow",
            box=HEAVY,
            padding=(0, 1)
        )
        self.console.print(panel)

    def ask_yes_no_question(self, question: str) -> bool:
        """Asks a yes/no question and returns the answer.

        Args:
            question: The question to ask

        Returns:
            True if the answer is yes, False otherwise
        """
        logger.debug(f"Asking yes/no question: {question}")
        panel = Panel(
            Text(f"{question} (y/n)", style="white"),
            title="[bold yellow]Question[/bold yellow]",
            border_style="yellow",
            box=ROUNDED,
            padding=(0, 1)
        )
        self.console.print(panel)
        response = self.console.input("[bold yellow]> [/bold yellow]").strip().lower()
        return response in ('y', 'yes')

    def display_chapter_done(self, index: int, title: str, file_path: str) -> None:
        self.console.print(f"[green]✓[/green] [bold]{index}.[/bold] {title} [dim]→ {file_path}[/dim]")

    def display_run_summary(self, summary: Dict[str, Any]) -> None:
        """Shows the navigation or batch summary as a two-column table."""
        table = Table(title="Run Summary", show_header=False, box=ROUNDED, border_style="cyan", padding=(0, 1))
        table.add_column("Metric", style="cyan")
        table.add_column("Value", style="bold")
        for key, value in summary.items():
            if isinstance(value, float):
                value = f"{value:.2f}"
            table.add_row(key.replace("_", " ").capitalize(), str(value))
        self.console.print(table)

    def display_cache_stats(self, stats: Dict[str, Dict[str, Any]]) -> None:
        table = Table(title="Cache", box=SIMPLE, border_style="cyan")
        for column in ("Namespace", "Size", "Max", "Hits", "Misses", "Hit rate"):
            table.add_column(column, justify="right" if column != "Namespace" else "left")
        for name, ns in stats.items():
            table.add_row(
                name,
                str(ns.get("size", 0)),
                str(ns.get("max_size", 0)),
                str(ns.get("hits", 0)),
                str(ns.get("misses", 0)),
                f"{ns.get('hit_rate', 0.0):.1f}%",
            )
        self.console.print(table)

    def display_provider_health(self, rankings: List[Dict[str, Any]], alerts: List[Dict[str, Any]]) -> None:
        """Shows provider rankings and any unresolved alerts."""
        if not rankings:
            logger.debug("No provider activity recorded; skipping health table.")
            return
        table = Table(title="Provider Health", box=SIMPLE, border_style="cyan")
        for column in ("#", "Provider", "Status", "Breaker", "Success", "Avg ms", "Requests"):
            table.add_column(column)
        for row in rankings:
            table.add_row(
                str(row["rank"]),
                row["provider"],
                _styled(row["status"]),
                _styled(row["circuit_state"]),
                f"{row['success_rate']:.1f}%",
                f"{row['average_response_time']:.0f}",
                str(row["total_requests"]),
            )
        self.console.print(table)
        for alert in alerts:
            self.display_warning(f"[{alert['severity']}] {alert['provider']}: {alert['message']}")
