"""
Rich console configuration for the workout route viewer.

Provides styled terminal output: logging, the route summary, waypoint
inspection panels and the tile download progress bar.
"""

import logging
from typing import Iterable, Optional, Tuple

from rich.console import Console
from rich.logging import RichHandler
from rich.theme import Theme
from rich.panel import Panel
from rich.table import Table
from rich.progress import (
    Progress,
    SpinnerColumn,
    TextColumn,
    BarColumn,
    TaskProgressColumn,
    TimeElapsedColumn,
    MofNCompleteColumn,
)

VIEWER_THEME = Theme({
    "info": "cyan",
    "warning": "yellow",
    "error": "bold red",
    "success": "bold green",
    "highlight": "bold magenta",
    "muted": "dim",
    "speed": "bold cyan",
    "gps": "green",
    "opposite": "bold blue",
})

# Global console instance
console = Console(theme=VIEWER_THEME)


def setup_rich_logging(verbose: bool = False) -> None:
    """
    Configure logging to use the Rich handler.

    Args:
        verbose: Enable DEBUG level logging with full details
    """
    level = logging.DEBUG if verbose else logging.WARNING

    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[
            RichHandler(
                console=console,
                show_time=verbose,
                show_path=verbose,
                rich_tracebacks=True,
                tracebacks_show_locals=verbose,
                markup=True,
            )
        ],
        force=True,  # Override any existing configuration
    )


def create_tile_progress() -> Progress:
    """
    Create a progress bar for basemap tile downloads.

    Returns:
        Configured Progress instance; update it with completed tile counts
    """
    return Progress(
        SpinnerColumn("dots"),
        TextColumn("[cyan]{task.description}"),
        BarColumn(bar_width=30, style="dim cyan", complete_style="cyan"),
        TaskProgressColumn(),
        MofNCompleteColumn(),
        TimeElapsedColumn(),
        console=console,
        transient=True,
    )


def _rows_table(rows: Iterable[Tuple[str, str]], value_style: str = "bold") -> Table:
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Key", style="dim")
    table.add_column("Value", style=value_style)
    for label, value in rows:
        table.add_row(label, value)
    return table


def print_route_summary(rows: Iterable[Tuple[str, str]], title: str = "Workout") -> None:
    """
    Print the workout summary panel.

    Args:
        rows: (label, value) pairs, as produced by presentation.workout_summary
        title: Panel title
    """
    panel = Panel(
        _rows_table(rows),
        title=f"[bold]{title}[/]",
        border_style="cyan",
        padding=(1, 2),
    )
    console.print(panel)


def print_waypoint_panel(rows: Iterable[Tuple[str, str]],
                         opposite_rows: Optional[Iterable[Tuple[str, str]]] = None) -> None:
    """
    Print the inspected waypoint and, side by side, its correlate.

    Args:
        rows: (label, value) pairs for the current waypoint
        opposite_rows: Rows for the opposite-direction waypoint, or None
    """
    grid = Table.grid(padding=(0, 4))
    grid.add_column()
    grid.add_column()

    current = _rows_table(rows, value_style="speed")
    if opposite_rows is None:
        other = "[muted]No opposite waypoint[/]"
    else:
        other = _rows_table(opposite_rows, value_style="opposite")
    grid.add_row(current, other)

    console.print(Panel(grid, title="[bold]Waypoint[/]", border_style="green", padding=(0, 1)))


def print_completion_summary(output_file: str, waypoints: int, tiles: Optional[int] = None) -> None:
    """
    Print a styled completion summary.

    Args:
        output_file: Path to the rendered image
        waypoints: Number of waypoints drawn
        tiles: Basemap tiles composed (optional)
    """
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Metric", style="dim")
    table.add_column("Value", style="bold green")

    table.add_row("Waypoints", f"{waypoints:,}")
    if tiles:
        table.add_row("Map Tiles", str(tiles))
    table.add_row("Output", output_file)

    panel = Panel(
        table,
        title="[bold green]Complete[/]",
        border_style="green",
        padding=(1, 2),
    )
    console.print()
    console.print(panel)


def print_error(message: str, hint: Optional[str] = None) -> None:
    """
    Print a styled error message.

    Args:
        message: Error message
        hint: Optional hint for resolution
    """
    console.print(f"\n[error]Error:[/] {message}")
    if hint:
        console.print(f"[muted]Hint: {hint}[/]")
