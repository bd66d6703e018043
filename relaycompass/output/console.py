"""
Rich console output for RelayCompass
"""

import math
from typing import Optional

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn
from rich.table import Table
from rich.text import Text

from ..models import IPVersion, Location, UserLocation


TIMEOUT_MARKER = "timeout"


def sort_by_latency(locations: list[Location]) -> list[Location]:
    """
    Rank locations: measured latency ascending, timeouts last.

    Ties fall back to distance (unknown distance last), then country,
    then city. Stable.
    """
    def key(loc: Location):
        measured = loc.latency_ms is not None
        return (
            0 if measured else 1,
            loc.latency_ms if measured else 0.0,
            loc.distance_km if loc.distance_km is not None else math.inf,
            loc.country,
            loc.city,
        )

    return sorted(locations, key=key)


def format_latency(latency_ms: Optional[float]) -> str:
    """Latency with two decimals, or the timeout marker"""
    if latency_ms is None:
        return TIMEOUT_MARKER
    return f"{latency_ms:.2f}"


def format_distance(distance_km: Optional[float]) -> str:
    if distance_km is None:
        return ""
    return f"{distance_km:.0f}"


class ConsoleOutput:
    """
    Rich console output for ping results.

    Features:
    - Ranked relay table
    - Compact best-server summary
    - Progress bar while pinging
    """

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def print_table(self, locations: list[Location], ip_version: IPVersion):
        """Print all relays as a table, in the given order"""
        if not locations:
            return

        table = Table(
            show_header=True,
            header_style="bold magenta",
            box=box.SIMPLE_HEAD,
            padding=(0, 1)
        )

        table.add_column("Country")
        table.add_column("City")
        table.add_column("Type", style="dim")
        table.add_column("IP")
        table.add_column("Hostname", style="bold")
        table.add_column("Distance (km)", justify="right")
        table.add_column("Latency (ms)", justify="right")

        for loc in locations:
            table.add_row(
                loc.country,
                loc.city,
                loc.type,
                loc.address_for(ip_version),
                loc.hostname,
                format_distance(loc.distance_km),
                self._latency_text(loc.latency_ms),
            )

        self.console.print(table)

    def print_best_server(self, location: Location, ip_version: IPVersion):
        """Print the single best relay"""
        content = Text()
        content.append(f"Country:    {location.country}\n")
        content.append(f"City:       {location.city}\n")
        content.append(f"Distance:   {format_distance(location.distance_km)} km\n")
        content.append("Hostname:   ")
        content.append(location.hostname, style="bold")
        content.append("\n")
        content.append(f"IP:         {location.address_for(ip_version)}\n")
        content.append("Latency:    ")
        content.append_text(self._latency_text(location.latency_ms))
        content.append(" ms")

        panel = Panel(
            content,
            title=Text("Best server", style="bold"),
            border_style="green" if location.latency_ms is not None else "red",
            padding=(0, 1)
        )
        self.console.print(panel)

    def print_user_location(self, user: UserLocation):
        """Print the caller's location as reported by the API"""
        content = Text()
        content.append(f"Country:                    {user.country}\n")
        content.append(f"City:                       {user.city}\n")
        content.append(f"Latitude:                   {user.latitude:f}\n")
        content.append(f"Longitude:                  {user.longitude:f}\n")
        content.append(f"IP:                         {user.ip}\n")
        content.append(f"Connected to Mullvad VPN:   {'Yes' if user.mullvad_exit_ip else 'No'}")
        self.console.print(content)

    def create_progress(self, total: int) -> tuple[Progress, int]:
        """Create progress bar for pinging"""
        progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold blue]Pinging relays..."),
            BarColumn(complete_style="cyan", finished_style="green"),
            TaskProgressColumn(),
            console=self.console,
            transient=True
        )
        task_id = progress.add_task("ping", total=total)
        return progress, task_id

    def print_message(self, message: str):
        self.console.print(message, markup=False)

    def print_error(self, message: str):
        """Print error message"""
        self.console.print(f"[bold red]Error:[/] {escape(message)}")

    def _latency_text(self, latency_ms: Optional[float]) -> Text:
        if latency_ms is None:
            return Text(TIMEOUT_MARKER, style="red")
        return Text(format_latency(latency_ms), style="green")
