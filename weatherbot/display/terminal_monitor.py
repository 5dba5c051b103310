"""
Terminal Monitor for the weather station.
Full-screen terminal view of the weather log using the Rich library.
"""

import logging
import time
from datetime import datetime
from typing import Optional

from rich.align import Align
from rich.console import Console
from rich.layout import Layout
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from weatherbot.shared.telemetry import annotations, pressure_mmhg, should_alert

from .data_fetcher import DataFetcher, DisplayStatus

logger = logging.getLogger(__name__)


class TerminalMonitor:
    """Terminal-based display monitor using Rich"""

    def __init__(self, data_fetcher: DataFetcher, console: Optional[Console] = None):
        self.data_fetcher = data_fetcher
        self.console = console or Console()

    def update_display(self):
        """Update the display with the latest readings"""
        status = self.data_fetcher.get_status()
        self.console.clear()
        self.console.print(self.create_layout(status))

    def create_layout(self, status: DisplayStatus) -> Layout:
        """Create the main display layout"""
        layout = Layout()
        layout.split_column(
            Layout(self._create_header(status), name="header", size=3),
            Layout(self._create_readings_panel(status), name="readings"),
            Layout(self._create_median_panel(status), name="median", size=7),
        )
        return layout

    def _create_header(self, status: DisplayStatus) -> Panel:
        """Create header with title and timestamp"""
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        db_indicator = "🟢 ONLINE" if status.database_connected else "🔴 OFFLINE"

        header_text = Text()
        header_text.append("WEATHER STATION", style="bold cyan")
        header_text.append(f" - {timestamp}", style="white")
        header_text.append(f" - DB: {db_indicator}", style="green" if status.database_connected else "red")

        return Panel(Align.center(header_text), style="cyan")

    def create_readings_table(self, status: DisplayStatus) -> Table:
        table = Table(show_header=True, header_style="bold cyan", box=None)
        table.add_column("Time (UTC)", style="white", width=20)
        table.add_column("Temp °C", justify="right", width=9)
        table.add_column("Humidity %", justify="right", width=11)
        table.add_column("Pressure mmHg", justify="right", width=14)
        table.add_column("Notes", style="white")

        for reading in status.readings:
            # Same thresholds that make a notification audible
            style = "yellow" if should_alert(reading) else "green"
            table.add_row(
                reading.timestamp[:19].replace("T", " "),
                f"{reading.temperature:.2f}",
                f"{reading.humidity:.2f}",
                f"{pressure_mmhg(reading.pressure):.2f}",
                annotations(reading),
                style=style,
            )
        return table

    def _create_readings_panel(self, status: DisplayStatus) -> Panel:
        if not status.database_connected:
            content = Text(f"DATABASE ERROR\n\n{status.error}", style="bold red")
            return Panel(Align.center(content), title="READINGS", style="red")
        if not status.readings:
            return Panel(Text("No readings yet", style="yellow"), title="READINGS", style="cyan")
        return Panel(self.create_readings_table(status), title="READINGS", style="cyan")

    def _create_median_panel(self, status: DisplayStatus) -> Panel:
        median = status.median
        if median is None:
            return Panel(Text("---", style="white"), title="MEDIAN", style="cyan")

        content = Text()
        content.append(f"{median.count} readings since {median.since[:16].replace('T', ' ')}\n", style="white")
        content.append(f"Temperature {median.temperature:.2f} °C\n", style="green")
        content.append(f"Humidity    {median.humidity:.2f} %\n", style="green")
        content.append(f"Pressure    {pressure_mmhg(median.pressure):.2f} mmHg", style="green")
        return Panel(content, title="MEDIAN", style="cyan")

    def run(self, refresh_interval: float = 30.0):
        """Refresh the display until interrupted"""
        logger.info(f"Starting terminal monitor (refresh every {refresh_interval}s)")
        while True:
            self.update_display()
            time.sleep(refresh_interval)
