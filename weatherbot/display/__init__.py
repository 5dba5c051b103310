"""Terminal display service."""

from .terminal_monitor import TerminalMonitor
from .data_fetcher import DataFetcher


def main():
    """Entry point for display service."""
    from weatherbot.shared.config import SettingsCell, load_settings
    from weatherbot.shared.database import open_storage
    from weatherbot.shared.logging import setup_logging

    settings = load_settings()
    setup_logging(settings.log_level)

    cell = SettingsCell(settings)
    storage = open_storage(lambda: cell.current().storage)

    fetcher = DataFetcher(storage)
    monitor = TerminalMonitor(fetcher)

    try:
        monitor.run()
    except KeyboardInterrupt:
        pass
    finally:
        storage.close()


__all__ = ["TerminalMonitor", "DataFetcher", "main"]
