"""REST API service - serves the weather log as JSON."""

from .app import create_app


def main():
    """Entry point for the REST API service."""
    from aiohttp import web

    from weatherbot.shared.config import SettingsCell, load_settings
    from weatherbot.shared.database import open_storage
    from weatherbot.shared.logging import get_logger, setup_logging

    settings = load_settings()
    setup_logging(settings.log_level)
    logger = get_logger("weatherbot.api")

    cell = SettingsCell(settings)
    storage = open_storage(lambda: cell.current().storage)
    storage.initialize()

    logger.info(f"Listening on http://{settings.api.host}:{settings.api.port}")
    try:
        web.run_app(create_app(storage), host=settings.api.host, port=settings.api.port, print=None)
    finally:
        storage.close()


__all__ = ["create_app", "main"]
