"""Weather relay bot - forwards weather station readings to Telegram subscribers."""

__version__ = "0.1.0"

from .service import WeatherRelayService


def main():
    """Entry point for the weather relay service."""
    from .service import run_relay

    run_relay()


__all__ = ["WeatherRelayService", "main"]
