"""Weather station bot: relays ESP32 weather readings from MQTT to Telegram."""

__version__ = "0.1.0"
