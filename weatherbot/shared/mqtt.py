"""MQTT broker configuration."""

import os
from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class TLSConfig:
    """TLS settings for the broker connection."""
    ca_cert: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "TLSConfig":
        return cls(ca_cert=data.get("ca_cert"))


@dataclass(frozen=True)
class MQTTConfig:
    """MQTT broker configuration."""
    host: str = "localhost"
    port: int = 1883
    topic_name: str = "weather"
    username: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)
    client_id: str = "weather_station_bot"
    keepalive: int = 60
    qos: int = 1
    reconnect_min_delay: int = 1
    reconnect_max_delay: int = 120

    @classmethod
    def from_dict(cls, data: dict) -> "MQTTConfig":
        """Create config from dictionary.

        MQTT_USERNAME and MQTT_PASSWORD environment variables take
        precedence over the file so credentials can live in .env.
        """
        return cls(
            host=data.get("host", "localhost"),
            port=int(data.get("port", 1883)),
            topic_name=data.get("topic_name", "weather"),
            username=os.getenv("MQTT_USERNAME") or data.get("username"),
            password=os.getenv("MQTT_PASSWORD") or data.get("password"),
            client_id=data.get("client_id", "weather_station_bot"),
            keepalive=int(data.get("keepalive", 60)),
            qos=int(data.get("qos", 1)),
            reconnect_min_delay=int(data.get("reconnect_min_delay", 1)),
            reconnect_max_delay=int(data.get("reconnect_max_delay", 120)),
        )
