"""Core data models for weather station readings and subscribers."""

from dataclasses import asdict, dataclass, replace
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class RawTelemetry:
    """Sensor values decoded from one MQTT payload.

    Units: temperature in degrees Celsius, pressure in Pa, humidity in %.
    """
    temperature: float
    pressure: float
    humidity: float


@dataclass(frozen=True)
class Reading:
    """A timestamped measurement, as persisted in the weather log.

    The timestamp is stamped when the payload is decoded, not by the sensor.
    ``id`` is assigned by the store and is None until the reading is appended.
    """
    timestamp: str
    temperature: float
    pressure: float
    humidity: float
    id: Optional[int] = None

    @classmethod
    def from_telemetry(cls, telemetry: RawTelemetry, timestamp: str) -> "Reading":
        """Create a reading from decoded telemetry."""
        return cls(
            timestamp=timestamp,
            temperature=telemetry.temperature,
            pressure=telemetry.pressure,
            humidity=telemetry.humidity,
        )

    def with_id(self, reading_id: int) -> "Reading":
        """Return a copy carrying the store-assigned identifier."""
        return replace(self, id=reading_id)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON responses."""
        return asdict(self)


@dataclass(frozen=True)
class Subscriber:
    """A Telegram chat registered to receive weather notifications."""
    id: int
    recipient_id: int
