"""Decoding and annotation of weather station telemetry.

The ESP32 weather station publishes one JSON object per measurement:

    {"temp": 21.5, "pressure": 101325.0, "humidity": 48.0}

Temperature is in degrees Celsius, pressure in Pa and humidity in percent.
"""

import json
import math
import threading
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Union

from .errors import InvalidEncodingError, MalformedPayloadError
from .models import RawTelemetry, Reading

PA_TO_MM_MERCURY = 133.322
NORMAL_PRESSURE_MMHG = 101_325.0 / PA_TO_MM_MERCURY
PRESSURE_DEVIATION_MMHG = 10.0

FLOAT32_MAX = 3.4028234663852886e38

# Wire keys in the order they are rendered and stored
PAYLOAD_FIELDS = {
    "temp": "temperature",
    "pressure": "pressure",
    "humidity": "humidity",
}

Measurement = Union[RawTelemetry, Reading]


class TemperatureBand(Enum):
    VERY_COLD = "very-cold"
    COLD = "cold"
    NEUTRAL = "neutral"
    WARM = "warm"
    HOT = "hot"


class HumidityBand(Enum):
    NONE = "none"
    HIGH = "high"
    VERY_HIGH = "very-high"


class PressureBand(Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


TEMPERATURE_MARKERS = {
    TemperatureBand.VERY_COLD: "🥶",
    TemperatureBand.COLD: "❄️",
    TemperatureBand.NEUTRAL: "",
    TemperatureBand.WARM: "☀️",
    TemperatureBand.HOT: "🔥",
}

HUMIDITY_MARKERS = {
    HumidityBand.NONE: "",
    HumidityBand.HIGH: "don't forget an umbrella ☂️",
    HumidityBand.VERY_HIGH: "🌧",
}

PRESSURE_MARKERS = {
    PressureBand.LOW: "⬇️ low pressure",
    PressureBand.NORMAL: "",
    PressureBand.HIGH: "⬆️ high pressure",
}


def _parse_field(data: dict, key: str) -> float:
    if key not in data:
        raise MalformedPayloadError(f"Missing field '{key}'")

    value = data[key]
    # bool is an int subclass; "true" is not a measurement
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MalformedPayloadError(f"Field '{key}' is not a number: {value!r}")

    try:
        value = float(value)
    except OverflowError as e:
        raise MalformedPayloadError(f"Field '{key}' is out of range: {e}") from e
    if not math.isfinite(value) or abs(value) > FLOAT32_MAX:
        raise MalformedPayloadError(f"Field '{key}' is out of range: {value!r}")
    return value


def decode(payload: bytes) -> RawTelemetry:
    """Decode an MQTT payload into telemetry values.

    Args:
        payload: Raw message bytes.

    Returns:
        The decoded telemetry.

    Raises:
        InvalidEncodingError: If the bytes are not valid UTF-8.
        MalformedPayloadError: If the text is not a JSON object carrying
            numeric temp, pressure and humidity fields.
    """
    try:
        text = bytes(payload).decode("utf-8")
    except UnicodeDecodeError as e:
        raise InvalidEncodingError(f"Payload is not valid UTF-8: {e}") from e

    try:
        data = json.loads(text)
    except (ValueError, RecursionError) as e:
        # JSONDecodeError is a ValueError, as is the int digit limit
        raise MalformedPayloadError(f"Payload is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise MalformedPayloadError(f"Payload is not a JSON object: {text!r}")

    values = {attr: _parse_field(data, key) for key, attr in PAYLOAD_FIELDS.items()}
    return RawTelemetry(**values)


def pressure_mmhg(pressure_pa: float) -> float:
    """Convert pressure from Pa to millimetres of mercury."""
    return pressure_pa / PA_TO_MM_MERCURY


def temperature_band(measurement: Measurement) -> TemperatureBand:
    t = measurement.temperature
    if t < -10.0:
        return TemperatureBand.VERY_COLD
    if t < 0.0:
        return TemperatureBand.COLD
    if t > 30.0:
        return TemperatureBand.HOT
    if t > 20.0:
        return TemperatureBand.WARM
    return TemperatureBand.NEUTRAL


def humidity_band(measurement: Measurement) -> HumidityBand:
    h = measurement.humidity
    if h > 90.0:
        return HumidityBand.VERY_HIGH
    if h > 70.0:
        return HumidityBand.HIGH
    return HumidityBand.NONE


def pressure_band(measurement: Measurement) -> PressureBand:
    mmhg = pressure_mmhg(measurement.pressure)
    if mmhg > NORMAL_PRESSURE_MMHG + PRESSURE_DEVIATION_MMHG:
        return PressureBand.HIGH
    if mmhg < NORMAL_PRESSURE_MMHG - PRESSURE_DEVIATION_MMHG:
        return PressureBand.LOW
    return PressureBand.NORMAL


def should_alert(measurement: Measurement) -> bool:
    """Check whether a measurement deserves an audible notification.

    Uses coarser thresholds than the banding functions.
    """
    return (
        measurement.temperature > 30.0
        or measurement.temperature < 15.0
        or measurement.humidity >= 85.0
    )


def annotations(measurement: Measurement) -> str:
    """Join the non-empty band markers for a measurement."""
    markers = [
        TEMPERATURE_MARKERS[temperature_band(measurement)],
        HUMIDITY_MARKERS[humidity_band(measurement)],
        PRESSURE_MARKERS[pressure_band(measurement)],
    ]
    return " ".join(m for m in markers if m)


def render_notification(measurement: Measurement) -> str:
    """Render the text sent to subscribers for one measurement."""
    lines = []
    header = annotations(measurement)
    if header:
        lines.append(header)
    lines.append(f"℃{measurement.temperature:>10.2f}")
    lines.append(f"Humidity{measurement.humidity:>10.2f}%")
    lines.append(f"Pressure{pressure_mmhg(measurement.pressure):>10.2f} mmHg")
    return "\n".join(lines)


class ReadingClock:
    """Stamps decoded telemetry with a non-decreasing UTC timestamp.

    A wall clock stepping backwards (NTP adjustment) repeats the last
    timestamp instead of going back in time.
    """

    def __init__(self):
        self._last: Optional[datetime] = None
        self._lock = threading.Lock()

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def stamp(self, telemetry: RawTelemetry) -> Reading:
        with self._lock:
            current = self.now()
            if self._last is not None and current < self._last:
                current = self._last
            self._last = current
        return Reading.from_telemetry(
            telemetry, current.isoformat(timespec="microseconds")
        )
