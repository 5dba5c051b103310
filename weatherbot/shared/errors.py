"""Exception hierarchy for weatherbot services."""


class WeatherBotError(Exception):
    """Base class for all weatherbot errors."""

    pass


class ConfigError(WeatherBotError):
    """Raised when a configuration file is missing or invalid."""

    pass


class DecodeError(WeatherBotError):
    """Raised when a telemetry payload cannot be decoded."""

    pass


class InvalidEncodingError(DecodeError):
    """Payload bytes are not valid UTF-8."""

    pass


class MalformedPayloadError(DecodeError):
    """Payload text does not describe temperature, pressure and humidity."""

    pass


class RegistryError(WeatherBotError):
    """Raised by subscriber registry operations."""

    def __init__(self, recipient_id: int, message: str):
        super().__init__(message)
        self.recipient_id = recipient_id


class SubscriberExistsError(RegistryError):
    """A live subscriber already maps to the recipient."""

    def __init__(self, recipient_id: int):
        super().__init__(recipient_id, f"Subscriber {recipient_id} already exists")


class SubscriberNotFoundError(RegistryError):
    """No live subscriber maps to the recipient."""

    def __init__(self, recipient_id: int):
        super().__init__(recipient_id, f"Subscriber {recipient_id} not found")


class StoreError(WeatherBotError):
    """Raised when the underlying storage fails."""

    pass


class WriteFailedError(StoreError):
    """A write did not complete; nothing was persisted."""

    pass


class ReadFailedError(StoreError):
    """A read query failed."""

    pass


class DiskFullError(WriteFailedError):
    """Raised when disk is too full to safely write data."""

    pass


class NotifyError(WeatherBotError):
    """Raised when a notification cannot be delivered to one recipient."""

    pass
