"""MQTT listener feeding the relay pipeline.

paho-mqtt runs its network loop in a background thread; received payloads are
handed to the asyncio loop with ``call_soon_threadsafe`` and queued for the
pipeline. Lost connections are retried by paho with exponential backoff
between ``reconnect_min_delay`` and ``reconnect_max_delay`` seconds, and the
topic subscription is renewed on every successful (re)connect.
"""

import asyncio
import logging
from enum import Enum
from typing import Callable, Optional, Tuple

import paho.mqtt.client as mqtt
from paho.mqtt.enums import CallbackAPIVersion

from weatherbot.shared.config import Settings
from weatherbot.shared.mqtt import MQTTConfig, TLSConfig

from .pipeline import InboundMessage

logger = logging.getLogger(__name__)


class ListenerState(Enum):
    """Connection states of the listener."""
    STOPPED = "stopped"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"  # paho is backing off before reconnecting


class MQTTListener:
    """Subscribes to the weather topic and queues every publish."""

    def __init__(
        self,
        settings_source: Callable[[], Settings],
        queue: "asyncio.Queue[InboundMessage]",
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self.settings_source = settings_source
        self.queue = queue
        self._loop = loop
        self.client: Optional[mqtt.Client] = None
        self.state = ListenerState.STOPPED
        self._connected_with: Optional[Tuple[MQTTConfig, TLSConfig]] = None

    def _create_client(self, mqtt_config: MQTTConfig, tls_config: TLSConfig) -> mqtt.Client:
        client = mqtt.Client(
            callback_api_version=CallbackAPIVersion.VERSION2,
            client_id=mqtt_config.client_id,
        )
        if mqtt_config.username:
            client.username_pw_set(mqtt_config.username, mqtt_config.password)
        if tls_config.ca_cert:
            client.tls_set(ca_certs=tls_config.ca_cert)
        client.reconnect_delay_set(
            min_delay=mqtt_config.reconnect_min_delay,
            max_delay=mqtt_config.reconnect_max_delay,
        )
        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_subscribe = self._on_subscribe
        client.on_message = self._on_message
        return client

    def _on_connect(self, client: mqtt.Client, userdata, flags, reason_code, properties):
        """Callback when connected to MQTT broker."""
        mqtt_config, _ = self._connected_with
        if reason_code == 0:
            self.state = ListenerState.CONNECTED
            logger.info(f"Connected to MQTT broker at {mqtt_config.host}:{mqtt_config.port}")
            client.subscribe(mqtt_config.topic_name, qos=mqtt_config.qos)
            logger.info(f"Subscribing to: {mqtt_config.topic_name}")
        else:
            self.state = ListenerState.DISCONNECTED
            logger.error(f"Failed to connect to MQTT broker, reason: {reason_code}")

    def _on_disconnect(self, client: mqtt.Client, userdata, disconnect_flags, reason_code, properties):
        """Callback when disconnected from MQTT broker."""
        if self.state == ListenerState.STOPPED:
            logger.info("Disconnected from MQTT broker")
            return
        self.state = ListenerState.DISCONNECTED
        logger.warning(f"Unexpected disconnection from MQTT broker (reason={reason_code}), reconnecting")

    def _on_subscribe(self, client: mqtt.Client, userdata, mid, reason_code_list, properties):
        logger.info(f"Subscription acknowledged: {[str(rc) for rc in reason_code_list]}")

    def _on_message(self, client: mqtt.Client, userdata, msg: mqtt.MQTTMessage):
        """Callback when a message is received (runs on the paho thread)."""
        logger.debug(f"Received {len(msg.payload)} bytes on {msg.topic}")
        message = InboundMessage(topic=msg.topic, payload=bytes(msg.payload))
        self._loop.call_soon_threadsafe(self.queue.put_nowait, message)

    def start(self):
        """Connect in the background using the current settings."""
        if self._loop is None:
            self._loop = asyncio.get_running_loop()

        settings = self.settings_source()
        self._connected_with = (settings.mqtt, settings.tls)
        self.client = self._create_client(settings.mqtt, settings.tls)
        self.state = ListenerState.CONNECTING

        logger.info(
            f"Connecting to MQTT server at {settings.mqtt.host}:{settings.mqtt.port}/"
            f"{settings.mqtt.topic_name}"
        )
        self.client.connect_async(settings.mqtt.host, settings.mqtt.port, keepalive=settings.mqtt.keepalive)
        self.client.loop_start()

    def stop(self):
        """Disconnect and stop the network thread."""
        self.state = ListenerState.STOPPED
        if self.client:
            self.client.disconnect()
            self.client.loop_stop()
            self.client = None

    def needs_restart(self, settings: Settings) -> bool:
        """Check whether new settings change the broker connection."""
        return self._connected_with != (settings.mqtt, settings.tls)

    def restart(self):
        """Reconnect with the current settings."""
        logger.info("MQTT settings changed, reconnecting")
        self.stop()
        self.start()
