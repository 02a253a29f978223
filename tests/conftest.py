"""Pytest configuration and fixtures for DAB bridge tests."""

import asyncio
from typing import Any, Callable, Dict, List, Optional, Tuple

import paho.mqtt.client as mqtt
import pytest

from dab_adb_bridge.config import AppConfig, DeviceConfig, LWTConfig, MQTTConfig, TLSConfig
from dab_adb_bridge.errors import TransportError
from dab_adb_bridge.mqtt.client import DabMqttClient
from dab_adb_bridge.mqtt.transport import InboundPacket, parse_payload, serialize_payload

# ============================================================================
# Helper Functions for Creating Test Configurations
# ============================================================================


def create_test_mqtt_config(
    host: str = "localhost",
    port: int = 1883,
    username: str = None,
    password: str = None,
    topic_prefix: str = "dab",
    client_id: str = "",
    clean_session: bool = True,
    keepalive: int = 10,
    connect_timeout_ms: int = 2000,
    qos: int = 2,
    tls: TLSConfig = None,
    lwt: LWTConfig = None,
) -> MQTTConfig:
    """Create an MQTTConfig for testing with sensible defaults.

    Args:
        host: MQTT broker hostname
        port: MQTT broker port
        username: MQTT username (optional)
        password: MQTT password (optional)
        topic_prefix: Topic prefix for all DAB topics
        client_id: MQTT client ID
        clean_session: Clean session flag
        keepalive: Keep-alive interval in seconds
        connect_timeout_ms: Initial handshake timeout
        qos: QoS level (0-2)
        tls: TLS configuration (optional)
        lwt: Last Will and Testament configuration (optional)

    Returns:
        MQTTConfig instance ready for testing
    """
    return MQTTConfig(
        host=host,
        port=port,
        username=username,
        password=password,
        topic_prefix=topic_prefix,
        client_id=client_id,
        clean_session=clean_session,
        keepalive=keepalive,
        connect_timeout_ms=connect_timeout_ms,
        qos=qos,
        tls=tls,
        lwt=lwt,
    )


def create_test_device_config(**kwargs) -> DeviceConfig:
    """Create a DeviceConfig for testing; kwargs override the defaults."""
    fields = {"adb_path": "adb", "serial": "emulator-5554", "min_telemetry_ms": 3000, "long_press_ms": 1500}
    fields.update(kwargs)
    return DeviceConfig(**fields)


def create_test_app_config(
    mqtt_config: MQTTConfig = None,
    device_config: DeviceConfig = None,
    request_timeout_ms: int = 5000,
    http_port: int = 8000,
) -> AppConfig:
    """Create an AppConfig for testing with sensible defaults.

    Examples:
        >>> config = create_test_app_config()

        >>> mqtt = create_test_mqtt_config(topic_prefix="lab")
        >>> config = create_test_app_config(mqtt_config=mqtt)
    """
    return AppConfig(
        mqtt=mqtt_config or create_test_mqtt_config(),
        device=device_config or create_test_device_config(),
        request_timeout_ms=request_timeout_ms,
        http_port=http_port,
    )


# ============================================================================
# In-memory broker
# ============================================================================


class LoopbackBroker:
    """Routes publishes to every attached transport with a matching subscription."""

    def __init__(self):
        self.transports: List["LoopbackTransport"] = []
        self.retained: Dict[str, bytes] = {}
        self.published: List[Tuple[str, Any, bool]] = []

    def route(self, topic: str, data: bytes, qos: int, retain: bool) -> None:
        self.published.append((topic, parse_payload(data, InboundPacket(topic)) if data else None, retain))
        if retain:
            if data:
                self.retained[topic] = data
            else:
                self.retained.pop(topic, None)
        for transport in self.transports:
            transport.receive(topic, data, qos)

    def messages_on(self, topic: str) -> List[Any]:
        """Payloads published on ``topic``, in order."""
        return [payload for published_topic, payload, _ in self.published if published_topic == topic]


class LoopbackTransport:
    """Drop-in replacement for MqttTransport backed by a LoopbackBroker."""

    def __init__(self, broker: Optional[LoopbackBroker] = None):
        self.broker = broker or LoopbackBroker()
        self.broker.transports.append(self)
        self.patterns: Dict[str, Optional[int]] = {}
        self.subscribe_calls: List[str] = []
        self.unsubscribe_calls: List[str] = []
        self.connected = False
        self.fail_publish = False
        self._on_message: Optional[Callable[[str, Any, InboundPacket], None]] = None

    def set_on_message(self, callback) -> None:
        self._on_message = callback

    def is_connected(self) -> bool:
        return self.connected

    async def connect(self) -> None:
        self.connected = True

    async def disconnect(self) -> None:
        self.connected = False
        self.patterns.clear()

    async def publish(self, topic: str, payload: Any, qos: Optional[int] = None, retain: bool = False) -> None:
        if self.fail_publish:
            raise TransportError(f"Failed to publish to {topic}")
        await asyncio.sleep(0)
        self.broker.route(topic, serialize_payload(payload), qos or 0, retain)

    async def subscribe(self, pattern: str, qos: Optional[int] = None) -> None:
        await asyncio.sleep(0)
        self.subscribe_calls.append(pattern)
        self.patterns[pattern] = qos
        for topic, data in list(self.broker.retained.items()):
            if mqtt.topic_matches_sub(pattern, topic):
                self._schedule(topic, data, 0, True)

    async def unsubscribe(self, pattern: str) -> None:
        await asyncio.sleep(0)
        self.unsubscribe_calls.append(pattern)
        self.patterns.pop(pattern, None)

    def receive(self, topic: str, data: bytes, qos: int = 0) -> None:
        if any(mqtt.topic_matches_sub(pattern, topic) for pattern in self.patterns):
            self._schedule(topic, data, qos, False)

    def inject(self, topic: str, data: bytes) -> None:
        """Deliver raw bytes as if the broker sent them."""
        self._schedule(topic, data, 0, False)

    def _schedule(self, topic: str, data: bytes, qos: int, retain: bool) -> None:
        packet = InboundPacket(topic=topic, qos=qos, retain=retain)
        asyncio.get_running_loop().call_soon(self._on_message, topic, parse_payload(data, packet), packet)


async def settle(rounds: int = 10) -> None:
    """Let scheduled deliveries and handler tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


# ============================================================================
# Pytest Fixtures
# ============================================================================


@pytest.fixture
def test_mqtt_config():
    """Fixture providing a standard MQTTConfig for testing."""
    return create_test_mqtt_config()


@pytest.fixture
def test_app_config():
    """Fixture providing a standard AppConfig for testing."""
    return create_test_app_config()


@pytest.fixture
def broker():
    return LoopbackBroker()


@pytest.fixture
def loopback_client(broker):
    """DabMqttClient on the loopback broker."""
    return DabMqttClient(LoopbackTransport(broker), default_timeout_ms=1000)


@pytest.fixture
def peer_client(broker):
    """A second DabMqttClient on the same broker, acting as the other side."""
    return DabMqttClient(LoopbackTransport(broker), default_timeout_ms=1000)
