"""paho-mqtt transport wrapper for the asyncio event loop.

paho runs its network loop on a background thread. Every callback it fires
is handed to the asyncio loop with ``call_soon_threadsafe`` so the rest of
the bridge only ever runs on the loop thread. Publish, subscribe and
unsubscribe are awaitable and complete on the broker acknowledgement.
"""

import asyncio
import json
import logging
import ssl
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

import paho.mqtt.client as mqtt

from ..errors import BrokerConnectionError, TransportError
from .envelope import parse_failure

if TYPE_CHECKING:
    from ..config import LWTConfig, MQTTConfig, TLSConfig


@dataclass(frozen=True)
class InboundPacket:
    """Broker metadata of an inbound message."""

    topic: str
    qos: int = 0
    retain: bool = False
    mid: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


MessageCallback = Callable[[str, Any, InboundPacket], None]


def parse_payload(payload: bytes, packet: InboundPacket) -> Any:
    """Decode an inbound JSON payload.

    Empty or unparsable payloads become a parse-failure envelope instead of
    raising, so listeners always receive structured data.
    """
    raw = payload.decode("utf-8", errors="replace") if payload else ""
    if not raw.strip():
        return parse_failure(raw, packet.to_dict())
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return parse_failure(raw, packet.to_dict())


def serialize_payload(payload: Any) -> bytes:
    """Encode a payload for the wire; None becomes an empty (retained-clearing) payload."""
    if payload is None:
        return b""
    return json.dumps(payload).encode("utf-8")


class MqttTransport:
    """Owns the single broker connection of the bridge."""

    def __init__(self, config: "MQTTConfig"):
        """Initialize the transport.

        Args:
            config: MQTT configuration (use AppConfig.from_env().mqtt)
        """
        self.config = config
        self.logger = logging.getLogger(__name__)

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._on_message_callback: Optional[MessageCallback] = None
        self._connected_future: Optional[asyncio.Future] = None
        self._acks: Dict[int, asyncio.Future] = {}
        self._subscriptions: Dict[str, int] = {}
        self._has_connected = False

        self.mqtt_client = self._create_mqtt_client()

    def _create_mqtt_client(self) -> mqtt.Client:
        """Create and configure MQTT client.

        Returns:
            Configured MQTT client instance
        """
        client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=self.config.client_id or "",
            clean_session=self.config.clean_session,
        )

        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message
        client.on_publish = self._on_publish
        client.on_subscribe = self._on_subscribe
        client.on_unsubscribe = self._on_unsubscribe

        if self.config.username:
            client.username_pw_set(self.config.username, self.config.password)

        if self.config.tls and self.config.tls.enabled:
            self._configure_tls(client, self.config.tls)

        if self.config.lwt:
            self._configure_lwt(client, self.config.lwt)

        return client

    def _configure_tls(self, client: mqtt.Client, tls_config: "TLSConfig") -> None:
        """Configure TLS/SSL for MQTT connection.

        Args:
            client: MQTT client instance
            tls_config: TLS configuration object
        """
        try:
            client.tls_set(
                ca_certs=tls_config.ca_certs,
                certfile=tls_config.certfile,
                keyfile=tls_config.keyfile,
                cert_reqs=ssl.CERT_REQUIRED,
                tls_version=ssl.PROTOCOL_TLS_CLIENT,
                ciphers=None,
            )
            self.logger.info("TLS/SSL configured successfully")

            if tls_config.insecure:
                client.tls_insecure_set(True)
                self.logger.warning("TLS certificate verification DISABLED - insecure mode active")
        except Exception as e:
            self.logger.error(f"Failed to configure TLS/SSL: {e}")
            raise

    def _configure_lwt(self, client: mqtt.Client, lwt_config: "LWTConfig") -> None:
        """Configure Last Will and Testament for MQTT connection.

        Args:
            client: MQTT client instance
            lwt_config: LWT configuration object
        """
        try:
            client.will_set(lwt_config.topic, lwt_config.payload, lwt_config.qos, lwt_config.retain)
            self.logger.info(f"Last Will and Testament configured: {lwt_config.topic}")
        except Exception as e:
            self.logger.error(f"Failed to configure LWT: {e}")
            raise

    def set_on_message(self, callback: MessageCallback) -> None:
        """Register the single consumer of inbound messages."""
        self._on_message_callback = callback

    def is_connected(self) -> bool:
        return self.mqtt_client.is_connected()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Connect to the broker and start the paho network thread.

        Raises:
            BrokerConnectionError: If the broker refuses the connection or no
                handshake completes within the connect timeout
        """
        host, port = self.config.host, self.config.port
        self._loop = asyncio.get_running_loop()
        self._connected_future = self._loop.create_future()

        self.logger.info(f"Connecting to MQTT broker at {host}:{port}")
        try:
            self.mqtt_client.connect_async(host, port, self.config.keepalive)
            self.mqtt_client.loop_start()
        except (OSError, ValueError) as e:
            raise BrokerConnectionError(f"Failed to connect to MQTT broker at {host}:{port}: {e}") from e

        try:
            await asyncio.wait_for(self._connected_future, timeout=self.config.connect_timeout)
        except asyncio.TimeoutError:
            await self._stop_network_loop()
            raise BrokerConnectionError(
                f"Failed to connect to MQTT broker at {host}:{port} "
                f"within {self.config.connect_timeout_ms}ms"
            ) from None
        except BrokerConnectionError:
            await self._stop_network_loop()
            raise

    async def disconnect(self) -> None:
        """Disconnect from the broker and fail any outstanding acknowledgements."""
        self.mqtt_client.disconnect()
        await self._stop_network_loop()

        for mid, future in list(self._acks.items()):
            if not future.done():
                future.set_exception(TransportError(f"Disconnected before acknowledgement of message {mid}"))
        self._acks.clear()
        self._subscriptions.clear()
        self.logger.info("Disconnected from MQTT broker")

    async def _stop_network_loop(self) -> None:
        # loop_stop joins the paho thread; keep the event loop responsive meanwhile
        await asyncio.to_thread(self.mqtt_client.loop_stop)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def publish(self, topic: str, payload: Any, qos: Optional[int] = None, retain: bool = False) -> None:
        """Publish a JSON payload and wait for the broker to acknowledge it.

        Args:
            topic: Destination topic
            payload: JSON-serializable payload; None publishes an empty payload
            qos: QoS level, defaults to the configured level
            retain: Retain flag

        Raises:
            TransportError: If the message cannot be sent or is rejected
        """
        qos = self.config.qos if qos is None else qos
        info = self.mqtt_client.publish(topic, serialize_payload(payload), qos=qos, retain=retain)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise TransportError(f"Failed to publish to {topic}: {mqtt.error_string(info.rc)}")

        failure = await self._wait_for_ack(info.mid)
        if failure:
            raise TransportError(f"Broker rejected publish to {topic}: {failure}")
        self.logger.debug(f"Published to {topic} (qos={qos}, retain={retain})")

    async def subscribe(self, pattern: str, qos: Optional[int] = None) -> None:
        """Subscribe to a topic pattern and wait for the SUBACK.

        Raises:
            TransportError: If the subscription cannot be sent or is refused
        """
        qos = self.config.qos if qos is None else qos
        result, mid = self.mqtt_client.subscribe(pattern, qos=qos)
        if result != mqtt.MQTT_ERR_SUCCESS:
            raise TransportError(f"Failed to subscribe to {pattern}: {mqtt.error_string(result)}")

        failure = await self._wait_for_ack(mid)
        if failure:
            raise TransportError(f"Broker refused subscription to {pattern}: {failure}")
        self._subscriptions[pattern] = qos
        self.logger.debug(f"Subscribed to {pattern} with QoS {qos}")

    async def unsubscribe(self, pattern: str) -> None:
        """Unsubscribe from a topic pattern and wait for the UNSUBACK.

        Raises:
            TransportError: If the request cannot be sent or is refused
        """
        self._subscriptions.pop(pattern, None)
        result, mid = self.mqtt_client.unsubscribe(pattern)
        if result != mqtt.MQTT_ERR_SUCCESS:
            raise TransportError(f"Failed to unsubscribe from {pattern}: {mqtt.error_string(result)}")

        failure = await self._wait_for_ack(mid)
        if failure:
            raise TransportError(f"Broker refused unsubscribe from {pattern}: {failure}")
        self.logger.debug(f"Unsubscribed from {pattern}")

    async def _wait_for_ack(self, mid: int) -> Optional[str]:
        """Wait for the acknowledgement of ``mid``; returns failure text or None."""
        if self._loop is None:
            raise TransportError("Transport is not connected")

        future = self._loop.create_future()
        self._acks[mid] = future
        try:
            return await future
        finally:
            self._acks.pop(mid, None)

    # ------------------------------------------------------------------
    # paho callbacks (network thread)
    # ------------------------------------------------------------------

    def _call_in_loop(self, callback: Callable[..., None], *args: Any) -> None:
        if self._loop is None or self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(callback, *args)

    def _on_connect(self, client, userdata, flags, reason_code, properties):
        """Callback for when MQTT client connects."""
        if reason_code.is_failure:
            self.logger.error(f"Failed to connect to MQTT broker: {reason_code}")
            error = BrokerConnectionError(f"MQTT broker refused connection: {reason_code}")
            self._call_in_loop(self._settle, self._connected_future, error)
            return

        if self._has_connected:
            self.logger.info("Reconnected to MQTT broker")
            # The broker session may be gone; restore subscriptions without waiting for acks
            for pattern, qos in list(self._subscriptions.items()):
                client.subscribe(pattern, qos=qos)
        else:
            self.logger.info("Connected to MQTT broker")
        self._has_connected = True
        self._call_in_loop(self._settle, self._connected_future, None)

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties):
        """Callback for when MQTT client disconnects."""
        if reason_code.is_failure:
            self.logger.warning(f"Unexpected disconnection from MQTT broker: {reason_code}")
        else:
            self.logger.info("Disconnected from MQTT broker")

    def _on_publish(self, client, userdata, mid, reason_code, properties):
        failure = str(reason_code) if reason_code.is_failure else None
        self._call_in_loop(self._resolve_ack, mid, failure)

    def _on_subscribe(self, client, userdata, mid, reason_code_list, properties):
        self._call_in_loop(self._resolve_ack, mid, self._describe_failures(reason_code_list))

    def _on_unsubscribe(self, client, userdata, mid, reason_code_list, properties):
        self._call_in_loop(self._resolve_ack, mid, self._describe_failures(reason_code_list))

    def _on_message(self, client, userdata, message):
        """Handle incoming MQTT messages."""
        packet = InboundPacket(
            topic=message.topic,
            qos=message.qos,
            retain=bool(message.retain),
            mid=message.mid,
        )
        payload = parse_payload(message.payload, packet)
        self.logger.debug(f"Received message on {packet.topic}: {str(payload)[:100]}")
        self._call_in_loop(self._deliver, packet.topic, payload, packet)

    @staticmethod
    def _describe_failures(reason_codes: List[Any]) -> Optional[str]:
        failures = [str(rc) for rc in reason_codes if rc.is_failure]
        return ", ".join(failures) if failures else None

    # ------------------------------------------------------------------
    # Loop-thread continuations
    # ------------------------------------------------------------------

    @staticmethod
    def _settle(future: Optional[asyncio.Future], error: Optional[Exception]) -> None:
        if future is None or future.done():
            return
        if error is None:
            future.set_result(None)
        else:
            future.set_exception(error)

    def _resolve_ack(self, mid: int, failure: Optional[str]) -> None:
        future = self._acks.get(mid)
        if future is not None and not future.done():
            future.set_result(failure)

    def _deliver(self, topic: str, payload: Any, packet: InboundPacket) -> None:
        if self._on_message_callback is None:
            self.logger.warning(f"Dropping message on {topic}: no consumer registered")
            return
        try:
            self._on_message_callback(topic, payload, packet)
        except Exception as e:
            self.logger.error(f"Error handling message on {topic}: {e}", exc_info=True)
