"""DAB bridge: wires a device binding to the DAB topic namespace."""

import asyncio
import functools
import logging
import time
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Optional

from .. import __version__
from ..errors import DabError, TransportError, ValidationError
from ..mqtt.client import DabMqttClient
from ..mqtt.envelope import dab_response, describe_error, is_parse_failure, require_positive_int, require_string
from ..mqtt.topics import Topics
from ..mqtt.transport import MqttTransport
from .device import UnimplementedDevice, resolve_capability
from .telemetry import FREQUENCY_ERROR, TelemetryKey, TelemetryManager

if TYPE_CHECKING:
    from ..config import AppConfig

NOTIFICATION_LEVELS = ("info", "warn", "debug", "trace", "error")

CommandHandler = Callable[[Dict[str, Any]], Awaitable[Any]]


class DabBridge:
    """Serves the DAB command topics for one device."""

    def __init__(self, config: "AppConfig", device: Optional[object] = None, client: Optional[DabMqttClient] = None):
        """Initialize the DAB bridge.

        Args:
            config: Application configuration object (use AppConfig.from_env())
            device: Device binding; capabilities it lacks answer 501
            client: Correlation client, built from config.mqtt when omitted
        """
        self.config = config
        self.topic_prefix = config.mqtt.topic_prefix.rstrip("/")
        self.logger = logging.getLogger(__name__)

        self.device = device
        self._fallback = UnimplementedDevice()

        self.client = client or DabMqttClient(
            MqttTransport(config.mqtt), default_timeout_ms=config.request_timeout_ms
        )
        self.telemetry = TelemetryManager(
            self.client.publish, self.get_topic(Topics.TELEMETRY_METRICS), notify=self.notify
        )
        self.started_at: Optional[float] = None

        set_notifier = getattr(device, "set_notifier", None)
        if callable(set_notifier):
            set_notifier(self.notify)

    def get_topic(self, suffix: str) -> str:
        """Get full topic path with configured prefix.

        Args:
            suffix: Topic suffix (e.g., "applications/list")

        Returns:
            Full topic path with prefix
        """
        return f"{self.topic_prefix}/{suffix}"

    def _capability(self, name: str) -> Callable[..., Any]:
        return resolve_capability(self.device, name, self._fallback)

    @property
    def is_running(self) -> bool:
        return self.started_at is not None

    def is_connected(self) -> bool:
        return self.client.transport.is_connected()

    def command_handlers(self) -> Dict[str, CommandHandler]:
        """Map each command topic suffix to the coroutine serving it."""
        return {
            Topics.APPLICATIONS_LIST: self._capability("list_apps"),
            Topics.APPLICATIONS_LAUNCH: self._capability("launch_app"),
            Topics.APPLICATIONS_EXIT: self._capability("exit_app"),
            Topics.APPLICATIONS_GET_STATE: self._capability("get_app_state"),
            Topics.SYSTEM_RESTART: self._capability("restart"),
            Topics.INPUT_KEY_PRESS: self._capability("key_press"),
            Topics.INPUT_LONG_KEY_PRESS: self._capability("long_key_press"),
            Topics.SYSTEM_LANGUAGE_SET: self._capability("set_system_language"),
            Topics.SYSTEM_LANGUAGE_GET: self._capability("get_system_language"),
            Topics.DEVICE_TELEMETRY_START: self.start_device_telemetry,
            Topics.DEVICE_TELEMETRY_STOP: self.stop_device_telemetry,
            Topics.APP_TELEMETRY_START: self.start_app_telemetry,
            Topics.APP_TELEMETRY_STOP: self.stop_app_telemetry,
            Topics.HEALTH_CHECK: self._capability("health_check"),
        }

    def _with_request_body(self, handler: CommandHandler) -> Callable[[Any], Awaitable[Any]]:
        @functools.wraps(handler)
        async def serve(message: Any) -> Any:
            return await handler(self._request_body(message))

        return serve

    @staticmethod
    def _request_body(message: Any) -> Dict[str, Any]:
        """Normalize an inbound request payload into a dict."""
        if is_parse_failure(message):
            # An empty payload is an empty request
            if not message["raw"].strip():
                return {}
            raise ValidationError(f"{message['error']}: {message['raw'][:100]}")
        if not isinstance(message, dict):
            raise ValidationError("Request payload must be a JSON object")
        return message

    # ------------------------------------------------------------------
    # Telemetry commands
    # ------------------------------------------------------------------

    async def start_device_telemetry(self, request: Dict[str, Any]) -> Dict[str, Any]:
        frequency = require_positive_int(request, "frequency", FREQUENCY_ERROR)
        frequency = self._capability("clamp_telemetry_frequency")(frequency)
        await self.telemetry.start(TelemetryKey.device(), frequency, self._capability("device_telemetry"))
        return dab_response(frequency=frequency)

    async def stop_device_telemetry(self, request: Dict[str, Any]) -> Dict[str, Any]:
        await self.telemetry.stop(TelemetryKey.device())
        return dab_response()

    async def start_app_telemetry(self, request: Dict[str, Any]) -> Dict[str, Any]:
        app_id = require_string(
            request, "appId", "'appId' must be set as the application id to start sending telemetry"
        )
        frequency = require_positive_int(request, "frequency", FREQUENCY_ERROR)
        producer = functools.partial(self._capability("app_telemetry"), app_id)
        await self.telemetry.start(TelemetryKey.application(app_id), frequency, producer)
        return dab_response(frequency=frequency)

    async def stop_app_telemetry(self, request: Dict[str, Any]) -> Dict[str, Any]:
        app_id = require_string(
            request, "appId", "'appId' must be set as the application id to stop sending telemetry"
        )
        await self.telemetry.stop(TelemetryKey.application(app_id))
        return dab_response()

    # ------------------------------------------------------------------
    # Notifications and retained state
    # ------------------------------------------------------------------

    async def notify(self, level: str, message: str) -> None:
        """Publish a notification on the messages topic.

        Args:
            level: One of info, warn, debug, trace, error
            message: Human readable text
        """
        if level not in NOTIFICATION_LEVELS:
            raise ValueError(f"Invalid notification level: '{level}'. Valid options: {', '.join(NOTIFICATION_LEVELS)}")
        await self.client.publish(
            self.get_topic(Topics.MESSAGES),
            {"timestamp": int(time.time() * 1000), "level": level, "message": message},
        )

    @staticmethod
    def version() -> Dict[str, Any]:
        """DAB version envelope: major.minor of the package version."""
        major_minor = ".".join(__version__.split(".")[:2])
        return dab_response(versions=[major_minor])

    async def device_info(self) -> Dict[str, Any]:
        try:
            return await self._capability("device_info")()
        except DabError as e:
            self.logger.warning(f"Device info unavailable: {e}")
            return dab_response(e.status, describe_error(e))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Connect, register every command handler and announce the service.

        Raises:
            BrokerConnectionError: If the broker cannot be reached
        """
        self.logger.info(
            f"Connecting to MQTT broker at {self.config.mqtt.host}:"
            f"{self.config.mqtt.port} with topic prefix '{self.topic_prefix}'"
        )
        await self.client.connect()

        for suffix, handler in self.command_handlers().items():
            await self.client.handle(self.get_topic(suffix), self._with_request_body(handler))

        await asyncio.gather(
            self.client.publish_retained(self.get_topic(Topics.VERSION), self.version()),
            self.client.publish_retained(self.get_topic(Topics.DEVICE_INFO), await self.device_info()),
            self.notify("info", "DAB service is online"),
        )
        self.started_at = time.time()
        self.logger.info(f"DAB bridge started with {self.client.handler_count} command handlers")

    async def stop(self) -> None:
        """Announce shutdown, stop telemetry, clear retained state and disconnect."""
        self.logger.info("Shutting down DAB bridge...")
        try:
            await self.notify("warn", "DAB service is shutting down")
        except TransportError as e:
            self.logger.warning(f"Failed to publish shutdown notification: {e}")

        await self.telemetry.stop_all()

        try:
            await asyncio.gather(
                self.client.clear_retained(self.get_topic(Topics.DEVICE_INFO)),
                self.client.clear_retained(self.get_topic(Topics.VERSION)),
            )
        except TransportError as e:
            self.logger.warning(f"Failed to clear retained messages: {e}")

        await self.client.stop()
        self.started_at = None
        self.logger.info("DAB bridge stopped")
