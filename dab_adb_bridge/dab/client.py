"""Controller-side DAB client built on DabMqttClient."""

from typing import Any, Callable, Dict, List, Optional, Union

from ..mqtt.client import DabMqttClient, Subscription
from ..mqtt.topics import Topics
from ..mqtt.transport import InboundPacket

Watcher = Callable[[Any, InboundPacket], None]


class DabClient:
    """Issues DAB commands against a bridge and watches its broadcast topics."""

    def __init__(self, client: DabMqttClient, topic_prefix: str = "dab"):
        self.client = client
        self.topic_prefix = topic_prefix.rstrip("/")
        self._watches: Dict[str, Subscription] = {}

    def get_topic(self, suffix: str) -> str:
        return f"{self.topic_prefix}/{suffix}"

    async def _request(self, suffix: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return await self.client.request(self.get_topic(suffix), payload)

    # Broadcast topics

    async def watch(self, suffix: str, watcher: Watcher) -> None:
        """Forward every message on ``suffix`` to ``watcher`` until unwatch()."""
        await self.unwatch(suffix)
        self._watches[suffix] = await self.client.subscribe(self.get_topic(suffix), watcher)

    async def unwatch(self, suffix: str) -> None:
        subscription = self._watches.pop(suffix, None)
        if subscription is not None:
            await subscription.end()

    async def watch_messages(self, watcher: Watcher) -> None:
        await self.watch(Topics.MESSAGES, watcher)

    async def watch_device_telemetry(self, watcher: Watcher) -> None:
        await self.watch(Topics.TELEMETRY_METRICS, watcher)

    async def watch_app_telemetry(self, watcher: Watcher) -> None:
        await self.watch(f"{Topics.TELEMETRY_METRICS}/+", watcher)

    async def close(self) -> None:
        for suffix in list(self._watches):
            await self.unwatch(suffix)

    # Retained state

    async def version(self) -> Dict[str, Any]:
        return await self.client.subscribe_once(self.get_topic(Topics.VERSION))

    async def device_info(self) -> Dict[str, Any]:
        return await self.client.subscribe_once(self.get_topic(Topics.DEVICE_INFO))

    # Commands

    async def list_apps(self) -> Dict[str, Any]:
        return await self._request(Topics.APPLICATIONS_LIST)

    async def launch_app(self, app_id: str, parameters: Union[List[str], str, None] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"appId": app_id}
        if parameters is not None:
            payload["parameters"] = parameters
        return await self._request(Topics.APPLICATIONS_LAUNCH, payload)

    async def exit_app(self, app_id: str, force: bool = False) -> Dict[str, Any]:
        return await self._request(Topics.APPLICATIONS_EXIT, {"appId": app_id, "force": force})

    async def get_app_state(self, app_id: str) -> Dict[str, Any]:
        return await self._request(Topics.APPLICATIONS_GET_STATE, {"appId": app_id})

    async def press_key(self, key_code: str) -> Dict[str, Any]:
        return await self._request(Topics.INPUT_KEY_PRESS, {"keyCode": key_code})

    async def press_key_long(self, key_code: str, duration_ms: int) -> Dict[str, Any]:
        return await self._request(Topics.INPUT_LONG_KEY_PRESS, {"keyCode": key_code, "durationMs": duration_ms})

    async def set_system_language(self, language: str) -> Dict[str, Any]:
        return await self._request(Topics.SYSTEM_LANGUAGE_SET, {"language": language})

    async def get_system_language(self) -> Dict[str, Any]:
        return await self._request(Topics.SYSTEM_LANGUAGE_GET)

    async def start_device_telemetry(self, frequency_ms: int) -> Dict[str, Any]:
        return await self._request(Topics.DEVICE_TELEMETRY_START, {"frequency": frequency_ms})

    async def stop_device_telemetry(self) -> Dict[str, Any]:
        return await self._request(Topics.DEVICE_TELEMETRY_STOP)

    async def start_app_telemetry(self, app_id: str, frequency_ms: int) -> Dict[str, Any]:
        return await self._request(Topics.APP_TELEMETRY_START, {"appId": app_id, "frequency": frequency_ms})

    async def stop_app_telemetry(self, app_id: str) -> Dict[str, Any]:
        return await self._request(Topics.APP_TELEMETRY_STOP, {"appId": app_id})

    async def restart(self) -> Dict[str, Any]:
        return await self._request(Topics.SYSTEM_RESTART)

    async def health_check(self) -> Dict[str, Any]:
        return await self._request(Topics.HEALTH_CHECK)
