"""DAB device binding for Android targets reached through adb."""

import asyncio
import logging
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional, Set

from ..errors import DeviceCommandError, NotFoundError, ValidationError
from ..mqtt.envelope import dab_response, require_string
from .app_map import AppEntry, AppMap, installed_apps, resolve_app
from .commands import AdbCommands, AndroidAppStatus

if TYPE_CHECKING:
    from ..config import DeviceConfig

Notifier = Callable[[str, str], Awaitable[None]]


class ApplicationState(str, Enum):
    STOPPED = "STOPPED"
    BACKGROUND = "BACKGROUND"
    FOREGROUND = "FOREGROUND"


APP_STATUS_TO_STATE = {
    AndroidAppStatus.STOPPED: ApplicationState.STOPPED,
    AndroidAppStatus.BACKGROUND: ApplicationState.BACKGROUND,
    AndroidAppStatus.RUNNING: ApplicationState.FOREGROUND,
}


class AdbDevice:
    """Implements the DAB command surface with adb shell commands."""

    def __init__(self, adb: AdbCommands, app_map: AppMap, config: "DeviceConfig", notify: Optional[Notifier] = None):
        """Initialize the adb device binding.

        Args:
            adb: adb command wrapper for the target device
            app_map: App table (see load_app_map())
            config: Device configuration
            notify: Coroutine function sending ``(level, message)`` notifications
        """
        self.adb = adb
        self.app_map = app_map
        self.config = config
        self.logger = logging.getLogger(__name__)
        self._notify = notify
        self._background_tasks: Set[asyncio.Task] = set()

    def set_notifier(self, notify: Notifier) -> None:
        self._notify = notify

    async def notify(self, level: str, message: str) -> None:
        if self._notify is None:
            self.logger.info(f"[{level}] {message}")
            return
        await self._notify(level, message)

    def _entry(self, app_id: str, installed: Optional[List[str]] = None) -> AppEntry:
        entry = resolve_app(self.app_map, app_id, installed)
        if entry is None:
            raise NotFoundError(f"Couldn't find data for app {app_id.lower()} in config file")
        return entry

    async def _resolve(self, app_id: str) -> AppEntry:
        # Only alternates need the installed package list
        if len(self.app_map.get(app_id.lower(), ())) > 1:
            return self._entry(app_id, await self.adb.get_packages())
        return self._entry(app_id)

    # ------------------------------------------------------------------
    # Applications
    # ------------------------------------------------------------------

    async def list_apps(self, request: Dict[str, Any]) -> Dict[str, Any]:
        packages = await self.adb.get_packages()
        applications = [
            {"appId": app_id, "friendlyName": entry.friendly_name, "version": "unknown"}
            for app_id, entry in installed_apps(self.app_map, packages)
        ]
        self.logger.debug(f"Found {len(applications)} of {len(self.app_map)} configured apps")
        return dab_response(applications=applications)

    async def launch_app(self, request: Dict[str, Any]) -> Dict[str, Any]:
        app_id = require_string(request, "appId", "'appId' must be set as the application id to launch")
        entry = await self._resolve(app_id)
        if not entry.intent:
            raise NotFoundError(f"Couldn't find data for app {app_id.lower()} in config file")

        intent = list(entry.intent)
        parameters = request.get("parameters")
        if isinstance(parameters, list):
            if entry.options_prefix:
                self.logger.debug("Adding optionsPrefix to intent array")
                intent += entry.options_prefix
            intent += [str(parameter) for parameter in parameters]
        elif parameters:
            self.logger.debug("Appending parameters to last intent array value")
            intent[-1] = f"{intent[-1]}{parameters}"

        await self.adb.start(intent)
        self.logger.info(f"Launched {app_id.lower()} ({entry.package})")
        return dab_response()

    async def exit_app(self, request: Dict[str, Any]) -> Dict[str, Any]:
        app_id = require_string(request, "appId", "'appId' must be set as the application id to exit")
        package = (await self._resolve(app_id)).package

        status = await self.adb.status(package)
        if request.get("force"):
            if status != AndroidAppStatus.STOPPED:
                await self.adb.stop(package)
            return dab_response(state=ApplicationState.STOPPED.value)

        if status == AndroidAppStatus.RUNNING:
            try:
                await self.adb.background_app(package)
                return dab_response(state=ApplicationState.BACKGROUND.value)
            except DeviceCommandError:
                self.logger.warning(f"Failed to background {app_id}, will try force closing it instead.")
                await self.adb.stop(package)
                return dab_response(state=ApplicationState.STOPPED.value)

        return dab_response(state=APP_STATUS_TO_STATE[status].value)

    async def get_app_state(self, request: Dict[str, Any]) -> Dict[str, Any]:
        app_id = require_string(request, "appId", "'appId' must be set as the application id to query")
        package = (await self._resolve(app_id)).package
        status = await self.adb.status(package)
        return dab_response(state=APP_STATUS_TO_STATE[status].value)

    # ------------------------------------------------------------------
    # System
    # ------------------------------------------------------------------

    async def restart(self, request: Dict[str, Any]) -> Dict[str, Any]:
        """Answer 202 at once and reboot in the background."""
        task = asyncio.ensure_future(self._reboot())
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return dab_response(202)

    async def _reboot(self) -> None:
        try:
            await self.notify("warn", "Device is rebooting and will be temporarily offline")
            await self.adb.reboot()
            await self.notify("info", "Device is back online following reboot")
        except Exception as e:
            self.logger.error(f"Reboot failed: {e}", exc_info=True)

    async def key_press(self, request: Dict[str, Any]) -> Dict[str, Any]:
        key_code = require_string(request, "keyCode")
        await self.adb.send_key(key_code)
        return dab_response()

    async def long_key_press(self, request: Dict[str, Any]) -> Dict[str, Any]:
        key_code = require_string(request, "keyCode")
        duration_ms = request.get("durationMs", self.config.long_press_ms)
        if isinstance(duration_ms, bool) or not isinstance(duration_ms, int) or duration_ms <= 0:
            raise ValidationError("'durationMs' must be a positive number of milliseconds")
        await self.adb.send_long_key(key_code, duration_ms)
        return dab_response()

    async def get_system_language(self, request: Dict[str, Any]) -> Dict[str, Any]:
        language = await self.adb.get_locale()
        if language is None:
            raise DeviceCommandError("Device does not report a system locale")
        return dab_response(language=language)

    async def health_check(self, request: Dict[str, Any]) -> Dict[str, Any]:
        try:
            await self.adb.get_device_uptime_seconds()
        except DeviceCommandError as e:
            self.logger.warning(f"Health check failed: {e}")
            return dab_response(healthy=False)
        return dab_response(healthy=True)

    async def device_info(self) -> Dict[str, Any]:
        details = await self.adb.get_device_details()
        properties = details.properties
        width, height = details.resolution
        return dab_response(
            manufacturer=properties.get("ro.product.manufacturer") or "unknown",
            model=properties.get("ro.product.model") or "unknown",
            serialNumber=details.serial,
            chipset=properties.get("ro.product.cpu.abi") or "unknown",
            firmwareVersion=properties.get("ro.build.version.release") or "unknown",
            firmwareBuild=properties.get("ro.build.fingerprint") or "unknown",
            networkInterfaces=[interface.to_dab() for interface in details.interfaces],
            screenWidthPixels=width,
            screenHeightPixels=height,
            uptimeSince=await self.adb.get_device_uptime_seconds(),
        )

    # ------------------------------------------------------------------
    # Telemetry
    # ------------------------------------------------------------------

    def clamp_telemetry_frequency(self, frequency_ms: int) -> int:
        minimum = self.config.min_telemetry_ms
        if frequency_ms < minimum:
            self.logger.info(f"Increased device telemetry frequency to minimum allowed: {minimum}ms")
            return minimum
        return frequency_ms

    async def device_telemetry(self) -> Dict[str, Any]:
        return await self.adb.top()
