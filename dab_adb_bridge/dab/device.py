"""Device command surface served by the DAB bridge."""

from typing import Any, Dict, Optional, Protocol

from ..errors import UnimplementedError

Request = Dict[str, Any]
Response = Dict[str, Any]


class DeviceCommands(Protocol):
    """Operations a device binding may provide.

    A binding only needs the methods it supports. The bridge falls back to
    UnimplementedDevice for everything else.
    """

    async def device_info(self) -> Response:
        """Describe the device for the retained device info topic."""
        ...

    async def list_apps(self, request: Request) -> Response:
        """List the launchable applications."""
        ...

    async def launch_app(self, request: Request) -> Response:
        """Launch ``request["appId"]`` with optional ``parameters``."""
        ...

    async def exit_app(self, request: Request) -> Response:
        """Exit ``request["appId"]``, force-stopping when ``force`` is set."""
        ...

    async def get_app_state(self, request: Request) -> Response:
        """Report the lifecycle state of ``request["appId"]``."""
        ...

    async def restart(self, request: Request) -> Response:
        """Restart the device."""
        ...

    async def key_press(self, request: Request) -> Response:
        """Press ``request["keyCode"]``."""
        ...

    async def long_key_press(self, request: Request) -> Response:
        """Hold ``request["keyCode"]`` for ``durationMs``."""
        ...

    async def set_system_language(self, request: Request) -> Response:
        """Set the system language to ``request["language"]``."""
        ...

    async def get_system_language(self, request: Request) -> Response:
        """Report the system language."""
        ...

    async def health_check(self, request: Request) -> Response:
        """Report whether the device is reachable."""
        ...

    async def device_telemetry(self) -> Any:
        """Produce one device telemetry sample."""
        ...

    async def app_telemetry(self, app_id: str) -> Any:
        """Produce one telemetry sample for ``app_id``."""
        ...

    def clamp_telemetry_frequency(self, frequency_ms: int) -> int:
        """Return the period the device can actually sustain."""
        ...


class UnimplementedDevice:
    """Answers every capability with a 501 error."""

    async def device_info(self) -> Response:
        raise UnimplementedError("Device info not implemented")

    async def list_apps(self, request: Request) -> Response:
        raise UnimplementedError("List apps not implemented")

    async def launch_app(self, request: Request) -> Response:
        raise UnimplementedError("Launch app not implemented")

    async def exit_app(self, request: Request) -> Response:
        raise UnimplementedError("Exit app not implemented")

    async def get_app_state(self, request: Request) -> Response:
        raise UnimplementedError("Get app state not implemented")

    async def restart(self, request: Request) -> Response:
        raise UnimplementedError("Restart not implemented")

    async def key_press(self, request: Request) -> Response:
        raise UnimplementedError("Key press not implemented")

    async def long_key_press(self, request: Request) -> Response:
        raise UnimplementedError("Long key press not implemented")

    async def set_system_language(self, request: Request) -> Response:
        raise UnimplementedError("Set system language not implemented")

    async def get_system_language(self, request: Request) -> Response:
        raise UnimplementedError("Get system language not implemented")

    async def health_check(self, request: Request) -> Response:
        raise UnimplementedError("Health check not implemented")

    async def device_telemetry(self) -> Any:
        raise UnimplementedError("Device telemetry not implemented")

    async def app_telemetry(self, app_id: str) -> Any:
        raise UnimplementedError("App telemetry not implemented")

    def clamp_telemetry_frequency(self, frequency_ms: int) -> int:
        return frequency_ms


def resolve_capability(device: Optional[object], name: str, fallback: Optional[object] = None):
    """Return ``device.<name>`` if the binding provides it, else the unimplemented default."""
    method = getattr(device, name, None)
    if callable(method):
        return method
    return getattr(fallback if fallback is not None else UnimplementedDevice(), name)
