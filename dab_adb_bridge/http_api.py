"""HTTP API for health and metrics endpoints."""

import time

from fastapi import FastAPI, Response, status

from . import __version__
from .dab import DabBridge

SERVICE_NAME = "dab-adb-bridge"


class DabHTTPAPI:
    """Liveness, readiness and metrics endpoints for the DAB bridge."""

    def __init__(self, bridge: DabBridge):
        """Initialize the HTTP API.

        Args:
            bridge: The DAB bridge instance
        """
        self.bridge = bridge
        self.start_time = time.time()
        self.app = FastAPI(
            title="DAB ADB Bridge",
            description="Health and metrics endpoints for the DAB ADB Bridge",
            version=__version__,
        )

        self._setup_routes()

    def readiness(self) -> dict:
        """Readiness of the bridge to serve DAB requests.

        Ready means the broker connection is up, the bridge has started and
        its command handlers are subscribed.
        """
        mqtt_connected = self.bridge.is_connected()
        handlers = self.bridge.client.handler_count
        return {
            "status": "ready" if mqtt_connected and self.bridge.is_running and handlers > 0 else "not ready",
            "mqtt_connected": mqtt_connected,
            "command_handlers": handlers,
            "device_attached": self.bridge.device is not None,
        }

    def _bridge_uptime(self):
        started_at = self.bridge.started_at
        return None if started_at is None else round(time.time() - started_at, 2)

    def _setup_routes(self):
        @self.app.get("/health")
        async def health_check():
            """Liveness: the process is serving HTTP."""
            return {"status": "healthy", "service": SERVICE_NAME}

        @self.app.get("/ready")
        async def readiness_check(response: Response):
            """Readiness: 503 until the bridge can answer DAB requests."""
            readiness = self.readiness()
            if readiness["status"] != "ready":
                response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            return readiness

        @self.app.get("/metrics")
        async def metrics():
            telemetry = self.bridge.telemetry
            return {
                "uptime_seconds": round(time.time() - self.start_time, 2),
                "bridge_uptime_seconds": self._bridge_uptime(),
                "active_telemetry_sessions": len(telemetry.active_sessions),
                "telemetry_sessions": telemetry.get_session_info_list(),
                "pending_requests": self.bridge.client.pending_requests,
                "command_handlers": self.bridge.client.handler_count,
                "mqtt_connected": self.bridge.is_connected(),
                "service": SERVICE_NAME,
                "version": __version__,
            }


def create_app(bridge: DabBridge) -> FastAPI:
    """Create FastAPI application instance.

    Args:
        bridge: The DAB bridge instance

    Returns:
        FastAPI application
    """
    api = DabHTTPAPI(bridge)
    return api.app
