"""Main application entry point."""

import asyncio
import logging

import uvicorn

from .adb import AdbCommands, AdbDevice, load_app_map
from .config import AppConfig
from .dab import DabBridge
from .errors import BrokerConnectionError
from .http_api import create_app
from .logger import configure_logging

logger = logging.getLogger(__name__)


def create_bridge(config: AppConfig) -> DabBridge:
    """Build the adb device binding and the bridge serving it."""
    adb = AdbCommands(adb_path=config.device.adb_path, serial=config.device.serial)
    device = AdbDevice(adb, load_app_map(config.device.app_map_file), config.device)
    return DabBridge(config, device)


async def run(config: AppConfig) -> None:
    """Run the bridge and the HTTP API on one event loop until a shutdown signal."""
    bridge = create_bridge(config)
    app = create_app(bridge)

    # log_config=None keeps the logging configured by configure_logging()
    server = uvicorn.Server(
        uvicorn.Config(app, host="0.0.0.0", port=config.http_port, log_config=None, log_level=None)
    )

    await bridge.start()
    logger.info("DAB bridge started")
    try:
        logger.info(f"Starting HTTP API server on port {config.http_port}")
        # uvicorn handles SIGINT/SIGTERM and returns from serve()
        await server.serve()
    finally:
        await bridge.stop()


def main():
    """Main application entry point."""
    try:
        # Load configuration from environment first
        config = AppConfig.from_env()

        # Configure logging globally (once)
        configure_logging(config)
        logger.info("Configuration loaded successfully")

        asyncio.run(run(config))
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    except BrokerConnectionError as e:
        logger.error(f"Error starting application: {e}")
        raise SystemExit(1) from e
    except Exception as e:
        logger.error(f"Error starting application: {e}", exc_info=True)
        raise


if __name__ == "__main__":
    main()
