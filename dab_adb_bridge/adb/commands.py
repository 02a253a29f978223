"""Async wrapper around the adb executable."""

import asyncio
import contextlib
import logging
import re
import shlex
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..errors import DeviceCommandError, UnrecognizedKeyError
from .keymap import to_android_key

DEFAULT_TIMEOUT = 30.0
REBOOT_TIMEOUT = 300.0
BOOT_POLL_INTERVAL = 2.0
TOP_MAX_TASKS = 10

_PROPERTY_RE = re.compile(r"^\[(?P<key>[^\]]+)\]: \[(?P<value>.*)\]$")
_INTERFACE_RE = re.compile(r"^\d+: (?P<name>[^:@]+)(?:@\S+)?: <(?P<flags>[^>]*)>")
_SIZE_RE = re.compile(r"(?P<kind>Physical|Override) size: (?P<width>\d+)x(?P<height>\d+)")


class AndroidAppStatus(str, Enum):
    """Process state of an Android package."""

    STOPPED = "stopped"
    BACKGROUND = "background"
    RUNNING = "running"


@dataclass(frozen=True)
class NetworkInterface:
    name: str
    mac_address: Optional[str] = None
    ip_address: Optional[str] = None
    connected: bool = False

    @property
    def type(self) -> str:
        if self.name.startswith("eth"):
            return "ethernet"
        if self.name.startswith("wlan"):
            return "wifi"
        return "other"

    def to_dab(self) -> Dict[str, Any]:
        return {
            "connected": self.connected,
            "macAddress": self.mac_address,
            "ipAddress": self.ip_address,
            "type": self.type,
        }


@dataclass
class DeviceDetails:
    serial: str
    properties: Dict[str, str] = field(default_factory=dict)
    interfaces: List[NetworkInterface] = field(default_factory=list)
    resolution: Tuple[Optional[int], Optional[int]] = (None, None)


def parse_packages(output: str) -> List[str]:
    """Parse ``pm list packages`` output into package names."""
    return [line.split(":", 1)[1].strip() for line in output.splitlines() if line.startswith("package:")]


def parse_properties(output: str) -> Dict[str, str]:
    """Parse ``getprop`` output (``[key]: [value]`` lines)."""
    properties = {}
    for line in output.splitlines():
        match = _PROPERTY_RE.match(line.strip())
        if match:
            properties[match.group("key")] = match.group("value")
    return properties


def parse_interfaces(output: str) -> List[NetworkInterface]:
    """Parse ``ip addr show`` output, keeping ethernet and wifi interfaces."""
    interfaces: List[NetworkInterface] = []
    current: Optional[Dict[str, Any]] = None

    def flush():
        if current and current["name"].startswith(("eth", "wlan")):
            interfaces.append(NetworkInterface(**current))

    for raw_line in output.splitlines():
        line = raw_line.strip()
        match = _INTERFACE_RE.match(line)
        if match:
            flush()
            flags = match.group("flags").split(",")
            current = {"name": match.group("name"), "connected": "LOWER_UP" in flags}
        elif current is None:
            continue
        elif line.startswith("link/ether "):
            current["mac_address"] = line.split()[1]
        elif line.startswith("inet ") and "ip_address" not in current:
            current["ip_address"] = line.split()[1].split("/")[0]
    flush()
    return interfaces


def parse_screen_size(output: str) -> Tuple[Optional[int], Optional[int]]:
    """Parse ``wm size``; an override size wins over the physical size."""
    sizes = {
        match.group("kind"): (int(match.group("width")), int(match.group("height")))
        for match in _SIZE_RE.finditer(output)
    }
    return sizes.get("Override") or sizes.get("Physical") or (None, None)


def parse_top(output: str) -> Dict[str, Any]:
    """Parse one batch iteration of ``top`` into summary lines and task rows."""
    lines = [line.rstrip() for line in output.splitlines() if line.strip()]
    header_index = next((i for i, line in enumerate(lines) if line.split()[0].strip("[]") == "PID"), None)
    if header_index is None:
        return {"summary": lines, "tasks": []}

    # toybox prints the state and CPU columns as "S[%CPU]"
    header = lines[header_index].replace("S[%CPU]", "S %CPU").replace("[", "").replace("]", "")
    columns = [column.lower() for column in header.split()]
    tasks = []
    for line in lines[header_index + 1 :]:
        values = line.split(None, len(columns) - 1)
        if len(values) == len(columns):
            tasks.append(dict(zip(columns, values)))
    return {"summary": [line.strip() for line in lines[:header_index]], "tasks": tasks}


def parse_resumed_packages(output: str) -> List[str]:
    """Packages of the resumed activities in ``dumpsys activity activities`` output."""
    packages = []
    for line in output.splitlines():
        if "ResumedActivity" not in line:
            continue
        for token in line.split():
            if "/" in token:
                packages.append(token.split("/", 1)[0])
                break
    return packages


class AdbCommands:
    """Runs adb commands against one device."""

    def __init__(self, adb_path: str = "adb", serial: Optional[str] = None, timeout: float = DEFAULT_TIMEOUT):
        """Initialize the adb wrapper.

        Args:
            adb_path: Path to the adb executable
            serial: Device serial passed as ``-s``; omit when one device is attached
            timeout: Default per-command timeout in seconds
        """
        self.adb_path = adb_path
        self.serial = serial
        self.timeout = timeout
        self.logger = logging.getLogger(__name__)

    async def run(self, *args: str, timeout: Optional[float] = None, check: bool = True) -> Tuple[int, str]:
        """Run ``adb [-s serial] args...``.

        Args:
            *args: adb arguments
            timeout: Seconds before the process is killed
            check: Raise on a non-zero exit status

        Returns:
            Tuple of exit status and decoded stdout

        Raises:
            DeviceCommandError: If adb is missing, times out or fails while ``check`` is set
        """
        command = [self.adb_path]
        if self.serial:
            command += ["-s", self.serial]
        command += list(args)
        self.logger.debug(f"Running: {' '.join(command)}")

        try:
            process = await asyncio.create_subprocess_exec(
                *command, stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE
            )
        except FileNotFoundError:
            raise DeviceCommandError(f"adb executable not found: {self.adb_path}") from None

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout or self.timeout)
        except asyncio.TimeoutError:
            await self._reap(process)
            raise DeviceCommandError(f"adb {' '.join(args)} timed out after {timeout or self.timeout}s") from None
        except BaseException:
            # Cancelled by the caller; the child must not outlive the command
            await self._reap(process)
            raise

        output = stdout.decode("utf-8", errors="replace")
        if check and process.returncode != 0:
            error = stderr.decode("utf-8", errors="replace").strip() or output.strip()
            raise DeviceCommandError(f"adb {' '.join(args)} failed ({process.returncode}): {error}")
        return process.returncode, output

    @staticmethod
    async def _reap(process: asyncio.subprocess.Process) -> None:
        with contextlib.suppress(ProcessLookupError):
            process.kill()
        await process.wait()

    async def shell(self, *args: str, timeout: Optional[float] = None, check: bool = True) -> str:
        # adb joins shell arguments into one remote command line
        _, output = await self.run("shell", " ".join(shlex.quote(arg) for arg in args), timeout=timeout, check=check)
        return output

    async def get_packages(self) -> List[str]:
        return parse_packages(await self.shell("pm", "list", "packages"))

    async def start(self, intent: Sequence[str]) -> None:
        """Start an activity with ``am start``.

        Raises:
            DeviceCommandError: If the activity manager reports an error
        """
        output = await self.shell("am", "start", *intent)
        for line in output.splitlines():
            if line.startswith("Error"):
                raise DeviceCommandError(line.strip())

    async def stop(self, package: str) -> None:
        await self.shell("am", "force-stop", package)

    async def status(self, package: str) -> AndroidAppStatus:
        pids = (await self.shell("pidof", package, check=False)).strip()
        if not pids:
            return AndroidAppStatus.STOPPED
        activities = await self.shell("dumpsys", "activity", "activities")
        if package in parse_resumed_packages(activities):
            return AndroidAppStatus.RUNNING
        return AndroidAppStatus.BACKGROUND

    async def background_app(self, package: str) -> None:
        """Send the app to the background by returning to the launcher.

        Raises:
            DeviceCommandError: If the app is still in the foreground afterwards
        """
        await self.shell("input", "keyevent", "KEYCODE_HOME")
        if await self.status(package) == AndroidAppStatus.RUNNING:
            raise DeviceCommandError(f"{package} is still in the foreground")

    async def reboot(self, timeout: float = REBOOT_TIMEOUT) -> None:
        """Reboot and wait until the device reports boot completion."""
        deadline = time.monotonic() + timeout
        await self.run("reboot")
        await self.run("wait-for-device", timeout=timeout)
        while time.monotonic() < deadline:
            if (await self.shell("getprop", "sys.boot_completed", check=False)).strip() == "1":
                self.logger.info("Device finished booting")
                return
            await asyncio.sleep(BOOT_POLL_INTERVAL)
        raise DeviceCommandError(f"Device did not finish booting within {timeout}s")

    async def send_key(self, key_code: str) -> None:
        """Press a DAB key.

        Raises:
            UnrecognizedKeyError: If ``key_code`` has no Android mapping
        """
        android_key = self._android_key(key_code)
        await self.shell("input", "keyevent", str(int(android_key)))

    async def send_long_key(self, key_code: str, duration_ms: Optional[int] = None) -> None:
        """Hold a DAB key, for ``duration_ms`` when given, otherwise for the platform long-press time."""
        android_key = self._android_key(key_code)
        if duration_ms is None:
            await self.shell("input", "keyevent", "--longpress", str(int(android_key)))
        else:
            await self.shell("input", "keyevent", "--duration", str(duration_ms), str(int(android_key)))

    @staticmethod
    def _android_key(key_code: str):
        try:
            return to_android_key(key_code)
        except KeyError:
            raise UnrecognizedKeyError(f"Unrecognized keyCode: {key_code}") from None

    async def top(self) -> Dict[str, Any]:
        snapshot = parse_top(await self.shell("top", "-b", "-n", "1", "-m", str(TOP_MAX_TASKS)))
        snapshot["timestamp"] = int(time.time() * 1000)
        return snapshot

    async def get_device_uptime_seconds(self) -> int:
        output = await self.shell("cat", "/proc/uptime")
        try:
            return int(float(output.split()[0]))
        except (IndexError, ValueError):
            raise DeviceCommandError(f"Unexpected /proc/uptime output: {output.strip()!r}") from None

    async def get_properties(self) -> Dict[str, str]:
        return parse_properties(await self.shell("getprop"))

    async def get_device_details(self) -> DeviceDetails:
        properties = await self.get_properties()
        interfaces = parse_interfaces(await self.shell("ip", "addr", "show", check=False))
        resolution = parse_screen_size(await self.shell("wm", "size", check=False))
        serial = self.serial or properties.get("ro.serialno") or "unknown"
        return DeviceDetails(serial=serial, properties=properties, interfaces=interfaces, resolution=resolution)

    async def get_locale(self) -> Optional[str]:
        for prop in ("persist.sys.locale", "ro.product.locale"):
            value = (await self.shell("getprop", prop, check=False)).strip()
            if value:
                return value
        return None
