"""Periodic telemetry sessions keyed by device or application."""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..errors import ConflictError, NotStartedError, ValidationError

FREQUENCY_ERROR = "'frequency' must be set as number of milliseconds between updates"

Producer = Callable[[], Awaitable[Any]]
Publisher = Callable[[str, Any], Awaitable[None]]
Notifier = Callable[[str, str], Awaitable[None]]


class TelemetryKind(str, Enum):
    DEVICE = "device"
    APPLICATION = "application"


@dataclass(frozen=True)
class TelemetryKey:
    """Identifies a telemetry session: the device, or one application."""

    kind: TelemetryKind
    app_id: Optional[str] = None

    @classmethod
    def device(cls) -> "TelemetryKey":
        return cls(TelemetryKind.DEVICE)

    @classmethod
    def application(cls, app_id: str) -> "TelemetryKey":
        return cls(TelemetryKind.APPLICATION, app_id)

    def metrics_topic(self, base: str) -> str:
        """Topic the session publishes to, below ``base``."""
        if self.kind is TelemetryKind.DEVICE:
            return base
        return f"{base}/{self.app_id}"

    def __str__(self) -> str:
        if self.kind is TelemetryKind.DEVICE:
            return "Device telemetry"
        return f"App telemetry for {self.app_id}"


@dataclass
class TelemetrySession:
    key: TelemetryKey
    frequency_ms: int
    topic: str
    producer: Producer
    started_at: float = field(default_factory=time.time)
    task: Optional[asyncio.Task] = None


class TelemetryManager:
    """Runs at most one periodic telemetry publisher per key."""

    def __init__(self, publish: Publisher, metrics_topic: str, notify: Optional[Notifier] = None):
        """Initialize the telemetry manager.

        Args:
            publish: Coroutine function publishing ``(topic, payload)``
            metrics_topic: Base metrics topic; application sessions append their app id
            notify: Coroutine function sending ``(level, message)`` notifications
        """
        self._publish = publish
        self._notify = notify
        self.metrics_topic = metrics_topic
        self.logger = logging.getLogger(__name__)
        self._sessions: Dict[TelemetryKey, TelemetrySession] = {}

    @property
    def active_sessions(self) -> List[TelemetryKey]:
        return list(self._sessions)

    def is_active(self, key: TelemetryKey) -> bool:
        return key in self._sessions

    def get_session_info_list(self) -> List[Dict[str, Any]]:
        """Build list of active session information.

        Returns:
            List of session info dictionaries
        """
        return [
            {
                "kind": session.key.kind.value,
                "app_id": session.key.app_id,
                "frequency_ms": session.frequency_ms,
                "topic": session.topic,
                "started_at": session.started_at,
            }
            for session in self._sessions.values()
        ]

    async def start(self, key: TelemetryKey, frequency_ms: Any, producer: Producer) -> None:
        """Publish one sample now, then one every ``frequency_ms`` until stopped.

        Args:
            key: Session key
            frequency_ms: Period in milliseconds, a positive integer
            producer: Coroutine function returning the telemetry payload

        Raises:
            ValidationError: If the frequency is not a positive integer
            ConflictError: If a session for ``key`` is already running
        """
        if isinstance(frequency_ms, bool) or not isinstance(frequency_ms, int) or frequency_ms <= 0:
            raise ValidationError(FREQUENCY_ERROR)
        if key in self._sessions:
            raise ConflictError(f"{key} is already started, stop it first")

        session = TelemetrySession(key, frequency_ms, key.metrics_topic(self.metrics_topic), producer)
        # Reserved before the first await
        self._sessions[key] = session

        try:
            await self._publish(session.topic, await producer())
        except BaseException:
            if self._sessions.get(key) is session:
                del self._sessions[key]
            raise

        if self._sessions.get(key) is not session:
            self.logger.info(f"{key} was stopped before its first period")
            return

        session.task = asyncio.ensure_future(self._run(session))
        self.logger.info(f"Started {key} every {frequency_ms}ms on {session.topic}")

    async def stop(self, key: TelemetryKey) -> None:
        """Stop the session for ``key``.

        Raises:
            NotStartedError: If no session is running for ``key``
        """
        session = self._sessions.pop(key, None)
        if session is None:
            raise NotStartedError(f"{key} not started")
        if session.task is not None:
            session.task.cancel()
            # A sample already in flight must not land after stop returns
            await asyncio.gather(session.task, return_exceptions=True)
        self.logger.info(f"Stopped {key}")

    async def stop_all(self) -> None:
        """Cancel every session and wait for the loops to finish."""
        sessions = list(self._sessions.values())
        self._sessions.clear()
        tasks = [session.task for session in sessions if session.task is not None]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        if sessions:
            self.logger.info(f"Stopped {len(sessions)} telemetry session(s)")

    async def _run(self, session: TelemetrySession) -> None:
        loop = asyncio.get_running_loop()
        period = session.frequency_ms / 1000
        next_tick = loop.time() + period
        while True:
            await asyncio.sleep(max(0.0, next_tick - loop.time()))
            # Skip missed ticks instead of bursting to catch up
            next_tick = max(next_tick + period, loop.time())
            try:
                await self._publish(session.topic, await session.producer())
            except Exception as e:
                self.logger.warning(f"{session.key} sample failed, skipping cycle: {e}", exc_info=True)
                await self._report_degraded(session, e)

    async def _report_degraded(self, session: TelemetrySession, error: Exception) -> None:
        if self._notify is None:
            return
        try:
            await self._notify("warn", f"Degraded telemetry: {session.key} failed to sample: {error}")
        except Exception as e:
            self.logger.error(f"Failed to publish degraded telemetry notification: {e}")
