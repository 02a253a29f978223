"""Request/response correlation and handler dispatch over MQTT."""

import asyncio
import contextlib
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

import paho.mqtt.client as mqtt

from ..errors import DabError, RequestRejectedError, RequestTimeoutError, TransportError
from .envelope import error_envelope
from .topics import response_topic
from .transport import InboundPacket, MqttTransport, serialize_payload

Listener = Callable[[Any, InboundPacket], None]
Handler = Callable[[Any], Awaitable[Any]]


@dataclass
class _PatternLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class Subscription:
    """Handle for a registered listener. ``end()`` detaches it exactly once."""

    def __init__(self, client: "DabMqttClient", pattern: str, listener: Listener):
        self.pattern = pattern
        self.listener = listener
        self._client = client
        self._ended = False

    @property
    def ended(self) -> bool:
        return self._ended

    async def end(self) -> None:
        if self._ended:
            return
        self._ended = True
        await self._client._remove_listener(self.pattern, self.listener)


class DabMqttClient:
    """Correlates DAB requests with responses and dispatches inbound requests to handlers.

    A broker subscription exists for a pattern exactly while at least one
    local listener is registered for it. The first listener subscribes, the
    last one to leave unsubscribes.
    """

    def __init__(self, transport: MqttTransport, default_timeout_ms: int = 5000):
        """Initialize the client.

        Args:
            transport: Connected (or connectable) MQTT transport
            default_timeout_ms: Deadline for requests that do not pass one
        """
        self.transport = transport
        self.default_timeout_ms = default_timeout_ms
        self.logger = logging.getLogger(__name__)

        self._listeners: Dict[str, List[Listener]] = {}
        self._locks: Dict[str, _PatternLock] = {}
        self._pending: Dict[str, str] = {}
        self._handler_subscriptions: List[Subscription] = []
        self._tasks: Set[asyncio.Task] = set()

        transport.set_on_message(self._dispatch)

    @property
    def pending_requests(self) -> int:
        """Number of requests still waiting for a response."""
        return len(self._pending)

    @property
    def handler_count(self) -> int:
        return len(self._handler_subscriptions)

    def listener_count(self, pattern: str) -> int:
        return len(self._listeners.get(pattern, ()))

    def subscribed_patterns(self) -> List[str]:
        return list(self._listeners)

    async def connect(self) -> None:
        await self.transport.connect()

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    @contextlib.asynccontextmanager
    async def _pattern_lock(self, pattern: str):
        entry = self._locks.get(pattern)
        if entry is None:
            entry = self._locks[pattern] = _PatternLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[pattern]

    async def subscribe(self, pattern: str, listener: Listener) -> Subscription:
        """Register a listener, subscribing at the broker for the first one.

        Args:
            pattern: MQTT topic filter, wildcards allowed
            listener: Called on the event loop with ``(message, packet)``

        Returns:
            Subscription whose ``end()`` removes the listener

        Raises:
            TransportError: If the broker subscription fails
        """
        async with self._pattern_lock(pattern):
            listeners = self._listeners.setdefault(pattern, [])
            listeners.append(listener)
            if len(listeners) == 1:
                try:
                    await self.transport.subscribe(pattern)
                except BaseException:
                    listeners.remove(listener)
                    del self._listeners[pattern]
                    raise
        return Subscription(self, pattern, listener)

    async def _remove_listener(self, pattern: str, listener: Listener) -> None:
        async with self._pattern_lock(pattern):
            listeners = self._listeners.get(pattern)
            if not listeners or listener not in listeners:
                return
            listeners.remove(listener)
            if not listeners:
                del self._listeners[pattern]
                await self.transport.unsubscribe(pattern)

    def _dispatch(self, topic: str, message: Any, packet: InboundPacket) -> None:
        """Fan an inbound message out to every listener whose pattern matches."""
        matched = False
        for pattern, listeners in list(self._listeners.items()):
            if not mqtt.topic_matches_sub(pattern, topic):
                continue
            matched = True
            for listener in list(listeners):
                try:
                    listener(message, packet)
                except Exception as e:
                    self.logger.error(f"Listener for {pattern} failed on {topic}: {e}", exc_info=True)
        if not matched:
            self.logger.debug(f"No listener for message on {topic}")

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    async def publish(self, topic: str, payload: Any, qos: Optional[int] = None, retain: bool = False) -> None:
        await self.transport.publish(topic, payload, qos=qos, retain=retain)

    async def publish_retained(self, topic: str, payload: Any) -> None:
        """Publish a retained message that late subscribers receive on subscribe."""
        await self.transport.publish(topic, payload, retain=True)

    async def clear_retained(self, topic: str) -> None:
        """Remove the retained message on ``topic``."""
        await self.transport.publish(topic, None, retain=True)

    # ------------------------------------------------------------------
    # Request / response
    # ------------------------------------------------------------------

    async def request(
        self, topic: str, payload: Any = None, timeout_ms: Optional[int] = None, qos: Optional[int] = None
    ) -> Any:
        """Send a request and wait for the correlated response.

        The response listener is subscribed before the request is published,
        so a fast responder cannot be missed. The deadline covers the
        subscribe, the publish and the wait.

        Args:
            topic: Request topic without the request id
            payload: Request body, defaults to ``{}``
            timeout_ms: Deadline in milliseconds, defaults to ``default_timeout_ms``
            qos: QoS for the request publish

        Returns:
            The response message for statuses below 300

        Raises:
            RequestRejectedError: If the response status is 300 or above
            RequestTimeoutError: If no response arrives within the deadline
            TransportError: If subscribing or publishing fails
        """
        timeout_ms = self.default_timeout_ms if timeout_ms is None else timeout_ms
        if timeout_ms <= 0:
            raise ValueError(f"timeout_ms must be positive, got {timeout_ms}")

        request_id = str(uuid.uuid4())
        request_topic = f"{topic}/{request_id}"
        future: asyncio.Future = asyncio.get_running_loop().create_future()

        def on_response(message: Any, packet: InboundPacket) -> None:
            if future.done():
                return
            status = message.get("status") if isinstance(message, dict) else None
            if isinstance(status, int) and not isinstance(status, bool) and status > 299:
                future.set_exception(RequestRejectedError(message))
            else:
                future.set_result(message)

        subscription: Optional[Subscription] = None

        async def exchange() -> Any:
            nonlocal subscription
            # A subscribe cancelled by the deadline removes its own listener
            subscription = await self.subscribe(response_topic(request_topic), on_response)
            await self.publish(request_topic, {} if payload is None else payload, qos=qos)
            return await future

        self._pending[request_id] = topic
        try:
            return await asyncio.wait_for(exchange(), timeout=timeout_ms / 1000)
        except asyncio.TimeoutError:
            self.logger.warning(f"Request {request_id} on {topic} timed out after {timeout_ms}ms")
            raise RequestTimeoutError(topic, timeout_ms) from None
        finally:
            self._pending.pop(request_id, None)
            if subscription is not None:
                try:
                    await subscription.end()
                except TransportError as e:
                    self.logger.error(f"Failed to release response subscription for {request_topic}: {e}")

    async def subscribe_once(self, topic: str, timeout_ms: Optional[int] = None) -> Any:
        """Return the next message on ``topic``; a retained message arrives immediately.

        Raises:
            RequestTimeoutError: If nothing arrives within the deadline
        """
        timeout_ms = self.default_timeout_ms if timeout_ms is None else timeout_ms
        future: asyncio.Future = asyncio.get_running_loop().create_future()

        def on_message(message: Any, packet: InboundPacket) -> None:
            if not future.done():
                future.set_result(message)

        subscription: Optional[Subscription] = None

        async def receive() -> Any:
            nonlocal subscription
            subscription = await self.subscribe(topic, on_message)
            return await future

        try:
            return await asyncio.wait_for(receive(), timeout=timeout_ms / 1000)
        except asyncio.TimeoutError:
            raise RequestTimeoutError(topic, timeout_ms) from None
        finally:
            if subscription is not None:
                await subscription.end()

    async def handle(self, topic: str, handler: Handler) -> Subscription:
        """Serve requests published under ``topic/<request id>``.

        The handler's return value is published to the response topic. A
        raised exception is converted into an error envelope carrying the
        exception's status (500 when it has none) and the original request.

        Args:
            topic: Request topic without the request id
            handler: Coroutine function taking the request message

        Returns:
            Subscription for the handler's request pattern
        """
        prefix = f"{topic}/"

        def on_request(message: Any, packet: InboundPacket) -> None:
            request_id = packet.topic[len(prefix) :] if packet.topic.startswith(prefix) else ""
            if not request_id:
                self.logger.critical(f"Handler for topic ({topic}) failed to receive request topic: {packet.topic}")
                return
            self._spawn(self._serve(topic, handler, message, response_topic(packet.topic)))

        subscription = await self.subscribe(f"{topic}/+", on_request)
        self._handler_subscriptions.append(subscription)
        self.logger.debug(f"Registered handler for {topic}")
        return subscription

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _serve(self, topic: str, handler: Handler, message: Any, reply_topic: str) -> None:
        try:
            result = await handler(message)
            # An unencodable result is answered as a handler failure
            serialize_payload(result)
        except DabError as e:
            self.logger.warning(f"Handler for {topic} rejected request: {e}")
            result = error_envelope(e, message)
        except Exception as e:
            self.logger.error(f"Handler for {topic} failed: {e}", exc_info=True)
            result = error_envelope(e, message)

        try:
            await self.publish(reply_topic, result)
        except TransportError as e:
            self.logger.error(f"Failed to publish response to {reply_topic}: {e}")

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def stop(self) -> None:
        """Detach all handlers, cancel in-flight handler tasks and disconnect."""
        for subscription in self._handler_subscriptions:
            try:
                await subscription.end()
            except TransportError as e:
                self.logger.warning(f"Failed to unsubscribe {subscription.pattern}: {e}")
        self._handler_subscriptions.clear()

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        await self.transport.disconnect()
        self.logger.info("DAB MQTT client stopped")
