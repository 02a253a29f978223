"""Tests for DabMqttClient request/response correlation and handler dispatch."""

import asyncio
import logging

import pytest

from dab_adb_bridge.errors import NotFoundError, RequestRejectedError, RequestTimeoutError, TransportError
from dab_adb_bridge.mqtt.envelope import PARSE_FAILURE_ERROR
from tests.conftest import settle

TOPIC = "dab/test/echo"


class TestRequest:
    """Test request() against a handler on the same broker."""

    @pytest.mark.asyncio
    async def test_request_resolves_with_handler_response(self, loopback_client, peer_client):
        """Test a 2xx response resolves the request with the exact payload."""

        async def handler(message):
            return {"status": 200, "applications": [{"appId": "youtube"}]}

        await peer_client.handle(TOPIC, handler)

        response = await loopback_client.request(TOPIC, {})

        assert response == {"status": 200, "applications": [{"appId": "youtube"}]}

    @pytest.mark.asyncio
    async def test_request_rejects_on_error_status(self, loopback_client, peer_client):
        """Test a status above 299 raises RequestRejectedError carrying the response."""

        async def handler(message):
            return {"status": 404, "error": "Couldn't find app"}

        await peer_client.handle(TOPIC, handler)

        with pytest.raises(RequestRejectedError) as exc_info:
            await loopback_client.request(TOPIC, {"appId": "nope"})

        assert exc_info.value.status == 404
        assert exc_info.value.response == {"status": 404, "error": "Couldn't find app"}
        assert str(exc_info.value) == "Couldn't find app"

    @pytest.mark.asyncio
    async def test_request_resolves_without_status(self, loopback_client, peer_client):
        """Test a response without a status field is treated as success."""

        async def handler(message):
            return {"hello": "world"}

        await peer_client.handle(TOPIC, handler)

        assert await loopback_client.request(TOPIC) == {"hello": "world"}

    @pytest.mark.asyncio
    async def test_request_default_payload_is_empty_object(self, loopback_client, peer_client):
        received = []

        async def handler(message):
            received.append(message)
            return {"status": 200}

        await peer_client.handle(TOPIC, handler)
        await loopback_client.request(TOPIC)

        assert received == [{}]

    @pytest.mark.asyncio
    async def test_request_timeout_restores_listener_baseline(self, loopback_client):
        """Test a request with no responder times out and unsubscribes its response topic."""
        transport = loopback_client.transport

        with pytest.raises(RequestTimeoutError) as exc_info:
            await loopback_client.request(TOPIC, {}, timeout_ms=50)

        assert exc_info.value.status == 408
        assert exc_info.value.topic == TOPIC
        assert exc_info.value.timeout_ms == 50
        assert isinstance(exc_info.value, TimeoutError)
        assert str(exc_info.value) == f"Failed to receive response from {TOPIC} within 50ms"
        assert loopback_client.subscribed_patterns() == []
        assert loopback_client.pending_requests == 0
        assert len(transport.subscribe_calls) == 1
        assert transport.unsubscribe_calls == transport.subscribe_calls

    @pytest.mark.asyncio
    async def test_listener_baseline_after_success(self, loopback_client, peer_client):
        async def handler(message):
            return {"status": 200}

        await peer_client.handle(TOPIC, handler)
        await loopback_client.request(TOPIC)

        assert loopback_client.subscribed_patterns() == []
        assert loopback_client.pending_requests == 0

    @pytest.mark.asyncio
    async def test_concurrent_requests_resolve_from_their_own_id(self, loopback_client, peer_client):
        """Test two concurrent requests on one topic each get their own response."""

        async def handler(message):
            # First request answers last
            await asyncio.sleep(0.05 if message["n"] == 1 else 0.01)
            return {"status": 200, "n": message["n"]}

        await peer_client.handle(TOPIC, handler)

        first, second = await asyncio.gather(
            loopback_client.request(TOPIC, {"n": 1}),
            loopback_client.request(TOPIC, {"n": 2}),
        )

        assert first == {"status": 200, "n": 1}
        assert second == {"status": 200, "n": 2}

    @pytest.mark.asyncio
    async def test_rejects_non_positive_timeout(self, loopback_client):
        with pytest.raises(ValueError):
            await loopback_client.request(TOPIC, timeout_ms=0)

    @pytest.mark.asyncio
    async def test_transport_failure_propagates(self, loopback_client):
        """Test a publish failure surfaces as TransportError and still cleans up."""
        loopback_client.transport.fail_publish = True

        with pytest.raises(TransportError):
            await loopback_client.request(TOPIC, timeout_ms=100)

        assert loopback_client.subscribed_patterns() == []

    @pytest.mark.asyncio
    async def test_timeout_covers_unacknowledged_subscribe(self, loopback_client, broker):
        """Test a response subscription that is never acknowledged still times out."""

        async def never_acknowledged(pattern, qos=None):
            await asyncio.Event().wait()

        loopback_client.transport.subscribe = never_acknowledged

        with pytest.raises(RequestTimeoutError):
            await asyncio.wait_for(loopback_client.request(TOPIC, {}, timeout_ms=50), timeout=1)

        assert loopback_client.subscribed_patterns() == []
        assert loopback_client.pending_requests == 0
        assert broker.published == []

    @pytest.mark.asyncio
    async def test_subscribe_once_timeout_covers_subscribe(self, loopback_client):
        async def never_acknowledged(pattern, qos=None):
            await asyncio.Event().wait()

        loopback_client.transport.subscribe = never_acknowledged

        with pytest.raises(RequestTimeoutError):
            await asyncio.wait_for(loopback_client.subscribe_once("dab/version", timeout_ms=50), timeout=1)

        assert loopback_client.subscribed_patterns() == []


class TestHandle:
    """Test handle() dispatch and failure conversion."""

    @pytest.mark.asyncio
    async def test_handler_failure_publishes_single_500(self, loopback_client, peer_client, broker):
        """Test an exception without a status becomes exactly one 500 response."""

        async def handler(message):
            raise RuntimeError("device exploded")

        await peer_client.handle(TOPIC, handler)

        with pytest.raises(RequestRejectedError) as exc_info:
            await loopback_client.request(TOPIC, {"appId": "youtube"})

        response = exc_info.value.response
        assert response == {
            "status": 500,
            "error": "RuntimeError: device exploded",
            "request": {"appId": "youtube"},
        }
        responses = [topic for topic, _, _ in broker.published if topic.startswith("_response/")]
        assert len(responses) == 1

    @pytest.mark.asyncio
    async def test_unserializable_result_publishes_single_500(self, loopback_client, peer_client, broker):
        """Test a result that cannot be encoded as JSON is answered with a 500."""

        async def handler(message):
            return {"status": 200, "tags": {"a", "b"}}

        await peer_client.handle(TOPIC, handler)

        with pytest.raises(RequestRejectedError) as exc_info:
            await loopback_client.request(TOPIC, {"appId": "youtube"})

        response = exc_info.value.response
        assert response["status"] == 500
        assert response["error"].startswith("TypeError:")
        assert response["request"] == {"appId": "youtube"}
        responses = [topic for topic, _, _ in broker.published if topic.startswith("_response/")]
        assert len(responses) == 1

    @pytest.mark.asyncio
    async def test_handler_failure_uses_exception_status(self, loopback_client, peer_client):
        async def handler(message):
            raise NotFoundError("Couldn't find data for app nope in config file")

        await peer_client.handle(TOPIC, handler)

        with pytest.raises(RequestRejectedError) as exc_info:
            await loopback_client.request(TOPIC, {"appId": "nope"})

        assert exc_info.value.status == 404
        assert exc_info.value.response["request"] == {"appId": "nope"}

    @pytest.mark.asyncio
    async def test_response_goes_to_response_topic(self, loopback_client, broker):
        async def handler(message):
            return {"status": 200}

        await loopback_client.handle(TOPIC, handler)
        await loopback_client.publish(f"{TOPIC}/abc-123", {})
        await settle()

        assert broker.messages_on(f"_response/{TOPIC}/abc-123") == [{"status": 200}]

    @pytest.mark.asyncio
    async def test_empty_request_id_gets_no_reply(self, loopback_client, broker, caplog):
        """Test a request without a correlation id is logged and never answered."""
        calls = []

        async def handler(message):
            calls.append(message)
            return {"status": 200}

        await loopback_client.handle(TOPIC, handler)

        with caplog.at_level(logging.CRITICAL):
            loopback_client.transport.inject(f"{TOPIC}/", b"{}")
            await settle()

        assert calls == []
        assert not any(topic.startswith("_response/") for topic, _, _ in broker.published)
        assert "failed to receive request topic" in caplog.text

    @pytest.mark.asyncio
    async def test_publish_failure_is_logged(self, loopback_client, caplog):
        async def handler(message):
            return {"status": 200}

        await loopback_client.handle(TOPIC, handler)
        loopback_client.transport.fail_publish = True

        with caplog.at_level(logging.ERROR):
            loopback_client.transport.inject(f"{TOPIC}/req-1", b"{}")
            await settle()

        assert "Failed to publish response" in caplog.text


class TestSubscribe:
    """Test listener bookkeeping and message delivery."""

    @pytest.mark.asyncio
    async def test_broker_subscription_is_shared_by_listeners(self, loopback_client):
        """Test one broker subscription exists while any listener is registered."""
        transport = loopback_client.transport
        first = await loopback_client.subscribe("dab/messages", lambda message, packet: None)
        second = await loopback_client.subscribe("dab/messages", lambda message, packet: None)

        assert transport.subscribe_calls == ["dab/messages"]
        assert loopback_client.listener_count("dab/messages") == 2

        await first.end()
        assert transport.unsubscribe_calls == []
        assert loopback_client.listener_count("dab/messages") == 1

        await second.end()
        await second.end()
        assert transport.unsubscribe_calls == ["dab/messages"]
        assert loopback_client.listener_count("dab/messages") == 0

    @pytest.mark.asyncio
    async def test_concurrent_subscribes_issue_one_broker_subscription(self, loopback_client):
        await asyncio.gather(
            *(loopback_client.subscribe("dab/messages", lambda message, packet: None) for _ in range(5))
        )

        assert loopback_client.transport.subscribe_calls == ["dab/messages"]
        assert loopback_client.listener_count("dab/messages") == 5

    @pytest.mark.asyncio
    async def test_wildcard_delivery(self, loopback_client, peer_client):
        received = []
        await loopback_client.subscribe("dab/device-telemetry/metrics/+", lambda m, p: received.append((p.topic, m)))

        await peer_client.publish("dab/device-telemetry/metrics/youtube", {"cpu": 1})
        await peer_client.publish("dab/device-telemetry/metrics", {"cpu": 2})
        await settle()

        assert received == [("dab/device-telemetry/metrics/youtube", {"cpu": 1})]

    @pytest.mark.asyncio
    async def test_malformed_payload_yields_parse_failure(self, loopback_client):
        """Test an unparsable payload reaches listeners as the parse-failure envelope."""
        received = []
        await loopback_client.subscribe("dab/messages", lambda message, packet: received.append(message))

        loopback_client.transport.inject("dab/messages", b"{not json")
        await settle()

        assert len(received) == 1
        assert received[0]["status"] == 500
        assert received[0]["error"] == PARSE_FAILURE_ERROR
        assert received[0]["raw"] == "{not json"
        assert received[0]["packet"]["topic"] == "dab/messages"

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_block_others(self, loopback_client):
        received = []

        def broken(message, packet):
            raise RuntimeError("listener bug")

        await loopback_client.subscribe("dab/messages", broken)
        await loopback_client.subscribe("dab/messages", lambda message, packet: received.append(message))

        loopback_client.transport.inject("dab/messages", b'{"level": "info"}')
        await settle()

        assert received == [{"level": "info"}]

    @pytest.mark.asyncio
    async def test_subscribe_once_returns_retained(self, loopback_client, peer_client):
        await peer_client.publish_retained("dab/version", {"status": 200, "versions": ["1.0"]})

        assert await loopback_client.subscribe_once("dab/version") == {"status": 200, "versions": ["1.0"]}
        assert loopback_client.subscribed_patterns() == []

    @pytest.mark.asyncio
    async def test_subscribe_once_times_out(self, loopback_client):
        with pytest.raises(RequestTimeoutError):
            await loopback_client.subscribe_once("dab/device/info", timeout_ms=20)

    @pytest.mark.asyncio
    async def test_clear_retained(self, loopback_client, broker):
        await loopback_client.publish_retained("dab/version", {"status": 200})
        await loopback_client.clear_retained("dab/version")

        assert "dab/version" not in broker.retained


class TestStop:
    """Test client shutdown."""

    @pytest.mark.asyncio
    async def test_stop_ends_handlers_and_disconnects(self, loopback_client):
        transport = loopback_client.transport
        await loopback_client.connect()

        async def handler(message):
            return {"status": 200}

        await loopback_client.handle("dab/applications/list", handler)
        await loopback_client.handle("dab/health-check/get", handler)
        assert loopback_client.handler_count == 2

        await loopback_client.stop()

        assert loopback_client.handler_count == 0
        assert sorted(transport.unsubscribe_calls) == ["dab/applications/list/+", "dab/health-check/get/+"]
        assert transport.is_connected() is False
