"""Exception taxonomy for the DAB bridge.

Every exception raised by a command handler carries a ``status`` that the
dispatcher copies into the response envelope. Correlation failures
(timeouts, transport errors, rejected requests) propagate to the caller.
"""

from typing import Any, Dict, Optional


class DabError(Exception):
    """Base class for errors that map onto a DAB response status."""

    status: int = 500

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        if status is not None:
            self.status = status


class ValidationError(DabError):
    """A request field is missing or malformed."""

    status = 400


class UnrecognizedKeyError(ValidationError):
    """A key code is not part of the platform key table."""

    status = 401


class NotFoundError(DabError):
    """The request references an unknown logical entity (e.g. an app id)."""

    status = 404


class ConflictError(DabError):
    """The target is already in the requested state.

    Reported as 400 on the wire to match existing DAB clients.
    """

    status = 400


class NotStartedError(ConflictError):
    """Stop was requested for something that is not running."""


class UnimplementedError(DabError):
    """The device binding does not provide this capability."""

    status = 501


class TransportError(DabError):
    """Publishing, subscribing or unsubscribing failed at the broker."""

    status = 500


class BrokerConnectionError(TransportError):
    """No successful handshake with the broker before the connect timeout."""


class RequestTimeoutError(DabError, TimeoutError):
    """No response arrived for a request within its deadline."""

    status = 408

    def __init__(self, topic: str, timeout_ms: int):
        super().__init__(f"Failed to receive response from {topic} within {timeout_ms}ms")
        self.topic = topic
        self.timeout_ms = timeout_ms


class RequestRejectedError(DabError):
    """The responder answered with a status outside the 2xx range."""

    def __init__(self, response: Dict[str, Any]):
        status = response.get("status", 500)
        message = response.get("error") or f"Request rejected with status {status}"
        super().__init__(str(message), status=status)
        self.response = response


class DeviceCommandError(DabError):
    """A command against the target device failed or timed out."""

    status = 500
