"""DAB response envelopes and request field validation."""

from typing import Any, Dict, Mapping, Optional

from ..errors import DabError, ValidationError

PARSE_FAILURE_ERROR = "failed to parse msg"


def is_success(status: int) -> bool:
    """Return True for statuses in the 2xx range."""
    return 200 <= status <= 299


def dab_response(status: int = 200, error: Optional[str] = None, **fields: Any) -> Dict[str, Any]:
    """Build a DAB response envelope.

    The error text must be present for, and only for, non-2xx statuses.

    Args:
        status: Response status code
        error: Error text, required when status is outside 200-299
        **fields: Extra payload fields merged after status/error

    Returns:
        Response dictionary

    Raises:
        ValueError: If the status/error pairing is violated
    """
    response: Dict[str, Any] = {"status": status}
    if is_success(status):
        if error:
            raise ValueError(f"Error message must not be set for {status} status results")
    else:
        if not error:
            raise ValueError("Error message must be returned for non 2XX status results")
        response["error"] = error
    response.update(fields)
    return response


def describe_error(exc: BaseException) -> str:
    """Serialize an exception into the error text of an envelope."""
    message = str(exc)
    if isinstance(exc, DabError):
        return message or type(exc).__name__
    return f"{type(exc).__name__}: {message}" if message else type(exc).__name__


def error_envelope(exc: BaseException, request: Any) -> Dict[str, Any]:
    """Normalize a handler failure into an envelope echoing the request."""
    status = getattr(exc, "status", None)
    if not isinstance(status, int) or is_success(status):
        status = 500
    return dab_response(status, describe_error(exc), request=request)


def parse_failure(raw: str, packet: Mapping[str, Any]) -> Dict[str, Any]:
    """Envelope surfaced to listeners when an inbound payload is not JSON."""
    return {
        "status": 500,
        "error": PARSE_FAILURE_ERROR,
        "raw": raw,
        "packet": dict(packet),
    }


def is_parse_failure(message: Any) -> bool:
    return (
        isinstance(message, dict)
        and message.get("error") == PARSE_FAILURE_ERROR
        and isinstance(message.get("raw"), str)
        and "packet" in message
    )


def require_string(data: Mapping[str, Any], field: str, message: Optional[str] = None) -> str:
    """Return ``data[field]`` if it is a string, otherwise raise ValidationError."""
    value = data.get(field)
    if not isinstance(value, str):
        raise ValidationError(message or f"'{field}' must be set")
    return value


def require_positive_int(data: Mapping[str, Any], field: str, message: Optional[str] = None) -> int:
    """Return ``data[field]`` if it is a positive integer, otherwise raise ValidationError."""
    value = data.get(field)
    # bool is an int subclass but never a valid count
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(message or f"'{field}' must be a positive integer")
    return value
