"""DAB topic suffix constants."""

RESPONSE_PREFIX = "_response"


class Topics:
    """DAB topic suffixes, relative to the configured topic prefix."""

    APPLICATIONS_LIST = "applications/list"
    APPLICATIONS_LAUNCH = "applications/launch"
    APPLICATIONS_EXIT = "applications/exit"
    APPLICATIONS_GET_STATE = "applications/get-state"
    SYSTEM_RESTART = "system/restart"
    INPUT_KEY_PRESS = "input/key-press"
    INPUT_LONG_KEY_PRESS = "input/long-key-press"
    SYSTEM_LANGUAGE_SET = "system/language/set"
    SYSTEM_LANGUAGE_GET = "system/language/get"
    DEVICE_TELEMETRY_START = "device-telemetry/start"
    DEVICE_TELEMETRY_STOP = "device-telemetry/stop"
    APP_TELEMETRY_START = "app-telemetry/start"
    APP_TELEMETRY_STOP = "app-telemetry/stop"
    HEALTH_CHECK = "health-check/get"

    VERSION = "version"
    DEVICE_INFO = "device/info"
    MESSAGES = "messages"
    TELEMETRY_METRICS = "device-telemetry/metrics"


def response_topic(request_topic: str) -> str:
    """Return the topic a responder publishes to for ``request_topic``."""
    return f"{RESPONSE_PREFIX}/{request_topic}"
