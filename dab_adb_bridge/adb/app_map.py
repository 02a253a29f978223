"""Application table: DAB app ids to Android packages and launch intents."""

import json
import logging
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)


class AppEntry(BaseModel):
    """One Android implementation of a DAB application."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    package: str = Field(..., min_length=1, description="Android package name")
    intent: Tuple[str, ...] = Field((), description="Arguments passed to 'am start'")
    friendly_name: Optional[str] = Field(None, alias="friendlyName", description="Display name")
    options_prefix: Tuple[str, ...] = Field(
        (), alias="optionsPrefix", description="Arguments inserted before list parameters"
    )

    @field_validator("intent", "options_prefix", mode="before")
    @classmethod
    def validate_argument_list(cls, v: Any) -> Any:
        """Accept a single string as a one-element argument list."""
        if isinstance(v, str):
            return (v,)
        return v


AppMap = Mapping[str, Tuple[AppEntry, ...]]

DEFAULT_APP_MAP = {
    "youtube": [
        {
            "package": "com.google.android.youtube.tv",
            "friendlyName": "YouTube",
            "intent": ["-a", "android.intent.action.VIEW", "-d", "https://www.youtube.com/"],
        },
        {
            "package": "com.google.android.youtube",
            "friendlyName": "YouTube",
            "intent": ["-a", "android.intent.action.VIEW", "-d", "https://www.youtube.com/"],
        },
    ],
    "netflix": {
        "package": "com.netflix.ninja",
        "friendlyName": "Netflix",
        "intent": ["-n", "com.netflix.ninja/.MainActivity"],
        "optionsPrefix": ["-d"],
    },
    "primevideo": {
        "package": "com.amazon.amazonvideo.livingroom",
        "friendlyName": "Prime Video",
        "intent": ["-n", "com.amazon.amazonvideo.livingroom/com.amazon.ignition.IgnitionActivity"],
    },
    "settings": {
        "package": "com.android.tv.settings",
        "friendlyName": "Settings",
        "intent": ["-a", "android.settings.SETTINGS"],
    },
}


def parse_app_map(data: Mapping[str, Any]) -> AppMap:
    """Validate a raw app table.

    Each app id maps to one entry or to a list of alternates in preference
    order. App ids are case-insensitive and stored lowercased.

    Args:
        data: Raw table, e.g. parsed JSON

    Returns:
        Read-only mapping of app id to a tuple of entries

    Raises:
        pydantic.ValidationError: If an entry is malformed
        ValueError: If an app id has no entries
    """
    table = {}
    for app_id, value in data.items():
        raw_entries = value if isinstance(value, list) else [value]
        if not raw_entries:
            raise ValueError(f"App '{app_id}' has no entries")
        table[app_id.lower()] = tuple(AppEntry.model_validate(entry) for entry in raw_entries)
    return MappingProxyType(table)


def load_app_map(path: Optional[str] = None) -> AppMap:
    """Load the app table from a JSON file, or the bundled default table."""
    if path is None:
        logger.info("Using default app table")
        return parse_app_map(DEFAULT_APP_MAP)

    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    app_map = parse_app_map(data)
    logger.info(f"Loaded {len(app_map)} apps from {path}")
    return app_map


def resolve_app(app_map: AppMap, app_id: str, installed_packages: Optional[Iterable[str]] = None) -> Optional[AppEntry]:
    """Pick the entry to use for ``app_id``.

    Args:
        app_map: App table
        app_id: DAB app id, case-insensitive
        installed_packages: Packages present on the device; when given the
            first installed alternate wins

    Returns:
        The chosen entry, the first alternate when none is installed, or None
        for an unknown app id
    """
    entries = app_map.get(app_id.lower())
    if not entries:
        return None
    if installed_packages is not None:
        installed = set(installed_packages)
        for entry in entries:
            if entry.package in installed:
                return entry
    return entries[0]


def installed_apps(app_map: AppMap, installed_packages: Iterable[str]) -> Tuple[Tuple[str, AppEntry], ...]:
    """App ids with an installed implementation, paired with the first installed alternate."""
    installed = set(installed_packages)
    found = []
    for app_id, entries in app_map.items():
        for entry in entries:
            if entry.package in installed:
                found.append((app_id, entry))
                break
    return tuple(found)
