"""Connection settings for the Pipedrive and Google Sheets endpoints."""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from typing import Dict

from pipesync import app_paths


logger = logging.getLogger(__name__)


SETTINGS_PATH = str(app_paths.APP_DIR / "settings.json")
CONFIG_STORE_PATH = str(app_paths.APP_DIR / "config_store.json")
DEFAULT_CREDENTIALS_PATH = str(app_paths.CREDENTIALS_DIR / "service_account.json")
DEFAULT_SUBDOMAIN = "api"
DEFAULT_REQUEST_TIMEOUT = 30
DEFAULT_FIELD_CACHE_TTL = 3600

_ENV_OVERRIDES = {
    "api_token": "PIPESYNC_API_TOKEN",
    "subdomain": "PIPESYNC_SUBDOMAIN",
    "spreadsheet_id": "PIPESYNC_SPREADSHEET_ID",
    "credential_path": "PIPESYNC_CREDENTIALS_PATH",
}


@dataclass
class SyncSettings:
    api_token: str = ""
    subdomain: str = DEFAULT_SUBDOMAIN
    spreadsheet_id: str = ""
    credential_path: str = DEFAULT_CREDENTIALS_PATH
    config_store_path: str = CONFIG_STORE_PATH
    request_timeout: int = DEFAULT_REQUEST_TIMEOUT
    field_cache_ttl: int = DEFAULT_FIELD_CACHE_TTL

    def to_json(self) -> Dict[str, object]:
        return {
            "api_token": self.api_token,
            "subdomain": self.subdomain,
            "spreadsheet_id": self.spreadsheet_id,
            "credential_path": self.credential_path,
            "config_store_path": self.config_store_path,
            "request_timeout": self.request_timeout,
            "field_cache_ttl": self.field_cache_ttl,
        }


def _ensure_sync_settings(path: str) -> Dict[str, object]:
    default_settings: Dict[str, object] = SyncSettings().to_json()
    if not os.path.exists(path):
        return dict(default_settings)

    with open(path, "r", encoding="utf-8") as handle:
        data = json.load(handle)

    merged: Dict[str, object] = dict(default_settings)
    if not isinstance(data, dict):
        logger.warning("Ignoring malformed settings file %s", path)
        return merged
    for key, value in data.items():
        if key not in default_settings:
            continue
        if key == "request_timeout":
            try:
                merged[key] = max(5, min(300, int(value)))
            except (TypeError, ValueError):
                merged[key] = default_settings[key]
        elif key == "field_cache_ttl":
            try:
                merged[key] = max(0, int(value))
            except (TypeError, ValueError):
                merged[key] = default_settings[key]
        elif isinstance(value, str):
            merged[key] = value.strip()
    return merged


def load_sync_settings(path: str = SETTINGS_PATH) -> SyncSettings:
    """Load settings from ``path`` and apply ``PIPESYNC_*`` environment overrides."""

    data = _ensure_sync_settings(path)
    for attribute, env_var in _ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value:
            data[attribute] = value.strip()

    return SyncSettings(
        api_token=str(data.get("api_token", "")),
        subdomain=str(data.get("subdomain") or DEFAULT_SUBDOMAIN),
        spreadsheet_id=str(data.get("spreadsheet_id", "")),
        credential_path=str(data.get("credential_path") or DEFAULT_CREDENTIALS_PATH),
        config_store_path=str(data.get("config_store_path") or CONFIG_STORE_PATH),
        request_timeout=int(data.get("request_timeout", DEFAULT_REQUEST_TIMEOUT)),
        field_cache_ttl=int(data.get("field_cache_ttl", DEFAULT_FIELD_CACHE_TTL)),
    )


def save_sync_settings(settings: SyncSettings, path: str = SETTINGS_PATH) -> None:
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)

    with open(path, "w", encoding="utf-8") as handle:
        json.dump(settings.to_json(), handle, indent=2)


__all__ = [
    "SyncSettings",
    "load_sync_settings",
    "save_sync_settings",
    "SETTINGS_PATH",
    "CONFIG_STORE_PATH",
    "DEFAULT_CREDENTIALS_PATH",
]
