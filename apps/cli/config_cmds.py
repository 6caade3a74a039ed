from __future__ import annotations

import json
from typing import Any

from apps.cli.output import format_table, mask_secret, print_json
from localmind.engine.catalog import REMOTE_PROVIDERS
from localmind.settings import OLLAMA_URL_KEY, SettingsError, SettingsStore, api_key_setting


class ConfigCommandError(RuntimeError):
    pass


def _is_secret(key: str) -> bool:
    return key.endswith("ApiKey")


def _parse_value(raw: str) -> Any:
    # JSON scalars/objects are stored as such; anything else is a plain string.
    try:
        return json.loads(raw)
    except ValueError:
        return raw


def config_show(*, settings: SettingsStore, json_output: bool = False, reveal: bool = False) -> int:
    items = settings.items()
    shown = {k: (v if reveal or not _is_secret(k) else mask_secret(v)) for k, v in items.items()}
    if json_output:
        print_json(shown)
        return 0
    if settings.path is not None:
        print(f"file={settings.path}")
    if not shown:
        print("No settings.")
        return 0
    rows = [[k, v if isinstance(v, str) else json.dumps(v)] for k, v in sorted(shown.items())]
    print(format_table(["KEY", "VALUE"], rows))
    return 0


def config_get(*, settings: SettingsStore, key: str) -> int:
    value = settings.get(key)
    if value is None:
        raise ConfigCommandError(f"Setting not found: {key}")
    print(value if isinstance(value, str) else json.dumps(value))
    return 0


def config_set(*, settings: SettingsStore, key: str, value: str) -> int:
    if not key.strip():
        raise ConfigCommandError("Setting key must be non-empty.")
    try:
        settings.set(key, _parse_value(value))
    except (OSError, SettingsError) as exc:
        raise ConfigCommandError(f"Failed to save setting {key}: {exc}") from exc
    print(f"set {key}")
    return 0


def config_rm(*, settings: SettingsStore, key: str) -> int:
    if settings.get(key) is None:
        raise ConfigCommandError(f"Setting not found: {key}")
    try:
        settings.remove(key)
    except (OSError, SettingsError) as exc:
        raise ConfigCommandError(f"Failed to remove setting {key}: {exc}") from exc
    print(f"removed {key}")
    return 0


def config_set_url(*, settings: SettingsStore, url: str) -> int:
    url = url.strip().rstrip("/")
    if not url.startswith(("http://", "https://")):
        raise ConfigCommandError(f"Local server URL must start with http:// or https://: {url}")
    settings.set(OLLAMA_URL_KEY, url)
    print(f"local server: {url}")
    return 0


def config_set_key(*, settings: SettingsStore, provider: str, api_key: str) -> int:
    if provider not in REMOTE_PROVIDERS:
        raise ConfigCommandError(f"Unknown provider: {provider}. Available: {', '.join(REMOTE_PROVIDERS)}")
    if not api_key.strip():
        raise ConfigCommandError("API key must be non-empty.")
    settings.set(api_key_setting(provider), api_key.strip())
    print(f"saved API key for {provider}")
    return 0
