"""Persistent key/value settings and the credential provider built on them."""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Iterable, Mapping

logger = logging.getLogger(__name__)


# Environment fallbacks for `<provider>ApiKey` settings.
_PROVIDER_ENV_VARS: dict[str, str] = {
    "openai": "OPENAI_API_KEY",
    "xai": "XAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
}

OLLAMA_URL_KEY = "ollamaUrl"


class SettingsError(RuntimeError):
    pass


def config_dir() -> Path:
    xdg_config_home = os.environ.get("XDG_CONFIG_HOME")
    base = Path(xdg_config_home) if xdg_config_home else (Path.home() / ".config")
    return base / "localmind"


def settings_path(*, base_dir: Path | None = None) -> Path:
    return (base_dir or config_dir()) / "settings.json"


def api_key_setting(provider: str) -> str:
    return f"{provider}ApiKey"


class SettingsStore:
    """JSON-object settings file with atomic writes.

    With `path=None` the store lives in memory only.
    """

    def __init__(self, path: Path | None = None, *, initial: Mapping[str, Any] | None = None) -> None:
        self._path = path
        self._lock = threading.Lock()
        self._data: dict[str, Any] = dict(initial or {})
        if path is not None and path.exists():
            self._data.update(self._read(path))

    @classmethod
    def default(cls) -> "SettingsStore":
        return cls(settings_path())

    @property
    def path(self) -> Path | None:
        return self._path

    @staticmethod
    def _read(path: Path) -> dict[str, Any]:
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise SettingsError(f"Failed to read settings file: {path}") from exc
        if not isinstance(raw, dict):
            raise SettingsError(f"Settings file must contain a JSON object: {path}")
        return raw

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._data.get(key, default)

    def get_many(self, keys: Iterable[str]) -> dict[str, Any]:
        with self._lock:
            return {k: self._data.get(k) for k in keys}

    def items(self) -> dict[str, Any]:
        with self._lock:
            return dict(self._data)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = value
            self._save_locked()

    def remove(self, key: str) -> None:
        with self._lock:
            if key not in self._data:
                return
            del self._data[key]
            self._save_locked()

    def _save_locked(self) -> None:
        p = self._path
        if p is None:
            return
        p.parent.mkdir(parents=True, exist_ok=True)
        encoded = json.dumps(self._data, ensure_ascii=False, indent=2, sort_keys=True) + "\n"

        tmp_path: Path | None = None
        try:
            with tempfile.NamedTemporaryFile(
                mode="w",
                encoding="utf-8",
                dir=str(p.parent),
                delete=False,
                prefix=".settings.",
                suffix=".tmp",
            ) as f:
                f.write(encoded)
                tmp_path = Path(f.name)
            tmp_path.replace(p)
        finally:
            if tmp_path is not None:
                try:
                    tmp_path.unlink(missing_ok=True)
                except OSError:
                    pass


class SettingsCredentialProvider:
    """Supplies API tokens from `<provider>ApiKey` settings, then the environment."""

    def __init__(self, settings: SettingsStore, *, environ: Mapping[str, str] | None = None) -> None:
        self._settings = settings
        self._environ = os.environ if environ is None else environ

    def get_token(self, provider: str) -> str | None:
        token = self._settings.get(api_key_setting(provider))
        if isinstance(token, str) and token.strip():
            return token.strip()
        env_var = _PROVIDER_ENV_VARS.get(provider)
        if env_var:
            token = self._environ.get(env_var)
            if token and token.strip():
                return token.strip()
        logger.debug("No credential configured for provider %s", provider)
        return None
