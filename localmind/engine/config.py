from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping

from .types import BACKEND_KINDS


DEFAULT_LOCAL_SERVER_URL = "http://localhost:11434"


def _env_bool(raw: str) -> bool:
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class EngineConfig:
    """Engine-wide defaults shared by all backends."""

    device: str = "auto"
    dtype: str = "auto"
    local_server_url: str = DEFAULT_LOCAL_SERVER_URL
    connect_timeout_s: float = 5.0
    request_timeout_s: float = 300.0
    auto_pull: bool = True
    temperature: float = 0.7
    default_backend: str = "accelerator"
    anthropic_version: str = "2023-06-01"
    worker_join_timeout_s: float = 30.0

    def __post_init__(self) -> None:
        if self.default_backend not in BACKEND_KINDS:
            raise ValueError(f"Unknown default_backend: {self.default_backend!r}")
        if self.connect_timeout_s <= 0 or self.request_timeout_s <= 0:
            raise ValueError("Timeouts must be > 0")
        if self.worker_join_timeout_s <= 0:
            raise ValueError("worker_join_timeout_s must be > 0")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "EngineConfig":
        env = os.environ if environ is None else environ
        kwargs: dict[str, object] = {}
        if env.get("LOCALMIND_DEVICE"):
            kwargs["device"] = env["LOCALMIND_DEVICE"]
        if env.get("LOCALMIND_DTYPE"):
            kwargs["dtype"] = env["LOCALMIND_DTYPE"]
        if env.get("LOCALMIND_SERVER_URL"):
            kwargs["local_server_url"] = env["LOCALMIND_SERVER_URL"]
        if env.get("LOCALMIND_CONNECT_TIMEOUT"):
            kwargs["connect_timeout_s"] = float(env["LOCALMIND_CONNECT_TIMEOUT"])
        if env.get("LOCALMIND_REQUEST_TIMEOUT"):
            kwargs["request_timeout_s"] = float(env["LOCALMIND_REQUEST_TIMEOUT"])
        if env.get("LOCALMIND_AUTO_PULL"):
            kwargs["auto_pull"] = _env_bool(env["LOCALMIND_AUTO_PULL"])
        if env.get("LOCALMIND_TEMPERATURE"):
            kwargs["temperature"] = float(env["LOCALMIND_TEMPERATURE"])
        if env.get("LOCALMIND_DEFAULT_BACKEND"):
            kwargs["default_backend"] = env["LOCALMIND_DEFAULT_BACKEND"]
        return cls(**kwargs)  # type: ignore[arg-type]
