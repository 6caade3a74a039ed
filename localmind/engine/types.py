"""Core engine request/result types.

These types are shared by every backend and are intentionally decoupled from:
- the worker channel envelope (see `protocol.py`)
- HTTP transport (FastAPI / SSE)
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Literal


BackendKind = Literal["accelerator", "local-server", "remote-api"]

BACKEND_KINDS: tuple[str, ...] = ("accelerator", "local-server", "remote-api")

DEFAULT_MAX_TOKENS = 4096


class EngineStatus(str, enum.Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    GENERATING = "generating"


@dataclass(frozen=True)
class Turn:
    """One chat turn."""

    role: Literal["system", "user", "assistant"]
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "Turn":
        role = raw.get("role")
        if role not in {"system", "user", "assistant"}:
            raise ValueError(f"Invalid turn role: {role!r}")
        content = raw.get("content")
        if content is None:
            content = ""
        if not isinstance(content, str):
            raise ValueError("Turn content must be a string.")
        return cls(role=role, content=content)


@dataclass(frozen=True)
class GenerationOptions:
    max_tokens: int = DEFAULT_MAX_TOKENS
    enable_thinking: bool = True


@dataclass(frozen=True)
class GenerationRequest:
    """Ordered chat turns plus generation options."""

    turns: list[Turn]
    options: GenerationOptions = field(default_factory=GenerationOptions)


@dataclass(frozen=True)
class GenerationResult:
    """Outcome of one completed generation session."""

    text: str
    tokens_per_second: float | None
    token_count: int
    input_tokens: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "text": self.text,
            "tokensPerSecond": self.tokens_per_second,
            "tokenCount": self.token_count,
            "inputTokens": self.input_tokens,
        }


@dataclass(frozen=True)
class TokenProgress:
    """Per-update statistics forwarded to `generate_full` callers."""

    tokens_per_second: float | None
    token_count: int


@dataclass(frozen=True)
class ModelRef:
    """A model identifier bound to the backend that serves it."""

    kind: BackendKind
    model_id: str

    def __post_init__(self) -> None:
        if self.kind not in BACKEND_KINDS:
            raise ValueError(f"Unknown backend kind: {self.kind!r}")
        if not self.model_id:
            raise ValueError("model_id must be a non-empty string.")
