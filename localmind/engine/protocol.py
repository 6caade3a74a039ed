"""Channel envelope shared by engine façades and their transports.

Inbound commands are tagged by ``type``; outbound events are tagged by ``status``.
Field names on the wire are camelCase and must stay stable: the worker side, the
network façades and the HTTP bridge all speak this exact shape.

Decoding an event never raises. Unknown or malformed events are logged and dropped so
a forward-incompatible peer cannot break a session in progress.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar, Union

from .errors import ProtocolError
from .types import GenerationOptions, Turn

logger = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Inbound commands
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class Check:
    type: ClassVar[str] = "check"


@dataclass(frozen=True)
class Load:
    model_id: str
    type: ClassVar[str] = "load"


@dataclass(frozen=True)
class Generate:
    turns: list[Turn]
    options: GenerationOptions = field(default_factory=GenerationOptions)
    type: ClassVar[str] = "generate"


@dataclass(frozen=True)
class Interrupt:
    type: ClassVar[str] = "interrupt"


@dataclass(frozen=True)
class Reset:
    type: ClassVar[str] = "reset"


Command = Union[Check, Load, Generate, Interrupt, Reset]


def encode_command(command: Command) -> dict[str, Any]:
    if isinstance(command, Load):
        return {"type": "load", "modelId": command.model_id}
    if isinstance(command, Generate):
        return {
            "type": "generate",
            "turns": [t.to_dict() for t in command.turns],
            "options": {
                "maxTokens": command.options.max_tokens,
                "enableThinking": command.options.enable_thinking,
            },
        }
    if isinstance(command, (Check, Interrupt, Reset)):
        return {"type": command.type}
    raise ProtocolError(f"Not a command: {command!r}")


def decode_options(raw: Any) -> GenerationOptions:
    if raw is None:
        return GenerationOptions()
    if not isinstance(raw, dict):
        raise ProtocolError("'options' must be an object")
    defaults = GenerationOptions()
    max_tokens = raw.get("maxTokens", defaults.max_tokens)
    enable_thinking = raw.get("enableThinking", defaults.enable_thinking)
    if isinstance(max_tokens, bool) or not isinstance(max_tokens, int) or max_tokens <= 0:
        raise ProtocolError("'options.maxTokens' must be a positive integer")
    if not isinstance(enable_thinking, bool):
        raise ProtocolError("'options.enableThinking' must be a boolean")
    return GenerationOptions(max_tokens=max_tokens, enable_thinking=enable_thinking)


def decode_command(raw: Any) -> Command:
    """Decode an inbound envelope, raising `ProtocolError` when it is not understood."""
    if not isinstance(raw, dict):
        raise ProtocolError("Command envelope must be an object")
    kind = raw.get("type")
    if kind == "check":
        return Check()
    if kind == "interrupt":
        return Interrupt()
    if kind == "reset":
        return Reset()
    if kind == "load":
        model_id = raw.get("modelId")
        if not isinstance(model_id, str) or not model_id:
            raise ProtocolError("'load' requires a non-empty 'modelId'")
        return Load(model_id=model_id)
    if kind == "generate":
        turns_raw = raw.get("turns")
        if not isinstance(turns_raw, list):
            raise ProtocolError("'generate' requires a 'turns' list")
        try:
            turns = [Turn.from_dict(t) for t in turns_raw if isinstance(t, dict)]
        except ValueError as exc:
            raise ProtocolError(str(exc)) from exc
        return Generate(turns=turns, options=decode_options(raw.get("options")))
    raise ProtocolError(f"Unknown command type: {kind!r}")


# -----------------------------------------------------------------------------
# Outbound events
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class Loading:
    data: dict[str, Any] = field(default_factory=dict)
    status: ClassVar[str] = "loading"


@dataclass(frozen=True)
class Ready:
    status: ClassVar[str] = "ready"


@dataclass(frozen=True)
class CapabilityInfo:
    data: dict[str, Any] = field(default_factory=dict)
    status: ClassVar[str] = "capabilityInfo"


@dataclass(frozen=True)
class Start:
    input_tokens: int = 0
    status: ClassVar[str] = "start"


@dataclass(frozen=True)
class Phase:
    name: str
    status: ClassVar[str] = "phase"


@dataclass(frozen=True)
class Thinking:
    content: str
    status: ClassVar[str] = "thinking"


@dataclass(frozen=True)
class ThinkingDone:
    content: str
    status: ClassVar[str] = "thinkingDone"


@dataclass(frozen=True)
class Update:
    output: str
    tokens_per_second: float | None = None
    token_count: int = 0
    status: ClassVar[str] = "update"


@dataclass(frozen=True)
class Complete:
    tokens_per_second: float | None = None
    token_count: int = 0
    input_tokens: int = 0
    status: ClassVar[str] = "complete"


@dataclass(frozen=True)
class Error:
    message: str
    status: ClassVar[str] = "error"


Event = Union[
    Loading, Ready, CapabilityInfo, Start, Phase, Thinking, ThinkingDone, Update, Complete, Error
]

TERMINAL_EVENTS = (Complete, Error)


def is_terminal(event: Event) -> bool:
    return isinstance(event, TERMINAL_EVENTS)


def encode_event(event: Event) -> dict[str, Any]:
    if isinstance(event, (Loading, CapabilityInfo)):
        return {"status": event.status, "data": dict(event.data)}
    if isinstance(event, Ready):
        return {"status": "ready"}
    if isinstance(event, Start):
        return {"status": "start", "inputTokens": event.input_tokens}
    if isinstance(event, Phase):
        return {"status": "phase", "name": event.name}
    if isinstance(event, (Thinking, ThinkingDone)):
        return {"status": event.status, "content": event.content}
    if isinstance(event, Update):
        return {
            "status": "update",
            "output": event.output,
            "tokensPerSecond": event.tokens_per_second,
            "tokenCount": event.token_count,
        }
    if isinstance(event, Complete):
        return {
            "status": "complete",
            "tokensPerSecond": event.tokens_per_second,
            "tokenCount": event.token_count,
            "inputTokens": event.input_tokens,
        }
    if isinstance(event, Error):
        return {"status": "error", "message": event.message}
    raise ProtocolError(f"Not an event: {event!r}")


def _opt_float(value: Any) -> float | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError("expected a number")
    return float(value)


def _int(value: Any, default: int = 0) -> int:
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError("expected an integer")
    return int(value)


def _str(value: Any) -> str:
    if not isinstance(value, str):
        raise TypeError("expected a string")
    return value


def _decode_known(status: str, raw: dict[str, Any]) -> Event:
    if status == "loading":
        return Loading(data=dict(raw.get("data") or {}))
    if status == "ready":
        return Ready()
    if status == "capabilityInfo":
        return CapabilityInfo(data=dict(raw.get("data") or {}))
    if status == "start":
        return Start(input_tokens=_int(raw.get("inputTokens")))
    if status == "phase":
        return Phase(name=_str(raw.get("name")))
    if status == "thinking":
        return Thinking(content=_str(raw.get("content")))
    if status == "thinkingDone":
        return ThinkingDone(content=_str(raw.get("content")))
    if status == "update":
        return Update(
            output=_str(raw.get("output")),
            tokens_per_second=_opt_float(raw.get("tokensPerSecond")),
            token_count=_int(raw.get("tokenCount")),
        )
    if status == "complete":
        return Complete(
            tokens_per_second=_opt_float(raw.get("tokensPerSecond")),
            token_count=_int(raw.get("tokenCount")),
            input_tokens=_int(raw.get("inputTokens")),
        )
    return Error(message=str(raw.get("message") or "Unknown error"))


_EVENT_STATUSES = frozenset(
    {
        "loading",
        "ready",
        "capabilityInfo",
        "start",
        "phase",
        "thinking",
        "thinkingDone",
        "update",
        "complete",
        "error",
    }
)


def decode_event(raw: Any) -> Event | None:
    """Decode an outbound envelope; returns None (and logs) when it is not understood."""
    if not isinstance(raw, dict):
        logger.warning("Ignoring non-object event envelope: %r", raw)
        return None
    status = raw.get("status")
    if status not in _EVENT_STATUSES:
        logger.warning("Ignoring unknown event status: %r", status)
        return None
    try:
        return _decode_known(status, raw)
    except (TypeError, ValueError) as exc:
        logger.warning("Ignoring malformed %r event: %s", status, exc)
        return None


# -----------------------------------------------------------------------------
# Dispatch
# -----------------------------------------------------------------------------


class CommandDispatcher:
    """Routes decoded commands to handlers keyed by command class."""

    def __init__(self) -> None:
        self._handlers: dict[type, Callable[[Any], None]] = {}

    def register(self, command_type: type, handler: Callable[[Any], None]) -> None:
        self._handlers[command_type] = handler

    def handles(self, command: Command) -> bool:
        return type(command) in self._handlers

    def dispatch(self, command: Command) -> None:
        handler = self._handlers.get(type(command))
        if handler is None:
            logger.warning("No handler registered for command %r", command.type)
            return
        handler(command)
