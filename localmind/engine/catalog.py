"""Known models per backend, and resolution of identifiers to backends."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Sequence

from .types import BACKEND_KINDS, BackendKind, ModelRef


@dataclass(frozen=True)
class ModelCard:
    model_id: str
    name: str
    kind: BackendKind
    description: str = ""
    context_length: int = 32768
    size: str | None = None
    provider: str | None = None
    tags: tuple[str, ...] = field(default_factory=tuple)
    recommended: bool = False

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.model_id,
            "name": self.name,
            "backend": self.kind,
            "description": self.description,
            "contextLength": self.context_length,
            "size": self.size,
            "provider": self.provider,
            "tags": list(self.tags),
            "recommended": self.recommended,
        }


ACCELERATOR_MODELS: tuple[ModelCard, ...] = (
    ModelCard("Qwen/Qwen3-0.6B", "Qwen3 0.6B", "accelerator", "Fastest, best for quick answers", 32768, "~1.2 GB", tags=("reasoning",)),
    ModelCard("Qwen/Qwen3-1.7B", "Qwen3 1.7B", "accelerator", "Balanced speed and quality", 32768, "~3.4 GB", tags=("reasoning",)),
    ModelCard("Qwen/Qwen3-4B", "Qwen3 4B", "accelerator", "Better reasoning, slower", 32768, "~8 GB", tags=("reasoning",), recommended=True),
    ModelCard("deepseek-ai/DeepSeek-R1-Distill-Qwen-1.5B", "DeepSeek R1 1.5B", "accelerator", "Strong reasoning, CoT focused", 32768, "~3.5 GB", tags=("reasoning", "cot")),
    ModelCard("microsoft/Phi-4-mini-instruct", "Phi-4 Mini", "accelerator", "Microsoft, good at reasoning", 16384, "~7.7 GB"),
    ModelCard("google/gemma-3-270m-it", "Gemma 3 270M", "accelerator", "Smallest, ultra fast, short inputs only", 8192, "~0.5 GB", tags=("fast",)),
)

LOCAL_SERVER_MODELS: tuple[ModelCard, ...] = (
    ModelCard("qwen3:4b", "Qwen3 4B", "local-server", "128k context, enhanced reasoning", 131072, "4B", tags=("multilingual", "reasoning"), recommended=True),
    ModelCard("qwen3:8b", "Qwen3 8B", "local-server", "Powerful reasoning, 128k context", 131072, "8B", tags=("multilingual", "reasoning"), recommended=True),
    ModelCard("qwen3:14b", "Qwen3 14B", "local-server", "Most capable Qwen3, complex tasks", 131072, "14B", tags=("reasoning", "advanced"), recommended=True),
    ModelCard("ministral-3:3b", "Ministral 3 3B", "local-server", "Smallest Ministral, 256k context", 262144, "3B", tags=("fast", "long-context"), recommended=True),
    ModelCard("ministral-3:8b", "Ministral 3 8B", "local-server", "Balanced, 256k context", 262144, "8B", tags=("long-context",), recommended=True),
    ModelCard("gpt-oss:20b", "GPT-OSS 20B", "local-server", "Open-weight reasoning model", 131072, "20B", tags=("reasoning", "cot"), recommended=True),
    ModelCard("gemma3:4b", "Gemma3 4B", "local-server", "128k context, multimodal", 131072, "4B", tags=("multimodal",), recommended=True),
    ModelCard("gemma3:12b", "Gemma3 12B", "local-server", "Powerful multimodal, 128k context", 131072, "12B", tags=("multimodal", "advanced"), recommended=True),
    ModelCard("gemma3n:e2b", "Gemma3N E2B", "local-server", "Efficient 2B effective", 32768, "2B", tags=("efficient",)),
    ModelCard("deepseek-r1:7b", "DeepSeek R1 7B", "local-server", "Chain-of-thought reasoning", 65536, "7B", tags=("reasoning", "cot"), recommended=True),
    ModelCard("deepseek-r1:14b", "DeepSeek R1 14B", "local-server", "Advanced CoT reasoning", 65536, "14B", tags=("reasoning", "cot"), recommended=True),
)

REMOTE_API_MODELS: tuple[ModelCard, ...] = (
    ModelCard("gpt-4.5-preview", "GPT-4.5 Preview", "remote-api", "OpenAI frontier model", 128000, provider="openai", recommended=True),
    ModelCard("gpt-4o", "GPT-4o", "remote-api", "OpenAI previous flagship", 128000, provider="openai", recommended=True),
    ModelCard("o3-mini", "o3-mini", "remote-api", "Fast reasoning model", 200000, provider="openai", recommended=True),
    ModelCard("claude-3-7-sonnet-latest", "Claude 3.7 Sonnet", "remote-api", "Anthropic's most intelligent model", 200000, provider="anthropic", recommended=True),
    ModelCard("claude-3-5-haiku-latest", "Claude 3.5 Haiku", "remote-api", "Fastest and most compact", 200000, provider="anthropic", recommended=True),
    ModelCard("grok-3-latest", "Grok 3", "remote-api", "xAI frontier model", 128000, provider="xai", recommended=True),
    ModelCard("grok-2-latest", "Grok 2", "remote-api", "xAI previous model", 128000, provider="xai"),
)

_CATALOGS: dict[str, tuple[ModelCard, ...]] = {
    "accelerator": ACCELERATOR_MODELS,
    "local-server": LOCAL_SERVER_MODELS,
    "remote-api": REMOTE_API_MODELS,
}

REMOTE_PROVIDERS: tuple[str, ...] = ("openai", "xai", "anthropic")


def list_models(kind: str | None = None, *, recommended_only: bool = False) -> list[ModelCard]:
    if kind is not None and kind not in _CATALOGS:
        raise ValueError(f"Unknown backend kind: {kind!r}. Available: {', '.join(BACKEND_KINDS)}")
    kinds = [kind] if kind is not None else list(BACKEND_KINDS)
    cards = [card for k in kinds for card in _CATALOGS[k]]
    if recommended_only:
        cards = [c for c in cards if c.recommended]
    return cards


def get_model_card(model_id: str) -> ModelCard | None:
    for cards in _CATALOGS.values():
        for card in cards:
            if card.model_id == model_id:
                return card
    # Local server names may be given without a tag ("qwen3" for "qwen3:4b").
    for card in LOCAL_SERVER_MODELS:
        if card.model_id.startswith(model_id + ":"):
            return card
    return None


def match_local_model(requested: str, installed: Iterable[str]) -> str | None:
    """Find the installed local-server model serving `requested`.

    Exact `name:tag` wins; a bare name matches its `:latest` tag.
    """
    names = [n for n in installed if n]
    if requested in names:
        return requested
    if ":" not in requested:
        latest = f"{requested}:latest"
        if latest in names:
            return latest
    elif requested.endswith(":latest"):
        bare = requested[: -len(":latest")]
        if bare in names:
            return bare
    return None


def group_by_context(cards: Sequence[ModelCard]) -> dict[str, list[ModelCard]]:
    """Bucket cards by context window size (largest first)."""
    groups: dict[str, list[ModelCard]] = {"256k": [], "128k": [], "64k": [], "32k": [], "smaller": []}
    for card in cards:
        if card.context_length >= 262144:
            groups["256k"].append(card)
        elif card.context_length >= 128000:
            groups["128k"].append(card)
        elif card.context_length >= 65536:
            groups["64k"].append(card)
        elif card.context_length >= 32768:
            groups["32k"].append(card)
        else:
            groups["smaller"].append(card)
    return {k: v for k, v in groups.items() if v}


def split_provider(model_id: str) -> tuple[str | None, str]:
    """Split `provider/model` for remote-api identifiers; catalog entries know their provider."""
    head, sep, tail = model_id.partition("/")
    if sep and head in REMOTE_PROVIDERS and tail:
        return head, tail
    card = get_model_card(model_id)
    if card is not None and card.kind == "remote-api":
        return card.provider, model_id
    return None, model_id


def resolve_model_ref(identifier: str | ModelRef) -> ModelRef:
    """Decide once which backend serves `identifier`.

    A `ModelRef` is returned unchanged. For strings: a catalog entry wins; a known
    provider prefix (`openai/`, `xai/`, `anthropic/`) means remote-api; any other
    `namespace/name` is a hub repository for the accelerator; everything else is a
    local-server model name.
    """
    if isinstance(identifier, ModelRef):
        return identifier
    model_id = identifier.strip()
    if not model_id:
        raise ValueError("Model identifier must be a non-empty string.")
    card = get_model_card(model_id)
    if card is not None:
        return ModelRef(kind=card.kind, model_id=model_id)
    provider, _ = split_provider(model_id)
    if provider is not None:
        return ModelRef(kind="remote-api", model_id=model_id)
    if "/" in model_id:
        return ModelRef(kind="accelerator", model_id=model_id)
    return ModelRef(kind="local-server", model_id=model_id)
