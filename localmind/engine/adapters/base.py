"""Base adapter interface for on-device model runtimes."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable, Iterator, Sequence

from ..stopping import StoppingController
from ..types import GenerationOptions, Turn


ProgressCallback = Callable[[dict[str, Any]], None]


class BaseAdapter(ABC):
    """
    Abstract base class for on-device runtimes.

    `ModelResident` owns the objects returned by `load_tokenizer` / `load_model` and
    hands them back on every call, so adapters hold no per-model state of their own.
    """

    @abstractmethod
    def load_tokenizer(self, model_id: str, on_progress: ProgressCallback | None = None) -> Any:
        """
        Fetch and construct the tokenizer for `model_id`.

        Args:
            model_id: Hub repository id or local path.
            on_progress: Receives `{status, file, progress, ...}` dicts while fetching.
        """
        pass

    @abstractmethod
    def load_model(self, model_id: str, on_progress: ProgressCallback | None = None) -> Any:
        """Fetch the model weights and place them on the target device."""
        pass

    @abstractmethod
    def warm_up(self, tokenizer: Any, model: Any) -> None:
        """Run one generation of length 1 so deferred compilation happens before ready."""
        pass

    @abstractmethod
    def prepare_inputs(
        self,
        tokenizer: Any,
        turns: Sequence[Turn],
        options: GenerationOptions,
    ) -> tuple[Any, int]:
        """
        Render chat turns into model inputs.

        Returns:
            `(inputs, input_token_count)`.
        """
        pass

    @abstractmethod
    def stream_generate(
        self,
        tokenizer: Any,
        model: Any,
        inputs: Any,
        *,
        max_new_tokens: int,
        stopping: StoppingController,
    ) -> Iterator[str]:
        """
        Stream generated text, one item per produced token.

        Items are text deltas and may be empty when a token does not yet decode to
        printable text. Implementations must stop producing tokens soon after
        `stopping.should_stop()` turns true.
        """
        pass

    @abstractmethod
    def dispose(self, tokenizer: Any, model: Any) -> None:
        """Release in-memory and accelerator state (never the on-disk artifact cache)."""
        pass

    def has_capability(self) -> bool:
        from localmind import runtime

        return runtime.has_capability()

    def describe_capability(self) -> dict[str, Any]:
        from localmind import runtime

        return runtime.describe_capability()
