"""The currently loaded model + tokenizer of the accelerator backend."""

from __future__ import annotations

import logging
from typing import Any

from .adapters.base import BaseAdapter, ProgressCallback
from .errors import ModelLoadError

logger = logging.getLogger(__name__)


class ModelResident:
    """Holds at most one loaded `(tokenizer, model)` pair.

    Switching identifiers disposes the previous pair before the new one is fetched, so
    two models never occupy accelerator memory at once. A failed load leaves the resident
    empty rather than pointing at released objects.
    """

    def __init__(self, adapter: BaseAdapter) -> None:
        self._adapter = adapter
        self._model_id: str | None = None
        self._tokenizer: Any = None
        self._model: Any = None

    @property
    def adapter(self) -> BaseAdapter:
        return self._adapter

    @property
    def model_id(self) -> str | None:
        return self._model_id

    @property
    def is_loaded(self) -> bool:
        return self._model is not None

    @property
    def tokenizer(self) -> Any:
        return self._tokenizer

    @property
    def model(self) -> Any:
        return self._model

    def acquire(self, model_id: str, on_progress: ProgressCallback | None = None) -> tuple[Any, Any]:
        """Return the resident pair for `model_id`, loading (and warming up) if needed.

        Raises:
            ModelLoadError: If fetching, constructing or warming up the model fails.
        """
        if self.is_loaded and model_id == self._model_id:
            return self._tokenizer, self._model

        self.release()

        logger.info("Loading model %s", model_id)
        try:
            tokenizer = self._adapter.load_tokenizer(model_id, on_progress)
            model = self._adapter.load_model(model_id, on_progress)
        except Exception as exc:
            raise ModelLoadError(f"Failed to load {model_id}: {exc}") from exc

        if on_progress is not None:
            on_progress({"status": "warmup", "file": "model"})
        try:
            self._adapter.warm_up(tokenizer, model)
        except Exception as exc:
            self._dispose_pair(model_id, tokenizer, model)
            raise ModelLoadError(f"Warm-up failed for {model_id}: {exc}") from exc

        self._model_id = model_id
        self._tokenizer = tokenizer
        self._model = model
        logger.info("Model %s is ready", model_id)
        return tokenizer, model

    def release(self) -> None:
        """Dispose the held pair, if any. Never raises."""
        if self._model is None and self._tokenizer is None:
            self._model_id = None
            return
        model_id, tokenizer, model = self._model_id, self._tokenizer, self._model
        self._model_id = None
        self._tokenizer = None
        self._model = None
        self._dispose_pair(model_id, tokenizer, model)

    def _dispose_pair(self, model_id: str | None, tokenizer: Any, model: Any) -> None:
        try:
            self._adapter.dispose(tokenizer, model)
        except Exception:
            logger.warning("Failed to dispose model %s; continuing", model_id, exc_info=True)
