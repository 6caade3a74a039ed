"""Hugging Face Transformers runtime for the accelerator backend."""

from __future__ import annotations

import logging
import queue
import threading
from typing import TYPE_CHECKING, Any, Iterator, Sequence

from ..stopping import StoppingController
from ..types import GenerationOptions, Turn
from .base import BaseAdapter, ProgressCallback

if TYPE_CHECKING:
    import torch

logger = logging.getLogger(__name__)


def _report(on_progress: ProgressCallback | None, **data: Any) -> None:
    if on_progress is not None:
        on_progress(data)


class TransformersAdapter(BaseAdapter):
    """
    Runs causal LMs through `AutoTokenizer` / `AutoModelForCausalLM`.

    Downloaded artifacts live in the shared Hugging Face cache and survive `dispose()`.
    """

    def __init__(
        self,
        *,
        device: str = "auto",
        dtype: str = "auto",
        trust_remote_code: bool = False,
    ) -> None:
        self._device_pref = device
        self._dtype_pref = dtype
        self._trust_remote_code = bool(trust_remote_code)

    # -------------------------------------------------------------------------
    # Loading / Unloading
    # -------------------------------------------------------------------------

    def load_tokenizer(self, model_id: str, on_progress: ProgressCallback | None = None) -> Any:
        from transformers import AutoTokenizer

        _report(on_progress, status="initiate", file="tokenizer", progress=0.0)
        tokenizer = AutoTokenizer.from_pretrained(model_id, trust_remote_code=self._trust_remote_code)
        _report(on_progress, status="done", file="tokenizer", progress=100.0)
        return tokenizer

    def load_model(self, model_id: str, on_progress: ProgressCallback | None = None) -> Any:
        from transformers import AutoModelForCausalLM

        from localmind.runtime import resolve_device, resolve_dtype

        device = resolve_device(self._device_pref)
        dtype = resolve_dtype(self._dtype_pref, device=device)

        _report(on_progress, status="initiate", file="model", progress=0.0, device=device)
        model = AutoModelForCausalLM.from_pretrained(
            model_id,
            torch_dtype=dtype,
            trust_remote_code=self._trust_remote_code,
        )
        model.to(device)
        model.eval()
        _report(on_progress, status="done", file="model", progress=100.0, device=device)
        logger.info("Loaded %s on %s (%s)", model_id, device, dtype)
        return model

    def warm_up(self, tokenizer: Any, model: Any) -> None:
        import torch

        encoded = tokenizer("a", return_tensors="pt").to(model.device)
        with torch.no_grad():
            model.generate(
                **encoded,
                max_new_tokens=1,
                do_sample=False,
                pad_token_id=tokenizer.pad_token_id or tokenizer.eos_token_id,
            )

    def dispose(self, tokenizer: Any, model: Any) -> None:
        import gc

        import torch

        del model
        del tokenizer
        gc.collect()
        if torch.cuda.is_available():
            torch.cuda.empty_cache()
        mps = getattr(torch, "mps", None)
        if mps is not None and getattr(torch.backends, "mps", None) and torch.backends.mps.is_available():
            mps.empty_cache()

    # -------------------------------------------------------------------------
    # Generation
    # -------------------------------------------------------------------------

    def prepare_inputs(
        self,
        tokenizer: Any,
        turns: Sequence[Turn],
        options: GenerationOptions,
    ) -> tuple[Any, int]:
        messages = [t.to_dict() for t in turns]
        encoded = tokenizer.apply_chat_template(
            messages,
            add_generation_prompt=True,
            tokenize=True,
            return_dict=True,
            return_tensors="pt",
            enable_thinking=bool(options.enable_thinking),
        )
        return encoded, int(encoded["input_ids"].shape[1])

    def stream_generate(
        self,
        tokenizer: Any,
        model: Any,
        inputs: Any,
        *,
        max_new_tokens: int,
        stopping: StoppingController,
    ) -> Iterator[str]:
        """Stream per-token text deltas.

        HF's generate() is blocking, so it runs in a background thread and hands token
        ids back through a queue; text is re-decoded from all generated ids so multi-token
        characters come out whole.
        """
        import torch
        from transformers.generation.stopping_criteria import StoppingCriteria, StoppingCriteriaList
        from transformers.generation.streamers import BaseStreamer

        inputs = inputs.to(model.device)
        token_queue: queue.Queue[int | BaseException | None] = queue.Queue()
        abandoned = threading.Event()

        class _ControllerCriteria(StoppingCriteria):
            def __call__(self, input_ids: torch.Tensor, scores: torch.Tensor, **kwargs) -> torch.Tensor:
                stop = stopping.should_stop() or abandoned.is_set()
                return torch.full((input_ids.shape[0],), stop, dtype=torch.bool, device=input_ids.device)

        class _TokenStreamer(BaseStreamer):
            def __init__(self) -> None:
                self._prompt_skipped = False

            def put(self, value: torch.Tensor) -> None:
                # The first put() carries the prompt.
                if not self._prompt_skipped:
                    self._prompt_skipped = True
                    return
                # Batch of one: 1D is one new token, 2D is a run of new tokens.
                ids = value[0].tolist() if value.dim() > 1 else value[:1].tolist()
                for token_id in ids:
                    token_queue.put(int(token_id))

            def end(self) -> None:
                token_queue.put(None)

        def _run_generate() -> None:
            try:
                with torch.no_grad():
                    model.generate(
                        **inputs,
                        max_new_tokens=int(max_new_tokens),
                        do_sample=False,
                        pad_token_id=tokenizer.pad_token_id or tokenizer.eos_token_id,
                        stopping_criteria=StoppingCriteriaList([_ControllerCriteria()]),
                        streamer=_TokenStreamer(),
                    )
            except Exception as exc:
                token_queue.put(exc)
                token_queue.put(None)

        thread = threading.Thread(target=_run_generate, name="localmind-hf-generate", daemon=True)
        thread.start()

        generated: list[int] = []
        emitted = ""
        try:
            while True:
                item = token_queue.get()
                if item is None:
                    break
                if isinstance(item, BaseException):
                    raise item
                generated.append(item)
                text = tokenizer.decode(generated, skip_special_tokens=True)
                if text.endswith("\ufffd"):
                    # Incomplete multi-byte character; wait for the next token.
                    yield ""
                    continue
                delta = text[len(emitted) :] if text.startswith(emitted) else text
                emitted = text
                yield delta
        finally:
            abandoned.set()
            thread.join()
