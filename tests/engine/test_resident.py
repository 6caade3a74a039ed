import logging

import pytest

from localmind.engine.adapters.base import BaseAdapter
from localmind.engine.errors import ModelLoadError
from localmind.engine.resident import ModelResident


class _FakeModel:
    def __init__(self, model_id: str) -> None:
        self.model_id = model_id
        self.disposed = False


class _FakeAdapter(BaseAdapter):
    def __init__(self, *, fail_load: set[str] = frozenset(), fail_warmup: set[str] = frozenset()) -> None:
        self.fail_load = set(fail_load)
        self.fail_warmup = set(fail_warmup)
        self.loads: list[str] = []
        self.disposed: list[str] = []
        self.dispose_raises = False

    def load_tokenizer(self, model_id, on_progress=None):
        if on_progress is not None:
            on_progress({"status": "done", "file": "tokenizer"})
        return f"tok:{model_id}"

    def load_model(self, model_id, on_progress=None):
        if model_id in self.fail_load:
            raise OSError("repository not found")
        self.loads.append(model_id)
        if on_progress is not None:
            on_progress({"status": "done", "file": "model"})
        return _FakeModel(model_id)

    def warm_up(self, tokenizer, model):
        if model.model_id in self.fail_warmup:
            raise RuntimeError("out of memory")

    def prepare_inputs(self, tokenizer, turns, options):
        return list(turns), len(turns)

    def stream_generate(self, tokenizer, model, inputs, *, max_new_tokens, stopping):
        yield from ()

    def dispose(self, tokenizer, model):
        self.disposed.append(model.model_id)
        model.disposed = True
        if self.dispose_raises:
            raise RuntimeError("driver error")


def test_acquire_same_id_reuses_pair() -> None:
    adapter = _FakeAdapter()
    resident = ModelResident(adapter)

    first = resident.acquire("a/one")
    second = resident.acquire("a/one")

    assert first == second
    assert adapter.loads == ["a/one"]
    assert resident.model_id == "a/one"


def test_swap_disposes_previous_before_loading_next() -> None:
    adapter = _FakeAdapter()
    resident = ModelResident(adapter)
    _, old_model = resident.acquire("a/one")

    resident.acquire("a/two")

    assert old_model.disposed
    assert adapter.disposed == ["a/one"]
    assert resident.model_id == "a/two"


def test_failed_load_leaves_resident_empty() -> None:
    adapter = _FakeAdapter(fail_load={"a/missing"})
    resident = ModelResident(adapter)
    _, old_model = resident.acquire("a/one")

    with pytest.raises(ModelLoadError, match="a/missing"):
        resident.acquire("a/missing")

    assert old_model.disposed
    assert not resident.is_loaded
    assert resident.model_id is None
    assert resident.tokenizer is None


def test_warmup_failure_disposes_new_pair() -> None:
    adapter = _FakeAdapter(fail_warmup={"a/big"})
    resident = ModelResident(adapter)

    with pytest.raises(ModelLoadError, match="Warm-up failed"):
        resident.acquire("a/big")

    assert adapter.disposed == ["a/big"]
    assert not resident.is_loaded


def test_progress_reports_warmup_last() -> None:
    adapter = _FakeAdapter()
    resident = ModelResident(adapter)
    seen = []

    resident.acquire("a/one", on_progress=seen.append)

    assert [d["file"] for d in seen] == ["tokenizer", "model", "model"]
    assert seen[-1]["status"] == "warmup"


def test_dispose_failure_does_not_block_next_load(caplog) -> None:
    adapter = _FakeAdapter()
    resident = ModelResident(adapter)
    resident.acquire("a/one")
    adapter.dispose_raises = True

    with caplog.at_level(logging.WARNING, logger="localmind.engine.resident"):
        resident.acquire("a/two")

    assert resident.model_id == "a/two"
    assert "Failed to dispose" in caplog.text


def test_release_is_idempotent() -> None:
    adapter = _FakeAdapter()
    resident = ModelResident(adapter)
    resident.acquire("a/one")

    resident.release()
    resident.release()

    assert adapter.disposed == ["a/one"]
    assert not resident.is_loaded
