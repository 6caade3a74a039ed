import time

import pytest


torch = pytest.importorskip("torch", reason="torch not installed")
transformers = pytest.importorskip("transformers", reason="transformers not installed")


from localmind.engine.adapters.transformers import TransformersAdapter
from localmind.engine.stopping import StoppingController
from localmind.engine.types import GenerationOptions, Turn


class _FakeTokenizer:
    pad_token_id = 0
    eos_token_id = 0

    def __init__(self) -> None:
        self.vocab = {1: "Hi", 2: " there", 3: " again"}
        self.template_kwargs: dict = {}

    def decode(self, ids, *, skip_special_tokens: bool = False):
        _ = skip_special_tokens
        out: list[str] = []
        i = 0
        while i < len(ids):
            # 99 + 100 is one two-token character.
            if ids[i] == 99:
                if i + 1 < len(ids) and ids[i + 1] == 100:
                    out.append("é")
                    i += 2
                    continue
                out.append("�")
                i += 1
                continue
            out.append(self.vocab.get(ids[i], ""))
            i += 1
        return "".join(out)

    def apply_chat_template(self, messages, **kwargs):
        self.template_kwargs = dict(kwargs)
        ids = [[7] * (len(messages) + 2)]
        return transformers.BatchEncoding({"input_ids": torch.tensor(ids), "attention_mask": torch.ones(1, len(ids[0]))})


class _FakeModel:
    device = torch.device("cpu")

    def __init__(self, tokens: list[int], *, delay_s: float = 0.0) -> None:
        self.tokens = tokens
        self.delay_s = delay_s
        self.produced = 0

    def generate(self, input_ids, attention_mask=None, *, max_new_tokens, stopping_criteria, streamer, **kwargs):
        streamer.put(input_ids)
        ids = input_ids
        for token in self.tokens[:max_new_tokens]:
            if bool(stopping_criteria(ids, None).all()):
                break
            if self.delay_s:
                time.sleep(self.delay_s)
            ids = torch.cat([ids, torch.tensor([[token]])], dim=1)
            self.produced += 1
            streamer.put(torch.tensor([token]))
        streamer.end()
        return ids


def _inputs(tokenizer: _FakeTokenizer):
    return tokenizer.apply_chat_template([{"role": "user", "content": "x"}])


def test_prepare_inputs_passes_thinking_flag_and_counts_tokens() -> None:
    adapter = TransformersAdapter(device="cpu")
    tokenizer = _FakeTokenizer()

    _, count = adapter.prepare_inputs(
        tokenizer,
        [Turn("system", "s"), Turn("user", "u")],
        GenerationOptions(enable_thinking=False),
    )

    assert count == 4
    assert tokenizer.template_kwargs["enable_thinking"] is False
    assert tokenizer.template_kwargs["add_generation_prompt"] is True


def test_stream_generate_yields_per_token_deltas() -> None:
    adapter = TransformersAdapter(device="cpu")
    tokenizer = _FakeTokenizer()
    model = _FakeModel([1, 99, 100, 2])

    deltas = list(
        adapter.stream_generate(tokenizer, model, _inputs(tokenizer), max_new_tokens=16, stopping=StoppingController())
    )

    # The half character yields an empty delta instead of a replacement glyph.
    assert deltas == ["Hi", "", "é", " there"]


def test_stream_generate_respects_max_new_tokens() -> None:
    adapter = TransformersAdapter(device="cpu")
    tokenizer = _FakeTokenizer()
    model = _FakeModel([1, 2, 3])

    deltas = list(
        adapter.stream_generate(tokenizer, model, _inputs(tokenizer), max_new_tokens=2, stopping=StoppingController())
    )

    assert "".join(deltas) == "Hi there"


def test_stream_generate_stops_on_interrupt() -> None:
    adapter = TransformersAdapter(device="cpu")
    tokenizer = _FakeTokenizer()
    model = _FakeModel([3] * 200, delay_s=0.005)
    stopping = StoppingController()

    deltas = []
    for delta in adapter.stream_generate(tokenizer, model, _inputs(tokenizer), max_new_tokens=200, stopping=stopping):
        deltas.append(delta)
        if len(deltas) == 2:
            stopping.interrupt()

    assert model.produced < 200
    assert len(deltas) == model.produced
