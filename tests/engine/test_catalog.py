import pytest

from localmind.engine.catalog import (
    group_by_context,
    get_model_card,
    list_models,
    match_local_model,
    resolve_model_ref,
    split_provider,
)
from localmind.engine.types import ModelRef


@pytest.mark.parametrize(
    ("identifier", "kind"),
    [
        ("qwen3:4b", "local-server"),
        ("llama3.2", "local-server"),
        ("Qwen/Qwen3-0.6B", "accelerator"),
        ("someorg/custom-model", "accelerator"),
        ("gpt-4o", "remote-api"),
        ("openai/gpt-4o", "remote-api"),
        ("anthropic/claude-3-7-sonnet-latest", "remote-api"),
        ("xai/some-future-model", "remote-api"),
    ],
)
def test_resolve_model_ref_picks_backend(identifier: str, kind: str) -> None:
    ref = resolve_model_ref(identifier)
    assert ref == ModelRef(kind=kind, model_id=identifier)


def test_resolve_model_ref_passes_refs_through_and_rejects_blank() -> None:
    ref = ModelRef(kind="accelerator", model_id="qwen3:4b")
    assert resolve_model_ref(ref) is ref
    assert resolve_model_ref("  qwen3:8b ").model_id == "qwen3:8b"
    with pytest.raises(ValueError):
        resolve_model_ref("   ")


def test_bare_local_server_name_finds_card() -> None:
    card = get_model_card("qwen3")
    assert card is not None
    assert card.model_id == "qwen3:4b"
    assert get_model_card("not-a-model") is None


def test_match_local_model_tags() -> None:
    installed = ["qwen3:4b", "llama3.2:latest", "mistral"]

    assert match_local_model("qwen3:4b", installed) == "qwen3:4b"
    assert match_local_model("llama3.2", installed) == "llama3.2:latest"
    assert match_local_model("mistral:latest", installed) == "mistral"
    assert match_local_model("qwen3:8b", installed) is None
    assert match_local_model("qwen3", installed) is None


def test_split_provider() -> None:
    assert split_provider("openai/gpt-4o") == ("openai", "gpt-4o")
    assert split_provider("claude-3-5-haiku-latest") == ("anthropic", "claude-3-5-haiku-latest")
    assert split_provider("Qwen/Qwen3-4B") == (None, "Qwen/Qwen3-4B")
    assert split_provider("openai/") == (None, "openai/")


def test_list_models_filters() -> None:
    remote = list_models("remote-api")
    assert {c.kind for c in remote} == {"remote-api"}
    assert len(list_models("remote-api", recommended_only=True)) == len(remote) - 1
    assert len(list_models()) == sum(len(list_models(k)) for k in ("accelerator", "local-server", "remote-api"))
    with pytest.raises(ValueError, match="Unknown backend kind"):
        list_models("gpu")


def test_group_by_context_orders_largest_first() -> None:
    groups = group_by_context(list_models("local-server"))

    assert list(groups) == ["256k", "128k", "64k", "32k"]
    assert [c.model_id for c in groups["256k"]] == ["ministral-3:3b", "ministral-3:8b"]
    assert [c.model_id for c in groups["32k"]] == ["gemma3n:e2b"]

    small = group_by_context(list_models("accelerator"))
    assert {c.model_id for c in small["smaller"]} == {"microsoft/Phi-4-mini-instruct", "google/gemma-3-270m-it"}


def test_card_to_dict_keys() -> None:
    card = get_model_card("gpt-4o")
    assert card is not None
    data = card.to_dict()
    assert data["backend"] == "remote-api"
    assert data["provider"] == "openai"
    assert data["contextLength"] == 128000
    assert data["tags"] == []
