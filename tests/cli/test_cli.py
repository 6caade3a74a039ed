import asyncio
import json

import pytest

from apps.cli.chat_repl import ChatSession, parse_command
from apps.cli.engine_cmds import EngineCommandError, ask, engine_check, format_metrics, wait_for_load
from apps.cli.main import build_parser, main
from apps.cli.output import format_context, format_progress, mask_secret
from localmind.engine.facades.base import AsyncTaskFacade
from localmind.engine.protocol import CapabilityInfo, Error, Ready
from localmind.engine.router import BackendRouter
from localmind.engine.session import GenerationSession
from localmind.engine.types import GenerationResult
from localmind.settings import SettingsStore


class _FakeFacade(AsyncTaskFacade):
    def __init__(self, kind: str, *, fail_load: bool = False) -> None:
        super().__init__()
        self.backend = kind
        self.fail_load = fail_load

    async def _run_check(self) -> None:
        self._emit_check_result(CapabilityInfo(data={"type": self.backend, "version": "test"}))

    async def _run_load(self, model_id: str) -> None:
        if self.fail_load:
            self._broadcast(Error(f"{model_id} not found"))
            return
        self._broadcast(Ready())

    async def _run_generate(self, turns, options) -> None:
        session = GenerationSession(self._broadcast)
        session.start(3)
        session.on_text(f"{len(turns)}:{turns[-1].content}")
        session.finish()


def _router_factory(*, fail_load: bool = False):
    def factory(settings: SettingsStore) -> BackendRouter:
        return BackendRouter(settings=settings, facade_factory=lambda kind: _FakeFacade(kind, fail_load=fail_load))

    return factory


def test_parser_commands() -> None:
    parser = build_parser()

    args = parser.parse_args(["ask", "qwen3:4b", "hello", "--no-thinking", "--max-tokens", "64"])
    assert (args.command, args.model, args.prompt) == ("ask", "qwen3:4b", "hello")
    assert args.no_thinking is True
    assert args.max_tokens == 64

    args = parser.parse_args(["--log-level", "DEBUG", "models", "--backend", "local-server", "--recommended"])
    assert args.log_level == "DEBUG"
    assert args.backend == "local-server"
    assert args.recommended is True

    with pytest.raises(SystemExit):
        parser.parse_args(["config", "set-key", "mistral", "k"])


def test_config_commands_round_trip(tmp_path, capsys) -> None:
    path = tmp_path / "settings.json"
    base = ["--settings", str(path), "config"]

    assert main([*base, "set-key", "openai", "sk-abcdefghijkl"]) == 0
    assert main([*base, "set-url", "http://gpu-box:11434/"]) == 0
    assert main([*base, "set", "temperature", "0.3"]) == 0
    capsys.readouterr()

    assert main([*base, "show", "--json"]) == 0
    shown = json.loads(capsys.readouterr().out)
    assert shown == {"ollamaUrl": "http://gpu-box:11434", "openaiApiKey": "sk-a...ijkl", "temperature": 0.3}

    assert main([*base, "get", "openaiApiKey"]) == 0
    assert capsys.readouterr().out.strip() == "sk-abcdefghijkl"

    assert main([*base, "rm", "temperature"]) == 0
    assert "temperature" not in json.loads(path.read_text(encoding="utf-8"))


def test_config_errors_exit_nonzero(tmp_path, capsys) -> None:
    base = ["--settings", str(tmp_path / "settings.json"), "config"]

    assert main([*base, "set-url", "gpu-box:11434"]) == 1
    assert "must start with http://" in capsys.readouterr().err
    assert main([*base, "get", "missing"]) == 1
    assert main([*base, "rm", "missing"]) == 1


def test_bad_settings_file_exits_nonzero(tmp_path, capsys) -> None:
    path = tmp_path / "settings.json"
    path.write_text("[]", encoding="utf-8")

    assert main(["--settings", str(path), "config", "show"]) == 1
    assert "JSON object" in capsys.readouterr().err


def test_ask_streams_answer_and_metrics(capsys) -> None:
    settings = SettingsStore(None)

    code = ask(
        settings=settings,
        model="qwen3:4b",
        prompt="hi",
        system="be brief",
        router_factory=_router_factory(),
    )

    captured = capsys.readouterr()
    assert code == 0
    assert captured.out == "2:hi\n"
    assert "tokens=3+" in captured.err


def test_ask_load_failure_is_command_error() -> None:
    with pytest.raises(EngineCommandError, match="not found"):
        ask(settings=SettingsStore(None), model="qwen3:4b", prompt="hi", router_factory=_router_factory(fail_load=True))


def test_check_prints_capability(capsys) -> None:
    code = engine_check(settings=SettingsStore(None), backend="remote-api", router_factory=_router_factory())

    assert code == 0
    assert capsys.readouterr().out.splitlines() == ["type=remote-api", "version=test"]


def test_chat_session_keeps_history(capsys) -> None:
    async def main_() -> ChatSession:
        router = _router_factory()(SettingsStore(None))
        chat = ChatSession(router, system_prompt="sys")
        await wait_for_load(router, "qwen3:4b")
        first = await chat.send("one")
        second = await chat.send("two")
        assert first.text == "2:one"
        assert second.text == "4:two"
        router.terminate()
        return chat

    chat = asyncio.run(main_())

    assert [t.role for t in chat.history] == ["system", "user", "assistant", "user", "assistant"]
    chat.reset()
    assert [t.role for t in chat.history] == ["system"]
    assert chat.last_result is None
    assert capsys.readouterr().out == "2:one\n4:two\n"


def test_parse_command() -> None:
    assert parse_command("hello") is None
    assert parse_command("/Model qwen3:8b") == ("/model", ["qwen3:8b"])
    assert parse_command('/think "on"') == ("/think", ["on"])


def test_output_helpers() -> None:
    assert format_context(131072) == "128k"
    assert format_context(128000) == "128k"
    assert format_context(512) == "512"
    assert mask_secret("short") == "*****"
    assert mask_secret("sk-1234567890") == "sk-1...7890"
    assert format_progress({"status": "downloading", "file": "model", "progress": 42}) == "downloading model 42.0%"
    assert format_progress({}) == "loading"
    result = GenerationResult(text="x", tokens_per_second=12.345, token_count=7, input_tokens=3)
    assert format_metrics(result) == "tok/s=12.35 tokens=3+7"
