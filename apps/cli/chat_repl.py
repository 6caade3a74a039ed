from __future__ import annotations

import asyncio
import atexit
import shlex
import signal
import sys
from pathlib import Path

# Enable readline for arrow keys, history navigation, and line editing.
try:
    import readline
except ImportError:
    readline = None  # type: ignore[assignment]  # Windows fallback

from apps.cli.engine_cmds import (
    RouterFactory,
    StreamPrinter,
    build_router,
    format_metrics,
    run_turn,
    wait_for_load,
)
from localmind.engine.errors import EngineError, ModelLoadError
from localmind.engine.router import BackendRouter
from localmind.engine.types import GenerationOptions, GenerationResult, Turn
from localmind.settings import SettingsStore, config_dir


class ChatReplError(RuntimeError):
    pass


_CHAT_COMMANDS = ["/help", "/exit", "/reset", "/model", "/think", "/stats", "/info"]


def _chat_history_file_path() -> Path:
    return config_dir() / "chat_history"


def _setup_readline_history() -> None:
    """Set up persistent command history for the REPL."""
    if readline is None:
        return
    history_file = _chat_history_file_path()
    history_file.parent.mkdir(parents=True, exist_ok=True)
    try:
        readline.read_history_file(history_file)
    except FileNotFoundError:
        pass
    readline.set_history_length(1000)
    atexit.register(readline.write_history_file, history_file)


def _setup_completer() -> None:
    if readline is None:
        return

    def completer(text: str, state: int) -> str | None:
        matches = [cmd for cmd in _CHAT_COMMANDS if cmd.startswith(text)] if text.startswith("/") else []
        return matches[state] if state < len(matches) else None

    readline.set_completer(completer)
    readline.set_completer_delims(" \t\n")
    readline.parse_and_bind("tab: complete")


def parse_command(line: str) -> tuple[str, list[str]] | None:
    """Split a `/command arg...` line; returns None for ordinary chat input."""
    if not line.startswith("/"):
        return None
    try:
        parts = shlex.split(line)
    except ValueError:
        parts = line.split()
    return parts[0].lower(), parts[1:]


def _cmd_help() -> None:
    print(
        "\n".join(
            [
                "commands:",
                "  /help",
                "  /exit             exit (Ctrl-D also exits)",
                "  /reset            forget the conversation",
                "  /model <id>       load another model (may switch backend)",
                "  /think on|off     toggle reasoning for supported models",
                "  /stats            show last turn metrics",
                "  /info             show the active backend and model",
                "Ctrl-C during an answer stops it.",
            ]
        )
    )


class ChatSession:
    """Conversation state for one REPL run."""

    def __init__(
        self,
        router: BackendRouter,
        *,
        system_prompt: str | None = None,
        max_tokens: int = 4096,
        enable_thinking: bool = True,
        show_thinking: bool = False,
    ) -> None:
        self.router = router
        self.system_prompt = system_prompt
        self.max_tokens = max_tokens
        self.enable_thinking = enable_thinking
        self.show_thinking = show_thinking
        self.history: list[Turn] = []
        self.last_result: GenerationResult | None = None
        self.reset()

    def reset(self) -> None:
        self.history = [Turn("system", self.system_prompt)] if self.system_prompt else []
        self.last_result = None

    @property
    def options(self) -> GenerationOptions:
        return GenerationOptions(max_tokens=self.max_tokens, enable_thinking=self.enable_thinking)

    async def send(self, text: str) -> GenerationResult:
        turns = [*self.history, Turn("user", text)]
        result = await run_turn(self.router, turns, self.options, StreamPrinter(show_thinking=self.show_thinking))
        # An interrupted answer is kept as-is so the next turn sees what the user saw.
        self.history = [*turns, Turn("assistant", result.text)]
        self.last_result = result
        return result

    def on_sigint(self) -> None:
        facade = self.router.facade
        if facade is not None and facade.is_generating:
            print("^C", file=sys.stderr)
            self.router.interrupt()
        else:
            print("^C (use /exit or Ctrl-D to quit)", file=sys.stderr)


def _install_sigint(loop: asyncio.AbstractEventLoop, chat: ChatSession) -> bool:
    try:
        loop.add_signal_handler(signal.SIGINT, chat.on_sigint)
    except (NotImplementedError, RuntimeError):
        # No loop signal handlers on this platform; Ctrl-C falls back to the default.
        return False
    return True


async def _handle_command(chat: ChatSession, name: str, args: list[str]) -> bool:
    """Run a slash command. Returns False when the REPL should exit."""
    if name in {"/exit", "/quit"}:
        return False
    if name == "/help":
        _cmd_help()
    elif name == "/reset":
        chat.reset()
        chat.router.reset()
        print("conversation cleared")
    elif name == "/model":
        if not args:
            print("usage: /model <id>", file=sys.stderr)
            return True
        try:
            ref = await wait_for_load(chat.router, args[0], progress=sys.stderr)
        except ModelLoadError as exc:
            print(f"error: {exc}", file=sys.stderr)
            return True
        chat.reset()
        print(f"model={ref.model_id} backend={ref.kind}")
    elif name == "/think":
        if args and args[0].lower() in {"on", "off"}:
            chat.enable_thinking = args[0].lower() == "on"
        print(f"thinking={'on' if chat.enable_thinking else 'off'}")
    elif name == "/stats":
        if chat.last_result is None:
            print("(no turns yet)")
        else:
            print(format_metrics(chat.last_result))
    elif name == "/info":
        info = chat.router.get_model_info()
        print(f"backend={info['backend']} model={info['modelId']} status={info['status']}")
    else:
        print(f"unknown command: {name} (try /help)", file=sys.stderr)
    return True


async def _chat_loop(chat: ChatSession, model: str) -> int:
    loop = asyncio.get_running_loop()
    ref = await wait_for_load(chat.router, model, progress=sys.stderr)
    print(f"model={ref.model_id} backend={ref.kind}")
    print("type /help for commands")

    sigint_installed = _install_sigint(loop, chat)
    try:
        while True:
            try:
                raw = await asyncio.to_thread(input, "you> ")
            except EOFError:
                print()
                return 0

            line = raw.strip()
            if not line:
                continue

            command = parse_command(line)
            if command is not None:
                if not await _handle_command(chat, *command):
                    return 0
                continue

            try:
                await chat.send(line)
            except EngineError as exc:
                print(f"error: {exc}", file=sys.stderr)
    finally:
        if sigint_installed:
            loop.remove_signal_handler(signal.SIGINT)


def chat_repl(
    *,
    settings: SettingsStore,
    model: str,
    system_prompt: str | None = None,
    max_tokens: int = 4096,
    enable_thinking: bool = True,
    show_thinking: bool = False,
    router_factory: RouterFactory = build_router,
) -> int:
    _setup_readline_history()
    _setup_completer()

    async def _run() -> int:
        router = router_factory(settings)
        chat = ChatSession(
            router,
            system_prompt=system_prompt,
            max_tokens=max_tokens,
            enable_thinking=enable_thinking,
            show_thinking=show_thinking,
        )
        try:
            return await _chat_loop(chat, model)
        finally:
            router.terminate()

    try:
        return asyncio.run(_run())
    except ModelLoadError as exc:
        raise ChatReplError(f"Failed to load {model}: {exc}") from exc
    except ValueError as exc:
        raise ChatReplError(str(exc)) from exc
    except KeyboardInterrupt:
        print()
        return 130
