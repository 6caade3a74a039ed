"""`localmind`: chat with local and hosted models from the terminal.

This is the CLI entrypoint. Run from source with:
  `python -m apps.cli.main --help`
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Sequence

from apps.cli.chat_repl import ChatReplError, chat_repl
from apps.cli.config_cmds import (
    ConfigCommandError,
    config_get,
    config_rm,
    config_set,
    config_set_key,
    config_set_url,
    config_show,
)
from apps.cli.engine_cmds import EngineCommandError, ask, engine_check, models_ls
from localmind.engine.catalog import REMOTE_PROVIDERS
from localmind.engine.types import BACKEND_KINDS, DEFAULT_MAX_TOKENS
from localmind.settings import SettingsError, SettingsStore, settings_path


def _add_generation_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--system", default=None, help="System prompt")
    p.add_argument(
        "--max-tokens",
        type=int,
        default=DEFAULT_MAX_TOKENS,
        help="Maximum new tokens per answer (default: %(default)s)",
    )
    p.add_argument("--no-thinking", action="store_true", help="Ask reasoning models to answer directly")
    p.add_argument("--show-thinking", action="store_true", help="Print reasoning to stderr as it streams")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="localmind", description="Private chat with local and hosted models")
    p.add_argument(
        "--settings",
        type=Path,
        default=None,
        help="Settings file (default: %s)" % settings_path(),
    )
    p.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: %(default)s)",
    )

    sub = p.add_subparsers(dest="command", required=True)

    check = sub.add_parser("check", help="Check whether a backend is usable")
    check.add_argument("--backend", choices=BACKEND_KINDS, default=None, help="Backend to check")
    check.add_argument("--json", action="store_true", help="Machine-readable JSON output")

    models = sub.add_parser("models", help="List known models")
    models.add_argument("--backend", choices=BACKEND_KINDS, default=None, help="Only this backend")
    models.add_argument("--installed", action="store_true", help="List models installed on the local server")
    models.add_argument("--recommended", action="store_true", help="Only recommended models")
    models.add_argument("--json", action="store_true", help="Machine-readable JSON output")

    ask_p = sub.add_parser("ask", help="Ask one question and stream the answer")
    ask_p.add_argument("model", help="Model id (e.g. qwen3:4b, Qwen/Qwen3-0.6B, openai/gpt-4o)")
    ask_p.add_argument("prompt", help="Question")
    ask_p.add_argument("--no-metrics", action="store_true", help="Do not print tok/s and token counts")
    _add_generation_args(ask_p)

    chat = sub.add_parser("chat", help="Chat REPL")
    chat.add_argument("model", help="Model id to start with")
    _add_generation_args(chat)

    config = sub.add_parser("config", help="Manage settings")
    config_sub = config.add_subparsers(dest="config_cmd", required=True)
    show_p = config_sub.add_parser("show", help="Show all settings (API keys masked)")
    show_p.add_argument("--json", action="store_true", help="Machine-readable JSON output")
    show_p.add_argument("--reveal", action="store_true", help="Show API keys in full")
    get_p = config_sub.add_parser("get", help="Print one setting")
    get_p.add_argument("key")
    set_p = config_sub.add_parser("set", help="Set one setting (JSON values are parsed)")
    set_p.add_argument("key")
    set_p.add_argument("value")
    rm_p = config_sub.add_parser("rm", help="Remove one setting")
    rm_p.add_argument("key")
    url_p = config_sub.add_parser("set-url", help="Set the local server URL")
    url_p.add_argument("url")
    key_p = config_sub.add_parser("set-key", help="Save an API key for a remote provider")
    key_p.add_argument("provider", choices=REMOTE_PROVIDERS)
    key_p.add_argument("api_key")

    return p


def _run_config(args: argparse.Namespace, settings: SettingsStore) -> int:
    cmd = args.config_cmd
    if cmd == "show":
        return config_show(settings=settings, json_output=bool(args.json), reveal=bool(args.reveal))
    if cmd == "get":
        return config_get(settings=settings, key=args.key)
    if cmd == "set":
        return config_set(settings=settings, key=args.key, value=args.value)
    if cmd == "rm":
        return config_rm(settings=settings, key=args.key)
    if cmd == "set-url":
        return config_set_url(settings=settings, url=args.url)
    if cmd == "set-key":
        return config_set_key(settings=settings, provider=args.provider, api_key=args.api_key)
    raise ConfigCommandError(f"Unknown config subcommand: {cmd!r}")


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(sys.argv[1:]) if argv is None else list(argv))

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        settings = SettingsStore(args.settings or settings_path())
    except SettingsError as exc:
        print(str(exc), file=sys.stderr)
        return 1

    try:
        if args.command == "check":
            return engine_check(settings=settings, backend=args.backend, json_output=bool(args.json))
        if args.command == "models":
            return models_ls(
                settings=settings,
                backend=args.backend,
                installed=bool(args.installed),
                recommended_only=bool(args.recommended),
                json_output=bool(args.json),
            )
        if args.command == "ask":
            return ask(
                settings=settings,
                model=args.model,
                prompt=args.prompt,
                system=args.system,
                max_tokens=int(args.max_tokens),
                enable_thinking=not args.no_thinking,
                show_thinking=bool(args.show_thinking),
                show_metrics=not args.no_metrics,
            )
        if args.command == "chat":
            return chat_repl(
                settings=settings,
                model=args.model,
                system_prompt=args.system,
                max_tokens=int(args.max_tokens),
                enable_thinking=not args.no_thinking,
                show_thinking=bool(args.show_thinking),
            )
        if args.command == "config":
            return _run_config(args, settings)
    except (EngineCommandError, ConfigCommandError, ChatReplError) as exc:
        print(str(exc), file=sys.stderr)
        return 1

    parser.error(f"Unknown command: {args.command!r}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
