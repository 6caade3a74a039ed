"""localmind HTTP bridge entrypoint (FastAPI + SSE).

Example:
    python -m apps.server.main --model qwen3:4b --host 127.0.0.1 --port 8787
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path

from apps.server.app import create_app
from localmind.engine.config import EngineConfig
from localmind.engine.router import BackendRouter
from localmind.settings import SettingsCredentialProvider, SettingsStore, settings_path


def _parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="localmind HTTP bridge")
    p.add_argument("--host", default="127.0.0.1", help="Bind host (default: 127.0.0.1)")
    p.add_argument("--port", type=int, default=8787, help="Bind port (default: 8787)")
    p.add_argument(
        "--model",
        default=None,
        help="Model to load at startup (otherwise POST /v1/engine/load)",
    )
    p.add_argument("--settings", type=Path, default=None, help="Settings file (default: %s)" % settings_path())
    p.add_argument(
        "--http-max-completion-tokens",
        type=int,
        default=0,
        help="Clamp options.maxTokens on /v1/chat to this value (0 = no clamp)",
    )
    p.add_argument(
        "--log-level",
        default="info",
        choices=["debug", "info", "warning", "error"],
        help="Log level for the app and uvicorn (default: info)",
    )
    p.add_argument("--reload", action="store_true", help="Enable uvicorn reload (dev only)")
    return p.parse_args()


def main() -> None:
    args = _parse_args()
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    settings = SettingsStore(args.settings or settings_path())
    router = BackendRouter(
        config=EngineConfig.from_env(),
        settings=settings,
        credentials=SettingsCredentialProvider(settings),
    )
    app = create_app(
        router=router,
        http_max_completion_tokens=None
        if args.http_max_completion_tokens <= 0
        else int(args.http_max_completion_tokens),
        startup_model=args.model,
    )

    import uvicorn

    uvicorn.run(
        app,
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=args.log_level,
    )


if __name__ == "__main__":
    main()
