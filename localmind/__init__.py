"""
localmind - private chat inference engine with interchangeable backends.

A single `BackendRouter` fronts three backends that share one event contract:

    - accelerator:  a Hugging Face model resident in this process, run on a worker thread
    - local-server: an Ollama-compatible HTTP server
    - remote-api:   OpenAI, xAI or Anthropic chat APIs

Quick Start:
    import asyncio
    from localmind import BackendRouter, Turn

    async def main():
        router = BackendRouter()
        router.on_message(print)
        router.load_model("qwen3:4b")
        ...
        result = await router.generate_full([Turn("user", "Hello")])

    asyncio.run(main())
"""

from localmind._version import __version__

from localmind.engine.catalog import ModelCard, list_models, resolve_model_ref
from localmind.engine.config import EngineConfig
from localmind.engine.errors import (
    CapabilityError,
    EngineBusyError,
    EngineError,
    EngineNotReadyError,
    EngineStateError,
    GenerationError,
    ModelLoadError,
    NoActiveEngineError,
    ProtocolError,
)
from localmind.engine.facades.base import EngineFacade
from localmind.engine.phase import PhaseDetector, PhaseState
from localmind.engine.router import BackendRouter
from localmind.engine.stopping import StoppingController
from localmind.engine.types import (
    EngineStatus,
    GenerationOptions,
    GenerationRequest,
    GenerationResult,
    ModelRef,
    TokenProgress,
    Turn,
)
from localmind.settings import SettingsCredentialProvider, SettingsStore

__all__ = [
    "__version__",
    # Engine
    "BackendRouter",
    "EngineFacade",
    "EngineConfig",
    "PhaseDetector",
    "PhaseState",
    "StoppingController",
    # Types
    "EngineStatus",
    "GenerationOptions",
    "GenerationRequest",
    "GenerationResult",
    "ModelRef",
    "TokenProgress",
    "Turn",
    # Catalog
    "ModelCard",
    "list_models",
    "resolve_model_ref",
    # Settings
    "SettingsStore",
    "SettingsCredentialProvider",
    # Errors
    "EngineError",
    "EngineStateError",
    "EngineBusyError",
    "EngineNotReadyError",
    "NoActiveEngineError",
    "ModelLoadError",
    "GenerationError",
    "CapabilityError",
    "ProtocolError",
]
