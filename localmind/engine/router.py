"""Single entry point to the engine: picks, swaps and fronts the active backend."""

from __future__ import annotations

import logging
from typing import Any, Callable, Sequence

from .catalog import get_model_card, resolve_model_ref
from .config import EngineConfig
from .errors import EngineBusyError, NoActiveEngineError
from .facades.base import EngineFacade, Listener
from .registry import create_facade
from .subscribers import SubscriberSet
from .types import (
    EngineStatus,
    GenerationOptions,
    GenerationResult,
    ModelRef,
    TokenProgress,
    Turn,
)

logger = logging.getLogger(__name__)


FacadeFactory = Callable[[str], EngineFacade]


class BackendRouter:
    """Owns the active `EngineFacade` and the subscribers that outlive it.

    Subscribers registered through `on_message` are kept in a router-owned set and
    re-attached to every new façade, so they keep receiving events across backend
    swaps without subscribing again.
    """

    def __init__(
        self,
        *,
        config: EngineConfig | None = None,
        settings: Any = None,
        credentials: Any = None,
        facade_factory: FacadeFactory | None = None,
    ) -> None:
        self._config = config or EngineConfig()
        self._settings = settings
        self._credentials = credentials
        self._facade_factory = facade_factory or self._create_facade
        self._subscribers: SubscriberSet = SubscriberSet()
        self._facade: EngineFacade | None = None

    def _create_facade(self, kind: str) -> EngineFacade:
        return create_facade(
            kind,
            config=self._config,
            settings=self._settings,
            credentials=self._credentials,
        )

    # -------------------------------------------------------------------------
    # Active backend
    # -------------------------------------------------------------------------

    @property
    def facade(self) -> EngineFacade | None:
        return self._facade

    @property
    def backend(self) -> str | None:
        """Kind of the active backend, or None before the first load/check."""
        return self._facade.backend if self._facade is not None else None

    def _active(self) -> EngineFacade:
        if self._facade is None:
            raise NoActiveEngineError("No engine is active; call load_model() first.")
        return self._facade

    def _activate(self, kind: str) -> EngineFacade:
        current = self._facade
        if current is not None and current.backend == kind:
            return current

        if current is not None:
            if current.status in (EngineStatus.LOADING, EngineStatus.GENERATING):
                raise EngineBusyError(
                    f"Cannot switch to {kind} while the {current.backend} backend is {current.status.value}."
                )
            logger.info("Switching backend %s -> %s", current.backend, kind)
            self._facade = None
            current.terminate()

        facade = self._facade_factory(kind)
        for listener in self._subscribers.snapshot():
            facade.on_message(listener)
        self._facade = facade
        return facade

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def load_model(self, identifier: str | ModelRef) -> ModelRef:
        """Route `identifier` to its backend (swapping if needed) and start loading it."""
        ref = resolve_model_ref(identifier)
        self._activate(ref.kind).load_model(ref.model_id)
        return ref

    def check(self, kind: str | None = None) -> None:
        """Check the active backend, or activate and check `kind` (default from config)."""
        if kind is None:
            facade = self._facade or self._activate(self._config.default_backend)
        else:
            facade = self._activate(kind)
        facade.check()

    def generate(self, turns: Sequence[Turn], options: GenerationOptions | None = None) -> None:
        self._active().generate(turns, options)

    async def generate_full(
        self,
        turns: Sequence[Turn],
        options: GenerationOptions | None = None,
        on_token: Callable[[TokenProgress], None] | None = None,
    ) -> GenerationResult:
        return await self._active().generate_full(turns, options, on_token)

    def interrupt(self) -> None:
        self._active().interrupt()

    def reset(self) -> None:
        self._active().reset()

    def terminate(self) -> None:
        """Dispose the active backend; subscribers stay registered for the next one."""
        facade, self._facade = self._facade, None
        if facade is not None:
            facade.terminate()

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    @property
    def status(self) -> EngineStatus:
        return self._active().status

    @property
    def is_ready(self) -> bool:
        return self._active().is_ready

    @property
    def is_generating(self) -> bool:
        return self._active().is_generating

    @property
    def model_id(self) -> str | None:
        return self._active().model_id

    def get_model_info(self) -> dict[str, Any]:
        facade = self._active()
        card = get_model_card(facade.model_id) if facade.model_id else None
        return {
            "backend": facade.backend,
            "modelId": facade.model_id,
            "status": facade.status.value,
            "card": card.to_dict() if card is not None else None,
        }

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    def on_message(self, listener: Listener) -> Callable[[], None]:
        self._subscribers.add(listener)
        if self._facade is not None:
            self._facade.on_message(listener)
        return lambda: self.off_message(listener)

    def off_message(self, listener: Listener) -> None:
        self._subscribers.discard(listener)
        if self._facade is not None:
            self._facade.off_message(listener)

    @property
    def listener_count(self) -> int:
        return len(self._subscribers)
