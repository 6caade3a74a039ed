"""Engine exception hierarchy."""

from __future__ import annotations


class EngineError(RuntimeError):
    pass


class ModelLoadError(EngineError):
    """Loading a model failed; the façade is back to idle and a retry is safe."""


class GenerationError(EngineError):
    """A generation session failed; the model stays resident and reusable."""


class CapabilityError(EngineError):
    """The backend cannot run on this machine (e.g. no accelerator)."""


class ProtocolError(EngineError):
    """A channel envelope could not be decoded."""


class EngineStateError(EngineError):
    pass


class EngineBusyError(EngineStateError):
    pass


class EngineNotReadyError(EngineStateError):
    pass


class NoActiveEngineError(EngineStateError):
    pass
