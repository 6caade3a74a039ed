"""Backend registry.

Maps backend kinds to their façade classes.
"""

from typing import Any, Type

from .facades.accelerator import AcceleratorFacade
from .facades.base import EngineFacade
from .facades.local_server import LocalServerFacade
from .facades.remote_api import RemoteApiFacade

# Registry mapping backend kinds to façade classes
_BACKEND_REGISTRY: dict[str, Type[EngineFacade]] = {
    "accelerator": AcceleratorFacade,
    "local-server": LocalServerFacade,
    "remote-api": RemoteApiFacade,
}


def create_facade(kind: str, **kwargs: Any) -> EngineFacade:
    """
    Create a façade for the given backend kind.

    Args:
        kind: Backend kind (e.g., "accelerator").
        **kwargs: Collaborators passed to the façade (config, settings, credentials, ...).

    Returns:
        A new, idle façade.

    Raises:
        ValueError: If the backend kind is not registered.
    """
    if kind not in _BACKEND_REGISTRY:
        available = ", ".join(_BACKEND_REGISTRY.keys())
        raise ValueError(f"Unknown backend: {kind!r}. Available: {available}")
    return _BACKEND_REGISTRY[kind](**kwargs)

