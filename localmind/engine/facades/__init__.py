from .accelerator import AcceleratorFacade
from .base import EngineFacade
from .local_server import LocalServerFacade
from .remote_api import RemoteApiFacade

__all__ = ["AcceleratorFacade", "EngineFacade", "LocalServerFacade", "RemoteApiFacade"]
