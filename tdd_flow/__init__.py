"""TDD Flow library exports."""

from .config import ServerConfig
from .features import FeatureManager
from .server import TDDFlowApp, create_server, main
from .services import Services
from .storage import StorageService

__version__ = "1.0.0"

__all__ = [
    "ServerConfig",
    "FeatureManager",
    "Services",
    "StorageService",
    "TDDFlowApp",
    "create_server",
    "main",
]
