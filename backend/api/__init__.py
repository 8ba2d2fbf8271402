# api/__init__.py
from api.server import (
    app,
    get_coordinator,
    get_gateway,
    ServerConfig,
)

__all__ = [
    "app",
    "get_coordinator",
    "get_gateway",
    "ServerConfig",
]
