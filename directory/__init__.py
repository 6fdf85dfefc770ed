from .client import DEVICE_PROJECTION, GraphDirectoryClient, connect
from .session import REQUIRED_PERMISSIONS, acquire_token, open_graph_session

__all__ = [
    "DEVICE_PROJECTION",
    "GraphDirectoryClient",
    "REQUIRED_PERMISSIONS",
    "acquire_token",
    "connect",
    "open_graph_session",
]
