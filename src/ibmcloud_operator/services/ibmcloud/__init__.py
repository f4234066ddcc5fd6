"""Provider API clients."""

from .base import RemoteInstance, RemoteKey, RemoteResourceClient, Role, select_role
from .cf import CloudFoundryClient
from .resource_controller import ResourceControllerClient

__all__ = [
    "RemoteInstance",
    "RemoteKey",
    "RemoteResourceClient",
    "Role",
    "select_role",
    "CloudFoundryClient",
    "ResourceControllerClient",
]
