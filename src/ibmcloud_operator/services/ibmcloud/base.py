"""Remote resource client interface shared by the provider API variants."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from ...constants import DEFAULT_ROLE, REDACTED_KEY
from ...utils.errors import NotFoundError, RedactedCredentialsError, SpecError


@dataclass(frozen=True)
class RemoteInstance:
    """A service instance as reported by the provider."""

    id: str
    state: str = ""
    name: str = ""
    crn: str = ""


@dataclass(frozen=True)
class RemoteKey:
    """A service key (credential) as reported by the provider."""

    id: str
    name: str = ""
    credentials: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Role:
    """An IAM role that can be granted to a service key."""

    id: str
    display_name: str


class RemoteResourceClient(Protocol):
    """Protocol defining the provider operations the reconcilers rely on."""

    def create_instance(
        self,
        name: str,
        plan_id: str,
        target: str,
        params: dict[str, Any],
        tags: list[str],
    ) -> RemoteInstance:
        """Create a service instance.

        Args:
            name: Instance name in the provider account
            plan_id: Catalog plan ID
            target: Deployment target (catalog CRN, or CF space ID)
            params: Provisioning parameters
            tags: Tags attached to the instance
        """
        ...

    def find_instance(self, name: str, instance_id: str | None = None) -> RemoteInstance:
        """Look up an instance by name, and by ID when one is given.

        Raises:
            NotFoundError: If no matching instance exists
        """
        ...

    def find_alias_instance(self, name: str, instance_id: str | None = None) -> RemoteInstance:
        """Look up an existing instance to alias, disambiguated by ``instance_id``.

        Raises:
            NotFoundError: If no matching instance exists
            AmbiguousAliasError: If several match and no ID selects one
        """
        ...

    def update_instance(
        self,
        instance_id: str,
        name: str,
        plan_id: str,
        params: dict[str, Any],
        tags: list[str],
    ) -> str:
        """Push new parameters and tags; returns the resulting state."""
        ...

    def delete_instance(self, instance_id: str) -> None:
        """Delete an instance; an instance that is already gone counts as deleted."""
        ...

    def create_key(
        self,
        instance_id: str,
        name: str,
        role: str,
        params: dict[str, Any],
    ) -> RemoteKey:
        """Create a service key on an instance."""
        ...

    def get_key(self, key_id: str) -> RemoteKey:
        """Get a service key by ID.

        Raises:
            NotFoundError: If the key does not exist or its credentials are redacted
        """
        ...

    def find_key_by_name(self, instance_id: str, name: str) -> RemoteKey:
        """Get a service key of an instance by name.

        Raises:
            NotFoundError: If the key does not exist or its credentials are redacted
        """
        ...

    def delete_key(self, key_id: str) -> None:
        """Delete a service key; a key that is already gone counts as deleted."""
        ...

    def list_roles(self, service_name: str | None) -> list[Role]:
        """List the roles of a service, or the system roles when no name is given."""
        ...


def select_role(roles: list[Role], name: str | None = None) -> Role:
    """Pick the role to grant a new service key.

    A requested name must match a role's display name. Without one, the
    "Manager" role is preferred, falling back to the first role listed.

    Raises:
        SpecError: If there are no roles or the requested one does not exist
    """
    if name:
        for role in roles:
            if role.display_name == name:
                return role
        raise SpecError(f"role {name!r} is not defined for this service")
    if not roles:
        raise SpecError("The service has no roles defined for its bindings")
    for role in roles:
        if role.display_name == DEFAULT_ROLE:
            return role
    return roles[0]


def check_credentials(key: RemoteKey) -> RemoteKey:
    """Reject keys whose credentials the caller is not allowed to read.

    Raises:
        RedactedCredentialsError: If the credentials are a redacted placeholder
    """
    if REDACTED_KEY in key.credentials:
        raise RedactedCredentialsError(f"credentials of key {key.id} are redacted")
    return key


_GONE_MARKERS = (
    "status code: 404",
    "status code: 410",
    "cannot be found",
    "instance is pending reclamation",
)


def is_gone(error: Exception) -> bool:
    """Tell whether a delete failed only because the resource is already gone."""
    if isinstance(error, NotFoundError):
        return True
    text = str(error).lower()
    return any(marker in text for marker in _GONE_MARKERS)
