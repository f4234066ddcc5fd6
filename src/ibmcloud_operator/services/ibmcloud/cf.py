"""Client for the Cloud Foundry (v2) service API."""

from __future__ import annotations

import logging
from typing import Any

from ... import metrics
from ...utils.errors import AmbiguousAliasError, NotFoundError, SpecError
from .base import RemoteInstance, RemoteKey, Role, check_credentials, is_gone
from .http import ProviderHTTPClient

logger = logging.getLogger(__name__)


def _guid(resource: dict[str, Any]) -> str:
    return (resource.get("metadata") or {}).get("guid", "")


def _instance_from(resource: dict[str, Any]) -> RemoteInstance:
    entity = resource.get("entity") or {}
    return RemoteInstance(
        id=_guid(resource),
        state=(entity.get("last_operation") or {}).get("state", ""),
        name=entity.get("name", ""),
    )


def _key_from(resource: dict[str, Any]) -> RemoteKey:
    entity = resource.get("entity") or {}
    return RemoteKey(
        id=_guid(resource),
        name=entity.get("name", ""),
        credentials=dict(entity.get("credentials") or {}),
    )


class CloudFoundryClient:
    """Manages Cloud Foundry service instances and keys in one space."""

    def __init__(self, http: ProviderHTTPClient, space_id: str = "") -> None:
        self._http = http
        self._space_id = space_id

    def _resources(self, path: str, operation: str, **query: str) -> list[dict[str, Any]]:
        params: dict[str, Any] | None = {"q": [f"{k}:{v}" for k, v in query.items()]} if query else None
        resources: list[dict[str, Any]] = []
        while path:
            body = self._http.get(path, operation, params=params) or {}
            resources.extend(body.get("resources") or [])
            path = body.get("next_url") or ""
            params = None
        return resources

    def space_id(self, org: str, space: str) -> str:
        """Resolve org and space names into the space GUID.

        Raises:
            SpecError: If the org or space does not exist
        """
        orgs = self._resources("/v2/organizations", "find_org", name=org)
        if not orgs:
            raise SpecError(f"organization {org} not found")
        spaces = self._resources(f"/v2/organizations/{_guid(orgs[0])}/spaces", "find_space", name=space)
        if not spaces:
            raise SpecError(f"space {space} not found in organization {org}")
        return _guid(spaces[0])

    def plan_id(self, service_label: str, plan: str) -> str:
        """Resolve a service offering label and plan name into the plan GUID.

        Raises:
            SpecError: If the offering or plan does not exist
        """
        offerings = self._resources("/v2/services", "find_service", label=service_label)
        if not offerings:
            raise SpecError(f"service offering {service_label} not found")
        plans = self._resources(f"/v2/services/{_guid(offerings[0])}/service_plans", "list_plans")
        for candidate in plans:
            if (candidate.get("entity") or {}).get("name") == plan:
                return _guid(candidate)
        raise SpecError(f"plan {plan} not found for service {service_label}")

    def _instances_named(self, name: str) -> list[dict[str, Any]]:
        query = {"name": name}
        if self._space_id:
            query["space_guid"] = self._space_id
        return self._resources("/v2/service_instances", "list_instances", **query)

    def create_instance(
        self,
        name: str,
        plan_id: str,
        target: str,
        params: dict[str, Any],
        tags: list[str],
    ) -> RemoteInstance:
        body = {
            "name": name,
            "service_plan_guid": plan_id,
            "space_guid": target or self._space_id,
            "parameters": params,
            "tags": tags,
        }
        try:
            resource = self._http.post(
                "/v2/service_instances",
                "create_instance",
                params={"accepts_incomplete": "true"},
                json_body=body,
            )
        except Exception:
            metrics.instance_operations_total.labels(operation="create", result="error").inc()
            raise
        metrics.instance_operations_total.labels(operation="create", result="success").inc()
        return _instance_from(resource or {})

    def find_instance(self, name: str, instance_id: str | None = None) -> RemoteInstance:
        for resource in self._instances_named(name):
            if instance_id is None or _guid(resource) == instance_id:
                return _instance_from(resource)
        raise NotFoundError(f"service instance {name} doesn't exist")

    def find_alias_instance(self, name: str, instance_id: str | None = None) -> RemoteInstance:
        resources = self._instances_named(name)
        if not resources:
            raise NotFoundError(f"no service instances with name {name} found for alias plan")
        if instance_id:
            for resource in resources:
                if _guid(resource) == instance_id:
                    return _instance_from(resource)
            raise NotFoundError(f"no service instance {name} matched instance ID {instance_id}")
        if len(resources) > 1:
            raise AmbiguousAliasError(
                "multiple instance with same name found, and plan `Alias` requires "
                "`ibmcloud.ibm.com/instanceId` annotation"
            )
        return _instance_from(resources[0])

    def update_instance(
        self,
        instance_id: str,
        name: str,
        plan_id: str,
        params: dict[str, Any],
        tags: list[str],
    ) -> str:
        body: dict[str, Any] = {"name": name, "parameters": params, "tags": tags}
        if plan_id:
            body["service_plan_guid"] = plan_id
        resource = self._http.put(
            f"/v2/service_instances/{instance_id}",
            "update_instance",
            params={"accepts_incomplete": "true"},
            json_body=body,
        )
        metrics.instance_operations_total.labels(operation="update", result="success").inc()
        return _instance_from(resource or {}).state

    def delete_instance(self, instance_id: str) -> None:
        try:
            self._http.delete(
                f"/v2/service_instances/{instance_id}",
                "delete_instance",
                params={"accepts_incomplete": "true", "recursive": "true", "async": "true"},
            )
        except Exception as e:
            if not is_gone(e):
                metrics.instance_operations_total.labels(operation="delete", result="error").inc()
                raise
            logger.info(f"Service instance {instance_id} already gone, nothing to do")
        metrics.instance_operations_total.labels(operation="delete", result="success").inc()

    def create_key(
        self,
        instance_id: str,
        name: str,
        role: str,
        params: dict[str, Any],
    ) -> RemoteKey:
        # Cloud Foundry keys carry no IAM role
        body = {"service_instance_guid": instance_id, "name": name, "parameters": params}
        try:
            resource = self._http.post("/v2/service_keys", "create_key", json_body=body)
        except Exception:
            metrics.key_operations_total.labels(operation="create", result="error").inc()
            raise
        metrics.key_operations_total.labels(operation="create", result="success").inc()
        return _key_from(resource or {})

    def get_key(self, key_id: str) -> RemoteKey:
        resource = self._http.get(f"/v2/service_keys/{key_id}", "get_key") or {}
        return check_credentials(_key_from(resource))

    def find_key_by_name(self, instance_id: str, name: str) -> RemoteKey:
        resources = self._resources(
            f"/v2/service_instances/{instance_id}/service_keys", "list_keys", name=name
        )
        if not resources:
            raise NotFoundError(f"service key {name} doesn't exist")
        return check_credentials(_key_from(resources[0]))

    def delete_key(self, key_id: str) -> None:
        try:
            self._http.delete(f"/v2/service_keys/{key_id}", "delete_key")
        except Exception as e:
            if not is_gone(e):
                metrics.key_operations_total.labels(operation="delete", result="error").inc()
                raise
        metrics.key_operations_total.labels(operation="delete", result="success").inc()

    def list_roles(self, service_name: str | None) -> list[Role]:
        return []
