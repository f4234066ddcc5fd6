"""Client for the resource controller API."""

from __future__ import annotations

import logging
from typing import Any, Iterator

from ... import metrics
from ...constants import PARAM_ROLE_CRN
from ...utils.errors import AmbiguousAliasError, NotFoundError
from .base import RemoteInstance, RemoteKey, Role, check_credentials, is_gone, select_role
from .catalog import GlobalCatalog
from .http import ProviderHTTPClient

logger = logging.getLogger(__name__)


def _instance_from(entry: dict[str, Any]) -> RemoteInstance:
    state = entry.get("state") or (entry.get("last_operation") or {}).get("state", "")
    return RemoteInstance(
        id=entry.get("id", ""),
        state=state,
        name=entry.get("name", ""),
        crn=entry.get("crn", ""),
    )


def _key_from(entry: dict[str, Any]) -> RemoteKey:
    return RemoteKey(
        id=entry.get("id", ""),
        name=entry.get("name", ""),
        credentials=dict(entry.get("credentials") or {}),
    )


class ResourceControllerClient:
    """Manages resource-controller service instances and keys.

    Args:
        http: Client for the resource controller endpoint
        iam: Client for the IAM endpoint, used for role lookups
        catalog: Global catalog lookups
        resource_group_id: Resource group instances are created in and listed from
        plan_id: Catalog plan ID used to narrow instance lookups
    """

    def __init__(
        self,
        http: ProviderHTTPClient,
        iam: ProviderHTTPClient,
        catalog: GlobalCatalog,
        resource_group_id: str = "",
        plan_id: str = "",
    ) -> None:
        self._http = http
        self._iam = iam
        self._catalog = catalog
        self._resource_group_id = resource_group_id
        self._plan_id = plan_id

    def _list_instances(self, name: str, plan_id: str = "") -> Iterator[dict[str, Any]]:
        params = {
            "name": name,
            "resource_group_id": self._resource_group_id,
            "resource_plan_id": plan_id,
        }
        path = "/v2/resource_instances"
        while path:
            body = self._http.get(path, "list_instances", params=params) or {}
            yield from body.get("resources") or []
            # next_url already carries the query
            path = body.get("next_url") or ""
            params = None

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
            "target": target,
            "resource_group": self._resource_group_id,
            "resource_plan_id": plan_id,
            "parameters": params,
            "tags": tags,
        }
        if not self._resource_group_id:
            del body["resource_group"]
        try:
            entry = self._http.post("/v2/resource_instances", "create_instance", json_body=body)
        except Exception:
            metrics.instance_operations_total.labels(operation="create", result="error").inc()
            raise
        metrics.instance_operations_total.labels(operation="create", result="success").inc()
        instance = _instance_from(entry or {})
        last_operation = (entry or {}).get("last_operation") or {}
        if last_operation.get("state"):
            instance = RemoteInstance(instance.id, last_operation["state"], instance.name, instance.crn)
        return instance

    def find_instance(self, name: str, instance_id: str | None = None) -> RemoteInstance:
        for entry in self._list_instances(name, self._plan_id):
            if instance_id is None or entry.get("id") == instance_id:
                return _instance_from(entry)
        raise NotFoundError(f"service instance {name} not found")

    def find_alias_instance(self, name: str, instance_id: str | None = None) -> RemoteInstance:
        # Alias plans carry no plan ID, so any instance with the name qualifies
        entries = list(self._list_instances(name))
        if not entries:
            raise NotFoundError(f"no service instances with name {name} found for alias plan")

        if len(entries) == 1:
            found = entries[0]
            if instance_id and found.get("id") != instance_id:
                raise NotFoundError(
                    f"instance ID {instance_id} does not match instance ID {found.get('id')} found"
                )
            return _instance_from(found)

        if not instance_id:
            raise AmbiguousAliasError(
                "multiple instance with same name found, and plan `Alias` requires "
                "`ibmcloud.ibm.com/instanceId` annotation"
            )
        for entry in entries:
            if entry.get("id") == instance_id:
                return _instance_from(entry)
        raise NotFoundError(
            f"multiple services instances found, but none matched instance ID {instance_id}"
        )

    def update_instance(
        self,
        instance_id: str,
        name: str,
        plan_id: str,
        params: dict[str, Any],
        tags: list[str],
    ) -> str:
        body: dict[str, Any] = {"name": name, "parameters": params}
        if plan_id:
            body["resource_plan_id"] = plan_id
        if tags:
            body["tags"] = tags
        entry = self._http.patch(f"/v2/resource_instances/{instance_id}", "update_instance", json_body=body)
        metrics.instance_operations_total.labels(operation="update", result="success").inc()
        return _instance_from(entry or {}).state

    def delete_instance(self, instance_id: str) -> None:
        try:
            self._http.delete(
                f"/v2/resource_instances/{instance_id}",
                "delete_instance",
                params={"recursive": "true"},
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
        instance = self._http.get(f"/v2/resource_instances/{instance_id}", "get_instance") or {}
        service_name = self._catalog.service_name(instance.get("resource_id", ""))
        chosen = select_role(self.list_roles(service_name or None), role or None)

        body = {
            "name": name,
            "source": instance.get("crn") or instance_id,
            "parameters": {**params, PARAM_ROLE_CRN: chosen.id},
        }
        try:
            entry = self._http.post("/v2/resource_keys", "create_key", json_body=body)
        except Exception:
            metrics.key_operations_total.labels(operation="create", result="error").inc()
            raise
        metrics.key_operations_total.labels(operation="create", result="success").inc()
        return _key_from(entry or {})

    def get_key(self, key_id: str) -> RemoteKey:
        entry = self._http.get(f"/v2/resource_keys/{key_id}", "get_key") or {}
        return check_credentials(_key_from(entry))

    def find_key_by_name(self, instance_id: str, name: str) -> RemoteKey:
        body = self._http.get("/v2/resource_keys", "list_keys", params={"name": name}) or {}
        for entry in body.get("resources") or []:
            source = entry.get("source_crn", "")
            if source == instance_id or instance_id in entry.get("resource_instance_url", ""):
                return check_credentials(_key_from(entry))
        raise NotFoundError(f"service key {name} not found")

    def delete_key(self, key_id: str) -> None:
        try:
            self._http.delete(f"/v2/resource_keys/{key_id}", "delete_key")
        except Exception as e:
            if not is_gone(e):
                metrics.key_operations_total.labels(operation="delete", result="error").inc()
                raise
        metrics.key_operations_total.labels(operation="delete", result="success").inc()

    def list_roles(self, service_name: str | None) -> list[Role]:
        params = {"service_name": service_name} if service_name else {}
        body = self._iam.get("/v2/roles", "list_roles", params=params) or {}
        entries = list(body.get("service_roles") or []) + list(body.get("system_roles") or [])
        return [Role(id=e.get("crn", ""), display_name=e.get("display_name", "")) for e in entries]
