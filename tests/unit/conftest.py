"""Shared fakes for the reconciler tests."""

from __future__ import annotations

import base64
import copy
import itertools
from typing import Any
from unittest.mock import MagicMock, patch

import pytest
from kubernetes import client

from ibmcloud_operator.builders.provider import CloudSession
from ibmcloud_operator.config import OperatorConfig
from ibmcloud_operator.constants import API_GROUP_VERSION, KIND_BINDING, KIND_SERVICE
from ibmcloud_operator.models import Binding, ResourceContext, ServiceInstance
from ibmcloud_operator.services.ibmcloud.base import RemoteInstance, RemoteKey, select_role
from ibmcloud_operator.utils.errors import AlreadyExistsError, ConflictError, NotFoundError


def b64(value: str) -> str:
    return base64.b64encode(value.encode("utf-8")).decode("utf-8")


def service_body(
    name: str = "mydb",
    namespace: str = "default",
    spec: dict[str, Any] | None = None,
    status: dict[str, Any] | None = None,
    annotations: dict[str, str] | None = None,
    finalizers: list[str] | None = None,
    deletion_timestamp: str | None = None,
) -> dict[str, Any]:
    body: dict[str, Any] = {
        "apiVersion": API_GROUP_VERSION,
        "kind": KIND_SERVICE,
        "metadata": {
            "name": name,
            "namespace": namespace,
            "uid": f"uid-{name}",
            "generation": 1,
            "annotations": dict(annotations or {}),
            "finalizers": list(finalizers or []),
        },
        "spec": spec if spec is not None else {"serviceClass": "cloudantnosqldb", "plan": "lite"},
    }
    if status is not None:
        body["status"] = status
    if deletion_timestamp:
        body["metadata"]["deletionTimestamp"] = deletion_timestamp
    return body


def binding_body(
    name: str = "mybinding",
    namespace: str = "default",
    spec: dict[str, Any] | None = None,
    status: dict[str, Any] | None = None,
    annotations: dict[str, str] | None = None,
    finalizers: list[str] | None = None,
    deletion_timestamp: str | None = None,
) -> dict[str, Any]:
    body: dict[str, Any] = {
        "apiVersion": API_GROUP_VERSION,
        "kind": KIND_BINDING,
        "metadata": {
            "name": name,
            "namespace": namespace,
            "uid": f"uid-{name}",
            "generation": 1,
            "annotations": dict(annotations or {}),
            "finalizers": list(finalizers or []),
        },
        "spec": spec if spec is not None else {"serviceName": "mydb"},
    }
    if status is not None:
        body["status"] = status
    if deletion_timestamp:
        body["metadata"]["deletionTimestamp"] = deletion_timestamp
    return body


class FakeStore:
    """In-memory stand-in for ResourceStore with resourceVersion checks."""

    def __init__(self) -> None:
        self.records: dict[tuple[str, str, str], dict[str, Any]] = {}
        self.secrets: dict[tuple[str, str], client.V1Secret] = {}
        self.config_maps: dict[tuple[str, str], client.V1ConfigMap] = {}
        self.status_writes = 0
        self.updates = 0
        self.deleted_secrets: list[str] = []
        self._versions = itertools.count(1)

    @staticmethod
    def _kind(record_or_kind: Any) -> str:
        if isinstance(record_or_kind, str):
            return record_or_kind
        return KIND_BINDING if isinstance(record_or_kind, Binding) else KIND_SERVICE

    def add(self, body: dict[str, Any]) -> dict[str, Any]:
        body = copy.deepcopy(body)
        body["metadata"]["resourceVersion"] = str(next(self._versions))
        meta = body["metadata"]
        self.records[(body["kind"], meta["namespace"], meta["name"])] = body
        return body

    def raw(self, kind: str, namespace: str, name: str) -> dict[str, Any]:
        return self.records[(kind, namespace, name)]

    def _get(self, kind: str, namespace: str, name: str) -> dict[str, Any]:
        try:
            return copy.deepcopy(self.records[(kind, namespace, name)])
        except KeyError:
            raise NotFoundError(f"{kind} {namespace}/{name} not found") from None

    def get_service(self, namespace: str, name: str) -> ServiceInstance:
        return ServiceInstance.from_dict(self._get(KIND_SERVICE, namespace, name))

    def get_binding(self, namespace: str, name: str) -> Binding:
        return Binding.from_dict(self._get(KIND_BINDING, namespace, name))

    def _write(self, record: Any, status_only: bool) -> dict[str, Any]:
        key = (self._kind(record), record.namespace, record.name)
        if key not in self.records:
            raise NotFoundError(f"{key} not found")
        stored = self.records[key]
        if stored["metadata"]["resourceVersion"] != record.resource_version:
            raise ConflictError(f"{key} was modified concurrently")
        body = record.to_body()
        if status_only:
            new = copy.deepcopy(stored)
            new["status"] = body.get("status", {})
        else:
            new = copy.deepcopy(body)
            new["status"] = copy.deepcopy(stored.get("status", {}))
        new["metadata"]["resourceVersion"] = str(next(self._versions))
        self.records[key] = new
        return copy.deepcopy(new)

    def update(self, record: Any) -> Any:
        self.updates += 1
        record.refresh(self._write(record, status_only=False), keep_status=True)
        return record

    def update_status(self, record: Any) -> Any:
        self.status_writes += 1
        record.refresh(self._write(record, status_only=True))
        return record

    def get_secret(self, namespace: str, name: str) -> client.V1Secret:
        try:
            return copy.deepcopy(self.secrets[(namespace, name)])
        except KeyError:
            raise NotFoundError(f"secret {namespace}/{name} not found") from None

    def get_secret_with_fallback(self, namespace: str, name: str) -> client.V1Secret:
        try:
            return self.get_secret(namespace, name)
        except NotFoundError:
            return self.get_secret("default", name)

    def get_config_map(self, namespace: str, name: str) -> client.V1ConfigMap:
        try:
            return copy.deepcopy(self.config_maps[(namespace, name)])
        except KeyError:
            raise NotFoundError(f"configmap {namespace}/{name} not found") from None

    def get_config_map_with_fallback(self, namespace: str, name: str) -> client.V1ConfigMap:
        try:
            return self.get_config_map(namespace, name)
        except NotFoundError:
            return self.get_config_map("default", name)

    def create_secret(self, secret: client.V1Secret) -> client.V1Secret:
        key = (secret.metadata.namespace, secret.metadata.name)
        if key in self.secrets:
            raise AlreadyExistsError(f"secret {key} already exists")
        self.secrets[key] = copy.deepcopy(secret)
        return secret

    def delete_secret(self, namespace: str, name: str) -> bool:
        if self.secrets.pop((namespace, name), None) is None:
            return False
        self.deleted_secrets.append(name)
        return True


class FakeCloudClient:
    """In-memory provider implementing the remote resource client interface."""

    def __init__(self, roles: list[Any] | None = None) -> None:
        self.instances: dict[str, RemoteInstance] = {}
        self.keys: dict[str, RemoteKey] = {}
        self.key_instances: dict[str, str] = {}
        self.roles = roles or []
        self.created_instances: list[str] = []
        self.deleted_instances: list[str] = []
        self.updated_instances: list[tuple[str, dict[str, Any], list[str]]] = []
        self.created_keys: list[tuple[str, str, dict[str, Any]]] = []
        self.deleted_keys: list[str] = []
        self._ids = itertools.count(1)

    def add_instance(self, name: str, state: str = "active", instance_id: str | None = None) -> RemoteInstance:
        instance = RemoteInstance(instance_id or f"inst-{next(self._ids)}", state, name)
        self.instances[instance.id] = instance
        return instance

    def add_key(
        self, instance_id: str, name: str, credentials: dict[str, Any], key_id: str | None = None
    ) -> RemoteKey:
        key = RemoteKey(key_id or f"key-{next(self._ids)}", name, dict(credentials))
        self.keys[key.id] = key
        self.key_instances[key.id] = instance_id
        return key

    def create_instance(self, name, plan_id, target, params, tags):
        instance = self.add_instance(name, state="provisioning")
        self.created_instances.append(instance.id)
        return instance

    def find_instance(self, name, instance_id=None):
        for instance in self.instances.values():
            if instance.name == name and (instance_id is None or instance.id == instance_id):
                return instance
        raise NotFoundError(f"service instance {name} not found")

    def find_alias_instance(self, name, instance_id=None):
        return self.find_instance(name, instance_id)

    def update_instance(self, instance_id, name, plan_id, params, tags):
        self.updated_instances.append((instance_id, params, tags))
        return self.instances[instance_id].state

    def delete_instance(self, instance_id):
        self.deleted_instances.append(instance_id)
        self.instances.pop(instance_id, None)

    def create_key(self, instance_id, name, role, params):
        if self.roles:
            params = {**params, "role_crn": select_role(self.roles, role or None).id}
        key = self.add_key(instance_id, name, {"apikey": f"secret-{name}", "port": 6984})
        self.created_keys.append((instance_id, name, params))
        return key

    def get_key(self, key_id):
        try:
            return self.keys[key_id]
        except KeyError:
            raise NotFoundError(f"service key {key_id} not found") from None

    def find_key_by_name(self, instance_id, name):
        for key_id, key in self.keys.items():
            if key.name == name and self.key_instances[key_id] == instance_id:
                return key
        raise NotFoundError(f"service key {name} not found")

    def delete_key(self, key_id):
        self.deleted_keys.append(key_id)
        self.keys.pop(key_id, None)

    def list_roles(self, service_name):
        return list(self.roles)


@pytest.fixture(autouse=True)
def mock_kopf_event():
    """Events need a running operator; record them instead."""
    with patch("ibmcloud_operator.utils.events.kopf.event") as mock_event:
        yield mock_event


@pytest.fixture
def config() -> OperatorConfig:
    return OperatorConfig(sync_period=150.0, requeue_fast=10.0, dns_backoff=300.0)


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def cloud() -> FakeCloudClient:
    return FakeCloudClient()


@pytest.fixture
def resolver(cloud: FakeCloudClient) -> MagicMock:
    resolver = MagicMock()
    resolver.resolve.return_value = CloudSession(
        client=cloud,
        context=ResourceContext(region="us-south", resource_group_id="rg-1", resource_location="us-south"),
        plan_id="plan-lite",
        target="crn:v1:catalog:us-south",
        resource_group_id="rg-1",
    )
    return resolver
