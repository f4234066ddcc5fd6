"""Kubernetes access for the records and artifacts the reconcilers manage."""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from typing import Any, Iterator, TypeVar

from kubernetes import client

from ... import metrics
from ...constants import (
    API_GROUP,
    API_VERSION,
    DEFAULT_NAMESPACE,
    FIELD_MANAGER,
    PLURAL_BINDINGS,
    PLURAL_SERVICES,
)
from ...models import Binding, Record, ServiceInstance
from ...utils.errors import AlreadyExistsError, ConflictError, NotFoundError, StoreError

logger = logging.getLogger(__name__)

_R = TypeVar("_R", bound=Record)


def get_k8s_client() -> client.ApiClient:
    """Get Kubernetes API client, in-cluster first and kubeconfig otherwise."""
    from kubernetes import config

    try:
        config.load_incluster_config()
    except config.ConfigException:
        config.load_kube_config()
    return client.ApiClient()


@contextmanager
def _k8s_call(operation: str, what: str) -> Iterator[None]:
    """Translate API errors and record call metrics for one Kubernetes request."""
    start_time = time.time()
    result = "success"
    try:
        yield
    except client.exceptions.ApiException as e:
        result = "error"
        if e.status == 404:
            raise NotFoundError(f"{what} not found") from e
        if e.status == 409:
            if operation.startswith("create"):
                raise AlreadyExistsError(f"{what} already exists") from e
            raise ConflictError(f"{what} was modified concurrently") from e
        raise StoreError(f"{operation} {what}: {e.status} {e.reason}", status_code=e.status) from e
    except Exception:
        result = "error"
        raise
    finally:
        metrics.api_call_total.labels(api_type="k8s", operation=operation, result=result).inc()
        metrics.api_call_duration_seconds.labels(api_type="k8s", operation=operation).observe(
            time.time() - start_time
        )


class ResourceStore:
    """Reads and writes Services, Bindings, Secrets and ConfigMaps.

    Writes to custom resources carry the ``resourceVersion`` read earlier, so
    a concurrent modification surfaces as ``ConflictError`` instead of being
    silently overwritten.
    """

    def __init__(self, api_client: client.ApiClient | None = None) -> None:
        api_client = api_client or get_k8s_client()
        self.custom_api = client.CustomObjectsApi(api_client)
        self.core_api = client.CoreV1Api(api_client)

    @staticmethod
    def _plural(record: Record) -> str:
        return PLURAL_BINDINGS if isinstance(record, Binding) else PLURAL_SERVICES

    def _get_record(self, plural: str, namespace: str, name: str) -> dict[str, Any]:
        with _k8s_call(f"get_{plural}", f"{plural} {namespace}/{name}"):
            return self.custom_api.get_namespaced_custom_object(
                group=API_GROUP,
                version=API_VERSION,
                namespace=namespace,
                plural=plural,
                name=name,
            )

    def get_service(self, namespace: str, name: str) -> ServiceInstance:
        """Read a Service record.

        Raises:
            NotFoundError: If the record does not exist
        """
        return ServiceInstance.from_dict(self._get_record(PLURAL_SERVICES, namespace, name))

    def get_binding(self, namespace: str, name: str) -> Binding:
        """Read a Binding record.

        Raises:
            NotFoundError: If the record does not exist
        """
        return Binding.from_dict(self._get_record(PLURAL_BINDINGS, namespace, name))

    def update(self, record: _R) -> _R:
        """Replace a record's metadata and spec, keeping its local status.

        Raises:
            ConflictError: If the record changed since it was read
            NotFoundError: If the record no longer exists
        """
        plural = self._plural(record)
        with _k8s_call(f"update_{plural}", f"{plural} {record.namespace}/{record.name}"):
            obj = self.custom_api.replace_namespaced_custom_object(
                group=API_GROUP,
                version=API_VERSION,
                namespace=record.namespace,
                plural=plural,
                name=record.name,
                body=record.to_body(),
                field_manager=FIELD_MANAGER,
            )
        record.refresh(obj, keep_status=True)
        return record

    def update_status(self, record: _R) -> _R:
        """Replace a record's status subresource.

        Raises:
            ConflictError: If the record changed since it was read
            NotFoundError: If the record no longer exists
        """
        plural = self._plural(record)
        with _k8s_call(f"update_{plural}_status", f"{plural} {record.namespace}/{record.name}"):
            obj = self.custom_api.replace_namespaced_custom_object_status(
                group=API_GROUP,
                version=API_VERSION,
                namespace=record.namespace,
                plural=plural,
                name=record.name,
                body=record.to_body(),
                field_manager=FIELD_MANAGER,
            )
        record.refresh(obj)
        return record

    def get_secret(self, namespace: str, name: str) -> client.V1Secret:
        """Read a secret.

        Raises:
            NotFoundError: If the secret does not exist
        """
        with _k8s_call("get_secret", f"secret {namespace}/{name}"):
            return self.core_api.read_namespaced_secret(name=name, namespace=namespace)

    def get_secret_with_fallback(self, namespace: str, name: str) -> client.V1Secret:
        """Read a secret from ``namespace``, falling back to the default namespace."""
        try:
            return self.get_secret(namespace, name)
        except NotFoundError:
            if namespace == DEFAULT_NAMESPACE:
                raise
            return self.get_secret(DEFAULT_NAMESPACE, name)

    def get_config_map(self, namespace: str, name: str) -> client.V1ConfigMap:
        """Read a config map.

        Raises:
            NotFoundError: If the config map does not exist
        """
        with _k8s_call("get_configmap", f"configmap {namespace}/{name}"):
            return self.core_api.read_namespaced_config_map(name=name, namespace=namespace)

    def get_config_map_with_fallback(self, namespace: str, name: str) -> client.V1ConfigMap:
        """Read a config map from ``namespace``, falling back to the default namespace."""
        try:
            return self.get_config_map(namespace, name)
        except NotFoundError:
            if namespace == DEFAULT_NAMESPACE:
                raise
            return self.get_config_map(DEFAULT_NAMESPACE, name)

    def create_secret(self, secret: client.V1Secret) -> client.V1Secret:
        """Create a secret.

        Raises:
            AlreadyExistsError: If a secret with the same name exists
        """
        namespace = secret.metadata.namespace
        with _k8s_call("create_secret", f"secret {namespace}/{secret.metadata.name}"):
            return self.core_api.create_namespaced_secret(
                namespace=namespace,
                body=secret,
                field_manager=FIELD_MANAGER,
            )

    def delete_secret(self, namespace: str, name: str) -> bool:
        """Delete a secret; a missing secret counts as deleted.

        Returns:
            True if a secret was deleted
        """
        try:
            with _k8s_call("delete_secret", f"secret {namespace}/{name}"):
                self.core_api.delete_namespaced_secret(name=name, namespace=namespace)
        except NotFoundError:
            return False
        logger.debug(f"Deleted secret {namespace}/{name}")
        return True
