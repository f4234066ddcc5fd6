"""Reconciler for Binding resources."""

from __future__ import annotations

from typing import Any

from .. import metrics
from ..builders.provider import CloudSession, SessionResolver
from ..config import OperatorConfig
from ..constants import (
    API_GROUP_VERSION,
    ANNOTATION_KEY_ID,
    BINDING_FINALIZER,
    COND_PARENT_NOT_READY,
    KIND_BINDING,
    KIND_SERVICE,
    MESSAGE_PROCESSING,
    PARAM_SKIP_OWNER_REFERENCES,
    SERVICE_CLASS_TYPE_CF,
    STATE_FAILED,
    STATE_ONLINE,
    STATE_PENDING,
)
from ..models import Binding, ExternalID, ServiceInstance
from ..services.ibmcloud.base import RemoteKey
from ..services.kube.store import ResourceStore
from ..utils.conditions import (
    ready_condition_for_state,
    remove_condition,
    set_parent_not_ready_condition,
)
from ..utils.errors import ConflictError, NotFoundError, OperatorError, sanitize_exception
from ..utils.events import emit_key_created, emit_key_deleted, emit_secret_recreated
from ..utils.params import resolve_params
from ..utils.secrets import build_binding_secret, secret_matches
from .base import BaseHandler, ReconcileResult

ONLINE_STATUS_ATTEMPTS = 5

# Create failures carrying this text are transient; the parent instance is still provisioning
_IN_PROGRESS_MARKER = "still in progress"


def service_owner_reference(service: ServiceInstance) -> dict[str, Any]:
    """Controller owner reference pointing at a Service."""
    return {
        "apiVersion": API_GROUP_VERSION,
        "kind": KIND_SERVICE,
        "name": service.name,
        "uid": service.uid,
        "controller": True,
        "blockOwnerDeletion": True,
    }


class BindingReconciler(BaseHandler):
    """Drives a Binding record to have a service key and a Secret holding its credentials.

    Once Online, the Binding's instance ID equals its parent Service's
    instance ID and the Secret mirrors the key's credentials.
    """

    def __init__(self, store: ResourceStore, resolver: SessionResolver, config: OperatorConfig):
        super().__init__(KIND_BINDING, store, config)
        self.resolver = resolver

    def reconcile(self, namespace: str, name: str) -> ReconcileResult:
        try:
            binding = self.store.get_binding(namespace, name)
        except NotFoundError:
            return ReconcileResult.done()

        if not binding.status.initialized:
            binding.status.state = STATE_PENDING
            binding.status.message = MESSAGE_PROCESSING
            self.store.update_status(binding)

        try:
            parent = self.store.get_service(binding.service_namespace, binding.spec.service_name)
        except NotFoundError:
            self.log_info(
                binding,
                f"Binding could not read service {binding.spec.service_name}",
                reason="ParentNotFound",
            )
            if binding.being_deleted:
                self.remove_finalizer(binding, BINDING_FINALIZER)
                return ReconcileResult.done()
            if not binding.status.key_instance_id.is_unset:
                return self.reset_resource(binding)
            return ReconcileResult.after(self.config.requeue_fast)

        if parent.namespace == binding.namespace:
            try:
                params = resolve_params(self.store, binding.spec.parameters, binding.namespace)
            except OperatorError as e:
                self.log_error(binding, "Binding has problems with its parameters", error=e)
                return self.update_status_error(binding, STATE_FAILED, e)
            if params.get(PARAM_SKIP_OWNER_REFERENCES) not in (True, "true"):
                self.ensure_owner_reference(binding, parent)

        if not parent.status.instance_id.is_bound:
            self.log_info(binding, "Parent service not yet initialized", reason="ParentNotReady")
            self.mark_parent_not_ready(binding, parent)
            return ReconcileResult.after(self.config.requeue_fast)

        try:
            session = self.resolver.resolve(parent)
        except NotFoundError as e:
            if binding.being_deleted and binding.has_finalizer(BINDING_FINALIZER):
                self.log_warning(
                    binding,
                    f"Cannot get operator secret or config map during deletion, removing finalizer: {e}",
                    reason="FinalizerRemoved",
                )
                self.remove_finalizer(binding, BINDING_FINALIZER)
                return ReconcileResult.done()
            return self.update_status_error(binding, STATE_PENDING, e)
        except OperatorError as e:
            return self.update_status_error(binding, STATE_PENDING, e)

        if binding.being_deleted:
            if binding.has_finalizer(BINDING_FINALIZER):
                return self.finalize(binding, session)
            return ReconcileResult.done()

        self.ensure_finalizer(binding, BINDING_FINALIZER)

        parent_id = parent.status.instance_id
        if binding.status.instance_id.is_unset:
            binding.status.instance_id = parent_id
        elif binding.status.instance_id != parent_id:
            self.log_info(
                binding,
                f"Parent service instance changed from {binding.status.instance_id} to {parent_id}",
                reason="ParentChanged",
            )
            try:
                self.delete_credentials(binding, session)
            except OperatorError as e:
                return self.update_status_error(binding, STATE_FAILED, e)
            binding.status.instance_id = parent_id
            binding.status.key_instance_id = ExternalID.unset()

        if binding.status.key_instance_id.is_unset:
            return self._create_key(binding, session)
        return self._verify_key(binding, session)

    def ensure_owner_reference(self, binding: Binding, parent: ServiceInstance) -> bool:
        """Make the parent Service the controller of the Binding.

        Returns:
            True if the record was written
        """
        if any(ref.get("uid") == parent.uid for ref in binding.owner_references):
            return False
        refs = [ref for ref in binding.owner_references if not ref.get("controller")]
        refs.append(service_owner_reference(parent))
        binding.owner_references = refs
        self.store.update(binding)
        return True

    def mark_parent_not_ready(self, binding: Binding, parent: ServiceInstance) -> None:
        if any(c.get("type") == COND_PARENT_NOT_READY for c in binding.status.conditions):
            return
        binding.status.conditions = set_parent_not_ready_condition(
            binding.status.conditions,
            f"Service {parent.name} has no instance yet",
            binding.generation,
        )
        self.store.update_status(binding)

    def finalize(self, binding: Binding, session: CloudSession) -> ReconcileResult:
        """Delete the key and its Secret, then release the record."""
        self.log_info(binding, "Resource marked for deletion", reason="Deleting")
        try:
            self.delete_credentials(binding, session)
        except OperatorError as e:
            self.log_error(binding, "Error deleting credentials", error=e, reason="DeletionFailed")
            binding.status.state = STATE_FAILED
            binding.status.message = sanitize_exception(e)
            self.store.update_status(binding)
            return ReconcileResult.after(self.config.requeue_fast)

        self.remove_finalizer(binding, BINDING_FINALIZER)
        return ReconcileResult.done()

    def delete_credentials(self, binding: Binding, session: CloudSession) -> None:
        """Delete the key this Binding owns and the Secret; alias keys stay remote."""
        if not binding.is_alias:
            key_id = binding.status.key_instance_id
            target = ""
            if key_id.is_bound:
                target = key_id.value
            elif key_id.is_pending and binding.status.instance_id.is_bound:
                # A create may have gone through before its ID was recorded
                try:
                    target = session.client.find_key_by_name(
                        binding.status.instance_id.value, binding.name
                    ).id
                except NotFoundError:
                    pass
            if target:
                session.client.delete_key(target)
                emit_key_deleted(binding.raw, target)
        self.store.delete_secret(binding.namespace, binding.secret_name)

    def reset_resource(self, binding: Binding) -> ReconcileResult:
        """Forget the parent's instance and key after the parent went away."""
        status = binding.status
        status.state = STATE_PENDING
        status.message = MESSAGE_PROCESSING
        status.instance_id = ExternalID.unset()
        status.key_instance_id = ExternalID.unset()

        try:
            self.store.delete_secret(binding.namespace, binding.secret_name)
        except OperatorError as e:
            self.log_error(binding, f"Unable to delete secret {binding.secret_name}", error=e)
            return ReconcileResult.after(self.config.sync_period)

        status.secret_name = ""
        status.conditions = ready_condition_for_state(
            status.conditions, STATE_PENDING, MESSAGE_PROCESSING, binding.generation
        )
        self.store.update_status(binding)
        self.record_state(binding, STATE_PENDING)
        return ReconcileResult.after(self.config.sync_period)

    def alias_credentials(self, binding: Binding, session: CloudSession) -> RemoteKey:
        """Find the existing key an alias Binding points at.

        Cloud Foundry keys are found by name; resource controller keys by
        the ``keyId`` annotation, whose key must carry the alias name.

        Raises:
            NotFoundError: If the key is gone or its credentials are redacted
            OperatorError: If the annotation is missing or inconsistent
        """
        alias = binding.spec.alias
        instance_id = binding.status.instance_id.value
        if session.service_class_type == SERVICE_CLASS_TYPE_CF:
            return session.client.find_key_by_name(instance_id, alias)

        key_id = binding.annotations.get(ANNOTATION_KEY_ID)
        if not key_id:
            raise OperatorError(f"Alias credential does not have {ANNOTATION_KEY_ID} annotation")
        key = session.client.get_key(key_id)
        if key.name != alias:
            raise OperatorError(
                f'alias credential name and keyid do not match. Key name: "{key.name}", Alias name: "{alias}"'
            )
        return key

    def _owned_credentials(self, binding: Binding, session: CloudSession) -> RemoteKey:
        key_id = binding.status.key_instance_id
        if key_id.is_bound:
            return session.client.get_key(key_id.value)
        return session.client.find_key_by_name(binding.status.instance_id.value, binding.name)

    def create_credentials(self, binding: Binding, session: CloudSession) -> RemoteKey:
        """Create a service key on the parent's instance.

        Raises:
            OperatorError: If parameters cannot be resolved or the provider call fails
        """
        self.log_info(binding, f"Creating credentials {binding.name}", reason="Creating")
        params = resolve_params(self.store, binding.spec.parameters, binding.namespace)
        key = session.client.create_key(
            binding.status.instance_id.value, binding.name, binding.spec.role, params
        )
        emit_key_created(binding.raw, key.id)
        return key

    def create_secret(self, binding: Binding, key: RemoteKey) -> None:
        """Materialize the key's credentials, replacing any Secret of the same name."""
        self.store.delete_secret(binding.namespace, binding.secret_name)
        secret = build_binding_secret(
            binding.meta,
            binding.secret_name,
            binding.spec.service_name,
            binding.status.instance_id.value,
            key.id,
            key.credentials,
        )
        self.store.create_secret(secret)

    def _create_key(self, binding: Binding, session: CloudSession) -> ReconcileResult:
        # Persisted before the provider call so an interrupted pass finds the key by name
        binding.status.key_instance_id = ExternalID.pending()
        self.store.update_status(binding)

        if binding.is_alias:
            try:
                key = self.alias_credentials(binding, session)
            except OperatorError as e:
                self.log_info(binding, f"Error retrieving alias credentials: {e}", reason="AliasLookup")
                return self.update_status_error(binding, STATE_PENDING, e)
        else:
            try:
                key = self.create_credentials(binding, session)
            except OperatorError as e:
                state = STATE_PENDING if _IN_PROGRESS_MARKER in str(e) else STATE_FAILED
                return self.update_status_error(binding, state, e)

        binding.status.key_instance_id = ExternalID.bound(key.id)
        try:
            self.create_secret(binding, key)
        except OperatorError as e:
            return self.update_status_error(binding, STATE_FAILED, e)
        return self.update_status_online(binding)

    def _verify_key(self, binding: Binding, session: CloudSession) -> ReconcileResult:
        self.log_info(binding, "Service key should already exist, verifying", reason="Verifying")
        try:
            if binding.is_alias:
                key = self.alias_credentials(binding, session)
            else:
                key = self._owned_credentials(binding, session)
        except NotFoundError:
            if binding.is_alias:
                return self.reset_resource(binding)
            self.log_info(binding, "Service key does not exist, recreating", reason="Recreating")
            try:
                key = self.create_credentials(binding, session)
            except OperatorError as e:
                return self.update_status_error(binding, STATE_FAILED, e)
        except OperatorError as e:
            return self.update_status_error(binding, STATE_FAILED, e)

        binding.status.key_instance_id = ExternalID.bound(key.id)
        try:
            self.verify_secret(binding, key)
        except OperatorError as e:
            return self.update_status_error(binding, STATE_FAILED, e)
        return self.update_status_online(binding)

    def verify_secret(self, binding: Binding, key: RemoteKey) -> None:
        """Recreate the Secret when it is missing or no longer mirrors the key."""
        try:
            secret = self.store.get_secret(binding.namespace, binding.secret_name)
        except NotFoundError:
            self.log_info(
                binding, f"Secret {binding.secret_name} does not exist, recreating", reason="Recreating"
            )
            self.create_secret(binding, key)
            return

        if secret_matches(secret, key.id, key.credentials):
            return

        self.log_info(
            binding,
            f"Secret {binding.secret_name} diverged from service key {key.id}, recreating",
            reason="DriftDetected",
        )
        metrics.drift_detected_total.labels(kind=self.kind, resource_type="secret").inc()
        emit_secret_recreated(binding.raw, binding.secret_name)
        self.create_secret(binding, key)

    def update_status_online(self, binding: Binding) -> ReconcileResult:
        """Record the Online state, re-reading the record when a write conflicts."""
        current = binding
        for attempt in range(1, ONLINE_STATUS_ATTEMPTS + 1):
            status = current.status
            before = status.to_dict()
            status.state = STATE_ONLINE
            status.message = STATE_ONLINE
            status.secret_name = current.secret_name
            status.instance_id = binding.status.instance_id
            status.key_instance_id = binding.status.key_instance_id
            status.conditions = ready_condition_for_state(
                remove_condition(status.conditions, COND_PARENT_NOT_READY),
                STATE_ONLINE,
                STATE_ONLINE,
                current.generation,
            )
            if status.to_dict() == before:
                break
            try:
                self.store.update_status(current)
                break
            except ConflictError:
                if attempt == ONLINE_STATUS_ATTEMPTS:
                    raise
                self.log_info(binding, "Status write conflicted, retrying", reason="Conflict")
                current = self.store.get_binding(binding.namespace, binding.name)

        self.record_state(binding, STATE_ONLINE)
        return ReconcileResult.after(self.config.sync_period)
