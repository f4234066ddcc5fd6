"""Reconciler for Service resources."""

from __future__ import annotations

from typing import Any
from urllib.parse import quote

from ..builders.provider import CloudSession, SessionResolver
from ..config import OperatorConfig
from ..constants import (
    ANNOTATION_INSTANCE_ID,
    KIND_SERVICE,
    MESSAGE_PROCESSING,
    ONLINE_PROVIDER_STATES,
    SERVICE_FINALIZER,
    STATE_DELETING,
    STATE_FAILED,
    STATE_ONLINE,
    STATE_PENDING,
)
from ..models import ExternalID, ServiceInstance
from ..services.ibmcloud.base import RemoteInstance
from ..services.kube.store import ResourceStore
from ..tracing import add_span_attribute
from ..utils.conditions import ready_condition_for_state, set_creation_failed_condition
from ..utils.errors import (
    NotFoundError,
    OperatorError,
    SpecError,
    sanitize_exception,
)
from ..utils.events import (
    emit_instance_adopted,
    emit_instance_created,
    emit_instance_deleted,
    emit_instance_missing,
    emit_spec_restored,
)
from ..utils.params import resolve_params
from .base import BaseHandler, ReconcileResult


def map_state(provider_state: str) -> str:
    """Translate a provider lifecycle state into a Service state."""
    if provider_state in ONLINE_PROVIDER_STATES:
        return STATE_ONLINE
    return provider_state or STATE_PENDING


def dashboard_url(service_class: str, instance_id: str) -> str:
    """Console URL of a service instance."""
    return f"https://cloud.ibm.com/services/{service_class}/{quote(instance_id, safe='')}"


class ServiceReconciler(BaseHandler):
    """Drives a Service record to have a live remote service instance.

    The status carries the invariant this reconciler maintains: once an
    instance ID is bound, the plan, class, class type, external name and
    context in the status describe the remote instance that this record
    manages, and edits to those spec fields are reverted.
    """

    def __init__(self, store: ResourceStore, resolver: SessionResolver, config: OperatorConfig):
        super().__init__(KIND_SERVICE, store, config)
        self.resolver = resolver

    def reconcile(self, namespace: str, name: str) -> ReconcileResult:
        try:
            service = self.store.get_service(namespace, name)
        except NotFoundError:
            return ReconcileResult.done()

        add_span_attribute("service.class", service.spec.service_class)

        if not service.status.initialized:
            service.status.state = STATE_PENDING
            service.status.message = MESSAGE_PROCESSING
            self.store.update_status(service)

        if self.spec_changed(service):
            self.log_info(service, "Spec is immutable, restoring", reason="SpecRestored")
            self.restore_spec(service)
            self.store.update(service)
            emit_spec_restored(service.raw)

        try:
            session = self.resolver.resolve(service)
        except NotFoundError as e:
            if service.being_deleted and service.has_finalizer(SERVICE_FINALIZER):
                # Without the operator credentials the remote instance cannot be deleted
                self.log_warning(
                    service,
                    f"Cannot get operator secret or config map during deletion, removing finalizer: {e}",
                    reason="FinalizerRemoved",
                )
                self.remove_finalizer(service, SERVICE_FINALIZER)
                return ReconcileResult.done()
            return self.update_status_error(service, STATE_FAILED, e)
        except OperatorError as e:
            return self.update_status_error(service, STATE_FAILED, e)

        if service.being_deleted:
            if service.has_finalizer(SERVICE_FINALIZER):
                return self.finalize(service, session)
            return ReconcileResult.done()

        self.ensure_finalizer(service, SERVICE_FINALIZER)

        try:
            params = resolve_params(self.store, service.spec.parameters, service.namespace)
        except OperatorError as e:
            self.log_error(service, "Service has problems with its parameters", error=e)
            return self.update_status_error(service, STATE_FAILED, e)
        tags = list(service.spec.tags)

        instance_id = service.status.instance_id
        if instance_id.is_unset:
            if service.is_alias:
                return self._resolve_alias(service, session)
            return self._create(service, session, params, tags)
        if instance_id.is_pending:
            return self._adopt_or_create(service, session, params, tags)
        return self._verify(service, session, params, tags)

    @staticmethod
    def spec_changed(service: ServiceInstance) -> bool:
        """Whether immutable spec fields diverged from a populated status.

        An empty spec context means the defaults, which the status records
        once resolved.
        """
        status = service.status
        if not status.initialized or not status.plan:
            return False
        spec = service.spec
        return (
            spec.external_name != status.external_name
            or spec.plan != status.plan
            or spec.service_class != status.service_class
            or spec.service_class_type != status.service_class_type
            or (not spec.context.is_empty and spec.context != status.context)
        )

    @staticmethod
    def restore_spec(service: ServiceInstance) -> None:
        status = service.status
        service.spec.plan = status.plan
        service.spec.external_name = status.external_name
        service.spec.service_class = status.service_class
        service.spec.service_class_type = status.service_class_type
        service.spec.context = status.context

    @staticmethod
    def tags_or_params_changed(service: ServiceInstance) -> bool:
        return (
            service.spec.parameters != service.status.parameters
            or service.spec.tags != service.status.tags
        )

    def _resolve_alias(self, service: ServiceInstance, session: CloudSession) -> ReconcileResult:
        self.log_info(service, "Using alias plan, checking if instance exists", reason="AliasLookup")
        annotated_id = service.annotations.get(ANNOTATION_INSTANCE_ID) or None
        try:
            remote = session.client.find_alias_instance(service.external_name, annotated_id)
        except NotFoundError as e:
            return self.update_status_error(
                service,
                STATE_FAILED,
                OperatorError(f"no service instances with name {service.name} found for alias plan: {e}"),
            )
        except SpecError as e:
            return self.update_status_error(service, STATE_FAILED, e)
        except OperatorError as e:
            return self.update_status_error(
                service,
                STATE_FAILED,
                OperatorError(f"failed to resolve Alias plan instance {service.name}: {e}"),
            )
        emit_instance_adopted(service.raw, remote.id)
        return self.update_status(service, session, remote)

    def _create(
        self,
        service: ServiceInstance,
        session: CloudSession,
        params: dict[str, Any],
        tags: list[str],
    ) -> ReconcileResult:
        # The pending marker is persisted before the create call so an
        # interrupted pass adopts the instance instead of creating another.
        if not service.status.instance_id.is_pending:
            service.status.instance_id = ExternalID.pending()
            self.store.update_status(service)

        self.log_info(
            service,
            f"Creating service instance {service.external_name}",
            reason="Creating",
            service_class=service.spec.service_class,
        )
        try:
            remote = session.client.create_instance(
                service.external_name, session.plan_id, session.target, params, tags
            )
        except OperatorError as e:
            service.status.conditions = set_creation_failed_condition(
                service.status.conditions, sanitize_exception(e), service.generation
            )
            return self.update_status_error(service, STATE_FAILED, e)
        emit_instance_created(service.raw, remote.id)
        return self.update_status(service, session, remote, created=True)

    def _adopt_or_create(
        self,
        service: ServiceInstance,
        session: CloudSession,
        params: dict[str, Any],
        tags: list[str],
    ) -> ReconcileResult:
        try:
            remote = session.client.find_instance(service.external_name)
        except NotFoundError:
            return self._create(service, session, params, tags)
        except OperatorError as e:
            return self.update_status_error(service, STATE_PENDING, e)
        self.log_info(service, f"Adopting service instance {remote.id}", reason="Adopted")
        emit_instance_adopted(service.raw, remote.id)
        return self.update_status(service, session, remote)

    def _verify(
        self,
        service: ServiceInstance,
        session: CloudSession,
        params: dict[str, Any],
        tags: list[str],
    ) -> ReconcileResult:
        instance_id = service.status.instance_id.value
        try:
            remote = session.client.find_instance(service.external_name, instance_id)
        except NotFoundError:
            if service.is_alias:
                service.status.instance_id = ExternalID.unset()
                return self.update_status_error(
                    service,
                    STATE_PENDING,
                    OperatorError("aliased service instance no longer exists"),
                    dirty=True,
                )
            if service.self_healing:
                self.log_info(
                    service,
                    f"Service instance {instance_id} no longer exists, recreating",
                    reason="SelfHealing",
                )
                return self._create(service, session, params, tags)
            self.log_warning(
                service,
                f"Service instance {instance_id} no longer exists and self-healing is disabled",
                reason="InstanceMissing",
            )
            emit_instance_missing(service.raw, instance_id)
            return ReconcileResult.after(self.config.sync_period)
        except OperatorError as e:
            return self.update_status_error(service, STATE_PENDING, e)

        if self.tags_or_params_changed(service):
            self.log_info(service, "Updating tags and/or parameters", reason="Updating")
            try:
                state = session.client.update_instance(
                    instance_id, service.external_name, session.plan_id, params, tags
                )
            except OperatorError as e:
                return self.update_status_error(service, STATE_FAILED, e)
            remote = RemoteInstance(remote.id, state or remote.state, remote.name, remote.crn)

        return self.update_status(service, session, remote)

    def finalize(self, service: ServiceInstance, session: CloudSession) -> ReconcileResult:
        """Delete the remote instance, then release the record."""
        if service.status.state != STATE_DELETING:
            service.status.state = STATE_DELETING
            service.status.message = "Deleting service instance"
            self.store.update_status(service)

        try:
            self.delete_remote(service, session)
        except OperatorError as e:
            self.log_error(service, "Error deleting service instance", error=e, reason="DeletionFailed")
            service.status.state = STATE_FAILED
            service.status.message = sanitize_exception(e)
            self.store.update_status(service)
            return ReconcileResult.after(self.config.requeue_fast)

        self.remove_finalizer(service, SERVICE_FINALIZER)
        return ReconcileResult.done()

    def delete_remote(self, service: ServiceInstance, session: CloudSession) -> None:
        """Delete the instance this record manages; alias instances are never deleted."""
        if service.is_alias:
            self.log_info(service, "Aliased service will not be deleted", reason="AliasKept")
            return

        instance_id = service.status.instance_id
        if instance_id.is_unset:
            return
        if instance_id.is_pending:
            # A create may have gone through before its ID was recorded
            try:
                target = session.client.find_instance(service.external_name).id
            except NotFoundError:
                return
        else:
            target = instance_id.value

        self.log_info(service, f"Deleting service instance {target}", reason="Deleting")
        session.client.delete_instance(target)
        emit_instance_deleted(service.raw, target)

    def update_status(
        self,
        service: ServiceInstance,
        session: CloudSession,
        remote: RemoteInstance,
        created: bool = False,
    ) -> ReconcileResult:
        """Record a verified remote instance, writing only when something changed."""
        state = map_state(remote.state)
        status = service.status
        new_id = ExternalID.bound(remote.id)

        if (
            status.state != state
            or status.instance_id != new_id
            or self.tags_or_params_changed(service)
            or status.context != session.context
        ):
            status.state = state
            status.message = state
            status.instance_id = new_id
            status.dashboard_url = dashboard_url(service.spec.service_class, remote.id)
            status.plan = service.spec.plan
            status.external_name = service.spec.external_name
            status.service_class = service.spec.service_class
            status.service_class_type = service.spec.service_class_type
            status.parameters = list(service.spec.parameters)
            status.tags = list(service.spec.tags)
            status.context = session.context
            status.conditions = ready_condition_for_state(
                status.conditions, state, state, service.generation
            )
            try:
                self.store.update_status(service)
            except OperatorError as e:
                self.log_error(service, "Failed to record service instance status", error=e)
                if created and service.self_healing:
                    self._rollback(service, session, remote.id)
                raise

        self.record_state(service, state)
        return ReconcileResult.after(self.config.sync_period)

    def _rollback(self, service: ServiceInstance, session: CloudSession, instance_id: str) -> None:
        self.log_info(
            service,
            f"Deleting service instance {instance_id} whose status could not be recorded",
            reason="Rollback",
        )
        try:
            session.client.delete_instance(instance_id)
        except OperatorError as e:
            self.log_error(
                service,
                "Failed to delete external resource, operator state and external resource "
                "might be in an inconsistent state",
                error=e,
            )
