"""Base handler class with common functionality for all reconcilers."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

import kopf

from .. import metrics
from ..config import OperatorConfig
from ..constants import CONTROLLER_NAME, STATE_DELETING, STATE_FAILED, STATE_ONLINE, STATE_PENDING
from ..logging import log_resource_event
from ..models import Record
from ..services.kube.store import ResourceStore
from ..tracing import trace_span
from ..utils.conditions import ready_condition_for_state
from ..utils.context import with_correlation_id
from ..utils.errors import ConflictError, SpecError, is_dns_failure, sanitize_exception
from ..utils.events import emit_reconcile_failed

_TRACKED_STATES = (STATE_PENDING, STATE_ONLINE, STATE_FAILED, STATE_DELETING)


@dataclass(frozen=True)
class ReconcileResult:
    """When the record should be looked at again.

    ``requeue_after`` of None means no requeue is needed beyond the next
    change notification.
    """

    requeue_after: float | None = None

    @classmethod
    def done(cls) -> ReconcileResult:
        return cls()

    @classmethod
    def after(cls, seconds: float) -> ReconcileResult:
        return cls(requeue_after=seconds)


class BaseHandler:
    """Base class for the Service and Binding reconcilers.

    Args:
        kind: The Kubernetes resource kind (e.g., "Service", "Binding")
        store: Access to records, secrets and config maps
        config: Operator configuration
    """

    def __init__(self, kind: str, store: ResourceStore, config: OperatorConfig):
        self.kind = kind
        self.store = store
        self.config = config
        self.logger = logging.getLogger(f"{__name__}.{kind.lower()}")
        # Records whose timer passes are skipped, by uid, until the given time
        self._backoff_until: dict[str, float] = {}

    def _log(
        self,
        level: int,
        record: Record | dict[str, Any],
        message: str,
        event: str,
        reason: str,
        **kwargs: Any,
    ) -> None:
        if isinstance(record, Record):
            name, namespace, uid = record.name, record.namespace, record.uid
        else:
            name = record.get("name", "unknown")
            namespace = record.get("namespace", "default")
            uid = record.get("uid", "unknown")
        log_resource_event(
            self.logger,
            controller=CONTROLLER_NAME,
            resource_kind=self.kind,
            resource_name=name,
            namespace=namespace,
            uid=uid,
            event=event,
            reason=reason,
            message=message,
            level=level,
            **kwargs,
        )

    def log_info(
        self,
        record: Record | dict[str, Any],
        message: str,
        event: str = "info",
        reason: str = "Info",
        **kwargs: Any,
    ) -> None:
        """Log an info-level structured log message.

        Args:
            record: The record, or metadata of a record that could not be read
            message: Log message
            event: Event type (default: "info")
            reason: Reason for the event (default: "Info")
            **kwargs: Additional fields to include in the log
        """
        self._log(logging.INFO, record, message, event, reason, **kwargs)

    def log_warning(
        self,
        record: Record | dict[str, Any],
        message: str,
        event: str = "warning",
        reason: str = "Warning",
        **kwargs: Any,
    ) -> None:
        """Log a warning-level structured log message."""
        self._log(logging.WARNING, record, message, event, reason, **kwargs)

    def log_error(
        self,
        record: Record | dict[str, Any],
        message: str,
        error: BaseException | None = None,
        event: str = "error",
        reason: str = "Error",
        **kwargs: Any,
    ) -> None:
        """Log an error-level structured log message.

        Args:
            record: The record, or metadata of a record that could not be read
            message: Log message
            error: Optional exception to include sanitized error details
            event: Event type (default: "error")
            reason: Reason for the event (default: "Error")
            **kwargs: Additional fields to include in the log
        """
        log_data = kwargs.copy()
        if error is not None:
            log_data["error"] = sanitize_exception(error)
            log_data["error_type"] = type(error).__name__
        self._log(logging.ERROR, record, message, event, reason, **log_data)

    def ensure_finalizer(self, record: Record, finalizer: str) -> bool:
        """Add a finalizer to the record and persist it.

        Returns:
            True if the record was written
        """
        if record.has_finalizer(finalizer):
            return False
        record.finalizers.append(finalizer)
        self.store.update(record)
        return True

    def remove_finalizer(self, record: Record, finalizer: str) -> bool:
        """Remove a finalizer from the record and persist it.

        Returns:
            True if the record was written
        """
        if not record.has_finalizer(finalizer):
            return False
        record.finalizers = [f for f in record.finalizers if f != finalizer]
        self.store.update(record)
        self.forget_state(record)
        return True

    def record_state(self, record: Record, state: str) -> None:
        """Expose the record's current state as a gauge."""
        for tracked in _TRACKED_STATES:
            metrics.resource_state.labels(
                kind=self.kind, namespace=record.namespace, name=record.name, state=tracked
            ).set(1 if tracked == state else 0)

    def forget_state(self, record: Record) -> None:
        """Drop what is tracked in memory for a record that is going away."""
        self._backoff_until.pop(record.uid, None)
        for tracked in _TRACKED_STATES:
            try:
                metrics.resource_state.remove(self.kind, record.namespace, record.name, tracked)
            except KeyError:
                # Older prometheus_client releases raise for series never set
                continue

    def reconcile(self, namespace: str, name: str) -> ReconcileResult:
        raise NotImplementedError

    def reconcile_with_metrics(
        self,
        body: dict[str, Any],
        reconcile_fn: Callable[[], ReconcileResult],
    ) -> ReconcileResult:
        """Execute reconciliation with metrics, tracing and error handling.

        Args:
            body: The Kubernetes object as delivered by kopf
            reconcile_fn: Function to execute for reconciliation

        Returns:
            The reconcile outcome
        """
        meta = body.get("metadata") or {}
        metrics.reconcile_total.labels(kind=self.kind, result="started").inc()

        start_time = time.time()
        with with_correlation_id(), trace_span(
            f"reconcile_{self.kind.lower()}",
            kind=self.kind,
            attributes={"resource.name": meta.get("name", ""), "resource.namespace": meta.get("namespace", "")},
        ):
            try:
                result = reconcile_fn()
            except ConflictError as e:
                # The next change notification reconciles the newer version
                self.log_info(meta, f"Record changed concurrently: {e}", reason="Conflict")
                metrics.reconcile_total.labels(kind=self.kind, result="conflict").inc()
                return ReconcileResult.done()
            except Exception as e:
                metrics.error_total.labels(kind=self.kind, error_type=type(e).__name__).inc()
                self.log_error(meta, "Reconciliation failed", error=e, reason="ReconciliationFailed")
                emit_reconcile_failed(body, f"Reconciliation failed: {sanitize_exception(e)}")
                metrics.reconcile_total.labels(kind=self.kind, result="error").inc()
                raise
            finally:
                metrics.reconcile_duration_seconds.labels(kind=self.kind).observe(time.time() - start_time)

        metrics.reconcile_total.labels(kind=self.kind, result="success").inc()
        return result

    def handle(self, body: dict[str, Any], periodic: bool = False) -> None:
        """Entry point for kopf handlers.

        Short requeues are raised as ``kopf.TemporaryError`` so kopf retries
        after the requested delay; requeues on the sync period are left to
        the periodic timer. Longer requeues, such as the DNS backoff, make
        timer passes skip the record until the delay has elapsed.

        Args:
            body: The Kubernetes object as delivered by kopf
            periodic: Whether the call comes from the sync timer

        Raises:
            kopf.TemporaryError: When the record must be looked at again soon
        """
        meta = body.get("metadata") or {}
        key = meta.get("uid", "")
        if periodic and time.time() < self._backoff_until.get(key, 0.0):
            return

        result = self.reconcile_with_metrics(
            body, lambda: self.reconcile(meta.get("namespace", ""), meta.get("name", ""))
        )
        if result.requeue_after is not None and result.requeue_after > self.config.sync_period:
            self._backoff_until[key] = time.time() + result.requeue_after
        else:
            self._backoff_until.pop(key, None)
        if result.requeue_after is not None and result.requeue_after < self.config.sync_period:
            raise kopf.TemporaryError(
                f"{self.kind} {meta.get('name')} requeued", delay=result.requeue_after
            )

    def update_status_error(
        self,
        record: Any,
        state: str,
        error: Exception,
        dirty: bool = False,
    ) -> ReconcileResult:
        """Surface an error through the record's status.

        Name-resolution failures back off without touching the status; spec
        errors are not requeued since only an edit can fix them.

        Args:
            record: A Service or Binding
            state: State to record
            error: The failure
            dirty: Whether the status was modified locally and must be written

        Returns:
            The requeue decision for the failure
        """
        message = sanitize_exception(error)
        self.log_error(record, "Updating status with error", error=error, state=state)

        if is_dns_failure(error):
            return ReconcileResult.after(self.config.dns_backoff)

        status = record.status
        if dirty or status.state != state or status.message != message:
            status.state = state
            status.message = message
            status.conditions = ready_condition_for_state(
                status.conditions, state, message, record.generation
            )
            self.store.update_status(record)
        self.record_state(record, state)

        if isinstance(error, SpecError):
            return ReconcileResult.done()
        return ReconcileResult.after(self.config.sync_period)
