"""Main entry point for the IBM Cloud Operator.

Run with ``kopf run -m ibmcloud_operator.main --all-namespaces``.
"""

from __future__ import annotations

import logging
from typing import Any

import kopf

from . import health
from . import logging as structured_logging
from .builders.provider import SessionResolver
from .config import OperatorConfig
from .constants import API_GROUP, API_VERSION, PLURAL_BINDINGS, PLURAL_SERVICES
from .handlers.binding import BindingReconciler
from .handlers.service import ServiceReconciler
from .services.kube.store import ResourceStore
from .tracing import initialize_tracing

logger = logging.getLogger(__name__)

# Timer intervals are fixed when the handlers are registered
SYNC_PERIOD = OperatorConfig.from_env().sync_period


@kopf.on.startup()
def configure(settings: kopf.OperatorSettings, memo: kopf.Memo, **_: Any) -> None:
    """Configure the operator and build the reconcilers shared by all handlers."""
    structured_logging.setup_structured_logging()
    config = OperatorConfig.from_env()

    # Status is owned by the reconcilers; keep kopf's own bookkeeping in annotations
    settings.persistence.progress_storage = kopf.AnnotationsProgressStorage()
    settings.persistence.diffbase_storage = kopf.AnnotationsDiffBaseStorage()

    settings.posting.level = logging.WARNING
    settings.networking.request_timeout = 30.0
    settings.execution.max_workers = config.max_concurrent_reconciles

    store = ResourceStore()
    resolver = SessionResolver(store, config)
    memo.service_reconciler = ServiceReconciler(store, resolver, config)
    memo.binding_reconciler = BindingReconciler(store, resolver, config)

    health.start_http_server(config.metrics_port)
    initialize_tracing()
    logger.info(
        f"IBM Cloud Operator started (sync period {config.sync_period}s, "
        f"{config.max_concurrent_reconciles} workers)"
    )


@kopf.on.create(API_GROUP, API_VERSION, PLURAL_SERVICES)
@kopf.on.update(API_GROUP, API_VERSION, PLURAL_SERVICES)
@kopf.on.resume(API_GROUP, API_VERSION, PLURAL_SERVICES)
def handle_service(body: kopf.Body, memo: kopf.Memo, **_: Any) -> None:
    """Reconcile a Service."""
    memo.service_reconciler.handle(dict(body))


@kopf.timer(API_GROUP, API_VERSION, PLURAL_SERVICES, interval=SYNC_PERIOD, initial_delay=SYNC_PERIOD)
def sync_service(body: kopf.Body, memo: kopf.Memo, **_: Any) -> None:
    """Periodically resync a Service."""
    memo.service_reconciler.handle(dict(body), periodic=True)


@kopf.on.delete(API_GROUP, API_VERSION, PLURAL_SERVICES, optional=True)
def handle_service_delete(body: kopf.Body, memo: kopf.Memo, **_: Any) -> None:
    """Run the Service finalizer once deletion has been requested."""
    memo.service_reconciler.handle(dict(body))


@kopf.on.create(API_GROUP, API_VERSION, PLURAL_BINDINGS)
@kopf.on.update(API_GROUP, API_VERSION, PLURAL_BINDINGS)
@kopf.on.resume(API_GROUP, API_VERSION, PLURAL_BINDINGS)
def handle_binding(body: kopf.Body, memo: kopf.Memo, **_: Any) -> None:
    """Reconcile a Binding."""
    memo.binding_reconciler.handle(dict(body))


@kopf.timer(API_GROUP, API_VERSION, PLURAL_BINDINGS, interval=SYNC_PERIOD, initial_delay=SYNC_PERIOD)
def sync_binding(body: kopf.Body, memo: kopf.Memo, **_: Any) -> None:
    """Periodically resync a Binding."""
    memo.binding_reconciler.handle(dict(body), periodic=True)


@kopf.on.delete(API_GROUP, API_VERSION, PLURAL_BINDINGS, optional=True)
def handle_binding_delete(body: kopf.Body, memo: kopf.Memo, **_: Any) -> None:
    """Run the Binding finalizer once deletion has been requested."""
    memo.binding_reconciler.handle(dict(body))
