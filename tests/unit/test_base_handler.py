"""Tests for base handler functionality."""

from __future__ import annotations

import json
import logging
import socket

import kopf
import pytest
from prometheus_client import REGISTRY

from conftest import FakeStore, service_body
from ibmcloud_operator import metrics
from ibmcloud_operator.constants import KIND_SERVICE, SERVICE_FINALIZER
from ibmcloud_operator.handlers.base import BaseHandler, ReconcileResult
from ibmcloud_operator.utils.context import get_correlation_id
from ibmcloud_operator.utils.errors import ConflictError, ProviderError, SpecError


class StubHandler(BaseHandler):
    """Handler whose reconcile outcome is scripted by the test."""

    def __init__(self, store, config, outcome):
        super().__init__(KIND_SERVICE, store, config)
        self.outcome = outcome
        self.seen = []

    def reconcile(self, namespace, name):
        self.seen.append((namespace, name, get_correlation_id()))
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


@pytest.fixture
def handler(store, config):
    return StubHandler(store, config, ReconcileResult.done())


class TestReconcileResult:
    """Test cases for ReconcileResult."""

    def test_done(self):
        assert ReconcileResult.done().requeue_after is None

    def test_after(self):
        assert ReconcileResult.after(10).requeue_after == 10


class TestHandle:
    """Test cases for the kopf entry point."""

    def test_passes_name_and_namespace(self, handler):
        """Test that the record is looked up by its metadata."""
        handler.handle(service_body())

        namespace, name, corr_id = handler.seen[0]
        assert (namespace, name) == ("default", "mydb")
        assert corr_id is not None

    def test_sync_period_requeue_left_to_timer(self, handler, config):
        """Test that a normal requeue does not raise."""
        handler.outcome = ReconcileResult.after(config.sync_period)

        handler.handle(service_body())

    def test_short_requeue_raises_temporary_error(self, handler):
        """Test that fast requeues are handed back to kopf."""
        handler.outcome = ReconcileResult.after(10.0)

        with pytest.raises(kopf.TemporaryError) as exc_info:
            handler.handle(service_body())

        assert exc_info.value.delay == 10.0

    def test_long_backoff_skips_timer_passes(self, handler, config, monkeypatch):
        """Test that timer passes wait out a backoff longer than the sync period."""
        now = [1000.0]
        monkeypatch.setattr("ibmcloud_operator.handlers.base.time.time", lambda: now[0])
        handler.outcome = ReconcileResult.after(config.dns_backoff)

        handler.handle(service_body())
        now[0] += config.sync_period
        handler.handle(service_body(), periodic=True)

        assert len(handler.seen) == 1

        now[0] += config.dns_backoff
        handler.outcome = ReconcileResult.after(config.sync_period)
        handler.handle(service_body(), periodic=True)
        handler.handle(service_body(), periodic=True)

        assert len(handler.seen) == 3

    def test_change_notifications_ignore_backoff(self, handler, config):
        """Test that edits are reconciled even while backing off."""
        handler.outcome = ReconcileResult.after(config.dns_backoff)

        handler.handle(service_body())
        handler.handle(service_body())

        assert len(handler.seen) == 2

    def test_conflict_is_not_an_error(self, handler):
        """Test that a concurrent modification ends the pass quietly."""
        handler.outcome = ConflictError("modified")
        conflicts = metrics.reconcile_total.labels(kind=KIND_SERVICE, result="conflict")
        before = conflicts._value.get()

        handler.handle(service_body())

        assert conflicts._value.get() == before + 1

    def test_unexpected_error_propagates(self, handler, mock_kopf_event):
        """Test that other failures are counted, reported and re-raised."""
        handler.outcome = RuntimeError("boom")
        errors = metrics.error_total.labels(kind=KIND_SERVICE, error_type="RuntimeError")
        before = errors._value.get()

        with pytest.raises(RuntimeError):
            handler.handle(service_body())

        assert errors._value.get() == before + 1
        assert mock_kopf_event.call_args.kwargs["reason"] == "ReconcileFailed"

    def test_success_recorded(self, handler):
        """Test that successful passes are counted."""
        successes = metrics.reconcile_total.labels(kind=KIND_SERVICE, result="success")
        before = successes._value.get()

        handler.handle(service_body())

        assert successes._value.get() == before + 1


class TestFinalizers:
    """Test cases for finalizer management."""

    def test_ensure_finalizer_adds_when_missing(self, handler, store):
        store.add(service_body())
        service = store.get_service("default", "mydb")

        assert handler.ensure_finalizer(service, SERVICE_FINALIZER) is True
        assert store.raw(KIND_SERVICE, "default", "mydb")["metadata"]["finalizers"] == [SERVICE_FINALIZER]

    def test_ensure_finalizer_no_duplicate(self, handler, store):
        store.add(service_body(finalizers=[SERVICE_FINALIZER]))
        service = store.get_service("default", "mydb")

        assert handler.ensure_finalizer(service, SERVICE_FINALIZER) is False
        assert store.updates == 0

    def test_remove_finalizer_keeps_others(self, handler, store):
        store.add(service_body(finalizers=[SERVICE_FINALIZER, "other-finalizer"]))
        service = store.get_service("default", "mydb")

        assert handler.remove_finalizer(service, SERVICE_FINALIZER) is True
        assert store.raw(KIND_SERVICE, "default", "mydb")["metadata"]["finalizers"] == ["other-finalizer"]

    def test_remove_missing_finalizer(self, handler, store):
        store.add(service_body())
        service = store.get_service("default", "mydb")

        assert handler.remove_finalizer(service, SERVICE_FINALIZER) is False
        assert store.updates == 0

    def test_remove_finalizer_drops_state_series(self, handler, store):
        store.add(service_body(name="gone", finalizers=[SERVICE_FINALIZER]))
        service = store.get_service("default", "gone")
        handler.record_state(service, "Online")
        labels = {"kind": KIND_SERVICE, "namespace": "default", "name": "gone", "state": "Online"}
        assert REGISTRY.get_sample_value("ibmcloud_operator_resource_state", labels) == 1.0

        handler.remove_finalizer(service, SERVICE_FINALIZER)

        for state in ("Pending", "Online", "Failed", "Deleting"):
            assert REGISTRY.get_sample_value("ibmcloud_operator_resource_state", {**labels, "state": state}) is None

    def test_forget_state_without_series(self, handler, store):
        store.add(service_body(name="never-seen"))

        handler.forget_state(store.get_service("default", "never-seen"))


class TestUpdateStatusError:
    """Test cases for surfacing errors through the status."""

    @pytest.fixture
    def service(self, store: FakeStore):
        store.add(service_body(status={"state": "Online", "message": "Online"}))
        return store.get_service("default", "mydb")

    def test_writes_state_and_message(self, handler, store, service):
        result = handler.update_status_error(service, "Failed", ProviderError("bad plan"))

        status = store.raw(KIND_SERVICE, "default", "mydb")["status"]
        assert status["state"] == "Failed"
        assert status["message"] == "bad plan"
        assert status["conditions"][0]["status"] == "False"
        assert result.requeue_after == 150.0

    def test_unchanged_error_not_rewritten(self, handler, store, service):
        handler.update_status_error(service, "Failed", ProviderError("bad plan"))
        handler.update_status_error(service, "Failed", ProviderError("bad plan"))

        assert store.status_writes == 1

    def test_dirty_status_always_written(self, handler, store, service):
        handler.update_status_error(service, "Failed", ProviderError("bad plan"))
        handler.update_status_error(service, "Failed", ProviderError("bad plan"), dirty=True)

        assert store.status_writes == 2

    def test_spec_error_not_requeued(self, handler, service):
        result = handler.update_status_error(service, "Failed", SpecError("unknown plan"))

        assert result.requeue_after is None

    def test_dns_failure_backs_off_without_write(self, handler, store, service):
        error = ProviderError("request failed")
        error.__cause__ = socket.gaierror(-2, "Name or service not known")

        result = handler.update_status_error(service, "Failed", error)

        assert result.requeue_after == 300.0
        assert store.status_writes == 0

    def test_message_sanitized(self, handler, store, service):
        handler.update_status_error(service, "Failed", ProviderError("login failed: apikey: 0123456789"))

        assert "0123456789" not in store.raw(KIND_SERVICE, "default", "mydb")["status"]["message"]


class TestStructuredLogging:
    """Test cases for the structured log helpers."""

    def test_log_info_is_json(self, handler, store, caplog):
        store.add(service_body())
        service = store.get_service("default", "mydb")

        with caplog.at_level(logging.INFO):
            handler.log_info(service, "Creating instance", reason="Creating")

        entry = json.loads(caplog.records[-1].getMessage())
        assert entry["resource"] == KIND_SERVICE
        assert entry["name"] == "mydb"
        assert entry["reason"] == "Creating"

    def test_log_error_sanitizes_error(self, handler, caplog):
        with caplog.at_level(logging.ERROR):
            handler.log_error(
                {"name": "mydb", "namespace": "default"},
                "Call failed",
                error=ProviderError("password=hunter2"),
            )

        entry = json.loads(caplog.records[-1].getMessage())
        assert "hunter2" not in entry["error"]
        assert entry["error_type"] == "ProviderError"
