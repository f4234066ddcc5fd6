"""Kubernetes access."""

from .store import ResourceStore, get_k8s_client

__all__ = ["ResourceStore", "get_k8s_client"]
