"""Reconcilers for the Service and Binding resources."""

from .base import BaseHandler, ReconcileResult
from .binding import BindingReconciler
from .service import ServiceReconciler

__all__ = [
    "BaseHandler",
    "BindingReconciler",
    "ReconcileResult",
    "ServiceReconciler",
]
