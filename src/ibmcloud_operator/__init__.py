"""Kubernetes operator that provisions IBM Cloud service instances and credentials."""

__version__ = "0.1.0"
