"""Reconciliation of document pipeline output into a canonical content store."""

__version__ = "0.1.0"
