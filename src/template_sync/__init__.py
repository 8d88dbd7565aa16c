"""Reconcile a project tree with the template repository it was derived from."""

__version__ = "0.4.0"
