"""Reconcile AppVeyor build history with the project's NuGet feed."""

__version__ = "0.1.0"
