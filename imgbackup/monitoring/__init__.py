"""Prometheus metrics for backup runs."""

from .metrics import BackupMetrics

__all__ = ["BackupMetrics"]
