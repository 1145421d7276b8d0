"""Scheduling of per-persona request tasks."""

from .cancellation import CancellationSource, CancellationToken, TaskCancelled

__all__ = ["CancellationSource", "CancellationToken", "TaskCancelled"]
