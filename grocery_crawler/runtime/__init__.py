"""Контекст выполнения задачи обхода."""

from .context import CancellationToken, JobContext

__all__ = ["CancellationToken", "JobContext"]
