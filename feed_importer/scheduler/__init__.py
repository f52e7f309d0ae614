"""Scheduling adapters driving the import cycle."""

from .apsched_adapter import APSchedulerAdapter, ImportDriver

__all__ = ["APSchedulerAdapter", "ImportDriver"]
