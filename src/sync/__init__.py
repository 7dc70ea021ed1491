"""Sync flows (push/pull/diff/history/rollback) and zero-file command execution."""

from .orchestrator import PushOptions, SyncOrchestrator

__all__ = ["PushOptions", "SyncOrchestrator"]
