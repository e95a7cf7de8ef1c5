"""Downstream notification layer."""

from kizo_indexer.alerter.backend_sync import BackendSyncNotifier, SyncNotifierStats

__all__ = ["BackendSyncNotifier", "SyncNotifierStats"]
