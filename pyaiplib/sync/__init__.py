"""Sync engine for PyAIPLib - mapping, reconciliation and delete cascades."""

from .comparator import MappingReconciler, SyncAction, SyncDecision
from .engine import SyncEngine
from .ignore import filter_ignored, should_ignore
from .operations import SyncOperations
from .scanner import (
    LocalInventoryBuilder,
    Vault,
    VaultFile,
    VaultFolder,
    build_file_mapping,
    collect_parent_folders,
)
from .state import MappingStore, default_mapping_path, mappings_by_path
from .watcher import DeleteEvents, VaultSnapshot, VaultWatcher, diff_snapshots

__all__ = [
    "SyncEngine",
    "SyncOperations",
    "SyncAction",
    "SyncDecision",
    "MappingReconciler",
    "MappingStore",
    "default_mapping_path",
    "mappings_by_path",
    "Vault",
    "VaultFile",
    "VaultFolder",
    "LocalInventoryBuilder",
    "build_file_mapping",
    "collect_parent_folders",
    "should_ignore",
    "filter_ignored",
    "VaultWatcher",
    "VaultSnapshot",
    "DeleteEvents",
    "diff_snapshots",
]
