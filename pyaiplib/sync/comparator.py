"""Reconciliation of the stored mapping, the local inventory and the remote library.

Everything in this module is pure: it computes updated mapping sets and
the actions needed to converge them, and leaves remote calls and
persistence to the sync engine.
"""

from collections.abc import Collection, Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..models import FileMapping, RemoteDocInfo
from ..utils import is_path_under_folder, normalize_vault_path
from .ignore import filter_ignored, should_ignore
from .state import mappings_by_path


class SyncAction(str, Enum):
    """Actions that can be taken during sync."""

    UPLOAD = "upload"
    """Upload a file that has no remote document yet"""

    REUPLOAD = "reupload"
    """Replace the remote document of a file that grew"""

    DELETE_REMOTE = "delete_remote"
    """Delete the remote document of a file removed locally"""

    SKIP = "skip"
    """No action needed"""


@dataclass
class SyncDecision:
    """Represents a decision about how to sync a file."""

    action: SyncAction
    """Action to take"""

    reason: str
    """Human-readable reason for this decision"""

    mapping: FileMapping
    """Stored mapping entry the decision applies to"""

    current: Optional[FileMapping] = None
    """Entry built from the current on-disk state, if relevant"""

    @property
    def relative_path(self) -> str:
        return self.mapping.file_full_path


class MappingReconciler:
    """Computes reconciliation results for one set of ignore folders."""

    def __init__(self, ignore_folders: Collection[str] = frozenset()):
        """Initialize the reconciler.

        Args:
            ignore_folders: Folder names excluded from sync
        """
        self.ignore_folders = ignore_folders

    def is_ignored(self, mapping: FileMapping) -> bool:
        return should_ignore(mapping, self.ignore_folders)

    def join_incremental(
        self,
        mappings: Iterable[FileMapping],
        inventory: Iterable[FileMapping],
    ) -> list[FileMapping]:
        """Join the stored mapping with the local inventory on ``file_full_path``.

        For each non-ignored local file the stored entry is kept when one
        exists (it carries the doc id and the last uploaded stat); otherwise
        the inventory entry is used as a new doc-id-less entry. Stored entries
        without a local file are dropped.

        Args:
            mappings: Stored mapping entries
            inventory: Fresh local inventory

        Returns:
            Joined mapping entries in inventory order
        """
        stored = mappings_by_path(mappings)
        joined: list[FileMapping] = []
        for local in filter_ignored(list(inventory), self.ignore_folders):
            joined.append(stored.get(local.file_full_path, local))
        return list(mappings_by_path(joined).values())

    @staticmethod
    def pending_uploads(mappings: Iterable[FileMapping]) -> list[FileMapping]:
        """Entries without a doc id whose recorded size is nonzero.

        Empty files are left out: the library rejects empty documents.
        """
        return [m for m in mappings if m.remote_doc_id is None and m.size != 0]

    def plan_incremental(
        self,
        mappings: Iterable[FileMapping],
        inventory: Iterable[FileMapping],
    ) -> list[SyncDecision]:
        """Describe what an incremental sync would do, one decision per file.

        Args:
            mappings: Stored mapping entries
            inventory: Fresh local inventory

        Returns:
            List of SyncDecision objects sorted by path
        """
        decisions: list[SyncDecision] = []
        for mapping in self.join_incremental(mappings, inventory):
            if mapping.remote_doc_id is not None:
                decisions.append(
                    SyncDecision(SyncAction.SKIP, "Already uploaded", mapping)
                )
            elif mapping.size == 0:
                decisions.append(SyncDecision(SyncAction.SKIP, "Empty file", mapping))
            else:
                decisions.append(
                    SyncDecision(SyncAction.UPLOAD, "No remote document", mapping)
                )
        decisions.sort(key=lambda d: d.relative_path)
        return decisions

    def detect_drift(
        self,
        mappings: Iterable[FileMapping],
        inventory: Iterable[FileMapping],
    ) -> list[SyncDecision]:
        """Find uploaded files whose current size exceeds the recorded size.

        Size is a cheap change signal: a file that shrank or kept its size
        is not reported.

        Args:
            mappings: Mapping entries after the incremental join
            inventory: Fresh local inventory (current on-disk stats)

        Returns:
            REUPLOAD decisions, sorted by path
        """
        current = mappings_by_path(inventory)
        decisions: list[SyncDecision] = []
        for mapping in mappings:
            if mapping.remote_doc_id is None or self.is_ignored(mapping):
                continue
            local = current.get(mapping.file_full_path)
            if local is None:
                continue
            if local.size > mapping.size:
                decisions.append(
                    SyncDecision(
                        SyncAction.REUPLOAD,
                        f"Size grew from {mapping.size} to {local.size} bytes",
                        mapping,
                        current=local,
                    )
                )
        decisions.sort(key=lambda d: d.relative_path)
        return decisions

    @staticmethod
    def find_remote_by_title(
        remote_docs: Iterable[RemoteDocInfo], full_path: str
    ) -> Optional[RemoteDocInfo]:
        """Find the remote document uploaded under ``full_path``.

        The title is compared to the full vault path, never to the base
        name, so same-named files in different folders stay distinct.
        """
        for doc in remote_docs:
            if doc.title == full_path:
                return doc
        return None

    def rebuild_join(
        self,
        inventory: Iterable[FileMapping],
        remote_docs: list[RemoteDocInfo],
    ) -> list[FileMapping]:
        """Rebuild the mapping from the local inventory and the remote library.

        Each non-ignored local file gets the doc id of the remote document
        whose title equals its full path, or no doc id if there is none.

        Args:
            inventory: Fresh local inventory
            remote_docs: Complete remote document list

        Returns:
            Rebuilt mapping entries
        """
        by_title: dict[str, RemoteDocInfo] = {}
        for doc in remote_docs:
            # First match wins, like a linear search
            by_title.setdefault(doc.title, doc)

        rebuilt: list[FileMapping] = []
        for local in filter_ignored(list(inventory), self.ignore_folders):
            doc = by_title.get(local.file_full_path)
            rebuilt.append(local.with_doc_id(doc.doc_id if doc else None))
        return list(mappings_by_path(rebuilt).values())

    @staticmethod
    def entries_under_folder(
        mappings: Iterable[FileMapping], folder_path: str
    ) -> list[FileMapping]:
        """Entries whose path lies inside ``folder_path``."""
        folder_path = normalize_vault_path(folder_path)
        return [
            m for m in mappings if is_path_under_folder(m.file_full_path, folder_path)
        ]
