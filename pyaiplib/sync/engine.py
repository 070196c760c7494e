"""Sync engine: sequences scanning, reconciliation, uploads and persistence."""

import logging
import threading
import time
from collections.abc import Iterator
from concurrent.futures import ThreadPoolExecutor, as_completed
from contextlib import contextmanager
from typing import Optional, Union

from rich.progress import Progress

from ..api import AIPLibraryClient
from ..config import LibrarySettings
from ..exceptions import (
    AIPLibAPIError,
    AIPLibNotFoundError,
    CorruptStateError,
    NotSyncableError,
    SyncInProgressError,
)
from ..models import FileMapping, RemoteDocInfo
from ..output import OutputFormatter
from ..utils import normalize_vault_path
from .comparator import MappingReconciler, SyncAction, SyncDecision
from .operations import SyncOperations
from .scanner import LocalInventoryBuilder, Vault, VaultFile, collect_parent_folders
from .state import MappingStore, mappings_by_path

logger = logging.getLogger(__name__)


class SyncEngine:
    """Keeps a vault, its mapping file and a remote library convergent.

    Top-level operations (``incremental_sync``, ``smart_sync``,
    ``rebuild_mapping``, ``manual_upload_one`` and the delete callbacks) are
    serialized: starting one while another runs raises
    ``SyncInProgressError``. Each writes the mapping file once at its end.
    """

    def __init__(
        self,
        client: AIPLibraryClient,
        vault: Vault,
        store: MappingStore,
        settings: LibrarySettings,
        output: Optional[OutputFormatter] = None,
    ):
        """Initialize sync engine.

        Args:
            client: Library API client
            vault: Vault to sync
            store: Mapping store of the vault
            settings: Library id, ignore folders and worker count
            output: Output formatter for displaying progress/status
        """
        self.client = client
        self.vault = vault
        self.store = store
        self.settings = settings
        self.output = output or OutputFormatter(quiet=True)
        self.operations = SyncOperations(client, vault, settings.library_id)
        self.inventory_builder = LocalInventoryBuilder(vault)
        self.reconciler = MappingReconciler(settings.ignore_folders)
        self._lock = threading.Lock()

    def close(self) -> None:
        """Close the library client."""
        self.client.close()

    def __enter__(self) -> "SyncEngine":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    @contextmanager
    def _exclusive(self, operation: str) -> Iterator[None]:
        if not self._lock.acquire(blocking=False):
            raise SyncInProgressError(
                f"Cannot start {operation}: another sync operation is running"
            )
        start = time.time()
        try:
            logger.debug(f"Starting {operation}")
            yield
        finally:
            logger.debug(f"{operation} took {time.time() - start:.2f}s")
            self._lock.release()

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    def _create_empty_stats(self) -> dict:
        """Create an empty statistics dictionary."""
        return {
            "uploads": 0,
            "reuploads": 0,
            "failed": 0,
            "skipped": 0,
            "deletes_remote": 0,
            "mapped": 0,
            "unmapped": 0,
            "removed": 0,
        }

    def _load_mappings(self, dry_run: bool = False) -> list[FileMapping]:
        if dry_run:
            # Read-only: a corrupted file is treated as empty and left alone
            try:
                return self.store.load()
            except CorruptStateError as e:
                logger.warning(str(e))
                return []
        return self.store.load_or_recover(self.inventory_builder.build)

    # =========================
    # Uploads
    # =========================

    def _upload_batch(
        self, paths: list[str], stats: dict
    ) -> dict[str, FileMapping]:
        """Upload files, returning the new mapping entry of each success.

        With ``max_workers > 1`` uploads run in a thread pool; the result is
        only returned once every upload has finished. Failures are logged
        and counted.
        """
        unique_paths = list(dict.fromkeys(paths))
        results: dict[str, FileMapping] = {}
        if not unique_paths:
            return results

        def record(path: str, result: Union[FileMapping, Exception]) -> None:
            if isinstance(result, FileMapping):
                results[path] = result
            else:
                stats["failed"] += 1

        show_progress = not self.output.quiet and len(unique_paths) > 1
        with Progress(disable=not show_progress, transient=True) as progress:
            task = progress.add_task("Uploading files...", total=len(unique_paths))
            max_workers = self.settings.max_workers
            if max_workers > 1 and len(unique_paths) > 1:
                with ThreadPoolExecutor(max_workers=max_workers) as executor:
                    future_to_path = {
                        executor.submit(self.operations.try_upload, path): path
                        for path in unique_paths
                    }
                    for future in as_completed(future_to_path):
                        record(future_to_path[future], future.result())
                        progress.update(task, advance=1)
            else:
                for path in unique_paths:
                    record(path, self.operations.try_upload(path))
                    progress.update(task, advance=1)

        return results

    # =========================
    # Top-level operations
    # =========================

    def _incremental(
        self, mappings: list[FileMapping], stats: dict, dry_run: bool
    ) -> list[FileMapping]:
        inventory = self.inventory_builder.build()
        joined = self.reconciler.join_incremental(mappings, inventory)
        decisions = self.reconciler.plan_incremental(mappings, inventory)
        stats["skipped"] += sum(
            1
            for d in decisions
            if d.action == SyncAction.SKIP and d.mapping.remote_doc_id is None
        )
        pending = [m.file_full_path for m in self.reconciler.pending_uploads(joined)]
        if dry_run:
            stats["uploads"] += len(pending)
            return joined

        uploaded = self._upload_batch(pending, stats)
        stats["uploads"] += len(uploaded)
        # Failed uploads keep their doc-id-less entry and are retried next pass
        return [uploaded.get(m.file_full_path, m) for m in joined]

    def incremental_sync(self, dry_run: bool = False) -> dict:
        """Upload every local file that has no remote document yet.

        Joins the stored mapping with a fresh local inventory, uploads the
        doc-id-less non-empty files and saves the result.

        Args:
            dry_run: If True, only count what would be uploaded

        Returns:
            Dictionary with sync statistics
        """
        with self._exclusive("incremental sync"):
            stats = self._create_empty_stats()
            mappings = self._load_mappings(dry_run)
            result = self._incremental(mappings, stats, dry_run)
            if not dry_run:
                self.store.save(result)
            logger.info(
                f"Incremental sync: {stats['uploads']} uploaded, "
                f"{stats['failed']} failed, {stats['skipped']} empty"
            )
            return stats

    def _reupload(self, decision: SyncDecision, stats: dict) -> FileMapping:
        """Replace the remote document of a grown file.

        The upload is attempted whatever the outcome of the delete. When the
        upload fails, the entry loses its doc id if the old document is gone
        (so the next pass uploads it as new), and is kept unchanged otherwise.

        Returns:
            The new entry, or the entry to keep on failure
        """
        stale = decision.mapping
        old_doc_id = stale.remote_doc_id
        path = stale.file_full_path
        logger.debug(f"{path}: {decision.reason}, uploading again")

        old_doc_gone = True
        if old_doc_id is not None:
            try:
                self.operations.delete_docs([old_doc_id])
            except AIPLibNotFoundError:
                logger.debug(f"Document {old_doc_id} was already gone")
            except AIPLibAPIError as e:
                logger.warning(f"Failed to delete {old_doc_id} for {path}: {e}")
                old_doc_gone = False

        result = self.operations.try_upload(path)
        if isinstance(result, FileMapping):
            stats["reuploads"] += 1
            return result

        stats["failed"] += 1
        if old_doc_gone:
            logger.warning(f"Re-upload of {path} failed, it will be uploaded again")
            return stale.with_doc_id(None)
        logger.warning(f"Re-upload of {path} failed, keeping old mapping")
        return stale

    def smart_sync(self, dry_run: bool = False) -> dict:
        """Incremental sync followed by drift detection, then one save.

        Files whose current size exceeds the size recorded at upload time
        have their remote document replaced.

        Args:
            dry_run: If True, only count what would be uploaded

        Returns:
            Dictionary with sync statistics
        """
        with self._exclusive("smart sync"):
            stats = self._create_empty_stats()
            mappings = self._load_mappings(dry_run)
            joined = self._incremental(mappings, stats, dry_run)

            drift = self.reconciler.detect_drift(
                joined, self.inventory_builder.build()
            )
            if dry_run:
                stats["reuploads"] += len(drift)
                return stats

            replaced = {d.relative_path: self._reupload(d, stats) for d in drift}
            result = [replaced.get(m.file_full_path, m) for m in joined]
            self.store.save(result)
            logger.info(
                f"Smart sync: {stats['uploads']} uploaded, "
                f"{stats['reuploads']} re-uploaded, {stats['failed']} failed"
            )
            return stats

    def rebuild_mapping(self) -> dict:
        """Rebuild the mapping from the local vault and the remote library.

        The stored mapping is discarded. Remote documents are matched to
        local files by title; nothing is uploaded or deleted.

        Returns:
            Dictionary with ``mapped`` and ``unmapped`` counts

        Raises:
            AIPLibAPIError: If the remote document list cannot be fetched
        """
        with self._exclusive("mapping rebuild"):
            stats = self._create_empty_stats()
            inventory = self.inventory_builder.build()
            remote_docs = self.operations.fetch_remote_inventory()
            rebuilt = self.reconciler.rebuild_join(inventory, remote_docs)
            for mapping in rebuilt:
                if mapping.remote_doc_id is not None:
                    stats["mapped"] += 1
                    logger.debug(
                        f"{mapping.file_full_path} -> {mapping.remote_doc_id}"
                    )
                else:
                    stats["unmapped"] += 1
                    logger.debug(f"{mapping.file_full_path} -> no remote document")
            self.store.save(rebuilt)
            logger.info(
                f"Rebuilt mapping: {stats['mapped']} mapped, "
                f"{stats['unmapped']} without remote document"
            )
            return stats

    def manual_upload_one(self, file: Union[VaultFile, str]) -> FileMapping:
        """Upload one file on request and upsert its mapping entry.

        Any existing entry for the same path is replaced and its previous
        remote document deleted (best effort); the mapping is saved
        immediately. Files in an ignored folder are refused, since the next
        sync would drop their entry.

        Args:
            file: VaultFile or vault-relative path

        Returns:
            The new mapping entry

        Raises:
            NotFoundError: If nothing exists at the path
            NotSyncableError: If the path is a folder, not a synced file type
                or inside an ignored folder
            StateIOError: If the mapping cannot be read (nothing is uploaded)
            AIPLibAPIError: If the upload fails
        """
        with self._exclusive("manual upload"):
            entries = mappings_by_path(self._load_mappings())
            vault_file = self.operations.resolve_file(file)
            if self.reconciler.is_ignored(
                FileMapping(
                    file_name=vault_file.name,
                    file_full_path=vault_file.path,
                    parent_folders=collect_parent_folders(vault_file),
                )
            ):
                raise NotSyncableError(f"File is in an ignored folder: {vault_file.path}")

            mapping = self.operations.upload_file(vault_file)
            previous = entries.get(mapping.file_full_path)
            entries[mapping.file_full_path] = mapping
            self.store.save(entries.values())

            old_doc_id = previous.remote_doc_id if previous else None
            if old_doc_id is not None and old_doc_id != mapping.remote_doc_id:
                try:
                    self.operations.delete_docs([old_doc_id])
                except AIPLibAPIError as e:
                    logger.warning(f"Failed to delete replaced document {old_doc_id}: {e}")
            logger.info(f"Uploaded {mapping.file_full_path} as {mapping.remote_doc_id}")
            return mapping

    # =========================
    # Delete cascade
    # =========================

    def _cached_remote_docs(
        self, cache: dict[str, list[RemoteDocInfo]]
    ) -> list[RemoteDocInfo]:
        if "docs" not in cache:
            cache["docs"] = self.operations.fetch_remote_inventory()
        return cache["docs"]

    def _cascade(self, targets: list[FileMapping], stats: dict) -> set[str]:
        """Delete the remote documents of ``targets`` in one call.

        Entries without a doc id are looked up in the remote library by
        title (the upload may have succeeded without the mapping being
        saved).

        Returns:
            Paths whose entries may be removed from the mapping
        """
        batch: dict[str, str] = {}
        removable: set[str] = set()
        cache: dict[str, list[RemoteDocInfo]] = {}

        for mapping in targets:
            path = mapping.file_full_path
            if mapping.remote_doc_id is not None:
                batch[path] = mapping.remote_doc_id
                continue
            logger.debug(f"{path} has no doc id, looking it up by title")
            try:
                docs = self._cached_remote_docs(cache)
            except AIPLibAPIError as e:
                logger.warning(f"Failed to list remote documents for {path}: {e}")
                stats["failed"] += 1
                continue
            match = self.reconciler.find_remote_by_title(docs, path)
            if match is not None:
                batch[path] = match.doc_id
            else:
                # Never reached the library, nothing to delete remotely
                removable.add(path)

        if batch:
            doc_ids = list(dict.fromkeys(batch.values()))
            try:
                self.operations.delete_docs(doc_ids)
            except AIPLibAPIError as e:
                logger.warning(f"Failed to delete {len(doc_ids)} document(s): {e}")
                stats["failed"] += len(batch)
            else:
                stats["deletes_remote"] += len(doc_ids)
                removable.update(batch)
        return removable

    def on_file_deleted(self, path: str) -> dict:
        """Handle the deletion of a local file.

        Deletes the file's remote document and removes its mapping entry.
        If the remote delete fails the entry is kept.

        Args:
            path: Vault-relative path of the deleted file

        Returns:
            Dictionary with sync statistics
        """
        path = normalize_vault_path(path)
        with self._exclusive("file delete"):
            stats = self._create_empty_stats()
            entries = mappings_by_path(self._load_mappings())
            mapping = entries.get(path)
            if mapping is None:
                logger.debug(f"No mapping entry for deleted file {path}")
                return stats

            removable = self._cascade([mapping], stats)
            if path in removable:
                del entries[path]
                stats["removed"] += 1
                self.store.save(entries.values())
            return stats

    def on_folder_deleted(self, path: str) -> dict:
        """Handle the deletion of a local folder.

        Every entry inside the folder is handled like a deleted file; known
        doc ids are deleted in a single remote call.

        Args:
            path: Vault-relative path of the deleted folder

        Returns:
            Dictionary with sync statistics

        Raises:
            NotSyncableError: If the path is the vault root
        """
        path = normalize_vault_path(path)
        if not path:
            raise NotSyncableError("The vault root cannot be handled as a deleted folder")
        with self._exclusive("folder delete"):
            stats = self._create_empty_stats()
            entries = mappings_by_path(self._load_mappings())
            targets = self.reconciler.entries_under_folder(entries.values(), path)
            if not targets:
                logger.debug(f"No mapping entries under deleted folder {path!r}")
                return stats

            removable = self._cascade(targets, stats)
            for target_path in removable:
                entries.pop(target_path, None)
            stats["removed"] += len(removable)
            self.store.save(entries.values())
            return stats
