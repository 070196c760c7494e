"""Polling watcher that turns vault deletions into engine callbacks.

It also runs the periodic smart sync. Failures are logged only; a
background pass never raises.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from ..exceptions import AIPLibError
from ..utils import is_path_under_folder
from .engine import SyncEngine

logger = logging.getLogger(__name__)


@dataclass
class VaultSnapshot:
    """Known syncable file paths and folder paths of a vault."""

    files: set[str] = field(default_factory=set)
    folders: set[str] = field(default_factory=set)


@dataclass
class DeleteEvents:
    """Deletions found between two snapshots."""

    folders: list[str] = field(default_factory=list)
    """Top-most deleted folders"""

    files: list[str] = field(default_factory=list)
    """Deleted files not inside a deleted folder"""

    def __bool__(self) -> bool:
        return bool(self.folders or self.files)


def diff_snapshots(previous: VaultSnapshot, current: VaultSnapshot) -> DeleteEvents:
    """Compute the deletions that turn ``previous`` into ``current``.

    Examples:
        >>> old = VaultSnapshot({"a/x.md", "b.md"}, {"a"})
        >>> diff_snapshots(old, VaultSnapshot({"b.md"}, set()))
        DeleteEvents(folders=['a'], files=[])
    """
    gone_folders = sorted(previous.folders - current.folders)
    top_folders = [
        folder
        for folder in gone_folders
        if not any(
            other != folder and is_path_under_folder(folder, other)
            for other in gone_folders
        )
    ]
    gone_files = sorted(
        path
        for path in previous.files - current.files
        if not any(is_path_under_folder(path, folder) for folder in top_folders)
    )
    return DeleteEvents(folders=top_folders, files=gone_files)


class VaultWatcher:
    """Polls a vault for deletions and runs smart sync on a schedule."""

    def __init__(
        self,
        engine: SyncEngine,
        interval_minutes: int,
        poll_seconds: float = 5.0,
    ):
        """Initialize the watcher.

        Args:
            engine: Engine to notify and to run syncs on
            interval_minutes: Minutes between smart syncs
            poll_seconds: Seconds between deletion polls
        """
        self.engine = engine
        self.interval_seconds = interval_minutes * 60
        self.poll_seconds = poll_seconds
        self._snapshot: Optional[VaultSnapshot] = None

    def take_snapshot(self) -> VaultSnapshot:
        vault = self.engine.vault
        return VaultSnapshot(
            files={f.path for f in vault.get_markdown_files()},
            folders=set(vault.get_folder_paths()),
        )

    def poll(self) -> DeleteEvents:
        """Dispatch the deletions since the last poll to the engine.

        The first call only records a snapshot. A deletion whose callback
        fails stays pending and is dispatched again on the next poll.

        Returns:
            The deletions that were handled
        """
        current = self.take_snapshot()
        if self._snapshot is None:
            self._snapshot = current
            return DeleteEvents()

        events = diff_snapshots(self._snapshot, current)
        handled = DeleteEvents()
        pending = VaultSnapshot(files=set(current.files), folders=set(current.folders))

        for folder in events.folders:
            if self._notify(self.engine.on_folder_deleted, folder):
                handled.folders.append(folder)
            else:
                pending.folders.add(folder)
                pending.files.update(
                    p for p in self._snapshot.files if is_path_under_folder(p, folder)
                )
        for path in events.files:
            if self._notify(self.engine.on_file_deleted, path):
                handled.files.append(path)
            else:
                pending.files.add(path)

        self._snapshot = pending
        return handled

    def _notify(self, callback: Callable[[str], dict], path: str) -> bool:
        try:
            stats = callback(path)
        except (AIPLibError, OSError) as e:
            logger.warning(f"Handling deletion of {path} failed: {e}")
            return False
        if stats.get("failed"):
            return False
        logger.info(
            f"Deleted {path}: {stats['deletes_remote']} remote document(s), "
            f"{stats['removed']} mapping entry(ies) removed"
        )
        return True

    def run_sync(self) -> Optional[dict]:
        """Run one smart sync, logging instead of raising."""
        try:
            return self.engine.smart_sync()
        except (AIPLibError, OSError) as e:
            logger.warning(f"Scheduled sync failed: {e}")
            return None

    def run(
        self,
        stop_event: Optional[threading.Event] = None,
        max_syncs: Optional[int] = None,
    ) -> int:
        """Sync now, then keep polling and syncing until stopped.

        Args:
            stop_event: Event that ends the loop when set
            max_syncs: Stop after this many syncs (None for no limit)

        Returns:
            Number of syncs run
        """
        stop_event = stop_event or threading.Event()
        syncs = 0
        next_sync = time.monotonic()
        self.poll()

        while not stop_event.is_set():
            if time.monotonic() >= next_sync:
                self.run_sync()
                syncs += 1
                next_sync = time.monotonic() + self.interval_seconds
                if max_syncs is not None and syncs >= max_syncs:
                    break
            try:
                self.poll()
            except OSError as e:
                logger.warning(f"Polling the vault failed: {e}")
            stop_event.wait(self.poll_seconds)

        return syncs
