"""Persistence of the file <-> remote document mapping.

The mapping is a JSON array of FileMapping objects stored at a private
path. Every mutation is read-entire-set, modify in memory, write-entire-set;
writes go through a temporary file so an interrupted write never leaves a
half-written document behind.
"""

import json
import logging
import os
import tempfile
from collections.abc import Iterable
from pathlib import Path
from typing import Callable, Optional

from ..exceptions import CorruptStateError, StateIOError
from ..models import FileMapping
from ..utils import MAPPING_FILE_NAME, PRIVATE_DIR_NAME

logger = logging.getLogger(__name__)

BACKUP_SUFFIX = ".bak"


def default_mapping_path(vault_root: Path) -> Path:
    """Get the default mapping file location for a vault."""
    return vault_root / PRIVATE_DIR_NAME / MAPPING_FILE_NAME


def mappings_by_path(mappings: Iterable[FileMapping]) -> dict[str, FileMapping]:
    """Key mappings by ``file_full_path``, preserving order.

    A later entry for the same path replaces an earlier one.
    """
    result: dict[str, FileMapping] = {}
    for mapping in mappings:
        result.pop(mapping.file_full_path, None)
        result[mapping.file_full_path] = mapping
    return result


class MappingStore:
    """Loads and saves the mapping file.

    The store is the only writer of its file; running two stores against the
    same path at once is not supported.
    """

    def __init__(self, path: Path):
        """Initialize the store.

        Args:
            path: Location of the mapping JSON file
        """
        self.path = path

    @property
    def backup_path(self) -> Path:
        return self.path.with_name(self.path.name + BACKUP_SUFFIX)

    def is_empty(self) -> bool:
        """Check whether the mapping file is missing or has no content."""
        if not self.path.exists():
            return True
        try:
            return self.path.read_text(encoding="utf-8").strip() == ""
        except OSError:
            return False

    def load(self) -> list[FileMapping]:
        """Load all mapping entries.

        Returns:
            Mapping entries, an empty list if the file does not exist

        Raises:
            CorruptStateError: If the file content is not a valid mapping array
            StateIOError: If the file cannot be read
        """
        if not self.path.exists():
            logger.debug(f"No mapping file at {self.path}")
            return []

        try:
            text = self.path.read_text(encoding="utf-8")
        except OSError as e:
            raise StateIOError(f"Failed to read mapping file {self.path}: {e}") from e

        if not text.strip():
            return []

        try:
            data = json.loads(text)
        except ValueError as e:
            raise CorruptStateError(f"Mapping file {self.path} is not valid JSON: {e}") from e

        if not isinstance(data, list):
            raise CorruptStateError(
                f"Mapping file {self.path} does not contain a JSON array"
            )
        try:
            mappings = [FileMapping.from_dict(item) for item in data]
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise CorruptStateError(
                f"Mapping file {self.path} has a malformed entry: {e}"
            ) from e

        logger.debug(f"Loaded {len(mappings)} mapping(s) from {self.path}")
        return list(mappings_by_path(mappings).values())

    def save(self, mappings: Iterable[FileMapping]) -> bool:
        """Write all mapping entries, replacing the file content.

        Write failures are logged and reported through the return value;
        they are never raised.

        Args:
            mappings: Entries to persist

        Returns:
            True if the file was written
        """
        data = [m.to_dict() for m in mappings_by_path(mappings).values()]
        tmp_name: Optional[str] = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=self.path.name + ".", suffix=".tmp", dir=self.path.parent
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=4, ensure_ascii=False)
            os.replace(tmp_name, self.path)
            tmp_name = None
            logger.debug(f"Saved {len(data)} mapping(s) to {self.path}")
            return True
        except OSError as e:
            logger.warning(f"Failed to save mapping file {self.path}: {e}")
            return False
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass

    def ensure_initialized(self, local_inventory: Iterable[FileMapping]) -> bool:
        """Create the mapping file from a local inventory if it is missing or empty.

        Every written entry has its doc id unset.

        Args:
            local_inventory: Freshly built local inventory

        Returns:
            True if the file was (re)initialized
        """
        if not self.is_empty():
            return False
        entries = [m.with_doc_id(None) for m in local_inventory]
        logger.info(f"Initializing mapping file {self.path} with {len(entries)} file(s)")
        self.save(entries)
        return True

    def backup_corrupted(self) -> Path:
        """Move the current file aside to the ``.bak`` path.

        An earlier backup is replaced.

        Returns:
            The backup path
        """
        backup = self.backup_path
        os.replace(self.path, backup)
        logger.warning(f"Mapping file was corrupted, moved it to {backup}")
        return backup

    def load_or_recover(
        self, inventory_factory: Callable[[], list[FileMapping]]
    ) -> list[FileMapping]:
        """Load the mapping, recovering from a corrupted file.

        On ``CorruptStateError`` the file is backed up, reinitialized from a
        fresh inventory and loaded once more. A second failure propagates.

        Args:
            inventory_factory: Builds the local inventory used for
                (re)initialization

        Returns:
            Mapping entries
        """
        if self.is_empty():
            self.ensure_initialized(inventory_factory())
        try:
            return self.load()
        except CorruptStateError as e:
            logger.warning(str(e))
            self.backup_corrupted()
            self.ensure_initialized(inventory_factory())
            return self.load()

    def clear(self) -> bool:
        """Delete the mapping file.

        Returns:
            True if a file was deleted, False if none existed
        """
        if self.path.exists():
            self.path.unlink()
            logger.debug(f"Cleared mapping file at {self.path}")
            return True
        return False
