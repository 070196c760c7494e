"""Vault scanning: the local side of the sync."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Union

from ..models import FileMapping, FileStat
from ..utils import PRIVATE_DIR_NAME, ROOT_FOLDER_SENTINEL, normalize_vault_path

logger = logging.getLogger(__name__)


@dataclass
class VaultFolder:
    """A folder inside the vault. The root folder has an empty name."""

    path: str
    """Vault-relative path ("" for the root)"""

    parent: Optional["VaultFolder"] = None
    """Containing folder, None for the root"""

    @property
    def name(self) -> str:
        return self.path.rsplit("/", 1)[-1] if self.path else ""

    @property
    def is_root(self) -> bool:
        return self.parent is None


@dataclass
class VaultFile:
    """A file inside the vault."""

    path: str
    """Vault-relative path using forward slashes"""

    parent: VaultFolder
    """Containing folder"""

    @property
    def name(self) -> str:
        return self.path.rsplit("/", 1)[-1]

    @property
    def extension(self) -> str:
        name = self.name
        return name.rsplit(".", 1)[-1].lower() if "." in name else ""


VaultItem = Union[VaultFile, VaultFolder]


class Vault:
    """A directory of notes on the local file system.

    Only files with one of ``extensions`` are syncable. Entries whose name
    starts with a dot (including the private directory holding the mapping
    file) are never syncable.

    Examples:
        >>> vault = Vault(Path("/home/user/notes"))
        >>> for f in vault.get_markdown_files():
        ...     print(f.path)
    """

    def __init__(
        self,
        root: Path,
        extensions: tuple[str, ...] = (".md",),
        private_dir: str = PRIVATE_DIR_NAME,
    ):
        self.root = root
        self.extensions = tuple(ext.lower() for ext in extensions)
        self.private_dir = private_dir
        self._root_folder = VaultFolder(path="")

    def _is_hidden(self, relative_path: str) -> bool:
        return any(part.startswith(".") for part in relative_path.split("/") if part)

    def is_syncable_name(self, name: str) -> bool:
        return not name.startswith(".") and name.lower().endswith(self.extensions)

    def _folder_for(self, relative_path: str) -> VaultFolder:
        """Build the VaultFolder chain for a folder path."""
        folder = self._root_folder
        current = ""
        for part in [p for p in relative_path.split("/") if p]:
            current = f"{current}/{part}" if current else part
            folder = VaultFolder(path=current, parent=folder)
        return folder

    def _file_for(self, relative_path: str) -> VaultFile:
        parent_path = relative_path.rsplit("/", 1)[0] if "/" in relative_path else ""
        return VaultFile(path=relative_path, parent=self._folder_for(parent_path))

    def get_markdown_files(self) -> list[VaultFile]:
        """Enumerate all syncable files, sorted by path.

        Raises:
            OSError: If the vault root cannot be listed
        """
        if not self.root.is_dir():
            raise NotADirectoryError(f"Vault directory does not exist: {self.root}")

        files: list[VaultFile] = []
        self._scan(self.root, files)
        files.sort(key=lambda f: f.path)
        return files

    def _scan(self, directory: Path, files: list[VaultFile]) -> None:
        try:
            items = list(directory.iterdir())
        except PermissionError as e:
            if directory == self.root:
                raise
            logger.warning(f"Skipping unreadable directory {directory}: {e}")
            return

        for item in items:
            if item.name.startswith("."):
                continue
            if item.is_dir():
                self._scan(item, files)
            elif item.is_file() and self.is_syncable_name(item.name):
                relative_path = item.relative_to(self.root).as_posix()
                files.append(self._file_for(relative_path))

    def get_folder_paths(self) -> list[str]:
        """Enumerate all non-hidden folder paths below the root."""
        folders: list[str] = []
        for item in sorted(self.root.rglob("*")):
            if not item.is_dir():
                continue
            relative_path = item.relative_to(self.root).as_posix()
            if not self._is_hidden(relative_path):
                folders.append(relative_path)
        return folders

    def get_abstract_file(self, path: str) -> Optional[VaultItem]:
        """Resolve a vault-relative path to a file or folder.

        Args:
            path: Vault-relative path

        Returns:
            VaultFile, VaultFolder, or None if nothing exists at ``path``
        """
        relative_path = normalize_vault_path(path)
        if not relative_path:
            return self._root_folder
        full_path = self.root / relative_path
        if full_path.is_dir():
            return self._folder_for(relative_path)
        if full_path.is_file():
            return self._file_for(relative_path)
        return None

    def absolute_path(self, item: VaultItem) -> Path:
        return self.root / item.path if item.path else self.root

    def read(self, file: VaultFile) -> str:
        """Read the text content of a file."""
        return self.absolute_path(file).read_text(encoding="utf-8")

    def stat(self, file: VaultFile) -> FileStat:
        """Read the current stat of a file.

        Times are reported in milliseconds; creation time uses
        ``st_birthtime`` where the platform provides it.
        """
        stat = self.absolute_path(file).stat()
        stat_any: Any = stat
        ctime = getattr(stat_any, "st_birthtime", stat.st_ctime)
        return FileStat(
            ctime=int(ctime * 1000),
            mtime=int(stat.st_mtime * 1000),
            size=stat.st_size,
        )


def collect_parent_folders(file: VaultFile) -> list[str]:
    """Walk from a file up to the root collecting folder names.

    The immediate parent comes first; the root is recorded as "/".

    Examples:
        >>> vault = Vault(Path("/notes"))
        >>> collect_parent_folders(vault._file_for("a/b/c.md"))
        ['b', 'a', '/']
    """
    parent_folders: list[str] = []
    current: Optional[VaultFolder] = file.parent
    while current is not None:
        parent_folders.append(current.name or ROOT_FOLDER_SENTINEL)
        current = current.parent
    return parent_folders


def build_file_mapping(
    vault: Vault, file: VaultFile, doc_id: Optional[str] = None
) -> FileMapping:
    """Build the mapping entry for one file from its current stat.

    Args:
        vault: Vault containing the file
        file: The file
        doc_id: Remote document id, if known

    Returns:
        FileMapping for the file
    """
    return FileMapping(
        file_name=file.name,
        file_full_path=file.path,
        file_stat=vault.stat(file),
        parent_folders=collect_parent_folders(file),
        remote_doc_id=doc_id,
    )


class LocalInventoryBuilder:
    """Builds a snapshot of all syncable files without any remote knowledge."""

    def __init__(self, vault: Vault):
        self.vault = vault

    def build(self) -> list[FileMapping]:
        """Build one doc-id-less mapping entry per syncable file.

        Files that vanish between listing and stat are skipped.

        Raises:
            OSError: If the vault cannot be enumerated
        """
        inventory: list[FileMapping] = []
        for file in self.vault.get_markdown_files():
            try:
                inventory.append(build_file_mapping(self.vault, file))
            except FileNotFoundError:
                logger.debug(f"File vanished during scan: {file.path}")
        logger.debug(f"Local inventory: {len(inventory)} file(s)")
        return inventory
