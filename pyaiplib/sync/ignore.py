"""Folder-based ignore policy."""

from collections.abc import Collection

from ..models import FileMapping


def should_ignore(mapping: FileMapping, ignore_folders: Collection[str]) -> bool:
    """Check whether a file is excluded from sync.

    A file is ignored when any of its ancestor folder names is a literal
    member of ``ignore_folders`` (exact, case-sensitive match). Since the
    vault root is recorded as "/", configuring "/" ignores every file.

    Args:
        mapping: Mapping entry of the file
        ignore_folders: Configured folder names

    Returns:
        True if the file must not be synced
    """
    if not ignore_folders:
        return False
    return any(folder in ignore_folders for folder in mapping.parent_folders)


def filter_ignored(
    mappings: list[FileMapping], ignore_folders: Collection[str]
) -> list[FileMapping]:
    """Return the entries not excluded by ``should_ignore``."""
    return [m for m in mappings if not should_ignore(m, ignore_folders)]
