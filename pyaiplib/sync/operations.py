"""Remote-side operations used by the sync engine."""

import logging
from typing import Union

from ..api import AIPLibraryClient
from ..exceptions import AIPLibAPIError, NotFoundError, NotSyncableError
from ..models import FileMapping, RemoteDocInfo
from ..utils import DEFAULT_PAGE_SIZE
from .scanner import Vault, VaultFile, build_file_mapping

logger = logging.getLogger(__name__)


class SyncOperations:
    """Upload, delete and list operations against one library."""

    def __init__(
        self,
        client: AIPLibraryClient,
        vault: Vault,
        library_id: int,
        page_size: int = DEFAULT_PAGE_SIZE,
    ):
        """Initialize sync operations.

        Args:
            client: Library API client
            vault: Vault the uploaded files live in
            library_id: ID of the target library
            page_size: Page size used when listing remote documents
        """
        self.client = client
        self.vault = vault
        self.library_id = library_id
        self.page_size = page_size

    def resolve_file(self, file: Union[VaultFile, str]) -> VaultFile:
        """Resolve a vault path to a syncable file.

        Raises:
            NotFoundError: If nothing exists at the path
            NotSyncableError: If the path is a folder or not a synced file type
        """
        if isinstance(file, VaultFile):
            return file
        item = self.vault.get_abstract_file(file)
        if item is None:
            raise NotFoundError(f"File does not exist: {file}")
        if not isinstance(item, VaultFile):
            raise NotSyncableError(f"Not a file: {file}")
        if not self.vault.is_syncable_name(item.name):
            raise NotSyncableError(f"Not a syncable file: {file}")
        return item

    def upload_file(self, file: Union[VaultFile, str]) -> FileMapping:
        """Upload one file and build its new mapping entry.

        The returned entry carries the new document id and the file's
        current stat. Nothing is persisted.

        Args:
            file: VaultFile or vault-relative path

        Returns:
            Mapping entry for the uploaded file

        Raises:
            NotFoundError: If nothing exists at the path
            NotSyncableError: If the path is a folder or not a synced file type
            AIPLibAPIError: If the remote call fails
        """
        vault_file = self.resolve_file(file)
        try:
            content = self.vault.read(vault_file)
        except FileNotFoundError as e:
            raise NotFoundError(f"File does not exist: {vault_file.path}") from e
        except UnicodeDecodeError as e:
            raise NotSyncableError(f"Not a UTF-8 text file: {vault_file.path}") from e

        logger.debug(f"Uploading {vault_file.path} ({len(content)} chars)")
        doc_id = self.client.create_doc_by_text(
            self.library_id, content, title=vault_file.path
        )
        return build_file_mapping(self.vault, vault_file, doc_id=doc_id)

    def delete_docs(self, doc_ids: list[str]) -> bool:
        """Delete remote documents in a single call.

        Raises:
            AIPLibAPIError: If the remote call fails
        """
        if not doc_ids:
            return True
        return self.client.delete_docs(doc_ids, self.library_id)

    def fetch_remote_inventory(self) -> list[RemoteDocInfo]:
        """Fetch every document of the library by paging through the list.

        Raises:
            AIPLibAPIError: If any page cannot be fetched
        """
        records: list[RemoteDocInfo] = []
        first = self.client.list_docs(self.library_id, 1, self.page_size)
        records.extend(first.records)
        for page in range(2, first.total_pages + 1):
            result = self.client.list_docs(self.library_id, page, self.page_size)
            records.extend(result.records)
        logger.debug(
            f"Fetched {len(records)} remote document(s) in "
            f"{max(first.total_pages, 1)} page(s)"
        )
        return records

    def try_upload(self, file: Union[VaultFile, str]) -> Union[FileMapping, Exception]:
        """Upload a file, returning the error instead of raising it.

        Used by batch operations where one failure must not stop the others.
        """
        path = file.path if isinstance(file, VaultFile) else file
        try:
            return self.upload_file(file)
        except (AIPLibAPIError, NotFoundError, NotSyncableError, OSError) as e:
            logger.warning(f"Upload of {path} failed: {e}")
            return e
