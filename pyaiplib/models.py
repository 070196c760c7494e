"""Data models for the mapping file and library API responses."""

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class FileStat:
    """Stat snapshot of a vault file.

    Times are milliseconds since the epoch.
    """

    ctime: int = 0
    mtime: int = 0
    size: int = 0

    def to_dict(self) -> dict[str, int]:
        return {"ctime": self.ctime, "mtime": self.mtime, "size": self.size}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FileStat":
        return cls(
            ctime=int(data.get("ctime", 0) or 0),
            mtime=int(data.get("mtime", 0) or 0),
            size=int(data.get("size", 0) or 0),
        )


@dataclass
class FileMapping:
    """Association between one local file and (optionally) one remote document.

    ``file_stat`` is the snapshot taken when the file was last uploaded or
    inventoried, not necessarily the current on-disk stat.
    """

    file_name: str
    """Base name, for display only"""

    file_full_path: str
    """Vault-relative path, unique identity key"""

    file_stat: FileStat = field(default_factory=FileStat)
    """Stat snapshot at last upload/inventory"""

    parent_folders: list[str] = field(default_factory=list)
    """Ancestor folder names, immediate parent first, root as "/" """

    remote_doc_id: Optional[str] = None
    """Remote document id, None if not (yet) uploaded"""

    @property
    def size(self) -> int:
        return self.file_stat.size

    @property
    def is_uploaded(self) -> bool:
        return self.remote_doc_id is not None

    def to_dict(self) -> dict[str, Any]:
        """Convert to the JSON shape of the mapping file."""
        data: dict[str, Any] = {
            "fileName": self.file_name,
            "fileFullPath": self.file_full_path,
            "fileStat": self.file_stat.to_dict(),
            "parentFolders": list(self.parent_folders),
        }
        if self.remote_doc_id is not None:
            data["remoteDocId"] = self.remote_doc_id
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FileMapping":
        """Create a FileMapping from one mapping file entry.

        Accepts the ``aiproxyLibraryDocId`` key written by older versions.

        Raises:
            KeyError: If ``fileFullPath`` is missing
            TypeError: If ``data`` is not a mapping
        """
        full_path = data["fileFullPath"]
        doc_id = data.get("remoteDocId")
        if doc_id is None:
            doc_id = data.get("aiproxyLibraryDocId")
        return cls(
            file_name=data.get("fileName") or full_path.rsplit("/", 1)[-1],
            file_full_path=full_path,
            file_stat=FileStat.from_dict(data.get("fileStat") or {}),
            parent_folders=list(data.get("parentFolders") or []),
            remote_doc_id=str(doc_id) if doc_id is not None else None,
        )

    def with_doc_id(self, doc_id: Optional[str]) -> "FileMapping":
        """Return a copy of this mapping carrying ``doc_id``."""
        return FileMapping(
            file_name=self.file_name,
            file_full_path=self.file_full_path,
            file_stat=FileStat(
                self.file_stat.ctime, self.file_stat.mtime, self.file_stat.size
            ),
            parent_folders=list(self.parent_folders),
            remote_doc_id=doc_id,
        )


@dataclass
class RemoteDocInfo:
    """A document held by the remote library.

    Only ``doc_id`` and ``title`` take part in reconciliation; ``title`` is
    the vault path the document was uploaded under.
    """

    doc_id: str
    title: str
    file_type: Optional[str] = None
    gmt_create: Optional[str] = None
    gmt_modified: Optional[str] = None
    library_id: Optional[int] = None
    status_code: Optional[str] = None
    status_message: Optional[str] = None
    total_tokens: int = 0
    url: Optional[str] = None
    vector_size: int = 0

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "RemoteDocInfo":
        return cls(
            doc_id=str(data.get("docId", "")),
            title=data.get("title") or "",
            file_type=data.get("fileType"),
            gmt_create=data.get("gmtCreate"),
            gmt_modified=data.get("gmtModified"),
            library_id=data.get("libraryId"),
            status_code=data.get("statusCode"),
            status_message=data.get("statusMessage"),
            total_tokens=data.get("totalTokens") or 0,
            url=data.get("url"),
            vector_size=data.get("vectorSize") or 0,
        )


@dataclass
class DocumentPage:
    """One page of the remote document list."""

    records: list[RemoteDocInfo]
    total_pages: int
    page: int = 1
    page_size: int = 0
    total: int = 0

    @classmethod
    def from_api_response(
        cls, data: Optional[dict[str, Any]], page: int = 1, page_size: int = 0
    ) -> "DocumentPage":
        """Build a page from the ``data`` field of a listDocument response."""
        data = data or {}
        records = [
            RemoteDocInfo.from_api_response(r) for r in data.get("records") or []
        ]
        return cls(
            records=records,
            total_pages=int(data.get("totalPages") or 0),
            page=int(data.get("page") or page),
            page_size=int(data.get("pageSize") or page_size),
            total=int(data.get("total") or len(records)),
        )


@dataclass
class Library:
    """Settings of a remote knowledge library."""

    library_id: int
    library_name: str
    description: str = ""
    language: str = ""
    no_answer: bool = False
    enable_document_annotate: bool = False
    enable_logical_reasoning: bool = False
    similarity_top_k: int = 0

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "Library":
        return cls(
            library_id=int(data.get("id", data.get("libraryId", 0))),
            library_name=data.get("libraryName") or "",
            description=data.get("description") or "",
            language=data.get("language") or "",
            no_answer=bool(data.get("noAnswer")),
            enable_document_annotate=bool(data.get("enableDocumentAnnotate")),
            enable_logical_reasoning=bool(data.get("enableLogicalReasoning")),
            similarity_top_k=int(data.get("similarityTopK") or 0),
        )

    def to_api_payload(self) -> dict[str, Any]:
        return {
            "libraryId": self.library_id,
            "libraryName": self.library_name,
            "description": self.description,
            "language": self.language,
            "noAnswer": self.no_answer,
            "enableDocumentAnnotate": self.enable_document_annotate,
            "enableLogicalReasoning": self.enable_logical_reasoning,
            "similarityTopK": self.similarity_top_k,
        }


@dataclass
class AskAnswer:
    """Answer returned by the library ask endpoint."""

    answer: str
    references: list[Any] = field(default_factory=list)
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_api_response(cls, data: Any) -> "AskAnswer":
        if not isinstance(data, dict):
            return cls(answer=str(data or ""), raw={"data": data})
        answer = data.get("answer") or data.get("content") or ""
        references = data.get("documents") or data.get("references") or []
        return cls(answer=answer, references=list(references), raw=data)
