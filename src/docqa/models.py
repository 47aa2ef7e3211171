"""
Models
------
Purpose: Shared records passed between pipeline stages.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
import uuid

UNKNOWN_FILE = "Unknown"
DEFAULT_PAGE = 1


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class DocumentStatus(str, Enum):
    """Ingestion lifecycle of a document."""
    PROCESSING = "Processing"
    COMPLETED = "Completed"
    FAILED = "Failed"


def _coerce_page(value: Any) -> int:
    try:
        page = int(value)
    except (TypeError, ValueError):
        return DEFAULT_PAGE
    return page if page >= 1 else DEFAULT_PAGE


@dataclass
class ChunkMetadata:
    """Citation-addressable location of a chunk."""
    file: str = UNKNOWN_FILE
    page: int = DEFAULT_PAGE
    url: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ChunkMetadata":
        """
        Build metadata from a loosely-typed mapping.

        Missing or invalid fields fall back to defaults instead of
        propagating None.
        """
        data = data or {}
        file_name = data.get("file") or UNKNOWN_FILE
        url = data.get("url") or None
        return cls(file=str(file_name), page=_coerce_page(data.get("page")), url=url)

    def to_dict(self) -> Dict[str, Any]:
        data = {"file": self.file, "page": self.page}
        if self.url:
            data["url"] = self.url
        return data


@dataclass
class Citation:
    """Display-only pointer from an answer back to a source chunk."""
    file: str
    page: int
    url: Optional[str] = None

    @classmethod
    def from_metadata(cls, metadata: ChunkMetadata) -> "Citation":
        return cls(file=metadata.file, page=metadata.page, url=metadata.url)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Alert:
    """Structured annotation attached to an answer, e.g. conflicting sources."""
    title: str
    content: str
    source: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Document:
    """A unit of ingested knowledge owned by a workspace."""
    workspace_id: str
    file_name: str
    category: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    mime_type: str = "application/pdf"
    storage_path: Optional[str] = None
    url: Optional[str] = None
    status: DocumentStatus = DocumentStatus.PROCESSING
    chunk_count: int = 0
    error: Optional[str] = None
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data


@dataclass
class IndexRow:
    """One row written to the vector index."""
    chunk_id: str
    document_id: str
    workspace_id: str
    category: str
    content: str
    vector: List[float]
    metadata: ChunkMetadata = field(default_factory=ChunkMetadata)


@dataclass
class IngestionResult:
    """Outcome of ingesting one document."""
    document_id: str
    file_name: str
    status: DocumentStatus
    chunks_created: int = 0
    chunk_count: int = 0
    page_count: int = 0
    url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data


@dataclass
class QueryResult:
    """Answer to a question, with the citations and alerts to render."""
    query: str
    answer: str
    citations: List[Citation] = field(default_factory=list)
    alerts: List[Alert] = field(default_factory=list)
    status: str = "success"
    chunks_used: int = 0
    message_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query": self.query,
            "answer": self.answer,
            "citations": [c.to_dict() for c in self.citations],
            "alerts": [a.to_dict() for a in self.alerts],
            "status": self.status,
            "chunks_used": self.chunks_used,
            "message_id": self.message_id,
        }
