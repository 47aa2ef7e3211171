"""
Collaborator Services
---------------------
Purpose: Narrow interfaces the pipelines call for file storage, the document
registry and answer feedback, with local implementations.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace, asdict
import logging
from pathlib import Path
import threading
from typing import Any, Dict, List, Optional
import uuid

from .models import Document, DocumentStatus, utc_now

logger = logging.getLogger(__name__)


# ==================== Storage ====================

class StorageService(ABC):
    """Keeps original uploads for download and citation deep links."""

    @abstractmethod
    def put(self, path: str, data: bytes) -> Optional[str]:
        """Store bytes, return a public URL (or None when not publicly served)."""

    @abstractmethod
    def get(self, path: str) -> bytes:
        """Read stored bytes. Raises FileNotFoundError."""

    @abstractmethod
    def delete(self, path: str) -> None:
        """Remove stored bytes; missing paths are ignored."""


class LocalFileStorage(StorageService):
    """Stores files under a local directory, served by the API under /files."""

    def __init__(self, root: str = "storage", public_base_url: Optional[str] = None):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)
        self.public_base_url = public_base_url.rstrip("/") if public_base_url else None

    def _resolve(self, path: str) -> Path:
        target = (self.root / path).resolve()
        if self.root not in target.parents:
            raise ValueError(f"Path escapes storage root: {path}")
        return target

    def put(self, path: str, data: bytes) -> Optional[str]:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        logger.debug(f"Stored {len(data)} bytes at {target}")
        if not self.public_base_url:
            return None
        return f"{self.public_base_url}/{path}"

    def get(self, path: str) -> bytes:
        return self._resolve(path).read_bytes()

    def delete(self, path: str) -> None:
        target = self._resolve(path)
        if target.exists():
            target.unlink()
            logger.debug(f"Deleted stored file {target}")


def storage_path_for(workspace_id: str, document_id: str, file_name: str) -> str:
    """Storage locator of a document's original upload."""
    safe_name = "_".join(Path(file_name).name.split())
    return f"{workspace_id}/{document_id}/{safe_name}"


# ==================== Document registry ====================

class DocumentRegistry(ABC):
    """CRUD persistence of Document rows and their ingestion status."""

    @abstractmethod
    def create(self, document: Document) -> Document:
        """Insert a document row (replacing an existing row with the same id)."""

    @abstractmethod
    def get(self, document_id: str) -> Optional[Document]:
        """Fetch one document, or None."""

    @abstractmethod
    def update(self, document_id: str, **fields: Any) -> Document:
        """Update fields of a document. Raises KeyError for unknown ids."""

    @abstractmethod
    def list(self, workspace_id: str) -> List[Document]:
        """Documents of a workspace, oldest first."""

    @abstractmethod
    def delete(self, document_id: str) -> bool:
        """Remove a document row. Returns False when it did not exist."""

    def update_status(
        self,
        document_id: str,
        status: DocumentStatus,
        error: Optional[str] = None,
        **fields: Any,
    ) -> Document:
        """Record a lifecycle transition."""
        return self.update(document_id, status=status, error=error, **fields)


class InMemoryDocumentRegistry(DocumentRegistry):
    """Thread-safe registry kept in process memory. Returns copies."""

    def __init__(self):
        self._documents: Dict[str, Document] = {}
        self._lock = threading.Lock()

    def create(self, document: Document) -> Document:
        with self._lock:
            self._documents[document.id] = replace(document)
        return replace(document)

    def get(self, document_id: str) -> Optional[Document]:
        with self._lock:
            document = self._documents.get(document_id)
            return replace(document) if document else None

    def update(self, document_id: str, **fields: Any) -> Document:
        with self._lock:
            if document_id not in self._documents:
                raise KeyError(document_id)
            updated = replace(self._documents[document_id], updated_at=utc_now(), **fields)
            self._documents[document_id] = updated
            return replace(updated)

    def list(self, workspace_id: str) -> List[Document]:
        with self._lock:
            documents = [replace(d) for d in self._documents.values() if d.workspace_id == workspace_id]
        return sorted(documents, key=lambda d: d.created_at)

    def delete(self, document_id: str) -> bool:
        with self._lock:
            return self._documents.pop(document_id, None) is not None


# ==================== Feedback ====================

@dataclass
class Feedback:
    """Thumbs up/down on an assistant message."""
    message_id: str
    workspace_id: str
    rating: bool
    user_id: Optional[str] = None
    comment: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: str = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class FeedbackStore:
    """Collects answer ratings and reports satisfaction per workspace."""

    def __init__(self):
        self._items: List[Feedback] = []
        self._lock = threading.Lock()

    def save(self, feedback: Feedback) -> Feedback:
        with self._lock:
            self._items.append(feedback)
        logger.info(
            f"Feedback {'up' if feedback.rating else 'down'} for message {feedback.message_id}"
        )
        return feedback

    def stats(self, workspace_id: Optional[str] = None) -> Dict[str, Any]:
        with self._lock:
            items = [f for f in self._items if workspace_id is None or f.workspace_id == workspace_id]
        positive = sum(1 for f in items if f.rating)
        negative = len(items) - positive
        return {
            "positive": positive,
            "negative": negative,
            "total": len(items),
            "satisfaction": (positive / len(items)) * 100 if items else 0.0,
        }
