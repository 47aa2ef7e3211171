"""
Vector Store Module
===================

Purpose: Store chunk embeddings and run workspace-scoped similarity search

Key Concepts:
  • Rows: chunk_id → (vector, content, workspace, category, citation metadata)
  • Scope: every search is restricted to one workspace, never optional
  • Matching: cosine similarity ≥ threshold, capped at max_results,
    best first, ties broken by insertion order (oldest chunk first)
  • Backends: Chroma (persistent) and an exact in-memory store
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
import logging
import os
import threading
import time
from typing import Any, Dict, List, Optional

import chromadb
import numpy as np

from .errors import CrossWorkspaceLeak, IndexSearchFailed, IndexWriteFailed
from .models import ChunkMetadata, IndexRow

logger = logging.getLogger(__name__)

ALL_CATEGORIES = "All"


@dataclass
class RetrievalResult:
    """A single retrieved chunk with metadata."""
    chunk_id: str
    text: str
    similarity: float
    metadata: ChunkMetadata = field(default_factory=ChunkMetadata)
    document_id: str = ""
    workspace_id: str = ""
    category: str = ""
    seq: int = 0


def is_unfiltered(category: Optional[str]) -> bool:
    """None, empty and "All" mean no category restriction."""
    return category is None or not category.strip() or category == ALL_CATEGORIES


class VectorStore(ABC):
    """
    Base class for vector indexes.

    Subclasses provide raw storage and candidate lookup; thresholding,
    ordering, the result cap and the workspace check live here so every
    backend honours them the same way.
    """

    name = "base"

    def __init__(self, dimension: Optional[int] = None):
        self.dimension = dimension
        self._seq_lock = threading.Lock()
        self._dimension_lock = threading.Lock()
        self._last_seq = 0

    # ---------- writes ----------

    def upsert(
        self,
        chunk_id: str,
        vector: List[float],
        content: str,
        workspace_id: str,
        category: str,
        metadata: ChunkMetadata,
        document_id: str,
    ) -> None:
        """
        Idempotent write of one chunk (same chunk_id overwrites).

        Raises:
            IndexWriteFailed: Dimension mismatch or storage error
        """
        row = IndexRow(
            chunk_id=chunk_id,
            document_id=document_id,
            workspace_id=workspace_id,
            category=category,
            content=content,
            vector=list(vector),
            metadata=metadata,
        )
        self._validate_rows([row], document_id)
        self._write_rows([row], self._next_seqs(1), document_id)

    def replace_document(self, document_id: str, rows: List[IndexRow]) -> None:
        """
        Swap every chunk of a document for a new generation.

        Old rows are removed and the new rows written as one batch, so a
        query sees either no rows of the document or the complete new set.
        """
        self._validate_rows(rows, document_id)
        self._replace_rows(document_id, rows, self._next_seqs(len(rows)))
        logger.debug(f"Replaced chunks of {document_id} with {len(rows)} rows")

    @abstractmethod
    def delete_by_document(self, document_id: str) -> int:
        """Delete all chunks of a document. Returns the number removed."""

    @abstractmethod
    def size(self, workspace_id: Optional[str] = None) -> int:
        """Number of stored chunks, optionally within one workspace."""

    @abstractmethod
    def clear(self) -> None:
        """Remove every row."""

    @abstractmethod
    def _write_rows(self, rows: List[IndexRow], seqs: List[int], document_id: str) -> None:
        """Persist rows, keeping the original seq of rows that already exist."""

    @abstractmethod
    def _replace_rows(self, document_id: str, rows: List[IndexRow], seqs: List[int]) -> None:
        """Delete the document's rows and write ``rows`` in one step."""

    @abstractmethod
    def _candidates(
        self,
        query_vector: List[float],
        workspace_id: str,
        category_filter: Optional[str],
        limit: int,
    ) -> List[RetrievalResult]:
        """Best candidates of the workspace (and category), any order."""

    # ---------- search ----------

    def search(
        self,
        query_vector: List[float],
        workspace_id: str,
        category_filter: Optional[str] = None,
        threshold: float = 0.5,
        max_results: int = 5,
    ) -> List[RetrievalResult]:
        """
        Find the chunks of a workspace most similar to the query vector.

        Args:
            query_vector: Embedded query
            workspace_id: Mandatory tenant scope
            category_filter: Exact category, or None/"All" for every category
            threshold: Minimum cosine similarity to be returned
            max_results: Result cap

        Returns:
            List of RetrievalResult, similarity descending, oldest first on ties.
            Empty when nothing clears the threshold.

        Raises:
            ValueError: Missing workspace id or bad arguments
            IndexSearchFailed: Storage error or query dimension mismatch
            CrossWorkspaceLeak: A row from another workspace came back
        """
        if not workspace_id:
            raise ValueError("workspace_id is required for search")
        if max_results <= 0:
            return []
        if self.dimension is not None and len(query_vector) != self.dimension:
            raise IndexSearchFailed(
                f"Query vector has {len(query_vector)} dims, index expects {self.dimension}"
            )

        category = None if is_unfiltered(category_filter) else category_filter
        candidates = self._candidates(query_vector, workspace_id, category, max_results)

        for result in candidates:
            if result.workspace_id != workspace_id:
                raise CrossWorkspaceLeak(workspace_id, result.workspace_id, result.chunk_id)

        matches = [r for r in candidates if r.similarity >= threshold]
        matches.sort(key=lambda r: (-r.similarity, r.seq))
        matches = matches[:max_results]

        logger.debug(
            f"Search in {workspace_id} (category={category or ALL_CATEGORIES}): "
            f"{len(matches)}/{len(candidates)} candidates ≥ {threshold}"
        )
        return matches

    # ---------- helpers ----------

    def _next_seqs(self, count: int) -> List[int]:
        """Strictly increasing insertion sequence numbers, stable across restarts."""
        with self._seq_lock:
            start = max(self._last_seq + 1, time.time_ns())
            self._last_seq = start + count - 1
        return list(range(start, start + count))

    def _validate_rows(self, rows: List[IndexRow], document_id: str) -> None:
        for row in rows:
            if not row.workspace_id:
                raise IndexWriteFailed(
                    f"Chunk {row.chunk_id} has no workspace_id", document_id=document_id
                )
            if self.dimension is None:
                # first write fixes the dimension; concurrent first writers must agree
                with self._dimension_lock:
                    if self.dimension is None:
                        self.dimension = len(row.vector)
                        logger.info(f"Index dimension set to {self.dimension}")
            if len(row.vector) != self.dimension:
                raise IndexWriteFailed(
                    f"Chunk {row.chunk_id} has {len(row.vector)} dims, index expects {self.dimension}",
                    document_id=document_id,
                )


class _MemoryRow:
    __slots__ = ("row", "seq", "unit")

    def __init__(self, row: IndexRow, seq: int):
        self.row = row
        self.seq = seq
        vector = np.asarray(row.vector, dtype=float)
        norm = np.linalg.norm(vector)
        self.unit = vector / norm if norm else vector


class InMemoryVectorStore(VectorStore):
    """
    Exact cosine search over rows held in process memory.

    Reads and writes share one re-entrant lock held only for the copy or
    swap, so a query never observes a half-written row or a half-replaced
    document.
    """

    name = "memory"

    def __init__(self, dimension: Optional[int] = None):
        super().__init__(dimension)
        self._rows: Dict[str, _MemoryRow] = {}
        self._lock = threading.RLock()

    def _write_rows(self, rows, seqs, document_id):
        prepared = []
        with self._lock:
            for row, seq in zip(rows, seqs):
                existing = self._rows.get(row.chunk_id)
                prepared.append(_MemoryRow(row, existing.seq if existing else seq))
            for item in prepared:
                self._rows[item.row.chunk_id] = item

    def _replace_rows(self, document_id, rows, seqs):
        prepared = [_MemoryRow(row, seq) for row, seq in zip(rows, seqs)]
        with self._lock:
            stale = [cid for cid, item in self._rows.items() if item.row.document_id == document_id]
            for cid in stale:
                del self._rows[cid]
            for item in prepared:
                self._rows[item.row.chunk_id] = item

    def delete_by_document(self, document_id: str) -> int:
        with self._lock:
            stale = [cid for cid, item in self._rows.items() if item.row.document_id == document_id]
            for cid in stale:
                del self._rows[cid]
        logger.debug(f"Deleted {len(stale)} chunks of {document_id}")
        return len(stale)

    def size(self, workspace_id: Optional[str] = None) -> int:
        with self._lock:
            if workspace_id is None:
                return len(self._rows)
            return sum(1 for item in self._rows.values() if item.row.workspace_id == workspace_id)

    def clear(self) -> None:
        with self._lock:
            self._rows.clear()
        logger.info("Cleared in-memory vector store")

    def _candidates(self, query_vector, workspace_id, category_filter, limit):
        with self._lock:
            scoped = [
                item for item in self._rows.values()
                if item.row.workspace_id == workspace_id
                and (category_filter is None or item.row.category == category_filter)
            ]
        if not scoped:
            return []

        query = np.asarray(query_vector, dtype=float)
        norm = np.linalg.norm(query)
        if norm == 0:
            return []
        query = query / norm

        scores = np.stack([item.unit for item in scoped]) @ query
        return [
            RetrievalResult(
                chunk_id=item.row.chunk_id,
                text=item.row.content,
                similarity=float(score),
                metadata=item.row.metadata,
                document_id=item.row.document_id,
                workspace_id=item.row.workspace_id,
                category=item.row.category,
                seq=item.seq,
            )
            for item, score in zip(scoped, scores)
        ]


class ChromaVectorStore(VectorStore):
    """
    Vector store using Chroma (persistent, local).

    Workspace and category are stored as row metadata and applied as
    ``where`` filters inside Chroma, then re-checked by the base class.
    """

    name = "chroma"

    def __init__(
        self,
        persist_directory: str = ".chromadb",
        collection_name: str = "knowledge_embeddings",
        dimension: Optional[int] = None,
        overfetch: int = 20,
    ):
        """
        Initialize Chroma vector store.

        Args:
            persist_directory: Where to store vectors on disk
            collection_name: Name of the collection
            dimension: Expected vector dimension (learned from the first write if None)
            overfetch: Extra candidates requested beyond max_results so ties
                at the cut-off are ordered by insertion, not by HNSW
        """
        super().__init__(dimension)
        self.persist_directory = persist_directory
        self.collection_name = collection_name
        self.overfetch = overfetch

        os.makedirs(persist_directory, exist_ok=True)

        try:
            self.client = chromadb.PersistentClient(path=persist_directory)
            self.collection = self.client.get_or_create_collection(
                name=collection_name,
                metadata={"hnsw:space": "cosine"}
            )
        except Exception as e:
            logger.error(f"Failed to initialize Chroma: {e}")
            raise

        logger.info(
            f"✓ Initialized Chroma vector store at {persist_directory} "
            f"(collection: {collection_name})"
        )

    @staticmethod
    def _row_metadata(row: IndexRow, seq: int) -> Dict[str, Any]:
        metadata = {
            "document_id": row.document_id,
            "workspace_id": row.workspace_id,
            "category": row.category,
            "file": row.metadata.file,
            "page": row.metadata.page,
            "seq": seq,
        }
        if row.metadata.url:
            metadata["url"] = row.metadata.url
        return metadata

    def _existing_seqs(self, chunk_ids: List[str]) -> Dict[str, int]:
        found = self.collection.get(ids=chunk_ids, include=["metadatas"])
        return {
            cid: meta.get("seq", 0)
            for cid, meta in zip(found["ids"], found["metadatas"] or [])
            if meta
        }

    def _upsert(self, rows: List[IndexRow], seqs: List[int]) -> None:
        if not rows:
            return
        self.collection.upsert(
            ids=[r.chunk_id for r in rows],
            embeddings=[r.vector for r in rows],
            documents=[r.content for r in rows],
            metadatas=[self._row_metadata(r, s) for r, s in zip(rows, seqs)],
        )

    def _write_rows(self, rows, seqs, document_id):
        try:
            existing = self._existing_seqs([r.chunk_id for r in rows])
            seqs = [existing.get(r.chunk_id, s) for r, s in zip(rows, seqs)]
            self._upsert(rows, seqs)
        except Exception as e:
            logger.error(f"Failed to upsert chunks of {document_id}: {e}")
            raise IndexWriteFailed(f"Chroma upsert failed: {e}", document_id=document_id)

    def _replace_rows(self, document_id, rows, seqs):
        try:
            self.collection.delete(where={"document_id": document_id})
            self._upsert(rows, seqs)
        except Exception as e:
            logger.error(f"Failed to replace chunks of {document_id}: {e}")
            raise IndexWriteFailed(f"Chroma replace failed: {e}", document_id=document_id)

    def delete_by_document(self, document_id: str) -> int:
        try:
            found = self.collection.get(where={"document_id": document_id}, include=[])
            if found["ids"]:
                self.collection.delete(ids=found["ids"])
        except Exception as e:
            logger.error(f"Failed to delete chunks of {document_id}: {e}")
            raise IndexWriteFailed(f"Chroma delete failed: {e}", document_id=document_id)
        logger.debug(f"Deleted {len(found['ids'])} chunks of {document_id}")
        return len(found["ids"])

    def size(self, workspace_id: Optional[str] = None) -> int:
        if workspace_id is None:
            return self.collection.count()
        found = self.collection.get(where={"workspace_id": workspace_id}, include=[])
        return len(found["ids"])

    def clear(self) -> None:
        try:
            all_data = self.collection.get(include=[])
            if all_data["ids"]:
                self.collection.delete(ids=all_data["ids"])
        except Exception as e:
            logger.error(f"Failed to clear store: {e}")
            raise IndexWriteFailed(f"Chroma clear failed: {e}")
        logger.info("Cleared vector store")

    def _candidates(self, query_vector, workspace_id, category_filter, limit):
        where: Dict[str, Any] = {"workspace_id": workspace_id}
        if category_filter is not None:
            where = {"$and": [{"workspace_id": workspace_id}, {"category": category_filter}]}

        try:
            available = self.size(workspace_id)
            if available == 0:
                return []
            results = self.collection.query(
                query_embeddings=[list(query_vector)],
                n_results=min(available, limit + self.overfetch),
                where=where,
                include=["documents", "metadatas", "distances"],
            )
        except Exception as e:
            logger.error(f"Retrieval failed: {e}")
            raise IndexSearchFailed(f"Chroma query failed: {e}")

        if not results["ids"] or not results["ids"][0]:
            return []

        candidates = []
        for i, chunk_id in enumerate(results["ids"][0]):
            meta = results["metadatas"][0][i] or {}
            # cosine space: distance = 1 - similarity
            similarity = 1 - results["distances"][0][i]
            candidates.append(RetrievalResult(
                chunk_id=chunk_id,
                text=results["documents"][0][i],
                similarity=similarity,
                metadata=ChunkMetadata.from_dict(meta),
                document_id=meta.get("document_id", ""),
                workspace_id=meta.get("workspace_id", ""),
                category=meta.get("category", ""),
                seq=meta.get("seq", 0),
            ))
        return candidates


def get_vector_store(config, dimension: Optional[int] = None) -> VectorStore:
    """Build the vector store selected by ``config.vector_backend``."""
    backend = (config.vector_backend or "chroma").lower()
    if backend == "memory":
        logger.info("Using in-memory vector store")
        return InMemoryVectorStore(dimension=dimension)
    if backend == "chroma":
        return ChromaVectorStore(persist_directory=config.chroma_dir, dimension=dimension)
    raise ValueError(f"Unknown vector backend: {config.vector_backend}")
