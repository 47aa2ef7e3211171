"""
RAG Pipeline
------------
Purpose: Ingestion (document → chunks → vectors → index) and query
(question → vector → matches → context → answer) orchestration.
"""

from concurrent.futures import ThreadPoolExecutor, as_completed, TimeoutError as FutureTimeout
import logging
from pathlib import Path
import time
from typing import Any, Dict, List, Optional
import uuid

from .chunker import Chunk, get_chunker
from .config import RAGConfig
from .context import ContextAssembler
from .embeddings import EmbeddingProvider, get_embeddings_client
from .errors import (
    AnswerGenerationFailed,
    DocumentNotFound,
    EmbeddingFailed,
    EmbeddingTimeout,
    ExtractionEmpty,
    QueryTimeout,
    RAGError,
)
from .llm import GroqLLMClient
from .models import (
    ChunkMetadata,
    Document,
    DocumentStatus,
    IndexRow,
    IngestionResult,
    QueryResult,
)
from .pdf_processor import PDFProcessor, guess_mime_type
from .services import (
    DocumentRegistry,
    InMemoryDocumentRegistry,
    LocalFileStorage,
    StorageService,
    storage_path_for,
)
from .vector_store import VectorStore, get_vector_store

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = "General"
CATEGORY_KEYWORDS = (("HR", "HR"), ("IT", "IT"), ("SALES", "Sales"))


def infer_category(file_name: str) -> str:
    """
    Guess a category from a file name (HR, IT, Sales, else General).

    Example:
        >>> infer_category("HR_Policy.pdf")
        'HR'
    """
    stem = Path(file_name).stem.upper()
    tokens = stem.replace("-", "_").replace(" ", "_").split("_")
    for keyword, category in CATEGORY_KEYWORDS:
        if keyword in tokens:
            return category
    return DEFAULT_CATEGORY


class IngestionPipeline:
    """
    Extract → chunk → embed → index, one document at a time.

    A document is Completed only once every chunk is embedded and written.
    Any failure removes all of its chunks and marks it Failed.
    """

    def __init__(
        self,
        config: RAGConfig,
        embeddings: EmbeddingProvider,
        vector_store: VectorStore,
        registry: DocumentRegistry,
        storage: Optional[StorageService] = None,
        extractor: Optional[PDFProcessor] = None,
        chunker=None,
    ):
        self.config = config
        self.embeddings = embeddings
        self.vector_store = vector_store
        self.registry = registry
        self.storage = storage
        self.extractor = extractor or PDFProcessor()
        self.chunker = chunker or get_chunker(config)

    def ingest_document(
        self,
        workspace_id: str,
        file_name: str,
        file_bytes: bytes,
        mime_type: Optional[str] = None,
        category: Optional[str] = None,
        document_id: Optional[str] = None,
    ) -> IngestionResult:
        """
        Ingest (or re-ingest) one document.

        Args:
            workspace_id: Owning workspace
            file_name: Display name, used in citations
            file_bytes: Raw upload
            mime_type: Defaults to a guess from the file name
            category: Free-form label; defaults to "General"
            document_id: Existing id to re-ingest, or None for a new document

        Returns:
            IngestionResult of a Completed document

        Raises:
            ExtractionEmpty, UnsupportedDocumentType, EmbeddingFailed,
            IndexWriteFailed: The document is left Failed with zero chunks
            DocumentNotFound: document_id belongs to another workspace, or the
                document was deleted while it was being ingested
        """
        if not workspace_id:
            raise ValueError("workspace_id is required")

        mime_type = mime_type or guess_mime_type(file_name)
        category = (category or "").strip() or DEFAULT_CATEGORY
        document = self._start(workspace_id, file_name, mime_type, category, document_id)
        logger.info(f"Ingesting document {document.id} ({file_name}, category={category})")

        try:
            url = self._store_original(document, file_bytes)
            rows, page_count, chunks_created = self._build_rows(document, file_bytes, mime_type, url)
            self.vector_store.replace_document(document.id, rows)
            self.registry.update_status(document.id, DocumentStatus.COMPLETED, chunk_count=len(rows))
        except Exception as e:
            if self.registry.get(document.id) is None:
                self._discard(document)
                raise DocumentNotFound(
                    "Document was deleted during ingestion", document_id=document.id
                ) from e
            if isinstance(e, RAGError) and not e.document_id:
                e.document_id = document.id
            self._fail(document.id, e)
            raise

        logger.info(f"✓ Document {document.id} completed: {len(rows)} chunks from {page_count} pages")

        return IngestionResult(
            document_id=document.id,
            file_name=file_name,
            status=DocumentStatus.COMPLETED,
            chunks_created=chunks_created,
            chunk_count=len(rows),
            page_count=page_count,
            url=url,
        )

    def ingest_folder(
        self,
        folder_path: str,
        workspace_id: str,
        category: Optional[str] = None,
        pattern: str = "*.pdf",
    ) -> Dict[str, Dict[str, Any]]:
        """
        Ingest all matching files from a folder.

        Categories are inferred from file names when none is given. A failed
        file is reported and does not stop the others.

        Returns:
            Dict of {file_name: ingestion result or failure}
        """
        folder = Path(folder_path)
        if not folder.exists():
            raise FileNotFoundError(f"Folder not found: {folder}")

        files = sorted(folder.glob(pattern))
        logger.info(f"Found {len(files)} files in {folder}")

        results = {}
        failed = []
        for path in files:
            try:
                result = self.ingest_document(
                    workspace_id=workspace_id,
                    file_name=path.name,
                    file_bytes=path.read_bytes(),
                    category=category or infer_category(path.name),
                )
                results[path.name] = result.to_dict()
            except RAGError as e:
                failed.append(path.name)
                results[path.name] = {
                    "document_id": e.document_id,
                    "file_name": path.name,
                    "status": DocumentStatus.FAILED.value,
                    "error": str(e),
                }

        if failed:
            logger.warning(f"Failed to ingest {len(failed)} files: {', '.join(failed)}")
        logger.info(f"✓ Ingested {len(files) - len(failed)}/{len(files)} files")
        return results

    def retry(self, document_id: str, workspace_id: str) -> IngestionResult:
        """Re-run ingestion of a stored document (e.g. after a Failed badge)."""
        document = self._get_owned(document_id, workspace_id)
        if not self.storage or not document.storage_path:
            raise DocumentNotFound("Original upload is not available for retry", document_id=document_id)
        try:
            file_bytes = self.storage.get(document.storage_path)
        except FileNotFoundError:
            raise DocumentNotFound("Original upload is missing from storage", document_id=document_id)

        return self.ingest_document(
            workspace_id=workspace_id,
            file_name=document.file_name,
            file_bytes=file_bytes,
            mime_type=document.mime_type,
            category=document.category,
            document_id=document_id,
        )

    def delete_document(self, document_id: str, workspace_id: str) -> int:
        """Delete a document, its chunks and its stored original. Returns chunks removed."""
        document = self._get_owned(document_id, workspace_id)
        removed = self.vector_store.delete_by_document(document_id)
        self.registry.delete(document_id)
        if self.storage and document.storage_path:
            self.storage.delete(document.storage_path)
        logger.info(f"✓ Deleted document {document_id} ({removed} chunks)")
        return removed

    # ---------- steps ----------

    def _get_owned(self, document_id: str, workspace_id: str) -> Document:
        document = self.registry.get(document_id)
        if document is None or document.workspace_id != workspace_id:
            raise DocumentNotFound("Document not found", document_id=document_id)
        return document

    def _start(
        self,
        workspace_id: str,
        file_name: str,
        mime_type: str,
        category: str,
        document_id: Optional[str],
    ) -> Document:
        if document_id and self.registry.get(document_id):
            self._get_owned(document_id, workspace_id)
            return self.registry.update_status(
                document_id,
                DocumentStatus.PROCESSING,
                file_name=file_name,
                mime_type=mime_type,
                category=category,
            )
        document = Document(
            workspace_id=workspace_id,
            file_name=file_name,
            category=category,
            mime_type=mime_type,
        )
        if document_id:
            document.id = document_id
        return self.registry.create(document)

    def _store_original(self, document: Document, file_bytes: bytes) -> Optional[str]:
        """Persist the upload; indexing proceeds without a URL if storage fails."""
        if not self.storage:
            return None
        path = storage_path_for(document.workspace_id, document.id, document.file_name)
        try:
            url = self.storage.put(path, file_bytes)
        except Exception as e:
            logger.warning(f"Storage failed for {document.id}, continuing without URL: {e}")
            return None
        self.registry.update(document.id, storage_path=path, url=url)
        return url

    def _build_rows(self, document: Document, file_bytes: bytes, mime_type: str, url: Optional[str]):
        extracted = self.extractor.extract(file_bytes, mime_type)
        chunks = self.chunker.chunk(extracted.text, extracted.page_boundaries, extracted.page_count)
        logger.info(f"✓ Chunks created: {len(chunks)}")
        if not chunks:
            raise ExtractionEmpty("No chunks left after chunking", document_id=document.id)

        vectors = self._embed_chunks(document.id, chunks)

        generation = uuid.uuid4().hex[:8]
        rows = [
            IndexRow(
                chunk_id=f"{document.id}:{generation}:{chunk.chunk_id}",
                document_id=document.id,
                workspace_id=document.workspace_id,
                category=document.category,
                content=chunk.text,
                vector=vector,
                metadata=ChunkMetadata(file=document.file_name, page=chunk.page, url=url),
            )
            for chunk, vector in zip(chunks, vectors)
        ]
        return rows, extracted.page_count, len(chunks)

    def _embed_chunks(self, document_id: str, chunks: List[Chunk]) -> List[List[float]]:
        """
        Embed every chunk with a bounded worker pool.

        Waits for all chunks to settle before deciding; any failure fails the
        whole document.
        """
        vectors: List[Optional[List[float]]] = [None] * len(chunks)
        failed = []
        workers = min(self.config.embedding_workers, len(chunks))

        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {executor.submit(self.embeddings.embed, chunk.text): i for i, chunk in enumerate(chunks)}
            for future in as_completed(futures):
                i = futures[future]
                try:
                    vectors[i] = future.result()
                except Exception as e:
                    logger.error(f"Failed to embed chunk {i} of {document_id}: {e}")
                    failed.append(i)

        if failed:
            raise EmbeddingFailed(
                f"{len(failed)}/{len(chunks)} chunks failed to embed",
                document_id=document_id,
                failed_chunks=sorted(failed),
            )
        logger.info(f"✓ Embedded {len(chunks)}/{len(chunks)} chunks")
        return vectors

    def _fail(self, document_id: str, error: Exception) -> None:
        """Roll back partially written chunks and mark the document Failed."""
        try:
            self.vector_store.delete_by_document(document_id)
        except RAGError as cleanup_error:
            logger.error(f"Rollback of {document_id} failed: {cleanup_error}")
        try:
            self.registry.update_status(
                document_id, DocumentStatus.FAILED, error=str(error), chunk_count=0
            )
        except KeyError:
            raise DocumentNotFound(
                "Document was deleted during ingestion", document_id=document_id
            ) from error
        logger.error(f"Ingestion of {document_id} failed: {error}")

    def _discard(self, document: Document) -> None:
        """Drop whatever a deleted document's ingestion wrote after the delete."""
        removed = self.vector_store.delete_by_document(document.id)
        if self.storage:
            try:
                self.storage.delete(storage_path_for(document.workspace_id, document.id, document.file_name))
            except OSError as e:
                logger.warning(f"Could not remove stored original of {document.id}: {e}")
        logger.warning(f"Document {document.id} was deleted during ingestion; discarded {removed} chunks")


class QueryPipeline:
    """
    embed(query) → search → assemble → generate.

    An empty search short-circuits to the canned not-found answer without
    calling the generator.
    """

    def __init__(
        self,
        config: RAGConfig,
        embeddings: EmbeddingProvider,
        vector_store: VectorStore,
        llm,
        assembler: Optional[ContextAssembler] = None,
    ):
        self.config = config
        self.embeddings = embeddings
        self.vector_store = vector_store
        self.llm = llm
        self.assembler = assembler or ContextAssembler(max_context_chars=config.max_context_chars)
        self._executor = ThreadPoolExecutor(max_workers=config.embedding_workers)

    def close(self) -> None:
        self._executor.shutdown(wait=False)

    def query(self, text: str, workspace_id: str, category: Optional[str] = None) -> QueryResult:
        """
        Answer a question from a workspace's documents.

        Args:
            text: User's question
            workspace_id: Caller's workspace (trusted)
            category: Exact category, or None/"All"

        Returns:
            QueryResult with status "success" or "no_results"

        Raises:
            EmbeddingFailed, IndexSearchFailed, AnswerGenerationFailed,
            QueryTimeout: Each carries the query text
        """
        if not text or not text.strip():
            raise ValueError("Query text is empty")
        if not workspace_id:
            raise ValueError("workspace_id is required")

        logger.info(f"Querying: {text}")
        deadline = time.monotonic() + self.config.query_timeout

        vector = self._embed_query(text, deadline)
        logger.debug("  → Query embedded")

        try:
            matches = self.vector_store.search(
                vector,
                workspace_id=workspace_id,
                category_filter=category,
                threshold=self.config.similarity_threshold,
                max_results=self.config.max_results,
            )
        except RAGError as e:
            e.query = e.query or text
            raise
        logger.debug(f"  → Retrieved {len(matches)} chunks")

        context = self.assembler.assemble(matches)
        if context.is_empty:
            logger.info("Query complete: no_results")
            return QueryResult(query=text, answer=self.config.not_found_answer, status="no_results")

        generated = self._generate(text, context.context_text, deadline)
        alerts = list(generated.alerts)
        if self.config.detect_contradictions:
            alerts.extend(self._detect_contradictions(context.matches_used, deadline))

        logger.info(f"Query complete: success ({len(context.citations)} citations, {len(alerts)} alerts)")
        return QueryResult(
            query=text,
            answer=generated.answer,
            citations=context.citations,
            alerts=alerts,
            status="success",
            chunks_used=len(context.matches_used),
        )

    def _stage_timeout(self, limit: float, deadline: float, text: str) -> float:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise QueryTimeout(f"Query budget of {self.config.query_timeout}s exhausted", query=text)
        return min(limit, remaining)

    def _embed_query(self, text: str, deadline: float) -> List[float]:
        timeout = self._stage_timeout(self.config.embedding_timeout, deadline, text)
        future = self._executor.submit(self.embeddings.embed, text)
        try:
            return future.result(timeout=timeout)
        except FutureTimeout:
            future.cancel()
            raise EmbeddingTimeout(f"Query embedding timed out after {timeout:.1f}s", query=text)
        except EmbeddingFailed as e:
            e.query = e.query or text
            raise
        except Exception as e:
            raise EmbeddingFailed(f"Query embedding failed: {e}", query=text)

    def _generate(self, text: str, context_text: str, deadline: float):
        timeout = self._stage_timeout(self.config.llm_timeout, deadline, text)
        try:
            return self.llm.generate(text, context_text, timeout=timeout)
        except AnswerGenerationFailed as e:
            e.query = e.query or text
            raise
        except RAGError:
            raise
        except Exception as e:
            raise AnswerGenerationFailed(f"Answer generation failed: {e}", query=text)

    def _detect_contradictions(self, matches, deadline: float):
        """Advisory: skipped when the query budget is already spent."""
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            logger.warning("Query budget spent, skipping contradiction check")
            return []
        return self.llm.detect_contradictions(matches, timeout=min(self.config.llm_timeout, remaining))


class RAGPipeline:
    """
    End-to-end RAG pipeline.

    Workflow:
        1. Initialize: build (or accept injected) components once per process
        2. Ingest: extract, chunk, embed and index documents per workspace
        3. Query: retrieve within a workspace and answer with citations
    """
    def __init__(
        self,
        config: Optional[RAGConfig] = None,
        embeddings: Optional[EmbeddingProvider] = None,
        llm=None,
        vector_store: Optional[VectorStore] = None,
        registry: Optional[DocumentRegistry] = None,
        storage: Optional[StorageService] = None,
    ):
        """
        Initialize RAG pipeline with all components.

        Args:
            config: RAGConfig object with settings (defaults to RAGConfig.from_env())
            embeddings: Optional embeddings client (for dependency injection)
            llm: Optional LLM client (for dependency injection)
            vector_store: Optional vector store
            registry: Optional document registry
            storage: Optional storage service
        """
        self.config = config or RAGConfig.from_env()
        logger.info("Initializing RAG Pipeline...")

        if embeddings:
            self.embeddings = embeddings
            logger.info("✓ Using provided embeddings client")
        else:
            self.embeddings = get_embeddings_client(self.config)
            logger.info("✓ Embeddings client ready")

        if llm:
            self.llm = llm
            logger.info("✓ Using provided LLM client")
        else:
            self.llm = GroqLLMClient(
                api_key=self.config.groq_api_key,
                model_name=self.config.groq_model,
                timeout=self.config.llm_timeout,
                response_language=self.config.response_language,
            )
            logger.info("✓ LLM client ready")

        self.vector_store = vector_store or get_vector_store(self.config, dimension=self.embeddings.dimension)
        self.registry = registry or InMemoryDocumentRegistry()
        self.storage = storage if storage is not None else LocalFileStorage(
            self.config.storage_dir, self.config.public_base_url
        )
        logger.info("✓ Vector store ready")

        self.ingestion = IngestionPipeline(
            self.config, self.embeddings, self.vector_store, self.registry, self.storage
        )
        self.querying = QueryPipeline(self.config, self.embeddings, self.vector_store, self.llm)

        logger.info("✓ RAG Pipeline initialized")

    def ingest_document(self, *args, **kwargs) -> IngestionResult:
        return self.ingestion.ingest_document(*args, **kwargs)

    def ingest_folder(self, *args, **kwargs) -> Dict[str, Dict[str, Any]]:
        return self.ingestion.ingest_folder(*args, **kwargs)

    def retry(self, document_id: str, workspace_id: str) -> IngestionResult:
        return self.ingestion.retry(document_id, workspace_id)

    def delete_document(self, document_id: str, workspace_id: str) -> int:
        return self.ingestion.delete_document(document_id, workspace_id)

    def list_documents(self, workspace_id: str) -> List[Document]:
        return self.registry.list(workspace_id)

    def query(self, text: str, workspace_id: str, category: Optional[str] = None) -> QueryResult:
        return self.querying.query(text, workspace_id, category)

    def close(self) -> None:
        self.querying.close()

    def get_stats(self, workspace_id: Optional[str] = None) -> Dict[str, Any]:
        """Get pipeline statistics."""
        return {
            "total_chunks": self.vector_store.size(workspace_id),
            "config": {
                "chunk_policy": self.config.chunk_policy,
                "chunk_size": self.config.chunk_size,
                "chunk_overlap": self.config.chunk_overlap,
                "min_chunk_chars": self.config.min_chunk_chars,
                "similarity_threshold": self.config.similarity_threshold,
                "max_results": self.config.max_results,
                "embedding_backend": self.config.embedding_backend,
                "vector_backend": self.vector_store.name,
            }
        }
