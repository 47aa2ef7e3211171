"""
Errors
------
Purpose: Typed failures for the ingestion and query pipelines.

    RAGError
    +-- ExtractionEmpty
    +-- UnsupportedDocumentType
    +-- EmbeddingFailed
    |   +-- EmbeddingTimeout
    +-- IndexWriteFailed
    +-- IndexSearchFailed
    +-- AnswerGenerationFailed
    |   +-- GenerationTimeout
    +-- QueryTimeout
    +-- DocumentNotFound

    CrossWorkspaceLeak (AssertionError)

"No relevant context" is not an error: the query pipeline returns a
``no_results`` status for it.
"""

from typing import List, Optional


class RAGError(Exception):
    """
    Base class for pipeline errors.

    Carries the document id (ingestion) or the query text (query) so a failure
    can be debugged without re-running it. Vectors are never attached.
    """

    def __init__(
        self,
        message: str,
        document_id: Optional[str] = None,
        query: Optional[str] = None,
    ):
        self.message = message
        self.document_id = document_id
        self.query = query
        super().__init__(message)

    def __str__(self) -> str:
        if self.document_id:
            return f"{self.message} (document_id={self.document_id})"
        if self.query:
            return f"{self.message} (query={self.query!r})"
        return self.message


class ExtractionEmpty(RAGError):
    """Document yielded no usable text after all pages were attempted."""


class UnsupportedDocumentType(RAGError):
    """Mime type the extractor cannot read."""


class EmbeddingFailed(RAGError):
    """
    Embedding provider call failed.

    During ingestion ``failed_chunks`` lists the indices of the chunks that
    could not be embedded.
    """

    def __init__(
        self,
        message: str,
        document_id: Optional[str] = None,
        query: Optional[str] = None,
        failed_chunks: Optional[List[int]] = None,
    ):
        super().__init__(message, document_id=document_id, query=query)
        self.failed_chunks = failed_chunks or []


class EmbeddingTimeout(EmbeddingFailed):
    """Embedding provider did not answer within its timeout."""


class IndexWriteFailed(RAGError):
    """Vector index rejected an upsert or delete. Safe to retry."""


class IndexSearchFailed(RAGError):
    """Vector index could not run a similarity search."""


class AnswerGenerationFailed(RAGError):
    """Generator errored or returned a response that could not be parsed."""


class GenerationTimeout(AnswerGenerationFailed):
    """Generator did not answer within its timeout."""


class QueryTimeout(RAGError):
    """The overall query budget was spent before the pipeline finished."""


class DocumentNotFound(RAGError):
    """No document with this id in the caller's workspace."""


class CrossWorkspaceLeak(AssertionError):
    """A search returned a row belonging to another workspace."""

    def __init__(self, expected_workspace: str, found_workspace: str, chunk_id: str):
        self.expected_workspace = expected_workspace
        self.found_workspace = found_workspace
        self.chunk_id = chunk_id
        super().__init__(
            f"Chunk {chunk_id} from workspace {found_workspace!r} "
            f"returned for workspace {expected_workspace!r}"
        )
