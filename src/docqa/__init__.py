"""
DocQA Package
=============

Workspace-scoped document question answering: PDF ingestion, vector
retrieval and grounded, cited answers with Groq
"""

from .chunker import Chunk, ParagraphChunker, FixedWindowChunker, get_chunker
from .config import RAGConfig
from .context import ContextAssembler, AssembledContext
from .embeddings import (
    EmbeddingProvider,
    OllamaEmbeddingClient,
    SentenceTransformerEmbeddingClient,
    get_embeddings_client,
)
from .errors import (
    RAGError,
    ExtractionEmpty,
    UnsupportedDocumentType,
    EmbeddingFailed,
    EmbeddingTimeout,
    IndexWriteFailed,
    IndexSearchFailed,
    AnswerGenerationFailed,
    GenerationTimeout,
    QueryTimeout,
    DocumentNotFound,
    CrossWorkspaceLeak,
)
from .llm import GroqLLMClient, GeneratedAnswer, parse_answer
from .models import (
    Alert,
    ChunkMetadata,
    Citation,
    Document,
    DocumentStatus,
    IngestionResult,
    QueryResult,
)
from .pdf_processor import PDFProcessor, ExtractedDocument
from .pipeline import IngestionPipeline, QueryPipeline, RAGPipeline, infer_category
from .services import (
    StorageService,
    LocalFileStorage,
    DocumentRegistry,
    InMemoryDocumentRegistry,
    Feedback,
    FeedbackStore,
)
from .vector_store import (
    VectorStore,
    InMemoryVectorStore,
    ChromaVectorStore,
    RetrievalResult,
    get_vector_store,
)

__all__ = [
    # Chunking
    "Chunk",
    "ParagraphChunker",
    "FixedWindowChunker",
    "get_chunker",
    # Config
    "RAGConfig",
    # Context
    "ContextAssembler",
    "AssembledContext",
    # Embeddings
    "EmbeddingProvider",
    "OllamaEmbeddingClient",
    "SentenceTransformerEmbeddingClient",
    "get_embeddings_client",
    # Errors
    "RAGError",
    "ExtractionEmpty",
    "UnsupportedDocumentType",
    "EmbeddingFailed",
    "EmbeddingTimeout",
    "IndexWriteFailed",
    "IndexSearchFailed",
    "AnswerGenerationFailed",
    "GenerationTimeout",
    "QueryTimeout",
    "DocumentNotFound",
    "CrossWorkspaceLeak",
    # LLM
    "GroqLLMClient",
    "GeneratedAnswer",
    "parse_answer",
    # Models
    "Alert",
    "ChunkMetadata",
    "Citation",
    "Document",
    "DocumentStatus",
    "IngestionResult",
    "QueryResult",
    # PDF Processing
    "PDFProcessor",
    "ExtractedDocument",
    # Pipeline
    "IngestionPipeline",
    "QueryPipeline",
    "RAGPipeline",
    "infer_category",
    # Services
    "StorageService",
    "LocalFileStorage",
    "DocumentRegistry",
    "InMemoryDocumentRegistry",
    "Feedback",
    "FeedbackStore",
    # Vector Store
    "VectorStore",
    "InMemoryVectorStore",
    "ChromaVectorStore",
    "RetrievalResult",
    "get_vector_store",
]

__version__ = "0.1.0"
