"""
Configuration
-------------
Purpose: Pipeline settings with documented defaults, overridable from the environment / .env
"""

from dataclasses import dataclass
import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parents[2]

DEFAULT_NOT_FOUND_ANSWER = "I could not find this information in the knowledge base."
DEFAULT_APOLOGY = (
    "Sorry, something went wrong while answering your question. Please try again."
)


def load_env() -> Optional[str]:
    """Load environment variables from the project root .env file."""
    env_paths = [
        PROJECT_ROOT / ".env",
        Path.cwd() / ".env",
    ]

    for env_path in env_paths:
        if env_path.exists():
            load_dotenv(env_path)
            logger.debug(f"Loaded .env from: {env_path}")
            return str(env_path)

    logger.debug("No .env file found")
    return None


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_optional(name: str) -> Optional[str]:
    value = os.getenv(name)
    return value if value else None


@dataclass
class RAGConfig:
    """
    Configuration for the ingestion and query pipelines.

    similarity_threshold is the single retrieval cut-off used by every
    query (0.5 on normalized MiniLM vectors).
    """
    # Chunking
    chunk_policy: str = "paragraph"
    chunk_size: int = 1000
    chunk_overlap: int = 200
    min_chunk_chars: int = 50

    # Retrieval
    similarity_threshold: float = 0.5
    max_results: int = 5
    max_context_chars: Optional[int] = 12000

    # Providers
    embedding_backend: str = "sentence-transformers"
    embedding_model: Optional[str] = None
    ollama_base_url: str = "http://localhost:11434"
    groq_api_key: Optional[str] = None
    groq_model: str = "llama-3.1-8b-instant"
    vector_backend: str = "chroma"
    chroma_dir: str = ".chromadb"

    # Concurrency and timeouts (seconds)
    embedding_workers: int = 4
    query_timeout: float = 30.0
    embedding_timeout: float = 10.0
    llm_timeout: float = 20.0

    # Answers
    response_language: Optional[str] = None
    not_found_answer: str = DEFAULT_NOT_FOUND_ANSWER
    apology_message: str = DEFAULT_APOLOGY
    detect_contradictions: bool = False

    # Storage collaborator
    storage_dir: str = "storage"
    public_base_url: str = "http://localhost:8000/files"

    def __post_init__(self):
        if self.embedding_workers < 1:
            raise ValueError("embedding_workers must be >= 1")
        if self.max_results < 1:
            raise ValueError("max_results must be >= 1")
        if not -1.0 <= self.similarity_threshold <= 1.0:
            raise ValueError("similarity_threshold must be within [-1, 1]")

    @classmethod
    def from_env(cls) -> "RAGConfig":
        """Build a config from environment variables (after loading .env)."""
        load_env()
        defaults = cls()
        max_context = os.getenv("MAX_CONTEXT_CHARS")
        return cls(
            chunk_policy=os.getenv("CHUNK_POLICY", defaults.chunk_policy),
            chunk_size=int(os.getenv("CHUNK_SIZE", defaults.chunk_size)),
            chunk_overlap=int(os.getenv("CHUNK_OVERLAP", defaults.chunk_overlap)),
            min_chunk_chars=int(os.getenv("MIN_CHUNK_CHARS", defaults.min_chunk_chars)),
            similarity_threshold=float(os.getenv("SIMILARITY_THRESHOLD", defaults.similarity_threshold)),
            max_results=int(os.getenv("MAX_RESULTS", defaults.max_results)),
            max_context_chars=int(max_context) if max_context else defaults.max_context_chars,
            embedding_backend=os.getenv("EMBEDDING_BACKEND", defaults.embedding_backend),
            embedding_model=_env_optional("EMBEDDING_MODEL"),
            ollama_base_url=os.getenv("OLLAMA_BASE_URL", defaults.ollama_base_url),
            groq_api_key=_env_optional("GROQ_API_KEY"),
            groq_model=os.getenv("GROQ_MODEL", defaults.groq_model),
            vector_backend=os.getenv("VECTOR_BACKEND", defaults.vector_backend),
            chroma_dir=os.getenv("CHROMA_DIR", defaults.chroma_dir),
            embedding_workers=int(os.getenv("EMBEDDING_WORKERS", defaults.embedding_workers)),
            query_timeout=float(os.getenv("QUERY_TIMEOUT", defaults.query_timeout)),
            embedding_timeout=float(os.getenv("EMBEDDING_TIMEOUT", defaults.embedding_timeout)),
            llm_timeout=float(os.getenv("LLM_TIMEOUT", defaults.llm_timeout)),
            response_language=_env_optional("RESPONSE_LANGUAGE"),
            not_found_answer=os.getenv("NOT_FOUND_ANSWER", defaults.not_found_answer),
            apology_message=os.getenv("APOLOGY_MESSAGE", defaults.apology_message),
            detect_contradictions=_env_bool("DETECT_CONTRADICTIONS", defaults.detect_contradictions),
            storage_dir=os.getenv("STORAGE_DIR", defaults.storage_dir),
            public_base_url=os.getenv("PUBLIC_BASE_URL", defaults.public_base_url),
        )
