"""Shared pytest fixtures for the docqa test suite."""

import re
import threading
import time
from typing import List, Optional

import pytest

from docqa.config import RAGConfig
from docqa.embeddings import EmbeddingProvider
from docqa.errors import AnswerGenerationFailed, EmbeddingFailed
from docqa.llm import GeneratedAnswer
from docqa.models import Alert
from docqa.pipeline import IngestionPipeline, QueryPipeline, RAGPipeline
from docqa.services import InMemoryDocumentRegistry, LocalFileStorage
from docqa.vector_store import InMemoryVectorStore

# Each vocabulary word is one axis; text with none of them lands on the last axis.
VOCAB = [
    "remote", "work", "office", "vpn", "password", "token",
    "commission", "quota", "holiday", "leave", "cafeteria", "menu",
]

HR_TEXT = (
    "Remote work is allowed two days per week for every full-time employee.\n\n"
    "Annual holiday leave is twenty days and must be booked through the portal."
)
IT_TEXT = (
    "VPN access requires a hardware token issued by the service desk team.\n\n"
    "Each password must be rotated every ninety days on all company laptops."
)
SALES_TEXT = (
    "Commission is paid monthly once the quarterly quota has been reached in full."
)


def build_pdf(page_texts):
    """Minimal single-font PDF with one text line per page."""
    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        None,  # pages tree, filled once page ids are known
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
    ]
    page_ids = []
    for text in page_texts:
        stream = f"BT /F1 12 Tf 72 720 Td ({text}) Tj ET".encode("latin-1")
        objects.append(b"<< /Length %d >>\nstream\n%s\nendstream" % (len(stream), stream))
        content_id = len(objects)
        objects.append(
            b"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] "
            b"/Resources << /Font << /F1 3 0 R >> >> /Contents %d 0 R >>" % content_id
        )
        page_ids.append(len(objects))
    kids = b" ".join(b"%d 0 R" % i for i in page_ids)
    objects[1] = b"<< /Type /Pages /Kids [%s] /Count %d >>" % (kids, len(page_ids))

    out = bytearray(b"%PDF-1.4\n")
    offsets = []
    for number, body in enumerate(objects, 1):
        offsets.append(len(out))
        out += b"%d 0 obj\n%s\nendobj\n" % (number, body)
    xref_at = len(out)
    out += b"xref\n0 %d\n0000000000 65535 f \n" % (len(objects) + 1)
    for offset in offsets:
        out += b"%010d 00000 n \n" % offset
    out += b"trailer\n<< /Size %d /Root 1 0 R >>\nstartxref\n%d\n%%%%EOF\n" % (len(objects) + 1, xref_at)
    return bytes(out)


class FakeEmbeddings(EmbeddingProvider):
    """Keyword-axis embedder: cosine similarity is predictable by hand."""

    name = "fake"

    def __init__(self, fail_on: Optional[List[str]] = None, delay: float = 0.0):
        self.fail_on = fail_on or []
        self.delay = delay
        self.calls = 0
        self._lock = threading.Lock()

    @property
    def dimension(self) -> int:
        return len(VOCAB) + 1

    def embed(self, text: str) -> List[float]:
        with self._lock:
            self.calls += 1
        if self.delay:
            time.sleep(self.delay)
        lowered = text.lower()
        for marker in self.fail_on:
            if marker in lowered:
                raise EmbeddingFailed(f"provider rejected text containing {marker!r}")

        words = set(re.findall(r"[a-z]+", lowered))
        vector = [1.0 if word in words else 0.0 for word in VOCAB]
        vector.append(0.0 if any(vector) else 1.0)
        return vector

    def embed_many(self, texts: List[str]) -> List[List[float]]:
        return [self.embed(t) for t in texts]


class FakeLLM:
    """Scripted answer generator that records every call."""

    def __init__(self, answer: str = "Remote work is allowed two days per week (HR_Policy.txt, page 1).",
                 alerts: Optional[List[Alert]] = None, fail: bool = False):
        self.answer = answer
        self.alerts = alerts or []
        self.fail = fail
        self.calls = []
        self.contradiction_calls = 0

    def generate(self, query: str, context_text: str, timeout: Optional[float] = None) -> GeneratedAnswer:
        self.calls.append({"query": query, "context": context_text, "timeout": timeout})
        if self.fail:
            raise AnswerGenerationFailed("scripted failure")
        return GeneratedAnswer(answer=self.answer, alerts=list(self.alerts))

    def detect_contradictions(self, matches, timeout: Optional[float] = None) -> List[Alert]:
        self.contradiction_calls += 1
        return [Alert(title="Conflicting sources: office days", content="Files disagree", source="a / b")]


@pytest.fixture
def config() -> RAGConfig:
    """Test configuration: in-memory index, paragraph chunks, 0.5 threshold."""
    return RAGConfig(
        vector_backend="memory",
        min_chunk_chars=50,
        similarity_threshold=0.5,
        max_results=5,
        embedding_workers=3,
        query_timeout=5.0,
        embedding_timeout=2.0,
        llm_timeout=2.0,
        not_found_answer="Not found in the knowledge base.",
    )


@pytest.fixture
def embeddings() -> FakeEmbeddings:
    return FakeEmbeddings()


@pytest.fixture
def llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture
def store() -> InMemoryVectorStore:
    return InMemoryVectorStore()


@pytest.fixture
def registry() -> InMemoryDocumentRegistry:
    return InMemoryDocumentRegistry()


@pytest.fixture
def storage(tmp_path) -> LocalFileStorage:
    return LocalFileStorage(str(tmp_path / "storage"), "http://testserver/files")


@pytest.fixture
def ingestion(config, embeddings, store, registry, storage) -> IngestionPipeline:
    return IngestionPipeline(config, embeddings, store, registry, storage)


@pytest.fixture
def querying(config, embeddings, store, llm):
    pipeline = QueryPipeline(config, embeddings, store, llm)
    yield pipeline
    pipeline.close()


@pytest.fixture
def rag(config, embeddings, llm, store, registry, storage):
    pipeline = RAGPipeline(
        config=config,
        embeddings=embeddings,
        llm=llm,
        vector_store=store,
        registry=registry,
        storage=storage,
    )
    yield pipeline
    pipeline.close()
