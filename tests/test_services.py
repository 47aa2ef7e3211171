import pytest

from docqa.config import RAGConfig
from docqa.models import Document, DocumentStatus
from docqa.services import (
    Feedback,
    FeedbackStore,
    InMemoryDocumentRegistry,
    LocalFileStorage,
    storage_path_for,
)


def test_local_storage_round_trip(tmp_path):
    storage = LocalFileStorage(str(tmp_path), "http://files.local/")

    url = storage.put("ws-a/doc-1/HR.pdf", b"data")

    assert url == "http://files.local/ws-a/doc-1/HR.pdf"
    assert storage.get("ws-a/doc-1/HR.pdf") == b"data"
    storage.delete("ws-a/doc-1/HR.pdf")
    storage.delete("ws-a/doc-1/HR.pdf")
    with pytest.raises(FileNotFoundError):
        storage.get("ws-a/doc-1/HR.pdf")


def test_local_storage_rejects_escape(tmp_path):
    storage = LocalFileStorage(str(tmp_path / "root"))

    with pytest.raises(ValueError):
        storage.put("../outside.pdf", b"data")


def test_storage_path_for():
    assert storage_path_for("ws-a", "doc-1", "HR Policy 2024.pdf") == "ws-a/doc-1/HR_Policy_2024.pdf"
    assert storage_path_for("ws-a", "doc-1", "../../etc/passwd") == "ws-a/doc-1/passwd"


def test_registry_lifecycle():
    registry = InMemoryDocumentRegistry()
    document = registry.create(Document(workspace_id="ws-a", file_name="HR.pdf", category="HR"))

    assert registry.get(document.id).status == DocumentStatus.PROCESSING

    registry.update_status(document.id, DocumentStatus.FAILED, error="boom")
    assert registry.get(document.id).error == "boom"

    registry.update_status(document.id, DocumentStatus.COMPLETED, chunk_count=4)
    stored = registry.get(document.id)
    assert stored.status == DocumentStatus.COMPLETED
    assert stored.error is None
    assert stored.chunk_count == 4

    assert registry.list("ws-b") == []
    assert registry.delete(document.id) is True
    assert registry.delete(document.id) is False


def test_registry_returns_copies():
    registry = InMemoryDocumentRegistry()
    document = registry.create(Document(workspace_id="ws-a", file_name="HR.pdf", category="HR"))

    fetched = registry.get(document.id)
    fetched.chunk_count = 99

    assert registry.get(document.id).chunk_count == 0


def test_registry_update_unknown():
    with pytest.raises(KeyError):
        InMemoryDocumentRegistry().update("missing", chunk_count=1)


def test_feedback_stats_empty():
    assert FeedbackStore().stats() == {"positive": 0, "negative": 0, "total": 0, "satisfaction": 0.0}


def test_feedback_stats_per_workspace():
    store = FeedbackStore()
    store.save(Feedback(message_id="m1", workspace_id="ws-a", rating=True))
    store.save(Feedback(message_id="m2", workspace_id="ws-b", rating=False))

    assert store.stats("ws-a")["satisfaction"] == 100.0
    assert store.stats()["total"] == 2


def test_config_from_env(monkeypatch):
    monkeypatch.setenv("SIMILARITY_THRESHOLD", "0.7")
    monkeypatch.setenv("MAX_RESULTS", "3")
    monkeypatch.setenv("CHUNK_POLICY", "fixed")
    monkeypatch.setenv("DETECT_CONTRADICTIONS", "true")
    monkeypatch.setenv("RESPONSE_LANGUAGE", "Vietnamese")
    monkeypatch.setattr("docqa.config.load_env", lambda: None)

    config = RAGConfig.from_env()

    assert config.similarity_threshold == 0.7
    assert config.max_results == 3
    assert config.chunk_policy == "fixed"
    assert config.detect_contradictions is True
    assert config.response_language == "Vietnamese"


def test_config_validation():
    with pytest.raises(ValueError):
        RAGConfig(embedding_workers=0)
    with pytest.raises(ValueError):
        RAGConfig(similarity_threshold=1.5)
