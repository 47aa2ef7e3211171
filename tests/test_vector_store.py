import threading

import pytest

from docqa.errors import CrossWorkspaceLeak, IndexSearchFailed, IndexWriteFailed
from docqa.models import ChunkMetadata, IndexRow
from docqa.vector_store import (
    ChromaVectorStore,
    InMemoryVectorStore,
    RetrievalResult,
    get_vector_store,
)
from docqa.config import RAGConfig


@pytest.fixture(params=["memory", "chroma"])
def vector_store(request, tmp_path):
    if request.param == "memory":
        return InMemoryVectorStore()
    return ChromaVectorStore(persist_directory=str(tmp_path / "chroma"), collection_name="test")


def add(store, chunk_id, vector, workspace="ws-a", category="HR", document="doc-1", file="HR.pdf", page=1):
    store.upsert(
        chunk_id=chunk_id,
        vector=vector,
        content=f"content of {chunk_id}",
        workspace_id=workspace,
        category=category,
        metadata=ChunkMetadata(file=file, page=page),
        document_id=document,
    )


def test_search_is_workspace_scoped(vector_store):
    """Identical content in two workspaces never crosses over."""
    add(vector_store, "a1", [1.0, 0.0, 0.0], workspace="ws-a")
    add(vector_store, "b1", [1.0, 0.0, 0.0], workspace="ws-b", document="doc-2")

    results = vector_store.search([1.0, 0.0, 0.0], workspace_id="ws-a", threshold=0.5)

    assert [r.chunk_id for r in results] == ["a1"]
    assert all(r.workspace_id == "ws-a" for r in results)


def test_search_requires_workspace(vector_store):
    with pytest.raises(ValueError):
        vector_store.search([1.0, 0.0, 0.0], workspace_id="")


def test_threshold_and_ordering(vector_store):
    add(vector_store, "exact", [1.0, 0.0, 0.0])
    add(vector_store, "close", [0.9, 0.1, 0.0])
    add(vector_store, "far", [0.0, 1.0, 0.0])

    results = vector_store.search([1.0, 0.0, 0.0], workspace_id="ws-a", threshold=0.5)

    assert [r.chunk_id for r in results] == ["exact", "close"]
    assert results[0].similarity == pytest.approx(1.0, abs=1e-5)
    assert all(r.similarity >= 0.5 for r in results)


def test_raising_threshold_returns_subset(vector_store):
    add(vector_store, "c1", [1.0, 0.0, 0.0])
    add(vector_store, "c2", [0.8, 0.6, 0.0])
    add(vector_store, "c3", [0.5, 0.85, 0.0])

    low = {r.chunk_id for r in vector_store.search([1.0, 0.0, 0.0], "ws-a", threshold=0.3)}
    high = {r.chunk_id for r in vector_store.search([1.0, 0.0, 0.0], "ws-a", threshold=0.7)}

    assert high <= low
    assert high == {"c1", "c2"}


def test_max_results_cap(vector_store):
    for i in range(8):
        add(vector_store, f"c{i}", [1.0, 0.01 * i, 0.0])

    assert len(vector_store.search([1.0, 0.0, 0.0], "ws-a", threshold=0.0, max_results=3)) == 3
    assert vector_store.search([1.0, 0.0, 0.0], "ws-a", max_results=0) == []


def test_ties_break_oldest_first(vector_store):
    """Equal scores come back in insertion order."""
    for chunk_id in ["first", "second", "third"]:
        add(vector_store, chunk_id, [0.0, 1.0, 0.0])

    results = vector_store.search([0.0, 1.0, 0.0], "ws-a", threshold=0.5, max_results=2)

    assert [r.chunk_id for r in results] == ["first", "second"]


def test_category_filter(vector_store):
    add(vector_store, "hr", [1.0, 0.0, 0.0], category="HR")
    add(vector_store, "it", [1.0, 0.0, 0.0], category="IT")

    only_it = vector_store.search([1.0, 0.0, 0.0], "ws-a", category_filter="IT")
    everything = vector_store.search([1.0, 0.0, 0.0], "ws-a", category_filter="All")
    unfiltered = vector_store.search([1.0, 0.0, 0.0], "ws-a", category_filter=None)

    assert [r.chunk_id for r in only_it] == ["it"]
    assert {r.chunk_id for r in everything} == {"hr", "it"}
    assert {r.chunk_id for r in unfiltered} == {"hr", "it"}


def test_upsert_is_idempotent(vector_store):
    add(vector_store, "c1", [1.0, 0.0, 0.0])
    add(vector_store, "c1", [1.0, 0.0, 0.0])

    assert vector_store.size("ws-a") == 1


def test_delete_by_document(vector_store):
    add(vector_store, "c1", [1.0, 0.0, 0.0], document="doc-1")
    add(vector_store, "c2", [1.0, 0.0, 0.0], document="doc-1")
    add(vector_store, "c3", [1.0, 0.0, 0.0], document="doc-2")

    assert vector_store.delete_by_document("doc-1") == 2
    assert [r.chunk_id for r in vector_store.search([1.0, 0.0, 0.0], "ws-a")] == ["c3"]
    assert vector_store.delete_by_document("doc-1") == 0


def test_replace_document_swaps_generation(vector_store):
    add(vector_store, "doc-1:old:0", [1.0, 0.0, 0.0])
    add(vector_store, "doc-1:old:1", [1.0, 0.0, 0.0])
    rows = [
        IndexRow(
            chunk_id="doc-1:new:0",
            document_id="doc-1",
            workspace_id="ws-a",
            category="HR",
            content="new content",
            vector=[1.0, 0.0, 0.0],
            metadata=ChunkMetadata(file="HR.pdf", page=2),
        )
    ]

    vector_store.replace_document("doc-1", rows)

    results = vector_store.search([1.0, 0.0, 0.0], "ws-a")
    assert [r.chunk_id for r in results] == ["doc-1:new:0"]
    assert results[0].metadata.page == 2
    assert results[0].text == "new content"


def test_dimension_mismatch(vector_store):
    add(vector_store, "c1", [1.0, 0.0, 0.0])

    with pytest.raises(IndexWriteFailed):
        add(vector_store, "c2", [1.0, 0.0])
    with pytest.raises(IndexSearchFailed):
        vector_store.search([1.0, 0.0], "ws-a")


def test_concurrent_first_writes_agree_on_dimension():
    """Two first writers with different dimensions: exactly one wins."""
    store = InMemoryVectorStore()
    barrier = threading.Barrier(2)
    errors = []

    def write(chunk_id, vector):
        barrier.wait()
        try:
            add(store, chunk_id, vector, document=chunk_id)
        except IndexWriteFailed as e:
            errors.append(e)

    threads = [
        threading.Thread(target=write, args=("two", [1.0, 0.0])),
        threading.Thread(target=write, args=("three", [1.0, 0.0, 0.0])),
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(errors) == 1
    assert store.size() == 1
    assert store.dimension in (2, 3)


def test_search_empty_workspace(vector_store):
    assert vector_store.search([1.0, 0.0, 0.0], "nobody") == []


def test_metadata_round_trip(vector_store):
    vector_store.upsert(
        chunk_id="c1",
        vector=[1.0, 0.0, 0.0],
        content="text",
        workspace_id="ws-a",
        category="HR",
        metadata=ChunkMetadata(file="HR.pdf", page=3, url="http://files/HR.pdf"),
        document_id="doc-1",
    )

    result = vector_store.search([1.0, 0.0, 0.0], "ws-a")[0]

    assert result.metadata == ChunkMetadata(file="HR.pdf", page=3, url="http://files/HR.pdf")
    assert result.document_id == "doc-1"
    assert result.category == "HR"


def test_chroma_persists_between_clients(tmp_path):
    path = str(tmp_path / "chroma")
    store = ChromaVectorStore(persist_directory=path, collection_name="persist")
    add(store, "c1", [1.0, 0.0, 0.0])

    reopened = ChromaVectorStore(persist_directory=path, collection_name="persist")

    assert reopened.size("ws-a") == 1
    assert [r.chunk_id for r in reopened.search([1.0, 0.0, 0.0], "ws-a")] == ["c1"]


def test_leaked_row_is_fatal():
    """A backend returning another workspace's row trips the isolation check."""

    class LeakyStore(InMemoryVectorStore):
        def _candidates(self, query_vector, workspace_id, category_filter, limit):
            return [RetrievalResult(chunk_id="x", text="t", similarity=0.9, workspace_id="ws-other")]

    store = LeakyStore()
    with pytest.raises(CrossWorkspaceLeak):
        store.search([1.0, 0.0, 0.0], "ws-a")


def test_get_vector_store():
    assert isinstance(get_vector_store(RAGConfig(vector_backend="memory"), dimension=3), InMemoryVectorStore)
    with pytest.raises(ValueError):
        get_vector_store(RAGConfig(vector_backend="pinecone"))
