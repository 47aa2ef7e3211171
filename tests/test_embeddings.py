from unittest.mock import MagicMock

import pytest
import requests

from docqa.config import RAGConfig
from docqa.embeddings import OllamaEmbeddingClient, get_embeddings_client
from docqa.errors import EmbeddingFailed, EmbeddingTimeout


def response(status_code=200, payload=None):
    mock = MagicMock()
    mock.status_code = status_code
    mock.json.return_value = payload or {}
    mock.text = "error body"
    return mock


@pytest.fixture
def ollama(monkeypatch):
    monkeypatch.setattr("docqa.embeddings.requests.get", lambda *a, **kw: response())
    return OllamaEmbeddingClient(base_url="http://ollama:11434/", timeout=1)


def test_ollama_embed(ollama, monkeypatch):
    post = MagicMock(return_value=response(payload={"embeddings": [[0.1, 0.2, 0.3]]}))
    monkeypatch.setattr("docqa.embeddings.requests.post", post)

    assert ollama.embed("hello") == [0.1, 0.2, 0.3]
    assert ollama.dimension == 3
    assert post.call_args.args[0] == "http://ollama:11434/api/embed"
    assert post.call_args.kwargs["json"] == {"model": "nomic-embed-text", "input": "hello"}


def test_ollama_embed_many_count_mismatch(ollama, monkeypatch):
    monkeypatch.setattr(
        "docqa.embeddings.requests.post",
        lambda *a, **kw: response(payload={"embeddings": [[0.1]]}),
    )

    with pytest.raises(EmbeddingFailed):
        ollama.embed_many(["a", "b"])


def test_ollama_errors(ollama, monkeypatch):
    monkeypatch.setattr("docqa.embeddings.requests.post", lambda *a, **kw: response(status_code=500))
    with pytest.raises(EmbeddingFailed):
        ollama.embed("hello")

    def timeout(*args, **kwargs):
        raise requests.exceptions.Timeout()

    monkeypatch.setattr("docqa.embeddings.requests.post", timeout)
    with pytest.raises(EmbeddingTimeout):
        ollama.embed("hello")


def test_ollama_unreachable(monkeypatch):
    def refuse(*args, **kwargs):
        raise requests.exceptions.ConnectionError()

    monkeypatch.setattr("docqa.embeddings.requests.get", refuse)

    with pytest.raises(ConnectionError):
        OllamaEmbeddingClient()


def test_get_embeddings_client_ollama(monkeypatch):
    monkeypatch.setattr("docqa.embeddings.requests.get", lambda *a, **kw: response())

    client = get_embeddings_client(RAGConfig(embedding_backend="ollama", embedding_model="mxbai-embed-large"))

    assert isinstance(client, OllamaEmbeddingClient)
    assert client.model == "mxbai-embed-large"
