from docqa.context import BLOCK_SEPARATOR, NO_CONTEXT_MARKER, ContextAssembler, format_block
from docqa.models import ChunkMetadata, Citation
from docqa.vector_store import RetrievalResult


def make_match(chunk_id, text, file, page, similarity=0.9, category="HR", url=None):
    return RetrievalResult(
        chunk_id=chunk_id,
        text=text,
        similarity=similarity,
        metadata=ChunkMetadata(file=file, page=page, url=url),
        category=category,
        workspace_id="ws-a",
    )


def test_empty_matches_give_marker():
    context = ContextAssembler().assemble([])

    assert context.context_text == NO_CONTEXT_MARKER
    assert context.citations == []
    assert context.is_empty


def test_blocks_and_citations_line_up():
    """The i-th citation points at the source of the i-th context block."""
    matches = [
        make_match("1", "Remote work is two days.", "HR_Policy.pdf", 2),
        make_match("2", "VPN needs a token.", "IT_Guide.pdf", 5, category="IT", url="http://f/IT_Guide.pdf"),
    ]

    context = ContextAssembler().assemble(matches)
    blocks = context.context_text.split(BLOCK_SEPARATOR)

    assert len(blocks) == len(context.citations) == 2
    for block, citation in zip(blocks, context.citations):
        assert block.startswith(f"[Source: {citation.file}, ")
        assert f"Page: {citation.page}]" in block
    assert context.citations[1] == Citation(file="IT_Guide.pdf", page=5, url="http://f/IT_Guide.pdf")


def test_format_block():
    block = format_block(make_match("1", "Body text", "HR_Policy.pdf", 3, similarity=0.875), include_score=True)

    assert block == "[Source: HR_Policy.pdf, Category: HR, Page: 3, Relevance: 87.5%]\nBody text"


def test_budget_drops_trailing_matches():
    matches = [
        make_match("1", "a" * 100, "A.pdf", 1),
        make_match("2", "b" * 100, "B.pdf", 1),
        make_match("3", "c" * 100, "C.pdf", 1),
    ]

    context = ContextAssembler(max_context_chars=300).assemble(matches)

    assert [c.file for c in context.citations] == ["A.pdf", "B.pdf"]
    assert "c" * 100 not in context.context_text


def test_budget_keeps_best_match():
    context = ContextAssembler(max_context_chars=10).assemble([make_match("1", "x" * 500, "A.pdf", 1)])

    assert len(context.citations) == 1
    assert not context.is_empty
