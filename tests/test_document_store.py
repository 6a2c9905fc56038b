"""Tests for KeywordIndex, DocumentStore and format_search_results."""

from localchat.core.models import ChunkMetadata, DocumentChunk
from localchat.data.chunking import TextChunker
from localchat.data.document_store import DocumentStore, KeywordIndex, format_search_results


def _small_store():
    return DocumentStore(chunker=TextChunker(min_size=10, default_size=10, default_overlap=2))


def _chunk(content, source="a.txt", index=0):
    return DocumentChunk(
        id=f"{source}-chunk-{index}",
        content=content,
        metadata=ChunkMetadata(source=source, chunk_index=index, total_chunks=1)
    )


# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------


class TestIngest:
    def test_notes_example(self):
        store = _small_store()
        chunks = store.ingest("notes.md", "The quick brown fox jumps")

        assert len(chunks) >= 3
        assert all(len(c.content) <= 10 for c in chunks)
        assert [c.id for c in chunks] == [f"notes.md-chunk-{i}" for i in range(len(chunks))]
        assert all(c.metadata.total_chunks == len(chunks) for c in chunks)
        assert [c.metadata.chunk_index for c in chunks] == list(range(len(chunks)))

    def test_reingest_replaces_chunks(self):
        store = DocumentStore()
        store.ingest("a.txt", "first version about apples")
        store.ingest("a.txt", "second version about bananas")

        chunks = store.get_chunks("a.txt")
        assert len(chunks) == 1
        assert "bananas" in chunks[0].content
        assert store.search("apples", 5) == []
        assert store.get_raw_content("a.txt") == "second version about bananas"

    def test_keywords_are_deduplicated_and_longer_than_three(self):
        store = DocumentStore()
        store.ingest("k.txt", "Retrieval, retrieval and RETRIEVAL of the data!")
        keywords = store.get_keywords("k.txt")
        assert keywords == ["retrieval", "data"]

    def test_list_and_remove(self):
        store = DocumentStore()
        store.ingest("a.txt", "alpha")
        store.ingest("b.txt", "beta")
        assert store.list_sources() == ["a.txt", "b.txt"]

        assert store.remove("a.txt") is True
        assert store.remove("a.txt") is False
        assert store.list_sources() == ["b.txt"]
        assert "a.txt" not in store
        assert store.get_keywords("a.txt") == []

    def test_clear(self):
        store = DocumentStore()
        store.ingest("a.txt", "alpha")
        store.clear()
        assert len(store) == 0
        assert store.get_raw_content("a.txt") is None


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------


class TestSearch:
    def test_fox_example(self):
        store = _small_store()
        store.ingest("notes.md", "The quick brown fox jumps")
        results = store.search("fox", 5)

        assert results
        assert all("fox" in r.content.lower() for r in results)
        assert len(results) < len(store.get_chunks("notes.md"))

    def test_never_more_than_k(self):
        store = DocumentStore()
        for i in range(10):
            store.ingest(f"doc{i}.txt", f"shared keyword number {i}")
        assert len(store.search("shared keyword", 3)) == 3

    def test_results_contain_a_query_token(self):
        store = DocumentStore()
        store.ingest("a.txt", "python packaging guide")
        store.ingest("b.txt", "gardening in spring")
        store.ingest("c.txt", "Python asyncio tutorial")
        results = store.search("python tutorial", 10)
        assert {r.metadata.source for r in results} == {"a.txt", "c.txt"}
        for r in results:
            assert any(t in r.content.lower() for t in ("python", "tutorial"))

    def test_orders_by_score_then_encounter(self):
        store = DocumentStore()
        store.ingest("one.txt", "alpha only")
        store.ingest("two.txt", "alpha and beta")
        store.ingest("three.txt", "alpha again")
        results = store.search("alpha beta", 5)
        assert [r.metadata.source for r in results] == ["two.txt", "one.txt", "three.txt"]

    def test_repeated_occurrences_count_once(self):
        chunk = _chunk("fox fox fox fox")
        assert KeywordIndex.score(["fox"], chunk) == 1
        assert KeywordIndex.score(["fox", "dog"], _chunk("fox and dog")) == 2

    def test_short_query_tokens_ignored(self):
        store = DocumentStore()
        store.ingest("a.txt", "an ox is here")
        assert store.search("ox", 5) == []

    def test_zero_k(self):
        store = DocumentStore()
        store.ingest("a.txt", "anything goes")
        assert store.search("anything", 0) == []


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------


def test_format_search_results_lists_sources():
    text = format_search_results("fox", [_chunk("quick fox", source="notes.md")])
    assert 'Document search results for "fox"' in text
    assert "**Source:** notes.md (Chunk 1/1)" in text


def test_format_search_results_empty():
    assert format_search_results("fox", []) == 'No relevant documents found for query: "fox"'


def test_format_search_results_truncates_preview():
    text = format_search_results("long", [_chunk("long " * 200)])
    assert "..." in text
