# LocalChat — Local Assistant Engine
# Copyright (C) 2026 Pankaj Varma
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.

"""
In-memory Document Store for LocalChat.

Maps a source name to its chunk list, a coarse keyword index and the raw
payload it was built from. Retrieval is a lexical scan over every chunk of
every source: fine at the scale of one local session's uploads.
"""

import threading
from typing import Dict, List, Optional

from ..core.config import RetrievalConfig
from ..core.models import ChunkMetadata, DocumentChunk
from ..core.utils import logger, tokenize_keywords, truncate_text
from .chunking import TextChunker


# =============================================================================
# KEYWORD INDEX
# =============================================================================

class KeywordIndex:
    """Per-source de-duplicated keyword sets."""

    def __init__(self, min_token_length: int = RetrievalConfig.INDEX_MIN_TOKEN_LEN):
        self.min_token_length = min_token_length
        self._keywords: Dict[str, List[str]] = {}

    def build(self, chunks: List[DocumentChunk]) -> List[str]:
        keywords = []
        for chunk in chunks:
            keywords.extend(tokenize_keywords(chunk.content, self.min_token_length))
        # dict.fromkeys keeps first-seen order while de-duplicating
        return list(dict.fromkeys(keywords))

    def set(self, source: str, keywords: List[str]) -> None:
        self._keywords[source] = keywords

    def get(self, source: str) -> List[str]:
        return self._keywords.get(source, [])

    def remove(self, source: str) -> None:
        self._keywords.pop(source, None)

    def clear(self) -> None:
        self._keywords.clear()

    @staticmethod
    def score(query_tokens: List[str], chunk: DocumentChunk) -> int:
        """One point per query token found in the chunk, however often it occurs."""
        text = chunk.content.lower()
        return sum(1 for token in query_tokens if token in text)


# =============================================================================
# DOCUMENT STORE
# =============================================================================

class DocumentStore:
    """
    Owns source → chunks, source → keywords and source → raw payload.
    Re-ingesting a source replaces all three at once.
    """

    def __init__(self, chunker: Optional[TextChunker] = None, index: Optional[KeywordIndex] = None):
        self.chunker = chunker or TextChunker()
        self.index = index or KeywordIndex()
        self._documents: Dict[str, List[DocumentChunk]] = {}
        self._raw: Dict[str, str] = {}
        # Ingestion runs in worker threads; readers on the event loop must
        # never observe a half-replaced source.
        self._lock = threading.RLock()

    def ingest(self, source: str, content: str) -> List[DocumentChunk]:
        """Chunk `content` and install it as the complete chunk list for `source`."""
        segments = self.chunker.chunk_payload(source, content)
        chunks = [
            DocumentChunk(
                id=f"{source}-chunk-{i}",
                content=segment,
                metadata=ChunkMetadata(source=source, chunk_index=i, total_chunks=len(segments))
            )
            for i, segment in enumerate(segments)
        ]
        keywords = self.index.build(chunks)

        with self._lock:
            replaced = source in self._documents
            self._documents[source] = chunks
            self._raw[source] = content
            self.index.set(source, keywords)

        logger.info(
            f"{'Re-ingested' if replaced else 'Ingested'} '{source}': "
            f"{len(chunks)} chunks, {len(keywords)} keywords"
        )
        return chunks

    def search(self, query: str, k: int = RetrievalConfig.DEFAULT_TOP_K) -> List[DocumentChunk]:
        """
        Rank every chunk by how many distinct query tokens it contains.
        Zero-score chunks are dropped; ties keep encounter order.
        """
        if k <= 0:
            return []
        query_tokens = tokenize_keywords(query, RetrievalConfig.QUERY_MIN_TOKEN_LEN)
        if not query_tokens:
            return []

        with self._lock:
            snapshot = [chunk for chunks in self._documents.values() for chunk in chunks]

        scored = []
        for chunk in snapshot:
            score = KeywordIndex.score(query_tokens, chunk)
            if score > 0:
                scored.append((score, chunk))

        # sorted() is stable, so equal scores stay in encounter order
        scored = sorted(scored, key=lambda item: item[0], reverse=True)
        return [chunk for _, chunk in scored[:k]]

    def list_sources(self) -> List[str]:
        with self._lock:
            return list(self._documents.keys())

    def remove(self, source: str) -> bool:
        with self._lock:
            removed = self._documents.pop(source, None) is not None
            if removed:
                self._raw.pop(source, None)
                self.index.remove(source)
        if removed:
            logger.info(f"Removed document: {source}")
        return removed

    def get_chunks(self, source: str) -> List[DocumentChunk]:
        with self._lock:
            return list(self._documents.get(source, []))

    def get_raw_content(self, source: str) -> Optional[str]:
        with self._lock:
            return self._raw.get(source)

    def get_keywords(self, source: str) -> List[str]:
        with self._lock:
            return list(self.index.get(source))

    def clear(self) -> None:
        with self._lock:
            self._documents.clear()
            self._raw.clear()
            self.index.clear()
        logger.info("Document store cleared")

    def __contains__(self, source: str) -> bool:
        with self._lock:
            return source in self._documents

    def __len__(self) -> int:
        with self._lock:
            return len(self._documents)


def format_search_results(query: str, chunks: List[DocumentChunk]) -> str:
    """Human-readable listing used by the document search endpoint."""
    if not chunks:
        return f'No relevant documents found for query: "{query}"'

    lines = []
    for i, chunk in enumerate(chunks, start=1):
        meta = chunk.metadata
        lines.append(
            f"{i}. **Source:** {meta.source} (Chunk {meta.chunk_index + 1}/{meta.total_chunks})\n"
            f"   **Content:** {truncate_text(chunk.content, RetrievalConfig.PREVIEW_CHARS)}\n"
        )
    return f'Document search results for "{query}":\n\n' + "\n".join(lines)
