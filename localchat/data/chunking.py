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
Document Chunking Module for LocalChat
Character-window chunking with overlap, plus type-aware handling for the
tagged payloads produced by file ingestion (documents, images, binaries).
"""

import math
import unicodedata
from typing import List, Optional, Tuple

from ..core.config import ChunkingConfig
from ..core.utils import logger

# Payload tags written by core.file_ingestion
IMAGE_TAG = "IMAGE_FILE:"
BINARY_TAG = "BINARY_FILE:"
DOCUMENT_TAG = "DOCUMENT_FILE:"
CONTENT_MARKER = "Content:"
BASE64_MARKER = "Base64:"

_ALLOWED_CONTROL = {"\t", "\n", "\r"}
# Control, surrogate, private-use and unassigned code points
_BINARY_CATEGORIES = {"Cc", "Cs", "Co", "Cn"}


# =============================================================================
# CLASSIFICATION
# =============================================================================

def is_binary_content(content: str, threshold: float = ChunkingConfig.BINARY_RATIO) -> bool:
    """
    Heuristic binary sniff: any null byte, or more than `threshold` of the
    characters control or unassigned code points (tab/newline/carriage-return
    excluded). Unicode spaces and format characters such as NBSP or ZWJ count
    as text.
    """
    if not content:
        return False
    if "\x00" in content:
        return True
    suspicious = sum(
        1 for ch in content
        if ch not in _ALLOWED_CONTROL and unicodedata.category(ch) in _BINARY_CATEGORIES
    )
    return suspicious / len(content) > threshold


def classify_payload(content: str) -> str:
    """One of 'image', 'binary', 'document', 'text'."""
    head = content.lstrip()
    if head.startswith(IMAGE_TAG):
        return "image"
    if head.startswith(BINARY_TAG):
        return "binary"
    if head.startswith(DOCUMENT_TAG) and _split_document(content) is not None:
        return "document"
    return "text"


def _split_document(content: str) -> Optional[Tuple[str, str]]:
    """Split a document payload into (header, body) at the first `Content:` line."""
    lines = content.split("\n")
    for i, line in enumerate(lines):
        if line.startswith(CONTENT_MARKER):
            header = "\n".join(lines[:i] + [CONTENT_MARKER])
            first_body = line[len(CONTENT_MARKER):].strip()
            rest = "\n".join(lines[i + 1:])
            body = f"{first_body}\n{rest}" if first_body else rest
            return header, body
    return None


# =============================================================================
# CHUNKER
# =============================================================================

class TextChunker:
    """
    Sliding-window chunker with clamped parameters and a hard iteration bound.
    """

    def __init__(
        self,
        min_size: int = ChunkingConfig.MIN_CHUNK_SIZE,
        max_size: int = ChunkingConfig.MAX_CHUNK_SIZE,
        max_content_chars: int = ChunkingConfig.MAX_CONTENT_CHARS,
        default_size: int = ChunkingConfig.DEFAULT_CHUNK_SIZE,
        default_overlap: int = ChunkingConfig.DEFAULT_OVERLAP
    ):
        if min_size < 1 or max_size < min_size:
            raise ValueError(f"Invalid chunk size bounds: {min_size}..{max_size}")
        self.min_size = min_size
        self.max_size = max_size
        self.max_content_chars = max_content_chars
        self.default_size = default_size
        self.default_overlap = default_overlap

    def clamp(self, target_size: int, overlap: int) -> Tuple[int, int]:
        size = max(self.min_size, min(self.max_size, int(target_size)))
        overlap = max(0, min(int(overlap), size // 2))
        return size, overlap

    def truncate(self, content: str, source: str = "content") -> str:
        """Enforce the content ceiling. Lossy, so it is logged and marked in the text."""
        if len(content) <= self.max_content_chars:
            return content
        logger.warning(
            f"'{source}' is {len(content)} chars; truncated to the first {self.max_content_chars} before chunking."
        )
        return (
            content[:self.max_content_chars]
            + f"\n[Content truncated: showing first {self.max_content_chars} of {len(content)} characters]"
        )

    def chunk_text(
        self,
        content: str,
        target_size: Optional[int] = None,
        overlap: Optional[int] = None,
        source: str = "content"
    ) -> List[str]:
        """
        Slide a window of `target_size` over `content` with step
        `target_size - overlap`, keeping segments that are non-empty once
        trimmed.
        """
        if not content:
            return []
        size, overlap = self.clamp(
            self.default_size if target_size is None else target_size,
            self.default_overlap if overlap is None else overlap
        )
        content = self.truncate(content, source)

        step = size - overlap
        # Terminates even if the window arithmetic is ever wrong.
        max_steps = math.ceil(len(content) / step) + 1

        chunks = []
        start = 0
        steps = 0
        while start < len(content) and steps < max_steps:
            segment = content[start:start + size].strip()
            if segment:
                chunks.append(segment)
            if start + size >= len(content):
                break
            start += step
            steps += 1

        if steps >= max_steps:
            logger.warning(f"Chunking stopped at the step bound ({max_steps}) for {len(content)} chars")
        return chunks

    # -------------------------------------------------------------------------
    # Type-aware policy
    # -------------------------------------------------------------------------

    def chunk_payload(self, source: str, content: str) -> List[str]:
        """
        Chunk an ingested payload according to its type tag.
        """
        if not content or not content.strip():
            logger.warning(f"Empty document: {source}")
            return []

        kind = classify_payload(content)

        if kind == "image":
            return [self._image_metadata(content)]

        if kind == "binary":
            return [content.strip()]

        if is_binary_content(content):
            logger.info(f"'{source}' looks binary; storing a reference segment only")
            return [f"{BINARY_TAG} {source} - binary content, not processed for text search"]

        if kind == "document":
            return self._chunk_document(source, content)

        return self.chunk_text(content, source=source)

    def _image_metadata(self, content: str) -> str:
        # The embedded base64 body is never chunked; only the descriptive lines are indexed.
        lines = [
            line for line in content.strip().split("\n")
            if line.strip() and not line.startswith(BASE64_MARKER)
        ]
        return "\n".join(lines)

    def _chunk_document(self, source: str, content: str) -> List[str]:
        header, body = _split_document(content)
        if not body.strip():
            return [header]

        body_size = max(
            ChunkingConfig.DOC_BODY_MIN_SIZE,
            min(ChunkingConfig.DOC_BODY_MAX_SIZE, len(body) // 10)
        )
        body_chunks = self.chunk_text(body, body_size, body_size // 5, source=source)
        if not body_chunks:
            return [header]

        # Header travels with the first chunk only
        return [f"{header}\n{body_chunks[0]}"] + body_chunks[1:]
