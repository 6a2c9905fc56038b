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
File ingestion boundary for LocalChat.
Turns an upload (bytes + name + media type) into a tagged text payload, feeds
it to the Document Store and registers it with the current prompt.
"""

import io
import base64
from typing import Optional, Tuple, TYPE_CHECKING

import fitz
from PIL import Image

from .models import AttachedFile, UploadedFile
from .utils import logger, format_size_kb, get_file_category, FILE_ICONS

if TYPE_CHECKING:
    from ..data.document_store import DocumentStore
    from ..agents.context_manager import PromptContextManager


PDF_PLACEHOLDER = """This PDF document has been uploaded but no text layer could be extracted.
It may be a scanned document. The file is tracked and can be referred to by name."""


class FileIngestor:
    """Decodes uploads into payloads and indexes them for the current prompt."""

    def __init__(self, store: "DocumentStore", context_manager: "PromptContextManager"):
        self.store = store
        self.context_manager = context_manager

    def ingest(self, upload: UploadedFile, prompt_id: Optional[str] = None) -> AttachedFile:
        """
        Ingest one upload and attach it to `prompt_id` (default: the current
        prompt). A file that cannot be processed still gets a fallback chunk
        so it stays listed instead of silently disappearing.
        """
        payload, is_image = self.index(upload)
        self.attach(prompt_id, upload.name, payload, is_image)
        return self.describe(upload)

    def index(self, upload: UploadedFile) -> Tuple[str, bool]:
        """
        Decode and index an upload; returns (payload, is_image). Only touches
        the Document Store, so it is safe to run in a worker thread.
        """
        try:
            payload, is_image = self.build_payload(upload)
            self.store.ingest(upload.name, payload)
        except Exception as e:
            logger.warning(f"Failed to process uploaded file {upload.name}: {e}")
            payload, is_image = f"File: {upload.name} - upload failed but file is available", False
            self.store.ingest(upload.name, payload)
        return payload, is_image

    def attach(self, prompt_id: Optional[str], name: str, payload: str, is_image: bool) -> None:
        """Register an indexed file with a prompt. Call from the event loop thread."""
        if prompt_id is None:
            self.context_manager.add_document_to_current_prompt(name, payload, is_image)
        else:
            self.context_manager.add_document_to_prompt(prompt_id, name, payload, is_image)

    def describe(self, upload: UploadedFile, category: Optional[str] = None) -> AttachedFile:
        """Descriptor shown on the user message; needs no decoding."""
        category = category or get_file_category(upload.name, upload.media_type)
        return AttachedFile(
            name=upload.name,
            media_type=upload.media_type or "application/octet-stream",
            size=upload.size,
            icon=FILE_ICONS.get(category, FILE_ICONS["unknown"])
        )

    def build_payload(self, upload: UploadedFile, category: Optional[str] = None) -> Tuple[str, bool]:
        """Returns (payload, is_image)."""
        category = category or get_file_category(upload.name, upload.media_type)
        size = format_size_kb(upload.size)

        if category == "text":
            text = upload.data.decode("utf-8", errors="replace")
            return _document_payload(upload.name, upload.media_type or "text/plain", size, text), False

        if category == "pdf":
            return _document_payload(upload.name, upload.media_type, size, self._extract_pdf_text(upload)), False

        if category == "image":
            return self._image_payload(upload, size), True

        if category == "binary":
            kind = upload.media_type or "binary"
            return (
                f"BINARY_FILE: {upload.name} ({kind}) - Size: {size} - "
                "uploaded but not processed for text search"
            ), False

        try:
            return upload.data.decode("utf-8"), False
        except UnicodeDecodeError:
            return (
                f"File: {upload.name} ({upload.media_type or 'unknown'}) - "
                "uploaded but could not be processed as text"
            ), False

    def _extract_pdf_text(self, upload: UploadedFile) -> str:
        try:
            with fitz.open(stream=upload.data, filetype="pdf") as doc:
                parts = []
                for page_num, page in enumerate(doc):
                    page_text = page.get_text().strip()
                    if page_text:
                        parts.append(f"[Page {page_num + 1}]\n{page_text}")
        except Exception as e:
            logger.warning(f"PDF text extraction failed for {upload.name}: {e}")
            return PDF_PLACEHOLDER

        if not parts:
            return PDF_PLACEHOLDER
        text = "\n\n".join(parts)
        logger.info(f"Extracted {len(text)} chars of text from {upload.name}")
        return text

    def _image_payload(self, upload: UploadedFile, size: str) -> str:
        media_type = upload.media_type or "image/png"
        encoded = base64.b64encode(upload.data).decode("ascii")
        lines = [
            f"IMAGE_FILE: {upload.name}",
            f"Type: {media_type}",
            f"Size: {size}",
        ]
        dimensions = _image_dimensions(upload.data)
        if dimensions:
            lines.append(f"Dimensions: {dimensions[0]}x{dimensions[1]}")
        lines.append(f"Base64: data:{media_type};base64,{encoded}")
        lines.append("Description: User uploaded image file that can be analyzed by vision-capable models.")
        return "\n".join(lines)


def _document_payload(name: str, media_type: str, size: str, text: str) -> str:
    return f"DOCUMENT_FILE: {name}\nType: {media_type}\nSize: {size}\nContent:\n{text}"


def _image_dimensions(data: bytes) -> Optional[Tuple[int, int]]:
    try:
        with Image.open(io.BytesIO(data)) as img:
            return img.size
    except Exception as e:
        # SVG and truncated uploads land here; dimensions are optional metadata
        logger.debug(f"Could not read image dimensions: {e}")
        return None
