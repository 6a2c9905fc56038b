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
Prompt Context Manager for LocalChat.

Tracks which uploaded sources belong to which user turn ("prompt"), and keeps
a session-wide image registry that ignores prompt scoping so that
"describe all images" style queries can reach every image ever uploaded.
"""

from typing import Dict, List, Optional, Any

from ..core.config import ContextConfig, RetrievalConfig
from ..core.models import ImageRegistryEntry, PromptContext
from ..core.utils import logger, is_image_file, now_ms, random_suffix
from ..data.document_store import DocumentStore
from .intent_classifier import is_describe_all_images_query

NO_IMAGES_MESSAGE = "No images have been uploaded yet."
CONTEXT_SEPARATOR = "\n\n---\n\n"


class PromptContextManager:
    """
    Per-prompt document scoping plus the global image registry.
    """

    def __init__(self, store: DocumentStore, max_contexts: int = ContextConfig.MAX_PROMPT_CONTEXTS):
        self.store = store
        self.max_contexts = max_contexts
        self._contexts: Dict[str, PromptContext] = {}
        self._images: Dict[str, ImageRegistryEntry] = {}
        self.current_prompt_id: Optional[str] = None

    # -------------------------------------------------------------------------
    # Prompt lifecycle
    # -------------------------------------------------------------------------

    def start_new_prompt(self, prompt_id: Optional[str] = None) -> str:
        """Create a fresh context and make it current."""
        pid = prompt_id or self._generate_prompt_id()
        self._contexts[pid] = PromptContext(prompt_id=pid)
        self.current_prompt_id = pid
        self.cleanup_old_contexts()
        return pid

    def resume_prompt(self, prompt_id: str) -> bool:
        """Make an existing context current again, e.g. one filled by an upload."""
        if prompt_id not in self._contexts:
            return False
        self.current_prompt_id = prompt_id
        return True

    def add_document_to_current_prompt(self, file_name: str, content: str, is_image: bool = False) -> None:
        if not self.current_prompt_id or self.current_prompt_id not in self._contexts:
            self.start_new_prompt()
        self.add_document_to_prompt(self.current_prompt_id, file_name, content, is_image)

    def add_document_to_prompt(self, prompt_id: str, file_name: str, content: str, is_image: bool = False) -> None:
        """
        Attach to a specific prompt. Used by turns whose ingestion runs after
        another turn may already have moved the current prompt on.
        """
        context = self._contexts.get(prompt_id)
        if context is None:
            # Evicted or never started; the image registry is still updated
            logger.warning(f"Prompt {prompt_id} not found, {file_name} not scoped to it")
        elif file_name not in context.documents:
            context.documents.append(file_name)

        if is_image:
            self._images[file_name] = ImageRegistryEntry(
                file_name=file_name,
                content=content,
                prompt_id=prompt_id
            )
            logger.info(f"Image registered: {file_name} ({len(self._images)} in registry)")

    def get_documents_for_prompt(self, prompt_id: str) -> List[str]:
        context = self._contexts.get(prompt_id)
        return list(context.documents) if context else []

    def get_current_prompt_documents(self) -> List[str]:
        if not self.current_prompt_id:
            return []
        return self.get_documents_for_prompt(self.current_prompt_id)

    def get_all_images(self) -> List[ImageRegistryEntry]:
        return list(self._images.values())

    # -------------------------------------------------------------------------
    # Retrieval
    # -------------------------------------------------------------------------

    async def get_document_context(self, query: str, prompt_id: Optional[str] = None) -> str:
        """
        Text block of context for `query`, scoped to `prompt_id` (default: the
        current prompt). Describe-all-images queries use the global registry.
        """
        target_prompt_id = prompt_id if prompt_id is not None else self.current_prompt_id
        if not target_prompt_id:
            return ""

        if is_describe_all_images_query(query):
            images = self.get_all_images()
            if not images:
                return NO_IMAGES_MESSAGE
            descriptions = "\n".join(
                f"Image: {img.file_name} (uploaded {img.timestamp.strftime('%Y-%m-%d %H:%M:%S')})"
                for img in images
            )
            return f"All uploaded images:\n{descriptions}"

        documents = self.get_documents_for_prompt(target_prompt_id)
        if not documents:
            return ""

        relevant = []
        for file_name in documents:
            if is_image_file(file_name):
                # Partial image data is useless, so images go in whole.
                content = self._image_content(file_name)
                if content:
                    relevant.append(content)
            else:
                chunks = self.store.search(query, RetrievalConfig.PROMPT_TOP_K)
                relevant.extend(c.content for c in chunks if c.metadata.source == file_name)

        if not relevant:
            return ""

        logger.info(f"Prompt {target_prompt_id}: {len(relevant)} context blocks from {len(documents)} sources")
        return "Relevant context from uploaded documents:\n" + CONTEXT_SEPARATOR.join(relevant)

    def get_prompt_images(self, prompt_id: Optional[str] = None, query: Optional[str] = None) -> List[str]:
        """
        Base64 bodies of the images a model should see for this turn: every
        registered image for describe-all queries, otherwise the prompt's own.
        """
        if query is not None and is_describe_all_images_query(query):
            entries = [img.content for img in self.get_all_images()]
        else:
            target = prompt_id if prompt_id is not None else self.current_prompt_id
            entries = [
                self._image_content(name) for name in self.get_documents_for_prompt(target or "")
                if is_image_file(name)
            ]
        return [b64 for b64 in (extract_base64(c) for c in entries if c) if b64]

    def _image_content(self, file_name: str) -> Optional[str]:
        entry = self._images.get(file_name)
        if entry:
            return entry.content
        return self.store.get_raw_content(file_name)

    # -------------------------------------------------------------------------
    # Housekeeping
    # -------------------------------------------------------------------------

    def cleanup_old_contexts(self) -> int:
        """Evict the oldest prompt contexts beyond the retention limit. Images are untouched."""
        excess = len(self._contexts) - self.max_contexts
        if excess <= 0:
            return 0
        oldest = sorted(self._contexts.values(), key=lambda c: c.timestamp)[:excess]
        for context in oldest:
            del self._contexts[context.prompt_id]
        logger.debug(f"Evicted {excess} old prompt contexts")
        return excess

    def clear_all(self) -> None:
        self._contexts.clear()
        self._images.clear()
        self.current_prompt_id = None

    def get_stats(self) -> Dict[str, Any]:
        return {
            "total_prompts": len(self._contexts),
            "total_images": len(self._images),
            "current_prompt_id": self.current_prompt_id
        }

    def _generate_prompt_id(self) -> str:
        return f"prompt_{now_ms()}_{random_suffix()}"


def extract_base64(payload: str) -> Optional[str]:
    """Pull the raw base64 body out of an IMAGE_FILE payload's data URL line."""
    for line in payload.split("\n"):
        if line.startswith("Base64:"):
            value = line[len("Base64:"):].strip()
            if "," in value and value.startswith("data:"):
                value = value.split(",", 1)[1]
            return value or None
    return None
