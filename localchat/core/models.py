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
Shared data models for LocalChat.
"""

from enum import Enum
from datetime import datetime
from typing import List, Optional, Literal

from pydantic import BaseModel, ConfigDict, Field

from .utils import generate_id


class TurnState(str, Enum):
    IDLE = "idle"
    AWAITING_CONTEXT = "awaiting-context"
    STREAMING = "streaming"
    COMPLETED = "completed"
    ERRORED = "errored"
    CANCELLED = "cancelled"


TERMINAL_STATES = (TurnState.COMPLETED, TurnState.ERRORED, TurnState.CANCELLED)


# =============================================================================
# CHAT
# =============================================================================

class AttachedFile(BaseModel):
    name: str
    media_type: str
    size: int
    icon: str


class Message(BaseModel):
    id: str = Field(default_factory=generate_id)
    role: Literal["user", "assistant"]
    content: str = ""
    timestamp: datetime = Field(default_factory=datetime.now)
    streaming: bool = False
    files: Optional[List[AttachedFile]] = None


class ChatSession(BaseModel):
    id: str = Field(default_factory=generate_id)
    title: str
    messages: List[Message] = []
    model: str = ""
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)
    titled: bool = False  # set once the title came from a message or an explicit rename

    def touch(self) -> None:
        self.updated_at = datetime.now()

    def find_message_index(self, message_id: str) -> int:
        for i, msg in enumerate(self.messages):
            if msg.id == message_id:
                return i
        return -1


# =============================================================================
# DOCUMENTS
# =============================================================================

class ChunkMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    source: str
    chunk_index: int
    total_chunks: int


class DocumentChunk(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    content: str
    metadata: ChunkMetadata


class PromptContext(BaseModel):
    prompt_id: str
    documents: List[str] = []
    timestamp: datetime = Field(default_factory=datetime.now)


class ImageRegistryEntry(BaseModel):
    file_name: str
    content: str
    timestamp: datetime = Field(default_factory=datetime.now)
    prompt_id: Optional[str] = None


class UploadedFile(BaseModel):
    """Raw upload handed over by the caller; decoding happens in file_ingestion."""
    name: str
    media_type: str = ""
    data: bytes = b""

    @property
    def size(self) -> int:
        return len(self.data)
