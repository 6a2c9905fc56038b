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
Session Controller for LocalChat.

Owns the chat sessions and drives every turn through
idle → awaiting-context → streaming → {completed | errored | cancelled}.
"""

import asyncio
from typing import Callable, Dict, List, Optional

from ..core.config import SessionConfig
from ..core.file_ingestion import FileIngestor
from ..core.generation_handle import GenerationHandle
from ..core.models import ChatSession, Message, TurnState, UploadedFile
from ..core.prompts import GENERATION_ERROR_MESSAGE
from ..core.telemetry import TelemetryManager
from ..core.utils import logger
from .context_manager import PromptContextManager
from .generation import GenerationOrchestrator


def generate_title(content: str, max_words: int = SessionConfig.TITLE_WORDS) -> str:
    words = content.split()
    title = " ".join(words[:max_words])
    return title + "..." if len(words) > max_words else title


class SessionController:
    """
    At most one GenerationHandle is live per session. Starting a turn cancels
    the previous handle before the first await, so a superseded turn can never
    write into the new turn's placeholder.
    """

    def __init__(
        self,
        context_manager: PromptContextManager,
        ingestor: FileIngestor,
        orchestrator: GenerationOrchestrator,
        telemetry: Optional[TelemetryManager] = None
    ):
        self.context_manager = context_manager
        self.ingestor = ingestor
        self.orchestrator = orchestrator
        self.telemetry = telemetry or TelemetryManager()
        self.sessions: Dict[str, ChatSession] = {}
        self.active_session_id: Optional[str] = None
        self._handles: Dict[str, GenerationHandle] = {}

    # =========================================================================
    # CHAT MANAGEMENT
    # =========================================================================

    def create_new_chat(self, model: Optional[str] = None, title: Optional[str] = None) -> ChatSession:
        session = ChatSession(
            title=title or SessionConfig.DEFAULT_TITLE,
            model=model or "",
            titled=bool(title)
        )
        self.sessions[session.id] = session
        self.active_session_id = session.id
        logger.info(f"New chat: {session.id}")
        return session

    def get_chat(self, session_id: Optional[str] = None) -> Optional[ChatSession]:
        sid = session_id or self.active_session_id
        return self.sessions.get(sid) if sid else None

    def list_chats(self) -> List[ChatSession]:
        """Most recently updated first."""
        return sorted(self.sessions.values(), key=lambda s: s.updated_at, reverse=True)

    def set_active_chat(self, session_id: str) -> bool:
        if session_id not in self.sessions:
            return False
        self.active_session_id = session_id
        return True

    def delete_chat(self, session_id: str) -> bool:
        if session_id not in self.sessions:
            return False
        self.stop_generation(session_id)
        del self.sessions[session_id]
        if self.active_session_id == session_id:
            self.active_session_id = None
        logger.info(f"Deleted chat: {session_id}")
        return True

    def clear_chat(self, session_id: str) -> bool:
        session = self.sessions.get(session_id)
        if session is None:
            return False
        self.stop_generation(session_id)
        session.messages = []
        session.touch()
        return True

    def update_chat_title(self, session_id: str, title: str) -> bool:
        session = self.sessions.get(session_id)
        if session is None or not title.strip():
            return False
        session.title = title.strip()
        session.titled = True
        session.touch()
        return True

    def is_generating(self, session_id: Optional[str] = None) -> bool:
        sid = session_id or self.active_session_id
        return sid in self._handles

    def get_handle(self, session_id: Optional[str] = None) -> Optional[GenerationHandle]:
        return self._handles.get(session_id or self.active_session_id)

    # =========================================================================
    # TURNS
    # =========================================================================

    async def send_message(
        self,
        content: str,
        model_id: str,
        files: Optional[List[UploadedFile]] = None,
        session_id: Optional[str] = None,
        use_web_search: bool = False,
        on_token: Optional[Callable[[str], None]] = None,
        prompt_id: Optional[str] = None
    ) -> Optional[Message]:
        """
        Run one turn and return the finalized assistant message, or None when
        the request is invalid (blank content, no model, unknown session).
        `prompt_id` reuses a context filled by a document upload; unknown ids
        fall back to a fresh context.
        """
        if not content or not content.strip() or not model_id:
            return None

        if session_id is not None:
            session = self.sessions.get(session_id)
            if session is None:
                return None
        else:
            session = self.get_chat() or self.create_new_chat(model=model_id)

        return await self._run_turn(
            session, content.strip(), model_id, files or [], use_web_search, on_token, prompt_id
        )

    def stop_generation(self, session_id: Optional[str] = None) -> bool:
        """Cancel the live turn of a session. Tokens arriving afterwards are dropped."""
        sid = session_id or self.active_session_id
        handle = self._handles.pop(sid, None) if sid else None
        if handle is None:
            return False

        handle.cancel()
        session = self.sessions.get(sid)
        if session is not None and handle.message_id:
            idx = session.find_message_index(handle.message_id)
            if idx >= 0:
                session.messages[idx].streaming = False
        self.telemetry.end_turn(handle.turn_id, TurnState.CANCELLED)
        return True

    async def edit_and_resend_message(
        self,
        message_id: str,
        new_content: str,
        model_id: str,
        session_id: Optional[str] = None,
        on_token: Optional[Callable[[str], None]] = None
    ) -> Optional[Message]:
        """Drop the edited user message and everything after it, then send the new text."""
        session = self.get_chat(session_id)
        if session is None or not new_content or not new_content.strip():
            return None
        idx = session.find_message_index(message_id)
        if idx < 0 or session.messages[idx].role != "user":
            return None

        self.stop_generation(session.id)
        session.messages = session.messages[:idx]
        session.touch()
        return await self.send_message(new_content, model_id, session_id=session.id, on_token=on_token)

    async def regenerate_last_message(
        self,
        model_id: str,
        session_id: Optional[str] = None,
        on_token: Optional[Callable[[str], None]] = None
    ) -> Optional[Message]:
        """Replace the last answer by resending the user message before it."""
        session = self.get_chat(session_id)
        if session is None or len(session.messages) < 2:
            return None
        last_user = session.messages[-2]
        if last_user.role != "user":
            return None

        self.stop_generation(session.id)
        # The user message is re-appended by send_message
        session.messages = session.messages[:-2]
        session.touch()
        return await self.send_message(last_user.content, model_id, session_id=session.id, on_token=on_token)

    # -------------------------------------------------------------------------
    # Turn execution
    # -------------------------------------------------------------------------

    async def _run_turn(
        self,
        session: ChatSession,
        content: str,
        model_id: str,
        files: List[UploadedFile],
        use_web_search: bool,
        on_token: Optional[Callable[[str], None]],
        prompt_id: Optional[str] = None
    ) -> Message:
        # Everything up to the first await runs without yielding, so the
        # previous turn is cancelled before any of its tokens can land here.
        self.stop_generation(session.id)

        history = list(session.messages)
        if not (prompt_id and self.context_manager.resume_prompt(prompt_id)):
            prompt_id = self.context_manager.start_new_prompt()

        user_message = Message(
            role="user",
            content=content,
            files=[self.ingestor.describe(f) for f in files] or None
        )
        placeholder = Message(role="assistant", content="", streaming=True)
        session.messages.extend([user_message, placeholder])
        session.model = model_id
        if not session.titled:
            session.title = generate_title(content)
            session.titled = True
        session.touch()

        handle = GenerationHandle(session.id, message_id=placeholder.id, prompt_id=prompt_id)
        self._handles[session.id] = handle
        self.telemetry.start_turn(handle.turn_id, session.id, model_id)

        def apply_token(token: str) -> None:
            if handle.cancelled:
                return
            placeholder.content += token
            if on_token:
                on_token(token)

        try:
            self._advance(handle, TurnState.AWAITING_CONTEXT)
            for upload in files:
                payload, is_image = await asyncio.to_thread(self.ingestor.index, upload)
                # Prompt contexts are only mutated on the event loop thread
                self.ingestor.attach(prompt_id, upload.name, payload, is_image)

            context, images = "", []
            if not use_web_search:
                context = await self.context_manager.get_document_context(content, prompt_id)
            images = self.context_manager.get_prompt_images(prompt_id, query=content)

            if handle.cancelled:
                return placeholder

            self._advance(handle, TurnState.STREAMING)
            result = await self.orchestrator.generate(
                content,
                history,
                model_id,
                on_token=apply_token,
                cancel_token=handle,
                context=context,
                images=images,
                use_web_search=use_web_search
            )

            if handle.cancelled or result["done_reason"] == "abort":
                handle.cancel()
            elif result["done_reason"] == "error":
                placeholder.content = result["response"]
                handle.transition(TurnState.ERRORED)
            else:
                placeholder.content = result["response"] or placeholder.content
                handle.transition(TurnState.COMPLETED)

        except Exception as e:
            logger.error(f"Turn {handle.turn_id} failed: {e}")
            if not handle.cancelled:
                placeholder.content = GENERATION_ERROR_MESSAGE
                handle.transition(TurnState.ERRORED)

        finally:
            # Also reached when the task itself is cancelled (client disconnect)
            if not handle.finished:
                handle.cancel()
            placeholder.streaming = False
            if self._handles.get(session.id) is handle:
                del self._handles[session.id]
            session.touch()
            self.telemetry.end_turn(handle.turn_id, handle.state, {"chars": len(placeholder.content)})

        return placeholder

    def _advance(self, handle: GenerationHandle, state: TurnState) -> None:
        if handle.transition(state):
            self.telemetry.transition(handle.turn_id, state)
