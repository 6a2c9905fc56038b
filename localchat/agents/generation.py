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
Generation Orchestrator for LocalChat.
Builds the augmented request for a turn, streams tokens from the model
runtime and converts failures into a user-facing apology.
"""

import asyncio
from typing import Callable, Dict, List, Optional

from ..core.config import SessionConfig
from ..core.generation_handle import GenerationHandle
from ..core.models import Message
from ..core.prompts import (
    CONVERSATION_PROMPT,
    GENERATION_ERROR_MESSAGE,
    GROUNDED_ANSWER_PROMPT,
    HISTORY_BLOCK,
    NO_SEARCH_RESULTS,
    WEB_SEARCH_PROMPT,
)
from ..core.utils import logger, Timer
from ..tools.web_search import format_web_results


class GenerationOrchestrator:
    """
    query + history + retrieved context → model request → streamed answer.

    `client` needs `astream_generate(prompt, model=..., images=...)` (an async
    iterator of text fragments); `search_client` needs
    `search_with_content(query)`.
    """

    def __init__(self, client, search_client=None, history_messages: int = SessionConfig.HISTORY_MESSAGES):
        self.client = client
        self.search_client = search_client
        self.history_messages = history_messages

    # -------------------------------------------------------------------------
    # Prompt assembly
    # -------------------------------------------------------------------------

    def format_history(self, history: List[Message]) -> str:
        finished = [m for m in history if not m.streaming and m.content.strip()]
        recent = finished[-self.history_messages:] if self.history_messages > 0 else []
        return "\n".join(f"{m.role}: {m.content}" for m in recent)

    def _history_block(self, history: List[Message]) -> str:
        text = self.format_history(history)
        return HISTORY_BLOCK.format(history=text) if text else ""

    def build_prompt(self, query: str, history: List[Message], context: str = "") -> str:
        """
        Retrieved context goes ahead of the query with grounding instructions.
        With neither context nor history the raw query is sent as-is.
        """
        history_block = self._history_block(history)
        if context:
            return GROUNDED_ANSWER_PROMPT.format(context=context, history_block=history_block, query=query)
        if history_block:
            return CONVERSATION_PROMPT.format(history_block=history_block, query=query)
        return query

    async def build_web_search_prompt(self, query: str, history: List[Message]) -> str:
        results = []
        if self.search_client is None:
            logger.warning("Web search requested but no search client is configured")
        else:
            try:
                results = await asyncio.to_thread(self.search_client.search_with_content, query)
            except Exception as e:
                logger.warning(f"Web search failed, answering without results: {e}")

        formatted = format_web_results(results) if results else NO_SEARCH_RESULTS
        return WEB_SEARCH_PROMPT.format(
            results=formatted,
            history_block=self._history_block(history),
            query=query
        )

    # -------------------------------------------------------------------------
    # Generation
    # -------------------------------------------------------------------------

    async def generate(
        self,
        query: str,
        history: List[Message],
        model_id: str,
        on_token: Optional[Callable[[str], None]] = None,
        cancel_token: Optional[GenerationHandle] = None,
        context: str = "",
        images: Optional[List[str]] = None,
        use_web_search: bool = False
    ) -> Dict[str, str]:
        """
        Returns {'response': str, 'done_reason': 'stop' | 'abort' | 'error'}.

        Tokens are forwarded to `on_token` in arrival order. The cancel token
        is checked before every forward; once it is set the stream is closed
        and nothing further is forwarded. Never raises for runtime failures.
        """
        def aborted() -> bool:
            return cancel_token is not None and cancel_token.cancelled

        accumulated = []
        done_reason = "stop"
        try:
            with Timer(f"Generation ({model_id})"):
                if use_web_search:
                    # Web mode replaces document retrieval for this turn
                    prompt = await self.build_web_search_prompt(query, history)
                else:
                    prompt = self.build_prompt(query, history, context)

                if aborted():
                    return {"response": "", "done_reason": "abort"}

                stream = self.client.astream_generate(prompt, model=model_id, images=images or None)
                consumer = asyncio.ensure_future(self._consume(stream, accumulated, on_token, aborted))
                if cancel_token is not None:
                    # Cancelling the consumer interrupts a read that is still
                    # waiting on the runtime, e.g. while it loads the model
                    cancel_token.on_abort(consumer.cancel)
                try:
                    done_reason = await consumer
                except asyncio.CancelledError:
                    if not aborted():
                        raise
                    done_reason = "abort"

        except Exception as e:
            logger.error(f"Generation failed for model '{model_id}': {e}")
            return {"response": GENERATION_ERROR_MESSAGE, "done_reason": "error"}

        if aborted():
            done_reason = "abort"
        return {"response": "".join(accumulated), "done_reason": done_reason}

    async def _consume(
        self,
        stream,
        accumulated: List[str],
        on_token: Optional[Callable[[str], None]],
        aborted: Callable[[], bool]
    ) -> str:
        try:
            async for token in stream:
                if aborted():
                    return "abort"
                accumulated.append(token)
                if on_token:
                    on_token(token)
        finally:
            # Closing the stream asks the runtime client to drop the HTTP call
            await stream.aclose()
        return "stop"
