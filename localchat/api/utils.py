"""
Utility functions for the LocalChat API.
Engine lookup, upload conversion and SSE streaming of chat turns.
"""

import json
import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional

from fastapi import HTTPException, Request, UploadFile
from starlette.responses import StreamingResponse

from ..core.engine import EngineContext
from ..core.models import ChatSession, Message, UploadedFile
from ..core.utils import logger

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


def get_engine(request: Request) -> EngineContext:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Engine not initialized")
    return engine


def get_session_or_404(engine: EngineContext, session_id: str) -> ChatSession:
    session = engine.sessions.get_chat(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Chat not found")
    return session


async def read_uploads(files: Optional[List[UploadFile]]) -> List[UploadedFile]:
    uploads = []
    for f in files or []:
        if not f.filename:
            continue
        uploads.append(UploadedFile(name=f.filename, media_type=f.content_type or "", data=await f.read()))
    return uploads


# =============================================================================
# STREAMING HELPERS
# =============================================================================

def sse(payload: Dict[str, Any]) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


def stream_turn(
    session: ChatSession,
    start: Callable[[Callable[[str], None]], Awaitable[Optional[Message]]]
) -> StreamingResponse:
    """
    Run a turn as a background task and relay its tokens as SSE events.
    `start` receives the token callback. Closing the response (client gone)
    cancels the task, which finalizes the turn as cancelled.
    """
    async def generate_stream():
        queue: asyncio.Queue = asyncio.Queue()
        yield sse({"stage": "initializing", "session_id": session.id})

        task = asyncio.create_task(start(queue.put_nowait))
        task.add_done_callback(lambda _: queue.put_nowait(None))
        try:
            while True:
                token = await queue.get()
                if token is None:
                    break
                yield sse({"stage": "streaming", "token": token})

            message = task.result()
            if message is None:
                yield sse({"stage": "error", "message": "Nothing to send: empty message, missing model or stale message id"})
                return
            yield sse({
                "stage": "result",
                "session_id": session.id,
                "title": session.title,
                "message": message.model_dump(mode="json")
            })
        except Exception as e:
            logger.error(f"Streaming Error: {e}")
            yield sse({"stage": "error", "message": str(e)})
        finally:
            if not task.done():
                task.cancel()

    return StreamingResponse(generate_stream(), media_type="text/event-stream", headers=SSE_HEADERS)
