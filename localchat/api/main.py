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
FastAPI Main Application for LocalChat
REST + SSE backend for chat sessions over a local Ollama runtime.
"""

import asyncio
import logging
from typing import Callable, List, Optional
from contextlib import asynccontextmanager

# --- Endpoint Muting Filter ---
class EndpointFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if not record.args or len(record.args) < 3:
            return True
        endpoint = str(record.args[2])
        # Mute health and status polling
        if endpoint.startswith("/health") or endpoint.startswith("/status"):
            return False
        return True

logging.getLogger("uvicorn.access").addFilter(EndpointFilter())
# ------------------------------

from fastapi import Depends, FastAPI, File, Form, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.requests import Request
from pydantic import BaseModel

from ..core.config import Config
from ..core.engine import EngineContext, create_engine
from ..core.models import ChatSession
from ..core.utils import logger
from .routes import router
from .utils import get_engine, get_session_or_404, read_uploads, stream_turn


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class ChatCreate(BaseModel):
    """Request to create a new chat"""
    model: Optional[str] = None
    title: Optional[str] = None


class ChatUpdate(BaseModel):
    title: str


class ChatSummary(BaseModel):
    """Chat without its messages"""
    id: str
    title: str
    model: str
    message_count: int
    created_at: str
    updated_at: str
    generating: bool = False


class AbortRequest(BaseModel):
    """Request to stop generation for a chat"""
    session_id: Optional[str] = None


class EditRequest(BaseModel):
    content: str
    model: Optional[str] = None


class RegenerateRequest(BaseModel):
    model: Optional[str] = None


class HealthResponse(BaseModel):
    status: str
    ollama: bool
    version: Optional[str] = None
    default_model: str


def summarize(engine: EngineContext, session: ChatSession) -> ChatSummary:
    return ChatSummary(
        id=session.id,
        title=session.title,
        model=session.model,
        message_count=len(session.messages),
        created_at=session.created_at.isoformat(),
        updated_at=session.updated_at.isoformat(),
        generating=engine.sessions.is_generating(session.id)
    )


# =============================================================================
# APPLICATION FACTORY
# =============================================================================

def create_app(engine_factory: Callable[[], EngineContext] = create_engine) -> FastAPI:
    """Build the app. Tests pass a factory that wires fake clients."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("🚀 Starting LocalChat API...")
        Config.log_summary()
        app.state.engine = engine_factory()

        # Not fatal: the runtime may be started after the API
        if await asyncio.to_thread(app.state.engine.client.is_available):
            logger.info("✅ Ollama runtime reachable.")
        else:
            logger.warning(f"⚠️ Ollama not reachable at {Config.ollama.BASE_URL}; generation will fail until it is running")

        yield

        logger.info("Shutting down LocalChat API...")
        app.state.engine.shutdown()
        app.state.engine = None

    app = FastAPI(
        title="LocalChat API",
        description="Chat sessions with document-grounded retrieval over a local Ollama runtime",
        version="1.0.0",
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=Config.api.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router)
    _register_endpoints(app)
    return app


def _register_endpoints(app: FastAPI) -> None:

    # =========================================================================
    # HEALTH / STATUS
    # =========================================================================

    @app.get("/health", response_model=HealthResponse)
    async def health_check(engine: EngineContext = Depends(get_engine)):
        available = await asyncio.to_thread(engine.client.is_available)
        version = await asyncio.to_thread(engine.client.get_version) if available else None
        return HealthResponse(
            status="ok" if available else "degraded",
            ollama=available,
            version=version,
            default_model=Config.ollama.DEFAULT_MODEL
        )

    @app.get("/status")
    async def get_status(engine: EngineContext = Depends(get_engine)):
        """Sessions, documents, prompt contexts and the running turn"""
        return engine.get_status()

    # =========================================================================
    # CHATS
    # =========================================================================

    @app.post("/chats", response_model=ChatSummary)
    async def create_chat(request: ChatCreate, engine: EngineContext = Depends(get_engine)):
        session = engine.sessions.create_new_chat(model=request.model, title=request.title)
        return summarize(engine, session)

    @app.get("/chats", response_model=List[ChatSummary])
    async def list_chats(engine: EngineContext = Depends(get_engine)):
        return [summarize(engine, s) for s in engine.sessions.list_chats()]

    @app.get("/chats/{session_id}")
    async def get_chat(session_id: str, engine: EngineContext = Depends(get_engine)):
        session = get_session_or_404(engine, session_id)
        return session.model_dump(mode="json")

    @app.patch("/chats/{session_id}", response_model=ChatSummary)
    async def rename_chat(session_id: str, request: ChatUpdate, engine: EngineContext = Depends(get_engine)):
        session = get_session_or_404(engine, session_id)
        if not engine.sessions.update_chat_title(session_id, request.title):
            raise HTTPException(status_code=400, detail="Title is empty")
        return summarize(engine, session)

    @app.delete("/chats/{session_id}")
    async def delete_chat(session_id: str, engine: EngineContext = Depends(get_engine)):
        if not engine.sessions.delete_chat(session_id):
            raise HTTPException(status_code=404, detail="Chat not found")
        return {"success": True, "session_id": session_id}

    @app.post("/chats/{session_id}/clear")
    async def clear_chat(session_id: str, engine: EngineContext = Depends(get_engine)):
        if not engine.sessions.clear_chat(session_id):
            raise HTTPException(status_code=404, detail="Chat not found")
        return {"success": True, "session_id": session_id}

    @app.post("/chats/{session_id}/activate")
    async def activate_chat(session_id: str, engine: EngineContext = Depends(get_engine)):
        if not engine.sessions.set_active_chat(session_id):
            raise HTTPException(status_code=404, detail="Chat not found")
        return {"success": True, "session_id": session_id}

    # =========================================================================
    # TURNS (SSE)
    # =========================================================================

    @app.post("/query/stream")
    async def send_message(
        content: str = Form(...),
        model: Optional[str] = Form(None),
        session_id: Optional[str] = Form(None),
        use_web_search: bool = Form(False),
        prompt_id: Optional[str] = Form(None),
        files: Optional[List[UploadFile]] = File(None),
        engine: EngineContext = Depends(get_engine)
    ):
        """
        Send a message (with optional attachments) and stream the answer as
        Server-Sent Events: initializing → streaming* → result | error.
        `prompt_id` comes from /api/documents/upload to answer over those files.
        """
        model_id = model or Config.ollama.DEFAULT_MODEL
        if session_id:
            session = get_session_or_404(engine, session_id)
        else:
            # Resolve now so the session id can be sent before the first token
            session = engine.sessions.get_chat() or engine.sessions.create_new_chat(model=model_id)
        uploads = await read_uploads(files)

        return stream_turn(session, lambda on_token: engine.sessions.send_message(
            content,
            model_id,
            files=uploads,
            session_id=session.id,
            use_web_search=use_web_search,
            on_token=on_token,
            prompt_id=prompt_id
        ))

    @app.post("/query/abort")
    async def abort_query(request: AbortRequest, engine: EngineContext = Depends(get_engine)):
        """Cancel the running turn; tokens still in flight are dropped."""
        stopped = engine.sessions.stop_generation(request.session_id)
        logger.info(f"ABORT requested for chat: {request.session_id or 'active'} (stopped={stopped})")
        return {"success": stopped, "session_id": request.session_id}

    @app.post("/chats/{session_id}/messages/{message_id}/edit")
    async def edit_message(
        session_id: str,
        message_id: str,
        request: EditRequest,
        engine: EngineContext = Depends(get_engine)
    ):
        session = get_session_or_404(engine, session_id)
        model_id = request.model or session.model or Config.ollama.DEFAULT_MODEL
        return stream_turn(session, lambda on_token: engine.sessions.edit_and_resend_message(
            message_id, request.content, model_id, session_id=session.id, on_token=on_token
        ))

    @app.post("/chats/{session_id}/regenerate")
    async def regenerate(session_id: str, request: RegenerateRequest, engine: EngineContext = Depends(get_engine)):
        session = get_session_or_404(engine, session_id)
        model_id = request.model or session.model or Config.ollama.DEFAULT_MODEL
        return stream_turn(session, lambda on_token: engine.sessions.regenerate_last_message(
            model_id, session_id=session.id, on_token=on_token
        ))

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception: {exc}")
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": str(exc), "detail": "An unexpected error occurred"}
        )


app = create_app()


def run():
    import uvicorn
    uvicorn.run("localchat.api.main:app", host=Config.api.HOST, port=Config.api.PORT)


if __name__ == "__main__":
    run()
