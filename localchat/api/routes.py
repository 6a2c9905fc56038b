"""
API Routes for LocalChat
Model management, document store and prompt helpers.
"""

import asyncio
from typing import List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from pydantic import BaseModel

from ..core.engine import EngineContext
from ..core.models import AttachedFile
from ..core.prompts import enhance_prompt
from ..core.utils import logger
from ..data.document_store import format_search_results
from .utils import get_engine, read_uploads


# =============================================================================
# ROUTER
# =============================================================================

router = APIRouter(prefix="/api", tags=["LocalChat API"])


# =============================================================================
# MODELS
# =============================================================================

class PullRequest(BaseModel):
    """Request to download a model into the local runtime"""
    name: str


class CreateRequest(BaseModel):
    """Build a model from Modelfile text"""
    name: str
    modelfile: str


class CopyRequest(BaseModel):
    source: str
    destination: str


class EnhanceRequest(BaseModel):
    prompt: str


class UploadResponse(BaseModel):
    files: List[AttachedFile]
    prompt_id: Optional[str] = None


# =============================================================================
# MODEL MANAGEMENT
# =============================================================================

@router.get("/models")
async def list_models(engine: EngineContext = Depends(get_engine)):
    try:
        models = await asyncio.to_thread(engine.client.list_models)
    except RuntimeError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"models": models, "total": len(models)}


@router.get("/models/{name:path}")
async def show_model(name: str, engine: EngineContext = Depends(get_engine)):
    try:
        return await asyncio.to_thread(engine.client.show_model_info, name)
    except RuntimeError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/models/pull")
async def pull_model(request: PullRequest, engine: EngineContext = Depends(get_engine)):
    """Blocks until the download finishes; progress is logged server-side."""
    def log_progress(update: dict):
        total, completed = update.get("total"), update.get("completed")
        if total and completed:
            logger.debug(f"Pull {request.name}: {update.get('status', '')} {completed * 100 // total}%")

    try:
        ok = await asyncio.to_thread(engine.client.pull_model, request.name, log_progress)
    except RuntimeError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"success": ok, "name": request.name}


@router.post("/models/create")
async def create_model(request: CreateRequest, engine: EngineContext = Depends(get_engine)):
    try:
        ok = await asyncio.to_thread(engine.client.create_model, request.name, request.modelfile)
    except RuntimeError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"success": ok, "name": request.name}


@router.post("/models/copy")
async def copy_model(request: CopyRequest, engine: EngineContext = Depends(get_engine)):
    try:
        ok = await asyncio.to_thread(engine.client.copy_model, request.source, request.destination)
    except RuntimeError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"success": ok, "source": request.source, "destination": request.destination}


@router.delete("/models/{name:path}")
async def delete_model(name: str, engine: EngineContext = Depends(get_engine)):
    try:
        ok = await asyncio.to_thread(engine.client.delete_model, name)
    except RuntimeError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"success": ok, "name": name}


# =============================================================================
# DOCUMENTS
# =============================================================================

@router.post("/documents/upload", response_model=UploadResponse)
async def upload_documents(files: List[UploadFile] = File(...), engine: EngineContext = Depends(get_engine)):
    """
    Index files outside of a chat turn into a fresh prompt context. Passing
    the returned prompt_id to /query/stream grounds that turn on them; they
    also stay searchable through /api/documents/search.
    """
    uploads = await read_uploads(files)
    if not uploads:
        raise HTTPException(status_code=400, detail="No files provided")
    prompt_id = engine.context_manager.start_new_prompt()
    attached = []
    for upload in uploads:
        payload, is_image = await asyncio.to_thread(engine.ingestor.index, upload)
        # Prompt contexts are only mutated on the event loop thread
        engine.ingestor.attach(prompt_id, upload.name, payload, is_image)
        attached.append(engine.ingestor.describe(upload))
    return UploadResponse(files=attached, prompt_id=prompt_id)


@router.get("/documents")
async def list_documents(engine: EngineContext = Depends(get_engine)):
    sources = engine.store.list_sources()
    return {
        "documents": [{"name": s, "chunks": len(engine.store.get_chunks(s))} for s in sources],
        "total": len(sources)
    }


@router.get("/documents/search")
async def search_documents(
    q: str = Query(..., min_length=1),
    k: int = Query(5, ge=1, le=50),
    engine: EngineContext = Depends(get_engine)
):
    chunks = engine.store.search(q, k)
    return {
        "query": q,
        "results": [c.model_dump() for c in chunks],
        "formatted": format_search_results(q, chunks)
    }


@router.delete("/documents/{name:path}")
async def remove_document(name: str, engine: EngineContext = Depends(get_engine)):
    if not engine.store.remove(name):
        raise HTTPException(status_code=404, detail=f"Document '{name}' not found")
    return {"success": True, "name": name}


# =============================================================================
# PROMPT HELPERS
# =============================================================================

@router.post("/prompt/enhance")
async def enhance(request: EnhanceRequest):
    if not request.prompt.strip():
        raise HTTPException(status_code=400, detail="Prompt is empty")
    return {"prompt": enhance_prompt(request.prompt)}
