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
Engine wiring for LocalChat.
One EngineContext owns every piece of process-lifetime state; components get
their collaborators through their constructors.
"""

from typing import Any, Dict, Optional

from .file_ingestion import FileIngestor
from .ollama_client import OllamaClient
from .telemetry import TelemetryManager
from .utils import logger
from ..agents.context_manager import PromptContextManager
from ..agents.generation import GenerationOrchestrator
from ..agents.session_controller import SessionController
from ..data.chunking import TextChunker
from ..data.document_store import DocumentStore


class EngineContext:
    """Application state container"""

    def __init__(
        self,
        client,
        store: DocumentStore,
        context_manager: PromptContextManager,
        ingestor: FileIngestor,
        orchestrator: GenerationOrchestrator,
        sessions: SessionController,
        telemetry: TelemetryManager
    ):
        self.client = client
        self.store = store
        self.context_manager = context_manager
        self.ingestor = ingestor
        self.orchestrator = orchestrator
        self.sessions = sessions
        self.telemetry = telemetry

    def reset(self) -> None:
        """Stop every turn and drop all sessions, documents and prompt contexts."""
        for session_id in list(self.sessions.sessions):
            self.sessions.delete_chat(session_id)
        self.store.clear()
        self.context_manager.clear_all()
        self.telemetry.clear_all()
        logger.info("Engine state reset")

    def shutdown(self) -> None:
        self.reset()
        http = getattr(self.client, "http", None)
        if http is not None:
            http.close()
        logger.info("Engine shut down")

    def get_status(self) -> Dict[str, Any]:
        return {
            "sessions": len(self.sessions.sessions),
            "active_session": self.sessions.active_session_id,
            "documents": self.store.list_sources(),
            "chunks": sum(len(self.store.get_chunks(s)) for s in self.store.list_sources()),
            "prompts": self.context_manager.get_stats(),
            "turn": self.telemetry.get_active_status()
        }


def create_engine(
    client=None,
    search_client=None,
    chunker: Optional[TextChunker] = None
) -> EngineContext:
    """
    Build a fully wired engine. Tests pass fakes for `client` and
    `search_client`; the defaults talk to the local Ollama runtime and
    DuckDuckGo.
    """
    if client is None:
        client = OllamaClient()
    if search_client is None:
        from ..tools.web_search import WebSearchClient
        search_client = WebSearchClient()

    store = DocumentStore(chunker=chunker)
    context_manager = PromptContextManager(store)
    ingestor = FileIngestor(store, context_manager)
    orchestrator = GenerationOrchestrator(client, search_client=search_client)
    telemetry = TelemetryManager()
    sessions = SessionController(context_manager, ingestor, orchestrator, telemetry)

    return EngineContext(
        client=client,
        store=store,
        context_manager=context_manager,
        ingestor=ingestor,
        orchestrator=orchestrator,
        sessions=sessions,
        telemetry=telemetry
    )
