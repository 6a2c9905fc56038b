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
Core Configuration Module for LocalChat
Centralized configuration management with environment variable support.

Every tunable is read from the environment (or a `.env` file at the project
root), so retrieval and chunking behaviour can be adjusted without code changes.

Quick reference for a larger model / context window:
  OLLAMA_MODEL=llama3.1:8b
  CHUNK_DEFAULT_SIZE=1500
  CHUNK_DEFAULT_OVERLAP=300
  RETRIEVAL_PROMPT_TOP_K=5
"""

import os
from pathlib import Path

from dotenv import load_dotenv

ENV_PATH = Path(__file__).parent.parent.parent / ".env"
load_dotenv(ENV_PATH)

from .utils import logger

# =============================================================================
# LLM CONFIGURATION (OLLAMA - LOCAL)
# =============================================================================

class OllamaConfig:
    """
    Configuration for the local Ollama runtime.
    """
    BASE_URL: str = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
    DEFAULT_MODEL: str = os.getenv("OLLAMA_MODEL", "llama3.2")

    # Generation behavior
    TEMPERATURE: float = float(os.getenv("LLM_TEMPERATURE", "0.3"))
    TIMEOUT: int = int(os.getenv("LLM_TIMEOUT", "600"))
    HEALTH_TIMEOUT: int = int(os.getenv("LLM_HEALTH_TIMEOUT", "5"))


# =============================================================================
# CHUNKING CONFIGURATION
# =============================================================================

class ChunkingConfig:
    """
    Character-based chunking configuration.

    ENV keys:
      CHUNK_DEFAULT_SIZE     — window size for plain text (default: 1000)
      CHUNK_DEFAULT_OVERLAP  — overlap for plain text (default: 200)
      CHUNK_MIN_SIZE         — lower clamp for any requested size (default: 100)
      CHUNK_MAX_SIZE         — upper clamp for any requested size (default: 5000)
      CHUNK_MAX_CONTENT      — content ceiling in characters, 1 MiB (default: 1048576)
      CHUNK_DOC_BODY_MIN     — lower clamp for document body chunks (default: 500)
      CHUNK_DOC_BODY_MAX     — upper clamp for document body chunks (default: 1000)
      CHUNK_BINARY_RATIO     — non-printable ratio that marks content binary (default: 0.10)
    """
    DEFAULT_CHUNK_SIZE: int = int(os.getenv("CHUNK_DEFAULT_SIZE", "1000"))
    DEFAULT_OVERLAP: int = int(os.getenv("CHUNK_DEFAULT_OVERLAP", "200"))
    MIN_CHUNK_SIZE: int = int(os.getenv("CHUNK_MIN_SIZE", "100"))
    MAX_CHUNK_SIZE: int = int(os.getenv("CHUNK_MAX_SIZE", "5000"))
    MAX_CONTENT_CHARS: int = int(os.getenv("CHUNK_MAX_CONTENT", str(1024 * 1024)))
    DOC_BODY_MIN_SIZE: int = int(os.getenv("CHUNK_DOC_BODY_MIN", "500"))
    DOC_BODY_MAX_SIZE: int = int(os.getenv("CHUNK_DOC_BODY_MAX", "1000"))
    BINARY_RATIO: float = float(os.getenv("CHUNK_BINARY_RATIO", "0.10"))


# =============================================================================
# RETRIEVAL CONFIGURATION
# =============================================================================

class RetrievalConfig:
    """
    Lexical retrieval configuration.

    ENV keys:
      RETRIEVAL_DEFAULT_TOP_K  — results for a plain document search (default: 5)
      RETRIEVAL_PROMPT_TOP_K   — chunks searched per prompt source (default: 3)
      RETRIEVAL_INDEX_MIN_LEN  — index keeps tokens longer than this (default: 3)
      RETRIEVAL_QUERY_MIN_LEN  — query keeps tokens longer than this (default: 2)
    """
    DEFAULT_TOP_K: int = int(os.getenv("RETRIEVAL_DEFAULT_TOP_K", "5"))
    PROMPT_TOP_K: int = int(os.getenv("RETRIEVAL_PROMPT_TOP_K", "3"))
    INDEX_MIN_TOKEN_LEN: int = int(os.getenv("RETRIEVAL_INDEX_MIN_LEN", "3"))
    QUERY_MIN_TOKEN_LEN: int = int(os.getenv("RETRIEVAL_QUERY_MIN_LEN", "2"))
    PREVIEW_CHARS: int = int(os.getenv("RETRIEVAL_PREVIEW_CHARS", "300"))


class ContextConfig:
    """Prompt context retention"""
    MAX_PROMPT_CONTEXTS: int = int(os.getenv("CONTEXT_MAX_PROMPTS", "50"))


# =============================================================================
# SESSION CONFIGURATION
# =============================================================================

class SessionConfig:
    """
    Chat session behaviour.

    ENV keys:
      SESSION_TITLE_WORDS      — words taken from the first message for a title (default: 6)
      SESSION_HISTORY_MESSAGES — finished messages sent as history (default: 10)
    """
    DEFAULT_TITLE: str = os.getenv("SESSION_DEFAULT_TITLE", "New Chat")
    TITLE_WORDS: int = int(os.getenv("SESSION_TITLE_WORDS", "6"))
    HISTORY_MESSAGES: int = int(os.getenv("SESSION_HISTORY_MESSAGES", "10"))


# =============================================================================
# WEB SEARCH CONFIGURATION
# =============================================================================

class WebSearchConfig:
    """DuckDuckGo + Trafilatura settings"""
    MAX_RESULTS: int = int(os.getenv("WEB_SEARCH_MAX_RESULTS", "3"))
    SCRAPE_MAX_CHARS: int = int(os.getenv("WEB_SEARCH_SCRAPE_CHARS", "500"))
    SNIPPET_MAX_CHARS: int = int(os.getenv("WEB_SEARCH_SNIPPET_CHARS", "500"))


class ApiConfig:
    """HTTP surface settings"""
    HOST: str = os.getenv("API_HOST", "127.0.0.1")
    PORT: int = int(os.getenv("API_PORT", "8000"))
    CORS_ORIGINS: list = [o.strip() for o in os.getenv("API_CORS_ORIGINS", "*").split(",") if o.strip()]


# =============================================================================
# UNIFIED CONFIG ACCESS
# =============================================================================

class Config:
    """
    Unified configuration access point.
    All values are environment-variable driven.
    """
    ollama = OllamaConfig
    chunking = ChunkingConfig
    retrieval = RetrievalConfig
    context = ContextConfig
    session = SessionConfig
    web_search = WebSearchConfig
    api = ApiConfig

    @classmethod
    def validate(cls) -> bool:
        """Validate critical configuration - check Ollama connectivity"""
        import requests
        try:
            response = requests.get(f"{cls.ollama.BASE_URL}/api/tags", timeout=cls.ollama.HEALTH_TIMEOUT)
            if response.status_code != 200:
                raise ValueError(f"Ollama not responding at {cls.ollama.BASE_URL}")
            return True
        except requests.exceptions.ConnectionError:
            raise ValueError(
                f"Cannot connect to Ollama at {cls.ollama.BASE_URL}. "
                "Please ensure Ollama is running: `ollama serve`"
            )

    @classmethod
    def log_summary(cls) -> None:
        """Log the effective retrieval settings once at startup."""
        logger.info(
            f"Config: model={cls.ollama.DEFAULT_MODEL} @ {cls.ollama.BASE_URL}, "
            f"chunk={cls.chunking.DEFAULT_CHUNK_SIZE}/{cls.chunking.DEFAULT_OVERLAP}, "
            f"prompt_top_k={cls.retrieval.PROMPT_TOP_K}, max_prompts={cls.context.MAX_PROMPT_CONTEXTS}"
        )
