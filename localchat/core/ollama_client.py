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
Ollama Client for LocalChat
HTTP client for the local Ollama API: generation (single body or NDJSON
stream), model management and health checks.
"""

import asyncio
import json
from typing import Any, AsyncGenerator, Callable, Dict, Generator, List, Optional

import requests

from .config import OllamaConfig
from .utils import logger


# =============================================================================
# OLLAMA CLIENT
# =============================================================================

class OllamaClient:
    """
    HTTP client for Ollama local API.

    Features:
    - Streaming and non-streaming generation
    - Async token stream for the orchestrator (stream closed on cancel)
    - Model listing / info / pull / delete
    - Connection health checks
    """

    def __init__(
        self,
        base_url: str = None,
        model_name: str = None,
        timeout: int = None,
        session: Optional[requests.Session] = None
    ):
        self.base_url = (base_url or OllamaConfig.BASE_URL).rstrip("/")
        self.model_name = model_name or OllamaConfig.DEFAULT_MODEL
        self.timeout = timeout or OllamaConfig.TIMEOUT
        self.http = session or requests.Session()

    # -------------------------------------------------------------------------
    # Health
    # -------------------------------------------------------------------------

    def is_available(self) -> bool:
        """Check if Ollama is running"""
        try:
            response = self.http.get(
                f"{self.base_url}/api/tags",
                timeout=OllamaConfig.HEALTH_TIMEOUT
            )
            return response.status_code == 200
        except requests.exceptions.RequestException as e:
            logger.debug(f"Ollama availability check failed: {e}")
            return False

    def get_version(self) -> Optional[str]:
        """Runtime version string, or None when unreachable."""
        try:
            response = self.http.get(f"{self.base_url}/api/version", timeout=OllamaConfig.HEALTH_TIMEOUT)
            if response.status_code != 200:
                return None
            return response.json().get("version")
        except requests.exceptions.RequestException as e:
            logger.debug(f"Ollama version check failed: {e}")
            return None

    # -------------------------------------------------------------------------
    # Models
    # -------------------------------------------------------------------------

    def list_models(self) -> List[Dict[str, Any]]:
        """Installed models as returned by /api/tags"""
        response = self._request("GET", "/api/tags")
        return response.json().get("models", [])

    def show_model_info(self, model_name: str) -> Dict[str, Any]:
        response = self._request("POST", "/api/show", json={"name": model_name})
        return response.json()

    def delete_model(self, model_name: str) -> bool:
        self._request("DELETE", "/api/delete", json={"name": model_name})
        logger.info(f"Deleted model: {model_name}")
        return True

    def create_model(self, model_name: str, modelfile: str) -> bool:
        """Build a model from Modelfile text (FROM/SYSTEM/PARAMETER lines)."""
        self._request("POST", "/api/create", json={"name": model_name, "modelfile": modelfile, "stream": False})
        logger.info(f"Created model: {model_name}")
        return True

    def copy_model(self, source: str, destination: str) -> bool:
        self._request("POST", "/api/copy", json={"source": source, "destination": destination})
        logger.info(f"Copied model: {source} -> {destination}")
        return True

    def pull_model(self, model_name: str, on_progress: Optional[Callable[[Dict[str, Any]], None]] = None) -> bool:
        """
        Pull a model from the registry. Progress lines (status/digest/total/
        completed) are forwarded to `on_progress` as they arrive.
        """
        try:
            with self.http.post(
                f"{self.base_url}/api/pull",
                json={"name": model_name, "stream": True},
                stream=True,
                timeout=self.timeout
            ) as response:
                if response.status_code != 200:
                    raise RuntimeError(f"Ollama pull error: {response.status_code}")
                for line in response.iter_lines():
                    if not line:
                        continue
                    try:
                        progress = json.loads(line)
                    except json.JSONDecodeError:
                        logger.warning(f"Unparseable pull progress line for {model_name}")
                        continue
                    if progress.get("error"):
                        raise RuntimeError(f"Ollama pull failed: {progress['error']}")
                    if on_progress:
                        on_progress(progress)
        except requests.exceptions.ConnectionError:
            raise RuntimeError(self._connection_message())
        logger.info(f"Pulled model: {model_name}")
        return True

    # -------------------------------------------------------------------------
    # Generation
    # -------------------------------------------------------------------------

    def _build_payload(
        self,
        prompt: str,
        model: Optional[str],
        images: Optional[List[str]],
        temperature: Optional[float],
        stream: bool
    ) -> Dict[str, Any]:
        payload = {
            "model": model or self.model_name,
            "prompt": prompt,
            "stream": stream,
            "options": {
                "temperature": OllamaConfig.TEMPERATURE if temperature is None else temperature
            }
        }
        if images:
            payload["images"] = images
        return payload

    def generate(
        self,
        prompt: str,
        model: Optional[str] = None,
        images: Optional[List[str]] = None,
        temperature: Optional[float] = None
    ) -> Dict[str, str]:
        """
        Non-streaming generation - returns {'response': str, 'done_reason': str}
        """
        payload = self._build_payload(prompt, model, images, temperature, stream=False)
        try:
            response = self.http.post(
                f"{self.base_url}/api/generate",
                json=payload,
                timeout=self.timeout
            )
        except requests.exceptions.ConnectionError:
            raise RuntimeError(self._connection_message())

        if response.status_code != 200:
            raise RuntimeError(f"Ollama API error: {response.status_code} - {response.text}")

        result = response.json()
        return {
            "response": result.get("response", ""),
            "done_reason": result.get("done_reason", "stop")
        }

    def stream_generate(
        self,
        prompt: str,
        model: Optional[str] = None,
        images: Optional[List[str]] = None,
        temperature: Optional[float] = None
    ) -> Generator[str, None, None]:
        """
        Streaming generation - yields each incremental `response` fragment in
        the order the runtime emits them. Closing the generator closes the
        underlying HTTP response.
        """
        payload = self._build_payload(prompt, model, images, temperature, stream=True)
        with self._open_stream(payload) as response:
            yield from self._iter_stream(response)

    async def astream_generate(
        self,
        prompt: str,
        model: Optional[str] = None,
        images: Optional[List[str]] = None,
        temperature: Optional[float] = None
    ) -> AsyncGenerator[str, None]:
        """
        Async view over the streaming endpoint. Each blocking read runs in a
        worker thread so the event loop stays free between tokens. Cancelling
        the consumer closes the HTTP response, which also unblocks a worker
        thread still waiting on the socket.
        """
        payload = self._build_payload(prompt, model, images, temperature, stream=True)
        opening = asyncio.ensure_future(asyncio.to_thread(self._open_stream, payload))
        try:
            response = await asyncio.shield(opening)
        except asyncio.CancelledError:
            # Request still in flight: drop the response as soon as it arrives
            opening.add_done_callback(_discard_response)
            raise

        iterator = self._iter_stream(response)
        done = object()
        try:
            while True:
                token = await asyncio.to_thread(next, iterator, done)
                if token is done:
                    break
                yield token
        finally:
            response.close()

    def _open_stream(self, payload: Dict[str, Any]) -> requests.Response:
        try:
            response = self.http.post(
                f"{self.base_url}/api/generate",
                json=payload,
                stream=True,
                timeout=self.timeout
            )
        except requests.exceptions.ConnectionError:
            raise RuntimeError(self._connection_message())

        if response.status_code != 200:
            response.close()
            raise RuntimeError(f"Ollama API error: {response.status_code}")
        return response

    def _iter_stream(self, response: requests.Response) -> Generator[str, None, None]:
        try:
            for line in response.iter_lines():
                if not line:
                    continue
                try:
                    data = json.loads(line)
                except json.JSONDecodeError:
                    logger.warning("Skipping unparseable stream chunk from Ollama")
                    continue
                if data.get("error"):
                    raise RuntimeError(f"Ollama generation failed: {data['error']}")
                chunk = data.get("response", "")
                if chunk:
                    yield chunk
                if data.get("done", False):
                    break
        except requests.exceptions.ConnectionError:
            raise RuntimeError(self._connection_message())

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        try:
            response = self.http.request(method, f"{self.base_url}{path}", timeout=self.timeout, **kwargs)
        except requests.exceptions.ConnectionError:
            raise RuntimeError(self._connection_message())
        if response.status_code != 200:
            raise RuntimeError(f"Ollama API error: {response.status_code} - {response.text}")
        return response

    def _connection_message(self) -> str:
        return (
            f"Cannot connect to Ollama at {self.base_url}. "
            "Please ensure Ollama is running: `ollama serve`"
        )


def _discard_response(future: "asyncio.Future") -> None:
    if future.cancelled() or future.exception() is not None:
        return
    future.result().close()
