"""Shared fakes for the LocalChat tests: a scripted model runtime and search client."""

import asyncio

import pytest

from localchat.core.engine import create_engine


class FakeClient:
    """Streams a fixed token list; optionally raises after the tokens."""

    def __init__(self, tokens=None, error=None):
        self.tokens = list(tokens) if tokens is not None else ["Hello", ", ", "world"]
        self.error = error
        self.calls = []
        self.closed = 0

    def is_available(self):
        return True

    def get_version(self):
        return "0.0.0-test"

    def list_models(self):
        return [{"name": "llama3.2"}]

    def create_model(self, model_name, modelfile):
        self.created = (model_name, modelfile)
        return True

    def copy_model(self, source, destination):
        if source != "llama3.2":
            raise RuntimeError("Ollama API error: 404 - model not found")
        return True

    async def astream_generate(self, prompt, model=None, images=None, temperature=None):
        self.calls.append({"prompt": prompt, "model": model, "images": images})
        try:
            for token in self.tokens:
                await asyncio.sleep(0)
                yield token
            if self.error is not None:
                raise self.error
        finally:
            self.closed += 1


class GatedClient(FakeClient):
    """
    Each call blocks on its own asyncio.Event before streaming, so a test can
    hold a turn mid-flight. Call n streams `scripts[n]`.
    """

    def __init__(self, scripts):
        super().__init__()
        self.scripts = [list(s) for s in scripts]
        self.gates = []

    async def astream_generate(self, prompt, model=None, images=None, temperature=None):
        index = len(self.gates)
        gate = asyncio.Event()
        self.gates.append(gate)
        self.calls.append({"prompt": prompt, "model": model, "images": images})
        try:
            await gate.wait()
            for token in self.scripts[index]:
                yield token
                await asyncio.sleep(0)
        finally:
            self.closed += 1


class FakeSearch:
    def __init__(self, results=None, error=None):
        self.results = results if results is not None else [{
            "title": "Ollama docs",
            "url": "https://ollama.com/docs",
            "snippet": "Run models locally.",
            "content": "Ollama runs large language models on your own machine."
        }]
        self.error = error
        self.queries = []

    def search_with_content(self, query, max_results=None):
        self.queries.append(query)
        if self.error is not None:
            raise self.error
        return self.results


async def wait_until(condition, attempts=1000):
    """Yield to the event loop until `condition()` holds."""
    for _ in range(attempts):
        if condition():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never became true")


@pytest.fixture
def fake_client():
    return FakeClient()


@pytest.fixture
def fake_search():
    return FakeSearch()


@pytest.fixture
def engine(fake_client, fake_search):
    return create_engine(client=fake_client, search_client=fake_search)
