from __future__ import annotations

import inspect
import os
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = REPO_ROOT / "src"
ASSETS_DIR = REPO_ROOT / "assets"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))
# Settings validate the assets directory, so point it at the bundled assets.
os.environ.setdefault("ASSETS_DIR", str(ASSETS_DIR))

from llm.base import BaseLLMClient, TextDelta  # noqa: E402


class FakeLLM(BaseLLMClient):
    """Scripted stream: one list of events per call to ``stream_chat``.

    Events may be TextDelta/ToolCallRequest (yielded), exceptions (raised) or
    plain callables (run between events, e.g. to interrupt mid-stream).
    """

    def __init__(self, *rounds) -> None:
        self.rounds = list(rounds)
        self.calls: list[dict] = []
        self.closed = 0

    async def stream_chat(self, messages, *, tools=None, temperature=0.1):
        self.calls.append({"messages": list(messages), "tools": list(tools or [])})
        script = self.rounds.pop(0) if self.rounds else [TextDelta("OK")]
        try:
            for event in script:
                if isinstance(event, Exception):
                    raise event
                if callable(event):
                    result = event()
                    if inspect.isawaitable(result):
                        await result
                    continue
                yield event
        finally:
            self.closed += 1


class RecordingHandler:
    def __init__(self) -> None:
        self.frames: list[dict] = []
        self.errors: list = []

    async def content(self, message) -> None:
        self.frames.append(message.to_wire())

    async def tool_message(self, message) -> None:
        self.frames.append(message.to_wire())

    async def error(self, error) -> None:
        self.errors.append(error)


class FakeClock:
    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture()
def catalog():
    from prompts.catalog import AssetCatalog
    from prompts.loader import FileAssetLoader

    return AssetCatalog.from_loader(FileAssetLoader(ASSETS_DIR))


@pytest.fixture(scope="session")
def app():
    os.environ.pop("PUBLIC_BASE_URL", None)

    import importlib

    # Ensure clean import with the test settings.
    for module_name in [
        "config.settings",
        "api.dependencies",
        "api.twilio_routes",
        "api.routes",
        "main",
    ]:
        sys.modules.pop(module_name, None)

    main = importlib.import_module("main")
    return main.app


@pytest.fixture()
def fake_llm():
    return FakeLLM()


@pytest.fixture()
def client(app, fake_llm):
    # Override the LLM dependency so tests never reach a provider.
    import api.dependencies as deps

    app.dependency_overrides[deps.get_llm_client] = lambda: fake_llm

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
