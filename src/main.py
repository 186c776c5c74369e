"""Entry point for the ConversationRelay session orchestrator service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from api.routes import router as api_router
from config.settings import get_settings
from prompts.catalog import AssetCatalog
from prompts.loader import FileAssetLoader
from relay.conversations import ConversationStore
from relay.registry import SessionRegistry


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.registry = SessionRegistry()
    app.state.catalog = AssetCatalog.from_loader(FileAssetLoader(settings.assets_dir))
    app.state.conversations = ConversationStore()
    yield
    await app.state.registry.close_all()
    await app.state.conversations.close_all()


settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

app = FastAPI(
    title="Conversation Relay Orchestrator",
    description="Streams LLM responses and tool side effects to Twilio ConversationRelay calls.",
    lifespan=lifespan,
)
app.include_router(api_router, prefix="/api")
