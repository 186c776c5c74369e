"""FastAPI routes for service health, mid-call session control and direct chat."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from api.dependencies import (
    get_catalog,
    get_conversations,
    get_llm_client,
    get_registry,
    to_http_exception,
)
from api.schemas import (
    AssetUpdateRequest,
    AssetUpdateResponse,
    ConversationRequest,
    ConversationResponse,
    HealthResponse,
)
from api.twilio_routes import router as twilio_router
from config.settings import get_settings
from llm.base import BaseLLMClient
from prompts.catalog import AssetCatalog
from relay.conversations import ConversationStore
from relay.errors import RelayError
from relay.registry import SessionRegistry
from relay.response_engine import StreamingResponseEngine
from relay.tool_router import ToolContext, ToolRouter
from tools.builtin import BUILTIN_TOOLS

LOGGER = logging.getLogger(__name__)

router = APIRouter()
router.include_router(twilio_router)


@router.get("/health", response_model=HealthResponse)
async def health(registry: SessionRegistry = Depends(get_registry)) -> HealthResponse:
    return HealthResponse(sessions=len(registry))


@router.post(
    "/sessions/{call_sid}/assets",
    response_model=AssetUpdateResponse,
    response_model_by_alias=True,
)
async def update_session_assets(
    call_sid: str,
    payload: AssetUpdateRequest,
    registry: SessionRegistry = Depends(get_registry),
    catalog: AssetCatalog = Depends(get_catalog),
) -> AssetUpdateResponse:
    """Switch the context and/or tool manifest of a live call."""

    try:
        session = await registry.require(call_sid)
        # Resolve both keys before touching the session so a bad key changes nothing.
        context = catalog.get_context(payload.context_key) if payload.context_key else None
        manifest = catalog.get_manifest(payload.manifest_key) if payload.manifest_key else None
        if context is not None:
            await session.update_context(context)
        if manifest is not None:
            await session.update_tools(manifest)
    except RelayError as exc:
        LOGGER.warning("Asset update for call %s rejected: %s", call_sid, exc.detail)
        raise to_http_exception(exc) from exc

    LOGGER.info(
        "Updated assets for call %s (context=%s, manifest=%s)",
        call_sid,
        payload.context_key,
        payload.manifest_key,
    )
    return AssetUpdateResponse(
        call_sid=call_sid,
        context_key=payload.context_key,
        manifest_key=payload.manifest_key,
        tools=session.engine.router.tool_names if session.engine is not None else [],
    )


def _chat_engine(llm: BaseLLMClient, catalog: AssetCatalog) -> StreamingResponseEngine:
    settings = get_settings()
    assets = catalog.session_assets()
    return StreamingResponseEngine(
        llm,
        ToolRouter(BUILTIN_TOOLS, assets.manifest),
        context=assets.context,
        listen_mode=assets.listen_mode,
        temperature=settings.llm_temperature,
        max_tool_rounds=settings.llm_max_tool_rounds,
        tool_context=ToolContext(call_sid=None, catalog=catalog),
    )


@router.post(
    "/conversation",
    response_model=ConversationResponse,
    response_model_by_alias=True,
    responses={400: {"description": "Message is required"}},
)
async def conversation(
    payload: ConversationRequest,
    conversations: ConversationStore = Depends(get_conversations),
    catalog: AssetCatalog = Depends(get_catalog),
    llm: BaseLLMClient = Depends(get_llm_client),
) -> ConversationResponse | JSONResponse:
    """Chat with the response engine directly, without a ConversationRelay call."""

    if not payload.message:
        return JSONResponse(status_code=400, content={"success": False, "error": "Message is required"})

    session = await conversations.get_or_create(payload.session_id, lambda: _chat_engine(llm, catalog))
    try:
        reply = await session.reply(payload.role, payload.message)
    except RelayError as exc:
        LOGGER.warning("Chat turn for session %s failed: %s", session.session_id, exc.detail)
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "sessionId": session.session_id, "error": exc.detail},
        )
    return ConversationResponse(session_id=session.session_id, response=reply)
