"""Twilio ConversationRelay integration.

This module provides:
- Connect webhook (TwiML) that hands an inbound call to ConversationRelay.
- WebSocket endpoint carrying the ConversationRelay protocol for one call.
- Status callback endpoint feeding call status changes into the session.
"""

from __future__ import annotations

import json
import logging
from typing import Any
from xml.sax.saxutils import escape

from fastapi import APIRouter, Depends, Request, Response, WebSocket, WebSocketDisconnect

from api.dependencies import get_catalog, get_llm_client, get_registry
from config.settings import get_settings
from llm.base import BaseLLMClient
from prompts.catalog import AssetCatalog
from relay.errors import GenerationError, RelayError
from relay.orchestrator import ConversationOrchestrator
from relay.registry import SessionRegistry
from tools.builtin import BUILTIN_TOOLS

LOGGER = logging.getLogger(__name__)

router = APIRouter(prefix="/twilio", tags=["twilio"])

_STATUS_FIELDS = ("CallStatus", "CallDuration", "AnsweredBy", "ErrorCode", "ErrorMessage")


def _attr(value: Any) -> str:
    if isinstance(value, bool):
        value = "true" if value else "false"
    return escape(str(value), {'"': "&quot;"})


def _to_ws_url(http_url: str) -> str:
    if http_url.startswith("https://"):
        return "wss://" + http_url.removeprefix("https://")
    if http_url.startswith("http://"):
        return "ws://" + http_url.removeprefix("http://")
    return http_url


def _relay_url(request: Request) -> str:
    settings = get_settings()
    if settings.public_base_url:
        return _to_ws_url(f"{settings.public_base_url.rstrip('/')}/api/twilio/conversation-relay")
    # Fallback to request host. This may not work behind proxies; prefer PUBLIC_BASE_URL.
    return _to_ws_url(str(request.url_for("conversation_relay")))


def _twiml_conversation_relay(
    *, relay_url: str, configuration: dict[str, Any], parameters: dict[str, Any]
) -> str:
    attributes = "".join(
        f" {escape(str(name))}=\"{_attr(value)}\""
        for name, value in configuration.items()
        if value is not None and not isinstance(value, (dict, list))
    )
    params = "".join(
        f"<Parameter name=\"{_attr(name)}\" value=\"{_attr(value)}\" />"
        for name, value in parameters.items()
        if value is not None
    )
    return (
        "<?xml version=\"1.0\" encoding=\"UTF-8\"?>"
        "<Response>"
        "<Connect>"
        f"<ConversationRelay url=\"{_attr(relay_url)}\"{attributes}>"
        f"{params}"
        "</ConversationRelay>"
        "</Connect>"
        "</Response>"
    )


def _twiml_response(xml: str) -> Response:
    # Twilio expects application/xml
    return Response(content=xml, media_type="application/xml")


async def _request_payload(request: Request) -> dict[str, Any]:
    if request.headers.get("content-type", "").startswith("application/json"):
        body = await request.json()
        return body if isinstance(body, dict) else {}
    form = await request.form()
    return {key: str(value) for key, value in form.items()}


@router.post("/connect")
async def twilio_connect(
    request: Request,
    catalog: AssetCatalog = Depends(get_catalog),
) -> Response:
    payload = await _request_payload(request)
    parameters = payload.get("parameters")
    if not isinstance(parameters, dict):
        parameters = {key: value for key, value in payload.items() if key != "parameters"}
    parameters.update(request.query_params)

    LOGGER.info("Connecting call %s to ConversationRelay", payload.get("CallSid", "unknown"))
    return _twiml_response(
        _twiml_conversation_relay(
            relay_url=_relay_url(request),
            configuration=catalog.relay_configuration,
            parameters=parameters,
        )
    )


@router.websocket("/conversation-relay")
async def conversation_relay(
    websocket: WebSocket,
    registry: SessionRegistry = Depends(get_registry),
    catalog: AssetCatalog = Depends(get_catalog),
    llm: BaseLLMClient = Depends(get_llm_client),
) -> None:
    await websocket.accept()
    settings = get_settings()

    async def report_error(call_sid: str | None, error: GenerationError) -> None:
        LOGGER.error("Response generation failed for call %s: %s", call_sid, error.detail)

    session = ConversationOrchestrator(
        llm=llm,
        catalog=catalog,
        registry=registry,
        send=websocket.send_json,
        tools=BUILTIN_TOOLS,
        on_error=report_error,
        temperature=settings.llm_temperature,
        max_tool_rounds=settings.llm_max_tool_rounds,
        silence_tick_seconds=settings.silence_tick_seconds,
    )
    session.start()
    try:
        while True:
            message = await websocket.receive_text()
            await session.incoming_message(message)
    except WebSocketDisconnect:
        LOGGER.info("ConversationRelay socket closed for call %s", session.call_sid)
    finally:
        await session.cleanup()


@router.post("/status-callback")
async def twilio_status_callback(
    request: Request,
    registry: SessionRegistry = Depends(get_registry),
) -> dict[str, bool]:
    payload = await _request_payload(request)
    call_sid = str(payload.get("CallSid") or payload.get("callSid") or "").strip()
    LOGGER.info("Status callback for call %s: %s", call_sid or "unknown", payload.get("CallStatus"))

    session = await registry.get(call_sid) if call_sid else None
    if session is None:
        return {"success": False}

    status = {key: payload[key] for key in _STATUS_FIELDS if payload.get(key)}
    if not status:
        return {"success": False}
    try:
        await session.insert_message("system", f"Call status update: {json.dumps(status)}")
    except RelayError as exc:
        LOGGER.warning("Status update for call %s not applied: %s", call_sid, exc.detail)
        return {"success": False}
    return {"success": True}
