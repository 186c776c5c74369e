"""Tools whose only effect is a ConversationRelay frame."""

from __future__ import annotations

import logging
from typing import Any

from relay.schemas import (
    EndMessage,
    LanguageMessage,
    PlayMessage,
    SendDigitsMessage,
    ToolResult,
)
from relay.tool_router import ToolContext

LOGGER = logging.getLogger(__name__)


def send_dtmf(arguments: dict[str, Any], context: ToolContext) -> ToolResult:
    digits = str(arguments["dtmfDigit"])
    LOGGER.info("Sending DTMF %s on call %s", digits, context.call_sid)
    return ToolResult(
        success=True,
        message=f"Sent DTMF digits {digits}",
        outgoing_message=SendDigitsMessage(digits=digits),
    )


def play_media(arguments: dict[str, Any], context: ToolContext) -> ToolResult:
    message = PlayMessage(
        source=arguments["source"],
        loop=arguments.get("loop"),
        interruptible=arguments.get("interruptible"),
        preemptible=arguments.get("preemptible"),
    )
    return ToolResult(
        success=True,
        message=f"Playing media from {message.source}",
        outgoing_message=message,
    )


def switch_language(arguments: dict[str, Any], context: ToolContext) -> ToolResult:
    tts = arguments.get("ttsLanguage")
    transcription = arguments.get("transcriptionLanguage")
    if not tts and not transcription:
        return ToolResult.failure("At least one of ttsLanguage or transcriptionLanguage is required")
    return ToolResult(
        success=True,
        message=f"Switched language (tts={tts}, transcription={transcription})",
        outgoing_message=LanguageMessage(tts_language=tts, transcription_language=transcription),
    )


def end_call(arguments: dict[str, Any], context: ToolContext) -> ToolResult:
    summary = arguments.get("summary", "")
    return ToolResult(
        success=True,
        message="The call will end after your closing remark.",
        outgoing_message=EndMessage.with_data(
            reasonCode="end-call",
            reason="The conversation was completed",
            summary=summary,
        ),
    )


def live_agent_handoff(arguments: dict[str, Any], context: ToolContext) -> ToolResult:
    summary = arguments["summary"]
    reason = arguments.get("reason", "Caller requested a human agent")
    LOGGER.info("Handing call %s to a live agent", context.call_sid)
    return ToolResult(
        success=True,
        message="The caller will be transferred to a live agent after your closing remark.",
        outgoing_message=EndMessage.with_data(
            reasonCode="live-agent-handoff",
            reason=reason,
            conversationSummary=summary,
            callSid=context.call_sid,
        ),
    )
