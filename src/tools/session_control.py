"""Tools that change how the current session behaves."""

from __future__ import annotations

import logging
from typing import Any

from relay.errors import AssetNotFoundError
from relay.schemas import SilenceDetectionMessage, ToolResult
from relay.tool_router import ToolContext

LOGGER = logging.getLogger(__name__)


def set_listen_mode(arguments: dict[str, Any], context: ToolContext) -> ToolResult:
    enabled = bool(arguments["enabled"])
    if context.engine is None:
        return ToolResult.failure("Listen mode cannot be changed outside a session")
    context.engine.set_listen_mode(enabled)
    description = "text responses suppressed" if enabled else "text responses enabled"
    return ToolResult(
        success=True,
        message=f"Listen mode set to {'enabled' if enabled else 'disabled'} ({description})",
    )


def set_silence_detection(arguments: dict[str, Any], context: ToolContext) -> ToolResult:
    enabled = bool(arguments["enabled"])
    return ToolResult(
        success=True,
        message=f"Silence detection {'enabled' if enabled else 'disabled'}",
        outgoing_message=SilenceDetectionMessage(enabled=enabled),
    )


async def change_context(arguments: dict[str, Any], context: ToolContext) -> ToolResult:
    new_context = arguments["newContext"]
    summary = arguments["handoffSummary"]
    if context.engine is None or context.catalog is None:
        return ToolResult.failure("Context switching is not available for this session")

    try:
        instructions, manifest = context.catalog.assets_for_context_switch(new_context)
    except AssetNotFoundError as exc:
        return ToolResult.failure(f"Context switch failed: {exc.detail}")

    await context.engine.insert_message("system", f"Context handoff summary: {summary}")
    await context.engine.update_context(instructions)
    await context.engine.update_tools(manifest)
    LOGGER.info("Call %s switched to context %s", context.call_sid, new_context)
    return ToolResult(success=True, message=f"Successfully switched to context: {new_context}")
