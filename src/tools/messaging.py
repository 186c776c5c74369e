"""SMS delivery through the Twilio REST API."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from integrations.twilio_client import build_twilio_client, get_twilio_config
from relay.schemas import ToolResult
from relay.tool_router import ToolContext

LOGGER = logging.getLogger(__name__)


async def send_sms(arguments: dict[str, Any], context: ToolContext) -> ToolResult:
    to_number = arguments["to"]
    try:
        cfg = get_twilio_config()
        client = build_twilio_client(cfg)
        # The Twilio helper library is synchronous.
        result = await asyncio.to_thread(
            client.messages.create,
            body=arguments["message"],
            from_=cfg.from_number,
            to=to_number,
        )
    except Exception as exc:
        LOGGER.error("SMS to %s failed: %s", to_number, exc)
        return ToolResult.failure(f"SMS send failed: {exc}")

    LOGGER.info("SMS sent to %s (sid=%s)", to_number, result.sid)
    return ToolResult(success=True, message=f"SMS sent successfully to {to_number}")
