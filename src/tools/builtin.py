from __future__ import annotations

from relay.tool_router import ToolImplementation
from tools.call_control import end_call, live_agent_handoff, play_media, send_dtmf, switch_language
from tools.messaging import send_sms
from tools.session_control import change_context, set_listen_mode, set_silence_detection

BUILTIN_TOOLS: dict[str, ToolImplementation] = {
    "send-dtmf": send_dtmf,
    "play-media": play_media,
    "switch-language": switch_language,
    "end-call": end_call,
    "live-agent-handoff": live_agent_handoff,
    "send-sms": send_sms,
    "set-listen-mode": set_listen_mode,
    "set-silence-detection": set_silence_detection,
    "change-context": change_context,
}
