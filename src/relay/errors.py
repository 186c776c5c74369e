"""Domain-specific exceptions for relay sessions.

These exceptions are safe to import from API layers without pulling in the LLM client.
"""

from __future__ import annotations


class RelayError(Exception):
    status_code: int = 500
    default_detail: str = "Relay error"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail


class ProtocolError(RelayError):
    status_code = 400
    default_detail = "Malformed or unexpected protocol frame."


class GenerationError(RelayError):
    status_code = 503
    default_detail = "LLM generation failed."


class ToolExecutionError(RelayError):
    status_code = 500
    default_detail = "Tool execution failed."

    def __init__(self, detail: str | None = None, *, tool_name: str | None = None) -> None:
        super().__init__(detail)
        self.tool_name = tool_name


class SessionNotFoundError(RelayError):
    status_code = 404
    default_detail = "Session not found."


class AssetNotFoundError(RelayError):
    status_code = 400
    default_detail = "Asset not found."
