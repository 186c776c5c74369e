"""Pydantic schemas for the ConversationRelay wire protocol."""

from __future__ import annotations

import json
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from relay.errors import ProtocolError


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


# Inbound frames


class SetupMessage(_WireModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    type: Literal["setup"]
    call_sid: str | None = Field(default=None, alias="callSid")
    session_id: str | None = Field(default=None, alias="sessionId")
    from_number: str | None = Field(default=None, alias="from")
    to_number: str | None = Field(default=None, alias="to")
    direction: str | None = None
    custom_parameters: dict[str, Any] = Field(default_factory=dict, alias="customParameters")


class PromptMessage(_WireModel):
    type: Literal["prompt"]
    voice_prompt: str = Field(alias="voicePrompt")
    lang: str | None = None
    last: bool = True


class InterruptMessage(_WireModel):
    type: Literal["interrupt"]
    utterance_until_interrupt: str | None = Field(default=None, alias="utteranceUntilInterrupt")
    duration_until_interrupt_ms: int | None = Field(default=None, alias="durationUntilInterruptMs")


class DtmfMessage(_WireModel):
    type: Literal["dtmf"]
    digit: str

    @field_validator("digit")
    @classmethod
    def digit_not_empty(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("DTMF digit may not be empty.")
        return value.strip()


class InfoMessage(_WireModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    type: Literal["info"]


class GatewayErrorMessage(_WireModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    type: Literal["error"]
    description: str | None = None


IncomingMessage = Annotated[
    Union[
        SetupMessage,
        PromptMessage,
        InterruptMessage,
        DtmfMessage,
        InfoMessage,
        GatewayErrorMessage,
    ],
    Field(discriminator="type"),
]

_INCOMING_ADAPTER: TypeAdapter[IncomingMessage] = TypeAdapter(IncomingMessage)


def parse_incoming_message(raw: str | bytes | dict[str, Any]) -> IncomingMessage:
    """Parse one inbound frame, raising ProtocolError on anything unusable."""

    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ProtocolError(f"Frame is not valid JSON: {exc.msg}") from exc
    if not isinstance(raw, dict):
        raise ProtocolError("Frame must be a JSON object.")
    try:
        return _INCOMING_ADAPTER.validate_python(raw)
    except ValidationError as exc:
        raise ProtocolError(f"Invalid {raw.get('type')!r} frame: {exc.errors()[0]['msg']}") from exc


# Outbound frames


class TextMessage(_WireModel):
    type: Literal["text"] = "text"
    token: str
    last: bool = False
    interruptible: bool | None = None


class SendDigitsMessage(_WireModel):
    type: Literal["sendDigits"] = "sendDigits"
    digits: str


class PlayMessage(_WireModel):
    type: Literal["play"] = "play"
    source: str
    loop: int | None = None
    interruptible: bool | None = None
    preemptible: bool | None = None


class LanguageMessage(_WireModel):
    type: Literal["language"] = "language"
    tts_language: str | None = Field(default=None, alias="ttsLanguage")
    transcription_language: str | None = Field(default=None, alias="transcriptionLanguage")


class EndMessage(_WireModel):
    type: Literal["end"] = "end"
    handoff_data: str = Field(alias="handoffData")

    @classmethod
    def with_data(cls, **data: Any) -> EndMessage:
        return cls(handoff_data=json.dumps(data))


class SilenceDetectionMessage(_WireModel):
    type: Literal["setSilenceDetection"] = "setSilenceDetection"
    enabled: bool


OutgoingMessage = Union[
    TextMessage,
    SendDigitsMessage,
    PlayMessage,
    LanguageMessage,
    EndMessage,
    SilenceDetectionMessage,
]


# Tool results


class DeliveryClass(str, Enum):
    """When a tool's wire side effect goes out relative to the spoken response."""

    IMMEDIATE = "immediate"
    DELAYED = "delayed"
    NONE = "none"


class ToolResult(BaseModel):
    success: bool
    message: str
    outgoing_message: OutgoingMessage | None = None
    delivery: DeliveryClass = DeliveryClass.NONE

    @classmethod
    def failure(cls, message: str) -> ToolResult:
        return cls(success=False, message=message)


# Session configuration


class SilenceDetectionConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    enabled: bool = True
    seconds_threshold: float = Field(default=20.0, gt=0.0, alias="secondsThreshold")
    messages: list[str] = Field(
        default_factory=lambda: ["Still there?", "Just checking you are still there?"]
    )
